"""Text rendering of station arrivals."""

from datetime import datetime, timezone
from typing import Iterable, List, Mapping, Optional, Sequence

from .models import Arrival

DEFAULT_DISPLAY_LIMIT = 10


def _route_sort_key(route_id: str):
    # Numeric routes ("2", "7") before lettered ones ("A", "GS")
    return (0 if route_id.isdigit() else 1, route_id)


def sort_route_ids(route_ids: Iterable[str]) -> List[str]:
    return sorted(route_ids, key=_route_sort_key)


def format_arrival(arrival: Arrival, now: datetime) -> str:
    """Render one arrival as "HH:MM:SS (N min) uptown (real-time)"."""
    clock_time = arrival.arrival_time.astimezone().strftime("%H:%M:%S")
    source = "real-time" if arrival.is_real_time else "scheduled"
    return f"{clock_time} ({arrival.minutes_away(now)} min) {arrival.direction.value} ({source})"


def format_arrivals(
    arrivals: Mapping[str, Sequence[Arrival]],
    station_name: str = "nearest station",
    now: Optional[datetime] = None,
    limit: int = DEFAULT_DISPLAY_LIMIT,
) -> str:
    """
    Render a station's arrivals, one line per route.

    Args:
        arrivals: route_id -> arrivals sorted by time.
        station_name: Shown in the heading.
        now: Reference time for minutes-away; defaults to the current time.
        limit: Maximum arrivals shown per route.

    Returns:
        Multi-line string.
    """
    now = now or datetime.now(timezone.utc)
    lines = [f"Next arrivals for {station_name}:"]
    for route_id in sort_route_ids(arrivals):
        shown = list(arrivals[route_id])[:limit]
        if not shown:
            continue
        times = ", ".join(format_arrival(arrival, now) for arrival in shown)
        lines.append(f"{route_id} train: {times}")
    return "\n".join(lines) + "\n"

"""Example usage of NearbyStationTracker."""

import logging
import sys
from pathlib import Path

# Add src to path so we can import rumpytrain
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from rumpytrain import (
    Direction,
    LoadError,
    NearbyStationTracker,
    load_station_catalog,
    load_station_catalog_from_url,
)

# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)

# Grand Central-42 St
DEFAULT_LOCATION = (40.7527, -73.9772)


def print_nearby_arrivals(latitude: float, longitude: float, direction: Direction, gtfs_dir: str = None):
    """
    Show the nearest stations to a point and their next arrivals.

    Args:
        latitude: Query latitude.
        longitude: Query longitude.
        direction: Direction of travel to show.
        gtfs_dir: Optional directory holding routes/trips/stop_times/stops.txt.
            Downloads the MTA static feed when omitted.
    """
    try:
        if gtfs_dir:
            catalog = load_station_catalog(gtfs_dir)
        else:
            print("Loading GTFS data... (this may take a minute on first run)")
            catalog = load_station_catalog_from_url()
    except LoadError as e:
        logger.error(f"Failed to load GTFS data: {e}")
        sys.exit(1)

    with NearbyStationTracker(catalog, direction=direction) as tracker:
        boards = tracker.update_location(latitude, longitude)

        print(f"\n{'='*70}")
        print(f"Nearest stations to ({latitude}, {longitude}), {direction.value}")
        print(f"{'='*70}\n")
        for board in boards:
            lines = ", ".join(route.short_name for route in board.station.routes)
            print(f"{board.station.name} - {board.distance_m:.1f} meters away [{lines}]")

        if not tracker.wait(timeout=30):
            print("\nSome stations are still loading")

        print()
        for board in tracker.boards():
            print(tracker.format_board(board))


if __name__ == "__main__":
    args = sys.argv[1:]
    direction = Direction.UPTOWN
    if args and args[0].lower() in ("uptown", "downtown"):
        direction = Direction(args.pop(0).lower())

    if len(args) >= 2:
        lat, lon = float(args[0]), float(args[1])
        gtfs_dir = args[2] if len(args) > 2 else None
    else:
        lat, lon = DEFAULT_LOCATION
        gtfs_dir = None

    print_nearby_arrivals(lat, lon, direction, gtfs_dir)

"""Data models for RumpyTrain."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple

DIRECTION_SUFFIXES = ("N", "S")


def base_stop_id(stop_id: str) -> str:
    """Strip a trailing N/S platform suffix, if present (e.g. "101N" -> "101")."""
    if stop_id.endswith(DIRECTION_SUFFIXES):
        return stop_id[:-1]
    return stop_id


class Direction(Enum):
    """Direction of travel, derived from a platform stop id suffix."""
    UPTOWN = "uptown"
    DOWNTOWN = "downtown"

    @classmethod
    def from_stop_id(cls, stop_id: str) -> "Direction":
        return cls.UPTOWN if stop_id.endswith("N") else cls.DOWNTOWN


@dataclass(frozen=True)
class Route:
    """Represents a subway route from routes.txt."""
    route_id: str
    short_name: str
    color_hex: str = ""


@dataclass(frozen=True)
class Station:
    """Represents a parent subway station."""
    stop_id: str
    name: str
    latitude: float
    longitude: float
    routes: Tuple[Route, ...] = ()  # Sorted by short_name

    @property
    def lines(self) -> List[str]:
        """Route IDs served at this station."""
        return [route.route_id for route in self.routes]


@dataclass(frozen=True)
class Arrival:
    """Represents a real-time train arrival at a station."""
    arrival_time: datetime
    direction: Direction
    is_real_time: bool

    def minutes_away(self, now: datetime) -> int:
        return int((self.arrival_time - now).total_seconds() / 60)


ArrivalMap = Dict[str, List[Arrival]]  # route_id -> arrivals sorted by time


@dataclass(frozen=True)
class FeedSpec:
    """A GTFS-Realtime feed and the routes it is authoritative for."""
    name: str
    url: str
    route_ids: FrozenSet[str]


@dataclass
class FeedResult:
    """Outcome of fetching one feed: arrivals on success, or the recorded error."""
    feed: FeedSpec
    arrivals: ArrivalMap = field(default_factory=dict)
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class StationBoard:
    """A ranked station with its latest arrivals (None while loading/unavailable)."""
    station: Station
    distance_m: float
    arrivals: Optional[ArrivalMap] = None
    last_updated: Optional[datetime] = None

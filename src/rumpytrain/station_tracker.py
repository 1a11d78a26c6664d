"""Main nearby-station tracker."""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

from .exceptions import FetchError
from .formatting import format_arrivals
from .gtfs_loader import StationCatalog
from .models import ArrivalMap, Direction, Station, StationBoard
from .mta_client import MTAClient
from .ranking import DEFAULT_STATION_LIMIT, rank_stations

logger = logging.getLogger(__name__)


class NearbyStationTracker:
    """
    Tracks real-time train arrivals at the stations nearest to a location.

    This class provides methods to:
    - Rank stations by distance whenever the location changes
    - Fetch arrivals for the nearest stations in the background
    - Expose the latest arrivals per station to a presentation layer
    """

    def __init__(
        self,
        catalog: StationCatalog,
        client: Optional[MTAClient] = None,
        station_limit: int = DEFAULT_STATION_LIMIT,
        direction: Direction = Direction.UPTOWN,
        max_workers: Optional[int] = None,
        on_update: Optional[Callable[[StationBoard], None]] = None,
    ):
        """
        Initialize the tracker.

        Args:
            catalog: Station catalog built by gtfs_loader.
            client: Real-time client; a default MTAClient is created if omitted.
            station_limit: How many of the nearest stations to track.
            direction: Direction of travel to show arrivals for.
            max_workers: Concurrent station fetches; defaults to station_limit.
            on_update: Called with the refreshed StationBoard after each station fetch.
        """
        self.catalog = catalog
        self.client = client or MTAClient()
        self.station_limit = station_limit
        self.direction = direction
        self._on_update = on_update
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers or max(1, station_limit),
            thread_name_prefix="station",
        )
        self._lock = threading.Lock()
        self._ranked: List[Tuple[Station, float]] = []
        # (stop_id, direction) -> (arrivals, fetched at, submission sequence)
        self._snapshots: Dict[Tuple[str, Direction], Tuple[ArrivalMap, datetime, int]] = {}
        self._sequence = 0
        self._pending: List[Future] = []

    def __enter__(self) -> "NearbyStationTracker":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def update_location(
        self,
        latitude: float,
        longitude: float,
        direction: Optional[Direction] = None,
    ) -> List[StationBoard]:
        """
        Re-rank stations around a new location and start fetching their arrivals.

        Returns immediately; stations whose arrivals have not been fetched yet
        have arrivals=None.
        """
        ranked = rank_stations(self.catalog, latitude, longitude, self.station_limit)
        with self._lock:
            if direction is not None:
                self.direction = direction
            self._ranked = ranked
        logger.debug(f"Ranked {len(ranked)} stations around ({latitude}, {longitude})")
        self.refresh()
        return self.boards()

    def refresh(self) -> None:
        """Fetch arrivals again for every currently ranked station."""
        with self._lock:
            stations = [station for station, _ in self._ranked]
            direction = self.direction
            futures = []
            for station in stations:
                self._sequence += 1
                futures.append(self._executor.submit(self._fetch_station, station, direction, self._sequence))
            self._pending = [future for future in self._pending if not future.done()] + futures

    def boards(self) -> List[StationBoard]:
        """Current ranked stations with their latest arrivals."""
        with self._lock:
            return [self._board(station, distance) for station, distance in self._ranked]

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until outstanding fetches finish. Returns False on timeout."""
        with self._lock:
            pending = list(self._pending)
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def get_station(self, station_input: str) -> Station:
        """
        Get a station by ID or name.

        Raises:
            ValueError: If station not found.
        """
        try:
            return self.catalog.get_station(station_input)
        except ValueError:
            pass

        stations = self.catalog.find_stations_by_name(station_input)
        if not stations:
            raise ValueError(f"No station found matching '{station_input}'")
        return stations[0]

    def get_arrivals(self, station: Station, direction: Optional[Direction] = None) -> ArrivalMap:
        """Fetch arrivals for one station synchronously."""
        return self.client.get_arrivals(station.stop_id, direction or self.direction)

    def format_board(self, board: StationBoard) -> str:
        if not board.arrivals or not any(board.arrivals.values()):
            return f"{board.station.name}: arrivals loading/unavailable\n"
        return format_arrivals(board.arrivals, station_name=board.station.name)

    def _board(self, station: Station, distance: float) -> StationBoard:
        snapshot = self._snapshots.get((station.stop_id, self.direction))
        if snapshot is None:
            return StationBoard(station=station, distance_m=distance)
        arrivals, last_updated, _ = snapshot
        return StationBoard(station=station, distance_m=distance, arrivals=arrivals, last_updated=last_updated)

    def _fetch_station(self, station: Station, direction: Direction, sequence: int) -> None:
        try:
            arrivals = self.client.get_arrivals(station.stop_id, direction)
        except FetchError as e:
            # Keep whatever snapshot the station already had
            logger.warning(f"No arrivals for {station.name} ({station.stop_id}): {e}")
            return

        key = (station.stop_id, direction)
        with self._lock:
            current = self._snapshots.get(key)
            if current is not None and current[2] > sequence:
                logger.debug(f"Dropping stale arrivals for {station.stop_id}")
                return
            self._snapshots[key] = (arrivals, datetime.now(timezone.utc), sequence)
            board = None
            if direction is self.direction:
                for ranked_station, distance in self._ranked:
                    if ranked_station.stop_id == station.stop_id:
                        board = self._board(ranked_station, distance)
                        break

        logger.debug(f"Updated {sum(len(a) for a in arrivals.values())} arrivals for {station.stop_id}")
        if board is not None and self._on_update is not None:
            self._on_update(board)

    def close(self) -> None:
        """Release resources and clear caches."""
        self._executor.shutdown(wait=True)
        self.client.close()
        logger.info("Cleaned up tracker resources")

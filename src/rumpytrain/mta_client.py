"""MTA GTFS-Realtime data fetcher and parser."""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import requests
from google.protobuf.message import DecodeError
from google.transit import gtfs_realtime_pb2

from .exceptions import FetchError, NoDataError
from .models import Arrival, ArrivalMap, Direction, FeedResult, FeedSpec, base_stop_id

logger = logging.getLogger(__name__)

MTA_FEED_URL = "https://api-endpoint.mta.info/Dataservice/mtagtfsfeeds/nyct%2Fgtfs"

# MTA GTFS-Realtime feeds (subway only) and the routes each one carries
MTA_FEEDS: Tuple[FeedSpec, ...] = (
    FeedSpec("ace", f"{MTA_FEED_URL}-ace", frozenset({"A", "C", "E", "H"})),
    FeedSpec("bdfm", f"{MTA_FEED_URL}-bdfm", frozenset({"B", "D", "F", "FX", "M", "FS"})),
    FeedSpec("g", f"{MTA_FEED_URL}-g", frozenset({"G"})),
    FeedSpec("jz", f"{MTA_FEED_URL}-jz", frozenset({"J", "Z"})),
    FeedSpec("nqrw", f"{MTA_FEED_URL}-nqrw", frozenset({"N", "Q", "R", "W"})),
    FeedSpec("l", f"{MTA_FEED_URL}-l", frozenset({"L"})),
    FeedSpec(
        "1234567",
        MTA_FEED_URL,
        frozenset({"1", "2", "3", "4", "5", "5X", "6", "6X", "7", "7X", "GS"}),
    ),
)

DEFAULT_TIMEOUT = 10  # seconds, per feed
DEFAULT_CACHE_TTL = 30  # seconds


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_arrivals(
    feed_data: bytes,
    feed: FeedSpec,
    station_id: str,
    direction: Direction,
    now: datetime,
) -> ArrivalMap:
    """
    Parse arrivals for one station from a GTFS-Realtime feed.

    Args:
        feed_data: Raw protobuf bytes.
        feed: The feed the bytes came from; only its own routes are accepted.
        station_id: Parent or platform stop ID (e.g., "127" or "127N").
        direction: Only arrivals at platforms in this direction are kept.
        now: Arrivals at or before this instant are dropped.

    Returns:
        route_id -> arrivals, in feed order.

    Raises:
        FetchError: If the bytes are not a valid FeedMessage.
        NoDataError: If the feed has no entities.
    """
    message = gtfs_realtime_pb2.FeedMessage()
    try:
        message.ParseFromString(feed_data)
    except DecodeError as e:
        raise FetchError(f"Failed to decode feed {feed.name}: {e}") from e

    if not message.entity:
        raise NoDataError(f"Feed {feed.name} contains no entities")

    station_base = base_stop_id(station_id)
    arrivals: ArrivalMap = {}

    for entity in message.entity:
        if not entity.HasField("trip_update"):
            continue

        trip_update = entity.trip_update
        route_id = trip_update.trip.route_id
        # NOTE: SCHEDULED trips are reported as real-time predictions
        is_real_time = (
            trip_update.trip.schedule_relationship == gtfs_realtime_pb2.TripDescriptor.SCHEDULED
        )

        for stop_time_update in trip_update.stop_time_update:
            stop_id = stop_time_update.stop_id
            if base_stop_id(stop_id) != station_base:
                continue
            if route_id not in feed.route_ids:
                continue
            if Direction.from_stop_id(stop_id) is not direction:
                continue
            if not (stop_time_update.HasField("arrival") and stop_time_update.arrival.HasField("time")):
                continue

            arrival_time = datetime.fromtimestamp(stop_time_update.arrival.time, tz=timezone.utc)
            if arrival_time <= now:
                continue

            arrivals.setdefault(route_id, []).append(
                Arrival(arrival_time=arrival_time, direction=direction, is_real_time=is_real_time)
            )

    return arrivals


def merge_feed_results(results: Iterable[FeedResult]) -> ArrivalMap:
    """Concatenate per-feed arrivals by route and sort each route by time."""
    merged: ArrivalMap = {}
    for result in results:
        for route_id, arrivals in result.arrivals.items():
            merged.setdefault(route_id, []).extend(arrivals)
    for arrivals in merged.values():
        arrivals.sort(key=lambda arrival: arrival.arrival_time)
    return merged


class MTAClient:
    """Fetches and parses MTA GTFS-Realtime data."""

    def __init__(
        self,
        feeds: Sequence[FeedSpec] = MTA_FEEDS,
        timeout: float = DEFAULT_TIMEOUT,
        cache_ttl: float = DEFAULT_CACHE_TTL,
        api_key: Optional[str] = None,
        session: Optional[requests.Session] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """
        Initialize the MTA client.

        Args:
            feeds: Feeds to query on every call.
            timeout: Per-feed request timeout in seconds.
            cache_ttl: Seconds to reuse downloaded feed bytes; 0 disables caching.
            api_key: Optional MTA API key, sent as the x-api-key header.
            session: Optional requests session (shared across feed threads).
            clock: Returns the current time as an aware datetime.
        """
        self.feeds = tuple(feeds)
        self.timeout = timeout
        self._clock = clock
        self._session = session or requests.Session()
        self._headers = {"x-api-key": api_key} if api_key else {}
        self._cache: Dict[str, Tuple[bytes, float]] = {}  # feed_url -> (data, timestamp)
        self._cache_ttl = cache_ttl
        self._max_cache_size = max(10, len(self.feeds))
        self._cache_lock = threading.Lock()
        self._url_locks: Dict[str, threading.Lock] = {}

    def get_arrivals(self, station_id: str, direction: Direction) -> ArrivalMap:
        """
        Get real-time arrivals at a station, grouped by route.

        All feeds are fetched in parallel. A failing feed contributes nothing
        and does not affect the others.

        Args:
            station_id: MTA stop ID (e.g., "127" or "127N")
            direction: Direction.UPTOWN or Direction.DOWNTOWN

        Returns:
            route_id -> list of future Arrival objects sorted by arrival time.

        Raises:
            FetchError: If every feed failed.
        """
        now = self._clock()
        results = self.fetch_feeds(station_id, direction, now)

        failures = [result for result in results if not result.ok]
        for result in failures:
            logger.warning(f"Feed {result.feed.name} unavailable: {result.error}")
        if results and len(failures) == len(results):
            raise FetchError(f"No feed returned usable data for station {station_id}")

        return merge_feed_results(results)

    def fetch_feeds(self, station_id: str, direction: Direction, now: datetime) -> List[FeedResult]:
        """Fetch and parse every feed concurrently; waits for all of them."""
        if not self.feeds:
            return []

        results: List[FeedResult] = []
        with ThreadPoolExecutor(max_workers=len(self.feeds), thread_name_prefix="feed") as executor:
            futures = {
                executor.submit(self._fetch_one, feed, station_id, direction, now): feed
                for feed in self.feeds
            }
            for future in as_completed(futures):
                feed = futures[future]
                try:
                    results.append(future.result())
                except Exception as e:
                    logger.exception(f"Unexpected error processing feed {feed.name}")
                    results.append(FeedResult(feed=feed, error=FetchError(str(e))))
        return results

    def _fetch_one(self, feed: FeedSpec, station_id: str, direction: Direction, now: datetime) -> FeedResult:
        try:
            feed_data = self._fetch_feed(feed.url)
            arrivals = parse_arrivals(feed_data, feed, station_id, direction, now)
        except NoDataError as e:
            logger.warning(str(e))
            return FeedResult(feed=feed)
        except FetchError as e:
            return FeedResult(feed=feed, error=e)
        return FeedResult(feed=feed, arrivals=arrivals)

    def _fetch_feed(self, feed_url: str) -> bytes:
        """
        Fetch and cache a GTFS-Realtime feed.

        Args:
            feed_url: Full URL to the feed.

        Returns:
            Raw protobuf bytes.

        Raises:
            FetchError: On network errors, timeouts and non-2xx responses.
        """
        if self._cache_ttl <= 0:
            return self._download(feed_url)

        cached = self._cached(feed_url)
        if cached is not None:
            return cached

        # One download per URL at a time; concurrent callers reuse its result
        with self._cache_lock:
            url_lock = self._url_locks.setdefault(feed_url, threading.Lock())
        with url_lock:
            cached = self._cached(feed_url)
            if cached is not None:
                return cached

            data = self._download(feed_url)
            now = time.time()
            with self._cache_lock:
                self._evict_expired_cache(now)
                if len(self._cache) >= self._max_cache_size:
                    oldest_key = min(self._cache.keys(), key=lambda k: self._cache[k][1])
                    del self._cache[oldest_key]
                self._cache[feed_url] = (data, now)
            return data

    def _cached(self, feed_url: str) -> Optional[bytes]:
        with self._cache_lock:
            if feed_url in self._cache:
                data, timestamp = self._cache[feed_url]
                if time.time() - timestamp < self._cache_ttl:
                    logger.debug(f"Using cached data for {feed_url}")
                    return data
        return None

    def _download(self, feed_url: str) -> bytes:
        logger.debug(f"Fetching {feed_url}")
        try:
            response = self._session.get(feed_url, timeout=self.timeout, headers=self._headers)
            response.raise_for_status()
        except requests.RequestException as e:
            raise FetchError(f"Failed to fetch {feed_url}: {e}") from e
        return response.content

    def _evict_expired_cache(self, current_time: float) -> None:
        """Remove expired cache entries. Caller holds the cache lock."""
        expired_keys = [
            url for url, (_, timestamp) in self._cache.items()
            if current_time - timestamp >= self._cache_ttl
        ]
        for key in expired_keys:
            del self._cache[key]

        if expired_keys:
            logger.debug(f"Evicted {len(expired_keys)} expired cache entries")

    def clear_cache(self) -> None:
        """Manually clear the cache."""
        with self._cache_lock:
            self._cache.clear()

    def close(self) -> None:
        self.clear_cache()
        self._session.close()

"""RumpyTrain - nearest MTA subway stations with real-time arrivals."""

__version__ = "0.1.0"

from .exceptions import FetchError, LoadError, NoDataError, RowParseError
from .formatting import format_arrivals
from .gtfs_loader import (
    StationCatalog,
    load_station_catalog,
    load_station_catalog_from_url,
    load_station_catalog_from_zip,
)
from .models import Arrival, Direction, FeedSpec, Route, Station, StationBoard
from .mta_client import MTA_FEEDS, MTAClient
from .ranking import rank_stations
from .station_tracker import NearbyStationTracker

__all__ = [
    "NearbyStationTracker",
    "MTAClient",
    "MTA_FEEDS",
    "StationCatalog",
    "load_station_catalog",
    "load_station_catalog_from_url",
    "load_station_catalog_from_zip",
    "rank_stations",
    "format_arrivals",
    "Arrival",
    "Direction",
    "FeedSpec",
    "Route",
    "Station",
    "StationBoard",
    "FetchError",
    "LoadError",
    "NoDataError",
    "RowParseError",
]

"""GTFS static data loader for MTA subway data."""

import csv
import io
import logging
import os
import zipfile
from types import MappingProxyType
from typing import Callable, Dict, Iterator, List, Mapping, Optional, Set, Tuple

import requests

from .exceptions import LoadError, RowParseError
from .models import Route, Station, base_stop_id

logger = logging.getLogger(__name__)

# MTA GTFS static data URL
MTA_GTFS_URL = "https://rrgtfsfeeds.s3.amazonaws.com/gtfs_subway.zip"

# Column positions within each table (the header row is not inspected)
ROUTE_ID_COL, ROUTE_NAME_COL, ROUTE_COLOR_COL = 1, 2, 7
TRIP_ROUTE_COL, TRIP_ID_COL = 0, 1
STOP_TIME_TRIP_COL, STOP_TIME_STOP_COL = 0, 1
STOP_ID_COL, STOP_NAME_COL, STOP_LAT_COL, STOP_LON_COL, STOP_TYPE_COL = 0, 1, 2, 3, 4

PARENT_STATION = "1"

TableReader = Callable[[str], str]


def _parse_line(line: str) -> List[str]:
    """Parse one physical line; a quote left open never runs into the next line."""
    try:
        return next(csv.reader([line], strict=True), [])
    except csv.Error as e:
        raise RowParseError(f"Malformed row {line[:80]!r}: {e}") from e


def _rows(csv_content: str, min_columns: int) -> Iterator[List[str]]:
    """Yield trimmed data rows, skipping the header and any malformed or short row."""
    for line in csv_content.split("\n")[1:]:
        line = line.rstrip("\r")
        if not line.strip():
            continue
        try:
            row = _parse_line(line)
        except RowParseError as e:
            logger.debug(f"Skipping row: {e}")
            continue
        if len(row) < min_columns:
            logger.debug(f"Skipping short row: {row}")
            continue
        yield [cell.strip() for cell in row]


def load_routes(csv_content: str) -> Dict[str, Route]:
    """Parse routes.txt into route_id -> Route."""
    routes: Dict[str, Route] = {}
    for row in _rows(csv_content, ROUTE_NAME_COL + 1):
        route_id = row[ROUTE_ID_COL]
        if not route_id:
            continue
        color = row[ROUTE_COLOR_COL] if len(row) > ROUTE_COLOR_COL else ""
        routes[route_id] = Route(route_id=route_id, short_name=row[ROUTE_NAME_COL] or route_id, color_hex=color)
    logger.debug(f"Loaded {len(routes)} routes")
    return routes


def load_trips(csv_content: str) -> Dict[str, str]:
    """Parse trips.txt into trip_id -> route_id."""
    trip_routes: Dict[str, str] = {}
    for row in _rows(csv_content, TRIP_ID_COL + 1):
        route_id, trip_id = row[TRIP_ROUTE_COL], row[TRIP_ID_COL]
        if route_id and trip_id:
            trip_routes[trip_id] = route_id
    logger.debug(f"Loaded {len(trip_routes)} trip-route mappings")
    return trip_routes


def build_stop_routes(csv_content: str, trip_routes: Mapping[str, str]) -> Dict[str, Set[str]]:
    """
    Parse stop_times.txt into base stop_id -> {route_ids}.

    stop_times references child platforms (F23N, F23S), so entries are keyed by
    the base id shared with the parent station. Rows whose trip is not in
    trip_routes are dropped.
    """
    stop_routes: Dict[str, Set[str]] = {}
    for row in _rows(csv_content, STOP_TIME_STOP_COL + 1):
        route_id = trip_routes.get(row[STOP_TIME_TRIP_COL])
        stop_id = row[STOP_TIME_STOP_COL]
        if route_id is None or not stop_id:
            continue
        stop_routes.setdefault(base_stop_id(stop_id), set()).add(route_id)
    logger.debug(f"Created {len(stop_routes)} stop-route mappings")
    return stop_routes


def _parse_station(row: List[str]) -> Tuple[str, str, float, float]:
    try:
        latitude = float(row[STOP_LAT_COL])
        longitude = float(row[STOP_LON_COL])
    except ValueError as e:
        raise RowParseError(f"Invalid coordinates for stop {row[STOP_ID_COL]!r}: {e}") from e
    return row[STOP_ID_COL], row[STOP_NAME_COL], latitude, longitude


def load_stations(
    csv_content: str,
    routes: Mapping[str, Route],
    stop_routes: Mapping[str, Set[str]],
) -> List[Station]:
    """Parse stops.txt, keeping only parent stations (location_type 1)."""
    stations: List[Station] = []
    for row in _rows(csv_content, STOP_TYPE_COL + 1):
        if row[STOP_TYPE_COL] != PARENT_STATION:
            continue
        try:
            stop_id, name, latitude, longitude = _parse_station(row)
        except RowParseError as e:
            logger.debug(f"Skipping stop row: {e}")
            continue

        station_routes = sorted(
            (routes[route_id] for route_id in stop_routes.get(stop_id, ()) if route_id in routes),
            key=lambda route: route.short_name,
        )
        stations.append(
            Station(
                stop_id=stop_id,
                name=name,
                latitude=latitude,
                longitude=longitude,
                routes=tuple(station_routes),
            )
        )
    logger.debug(f"Loaded {len(stations)} parent stations")
    return stations


class StationCatalog:
    """Immutable, queryable set of parent stations with their serving routes."""

    def __init__(self, stations: List[Station], routes: Mapping[str, Route]):
        self._stations: Tuple[Station, ...] = tuple(stations)
        self._by_id: Dict[str, Station] = {station.stop_id: station for station in self._stations}
        self._routes = MappingProxyType(dict(routes))

    @property
    def stations(self) -> Tuple[Station, ...]:
        return self._stations

    @property
    def routes(self) -> Mapping[str, Route]:
        return self._routes

    def __len__(self) -> int:
        return len(self._stations)

    def __iter__(self) -> Iterator[Station]:
        return iter(self._stations)

    def get_station(self, stop_id: str) -> Station:
        """Get station by stop_id; platform ids like "127N" resolve to their parent."""
        station = self._by_id.get(stop_id) or self._by_id.get(base_stop_id(stop_id))
        if station is None:
            raise ValueError(f"Station {stop_id} not found")
        return station

    def find_stations_by_name(self, name: str) -> List[Station]:
        """Find stations by name (partial match)."""
        name_lower = name.lower()
        return [station for station in self._stations if name_lower in station.name.lower()]

    def routes_for_station(self, stop_id: str) -> List[Route]:
        return list(self.get_station(stop_id).routes)


def _load_stage(read_table: TableReader, table: str, parse: Callable[[str], object], empty):
    try:
        content = read_table(table)
    except LoadError as e:
        logger.error(f"{e}; continuing without it")
        return empty
    return parse(content)


def build_station_catalog(read_table: TableReader) -> StationCatalog:
    """
    Build the StationCatalog from the four reference tables.

    Tables are read in dependency order: routes -> trips -> stop_times -> stops.
    A table that cannot be read yields an empty stage rather than an error.

    Args:
        read_table: Returns the text of a table by file name, or raises LoadError.

    Returns:
        StationCatalog.
    """
    routes = _load_stage(read_table, "routes.txt", load_routes, {})
    trip_routes = _load_stage(read_table, "trips.txt", load_trips, {})
    stop_routes = _load_stage(
        read_table, "stop_times.txt", lambda content: build_stop_routes(content, trip_routes), {}
    )
    stations = _load_stage(
        read_table, "stops.txt", lambda content: load_stations(content, routes, stop_routes), []
    )
    logger.info(f"Loaded {len(stations)} stations and {len(routes)} routes")
    return StationCatalog(stations, routes)


def load_station_catalog(directory: str) -> StationCatalog:
    """Load GTFS data from a directory of local CSV files."""
    logger.info(f"Loading GTFS data from {directory}")

    def read_table(table: str) -> str:
        try:
            with open(os.path.join(directory, table), "r", encoding="utf-8-sig") as f:
                return f.read()
        except (OSError, UnicodeDecodeError) as e:
            raise LoadError(table, str(e)) from e

    return build_station_catalog(read_table)


def _zip_reader(zip_file: zipfile.ZipFile) -> TableReader:
    def read_table(table: str) -> str:
        try:
            return zip_file.read(table).decode("utf-8-sig")
        except (KeyError, OSError, UnicodeDecodeError, zipfile.BadZipFile) as e:
            raise LoadError(table, str(e)) from e

    return read_table


def load_station_catalog_from_zip(source) -> StationCatalog:
    """Load GTFS data from a zip archive (path or file-like object)."""
    try:
        with zipfile.ZipFile(source) as zip_file:
            return build_station_catalog(_zip_reader(zip_file))
    except (OSError, zipfile.BadZipFile) as e:
        raise LoadError("GTFS archive", str(e)) from e


def load_station_catalog_from_url(
    url: str = MTA_GTFS_URL,
    timeout: float = 60,
    session: Optional[requests.Session] = None,
) -> StationCatalog:
    """Download and load GTFS data from MTA S3."""
    logger.info(f"Downloading GTFS data from {url}")
    http = session or requests
    try:
        response = http.get(url, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as e:
        logger.error(f"Failed to download GTFS data: {e}")
        raise LoadError("GTFS archive", str(e)) from e
    return load_station_catalog_from_zip(io.BytesIO(response.content))

"""Proximity ranking of stations around a coordinate."""

import math
from typing import Iterable, List, Optional, Tuple

from .models import Station

EARTH_RADIUS_M = 6371008.8
DEFAULT_STATION_LIMIT = 6


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in meters between two WGS84 points."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(a)))


def rank_stations(
    stations: Iterable[Station],
    latitude: float,
    longitude: float,
    limit: Optional[int] = DEFAULT_STATION_LIMIT,
) -> List[Tuple[Station, float]]:
    """
    Sort stations by distance from a point.

    Args:
        stations: Stations to rank, in catalog order.
        latitude: Reference latitude.
        longitude: Reference longitude.
        limit: Number of nearest stations to return, or None for all.

    Returns:
        List of (station, distance in meters), nearest first. Equal distances
        keep their catalog order.
    """
    ranked = [
        (station, haversine_m(latitude, longitude, station.latitude, station.longitude))
        for station in stations
    ]
    ranked.sort(key=lambda item: item[1])
    if limit is None:
        return ranked
    return ranked[: max(0, limit)]

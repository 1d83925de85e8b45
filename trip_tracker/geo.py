"""Geospatial utilities (no external dependencies)."""

from __future__ import annotations

import math
from typing import Iterable

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Compute Haversine distance in kilometres between two lat/lon points.

    Args:
        lat1: Latitude 1 in degrees.
        lon1: Longitude 1 in degrees.
        lat2: Latitude 2 in degrees.
        lon2: Longitude 2 in degrees.

    Returns:
        Great-circle distance in km on a sphere of radius 6371 km.
    """

    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2.0) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2.0) ** 2
    # rounding can push `a` a hair above 1 for antipodal points
    a = min(1.0, a)
    c = 2.0 * math.atan2(math.sqrt(a), math.sqrt(1.0 - a))
    return EARTH_RADIUS_KM * c


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Haversine distance in meters."""

    return haversine_km(lat1, lon1, lat2, lon2) * 1000.0


def path_length_km(path: Iterable[tuple[float, float]]) -> float:
    """Sum of consecutive great-circle legs of an ordered (lat, lng) path.

    0.0 for an empty or single-point path.
    """

    total = 0.0
    prev: tuple[float, float] | None = None
    for lat, lng in path:
        if prev is not None:
            total += haversine_km(prev[0], prev[1], lat, lng)
        prev = (lat, lng)
    return total


def mps_to_kmh(speed_mps: float | None) -> float:
    """Convert provider speed (m/s) to km/h; a missing speed counts as 0."""

    return (speed_mps or 0.0) * 3.6

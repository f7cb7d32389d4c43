"""
Geodesy Utilities
=================

Pure functions on WGS84 coordinates. No state.

    - haversine_km: great-circle distance on a spherical Earth
    - initial_bearing: heading from one point towards another
    - interpolate: linear position along a segment in degree space
"""

import math
from typing import Tuple


EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """
    Great-circle distance between two points in kilometres.

    Example:
        >>> round(haversine_km(0.0, 0.0, 0.0, 1.0), 2)
        111.19
    """
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)

    a = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def initial_bearing(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Initial great-circle bearing in degrees, normalised to [0, 360)."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_lambda = math.radians(lng2 - lng1)

    x = math.sin(d_lambda) * math.cos(phi2)
    y = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(d_lambda)
    return math.degrees(math.atan2(x, y)) % 360.0


def interpolate(
    lat1: float,
    lng1: float,
    lat2: float,
    lng2: float,
    fraction: float,
) -> Tuple[float, float]:
    """Point at ``fraction`` (0..1) of the way from start to end."""
    return (
        lat1 + (lat2 - lat1) * fraction,
        lng1 + (lng2 - lng1) * fraction,
    )

"""
Geometry Module
===============

Great-circle distance and heading helpers.
"""

from traffic_scaler.geometry.geodesy import (
    EARTH_RADIUS_KM,
    haversine_km,
    initial_bearing,
    interpolate,
)

__all__ = ["EARTH_RADIUS_KM", "haversine_km", "initial_bearing", "interpolate"]

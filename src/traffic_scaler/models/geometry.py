"""
Geometry Models
===============

Map-space primitives shared by the pipeline and the query layer.

All coordinates are WGS84 degrees. A viewport is an axis-aligned
latitude/longitude rectangle as reported by the map client:

    {"north": 17.50, "south": 17.30, "east": 78.60, "west": 78.35}

A rectangle whose west edge lies east of its east edge crosses the
antimeridian and is treated as wrapping around it.
"""

import math
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class GeoPoint:
    """A latitude/longitude pair."""

    lat: float
    lng: float


@dataclass(frozen=True, slots=True)
class Bounds:
    """
    Viewport rectangle in degrees.

    Attributes:
        north: Northern edge latitude
        south: Southern edge latitude
        east: Eastern edge longitude
        west: Western edge longitude
    """

    north: float
    south: float
    east: float
    west: float

    @property
    def is_valid(self) -> bool:
        """True when all edges are finite and south does not exceed north."""
        edges = (self.north, self.south, self.east, self.west)
        if not all(math.isfinite(e) for e in edges):
            return False
        return self.south <= self.north

    @property
    def wraps_antimeridian(self) -> bool:
        return self.west > self.east

    def contains(self, lat: float, lng: float) -> bool:
        """Inclusive point-in-rectangle test."""
        if lat < self.south or lat > self.north:
            return False
        if self.wraps_antimeridian:
            return lng >= self.west or lng <= self.east
        return self.west <= lng <= self.east

    def longitude_ranges(self) -> tuple:
        """Longitude spans covered, split in two when wrapping."""
        if self.wraps_antimeridian:
            return ((self.west, 180.0), (-180.0, self.east))
        return ((self.west, self.east),)

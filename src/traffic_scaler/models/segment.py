"""
Road Segment Models
===================

Directed road segments produced by the segment processor.

A segment is immutable once created for a fetch cycle. The vehicle
count assigned during distribution produces a new segment instance
(``dataclasses.replace``) rather than mutating the original.
"""

from dataclasses import dataclass, field
from typing import Tuple

from traffic_scaler.models.geometry import GeoPoint


@dataclass(frozen=True, slots=True)
class RoadSegment:
    """
    Directed road segment with speed and congestion data.

    Attributes:
        segment_id: Identifier unique within a fetch cycle
        start_lat: Start latitude
        start_lng: Start longitude
        end_lat: End latitude
        end_lng: End longitude
        length_km: Great-circle length in kilometres
        free_flow_speed: Uncongested speed (km/h)
        current_speed: Observed or synthesised speed (km/h)
        congestion: 100 * (1 - current/free_flow), clamped to [0, 100]
        vehicle_count: Vehicles allocated to this segment
        synthetic: Whether the segment comes from the densification grid
    """

    segment_id: str
    start_lat: float
    start_lng: float
    end_lat: float
    end_lng: float
    length_km: float
    free_flow_speed: float
    current_speed: float
    congestion: float
    vehicle_count: int = 0
    synthetic: bool = False

    def __post_init__(self) -> None:
        """Validate invariants."""
        if not 0.0 <= self.congestion <= 100.0:
            raise ValueError("congestion must be within [0, 100]")
        if self.length_km < 0:
            raise ValueError("length_km must be non-negative")
        if self.vehicle_count < 0:
            raise ValueError("vehicle_count must be non-negative")

    @property
    def midpoint(self) -> GeoPoint:
        return GeoPoint(
            lat=(self.start_lat + self.end_lat) / 2,
            lng=(self.start_lng + self.end_lng) / 2,
        )


@dataclass(frozen=True, slots=True)
class TrafficData:
    """
    Ordered segment set of one fetch cycle.

    Attributes:
        segments: Segments in processing order
        total_length_km: Sum of segment lengths
        total_vehicles: Sum of allocated vehicle counts (0 before allocation)
    """

    segments: Tuple[RoadSegment, ...] = field(default_factory=tuple)
    total_length_km: float = 0.0
    total_vehicles: int = 0

    @property
    def segment_count(self) -> int:
        return len(self.segments)

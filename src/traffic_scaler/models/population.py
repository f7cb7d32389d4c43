"""
Population Models
=================

Synthetic vehicles and roadside units.

Vehicles are created in bulk on every refresh and never mutated
afterwards; a refresh replaces the whole population. They use slotted
frozen dataclasses because populations reach millions of records.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class VehicleStatus(str, Enum):
    """Operational status of a vehicle."""

    ACTIVE = "Active"
    INACTIVE = "Inactive"


class RSUStatus(str, Enum):
    """Operational status of a roadside unit."""

    ACTIVE = "Active"
    INACTIVE = "Inactive"


@dataclass(frozen=True, slots=True)
class Vehicle:
    """
    Synthetic vehicle record.

    Attributes:
        vehicle_id: Unique identifier within a population
        owner_name: Display name of the owner
        vehicle_type: Vehicle category (car, two_wheeler, ...)
        trust_score: Integer trust score within the type's range
        lat: Latitude
        lng: Longitude
        speed: Speed in km/h
        heading: Bearing in degrees [0, 360)
        status: Active or inactive
        segment_id: Segment the vehicle was generated on
        cluster_count: Set only on overview representatives; the number
            of vehicles the marker stands for
    """

    vehicle_id: str
    owner_name: str
    vehicle_type: str
    trust_score: int
    lat: float
    lng: float
    speed: float
    heading: float
    status: VehicleStatus
    segment_id: str
    cluster_count: Optional[int] = None

    def to_dict(self) -> dict:
        """Export in the dashboard's vehicle shape."""
        data = {
            "vehicle_id": self.vehicle_id,
            "owner_name": self.owner_name,
            "vehicle_type": self.vehicle_type,
            "trust_score": self.trust_score,
            "location": {"lat": self.lat, "lng": self.lng},
            "speed": round(self.speed, 1),
            "heading": round(self.heading, 1),
            "status": self.status.value,
            "segment_id": self.segment_id,
        }
        if self.cluster_count is not None:
            data["cluster_count"] = self.cluster_count
        return data


@dataclass(frozen=True, slots=True)
class RoadsideUnit:
    """
    Roadside unit (RSU).

    Attributes:
        rsu_id: Identifier
        location_label: Landmark name or originating segment
        status: Active or inactive
        coverage_radius: Coverage radius in metres
        lat: Latitude
        lng: Longitude
        strategic: Whether placed at a configured landmark
    """

    rsu_id: str
    location_label: str
    status: RSUStatus
    coverage_radius: int
    lat: float
    lng: float
    strategic: bool = False

    def to_dict(self) -> dict:
        return {
            "rsu_id": self.rsu_id,
            "location_label": self.location_label,
            "status": self.status.value,
            "coverage_radius": self.coverage_radius,
            "location": {"lat": self.lat, "lng": self.lng},
            "strategic": self.strategic,
        }

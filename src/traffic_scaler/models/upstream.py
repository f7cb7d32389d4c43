"""
Upstream Payload Schemas
========================

Pydantic models for data received from the external traffic provider.

Flow Sample Contract:
    {
        "freeFlowSpeed": 60,
        "currentSpeed": 30,
        "coordinates": [
            {"latitude": 17.385, "longitude": 78.486},
            {"latitude": 17.386, "longitude": 78.489}
        ]
    }

Speeds are optional: the segment processor falls back to defaults when
they are missing. A sample with fewer than two coordinates is valid at
this layer and simply yields no segments. A vertex that fails validation
is kept in place as None so that only the pairs touching it are lost.

Example:
    from traffic_scaler.models.upstream import FlowSample

    sample = FlowSample.model_validate(payload)
    print(len(sample.coordinates))
"""

from datetime import datetime, timezone
from typing import Any, List, Mapping, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Coordinate(BaseModel):
    """One polyline vertex."""

    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)

    class Config:
        frozen = True


def _vertex_or_none(value: Any) -> Optional[Coordinate]:
    if value is None or isinstance(value, Coordinate):
        return value
    try:
        return Coordinate.model_validate(value)
    except ValidationError:
        return None


class CongestionZone(BaseModel):
    """
    Congestion marker shown on the dashboard heatmap.

    Attributes:
        zone_id: Identifier
        zone_name: Display label
        lat: Latitude
        lng: Longitude
        congestion_level: Congestion percentage [0, 100]
        updated_at: When the level was observed
        predicted_by_ml: Whether the level comes from the inference capability
        ml_confidence: Confidence of the predicted level
    """

    zone_id: str = Field(..., alias="id")
    zone_name: str
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    congestion_level: float = Field(..., ge=0, le=100)
    updated_at: datetime = Field(default_factory=_utcnow)
    predicted_by_ml: bool = False
    ml_confidence: Optional[float] = Field(default=None, ge=0, le=1)

    class Config:
        frozen = True
        populate_by_name = True


class FlowSample(BaseModel):
    """
    Sparse traffic-flow sample from the external provider.

    Attributes:
        free_flow_speed: Uncongested speed (km/h), optional
        current_speed: Observed speed (km/h), optional
        coordinates: Polyline of the sampled road
        congestion_zones: Zones supplied by the provider, carried through
    """

    free_flow_speed: Optional[float] = Field(default=None, alias="freeFlowSpeed", ge=0)
    current_speed: Optional[float] = Field(default=None, alias="currentSpeed", ge=0)
    coordinates: List[Optional[Coordinate]] = Field(default_factory=list)
    congestion_zones: List[CongestionZone] = Field(
        default_factory=list,
        alias="congestionZones",
    )

    class Config:
        frozen = True
        populate_by_name = True

    @field_validator("coordinates", mode="before")
    @classmethod
    def mask_bad_vertices(cls, value: Any) -> Any:
        """Replace each vertex that is not a valid coordinate with None."""
        if not isinstance(value, (list, tuple)):
            return value
        return [_vertex_or_none(v) for v in value]

    @classmethod
    def from_tomtom(cls, payload: Mapping[str, Any]) -> "FlowSample":
        """
        Parse a TomTom ``flowSegmentData`` response.

        TomTom nests the polyline as ``coordinates.coordinate[]``.
        """
        data = payload.get("flowSegmentData") or {}
        coords = data.get("coordinates") or {}
        if isinstance(coords, Mapping):
            coords = coords.get("coordinate") or []
        return cls.model_validate({
            "freeFlowSpeed": data.get("freeFlowSpeed"),
            "currentSpeed": data.get("currentSpeed"),
            "coordinates": coords,
        })


class Incident(BaseModel):
    """
    Traffic incident reported by the provider.

    Incidents are informational; they do not feed the scaling pipeline.
    """

    incident_id: str
    category: str = "unknown"
    severity: int = Field(default=0, ge=0)
    description: str = ""
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    start_time: Optional[datetime] = None

    class Config:
        frozen = True

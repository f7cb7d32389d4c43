"""
Scaler State Models
===================

Lifecycle state, refresh outcomes and statistics of the orchestrator.

State machine:
    EMPTY -> FETCHING -> READY -> FETCHING (refresh) -> READY -> ...

A failed refresh returns to the previous state with the previous
population intact. An upstream failure with nothing cached builds a
synthetic-only population and ends in READY.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class ScalerState(str, Enum):
    """
    Orchestrator lifecycle state.

    Attributes:
        EMPTY: No population cached yet
        FETCHING: A fetch-and-regenerate pipeline is running
        READY: A population is cached and served
    """

    EMPTY = "EMPTY"
    FETCHING = "FETCHING"
    READY = "READY"


class RefreshStatus(str, Enum):
    """
    Outcome of ``fetch_and_scale``.

    Attributes:
        REFRESHED: Pipeline ran and the snapshot was swapped
        CACHED: Cached population is still fresh, nothing ran
        IN_FLIGHT: Another refresh is running, nothing ran
        FAILED: Upstream or pipeline failure, previous snapshot retained
        FALLBACK: Upstream failed with nothing cached; a synthetic
            population was built instead
    """

    REFRESHED = "REFRESHED"
    CACHED = "CACHED"
    IN_FLIGHT = "IN_FLIGHT"
    FAILED = "FAILED"
    FALLBACK = "FALLBACK"


@dataclass(frozen=True, slots=True)
class RefreshResult:
    """Result reported to the caller of a refresh."""

    status: RefreshStatus
    error: Optional[str] = None
    elapsed_seconds: float = 0.0

    @property
    def ran_pipeline(self) -> bool:
        return self.status in (RefreshStatus.REFRESHED, RefreshStatus.FALLBACK)

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "error": self.error,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
        }


@dataclass(frozen=True, slots=True)
class TrafficStats:
    """
    Summary of the cached population.

    ``total_vehicles`` is the sum of per-cluster counts.
    """

    total_vehicles: int
    total_rsus: int
    clusters: int
    segments: int
    last_updated: Optional[datetime]
    state: ScalerState = ScalerState.EMPTY
    total_length_km: float = 0.0
    incidents: int = 0
    refresh_count: int = 0
    failure_count: int = 0
    last_error: Optional[str] = None

    def to_dict(self) -> dict:
        """Export as dictionary for logging/serialization."""
        return {
            "totalVehicles": self.total_vehicles,
            "totalRSUs": self.total_rsus,
            "clusters": self.clusters,
            "segments": self.segments,
            "lastUpdated": self.last_updated.isoformat() if self.last_updated else None,
            "state": self.state.value,
            "totalLengthKm": round(self.total_length_km, 3),
            "incidents": self.incidents,
            "refreshCount": self.refresh_count,
            "failureCount": self.failure_count,
            "lastError": self.last_error,
        }

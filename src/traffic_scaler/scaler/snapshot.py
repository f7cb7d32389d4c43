"""
Traffic Snapshot
================

Immutable bundle of everything one refresh produced.

The orchestrator holds exactly one snapshot reference and replaces it
in a single assignment once a refresh completes, so queries always see
a consistent population. Collections are tuples and the cluster map is
a read-only proxy over frozen clusters; the cell index is sealed once
built.
"""

from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Mapping, Optional, Tuple

from traffic_scaler.models.cluster import CellKey, VehicleCluster
from traffic_scaler.models.population import RoadsideUnit, Vehicle
from traffic_scaler.models.segment import TrafficData
from traffic_scaler.models.upstream import CongestionZone, Incident
from traffic_scaler.pipeline.clustering import CellIndex


@dataclass(frozen=True, slots=True)
class TrafficSnapshot:
    """
    Cached output of one fetch-and-scale cycle.

    Attributes:
        traffic: Allocated segment set
        vehicles: Full vehicle population
        rsus: Placed roadside units
        clusters: Grid clusters (read-only)
        cell_index: Full-membership index for the detail tier
        congestion_zones: Carried-through or derived zones
        incidents: Incidents fetched alongside the flow sample
        generated_at: Completion time, None for the empty snapshot
        synthetic_only: Built without an upstream sample
    """

    traffic: TrafficData = field(default_factory=TrafficData)
    vehicles: Tuple[Vehicle, ...] = ()
    rsus: Tuple[RoadsideUnit, ...] = ()
    clusters: Mapping[CellKey, VehicleCluster] = field(
        default_factory=lambda: MappingProxyType({})
    )
    cell_index: CellIndex = field(default_factory=CellIndex)
    congestion_zones: Tuple[CongestionZone, ...] = ()
    incidents: Tuple[Incident, ...] = ()
    generated_at: Optional[datetime] = None
    synthetic_only: bool = False

    @classmethod
    def empty(cls) -> "TrafficSnapshot":
        return cls()

    @property
    def is_empty(self) -> bool:
        return self.generated_at is None

    @property
    def total_vehicles(self) -> int:
        """Sum of per-cluster counts."""
        return sum(c.count for c in self.clusters.values())

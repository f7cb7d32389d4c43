"""
Cluster Models
==============

Grid-cell aggregate of a vehicle population.

The centroid is maintained with an incremental mean:

    new_avg = (old_avg * old_count + value) / (old_count + 1)

so position memory is O(clusters), not O(vehicles). Only the first
``sample_cap`` members are retained for rendering; members beyond the
cap still contribute to ``count`` and the centroid. Once clustering is
complete a cluster is frozen: its sample becomes a tuple and further
adds or attribute writes raise.
"""

from dataclasses import replace
from typing import Optional, Sequence, Tuple

from traffic_scaler.models.population import Vehicle


CellKey = Tuple[int, int]


class VehicleCluster:
    """
    Running aggregate for one grid cell.

    Attributes:
        key: (floor(lat / grid), floor(lng / grid))
        count: Number of vehicles assigned to the cell
        avg_lat: Mean latitude of all assigned vehicles
        avg_lng: Mean longitude of all assigned vehicles
        vehicles: Bounded sample of member vehicles
        sample_cap: Maximum length of ``vehicles``
    """

    __slots__ = ("key", "count", "avg_lat", "avg_lng", "vehicles", "sample_cap", "_frozen")

    def __init__(self, key: CellKey, sample_cap: int = 1000) -> None:
        if sample_cap < 1:
            raise ValueError("sample_cap must be >= 1")
        self._frozen = False
        self.key = key
        self.count: int = 0
        self.avg_lat: float = 0.0
        self.avg_lng: float = 0.0
        self.vehicles: Sequence[Vehicle] = []
        self.sample_cap = sample_cap

    def __setattr__(self, name: str, value) -> None:
        if getattr(self, "_frozen", False):
            raise AttributeError(f"VehicleCluster {self.key} is frozen")
        object.__setattr__(self, name, value)

    def add(self, vehicle: Vehicle) -> None:
        """Fold one vehicle into the aggregate."""
        if self._frozen:
            raise RuntimeError(f"VehicleCluster {self.key} is frozen")
        n = self.count
        self.avg_lat = (self.avg_lat * n + vehicle.lat) / (n + 1)
        self.avg_lng = (self.avg_lng * n + vehicle.lng) / (n + 1)
        self.count = n + 1
        if len(self.vehicles) < self.sample_cap:
            self.vehicles.append(vehicle)

    def freeze(self) -> "VehicleCluster":
        """Stop accepting members; the sample becomes a tuple."""
        self.vehicles = tuple(self.vehicles)
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def is_saturated(self) -> bool:
        """True when members were dropped from the sample."""
        return self.count > len(self.vehicles)

    def representative(self) -> Optional[Vehicle]:
        """First stored vehicle moved to the centroid and tagged with the count."""
        if not self.vehicles:
            return None
        return replace(
            self.vehicles[0],
            lat=self.avg_lat,
            lng=self.avg_lng,
            cluster_count=self.count,
        )

    def __repr__(self) -> str:
        return (
            f"VehicleCluster(key={self.key}, count={self.count}, "
            f"centroid=({self.avg_lat:.5f}, {self.avg_lng:.5f}))"
        )

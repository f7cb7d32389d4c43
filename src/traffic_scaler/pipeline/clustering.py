"""
Spatial Clustering
==================

Grid-based partitioning of a vehicle population.

Two structures are built from the same grid:

    - ``cluster_vehicles``: one VehicleCluster per occupied cell with a
      running centroid, a running count and a bounded member sample.
      Used by the overview and sampled viewport tiers.
    - ``CellIndex``: every vehicle reference bucketed by cell. Used by
      the detail tier to filter raw coordinates without scanning the
      whole population.

Both are single O(n) passes with no sorting. A vehicle's cell is fixed
by its coordinates at generation time; the population is regenerated on
refresh instead of tracking movement.
"""

import logging
import math
from typing import Dict, Iterable, List, Optional

from traffic_scaler.models.cluster import CellKey, VehicleCluster
from traffic_scaler.models.geometry import Bounds
from traffic_scaler.models.population import Vehicle


logger = logging.getLogger(__name__)


def cell_key(lat: float, lng: float, grid_size: float) -> CellKey:
    """Grid cell of a coordinate: (floor(lat / grid), floor(lng / grid))."""
    return (math.floor(lat / grid_size), math.floor(lng / grid_size))


def cluster_vehicles(
    vehicles: Iterable[Vehicle],
    grid_size: float = 0.01,
    sample_cap: int = 1000,
) -> Dict[CellKey, VehicleCluster]:
    """
    Partition vehicles into grid clusters.

    Args:
        vehicles: Population to partition
        grid_size: Cell size in degrees
        sample_cap: Members retained per cluster

    Returns:
        Mapping of cell key to frozen cluster, in first-seen order
    """
    if grid_size <= 0:
        raise ValueError("grid_size must be positive")

    clusters: Dict[CellKey, VehicleCluster] = {}
    for vehicle in vehicles:
        key = cell_key(vehicle.lat, vehicle.lng, grid_size)
        cluster = clusters.get(key)
        if cluster is None:
            cluster = clusters[key] = VehicleCluster(key, sample_cap=sample_cap)
        cluster.add(vehicle)

    for cluster in clusters.values():
        cluster.freeze()
    return clusters


class CellIndex:
    """
    Full-membership grid index for bounding-box queries.

    Holds references only; vehicles are shared with the population.
    An index returned by ``build`` is sealed and rejects further adds.

    Example:
        index = CellIndex.build(vehicles, grid_size=0.01)
        visible = index.query(bounds, limit=100_000)
    """

    def __init__(self, grid_size: float = 0.01) -> None:
        if grid_size <= 0:
            raise ValueError("grid_size must be positive")
        self.grid_size = grid_size
        self._cells: Dict[CellKey, List[Vehicle]] = {}
        self._size: int = 0
        self._sealed = False

    @classmethod
    def build(cls, vehicles: Iterable[Vehicle], grid_size: float = 0.01) -> "CellIndex":
        index = cls(grid_size)
        for vehicle in vehicles:
            index.add(vehicle)
        index._sealed = True
        return index

    def add(self, vehicle: Vehicle) -> None:
        if self._sealed:
            raise RuntimeError("CellIndex is sealed")
        key = cell_key(vehicle.lat, vehicle.lng, self.grid_size)
        self._cells.setdefault(key, []).append(vehicle)
        self._size += 1

    def __len__(self) -> int:
        return self._size

    def query(self, bounds: Bounds, limit: Optional[int] = None) -> List[Vehicle]:
        """
        Vehicles whose coordinates fall inside ``bounds``.

        Results are ordered by cell, then by insertion, so repeated
        queries against the same index return the same list.

        Args:
            bounds: Viewport rectangle
            limit: Maximum number of results

        Returns:
            Matching vehicles, at most ``limit``
        """
        result: List[Vehicle] = []
        for key in self._candidate_keys(bounds):
            for vehicle in self._cells[key]:
                if bounds.contains(vehicle.lat, vehicle.lng):
                    result.append(vehicle)
                    if limit is not None and len(result) >= limit:
                        return result
        return result

    def _candidate_keys(self, bounds: Bounds) -> List[CellKey]:
        """Occupied cells overlapping the bounds, in row-major order."""
        g = self.grid_size
        row_lo = math.floor(bounds.south / g)
        row_hi = math.floor(bounds.north / g)

        col_ranges = [
            (math.floor(west / g), math.floor(east / g))
            for west, east in bounds.longitude_ranges()
        ]
        span = (row_hi - row_lo + 1) * sum(hi - lo + 1 for lo, hi in col_ranges)

        # Large viewports: walk occupied cells instead of the full range
        if span > len(self._cells):
            return sorted(
                key for key in self._cells
                if row_lo <= key[0] <= row_hi
                and any(lo <= key[1] <= hi for lo, hi in col_ranges)
            )

        keys = []
        for row in range(row_lo, row_hi + 1):
            for lo, hi in col_ranges:
                for col in range(lo, hi + 1):
                    if (row, col) in self._cells:
                        keys.append((row, col))
        return keys

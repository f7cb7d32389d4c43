"""
Viewport Query Layer
====================

Zoom-adaptive selection of vehicles for a map viewport.

Tiers (defaults):

    | Zoom              | Strategy                                  | Cap                      |
    |-------------------|-------------------------------------------|--------------------------|
    | no bounds, z < 8  | one representative per cluster, moved to  | 5,000                    |
    |                   | the centroid and tagged with the count    |                          |
    | 8 <= z < 13       | clusters with centroid in bounds, up to   | min(50,000, 10^(z - 6))  |
    |                   | max(1, floor((z - 8) * 50)) random members|                          |
    |                   | each, drawn without replacement           |                          |
    | z >= 13           | raw vehicles inside bounds                | 100,000                  |

Rendering cost scales with zoom instead of with population size. The
boundaries and cap formula are performance knobs exposed in
ViewportConfig.

Sampling in the middle tier is random per call. Only the detail tier is
a pure filter and returns the same result for the same snapshot.

Out-of-range input never raises: a missing or non-finite zoom and
malformed bounds fall back to the overview tier.
"""

import heapq
import logging
import math
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Mapping, Optional, Tuple

from traffic_scaler.config import ViewportConfig
from traffic_scaler.models.cluster import CellKey, VehicleCluster
from traffic_scaler.models.geometry import Bounds
from traffic_scaler.models.population import Vehicle
from traffic_scaler.pipeline.clustering import CellIndex


logger = logging.getLogger(__name__)


class ViewportTier(str, Enum):
    """
    Sampling strategy chosen for a query.

    Attributes:
        OVERVIEW: One marker per cluster
        SAMPLED: Density-proportional sample of cluster members
        DETAIL: Raw vehicles inside the viewport
    """

    OVERVIEW = "OVERVIEW"
    SAMPLED = "SAMPLED"
    DETAIL = "DETAIL"


@dataclass(frozen=True, slots=True)
class ViewportResult:
    """Vehicles selected for a viewport and the tier that produced them."""

    tier: ViewportTier
    vehicles: List[Vehicle] = field(default_factory=list)
    zoom: float = 0.0

    @property
    def count(self) -> int:
        return len(self.vehicles)


class ViewportSampler:
    """
    Translates (bounds, zoom) into a bounded vehicle selection.

    Attributes:
        config: Tier boundaries and caps
        rng: Random source for the sampled tier

    Example:
        sampler = ViewportSampler(ViewportConfig())
        result = sampler.select(clusters, cell_index, bounds, zoom=10)
        print(result.tier, result.count)
    """

    def __init__(
        self,
        config: Optional[ViewportConfig] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.config = config or ViewportConfig()
        self.rng = rng or random.Random()

    # -------------------------------------------------------------------------
    # Tier policy
    # -------------------------------------------------------------------------

    def resolve(
        self,
        bounds: Optional[Bounds],
        zoom: Optional[float],
    ) -> Tuple[Optional[Bounds], float, ViewportTier]:
        """
        Sanitise query parameters and pick a tier.

        Returns:
            (usable bounds or None, zoom, tier)
        """
        if bounds is not None and not bounds.is_valid:
            logger.debug(f"Ignoring malformed bounds: {bounds}")
            bounds = None

        if zoom is None or not math.isfinite(zoom):
            return bounds, 0.0, ViewportTier.OVERVIEW

        if bounds is None or zoom < self.config.overview_max_zoom:
            return bounds, zoom, ViewportTier.OVERVIEW
        if zoom < self.config.detail_min_zoom:
            return bounds, zoom, ViewportTier.SAMPLED
        return bounds, zoom, ViewportTier.DETAIL

    def samples_per_cluster(self, zoom: float) -> int:
        """max(1, floor((zoom - overview_max_zoom) * samples_per_zoom_level))"""
        c = self.config
        return max(1, math.floor((zoom - c.overview_max_zoom) * c.samples_per_zoom_level))

    def sampled_cap(self, zoom: float) -> int:
        """min(sampled_cap_max, base ** (zoom - offset))"""
        c = self.config
        exponent = zoom - c.sampled_cap_zoom_offset
        # Guard the power against overflow for absurd zoom values
        if exponent * math.log10(c.sampled_cap_base) >= math.log10(c.sampled_cap_max):
            return c.sampled_cap_max
        return max(1, int(c.sampled_cap_base ** exponent))

    # -------------------------------------------------------------------------
    # Selection
    # -------------------------------------------------------------------------

    def select(
        self,
        clusters: Mapping[CellKey, VehicleCluster],
        cell_index: CellIndex,
        bounds: Optional[Bounds],
        zoom: Optional[float],
    ) -> ViewportResult:
        """
        Select vehicles for a viewport.

        Args:
            clusters: Cluster map of the current snapshot
            cell_index: Full cell index of the current snapshot
            bounds: Viewport rectangle, or None for the whole map
            zoom: Map zoom level

        Returns:
            ViewportResult with the tier and the selected vehicles
        """
        bounds, zoom, tier = self.resolve(bounds, zoom)

        if tier is ViewportTier.OVERVIEW:
            vehicles = self._overview(clusters, bounds)
        elif tier is ViewportTier.SAMPLED:
            vehicles = self._sampled(clusters, bounds, zoom)
        else:
            vehicles = cell_index.query(bounds, limit=self.config.detail_cap)

        logger.debug(f"Viewport query: tier={tier.value}, zoom={zoom}, results={len(vehicles)}")
        return ViewportResult(tier=tier, vehicles=vehicles, zoom=zoom)

    def _overview(
        self,
        clusters: Mapping[CellKey, VehicleCluster],
        bounds: Optional[Bounds],
    ) -> List[Vehicle]:
        """One centroid marker per cluster, most populous first when capped."""
        candidates = [
            c for c in clusters.values()
            if c.vehicles and (bounds is None or bounds.contains(c.avg_lat, c.avg_lng))
        ]
        cap = self.config.overview_cap
        if len(candidates) > cap:
            candidates = heapq.nlargest(cap, candidates, key=lambda c: c.count)
        return [c.representative() for c in candidates]

    def _sampled(
        self,
        clusters: Mapping[CellKey, VehicleCluster],
        bounds: Bounds,
        zoom: float,
    ) -> List[Vehicle]:
        """Random members of every visible cluster, truncated at the cap."""
        per_cluster = self.samples_per_cluster(zoom)
        cap = self.sampled_cap(zoom)

        visible = [
            c for c in clusters.values()
            if c.vehicles and bounds.contains(c.avg_lat, c.avg_lng)
        ]
        # Truncation would favour the first clusters; spread it instead
        if len(visible) * per_cluster > cap:
            self.rng.shuffle(visible)

        result: List[Vehicle] = []
        for cluster in visible:
            k = min(per_cluster, len(cluster.vehicles), cap - len(result))
            result.extend(self.rng.sample(cluster.vehicles, k))
            if len(result) >= cap:
                break
        return result

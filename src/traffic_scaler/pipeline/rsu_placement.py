"""
RSU Placement
=============

Places roadside units over the road network under a minimum pairwise
separation constraint.

Placement order:
    1. Strategic locations (configured landmarks), each kept only if it
       respects the separation constraint
    2. Synthetic candidates drawn on segments, segment chosen with
       probability proportional to (1 + congestion), position uniform
       along the segment

A candidate closer than ``min_distance_km`` to any placed RSU is
rejected. The synthetic phase has a bounded budget of candidate draws;
when it runs out, whatever was placed so far is returned.
"""

import logging
import math
import random
from itertools import accumulate
from typing import List, Optional, Sequence

from traffic_scaler.config import StrategicLocation
from traffic_scaler.geometry import haversine_km, interpolate
from traffic_scaler.models.population import RSUStatus, RoadsideUnit
from traffic_scaler.models.segment import TrafficData


logger = logging.getLogger(__name__)


class RSUPlacer:
    """
    Roadside unit placement under a separation constraint.

    Attributes:
        density_km: One RSU per this many kilometres of road
        min_distance_km: Minimum distance between any two RSUs
        min_count: Lower bound of the target count
        max_count: Upper bound of the target count
        strategic_locations: Landmarks placed first
    """

    def __init__(
        self,
        density_km: float = 2.5,
        min_distance_km: float = 0.5,
        min_count: int = 10,
        max_count: int = 500,
        coverage_radius_range: tuple = (300, 1000),
        inactive_ratio: float = 0.1,
        attempts_per_rsu: int = 20,
        strategic_locations: Sequence[StrategicLocation] = (),
        rng: Optional[random.Random] = None,
    ) -> None:
        if density_km <= 0:
            raise ValueError("density_km must be positive")
        if min_count > max_count:
            raise ValueError("min_count must not exceed max_count")

        self.density_km = density_km
        self.min_distance_km = min_distance_km
        self.min_count = min_count
        self.max_count = max_count
        self.coverage_radius_range = coverage_radius_range
        self.inactive_ratio = inactive_ratio
        self.attempts_per_rsu = attempts_per_rsu
        self.strategic_locations = list(strategic_locations)
        self.rng = rng or random.Random()

        logger.info(
            f"RSUPlacer initialized: density={density_km}km, "
            f"min_distance={min_distance_km}km, "
            f"strategic={len(self.strategic_locations)}"
        )

    def target_count(self, traffic: TrafficData) -> int:
        """RSUs wanted for a segment set."""
        wanted = math.ceil(traffic.total_length_km / self.density_km)
        return max(self.min_count, min(self.max_count, wanted))

    def place(self, traffic: TrafficData) -> List[RoadsideUnit]:
        """
        Place RSUs for a segment set.

        Args:
            traffic: Segment set of the current cycle

        Returns:
            Placed RSUs, possibly fewer than the target
        """
        target = self.target_count(traffic)
        placed: List[RoadsideUnit] = []

        for location in self.strategic_locations:
            if len(placed) >= target:
                break
            if self._is_separated(location.lat, location.lng, placed):
                placed.append(self._make_rsu(
                    len(placed), location.name, location.lat, location.lng, strategic=True,
                ))

        segments = traffic.segments
        if segments and len(placed) < target:
            cum_weights = list(accumulate(1.0 + s.congestion for s in segments))
            budget = (target - len(placed)) * self.attempts_per_rsu

            while budget > 0 and len(placed) < target:
                budget -= 1
                segment = self.rng.choices(segments, cum_weights=cum_weights, k=1)[0]
                lat, lng = interpolate(
                    segment.start_lat, segment.start_lng,
                    segment.end_lat, segment.end_lng,
                    self.rng.random(),
                )
                if self._is_separated(lat, lng, placed):
                    placed.append(self._make_rsu(
                        len(placed), f"Segment {segment.segment_id}", lat, lng,
                    ))

        if len(placed) < target:
            logger.warning(
                f"Placed {len(placed)} of {target} RSUs before the "
                f"{self.min_distance_km}km separation constraint was exhausted"
            )

        return placed

    def _is_separated(self, lat: float, lng: float, placed: List[RoadsideUnit]) -> bool:
        """True when (lat, lng) is at least min_distance_km from every RSU."""
        for rsu in placed:
            if haversine_km(lat, lng, rsu.lat, rsu.lng) < self.min_distance_km:
                return False
        return True

    def _make_rsu(
        self,
        index: int,
        label: str,
        lat: float,
        lng: float,
        strategic: bool = False,
    ) -> RoadsideUnit:
        low, high = self.coverage_radius_range
        status = (
            RSUStatus.INACTIVE
            if self.rng.random() < self.inactive_ratio
            else RSUStatus.ACTIVE
        )
        return RoadsideUnit(
            rsu_id=f"RSU-{index + 1:03d}",
            location_label=label,
            status=status,
            coverage_radius=self.rng.randint(low, high),
            lat=lat,
            lng=lng,
            strategic=strategic,
        )

"""
Population Generator
====================

Distributes a target vehicle count over road segments and emits
synthetic vehicle records.

Allocation:
    Each segment is weighted by ``length_km * (1 + congestion / 100)``,
    so longer and more congested roads carry more vehicles. The target
    is split proportionally to the weights and rounded per segment.
    When the target is at least the number of segments with positive
    length, every such segment gets at least one vehicle. The total is
    an approximation of the target, not an exact match.

Generation:
    - Position: uniform fraction along the segment plus a small jitter
    - Speed: segment current speed plus Gaussian noise, floored at 0
    - Heading: initial bearing of the segment
    - Type: weighted draw from the configured type table
    - Trust: uniform integer within the type's range
"""

import logging
import math
import random
from dataclasses import replace
from itertools import accumulate
from typing import Dict, List, Optional, Sequence

from traffic_scaler.config import VehicleTypeConfig
from traffic_scaler.geometry import initial_bearing, interpolate
from traffic_scaler.models.population import Vehicle, VehicleStatus
from traffic_scaler.models.segment import RoadSegment, TrafficData


logger = logging.getLogger(__name__)


def type_code(vehicle_type: str) -> str:
    """Two-letter id code: 'car' -> 'CA', 'two_wheeler' -> 'TW'."""
    parts = [p for p in vehicle_type.split("_") if p]
    if len(parts) > 1:
        return (parts[0][0] + parts[1][0]).upper()
    return vehicle_type[:2].upper()


def segment_weight(segment: RoadSegment) -> float:
    """Allocation weight of a segment."""
    return segment.length_km * (1.0 + segment.congestion / 100.0)


class PopulationGenerator:
    """
    Synthetic vehicle population generator.

    Attributes:
        vehicle_target: Desired total number of vehicles
        vehicle_types: Weight and trust range per vehicle type
        owner_names: Pool of owner names
        rng: Random source

    Example:
        generator = PopulationGenerator(
            vehicle_target=100_000,
            vehicle_types=settings.vehicles.types,
            owner_names=settings.vehicles.owner_names,
        )
        traffic = generator.allocate(traffic)
        vehicles = generator.generate(traffic)
    """

    def __init__(
        self,
        vehicle_target: int,
        vehicle_types: Dict[str, VehicleTypeConfig],
        owner_names: Sequence[str],
        speed_noise_kmh: float = 5.0,
        position_jitter_deg: float = 0.0002,
        inactive_ratio: float = 0.05,
        id_prefix: str = "HYD",
        rng: Optional[random.Random] = None,
    ) -> None:
        """
        Initialize population generator.

        Args:
            vehicle_target: Target total vehicle count (>= 0)
            vehicle_types: Mapping of type name to weight and trust range
            owner_names: Non-empty pool of owner names
            speed_noise_kmh: Standard deviation of speed noise
            position_jitter_deg: Max jitter added to each coordinate
            inactive_ratio: Probability a vehicle is inactive
            id_prefix: Prefix of generated vehicle ids
            rng: Random source, a fresh ``random.Random`` when omitted
        """
        if vehicle_target < 0:
            raise ValueError("vehicle_target must be non-negative")
        if not owner_names:
            raise ValueError("owner_names must not be empty")
        weights = [t.weight for t in vehicle_types.values()]
        if not weights or sum(weights) <= 0:
            raise ValueError("vehicle type weights must have a positive sum")

        self.vehicle_target = vehicle_target
        self.vehicle_types = dict(vehicle_types)
        self.owner_names = list(owner_names)
        self.speed_noise_kmh = speed_noise_kmh
        self.position_jitter_deg = position_jitter_deg
        self.inactive_ratio = inactive_ratio
        self.id_prefix = id_prefix
        self.rng = rng or random.Random()

        self._type_names: List[str] = list(self.vehicle_types)
        self._cum_weights: List[float] = list(accumulate(weights))
        self._type_codes: Dict[str, str] = {t: type_code(t) for t in self._type_names}

        logger.info(
            f"PopulationGenerator initialized: target={vehicle_target:,} vehicles, "
            f"types={self._type_names}"
        )

    # -------------------------------------------------------------------------
    # Allocation
    # -------------------------------------------------------------------------

    def allocate(self, traffic: TrafficData) -> TrafficData:
        """
        Assign a vehicle count to every segment.

        Args:
            traffic: Segment set from the processor

        Returns:
            New TrafficData whose segments carry ``vehicle_count`` and
            whose ``total_vehicles`` is their sum
        """
        weights = [segment_weight(s) if s.length_km > 0 else 0.0 for s in traffic.segments]
        total_weight = sum(weights)

        if total_weight <= 0 or self.vehicle_target == 0:
            segments = tuple(replace(s, vehicle_count=0) for s in traffic.segments)
            return TrafficData(segments, traffic.total_length_km, 0)

        positive = sum(1 for w in weights if w > 0)
        floor_one = self.vehicle_target >= positive

        segments = []
        total = 0
        for segment, weight in zip(traffic.segments, weights):
            if weight <= 0:
                count = 0
            else:
                count = round(self.vehicle_target * weight / total_weight)
                if floor_one:
                    count = max(1, count)
            total += count
            segments.append(replace(segment, vehicle_count=count))

        return TrafficData(tuple(segments), traffic.total_length_km, total)

    # -------------------------------------------------------------------------
    # Generation
    # -------------------------------------------------------------------------

    def generate(self, traffic: TrafficData) -> List[Vehicle]:
        """
        Generate vehicles for every segment of an allocated segment set.

        Vehicle ids are numbered serially across the whole population.
        """
        vehicles: List[Vehicle] = []
        for segment in traffic.segments:
            vehicles.extend(self.generate_for_segment(segment, start_serial=len(vehicles)))
        return vehicles

    def generate_for_segment(
        self,
        segment: RoadSegment,
        start_serial: int = 0,
    ) -> List[Vehicle]:
        """
        Generate ``segment.vehicle_count`` vehicles along one segment.

        Args:
            segment: Allocated segment
            start_serial: Serial number of the first vehicle

        Returns:
            List of vehicles positioned along the segment
        """
        count = segment.vehicle_count
        if count <= 0:
            return []

        rng = self.rng
        jitter = self.position_jitter_deg
        heading = initial_bearing(
            segment.start_lat, segment.start_lng,
            segment.end_lat, segment.end_lng,
        )
        types = rng.choices(self._type_names, cum_weights=self._cum_weights, k=count)

        vehicles = []
        for offset, vehicle_type in enumerate(types):
            lat, lng = interpolate(
                segment.start_lat, segment.start_lng,
                segment.end_lat, segment.end_lng,
                rng.random(),
            )
            if jitter > 0:
                lat += rng.uniform(-jitter, jitter)
                lng += rng.uniform(-jitter, jitter)

            speed = segment.current_speed
            if self.speed_noise_kmh > 0:
                speed += rng.gauss(0.0, self.speed_noise_kmh)

            type_config = self.vehicle_types[vehicle_type]
            status = (
                VehicleStatus.INACTIVE
                if rng.random() < self.inactive_ratio
                else VehicleStatus.ACTIVE
            )

            vehicles.append(Vehicle(
                vehicle_id=(
                    f"{self.id_prefix}-{self._type_codes[vehicle_type]}-"
                    f"{start_serial + offset:07d}"
                ),
                owner_name=rng.choice(self.owner_names),
                vehicle_type=vehicle_type,
                trust_score=rng.randint(type_config.trust_min, type_config.trust_max),
                lat=lat,
                lng=lng,
                speed=max(0.0, speed),
                heading=heading,
                status=status,
                segment_id=segment.segment_id,
            ))

        return vehicles


def allocation_error(allocated: int, target: int) -> float:
    """Relative deviation of an allocation from its target."""
    if target == 0:
        return 0.0 if allocated == 0 else math.inf
    return abs(allocated - target) / target

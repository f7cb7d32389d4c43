"""
Road Segment Processor
======================

Turns a sparse flow sample into directed road segments.

This processor:
    - Splits the sample polyline into one segment per consecutive
      coordinate pair
    - Computes each segment's great-circle length
    - Derives congestion = 100 * (1 - current / free_flow), clamped
    - Optionally lays a synthetic grid over the configured region

Synthetic Densification:
    Real sensor coverage is sparse relative to the road network, so when
    a sample yields fewer segments than the configured minimum a uniform
    lat/lng grid is laid over the region. Every cell emits one horizontal
    and one vertical segment with a random free-flow speed and congestion.
    This is a fill strategy, not a prediction: nothing in the grid is
    derived from observed data.

Malformed input (no sample, fewer than two coordinates) yields no
segments and never raises. A pair touching an invalid vertex is skipped
and the remaining pairs still produce segments.
"""

import logging
import random
from typing import List, Optional

from traffic_scaler.config import RegionConfig
from traffic_scaler.geometry import haversine_km
from traffic_scaler.models.segment import RoadSegment, TrafficData
from traffic_scaler.models.upstream import FlowSample


logger = logging.getLogger(__name__)


DEFAULT_FREE_FLOW_SPEED = 60.0
DEFAULT_SPEED_RATIO = 0.8


def congestion_from_speeds(current_speed: float, free_flow_speed: float) -> float:
    """
    Congestion percentage from the speed ratio, clamped to [0, 100].

    A non-positive free-flow speed carries no information and yields 0.
    """
    if free_flow_speed <= 0:
        return 0.0
    raw = 100.0 * (1.0 - current_speed / free_flow_speed)
    return max(0.0, min(100.0, raw))


class RoadSegmentProcessor:
    """
    Builds segment sets from flow samples and the synthetic grid.

    Attributes:
        region: Bounding region used for densification
        grid_steps: Steps per axis of the synthetic grid
        min_segments: Segment count below which densification is advised
        rng: Random source for synthetic speeds and congestion

    Example:
        processor = RoadSegmentProcessor(region=RegionConfig())
        traffic = processor.process(sample)
        if processor.needs_densification(traffic):
            traffic = processor.densify(traffic)
    """

    def __init__(
        self,
        region: RegionConfig,
        grid_steps: int = 30,
        min_segments: int = 100,
        synthetic_max_congestion: float = 80.0,
        synthetic_speed_range: tuple = (40.0, 80.0),
        rng: Optional[random.Random] = None,
    ) -> None:
        """
        Initialize segment processor.

        Args:
            region: Bounding box covered by the synthetic grid
            grid_steps: Grid cells per axis (grid_steps x grid_steps cells)
            min_segments: Densify when a sample yields fewer segments
            synthetic_max_congestion: Upper bound of synthetic congestion (%)
            synthetic_speed_range: (low, high) synthetic free-flow speed (km/h)
            rng: Random source, a fresh ``random.Random`` when omitted
        """
        if grid_steps < 1:
            raise ValueError("grid_steps must be >= 1")
        low, high = synthetic_speed_range
        if low <= 0 or high < low:
            raise ValueError("synthetic_speed_range must be positive and ordered")

        self.region = region
        self.grid_steps = grid_steps
        self.min_segments = min_segments
        self.synthetic_max_congestion = synthetic_max_congestion
        self.synthetic_speed_range = (low, high)
        self.rng = rng or random.Random()

        logger.info(
            f"RoadSegmentProcessor initialized: grid={grid_steps}x{grid_steps}, "
            f"min_segments={min_segments}"
        )

    def process(self, sample: Optional[FlowSample]) -> TrafficData:
        """
        Convert a flow sample into segments.

        Args:
            sample: Flow sample, or None when no data is available

        Returns:
            TrafficData with one segment per consecutive pair of valid
            coordinates
        """
        if sample is None:
            return TrafficData()

        coords = sample.coordinates
        if len(coords) < 2:
            logger.debug(f"Flow sample has {len(coords)} coordinates, no segments")
            return TrafficData()

        free_flow = sample.free_flow_speed or DEFAULT_FREE_FLOW_SPEED
        current = sample.current_speed
        if current is None:
            current = free_flow * DEFAULT_SPEED_RATIO
        congestion = congestion_from_speeds(current, free_flow)

        segments: List[RoadSegment] = []
        total_length = 0.0
        skipped = 0

        for start, end in zip(coords, coords[1:]):
            if start is None or end is None:
                skipped += 1
                continue
            length = haversine_km(
                start.latitude, start.longitude,
                end.latitude, end.longitude,
            )
            total_length += length
            segments.append(RoadSegment(
                segment_id=f"segment-{len(segments)}",
                start_lat=start.latitude,
                start_lng=start.longitude,
                end_lat=end.latitude,
                end_lng=end.longitude,
                length_km=length,
                free_flow_speed=free_flow,
                current_speed=current,
                congestion=congestion,
            ))

        if skipped:
            logger.debug(f"Skipped {skipped} coordinate pairs with an invalid vertex")

        return TrafficData(segments=tuple(segments), total_length_km=total_length)

    def needs_densification(self, traffic: TrafficData) -> bool:
        """True when the segment set is below the configured minimum."""
        return traffic.segment_count < self.min_segments

    def densify(self, traffic: TrafficData) -> TrafficData:
        """
        Append the synthetic grid to an existing segment set.

        Args:
            traffic: Segments derived from observed data (may be empty)

        Returns:
            New TrafficData with the observed segments followed by
            2 * grid_steps^2 synthetic ones
        """
        region = self.region
        lat_step = (region.north - region.south) / self.grid_steps
        lng_step = (region.east - region.west) / self.grid_steps

        segments = list(traffic.segments)
        total_length = traffic.total_length_km
        observed = len(segments)

        for i in range(self.grid_steps):
            lat = region.south + i * lat_step
            for j in range(self.grid_steps):
                lng = region.west + j * lng_step

                horizontal = self._synthetic_segment(
                    f"h-{len(segments)}", lat, lng, lat, lng + lng_step,
                )
                vertical = self._synthetic_segment(
                    f"v-{len(segments) + 1}", lat, lng, lat + lat_step, lng,
                )
                segments.append(horizontal)
                segments.append(vertical)
                total_length += horizontal.length_km + vertical.length_km

        logger.warning(
            f"Only {observed} observed segments (< {self.min_segments}), "
            f"added {len(segments) - observed} synthetic segments"
        )

        return TrafficData(
            segments=tuple(segments),
            total_length_km=total_length,
            total_vehicles=traffic.total_vehicles,
        )

    def _synthetic_segment(
        self,
        segment_id: str,
        start_lat: float,
        start_lng: float,
        end_lat: float,
        end_lng: float,
    ) -> RoadSegment:
        """Create one grid segment with random speed and congestion."""
        low, high = self.synthetic_speed_range
        free_flow = self.rng.uniform(low, high)
        congestion = self.rng.uniform(0.0, self.synthetic_max_congestion)
        current = free_flow * (1.0 - congestion / 100.0)

        return RoadSegment(
            segment_id=segment_id,
            start_lat=start_lat,
            start_lng=start_lng,
            end_lat=end_lat,
            end_lng=end_lng,
            length_km=haversine_km(start_lat, start_lng, end_lat, end_lng),
            free_flow_speed=free_flow,
            current_speed=current,
            congestion=congestion,
            synthetic=True,
        )

"""
Traffic Source
==============

Source abstraction for upstream traffic data.

This module provides the TrafficSource protocol and MockTrafficSource
implementation, which produces flow samples and incidents WITHOUT
network calls.

Design Rules:
    - fetch_flow raises on failure; the orchestrator decides what to keep
    - fetch_incidents is best-effort; callers ignore its failures
    - Mock provides deterministic, stable output for testing
"""

import logging
import math
from datetime import datetime, timezone
from typing import List, Protocol

from traffic_scaler.config import RegionConfig
from traffic_scaler.models.upstream import Coordinate, FlowSample, Incident


logger = logging.getLogger(__name__)


class TrafficSource(Protocol):
    """
    Protocol for upstream traffic backends.

    This interface is implemented by:
        - MockTrafficSource (offline, deterministic)
        - TomTomTrafficSource (production)
    """

    async def fetch_flow(self) -> FlowSample:
        """
        Fetch one flow sample.

        Raises:
            UpstreamError: When the sample cannot be obtained
        """
        ...

    async def fetch_incidents(self) -> List[Incident]:
        """Fetch current incidents in the region."""
        ...


class MockTrafficSource:
    """
    Deterministic mock traffic source.

    Emits a polyline running diagonally across the region with a gentle
    sinusoidal bend. Speeds follow a slow sinusoid over successive calls,
    so the congestion of consecutive refreshes varies smoothly.

    Attributes:
        region: Region the polyline is laid across
        points: Number of polyline vertices
        free_flow_speed: Free-flow speed reported on every sample
        variation_period: Calls per full speed cycle
        flow_calls: Number of fetch_flow calls so far
        incident_calls: Number of fetch_incidents calls so far
    """

    def __init__(
        self,
        region: RegionConfig,
        points: int = 24,
        free_flow_speed: float = 60.0,
        variation_period: int = 30,
    ) -> None:
        """
        Initialize mock traffic source.

        Args:
            region: Region the polyline is laid across
            points: Number of polyline vertices (>= 2)
            free_flow_speed: Free-flow speed (km/h)
            variation_period: Calls for one complete speed cycle
        """
        if points < 2:
            raise ValueError("points must be >= 2")

        self.region = region
        self.points = points
        self.free_flow_speed = free_flow_speed
        self.variation_period = max(1, variation_period)
        self.flow_calls: int = 0
        self.incident_calls: int = 0

        logger.info(
            f"MockTrafficSource initialized: points={points}, "
            f"free_flow={free_flow_speed}km/h, period={variation_period} calls"
        )

    async def fetch_flow(self) -> FlowSample:
        """Generate the next deterministic flow sample."""
        phase = 2 * math.pi * self.flow_calls / self.variation_period
        self.flow_calls += 1

        # Current speed oscillates between 20% and 80% of free flow
        current_speed = self.free_flow_speed * (0.5 + 0.3 * math.sin(phase))

        return FlowSample(
            free_flow_speed=self.free_flow_speed,
            current_speed=round(current_speed, 2),
            coordinates=self._polyline(),
        )

    async def fetch_incidents(self) -> List[Incident]:
        """Three fixed incidents along the polyline."""
        self.incident_calls += 1
        polyline = self._polyline()
        now = datetime.now(timezone.utc)

        incidents = []
        for n, (fraction, category, severity) in enumerate([
            (0.25, "accident", 3),
            (0.50, "roadworks", 1),
            (0.75, "jam", 2),
        ]):
            vertex = polyline[int(fraction * (len(polyline) - 1))]
            incidents.append(Incident(
                incident_id=f"mock-incident-{n + 1}",
                category=category,
                severity=severity,
                description=f"Simulated {category}",
                lat=vertex.latitude,
                lng=vertex.longitude,
                start_time=now,
            ))
        return incidents

    def _polyline(self) -> List[Coordinate]:
        """Diagonal polyline from the south-west to the north-east corner."""
        region = self.region
        lat_span = region.north - region.south
        lng_span = region.east - region.west
        margin = 0.1

        coords = []
        for i in range(self.points):
            t = margin + (1 - 2 * margin) * i / (self.points - 1)
            bend = 0.05 * math.sin(2 * math.pi * t)
            coords.append(Coordinate(
                latitude=region.south + lat_span * min(1.0, max(0.0, t + bend)),
                longitude=region.west + lng_span * t,
            ))
        return coords

"""
Test Configuration
==================

Pytest fixtures and test configuration for TrafficScaler.
"""

import asyncio
import random
from typing import List, Optional

import pytest

from traffic_scaler.config import RegionConfig, VehiclesConfig, ViewportConfig
from traffic_scaler.models.upstream import Coordinate, FlowSample, Incident
from traffic_scaler.pipeline import PopulationGenerator, RoadSegmentProcessor, RSUPlacer
from traffic_scaler.query import ViewportSampler
from traffic_scaler.scaler import TrafficScaler
from traffic_scaler.sources import UpstreamError


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeTrafficSource:
    """Traffic source that counts calls and can be told to fail."""

    def __init__(
        self,
        sample: Optional[FlowSample] = None,
        incidents: Optional[List[Incident]] = None,
        delay: float = 0.0,
    ) -> None:
        self.sample = sample
        self.incidents = incidents or []
        self.delay = delay
        self.fail_flow = False
        self.fail_incidents = False
        self.flow_calls = 0
        self.incident_calls = 0

    async def fetch_flow(self) -> FlowSample:
        self.flow_calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_flow:
            raise UpstreamError("simulated outage")
        return self.sample

    async def fetch_incidents(self) -> List[Incident]:
        self.incident_calls += 1
        if self.fail_incidents:
            raise UpstreamError("incidents down")
        return list(self.incidents)


@pytest.fixture
def rng():
    """Seeded random source."""
    return random.Random(1234)


@pytest.fixture
def region():
    """Default (Hyderabad) region."""
    return RegionConfig()


@pytest.fixture
def equator_sample():
    """One-degree polyline along the equator at half the free-flow speed."""
    return FlowSample(
        free_flow_speed=60,
        current_speed=30,
        coordinates=[
            Coordinate(latitude=0.0, longitude=0.0),
            Coordinate(latitude=0.0, longitude=1.0),
        ],
    )


@pytest.fixture
def city_sample():
    """Short polyline through the centre of the default region."""
    return FlowSample(
        free_flow_speed=60,
        current_speed=24,
        coordinates=[
            Coordinate(latitude=17.38, longitude=78.40),
            Coordinate(latitude=17.40, longitude=78.45),
            Coordinate(latitude=17.42, longitude=78.50),
            Coordinate(latitude=17.45, longitude=78.52),
        ],
    )


@pytest.fixture
def sample_incident():
    return Incident(
        incident_id="inc-1",
        category="accident",
        severity=3,
        description="Collision",
        lat=17.40,
        lng=78.45,
    )


@pytest.fixture
def fake_source(city_sample, sample_incident):
    return FakeTrafficSource(sample=city_sample, incidents=[sample_incident])


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_scaler(region, rng, clock):
    """Factory for small, seeded orchestrators."""

    def _make(
        source,
        vehicle_target: int = 5000,
        cache_timeout: float = 60.0,
        **kwargs,
    ) -> TrafficScaler:
        vehicles = VehiclesConfig()
        return TrafficScaler(
            source=source,
            processor=RoadSegmentProcessor(
                region=region, grid_steps=5, min_segments=10, rng=rng,
            ),
            generator=PopulationGenerator(
                vehicle_target=vehicle_target,
                vehicle_types=vehicles.types,
                owner_names=vehicles.owner_names,
                rng=rng,
            ),
            rsu_placer=RSUPlacer(
                density_km=5.0,
                min_distance_km=0.5,
                min_count=5,
                max_count=50,
                rng=rng,
            ),
            sampler=ViewportSampler(ViewportConfig(), rng=rng),
            cache_timeout=cache_timeout,
            clock=clock,
            **kwargs,
        )

    return _make


@pytest.fixture
def make_source():
    """Factory for fake sources with custom samples or delays."""
    return FakeTrafficSource

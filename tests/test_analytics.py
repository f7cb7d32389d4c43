"""
Analytics Tests
===============

Derived figures over a hand-built snapshot.
"""

from dataclasses import replace
from datetime import datetime, timezone
from types import MappingProxyType

import pytest

from traffic_scaler.models.population import VehicleStatus
from traffic_scaler.models.segment import RoadSegment, TrafficData
from traffic_scaler.observability import TrafficAnalyticsComputer
from traffic_scaler.pipeline import CellIndex, cluster_vehicles
from traffic_scaler.scaler import TrafficSnapshot

from tests.test_clustering import make_vehicle


def _segment(n, congestion):
    return RoadSegment(
        segment_id=f"segment-{n}",
        start_lat=0.0,
        start_lng=0.0,
        end_lat=0.0,
        end_lng=0.01,
        length_km=1.1,
        free_flow_speed=60.0,
        current_speed=60.0 * (1 - congestion / 100),
        congestion=congestion,
    )


@pytest.fixture
def snapshot():
    """Five segments, five vehicles in two cells, one of them inactive."""
    segments = tuple(_segment(n, c) for n, c in enumerate([0.0, 10.0, 20.0, 30.0, 90.0]))
    vehicles = [make_vehicle(i, 0.001, 0.001) for i in range(4)]
    vehicles[1] = replace(
        vehicles[1],
        status=VehicleStatus.INACTIVE,
        speed=0.0,
        vehicle_type="bus",
        trust_score=60,
    )
    vehicles.append(make_vehicle(10, 0.5, 0.5))

    return TrafficSnapshot(
        traffic=TrafficData(segments=segments, total_length_km=5.5),
        vehicles=tuple(vehicles),
        clusters=MappingProxyType(cluster_vehicles(vehicles, 0.01, sample_cap=2)),
        cell_index=CellIndex.build(vehicles, 0.01),
        generated_at=datetime.now(timezone.utc),
    )


class TestTrafficAnalytics:
    """Tests for TrafficAnalyticsComputer."""

    def test_congestion_distribution(self, snapshot):
        """Verify congestion mean, median and p95."""
        analytics = TrafficAnalyticsComputer().compute(snapshot)

        assert analytics.congestion.mean == pytest.approx(30.0)
        assert analytics.congestion.median == pytest.approx(20.0)
        assert analytics.congestion.p95 == pytest.approx(78.0)

    def test_vehicle_figures(self, snapshot):
        """Verify speed, trust, active ratio and type counts."""
        analytics = TrafficAnalyticsComputer().compute(snapshot)

        assert analytics.mean_speed == pytest.approx(32.0)
        assert analytics.mean_trust_score == pytest.approx(76.0)
        assert analytics.active_ratio == pytest.approx(0.8)
        assert analytics.vehicles_by_type == {"car": 4, "bus": 1}

    def test_cluster_figures(self, snapshot):
        """Verify occupancy and saturated cluster count."""
        analytics = TrafficAnalyticsComputer().compute(snapshot)

        assert analytics.mean_cluster_occupancy == pytest.approx(2.5)
        assert analytics.saturated_clusters == 1

    def test_precision(self, snapshot):
        """Verify results are rounded to the configured precision."""
        analytics = TrafficAnalyticsComputer(precision=0).compute(snapshot)
        assert analytics.active_ratio == 1.0

    def test_empty_snapshot(self):
        """Verify an empty snapshot gives zeros."""
        analytics = TrafficAnalyticsComputer().compute(TrafficSnapshot.empty())

        assert analytics.mean_speed == 0.0
        assert analytics.congestion.p95 == 0.0
        assert analytics.vehicles_by_type == {}
        assert analytics.saturated_clusters == 0

    def test_to_dict(self, snapshot):
        """Verify the serialised keys."""
        data = TrafficAnalyticsComputer().compute(snapshot).to_dict()

        assert data["congestion"]["median"] == pytest.approx(20.0)
        assert data["vehiclesByType"]["car"] == 4
        assert data["saturatedClusters"] == 1

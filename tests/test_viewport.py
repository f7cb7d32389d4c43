"""
Viewport Query Tests
====================

Tier selection, per-tier caps and out-of-range input.

Sampling in the middle tier is random, so these tests assert counts
and bounds rather than vehicle identities.
"""

import math
import random

import pytest

from traffic_scaler.config import ViewportConfig
from traffic_scaler.models.geometry import Bounds
from traffic_scaler.pipeline import CellIndex, cluster_vehicles
from traffic_scaler.query import ViewportSampler, ViewportTier

from tests.test_clustering import make_vehicle, scatter


WHOLE_BOX = Bounds(north=1.0, south=0.0, east=1.0, west=0.0)
SMALL_BOX = Bounds(north=0.1, south=0.0, east=0.1, west=0.0)


def build(vehicles, grid_size=0.01, sample_cap=1000):
    return (
        cluster_vehicles(vehicles, grid_size, sample_cap),
        CellIndex.build(vehicles, grid_size),
    )


@pytest.fixture
def sampler(rng):
    return ViewportSampler(ViewportConfig(), rng=rng)


class TestTierPolicy:
    """Tests for tier resolution."""

    @pytest.mark.parametrize(
        "bounds, zoom, tier",
        [
            (None, 5, ViewportTier.OVERVIEW),
            (None, 15, ViewportTier.OVERVIEW),
            (WHOLE_BOX, 5, ViewportTier.OVERVIEW),
            (WHOLE_BOX, 7.99, ViewportTier.OVERVIEW),
            (WHOLE_BOX, 8, ViewportTier.SAMPLED),
            (WHOLE_BOX, 12.9, ViewportTier.SAMPLED),
            (WHOLE_BOX, 13, ViewportTier.DETAIL),
            (WHOLE_BOX, 22, ViewportTier.DETAIL),
        ],
    )
    def test_tiers(self, sampler, bounds, zoom, tier):
        """Verify each zoom and bounds pair resolves to the expected tier."""
        assert sampler.resolve(bounds, zoom)[2] is tier

    @pytest.mark.parametrize("zoom", [None, math.nan, math.inf, -math.inf])
    def test_unusable_zoom_is_overview(self, sampler, zoom):
        """Verify a missing or non-finite zoom falls back to overview."""
        assert sampler.resolve(WHOLE_BOX, zoom)[2] is ViewportTier.OVERVIEW

    def test_inverted_bounds_are_ignored(self, sampler):
        """Verify bounds with south above north are dropped."""
        bounds, _, tier = sampler.resolve(Bounds(north=0.0, south=1.0, east=1.0, west=0.0), 14)
        assert bounds is None
        assert tier is ViewportTier.OVERVIEW

    def test_nan_bounds_are_ignored(self, sampler):
        """Verify bounds with a NaN edge are dropped."""
        bounds = Bounds(north=math.nan, south=0.0, east=1.0, west=0.0)
        assert sampler.resolve(bounds, 14)[2] is ViewportTier.OVERVIEW

    @pytest.mark.parametrize("zoom, expected", [(8, 1), (8.5, 25), (10, 100), (12.9, 245)])
    def test_samples_per_cluster(self, sampler, zoom, expected):
        """Verify the per-cluster sample size ramps with zoom."""
        assert sampler.samples_per_cluster(zoom) == expected

    @pytest.mark.parametrize(
        "zoom, expected",
        [(8, 100), (9, 1000), (10, 10_000), (11, 50_000), (12.9, 50_000), (1000, 50_000)],
    )
    def test_sampled_cap(self, sampler, zoom, expected):
        """Verify the sampled-tier cap grows tenfold per zoom level up to its ceiling."""
        assert sampler.sampled_cap(zoom) == expected

    def test_custom_boundaries(self, rng):
        """Verify configured tier boundaries are honoured."""
        sampler = ViewportSampler(
            ViewportConfig(overview_max_zoom=5, detail_min_zoom=10), rng=rng,
        )
        assert sampler.resolve(WHOLE_BOX, 6)[2] is ViewportTier.SAMPLED
        assert sampler.resolve(WHOLE_BOX, 10)[2] is ViewportTier.DETAIL


class TestOverview:
    """Tests for the overview tier."""

    def test_capped_at_5000(self, sampler):
        """A population spread over ~10,000 cells returns at most 5,000 markers."""
        clusters, index = build(scatter(60_000, random.Random(3)))
        assert len(clusters) > 5000

        result = sampler.select(clusters, index, None, 5)

        assert result.tier is ViewportTier.OVERVIEW
        assert result.count == 5000
        assert all(v.cluster_count for v in result.vehicles)

    def test_one_marker_per_cluster(self, sampler, rng):
        """Verify overview emits one representative per cluster carrying its count."""
        clusters, index = build(scatter(3000, rng, span=0.1))
        result = sampler.select(clusters, index, None, 3)

        assert result.count == len(clusters)
        assert sum(v.cluster_count for v in result.vehicles) == 3000
        centroids = {(c.avg_lat, c.avg_lng) for c in clusters.values()}
        assert {(v.lat, v.lng) for v in result.vehicles} == centroids

    def test_bounds_filter_centroids(self, sampler, rng):
        """Verify overview keeps only clusters whose centroid is in view."""
        clusters, index = build(scatter(5000, rng))
        result = sampler.select(clusters, index, SMALL_BOX, 5)

        assert 0 < result.count < len(clusters)
        assert all(SMALL_BOX.contains(v.lat, v.lng) for v in result.vehicles)

    def test_empty_population(self, sampler):
        """Verify an empty population yields no markers."""
        clusters, index = build([])
        assert sampler.select(clusters, index, None, 5).vehicles == []


class TestSampled:
    """Tests for the sampled tier."""

    def test_all_members_when_below_sample_count(self, sampler, rng):
        """Clusters smaller than the sample size return every stored member."""
        vehicles = scatter(2000, rng, span=0.1)
        clusters, index = build(vehicles)
        result = sampler.select(clusters, index, WHOLE_BOX, 10)

        assert result.tier is ViewportTier.SAMPLED
        assert result.count == 2000
        assert len({v.vehicle_id for v in result.vehicles}) == 2000

    def test_per_cluster_sample_size(self, sampler, rng):
        """Verify each cluster contributes at most the zoom's sample size."""
        vehicles = scatter(4000, rng, span=0.02)
        clusters, index = build(vehicles)
        result = sampler.select(clusters, index, WHOLE_BOX, 8.5)

        expected = sum(min(25, len(c.vehicles)) for c in clusters.values())
        assert result.count == min(expected, sampler.sampled_cap(8.5))
        assert len({v.vehicle_id for v in result.vehicles}) == result.count

    def test_truncated_at_cap(self, sampler, rng):
        """Verify sampled results stop at the zoom's cap."""
        clusters, index = build(scatter(2000, rng, span=0.1))
        result = sampler.select(clusters, index, WHOLE_BOX, 9)
        assert result.count == 1000

    def test_single_small_cluster(self, sampler):
        """Verify a three-vehicle cluster returns all three."""
        vehicles = [make_vehicle(i, 0.005, 0.005) for i in range(3)]
        clusters, index = build(vehicles)
        assert sampler.select(clusters, index, WHOLE_BOX, 12).count == 3

    def test_only_visible_clusters(self, sampler, rng):
        """Verify clusters outside the viewport contribute nothing."""
        clusters, index = build(scatter(5000, rng))
        result = sampler.select(clusters, index, SMALL_BOX, 12)

        visible = [c for c in clusters.values() if SMALL_BOX.contains(c.avg_lat, c.avg_lng)]
        assert result.count == sum(len(c.vehicles) for c in visible)

    def test_no_match(self, sampler, rng):
        """Verify a viewport far from every vehicle returns nothing."""
        clusters, index = build(scatter(1000, rng))
        far = Bounds(north=50.0, south=49.0, east=10.0, west=9.0)
        assert sampler.select(clusters, index, far, 10).vehicles == []


class TestDetail:
    """Tests for the detail tier."""

    def test_raw_filter(self, sampler, rng):
        """Verify detail returns exactly the vehicles inside the viewport."""
        vehicles = scatter(5000, rng)
        clusters, index = build(vehicles, sample_cap=5)
        result = sampler.select(clusters, index, SMALL_BOX, 14)

        expected = {v.vehicle_id for v in vehicles if SMALL_BOX.contains(v.lat, v.lng)}
        assert result.tier is ViewportTier.DETAIL
        assert {v.vehicle_id for v in result.vehicles} == expected

    def test_deterministic(self, sampler, rng):
        """Verify repeated detail queries return the same list."""
        clusters, index = build(scatter(5000, rng))
        first = sampler.select(clusters, index, SMALL_BOX, 15).vehicles
        second = sampler.select(clusters, index, SMALL_BOX, 15).vehicles
        assert first == second

    def test_hard_cap(self, rng):
        """Verify detail results stop at the configured cap."""
        sampler = ViewportSampler(ViewportConfig(detail_cap=100), rng=rng)
        clusters, index = build(scatter(5000, rng))
        assert sampler.select(clusters, index, WHOLE_BOX, 16).count == 100

    def test_no_match(self, sampler, rng):
        """Verify a viewport far from every vehicle returns nothing."""
        clusters, index = build(scatter(1000, rng))
        far = Bounds(north=50.0, south=49.0, east=10.0, west=9.0)
        assert sampler.select(clusters, index, far, 16).vehicles == []

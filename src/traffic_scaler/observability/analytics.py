"""
Analytics Module
================

Compute derived analytics from a traffic snapshot.

This module computes analytics for observability ONLY.
Analytics do NOT influence generation or query results.

Derived from:
    - Segment congestion
    - Vehicle speed, status, type and trust score
    - Cluster occupancy and sample saturation
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict

import numpy as np

from traffic_scaler.models.population import VehicleStatus
from traffic_scaler.scaler.snapshot import TrafficSnapshot


logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CongestionAnalytics:
    """Distribution of segment congestion (%)."""

    mean: float = 0.0
    median: float = 0.0
    p95: float = 0.0


@dataclass(frozen=True, slots=True)
class TrafficAnalytics:
    """
    Complete analytics snapshot for one population.

    All values are DERIVED from the cached snapshot.
    """

    congestion: CongestionAnalytics = field(default_factory=CongestionAnalytics)
    mean_speed: float = 0.0
    active_ratio: float = 0.0
    vehicles_by_type: Dict[str, int] = field(default_factory=dict)
    mean_trust_score: float = 0.0
    mean_cluster_occupancy: float = 0.0
    saturated_clusters: int = 0

    def to_dict(self) -> dict:
        return {
            "congestion": {
                "mean": self.congestion.mean,
                "median": self.congestion.median,
                "p95": self.congestion.p95,
            },
            "meanSpeed": self.mean_speed,
            "activeRatio": self.active_ratio,
            "vehiclesByType": dict(self.vehicles_by_type),
            "meanTrustScore": self.mean_trust_score,
            "meanClusterOccupancy": self.mean_cluster_occupancy,
            "saturatedClusters": self.saturated_clusters,
        }


class TrafficAnalyticsComputer:
    """
    Computes analytics from a snapshot.

    Does NOT mutate the snapshot.
    Does NOT feed back into the pipeline.
    """

    def __init__(self, precision: int = 4) -> None:
        """
        Initialize analytics computer.

        Args:
            precision: Decimal places of reported figures
        """
        self.precision = precision
        logger.info(f"TrafficAnalyticsComputer initialized: precision={precision}")

    def compute(self, snapshot: TrafficSnapshot) -> TrafficAnalytics:
        """
        Compute analytics for a snapshot.

        Args:
            snapshot: Current cached snapshot

        Returns:
            TrafficAnalytics, all zeros for an empty snapshot
        """
        p = self.precision

        congestion = CongestionAnalytics()
        segments = snapshot.traffic.segments
        if segments:
            levels = np.fromiter((s.congestion for s in segments), dtype=float, count=len(segments))
            congestion = CongestionAnalytics(
                mean=round(float(levels.mean()), p),
                median=round(float(np.median(levels)), p),
                p95=round(float(np.percentile(levels, 95)), p),
            )

        vehicles = snapshot.vehicles
        mean_speed = active_ratio = mean_trust = 0.0
        if vehicles:
            n = len(vehicles)
            speeds = np.fromiter((v.speed for v in vehicles), dtype=float, count=n)
            trust = np.fromiter((v.trust_score for v in vehicles), dtype=float, count=n)
            active = np.fromiter(
                (v.status is VehicleStatus.ACTIVE for v in vehicles), dtype=bool, count=n,
            )
            mean_speed = round(float(speeds.mean()), p)
            mean_trust = round(float(trust.mean()), p)
            active_ratio = round(float(active.mean()), p)

        clusters = list(snapshot.clusters.values())
        mean_occupancy = 0.0
        saturated = 0
        if clusters:
            counts = np.fromiter((c.count for c in clusters), dtype=float, count=len(clusters))
            mean_occupancy = round(float(counts.mean()), p)
            saturated = sum(1 for c in clusters if c.is_saturated)

        return TrafficAnalytics(
            congestion=congestion,
            mean_speed=mean_speed,
            active_ratio=active_ratio,
            vehicles_by_type=dict(Counter(v.vehicle_type for v in vehicles)),
            mean_trust_score=mean_trust,
            mean_cluster_occupancy=mean_occupancy,
            saturated_clusters=saturated,
        )

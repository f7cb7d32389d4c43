"""
Observability Module
====================

Analytics derived from the cached population.

Components:
    - TrafficAnalyticsComputer: Computes analytics from a snapshot
    - TrafficAnalytics: Analytics payload
"""

from traffic_scaler.observability.analytics import (
    CongestionAnalytics,
    TrafficAnalytics,
    TrafficAnalyticsComputer,
)

__all__ = [
    "CongestionAnalytics",
    "TrafficAnalytics",
    "TrafficAnalyticsComputer",
]

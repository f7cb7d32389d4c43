"""
Sources Module
==============

Upstream traffic data backends.

Components:
    - TrafficSource: Protocol for flow and incident fetching
    - MockTrafficSource: Deterministic offline source
    - TomTomTrafficSource: TomTom Traffic API client
    - UpstreamError: Raised on upstream failures
"""

from traffic_scaler.sources.source import MockTrafficSource, TrafficSource
from traffic_scaler.sources.tomtom import TomTomTrafficSource, UpstreamError

__all__ = [
    "TrafficSource",
    "MockTrafficSource",
    "TomTomTrafficSource",
    "UpstreamError",
]

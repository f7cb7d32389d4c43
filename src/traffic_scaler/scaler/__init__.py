"""
Scaler Module
=============

Orchestration of the fetch, scale and query cycle.

Components:
    - TrafficScaler: Owns the cached population, refreshes and queries it
    - TrafficSnapshot: Immutable output of one refresh
"""

from traffic_scaler.scaler.orchestrator import TrafficScaler
from traffic_scaler.scaler.snapshot import TrafficSnapshot

__all__ = [
    "TrafficScaler",
    "TrafficSnapshot",
]

"""
Query Module
============

Zoom-adaptive viewport queries over a clustered population.

Components:
    - ViewportSampler: Tier policy and vehicle selection
    - ViewportTier: OVERVIEW / SAMPLED / DETAIL
    - ViewportResult: Selected vehicles and the tier used
"""

from traffic_scaler.query.viewport import ViewportResult, ViewportSampler, ViewportTier

__all__ = [
    "ViewportSampler",
    "ViewportTier",
    "ViewportResult",
]

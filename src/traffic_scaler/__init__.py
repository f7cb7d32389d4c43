"""
TrafficScaler
=============

Traffic data scaling, spatial clustering and viewport query service.

A sparse traffic-flow sample from an external provider is expanded into
a dense road-segment network over a bounding region, populated with a
large synthetic vehicle fleet and roadside units, and clustered on a
spatial grid. Map clients query the cached population by viewport and
zoom level without the pipeline being recomputed per request.

Components:
    - pipeline: Segment processing, population generation, RSU placement, clustering
    - query: Zoom-adaptive viewport sampling
    - scaler: Orchestrator owning the cached snapshot
    - sources: Upstream flow and incident sources
    - inference: External inference capability
    - observability: Derived analytics

Example:
    from traffic_scaler.config import settings
    from traffic_scaler.main import create_traffic_scaler

    scaler = create_traffic_scaler(settings)
    await scaler.fetch_and_scale()
    vehicles = scaler.get_vehicles(bounds, zoom_level=14)
"""

__version__ = "0.1.0"

__all__ = [
    "__version__",
]

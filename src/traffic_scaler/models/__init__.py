"""
Data Models
===========

Typed records for the traffic scaling service.

This module re-exports all data models for convenient access.

Models:
    Geometry:
        - GeoPoint, Bounds: Map-space primitives

    Pipeline:
        - RoadSegment, TrafficData: Processed road network
        - Vehicle, RoadsideUnit: Synthetic population
        - VehicleCluster: Grid-cell aggregate

    Upstream:
        - FlowSample, Coordinate: External flow payload
        - CongestionZone, Incident: Carried-through provider data

    Orchestrator:
        - ScalerState, RefreshStatus, RefreshResult, TrafficStats
"""

from traffic_scaler.models.geometry import Bounds, GeoPoint
from traffic_scaler.models.segment import RoadSegment, TrafficData
from traffic_scaler.models.population import (
    RSUStatus,
    RoadsideUnit,
    Vehicle,
    VehicleStatus,
)
from traffic_scaler.models.cluster import CellKey, VehicleCluster
from traffic_scaler.models.upstream import (
    CongestionZone,
    Coordinate,
    FlowSample,
    Incident,
)
from traffic_scaler.models.stats import (
    RefreshResult,
    RefreshStatus,
    ScalerState,
    TrafficStats,
)

__all__ = [
    # Geometry
    "GeoPoint",
    "Bounds",
    # Pipeline
    "RoadSegment",
    "TrafficData",
    "Vehicle",
    "VehicleStatus",
    "RoadsideUnit",
    "RSUStatus",
    "CellKey",
    "VehicleCluster",
    # Upstream
    "Coordinate",
    "FlowSample",
    "CongestionZone",
    "Incident",
    # Orchestrator
    "ScalerState",
    "RefreshStatus",
    "RefreshResult",
    "TrafficStats",
]

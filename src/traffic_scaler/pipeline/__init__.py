"""
Pipeline Module
===============

Fetch -> process -> generate -> cluster stages of the scaling pipeline.

Components:
    - RoadSegmentProcessor: flow sample to segments, synthetic densification
    - PopulationGenerator: length/congestion-proportional vehicle allocation
    - RSUPlacer: roadside units under a separation constraint
    - cluster_vehicles / CellIndex: grid clustering and full cell index

Every randomised stage takes an injectable ``random.Random``.
"""

from traffic_scaler.pipeline.segment_processor import (
    RoadSegmentProcessor,
    congestion_from_speeds,
)
from traffic_scaler.pipeline.population_generator import (
    PopulationGenerator,
    allocation_error,
    segment_weight,
)
from traffic_scaler.pipeline.rsu_placement import RSUPlacer
from traffic_scaler.pipeline.clustering import CellIndex, cell_key, cluster_vehicles

__all__ = [
    "RoadSegmentProcessor",
    "congestion_from_speeds",
    "PopulationGenerator",
    "allocation_error",
    "segment_weight",
    "RSUPlacer",
    "CellIndex",
    "cell_key",
    "cluster_vehicles",
]

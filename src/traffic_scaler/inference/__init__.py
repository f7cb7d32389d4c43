"""
Inference Module
================

External inference capability (congestion prediction, anomaly detection,
trust scoring, route optimisation).

Components:
    - InferenceEngine: Protocol for ``infer(action, payload)``
    - MockInferenceEngine: Deterministic rule-based answers
    - RemoteInferenceEngine: HTTP pass-through
    - InferenceResult: Success or failure of one call
"""

from traffic_scaler.inference.engine import (
    KNOWN_ACTIONS,
    InferenceEngine,
    InferenceResult,
    MockInferenceEngine,
    RemoteInferenceEngine,
)

__all__ = [
    "KNOWN_ACTIONS",
    "InferenceEngine",
    "InferenceResult",
    "MockInferenceEngine",
    "RemoteInferenceEngine",
]

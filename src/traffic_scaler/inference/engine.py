"""
Inference Engine
================

External inference capability with the shape
``infer(action, payload) -> InferenceResult``.

Known actions:
    - predict_congestion: {"zones": [...]} -> {"predictions": [...]}
    - detect_anomalies:   {"vehicles": [...]} -> {"anomalies": [...]}
    - calculate_trust:    {"vehicles": [...], "anomalies": [...]} -> {"trust_scores": [...]}
    - optimize_route:     {"origin", "destination", "congestion_data"} -> {"waypoints", "route_details"}

Design Rules:
    - infer never raises; failures are returned as ok=False results
    - Mock answers are deterministic for the same payload
    - No model is trained or loaded here; the remote engine is a
      pass-through to an external endpoint
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Protocol

import requests

from traffic_scaler.geometry import haversine_km


logger = logging.getLogger(__name__)


KNOWN_ACTIONS = (
    "predict_congestion",
    "detect_anomalies",
    "calculate_trust",
    "optimize_route",
)


@dataclass(frozen=True, slots=True)
class InferenceResult:
    """
    Outcome of one inference call.

    Attributes:
        action: Requested action
        ok: Whether the call succeeded
        result: Response body on success
        error: Failure description
    """

    action: str
    ok: bool
    result: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    @classmethod
    def failure(cls, action: str, error: str) -> "InferenceResult":
        return cls(action=action, ok=False, error=error)

    def to_dict(self) -> dict:
        return {
            "action": self.action,
            "ok": self.ok,
            "result": self.result,
            "error": self.error,
        }


class InferenceEngine(Protocol):
    """
    Protocol for inference backends.

    Implemented by:
        - MockInferenceEngine (offline, deterministic)
        - RemoteInferenceEngine (HTTP pass-through)
    """

    async def infer(self, action: str, payload: Dict[str, Any]) -> InferenceResult:
        ...


class MockInferenceEngine:
    """
    Deterministic rule-based stand-in for the inference service.

    Attributes:
        speed_limit: Reference speed for anomaly detection (km/h)
        clock: Returns the current time; the hour drives congestion trends
    """

    MODEL_VERSIONS = {
        "predict_congestion": "traffic-flow-mock",
        "detect_anomalies": "anomaly-detect-mock",
        "calculate_trust": "trust-scoring-mock",
        "optimize_route": "route-optimizer-mock",
    }

    def __init__(
        self,
        speed_limit: float = 60.0,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.speed_limit = speed_limit
        self.clock = clock
        self._handlers = {
            "predict_congestion": self._predict_congestion,
            "detect_anomalies": self._detect_anomalies,
            "calculate_trust": self._calculate_trust,
            "optimize_route": self._optimize_route,
        }

        logger.info(f"MockInferenceEngine initialized: speed_limit={speed_limit}km/h")

    async def infer(self, action: str, payload: Dict[str, Any]) -> InferenceResult:
        handler = self._handlers.get(action)
        if handler is None:
            return InferenceResult.failure(action, f"Unknown action: {action}")

        try:
            result = handler(payload or {})
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Mock inference failed ({action}): {e}")
            return InferenceResult.failure(action, str(e))

        result["model_version"] = self.MODEL_VERSIONS[action]
        return InferenceResult(action=action, ok=True, result=result)

    # -------------------------------------------------------------------------
    # Handlers
    # -------------------------------------------------------------------------

    def _predict_congestion(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Shift each zone's level by a time-of-day trend."""
        now = self.clock()
        hour = int(data.get("hour", now.hour))
        weekday = now.weekday() < 5

        rush_hour = 7 <= hour <= 9 or 17 <= hour <= 19
        if rush_hour and weekday:
            change, confidence = 10.0, 0.85
        elif hour >= 22 or hour <= 5:
            change, confidence = -10.0, 0.8
        else:
            change, confidence = 0.0, 0.75

        predictions = []
        for zone in data["zones"]:
            current = float(zone.get("congestion_level") or 0.0)
            predictions.append({
                "zone_id": zone.get("zone_id") or zone.get("id"),
                "current_congestion": current,
                "predicted_congestion": round(max(0.0, min(100.0, current + change))),
                "confidence": confidence,
                "factors": {"hour": hour, "is_rush_hour": rush_hour, "is_weekday": weekday},
            })
        return {"predictions": predictions}

    def _detect_anomalies(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Flag vehicles driving well above the speed limit."""
        limit = float(data.get("speed_limit", self.speed_limit))
        anomalies = []
        for vehicle in data.get("vehicles") or []:
            speed = float(vehicle.get("speed") or 0.0)
            if speed > limit * 1.25:
                kind, severity, score = "Excessive Speed", "High", 0.95
            elif speed > limit * 1.1:
                kind, severity, score = "Speeding", "Medium", 0.8
            else:
                continue
            anomalies.append({
                "vehicle_id": vehicle.get("vehicle_id"),
                "type": kind,
                "severity": severity,
                "score": score,
                "details": {
                    "speed": speed,
                    "location": {"lat": vehicle.get("lat"), "lng": vehicle.get("lng")},
                },
            })
        return {"anomalies": anomalies}

    def _calculate_trust(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Lower trust by 2 per anomaly and 5 more per severe one."""
        anomalies = data.get("anomalies") or []
        scores = []
        for vehicle in data.get("vehicles") or []:
            vehicle_id = vehicle.get("vehicle_id")
            current = int(vehicle.get("trust_score") or 70)
            own = [a for a in anomalies if a.get("vehicle_id") == vehicle_id]
            severe = sum(1 for a in own if a.get("severity") in ("High", "Critical"))
            change = -2 * len(own) - 5 * severe
            scores.append({
                "vehicle_id": vehicle_id,
                "old_score": current,
                "new_score": max(0, min(100, current + change)),
                "change": change,
                "factors": {"anomaly_count": len(own), "severe_anomalies": severe},
            })
        return {"trust_scores": scores}

    def _optimize_route(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Detour around high-congestion zones near the straight route."""
        origin = data.get("origin")
        destination = data.get("destination")
        if not origin or not destination:
            raise ValueError("Origin and destination are required")

        min_lat = min(origin["lat"], destination["lat"]) - 0.03
        max_lat = max(origin["lat"], destination["lat"]) + 0.03
        min_lng = min(origin["lng"], destination["lng"]) - 0.03
        max_lng = max(origin["lng"], destination["lng"]) + 0.03

        waypoints: List[Dict[str, float]] = []
        for zone in data.get("congestion_data") or []:
            level = float(zone.get("congestion_level") or 0.0)
            if level <= 70:
                continue
            if min_lat <= zone["lat"] <= max_lat and min_lng <= zone["lng"] <= max_lng:
                # Step north of the hotspot by its radius plus a margin
                radius = (level / 20) * 0.005
                waypoints.append({"lat": zone["lat"] + radius + 0.005, "lng": zone["lng"]})

        distance = haversine_km(
            origin["lat"], origin["lng"], destination["lat"], destination["lng"],
        )
        return {
            "waypoints": waypoints,
            "route_details": {
                "distance_km": round(distance, 1),
                "estimated_time_mins": round(distance * 2 + len(waypoints) * 2),
                "congestion_avoided": len(waypoints),
            },
            "travel_mode": "DRIVING",
        }


class RemoteInferenceEngine:
    """
    Inference engine that forwards calls to an HTTP endpoint.

    The request body is ``{"action": ..., "data": ...}``; a JSON object
    response is returned as the result.
    """

    def __init__(
        self,
        endpoint: str,
        timeout_seconds: float = 10.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not endpoint:
            raise ValueError("RemoteInferenceEngine requires an endpoint URL")

        self.endpoint = endpoint
        self.timeout_seconds = timeout_seconds
        self._session = session or requests.Session()
        self._call_count: int = 0
        self._error_count: int = 0

        logger.info(
            f"RemoteInferenceEngine initialized: endpoint={endpoint}, "
            f"timeout={timeout_seconds}s"
        )

    async def infer(self, action: str, payload: Dict[str, Any]) -> InferenceResult:
        try:
            body = await asyncio.to_thread(self._post, action, payload)
            self._call_count += 1
        except (requests.RequestException, ValueError) as e:
            self._error_count += 1
            logger.error(
                f"Inference error ({action}): {e}. Total errors: {self._error_count}"
            )
            return InferenceResult.failure(action, str(e))

        if "error" in body:
            return InferenceResult.failure(action, str(body["error"]))
        return InferenceResult(action=action, ok=True, result=body)

    def _post(self, action: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        response = self._session.post(
            self.endpoint,
            json={"action": action, "data": payload},
            timeout=self.timeout_seconds,
        )
        response.raise_for_status()
        body = response.json()
        if not isinstance(body, dict):
            raise ValueError("expected a JSON object")
        return body

"""
TomTom Traffic Source
=====================

Production traffic source using the TomTom Traffic API.

This source:
    - Fetches the flow segment nearest the region centre
    - Fetches incidents within a radius of the region centre
    - Applies minimum-interval rate limiting across both endpoints
    - Derives congestion zones from the sampled polyline

Design Rules:
    - Fail fast on misconfiguration (missing API key)
    - Flow failures raise UpstreamError; the orchestrator keeps its state
    - Blocking HTTP runs in a worker thread, never on the event loop
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import requests
from pydantic import ValidationError

from traffic_scaler.config import RegionConfig, SourceConfig
from traffic_scaler.models.upstream import CongestionZone, FlowSample, Incident
from traffic_scaler.pipeline.segment_processor import congestion_from_speeds


logger = logging.getLogger(__name__)


class UpstreamError(Exception):
    """Raised when the upstream traffic API call fails."""
    pass


# TomTom iconCategory codes
INCIDENT_CATEGORIES = {
    0: "unknown",
    1: "accident",
    2: "fog",
    3: "dangerous_conditions",
    4: "rain",
    5: "ice",
    6: "jam",
    7: "lane_closed",
    8: "road_closed",
    9: "roadworks",
    10: "wind",
    11: "flooding",
    14: "broken_down_vehicle",
}


class TomTomTrafficSource:
    """
    Traffic source backed by the TomTom Traffic API.

    Attributes:
        config: Endpoint, key, timeout and rate limit settings
        region: Region whose centre is sampled
        max_rps: Maximum API calls per second
    """

    def __init__(
        self,
        config: SourceConfig,
        region: RegionConfig,
        session: Optional[requests.Session] = None,
    ) -> None:
        """
        Initialize TomTom traffic source.

        Args:
            config: Source configuration
            region: Region used for the sample point and zone filtering
            session: HTTP session, a new one when omitted

        Raises:
            ValueError: If no API key is configured
        """
        if not config.api_key:
            raise ValueError(
                "TomTom source requires an API key "
                "(source.api_key or TRAFFIC_TOMTOM_API_KEY)"
            )

        self.config = config
        self.region = region
        self.max_rps = config.max_rps
        self.min_interval = 1.0 / config.max_rps if config.max_rps > 0 else 0.0
        self._session = session or requests.Session()

        # Rate limiting state
        self._last_call_time: float = 0.0
        self._api_call_count: int = 0
        self._api_error_count: int = 0

        logger.info(
            f"TomTomTrafficSource initialized: base_url={config.base_url}, "
            f"max_rps={config.max_rps}, timeout={config.timeout_seconds}s"
        )

    # -------------------------------------------------------------------------
    # TrafficSource
    # -------------------------------------------------------------------------

    async def fetch_flow(self) -> FlowSample:
        """
        Fetch the flow segment at the region centre.

        Returns:
            FlowSample with congestion zones along the polyline

        Raises:
            UpstreamError: On network, HTTP or payload errors
        """
        lat, lng = self.region.center
        payload = await self._get(
            self.config.flow_endpoint,
            {
                "point": f"{lat},{lng}",
                "unit": "KMPH",
            },
        )

        try:
            sample = FlowSample.from_tomtom(payload)
        except ValidationError as e:
            raise UpstreamError(f"Malformed flow payload: {e}") from e

        road_name = (payload.get("flowSegmentData") or {}).get("roadName") or "Road Segment"
        zones = self._zones_for(sample, road_name)
        logger.debug(
            f"TomTom flow: {len(sample.coordinates)} coordinates, {len(zones)} zones"
        )
        return sample.model_copy(update={"congestion_zones": zones})

    async def fetch_incidents(self) -> List[Incident]:
        """
        Fetch incidents around the region centre.

        Raises:
            UpstreamError: On network or HTTP errors
        """
        lat, lng = self.region.center
        payload = await self._get(
            self.config.incident_endpoint,
            {
                "position": f"{lat},{lng}",
                "radius": str(self.config.incident_radius_m),
                "language": "en-GB",
                "expandCluster": "true",
                "timeValidityFilter": "present",
            },
        )
        return self.parse_incidents(payload)

    # -------------------------------------------------------------------------
    # Parsing
    # -------------------------------------------------------------------------

    def parse_incidents(self, payload: Dict[str, Any]) -> List[Incident]:
        """
        Convert an incident-details payload into Incident records.

        Entries without a position or outside the region are dropped.
        """
        incidents = []
        for n, raw in enumerate(payload.get("incidents") or []):
            point = (raw.get("point") or {}).get("coordinates") or {}
            lat = point.get("latitude")
            lng = point.get("longitude")
            if lat is None or lng is None or not self._in_region(lat, lng):
                continue

            start_time = None
            if raw.get("startTime"):
                try:
                    start_time = datetime.fromisoformat(str(raw["startTime"]).replace("Z", "+00:00"))
                except ValueError:
                    logger.debug(f"Unparseable incident start time: {raw['startTime']}")

            try:
                incidents.append(Incident(
                    incident_id=str(raw.get("id") or f"tt-incident-{n}"),
                    category=INCIDENT_CATEGORIES.get(raw.get("type") or 0, "unknown"),
                    severity=int(raw.get("criticality") or 0),
                    description=raw.get("description") or "Traffic incident detected",
                    lat=lat,
                    lng=lng,
                    start_time=start_time,
                ))
            except ValidationError as e:
                logger.debug(f"Skipping malformed incident {raw.get('id')}: {e}")

        return incidents

    def _zones_for(self, sample: FlowSample, road_name: str) -> List[CongestionZone]:
        """Zones at the first, middle and last vertex inside the region."""
        coords = sample.coordinates
        if not coords:
            return []

        free_flow = sample.free_flow_speed or 1.0
        current = sample.current_speed or 0.0
        level = round(congestion_from_speeds(current, free_flow))
        now = datetime.now(timezone.utc)

        zones = []
        for index in sorted({0, len(coords) // 2, len(coords) - 1}):
            coord = coords[index]
            if coord is None or not self._in_region(coord.latitude, coord.longitude):
                continue
            zones.append(CongestionZone(
                zone_id=f"tt-cong-{index}",
                zone_name=f"{road_name} {index}",
                lat=coord.latitude,
                lng=coord.longitude,
                congestion_level=level,
                updated_at=now,
            ))
        return zones

    def _in_region(self, lat: float, lng: float) -> bool:
        r = self.region
        return r.south <= lat <= r.north and r.west <= lng <= r.east

    # -------------------------------------------------------------------------
    # HTTP
    # -------------------------------------------------------------------------

    async def _get(self, endpoint: str, params: Dict[str, str]) -> Dict[str, Any]:
        """Rate-limited GET returning the decoded JSON body."""
        now = time.time()
        elapsed = now - self._last_call_time
        if elapsed < self.min_interval:
            await asyncio.sleep(self.min_interval - elapsed)

        url = f"{self.config.base_url}{endpoint}"
        try:
            payload = await asyncio.to_thread(self._request, url, params)
            self._api_call_count += 1
            return payload
        except (requests.RequestException, ValueError) as e:
            self._api_error_count += 1
            logger.error(
                f"TomTom API error ({endpoint}): {e}. "
                f"Total errors: {self._api_error_count}"
            )
            raise UpstreamError(f"TomTom request to {endpoint} failed: {e}") from e
        finally:
            self._last_call_time = time.time()

    def _request(self, url: str, params: Dict[str, str]) -> Dict[str, Any]:
        response = self._session.get(
            url,
            params={"key": self.config.api_key, **params},
            timeout=self.config.timeout_seconds,
        )
        response.raise_for_status()
        payload = response.json()
        if not isinstance(payload, dict):
            raise ValueError("expected a JSON object")
        return payload

    @property
    def stats(self) -> Dict[str, int]:
        """API call counters."""
        return {
            "api_calls": self._api_call_count,
            "api_errors": self._api_error_count,
        }

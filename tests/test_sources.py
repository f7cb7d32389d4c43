"""
Traffic Source Tests
====================

Mock source determinism and TomTom parsing against a fake HTTP session.
"""

import asyncio

import pytest
import requests

from traffic_scaler.config import SourceConfig
from traffic_scaler.sources import MockTrafficSource, TomTomTrafficSource, UpstreamError


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self._payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error")

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class FakeSession:
    """Records GET calls and replays queued responses."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def get(self, url, params=None, timeout=None):
        self.calls.append((url, params, timeout))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


FLOW_PAYLOAD = {
    "flowSegmentData": {
        "frc": "FRC2",
        "currentSpeed": 24,
        "freeFlowSpeed": 60,
        "roadName": "Outer Ring Road",
        "coordinates": {
            "coordinate": [
                {"latitude": 17.38, "longitude": 78.40},
                {"latitude": 17.40, "longitude": 78.45},
                {"latitude": 17.42, "longitude": 78.50},
                {"latitude": 17.45, "longitude": 78.52},
            ]
        },
    }
}

INCIDENT_PAYLOAD = {
    "incidents": [
        {
            "id": "abc",
            "type": 1,
            "criticality": 3,
            "description": "Collision on flyover",
            "startTime": "2024-05-01T08:30:00Z",
            "point": {"coordinates": {"latitude": 17.41, "longitude": 78.47}},
        },
        {
            "type": 9,
            "point": {"coordinates": {"latitude": 17.30, "longitude": 78.20}},
        },
        {
            "id": "far-away",
            "type": 6,
            "point": {"coordinates": {"latitude": 19.0, "longitude": 72.8}},
        },
        {"id": "no-position", "type": 1},
    ]
}


@pytest.fixture
def source_config():
    return SourceConfig(backend="tomtom", api_key="test-key", max_rps=1000)


def make_tomtom(source_config, region, *responses):
    session = FakeSession(*responses)
    return TomTomTrafficSource(source_config, region, session=session), session


class TestMockTrafficSource:
    """Tests for the offline source."""

    def test_same_calls_give_same_samples(self, region):
        """Verify two mock sources agree call for call."""
        a = MockTrafficSource(region)
        b = MockTrafficSource(region)
        for _ in range(3):
            assert asyncio.run(a.fetch_flow()) == asyncio.run(b.fetch_flow())

    def test_speed_varies_between_calls(self, region):
        """Verify the mock speed changes between calls."""
        source = MockTrafficSource(region, free_flow_speed=60)
        first = asyncio.run(source.fetch_flow())
        second = asyncio.run(source.fetch_flow())

        assert first.current_speed == pytest.approx(30.0)
        assert second.current_speed != first.current_speed
        assert source.flow_calls == 2

    def test_speed_stays_within_band(self, region):
        """Verify the mock speed stays between 20% and 80% of free flow."""
        source = MockTrafficSource(region, free_flow_speed=60, variation_period=8)
        for _ in range(8):
            sample = asyncio.run(source.fetch_flow())
            assert 12.0 <= sample.current_speed <= 48.0

    def test_polyline_inside_region(self, region):
        """Verify the mock polyline lies in the region."""
        sample = asyncio.run(MockTrafficSource(region, points=30).fetch_flow())
        assert len(sample.coordinates) == 30
        for c in sample.coordinates:
            assert region.south <= c.latitude <= region.north
            assert region.west <= c.longitude <= region.east

    def test_incidents(self, region):
        """Verify the mock incidents."""
        source = MockTrafficSource(region)
        incidents = asyncio.run(source.fetch_incidents())

        assert [i.incident_id for i in incidents] == [
            "mock-incident-1", "mock-incident-2", "mock-incident-3",
        ]
        assert [i.category for i in incidents] == ["accident", "roadworks", "jam"]
        assert source.incident_calls == 1

    def test_rejects_single_point(self, region):
        """Verify a one-point polyline is rejected."""
        with pytest.raises(ValueError):
            MockTrafficSource(region, points=1)


class TestTomTomFlow:
    """Tests for flow fetching and zone derivation."""

    def test_requires_api_key(self, region):
        """Verify the TomTom source needs a key."""
        with pytest.raises(ValueError, match="API key"):
            TomTomTrafficSource(SourceConfig(backend="tomtom"), region)

    def test_flow_request(self, source_config, region):
        """Verify the flow request and the parsed sample."""
        source, session = make_tomtom(source_config, region, FakeResponse(FLOW_PAYLOAD))
        sample = asyncio.run(source.fetch_flow())

        url, params, timeout = session.calls[0]
        assert url == source_config.base_url + source_config.flow_endpoint
        assert params["key"] == "test-key"
        assert params["unit"] == "KMPH"
        assert params["point"] == "{},{}".format(*region.center)
        assert timeout == source_config.timeout_seconds

        assert sample.free_flow_speed == 60
        assert sample.current_speed == 24
        assert len(sample.coordinates) == 4

    def test_zones_at_start_middle_and_end(self, source_config, region):
        """Verify zones at the first, middle and last vertex."""
        source, _ = make_tomtom(source_config, region, FakeResponse(FLOW_PAYLOAD))
        sample = asyncio.run(source.fetch_flow())

        zones = sample.congestion_zones
        assert [z.zone_id for z in zones] == ["tt-cong-0", "tt-cong-2", "tt-cong-3"]
        assert all(z.congestion_level == 60 for z in zones)
        assert zones[0].zone_name == "Outer Ring Road 0"

    def test_zones_skip_vertices_outside_region(self, source_config, region):
        """Verify vertices outside the region get no zone."""
        payload = {
            "flowSegmentData": {
                "currentSpeed": 30,
                "freeFlowSpeed": 60,
                "coordinates": {"coordinate": [
                    {"latitude": 17.40, "longitude": 78.40},
                    {"latitude": 17.42, "longitude": 78.45},
                    {"latitude": 18.50, "longitude": 79.50},
                ]},
            }
        }
        source, _ = make_tomtom(source_config, region, FakeResponse(payload))
        sample = asyncio.run(source.fetch_flow())
        assert [z.zone_id for z in sample.congestion_zones] == ["tt-cong-0", "tt-cong-1"]

    def test_http_error_raises_upstream_error(self, source_config, region):
        """Verify HTTP errors surface as UpstreamError."""
        source, _ = make_tomtom(source_config, region, FakeResponse({}, status_code=503))
        with pytest.raises(UpstreamError):
            asyncio.run(source.fetch_flow())
        assert source.stats == {"api_calls": 0, "api_errors": 1}

    def test_connection_error_raises_upstream_error(self, source_config, region):
        """Verify connection errors surface as UpstreamError."""
        source, _ = make_tomtom(
            source_config, region, requests.ConnectionError("connection refused"),
        )
        with pytest.raises(UpstreamError, match="connection refused"):
            asyncio.run(source.fetch_flow())

    def test_invalid_json_raises_upstream_error(self, source_config, region):
        """Verify undecodable bodies surface as UpstreamError."""
        source, _ = make_tomtom(
            source_config, region, FakeResponse(ValueError("Expecting value")),
        )
        with pytest.raises(UpstreamError):
            asyncio.run(source.fetch_flow())

    def test_bad_vertex_is_masked(self, source_config, region):
        """An out-of-range or incomplete vertex is masked, not fatal."""
        payload = {"flowSegmentData": {
            "currentSpeed": 30,
            "freeFlowSpeed": 60,
            "coordinates": {"coordinate": [
                {"latitude": 17.38, "longitude": 78.40},
                {"latitude": 17.40, "longitude": 78.45},
                {"latitude": 17.42, "longitude": 78.50},
                {"latitude": 17.41},
                {"latitude": 123.0, "longitude": 78.4},
            ]},
        }}
        source, _ = make_tomtom(source_config, region, FakeResponse(payload))
        sample = asyncio.run(source.fetch_flow())

        assert sample.coordinates[3:] == [None, None]
        assert all(c is not None for c in sample.coordinates[:3])
        assert [z.zone_id for z in sample.congestion_zones] == ["tt-cong-0", "tt-cong-2"]

    def test_negative_speed_raises_upstream_error(self, source_config, region):
        """Payload-level validation errors still fail the fetch."""
        payload = {"flowSegmentData": {"currentSpeed": -5, "coordinates": {"coordinate": []}}}
        source, _ = make_tomtom(source_config, region, FakeResponse(payload))
        with pytest.raises(UpstreamError, match="Malformed"):
            asyncio.run(source.fetch_flow())

    def test_empty_payload_gives_empty_sample(self, source_config, region):
        """Verify an empty body gives an empty sample."""
        source, _ = make_tomtom(source_config, region, FakeResponse({}))
        sample = asyncio.run(source.fetch_flow())
        assert sample.coordinates == []
        assert sample.congestion_zones == []


class TestTomTomIncidents:
    """Tests for incident fetching and parsing."""

    def test_incident_request(self, source_config, region):
        """Verify the incident request parameters."""
        source, session = make_tomtom(source_config, region, FakeResponse({"incidents": []}))
        assert asyncio.run(source.fetch_incidents()) == []

        url, params, _ = session.calls[0]
        assert url.endswith(source_config.incident_endpoint)
        assert params["radius"] == str(source_config.incident_radius_m)
        assert params["position"] == "{},{}".format(*region.center)

    def test_parse_incidents(self, source_config, region):
        """Verify ids, categories and defaults, and that out-of-region entries are dropped."""
        source, _ = make_tomtom(source_config, region)
        incidents = source.parse_incidents(INCIDENT_PAYLOAD)

        assert len(incidents) == 2
        first, second = incidents
        assert first.incident_id == "abc"
        assert first.category == "accident"
        assert first.severity == 3
        assert first.start_time.year == 2024
        assert second.incident_id == "tt-incident-1"
        assert second.category == "roadworks"
        assert second.description == "Traffic incident detected"

    def test_unknown_category(self, source_config, region):
        """Verify unknown incident types map to unknown."""
        source, _ = make_tomtom(source_config, region)
        payload = {"incidents": [
            {"id": "x", "type": 99, "point": {"coordinates": {"latitude": 17.4, "longitude": 78.4}}},
        ]}
        assert source.parse_incidents(payload)[0].category == "unknown"

    def test_bad_start_time_is_dropped(self, source_config, region):
        """Verify an unparseable start time is left empty."""
        source, _ = make_tomtom(source_config, region)
        payload = {"incidents": [{
            "id": "x",
            "startTime": "yesterday",
            "point": {"coordinates": {"latitude": 17.4, "longitude": 78.4}},
        }]}
        assert source.parse_incidents(payload)[0].start_time is None

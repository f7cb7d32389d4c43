"""
Configuration Tests
===================

Defaults, YAML loading, environment overrides and validation.
"""

import pytest
import yaml
from pydantic import ValidationError

from traffic_scaler.config import (
    RSUConfig,
    RegionConfig,
    Settings,
    VehiclesConfig,
    VehicleTypeConfig,
    ViewportConfig,
    load_config,
)


ENV_VARS = [
    "TRAFFIC_CONFIG_PATH",
    "TRAFFIC_VEHICLE_TARGET",
    "TRAFFIC_CACHE_TIMEOUT",
    "TRAFFIC_REFRESH_INTERVAL",
    "TRAFFIC_RSU_DENSITY_KM",
    "TRAFFIC_MIN_RSU_DISTANCE_KM",
    "TRAFFIC_SOURCE_BACKEND",
    "TRAFFIC_TOMTOM_API_KEY",
    "TRAFFIC_INFERENCE_BACKEND",
    "TRAFFIC_INFERENCE_URL",
    "TRAFFIC_LOG_LEVEL",
    "TRAFFIC_PORT",
    "PORT",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config_file(tmp_path):
    def _write(data):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump(data))
        return str(path)
    return _write


class TestDefaults:
    """Tests for default values."""

    def test_defaults(self):
        """Verify section defaults."""
        settings = Settings()

        assert settings.scaler.vehicle_target == 500_000
        assert settings.scaler.cache_timeout_seconds == 60.0
        assert settings.scaler.congestion_zone_threshold == 30.0
        assert settings.clustering.grid_size == 0.01
        assert settings.clustering.sample_cap == 1000
        assert settings.rsu.density_km == 2.5
        assert settings.rsu.min_distance_km == 0.5
        assert settings.source.backend == "mock"

    def test_viewport_defaults(self):
        """Verify viewport tier boundaries and caps."""
        viewport = ViewportConfig()
        assert viewport.overview_max_zoom == 8.0
        assert viewport.detail_min_zoom == 13.0
        assert viewport.overview_cap == 5000
        assert viewport.sampled_cap_max == 50_000
        assert viewport.detail_cap == 100_000

    def test_region_centre(self):
        """Verify the default region centre."""
        lat, lng = RegionConfig().center
        assert lat == pytest.approx(17.45)
        assert lng == pytest.approx(78.45)

    def test_vehicle_type_weights(self):
        """Verify default type weights sum to 100."""
        types = VehiclesConfig().types
        assert sum(t.weight for t in types.values()) == 100
        assert types["car"].weight == 65


class TestLoading:
    """Tests for YAML and environment loading."""

    def test_yaml_values(self, config_file):
        """Verify YAML values override defaults and leave the rest alone."""
        path = config_file({
            "scaler": {"vehicle_target": 1234},
            "region": {"north": 1.0, "south": 0.0, "east": 1.0, "west": 0.0},
        })
        settings = load_config(path)

        assert settings.scaler.vehicle_target == 1234
        assert settings.region.center == (0.5, 0.5)
        assert settings.scaler.cache_timeout_seconds == 60.0

    def test_env_overrides_yaml(self, config_file, monkeypatch):
        """Verify TRAFFIC_* variables win over the file."""
        path = config_file({"scaler": {"vehicle_target": 1234}, "source": {"backend": "mock"}})
        monkeypatch.setenv("TRAFFIC_VEHICLE_TARGET", "999")
        monkeypatch.setenv("TRAFFIC_SOURCE_BACKEND", "tomtom")
        monkeypatch.setenv("TRAFFIC_TOMTOM_API_KEY", "secret")
        monkeypatch.setenv("TRAFFIC_LOG_LEVEL", "DEBUG")

        settings = load_config(path)

        assert settings.scaler.vehicle_target == 999
        assert settings.source.backend == "tomtom"
        assert settings.source.api_key == "secret"
        assert settings.logging.level == "DEBUG"

    def test_port_precedence(self, config_file, monkeypatch):
        """Verify PORT wins over TRAFFIC_PORT."""
        monkeypatch.setenv("TRAFFIC_PORT", "9000")
        monkeypatch.setenv("PORT", "8080")
        assert load_config(config_file({})).server.port == 8080

    def test_config_path_from_env(self, config_file, monkeypatch):
        """Verify TRAFFIC_CONFIG_PATH selects the file."""
        monkeypatch.setenv("TRAFFIC_CONFIG_PATH", config_file({"scaler": {"min_segments": 7}}))
        assert load_config().scaler.min_segments == 7

    def test_missing_file_uses_defaults(self, tmp_path):
        """Verify a missing file falls back to defaults."""
        settings = load_config(str(tmp_path / "absent.yaml"))
        assert settings.scaler.vehicle_target == 500_000

    def test_empty_file(self, tmp_path):
        """Verify an empty file falls back to defaults."""
        path = tmp_path / "config.yaml"
        path.write_text("")
        assert load_config(str(path)).source.backend == "mock"


class TestValidation:
    """Tests for rejected configurations."""

    def test_inverted_region(self):
        """Verify a region with south above north is rejected."""
        with pytest.raises(ValidationError):
            RegionConfig(north=1.0, south=2.0, east=1.0, west=0.0)

    def test_inverted_trust_range(self):
        """Verify trust_min above trust_max is rejected."""
        with pytest.raises(ValidationError):
            VehicleTypeConfig(weight=1, trust_min=90, trust_max=10)

    def test_zero_weights(self):
        """Verify all-zero type weights are rejected."""
        with pytest.raises(ValidationError):
            VehiclesConfig(types={"car": VehicleTypeConfig(weight=0, trust_min=1, trust_max=2)})

    def test_rsu_count_range(self):
        """Verify min_count above max_count is rejected."""
        with pytest.raises(ValidationError):
            RSUConfig(min_count=10, max_count=5)

    def test_viewport_tier_order(self):
        """Verify the overview boundary must sit below the detail one."""
        with pytest.raises(ValidationError):
            ViewportConfig(overview_max_zoom=14, detail_min_zoom=10)

    def test_negative_vehicle_target(self, config_file):
        """Verify a negative vehicle target is rejected."""
        with pytest.raises(ValidationError):
            load_config(config_file({"scaler": {"vehicle_target": -5}}))

"""
Traffic Scaler Configuration
============================

This module handles configuration loading for the traffic scaling service.

Configuration Sources (in order of precedence):
    1. Environment variables (highest priority)
    2. config.yaml file
    3. Default values (lowest priority)

Environment Variable Mapping:
    TRAFFIC_VEHICLE_TARGET       -> scaler.vehicle_target
    TRAFFIC_CACHE_TIMEOUT        -> scaler.cache_timeout_seconds
    TRAFFIC_REFRESH_INTERVAL     -> scaler.refresh_interval_seconds
    TRAFFIC_RSU_DENSITY_KM       -> rsu.density_km
    TRAFFIC_MIN_RSU_DISTANCE_KM  -> rsu.min_distance_km
    TRAFFIC_SOURCE_BACKEND       -> source.backend
    TRAFFIC_TOMTOM_API_KEY       -> source.api_key
    TRAFFIC_INFERENCE_BACKEND    -> inference.backend
    TRAFFIC_INFERENCE_URL        -> inference.endpoint
    TRAFFIC_LOG_LEVEL            -> logging.level
    PORT                         -> server.port (container platforms)
    TRAFFIC_PORT                 -> server.port

Example:
    from traffic_scaler.config import settings

    print(settings.scaler.vehicle_target)
    print(settings.region.north)
    print(settings.viewport.detail_min_zoom)
"""

import os
import logging
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator


logger = logging.getLogger(__name__)


# =============================================================================
# Configuration Models
# =============================================================================

class ServiceConfig(BaseModel):
    """Service identification configuration."""

    name: str = Field(default="traffic-scaler", description="Service name")
    version: str = Field(default="v0.1.0", description="API version")


class RegionConfig(BaseModel):
    """Bounding region used for synthetic densification (default: Hyderabad)."""

    north: float = Field(default=17.80, ge=-90, le=90, description="North latitude")
    south: float = Field(default=17.10, ge=-90, le=90, description="South latitude")
    east: float = Field(default=78.90, ge=-180, le=180, description="East longitude")
    west: float = Field(default=78.00, ge=-180, le=180, description="West longitude")

    @model_validator(mode="after")
    def check_extent(self) -> "RegionConfig":
        """Region must have a positive extent on both axes."""
        if self.south >= self.north:
            raise ValueError("region.south must be below region.north")
        if self.west >= self.east:
            raise ValueError("region.west must be west of region.east")
        return self

    @property
    def center(self) -> tuple:
        """Region centre as (lat, lng)."""
        return ((self.north + self.south) / 2, (self.east + self.west) / 2)


class ScalerConfig(BaseModel):
    """Pipeline and cache configuration."""

    vehicle_target: int = Field(
        default=500_000,
        ge=0,
        description="Target number of synthetic vehicles across the region",
    )
    cache_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Seconds a cached population is considered fresh",
    )
    refresh_interval_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Interval of the background auto-refresh task",
    )
    min_segments: int = Field(
        default=100,
        ge=0,
        description="Below this segment count the synthetic grid is added",
    )
    synthetic_grid_steps: int = Field(
        default=30,
        ge=1,
        description="Steps per axis of the synthetic densification grid",
    )
    congestion_zone_threshold: float = Field(
        default=30.0,
        ge=0,
        le=100,
        description="Congestion (%) above which a segment yields a derived zone",
    )


class VehicleTypeConfig(BaseModel):
    """Weight and trust-score range for one vehicle type."""

    weight: float = Field(..., ge=0, description="Relative share of the population")
    trust_min: int = Field(..., ge=0, le=100, description="Lowest trust score")
    trust_max: int = Field(..., ge=0, le=100, description="Highest trust score")

    @model_validator(mode="after")
    def check_range(self) -> "VehicleTypeConfig":
        if self.trust_min > self.trust_max:
            raise ValueError("trust_min must not exceed trust_max")
        return self


def _default_vehicle_types() -> Dict[str, VehicleTypeConfig]:
    return {
        "car": VehicleTypeConfig(weight=65, trust_min=60, trust_max=95),
        "two_wheeler": VehicleTypeConfig(weight=25, trust_min=50, trust_max=90),
        "truck": VehicleTypeConfig(weight=5, trust_min=55, trust_max=85),
        "bus": VehicleTypeConfig(weight=3, trust_min=65, trust_max=90),
        "ambulance": VehicleTypeConfig(weight=1, trust_min=75, trust_max=99),
        "other": VehicleTypeConfig(weight=1, trust_min=40, trust_max=85),
    }


class VehiclesConfig(BaseModel):
    """Synthetic vehicle population configuration."""

    types: Dict[str, VehicleTypeConfig] = Field(default_factory=_default_vehicle_types)
    owner_names: List[str] = Field(
        default_factory=lambda: [
            "Raj Kumar", "Priya Singh", "Amit Patel", "Deepa Sharma",
            "Mohammed Khan", "Sunita Reddy", "Venkat Rao", "Lakshmi Devi",
            "Arjun Nair", "Fatima Begum", "Rajesh Khanna", "Ananya Das",
            "Surya Prakash", "Kavita Joshi", "Imran Ahmed",
        ],
        min_length=1,
    )
    speed_noise_kmh: float = Field(
        default=5.0,
        ge=0,
        description="Standard deviation of per-vehicle speed noise",
    )
    position_jitter_deg: float = Field(
        default=0.0002,
        ge=0,
        description="Maximum positional jitter around the segment line (degrees)",
    )
    inactive_ratio: float = Field(default=0.05, ge=0, le=1)
    id_prefix: str = Field(default="HYD", min_length=1)

    @field_validator("types")
    @classmethod
    def check_weights(cls, v: Dict[str, VehicleTypeConfig]) -> Dict[str, VehicleTypeConfig]:
        """At least one vehicle type with a positive weight is required."""
        if not v or sum(t.weight for t in v.values()) <= 0:
            raise ValueError("vehicle type weights must have a positive sum")
        return v


class StrategicLocation(BaseModel):
    """Named landmark where an RSU is placed before synthetic candidates."""

    name: str
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


def _default_strategic_locations() -> List[StrategicLocation]:
    return [
        StrategicLocation(name="HITEC City", lat=17.4435, lng=78.3772),
        StrategicLocation(name="Gachibowli", lat=17.4401, lng=78.3489),
        StrategicLocation(name="Secunderabad", lat=17.4399, lng=78.4983),
        StrategicLocation(name="Charminar", lat=17.3616, lng=78.4747),
        StrategicLocation(name="Banjara Hills", lat=17.4138, lng=78.4398),
        StrategicLocation(name="Begumpet", lat=17.4447, lng=78.4664),
        StrategicLocation(name="Ameerpet", lat=17.4375, lng=78.4482),
        StrategicLocation(name="Kukatpally", lat=17.4849, lng=78.4138),
        StrategicLocation(name="Mehdipatnam", lat=17.3959, lng=78.4312),
        StrategicLocation(name="LB Nagar", lat=17.3457, lng=78.5522),
        StrategicLocation(name="Uppal", lat=17.4058, lng=78.5591),
        StrategicLocation(name="Shamshabad Airport", lat=17.2403, lng=78.4294),
    ]


class RSUConfig(BaseModel):
    """Roadside unit placement configuration."""

    density_km: float = Field(
        default=2.5,
        gt=0,
        description="One RSU per this many kilometres of road",
    )
    min_distance_km: float = Field(
        default=0.5,
        ge=0,
        description="Minimum pairwise separation between RSUs",
    )
    min_count: int = Field(default=10, ge=0)
    max_count: int = Field(default=500, ge=0)
    coverage_radius_min_m: int = Field(default=300, gt=0)
    coverage_radius_max_m: int = Field(default=1000, gt=0)
    inactive_ratio: float = Field(default=0.1, ge=0, le=1)
    attempts_per_rsu: int = Field(
        default=20,
        ge=1,
        description="Candidate draws per missing RSU before giving up",
    )
    strategic_locations: List[StrategicLocation] = Field(
        default_factory=_default_strategic_locations,
    )

    @model_validator(mode="after")
    def check_ranges(self) -> "RSUConfig":
        if self.min_count > self.max_count:
            raise ValueError("rsu.min_count must not exceed rsu.max_count")
        if self.coverage_radius_min_m > self.coverage_radius_max_m:
            raise ValueError("rsu coverage radius range is inverted")
        return self


class ClusteringConfig(BaseModel):
    """Spatial grid configuration."""

    grid_size: float = Field(default=0.01, gt=0, description="Cell size in degrees")
    sample_cap: int = Field(
        default=1000,
        ge=1,
        description="Vehicles retained per cluster for rendering",
    )


class ViewportConfig(BaseModel):
    """
    Zoom-adaptive sampling knobs.

    These are tuned for rendering cost, not correctness.
    """

    overview_max_zoom: float = Field(default=8.0, description="Below this: one marker per cluster")
    detail_min_zoom: float = Field(default=13.0, description="From this: raw vehicles")
    overview_cap: int = Field(default=5000, ge=1)
    samples_per_zoom_level: int = Field(default=50, ge=1)
    sampled_cap_base: float = Field(default=10.0, gt=1)
    sampled_cap_zoom_offset: float = Field(default=6.0)
    sampled_cap_max: int = Field(default=50_000, ge=1)
    detail_cap: int = Field(default=100_000, ge=1)

    @model_validator(mode="after")
    def check_tiers(self) -> "ViewportConfig":
        if self.overview_max_zoom > self.detail_min_zoom:
            raise ValueError("viewport.overview_max_zoom must not exceed detail_min_zoom")
        return self


class SourceConfig(BaseModel):
    """Upstream traffic data source configuration."""

    backend: str = Field(
        default="mock",
        description="Traffic source backend: 'mock' or 'tomtom'",
    )
    api_key: Optional[str] = Field(default=None, description="TomTom API key")
    base_url: str = Field(default="https://api.tomtom.com/traffic/services")
    flow_endpoint: str = Field(default="/4/flowSegmentData/absolute/10/json")
    incident_endpoint: str = Field(default="/4/incidentDetails/s3/json")
    incident_radius_m: int = Field(
        default=20_000,
        gt=0,
        description="Incident search radius around the region centre",
    )
    timeout_seconds: float = Field(default=30.0, gt=0)
    max_rps: float = Field(default=1.5, gt=0, description="Maximum requests per second")
    mock_points: int = Field(default=24, ge=2, description="Polyline points of the mock source")


class InferenceConfig(BaseModel):
    """External inference capability configuration."""

    backend: str = Field(
        default="mock",
        description="Inference backend: 'mock', 'remote' or 'disabled'",
    )
    endpoint: Optional[str] = Field(default=None, description="Remote inference URL")
    timeout_seconds: float = Field(default=10.0, gt=0)
    enrich_congestion: bool = Field(
        default=False,
        description="Overwrite congestion zone levels with predicted ones on refresh",
    )


class ServerConfig(BaseModel):
    """Server configuration."""

    host: str = Field(default="0.0.0.0", description="Bind host")
    port: int = Field(default=8002, ge=1, le=65535, description="Bind port")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="json", description="Log format: json or text")


class Settings(BaseModel):
    """
    Main settings class for the traffic scaling service.

    Loads configuration from YAML file and environment variables.
    Environment variables take precedence over file values.
    """

    service: ServiceConfig = Field(default_factory=ServiceConfig)
    region: RegionConfig = Field(default_factory=RegionConfig)
    scaler: ScalerConfig = Field(default_factory=ScalerConfig)
    vehicles: VehiclesConfig = Field(default_factory=VehiclesConfig)
    rsu: RSUConfig = Field(default_factory=RSUConfig)
    clustering: ClusteringConfig = Field(default_factory=ClusteringConfig)
    viewport: ViewportConfig = Field(default_factory=ViewportConfig)
    source: SourceConfig = Field(default_factory=SourceConfig)
    inference: InferenceConfig = Field(default_factory=InferenceConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# =============================================================================
# Configuration Loading
# =============================================================================

def load_config(config_path: Optional[str] = None) -> Settings:
    """
    Load configuration from YAML file and environment variables.

    Priority (highest to lowest):
        1. Environment variables
        2. YAML config file
        3. Default values

    Args:
        config_path: Path to config.yaml. If None, searches common locations.

    Returns:
        Settings: Loaded configuration
    """
    if config_path is None:
        if env_path := os.environ.get("TRAFFIC_CONFIG_PATH"):
            config_path = env_path
        else:
            search_paths = [
                Path("config.yaml"),
                Path("config.yml"),
                Path("/app/config.yaml"),
                Path(__file__).parent.parent.parent / "config.yaml",
            ]
            for path in search_paths:
                if path.exists():
                    config_path = str(path)
                    break

    config_data = {}
    if config_path and Path(config_path).exists():
        logger.info(f"Loading config from: {config_path}")
        with open(config_path, "r") as f:
            config_data = yaml.safe_load(f) or {}
    else:
        logger.warning("No config file found, using defaults and environment variables")

    _apply_env_overrides(config_data)

    return Settings.model_validate(config_data)


def _apply_env_overrides(config_data: dict) -> None:
    """Apply environment variable overrides to config data."""

    # Scaler settings
    if env_target := os.environ.get("TRAFFIC_VEHICLE_TARGET"):
        config_data.setdefault("scaler", {})["vehicle_target"] = int(env_target)
    if env_cache := os.environ.get("TRAFFIC_CACHE_TIMEOUT"):
        config_data.setdefault("scaler", {})["cache_timeout_seconds"] = float(env_cache)
    if env_interval := os.environ.get("TRAFFIC_REFRESH_INTERVAL"):
        config_data.setdefault("scaler", {})["refresh_interval_seconds"] = float(env_interval)

    # RSU settings
    if env_density := os.environ.get("TRAFFIC_RSU_DENSITY_KM"):
        config_data.setdefault("rsu", {})["density_km"] = float(env_density)
    if env_distance := os.environ.get("TRAFFIC_MIN_RSU_DISTANCE_KM"):
        config_data.setdefault("rsu", {})["min_distance_km"] = float(env_distance)

    # Source settings
    if env_backend := os.environ.get("TRAFFIC_SOURCE_BACKEND"):
        config_data.setdefault("source", {})["backend"] = env_backend
    if env_key := os.environ.get("TRAFFIC_TOMTOM_API_KEY"):
        config_data.setdefault("source", {})["api_key"] = env_key

    # Inference settings
    if env_inference := os.environ.get("TRAFFIC_INFERENCE_BACKEND"):
        config_data.setdefault("inference", {})["backend"] = env_inference
    if env_url := os.environ.get("TRAFFIC_INFERENCE_URL"):
        config_data.setdefault("inference", {})["endpoint"] = env_url

    # Server settings (container platforms use PORT)
    if env_port := os.environ.get("PORT"):
        config_data.setdefault("server", {})["port"] = int(env_port)
    elif env_port := os.environ.get("TRAFFIC_PORT"):
        config_data.setdefault("server", {})["port"] = int(env_port)

    # Logging settings
    if env_log := os.environ.get("TRAFFIC_LOG_LEVEL"):
        config_data.setdefault("logging", {})["level"] = env_log


def setup_logging(settings: Settings) -> None:
    """Configure logging based on settings."""
    log_level = getattr(logging, settings.logging.level.upper(), logging.INFO)

    if settings.logging.format == "json":
        log_format = '{"time": "%(asctime)s", "level": "%(levelname)s", "module": "%(name)s", "message": "%(message)s"}'
    else:
        log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=log_level,
        format=log_format,
        datefmt="%Y-%m-%dT%H:%M:%S",
    )


# =============================================================================
# Global Settings Instance
# =============================================================================

# Global settings instance - loaded on import
settings = load_config()
setup_logging(settings)

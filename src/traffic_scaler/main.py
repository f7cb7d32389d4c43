"""
Traffic Scaler Main Application
===============================

FastAPI entry point for the traffic scaling service.

The lifespan composes one TrafficScaler from settings, stores it on
``app.state`` and keeps it fresh with a background refresh task.
Handlers receive it through the ``get_scaler`` dependency.

Endpoints:
    GET  /                   - Service information
    GET  /health             - Liveness probe (is process alive?)
    GET  /ready              - Readiness probe (population cached?)
    GET  /vehicles           - Zoom-adaptive vehicle query
    GET  /rsus               - Roadside units, optionally within bounds
    GET  /congestion         - Congestion zones
    GET  /incidents          - Incidents from the last refresh
    GET  /stats              - Population statistics and refresh counters
    GET  /analytics          - Derived analytics
    POST /refresh            - Run a refresh (force=true skips the cache)
    POST /inference/{action} - Pass-through to the inference engine
    WS   /ws/stats           - Statistics pushed once per second
"""

import asyncio
import logging
import os
import random
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import Body, Depends, FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse

from traffic_scaler.config import Settings, settings
from traffic_scaler.inference import (
    InferenceEngine,
    MockInferenceEngine,
    RemoteInferenceEngine,
)
from traffic_scaler.models.geometry import Bounds
from traffic_scaler.models.stats import RefreshStatus
from traffic_scaler.observability import TrafficAnalyticsComputer
from traffic_scaler.pipeline import PopulationGenerator, RoadSegmentProcessor, RSUPlacer
from traffic_scaler.query import ViewportSampler
from traffic_scaler.scaler import TrafficScaler
from traffic_scaler.sources import MockTrafficSource, TomTomTrafficSource, TrafficSource


logger = logging.getLogger(__name__)


# =============================================================================
# Global State
# =============================================================================

# Shutdown flag
_shutdown_flag: bool = False

# Background refresh
_refresh_task: Optional[asyncio.Task] = None
_startup_time: float = 0.0


# =============================================================================
# Component Factories
# =============================================================================

def create_traffic_source(cfg: Settings = settings) -> TrafficSource:
    """
    Create traffic source based on config.

    Fails fast if the TomTom backend is requested without an API key.
    """
    backend = cfg.source.backend

    if backend == "mock":
        logger.info("Using MockTrafficSource")
        return MockTrafficSource(region=cfg.region, points=cfg.source.mock_points)

    elif backend == "tomtom":
        logger.info(f"Using TomTomTrafficSource: max_rps={cfg.source.max_rps}")
        return TomTomTrafficSource(config=cfg.source, region=cfg.region)

    else:
        raise ValueError(f"Unknown traffic source backend: {backend}")


def create_inference_engine(cfg: Settings = settings) -> Optional[InferenceEngine]:
    """Create inference engine based on config, None when disabled."""
    backend = cfg.inference.backend

    if backend == "disabled":
        logger.info("Inference disabled")
        return None

    elif backend == "mock":
        logger.info("Using MockInferenceEngine")
        return MockInferenceEngine()

    elif backend == "remote":
        if not cfg.inference.endpoint:
            raise RuntimeError(
                "Remote inference backend requested but no endpoint configured. "
                "Set inference.endpoint or TRAFFIC_INFERENCE_URL"
            )
        return RemoteInferenceEngine(
            endpoint=cfg.inference.endpoint,
            timeout_seconds=cfg.inference.timeout_seconds,
        )

    else:
        raise ValueError(f"Unknown inference backend: {backend}")


def create_traffic_scaler(
    cfg: Settings = settings,
    source: Optional[TrafficSource] = None,
    inference: Optional[InferenceEngine] = None,
    rng: Optional[random.Random] = None,
) -> TrafficScaler:
    """
    Compose a TrafficScaler and its pipeline stages from settings.

    Args:
        cfg: Settings to read
        source: Traffic source, created from config when omitted
        inference: Inference engine, created from config when omitted
        rng: Random source shared by all stages
    """
    rng = rng or random.Random()
    source = source or create_traffic_source(cfg)
    if inference is None:
        inference = create_inference_engine(cfg)

    processor = RoadSegmentProcessor(
        region=cfg.region,
        grid_steps=cfg.scaler.synthetic_grid_steps,
        min_segments=cfg.scaler.min_segments,
        rng=rng,
    )
    generator = PopulationGenerator(
        vehicle_target=cfg.scaler.vehicle_target,
        vehicle_types=cfg.vehicles.types,
        owner_names=cfg.vehicles.owner_names,
        speed_noise_kmh=cfg.vehicles.speed_noise_kmh,
        position_jitter_deg=cfg.vehicles.position_jitter_deg,
        inactive_ratio=cfg.vehicles.inactive_ratio,
        id_prefix=cfg.vehicles.id_prefix,
        rng=rng,
    )
    placer = RSUPlacer(
        density_km=cfg.rsu.density_km,
        min_distance_km=cfg.rsu.min_distance_km,
        min_count=cfg.rsu.min_count,
        max_count=cfg.rsu.max_count,
        coverage_radius_range=(cfg.rsu.coverage_radius_min_m, cfg.rsu.coverage_radius_max_m),
        inactive_ratio=cfg.rsu.inactive_ratio,
        attempts_per_rsu=cfg.rsu.attempts_per_rsu,
        strategic_locations=cfg.rsu.strategic_locations,
        rng=rng,
    )

    return TrafficScaler(
        source=source,
        processor=processor,
        generator=generator,
        rsu_placer=placer,
        sampler=ViewportSampler(cfg.viewport, rng=rng),
        cache_timeout=cfg.scaler.cache_timeout_seconds,
        grid_size=cfg.clustering.grid_size,
        sample_cap=cfg.clustering.sample_cap,
        zone_threshold=cfg.scaler.congestion_zone_threshold,
        inference=inference,
        enrich_congestion=cfg.inference.enrich_congestion,
    )


# =============================================================================
# Dependencies
# =============================================================================

def get_scaler(request: Request) -> TrafficScaler:
    return request.app.state.scaler


def get_inference(request: Request) -> Optional[InferenceEngine]:
    return getattr(request.app.state, "inference", None)


def get_analytics(request: Request) -> TrafficAnalyticsComputer:
    return request.app.state.analytics


def _bounds_from_query(
    north: Optional[float],
    south: Optional[float],
    east: Optional[float],
    west: Optional[float],
) -> Optional[Bounds]:
    """Bounds are only used when all four edges are supplied."""
    if None in (north, south, east, west):
        return None
    return Bounds(north=north, south=south, east=east, west=west)


# =============================================================================
# Background Refresh
# =============================================================================

async def auto_refresh(scaler: TrafficScaler, interval: float) -> None:
    """Refresh the population every ``interval`` seconds."""
    logger.info(f"Auto-refresh started: interval={interval}s")

    while not _shutdown_flag:
        try:
            result = await scaler.fetch_and_scale()
            if result.ran_pipeline:
                logger.info(
                    f"Auto-refresh {result.status.value} in {result.elapsed_seconds:.2f}s"
                )
            elif result.status is RefreshStatus.FAILED:
                logger.error(f"Auto-refresh failed: {result.error}")
            await asyncio.sleep(interval)

        except asyncio.CancelledError:
            logger.info("Auto-refresh cancelled")
            break
        except Exception as e:
            logger.error(f"Auto-refresh error: {e}")
            await asyncio.sleep(interval)

    logger.info("Auto-refresh stopped")


# =============================================================================
# Lifespan Management
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan manager with graceful shutdown."""
    global _refresh_task, _startup_time, _shutdown_flag

    _startup_time = time.time()
    _shutdown_flag = False
    logger.info(f"Starting {settings.service.name} {settings.service.version}")

    # Components may be preset (tests, embedding)
    if getattr(app.state, "scaler", None) is None:
        app.state.inference = create_inference_engine(settings)
        app.state.scaler = create_traffic_scaler(settings, inference=app.state.inference)
    elif not hasattr(app.state, "inference"):
        app.state.inference = app.state.scaler.inference
    if getattr(app.state, "analytics", None) is None:
        app.state.analytics = TrafficAnalyticsComputer()

    _refresh_task = asyncio.create_task(
        auto_refresh(app.state.scaler, settings.scaler.refresh_interval_seconds),
        name="auto_refresh",
    )

    logger.info("All components started")

    yield

    # Shutdown
    logger.info("Shutting down gracefully...")
    _shutdown_flag = True

    if _refresh_task:
        _refresh_task.cancel()
        try:
            await _refresh_task
        except asyncio.CancelledError:
            pass

    logger.info("Shutdown complete")


# =============================================================================
# FastAPI Application
# =============================================================================

app = FastAPI(
    title="TrafficScaler",
    description="Traffic scaling, spatial clustering and viewport query service",
    version=settings.service.version,
    lifespan=lifespan,
)


# =============================================================================
# HTTP Endpoints
# =============================================================================

@app.get("/")
async def root() -> JSONResponse:
    """Service information endpoint."""
    return JSONResponse({
        "service": "TrafficScaler",
        "version": settings.service.version,
        "name": settings.service.name,
        "status": "running",
        "source_backend": settings.source.backend,
        "inference_backend": settings.inference.backend,
    })


@app.get("/health")
async def health() -> JSONResponse:
    """
    Liveness probe - is the process alive?

    Always returns 200 if the service is running.
    """
    return JSONResponse({
        "status": "healthy",
        "uptime_seconds": round(time.time() - _startup_time, 1),
    })


@app.get("/ready")
async def ready(scaler: TrafficScaler = Depends(get_scaler)) -> JSONResponse:
    """
    Readiness probe - is a population cached?

    Returns 200 once the first refresh succeeded, 503 before.
    """
    snapshot = scaler.snapshot
    body = {
        "state": scaler.state.value,
        "synthetic_only": snapshot.synthetic_only,
    }
    if snapshot.is_empty:
        return JSONResponse({"status": "not_ready", **body}, status_code=503)
    return JSONResponse({"status": "ready", **body})


@app.get("/vehicles")
async def vehicles(
    north: Optional[float] = None,
    south: Optional[float] = None,
    east: Optional[float] = None,
    west: Optional[float] = None,
    zoom: Optional[float] = None,
    scaler: TrafficScaler = Depends(get_scaler),
) -> JSONResponse:
    """Vehicles for a viewport; the tier depends on zoom and bounds."""
    result = scaler.query_vehicles(_bounds_from_query(north, south, east, west), zoom)
    return JSONResponse({
        "tier": result.tier.value,
        "count": result.count,
        "total": scaler.snapshot.total_vehicles,
        "vehicles": [v.to_dict() for v in result.vehicles],
    })


@app.get("/rsus")
async def rsus(
    north: Optional[float] = None,
    south: Optional[float] = None,
    east: Optional[float] = None,
    west: Optional[float] = None,
    scaler: TrafficScaler = Depends(get_scaler),
) -> JSONResponse:
    """Roadside units, filtered when bounds are given."""
    selected = scaler.get_rsus(_bounds_from_query(north, south, east, west))
    return JSONResponse({
        "count": len(selected),
        "total": len(scaler.snapshot.rsus),
        "rsus": [r.to_dict() for r in selected],
    })


@app.get("/congestion")
async def congestion(scaler: TrafficScaler = Depends(get_scaler)) -> JSONResponse:
    zones = scaler.get_congestion_data()
    return JSONResponse({
        "count": len(zones),
        "zones": [z.model_dump(mode="json", by_alias=True) for z in zones],
    })


@app.get("/incidents")
async def incidents(scaler: TrafficScaler = Depends(get_scaler)) -> JSONResponse:
    found = scaler.get_incidents()
    return JSONResponse({
        "count": len(found),
        "incidents": [i.model_dump(mode="json") for i in found],
    })


@app.get("/stats")
async def stats(scaler: TrafficScaler = Depends(get_scaler)) -> JSONResponse:
    return JSONResponse(scaler.get_stats().to_dict())


@app.get("/analytics")
async def analytics(
    scaler: TrafficScaler = Depends(get_scaler),
    computer: TrafficAnalyticsComputer = Depends(get_analytics),
) -> JSONResponse:
    """Derived analytics for observability."""
    return JSONResponse(computer.compute(scaler.snapshot).to_dict())


@app.post("/refresh")
async def refresh(
    force: bool = False,
    scaler: TrafficScaler = Depends(get_scaler),
) -> JSONResponse:
    """
    Run a refresh.

    Returns 502 when the refresh failed; the previous population is
    still served in that case.
    """
    result = await scaler.fetch_and_scale(force=force)
    status_code = 502 if result.status is RefreshStatus.FAILED else 200
    return JSONResponse(
        {**result.to_dict(), "stats": scaler.get_stats().to_dict()},
        status_code=status_code,
    )


@app.post("/inference/{action}")
async def inference(
    action: str,
    payload: Optional[Dict[str, Any]] = Body(default=None),
    engine: Optional[InferenceEngine] = Depends(get_inference),
) -> JSONResponse:
    """Pass-through to the configured inference engine."""
    if engine is None:
        return JSONResponse(
            {"action": action, "ok": False, "error": "Inference is disabled"},
            status_code=503,
        )

    result = await engine.infer(action, payload or {})
    return JSONResponse(result.to_dict(), status_code=200 if result.ok else 400)


# =============================================================================
# WebSocket Endpoints
# =============================================================================

@app.websocket("/ws/stats")
async def stats_stream(websocket: WebSocket) -> None:
    """WebSocket endpoint pushing statistics once per second."""
    await websocket.accept()
    logger.info("Client connected to /ws/stats")

    scaler: TrafficScaler = websocket.app.state.scaler
    try:
        while not _shutdown_flag:
            await websocket.send_json(scaler.get_stats().to_dict())
            await asyncio.sleep(1.0)

    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.warning(f"WebSocket error: {e}")
    finally:
        logger.info("Client disconnected from /ws/stats")


# =============================================================================
# Main Entry Point
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    port = int(os.environ.get("PORT", settings.server.port))

    uvicorn.run(
        "traffic_scaler.main:app",
        host=settings.server.host,
        port=port,
        reload=False,
    )

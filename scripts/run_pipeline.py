#!/usr/bin/env python3
"""
Pipeline Run Script
===================

Standalone script to exercise the scaling pipeline.

Two modes:
    1. Local (default): run one refresh against the configured source,
       then log result sizes of a few viewport queries per tier
    2. Watch (--watch): connect to a running service's /ws/stats and log
       the pushed statistics for a configurable duration

Usage:
    python scripts/run_pipeline.py --vehicles 200000 --seed 7
    python scripts/run_pipeline.py --watch ws://localhost:8002/ws/stats --duration 30
"""

import argparse
import asyncio
import json
import logging
import os
import random
import sys
import time

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import websockets
from websockets.exceptions import ConnectionClosed

from traffic_scaler.config import settings
from traffic_scaler.main import create_traffic_scaler
from traffic_scaler.models.geometry import Bounds


logger = logging.getLogger(__name__)


async def run_local(vehicles: int, seed: int) -> bool:
    """
    Run one refresh and query a few viewports.

    Returns:
        True when a population was built
    """
    cfg = settings.model_copy(deep=True)
    cfg.scaler.vehicle_target = vehicles

    scaler = create_traffic_scaler(cfg, rng=random.Random(seed))

    logger.info("=" * 60)
    logger.info("Pipeline Run")
    logger.info("=" * 60)
    logger.info(f"Source backend: {cfg.source.backend}")
    logger.info(f"Vehicle target: {vehicles:,}")
    logger.info("=" * 60)

    result = await scaler.fetch_and_scale()
    stats = scaler.get_stats()
    logger.info(f"Refresh: {result.status.value} in {result.elapsed_seconds:.2f}s")
    if result.error:
        logger.warning(f"Refresh error: {result.error}")

    for key, value in stats.to_dict().items():
        logger.info(f"  {key}: {value}")

    lat, lng = cfg.region.center
    viewports = [
        ("whole map", None, 5),
        ("city", Bounds(lat + 0.25, lat - 0.25, lng + 0.25, lng - 0.25), 10),
        ("district", Bounds(lat + 0.05, lat - 0.05, lng + 0.05, lng - 0.05), 12),
        ("street", Bounds(lat + 0.01, lat - 0.01, lng + 0.01, lng - 0.01), 15),
    ]

    logger.info("-" * 40)
    for name, bounds, zoom in viewports:
        started = time.perf_counter()
        query = scaler.query_vehicles(bounds, zoom)
        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info(
            f"  {name:<10} zoom={zoom:<3} tier={query.tier.value:<9} "
            f"results={query.count:>7,} ({elapsed_ms:.1f} ms)"
        )
    logger.info("=" * 60)

    return stats.total_vehicles > 0


async def watch(url: str, duration: int) -> bool:
    """
    Log statistics pushed by a running service.

    Returns:
        True when at least one message was received
    """
    logger.info(f"Watching {url} for {duration}s")
    received = 0
    deadline = time.time() + duration

    try:
        async with websockets.connect(url, close_timeout=5) as ws:
            while time.time() < deadline:
                try:
                    raw = await asyncio.wait_for(ws.recv(), timeout=max(0.1, deadline - time.time()))
                except asyncio.TimeoutError:
                    break
                stats = json.loads(raw)
                received += 1
                logger.info(
                    f"  state={stats.get('state')} vehicles={stats.get('totalVehicles'):,} "
                    f"clusters={stats.get('clusters')} refreshes={stats.get('refreshCount')}"
                )
    except (OSError, ConnectionClosed) as e:
        logger.error(f"Connection error: {e}")

    logger.info(f"Messages received: {received}")
    return received > 0


def main():
    parser = argparse.ArgumentParser(description="Run the traffic scaling pipeline")
    parser.add_argument(
        "--vehicles",
        type=int,
        default=settings.scaler.vehicle_target,
        help="Vehicle target (default: from config)",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=42,
        help="Random seed (default: 42)",
    )
    parser.add_argument(
        "--watch",
        type=str,
        default=None,
        help="WebSocket URL of a running service's /ws/stats",
    )
    parser.add_argument(
        "--duration",
        type=int,
        default=30,
        help="Watch duration in seconds (default: 30)",
    )

    args = parser.parse_args()

    if args.watch:
        ok = asyncio.run(watch(args.watch, args.duration))
    else:
        ok = asyncio.run(run_local(args.vehicles, args.seed))

    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()

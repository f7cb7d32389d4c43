"""
Traffic Scaler
==============

Orchestrator that owns the cached population and answers queries.

Pipeline (one refresh):
    source.fetch_flow()
        -> RoadSegmentProcessor.process()  (+ densify below min_segments)
        -> PopulationGenerator.allocate() / generate()
        -> RSUPlacer.place()
        -> cluster_vehicles() + CellIndex.build()
        -> congestion zones (carried through or derived)
        -> optional inference enrichment
        -> single-assignment snapshot swap

Concurrency:
    Everything after the upstream await is synchronous, so queries on
    the event loop either see the previous snapshot or the new one. A
    refresh started while another is in flight returns IN_FLIGHT; one
    started within the cache timeout of the last success returns CACHED.
    The in-flight flag is a re-entrancy guard for overlapping coroutines,
    not a lock.

Failure:
    fetch_and_scale() never raises. Upstream and pipeline failures keep
    the previous snapshot and are reported through RefreshResult. An
    upstream failure with nothing cached builds a synthetic-only
    population instead (FALLBACK).
"""

import logging
import math
import time
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from traffic_scaler.inference import InferenceEngine
from traffic_scaler.models.geometry import Bounds
from traffic_scaler.models.population import RoadsideUnit, Vehicle
from traffic_scaler.models.segment import TrafficData
from traffic_scaler.models.stats import (
    RefreshResult,
    RefreshStatus,
    ScalerState,
    TrafficStats,
)
from traffic_scaler.models.upstream import CongestionZone, FlowSample, Incident
from traffic_scaler.pipeline import (
    CellIndex,
    PopulationGenerator,
    RoadSegmentProcessor,
    RSUPlacer,
    cluster_vehicles,
)
from traffic_scaler.query import ViewportResult, ViewportSampler, ViewportTier
from traffic_scaler.scaler.snapshot import TrafficSnapshot
from traffic_scaler.sources import TrafficSource


logger = logging.getLogger(__name__)


class TrafficScaler:
    """
    Long-lived owner of the scaled traffic population.

    One instance per process is composed by the application and injected
    into query handlers.

    Example:
        scaler = TrafficScaler(source, processor, generator, placer, sampler)
        result = await scaler.fetch_and_scale()
        vehicles = scaler.get_vehicles(bounds, zoom_level=14)
    """

    def __init__(
        self,
        source: TrafficSource,
        processor: RoadSegmentProcessor,
        generator: PopulationGenerator,
        rsu_placer: RSUPlacer,
        sampler: ViewportSampler,
        cache_timeout: float = 60.0,
        grid_size: float = 0.01,
        sample_cap: int = 1000,
        zone_threshold: float = 30.0,
        inference: Optional[InferenceEngine] = None,
        enrich_congestion: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            source: Upstream flow and incident source
            processor: Segment processor
            generator: Vehicle population generator
            rsu_placer: Roadside unit placer
            sampler: Viewport sampler
            cache_timeout: Seconds a successful refresh stays fresh
            grid_size: Cluster cell size in degrees
            sample_cap: Members retained per cluster
            zone_threshold: Congestion above which a segment yields a zone
            inference: Optional inference capability
            enrich_congestion: Predict zone levels during refresh
            clock: Monotonic time source for freshness checks
        """
        self.source = source
        self.processor = processor
        self.generator = generator
        self.rsu_placer = rsu_placer
        self.sampler = sampler
        self.cache_timeout = cache_timeout
        self.grid_size = grid_size
        self.sample_cap = sample_cap
        self.zone_threshold = zone_threshold
        self.inference = inference
        self.enrich_congestion = enrich_congestion
        self.clock = clock

        self._snapshot = TrafficSnapshot.empty()
        self._last_success: Optional[float] = None
        self._in_flight: bool = False

        # Counters
        self._refresh_count: int = 0
        self._failure_count: int = 0
        self._last_error: Optional[str] = None

        logger.info(
            f"TrafficScaler initialized: cache_timeout={cache_timeout}s, "
            f"grid={grid_size}, sample_cap={sample_cap}, "
            f"enrich_congestion={enrich_congestion and inference is not None}"
        )

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def state(self) -> ScalerState:
        if self._in_flight:
            return ScalerState.FETCHING
        if self._snapshot.is_empty:
            return ScalerState.EMPTY
        return ScalerState.READY

    @property
    def snapshot(self) -> TrafficSnapshot:
        """Current snapshot (immutable)."""
        return self._snapshot

    @property
    def is_fresh(self) -> bool:
        """True when the last successful refresh is within the cache timeout."""
        if self._last_success is None:
            return False
        return self.clock() - self._last_success < self.cache_timeout

    # -------------------------------------------------------------------------
    # Refresh
    # -------------------------------------------------------------------------

    async def fetch_and_scale(self, force: bool = False) -> RefreshResult:
        """
        Fetch upstream data and rebuild the population.

        Args:
            force: Skip the freshness check (the in-flight guard still applies)

        Returns:
            RefreshResult describing what happened
        """
        if self._in_flight:
            logger.debug("Refresh already in flight, skipping")
            return RefreshResult(RefreshStatus.IN_FLIGHT)
        if not force and self.is_fresh:
            logger.debug("Cached population is fresh, skipping refresh")
            return RefreshResult(RefreshStatus.CACHED)

        self._in_flight = True
        started = self.clock()
        try:
            try:
                sample = await self.source.fetch_flow()
            except Exception as e:
                return await self._on_upstream_failure(e, started)

            incidents = await self._fetch_incidents()

            try:
                snapshot = self._build_snapshot(sample, incidents)
                snapshot = await self._enrich(snapshot)
            except Exception as e:
                logger.exception(f"Pipeline failed, keeping previous population: {e}")
                return self._failed(f"Pipeline failure: {e}", started)

            self._commit(snapshot)
            return RefreshResult(
                RefreshStatus.REFRESHED,
                elapsed_seconds=self.clock() - started,
            )
        finally:
            self._in_flight = False

    async def _on_upstream_failure(self, error: Exception, started: float) -> RefreshResult:
        """Keep the cached population, or fall back to a synthetic one."""
        message = f"Upstream failure: {error}"
        logger.error(f"{message}; keeping previous population")

        if not self._snapshot.is_empty:
            return self._failed(message, started)

        try:
            snapshot = self._build_snapshot(None, [], synthetic_only=True)
        except Exception as e:
            logger.exception(f"Synthetic fallback failed: {e}")
            return self._failed(f"{message}; fallback failed: {e}", started)

        self._commit(snapshot)
        self._failure_count += 1
        self._last_error = message
        logger.warning("Serving a synthetic-only population until the upstream recovers")
        return RefreshResult(
            RefreshStatus.FALLBACK,
            error=message,
            elapsed_seconds=self.clock() - started,
        )

    def _failed(self, message: str, started: float) -> RefreshResult:
        self._failure_count += 1
        self._last_error = message
        return RefreshResult(
            RefreshStatus.FAILED,
            error=message,
            elapsed_seconds=self.clock() - started,
        )

    def _commit(self, snapshot: TrafficSnapshot) -> None:
        self._snapshot = snapshot
        self._last_success = self.clock()
        self._refresh_count += 1

    async def _fetch_incidents(self) -> List[Incident]:
        """Best-effort incident fetch."""
        try:
            return list(await self.source.fetch_incidents())
        except Exception as e:
            logger.warning(f"Incidents unavailable: {e}")
            return []

    def _build_snapshot(
        self,
        sample: Optional[FlowSample],
        incidents: Sequence[Incident],
        synthetic_only: bool = False,
    ) -> TrafficSnapshot:
        """Run the synchronous pipeline stages."""
        started = time.perf_counter()

        traffic = self.processor.process(sample)
        if self.processor.needs_densification(traffic):
            traffic = self.processor.densify(traffic)

        traffic = self.generator.allocate(traffic)
        vehicles = self.generator.generate(traffic)
        rsus = self.rsu_placer.place(traffic)

        clusters = cluster_vehicles(vehicles, self.grid_size, self.sample_cap)
        cell_index = CellIndex.build(vehicles, self.grid_size)

        if sample is not None and sample.congestion_zones:
            zones = list(sample.congestion_zones)
        else:
            zones = self.derive_congestion_zones(traffic)

        logger.info(
            f"Pipeline complete: {traffic.segment_count} segments "
            f"({traffic.total_length_km:.1f} km), {len(vehicles):,} vehicles, "
            f"{len(rsus)} RSUs, {len(clusters)} clusters, {len(zones)} zones "
            f"in {time.perf_counter() - started:.2f}s"
        )

        return TrafficSnapshot(
            traffic=traffic,
            vehicles=tuple(vehicles),
            rsus=tuple(rsus),
            clusters=MappingProxyType(clusters),
            cell_index=cell_index,
            congestion_zones=tuple(zones),
            incidents=tuple(incidents),
            generated_at=datetime.now(timezone.utc),
            synthetic_only=synthetic_only,
        )

    def derive_congestion_zones(self, traffic: TrafficData) -> List[CongestionZone]:
        """One zone per segment above the threshold, at the segment midpoint."""
        now = datetime.now(timezone.utc)
        zones = []
        for segment in traffic.segments:
            if segment.congestion <= self.zone_threshold:
                continue
            midpoint = segment.midpoint
            zones.append(CongestionZone(
                zone_id=f"zone-{segment.segment_id}",
                zone_name=f"Segment {segment.segment_id}",
                lat=midpoint.lat,
                lng=midpoint.lng,
                congestion_level=round(segment.congestion, 1),
                updated_at=now,
            ))
        return zones

    async def _enrich(self, snapshot: TrafficSnapshot) -> TrafficSnapshot:
        """Overwrite zone levels with predicted ones when enabled."""
        if not (self.enrich_congestion and self.inference and snapshot.congestion_zones):
            return snapshot

        result = await self.inference.infer("predict_congestion", {
            "zones": [
                {
                    "zone_id": z.zone_id,
                    "congestion_level": z.congestion_level,
                    "lat": z.lat,
                    "lng": z.lng,
                }
                for z in snapshot.congestion_zones
            ],
        })
        if not result.ok:
            logger.warning(f"Congestion prediction unavailable: {result.error}")
            return snapshot

        try:
            zones = self._apply_predictions(snapshot.congestion_zones, result.result)
        except (AttributeError, TypeError, ValueError) as e:
            logger.warning(f"Malformed congestion prediction, keeping observed levels: {e}")
            return snapshot

        logger.info(f"Enriched {sum(z.predicted_by_ml for z in zones)} congestion zones")
        return TrafficSnapshot(
            traffic=snapshot.traffic,
            vehicles=snapshot.vehicles,
            rsus=snapshot.rsus,
            clusters=snapshot.clusters,
            cell_index=snapshot.cell_index,
            congestion_zones=tuple(zones),
            incidents=snapshot.incidents,
            generated_at=snapshot.generated_at,
            synthetic_only=snapshot.synthetic_only,
        )

    @staticmethod
    def _apply_predictions(
        zones: Tuple[CongestionZone, ...],
        result: Dict[str, Any],
    ) -> List[CongestionZone]:
        """Zones with predicted levels applied; unmatched zones are unchanged."""
        predictions = {
            p.get("zone_id"): p
            for p in result.get("predictions") or []
            if isinstance(p, dict)
        }
        enriched = []
        for zone in zones:
            p = predictions.get(zone.zone_id)
            if p is None or p.get("predicted_congestion") is None:
                enriched.append(zone)
                continue
            level = float(p["predicted_congestion"])
            if math.isnan(level):
                raise ValueError(f"predicted congestion for {zone.zone_id} is NaN")
            confidence = p.get("confidence")
            if confidence is not None:
                confidence = float(confidence)
                if not 0.0 <= confidence <= 1.0:
                    confidence = None
            enriched.append(zone.model_copy(update={
                "congestion_level": max(0.0, min(100.0, level)),
                "predicted_by_ml": True,
                "ml_confidence": confidence,
            }))
        return enriched

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def query_vehicles(
        self,
        bounds: Optional[Bounds] = None,
        zoom_level: Optional[float] = 10,
    ) -> ViewportResult:
        """Viewport query returning the selected vehicles and the tier."""
        snapshot = self._snapshot
        try:
            return self.sampler.select(
                snapshot.clusters, snapshot.cell_index, bounds, zoom_level,
            )
        except Exception as e:
            logger.exception(f"Vehicle query failed: {e}")
            return ViewportResult(tier=ViewportTier.OVERVIEW)

    def get_vehicles(
        self,
        bounds: Optional[Bounds] = None,
        zoom_level: Optional[float] = 10,
    ) -> List[Vehicle]:
        """Vehicles for a viewport (see ViewportSampler for the tiers)."""
        return self.query_vehicles(bounds, zoom_level).vehicles

    def get_rsus(self, bounds: Optional[Bounds] = None) -> List[RoadsideUnit]:
        """RSUs inside the bounds, or all of them without usable bounds."""
        rsus = self._snapshot.rsus
        try:
            if bounds is None or not bounds.is_valid:
                return list(rsus)
            return [r for r in rsus if bounds.contains(r.lat, r.lng)]
        except Exception as e:
            logger.exception(f"RSU query failed: {e}")
            return []

    def get_congestion_data(self) -> List[CongestionZone]:
        return list(self._snapshot.congestion_zones)

    def get_incidents(self) -> List[Incident]:
        return list(self._snapshot.incidents)

    def get_stats(self) -> TrafficStats:
        snapshot = self._snapshot
        return TrafficStats(
            total_vehicles=snapshot.total_vehicles,
            total_rsus=len(snapshot.rsus),
            clusters=len(snapshot.clusters),
            segments=snapshot.traffic.segment_count,
            last_updated=snapshot.generated_at,
            state=self.state,
            total_length_km=snapshot.traffic.total_length_km,
            incidents=len(snapshot.incidents),
            refresh_count=self._refresh_count,
            failure_count=self._failure_count,
            last_error=self._last_error,
        )

"""AcquisitionScheduler: one wall-clock-aligned loop per metric.

Once per minute boundary, for every enabled site:
  disconnected / no cached value   -> skipped (DEBUG, not an error)
  value present                    -> classify, INSERT sample
  duplicate (site, metric, minute) -> counted, not an error
  anything else                    -> logged, counted, next site continues

Sleeps target an absolute boundary (next top-of-minute) recomputed every
cycle, so the loop does not drift.
"""
from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config import settings
from core.connections import ConnectionManager
from core.health import HealthCounters
from core.live_cache import LiveValueCache, NodeSnapshot
from core.node_map import NodeMap
from models.site import Site
from services.metric_catalog import MetricDefinition
from services.sample_writer import InsertResult, SampleWriter, truncate_to_minute
from services.status import classify

logger = logging.getLogger("pumproom.acquisition")


def next_minute_boundary(now: datetime) -> datetime:
    return truncate_to_minute(now) + timedelta(minutes=1)


class SiteOutcome(enum.Enum):
    INSERTED = "inserted"
    DUPLICATE = "duplicate"
    SKIPPED = "skipped"


@dataclass
class CycleStats:
    metric_type: str
    timestamp: datetime
    success: int = 0
    duplicates: int = 0
    skipped: int = 0
    failed: int = 0
    failed_sites: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.success + self.duplicates + self.skipped + self.failed

    def as_dict(self) -> dict:
        return {
            "metric_type": self.metric_type,
            "timestamp": self.timestamp.isoformat(),
            "success": self.success,
            "duplicates": self.duplicates,
            "skipped": self.skipped,
            "failed": self.failed,
            "total": self.total,
        }


class AcquisitionScheduler:

    def __init__(
        self,
        metric: MetricDefinition,
        session_factory: async_sessionmaker[AsyncSession],
        cache: LiveValueCache,
        connections: ConnectionManager,
        node_map: NodeMap,
        *,
        writer: SampleWriter | None = None,
        health: HealthCounters | None = None,
        start_delay: float | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.metric = metric
        self.session_factory = session_factory
        self.cache = cache
        self.connections = connections
        self.writer = writer or SampleWriter(session_factory)
        self.health = health or HealthCounters()
        self.start_delay = settings.ACQUISITION_START_DELAY if start_delay is None else start_delay
        self._clock = clock
        self._stop = asyncio.Event()
        self.last_stats: CycleStats | None = None

        # Resolved once; a missing primary mapping is logged here, not every minute
        self.node_ids: list[str] = []
        for key in metric.node_keys:
            if key == metric.node_key or key in node_map:
                node_id = node_map.resolve(key)
                if node_id:
                    self.node_ids.append(node_id)

    @property
    def name(self) -> str:
        return f"acquisition:{self.metric.metric_type}"

    async def start(self) -> None:
        self._stop.clear()
        if not self.node_ids:
            logger.error("[%s] no node mapping, scheduler not started", self.metric.metric_type)
            return
        logger.info(
            "AcquisitionScheduler started (metric=%s, nodes=%s)",
            self.metric.metric_type, ", ".join(self.node_ids),
        )
        if await self._wait(self.start_delay):
            return

        target = None
        while not self._stop.is_set():
            target = self._next_target(target)
            if await self._wait((target - self._clock()).total_seconds()):
                break
            try:
                await self.run_cycle(target)
            except Exception as exc:
                logger.error("[%s] cycle error: %s", self.metric.metric_type, exc, exc_info=True)

    async def stop(self) -> None:
        self._stop.set()
        logger.info("AcquisitionScheduler stopped (metric=%s)", self.metric.metric_type)

    def _next_target(self, previous: datetime | None) -> datetime:
        """Next absolute minute boundary, always later than *previous*."""
        target = next_minute_boundary(self._clock())
        if previous is not None and target <= previous:
            target = previous + timedelta(minutes=1)
        return target

    async def _wait(self, seconds: float) -> bool:
        """Sleep up to *seconds*; True when the stop signal fired."""
        if seconds > 0:
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=seconds)
            except asyncio.TimeoutError:
                pass
        return self._stop.is_set()

    # ------------------------------------------------------------------
    async def run_cycle(self, timestamp: datetime | None = None) -> CycleStats:
        ts = truncate_to_minute(timestamp or self._clock())
        stats = CycleStats(self.metric.metric_type, ts)

        for site in await self._enabled_sites():
            health_key = f"{self.name}:{site.code}"
            try:
                outcome = await self.collect_site(site, ts)
            except Exception as exc:
                stats.failed += 1
                stats.failed_sites.append(site.code)
                streak = self.health.failure(health_key)
                logger.error(
                    "[%s] %s: write failed (%d in a row): %s",
                    self.metric.metric_type, site.code, streak, exc,
                )
                continue

            if outcome is SiteOutcome.INSERTED:
                stats.success += 1
                self.health.success(health_key)
            elif outcome is SiteOutcome.DUPLICATE:
                stats.duplicates += 1
                self.health.success(health_key)
            else:
                stats.skipped += 1

        self.last_stats = stats
        logger.info(
            "[%s] %s: success=%d duplicate=%d skipped=%d failed=%d total=%d",
            self.metric.metric_type, ts.strftime("%Y-%m-%d %H:%M"),
            stats.success, stats.duplicates, stats.skipped, stats.failed, stats.total,
        )
        return stats

    async def collect_site(self, site: Site, ts: datetime) -> SiteOutcome:
        client = await self.connections.get_client(site.code)
        if client is None or not client.is_connected:
            logger.debug("[%s] %s: not connected, skipped", self.metric.metric_type, site.code)
            return SiteOutcome.SKIPPED

        snapshot = await self._read(site.code)
        if snapshot is None:
            logger.debug("[%s] %s: no cached value, skipped", self.metric.metric_type, site.code)
            return SiteOutcome.SKIPPED

        try:
            value = float(snapshot.value)
        except (TypeError, ValueError):
            logger.debug(
                "[%s] %s: non-numeric value %r, skipped",
                self.metric.metric_type, site.code, snapshot.value,
            )
            return SiteOutcome.SKIPPED

        result = await self.writer.insert(
            site_id=site.id,
            metric_type=self.metric.metric_type,
            timestamp=ts,
            value=value,
            status=classify(value, self.metric.thresholds),
            quality=snapshot.quality,
        )
        if result is InsertResult.DUPLICATE:
            return SiteOutcome.DUPLICATE
        return SiteOutcome.INSERTED

    async def _read(self, site_code: str) -> NodeSnapshot | None:
        for node_id in self.node_ids:
            snapshot = await self.cache.try_get(site_code, node_id)
            if snapshot is not None and snapshot.value is not None:
                return snapshot
        return None

    async def _enabled_sites(self) -> list[Site]:
        async with self.session_factory() as session:
            stmt = select(Site).where(Site.is_enabled == True).order_by(Site.id)  # noqa: E712
            result = await session.execute(stmt)
            return list(result.scalars().all())

"""AlarmEvaluator: periodic edge detection over the live value cache.

Per (site, rule) two states, Idle and Triggered:
  Idle -> Triggered   INSERT alarm_record (active), queue notification
  Triggered -> Idle   auto_clear: record -> cleared ("auto cleared")
                      otherwise:  record stays active for the operator
  no change           last_check_time only

Runs every ALARM_CHECK_INTERVAL seconds after ALARM_WARMUP_DELAY. A failure
on one rule is logged and the remaining rules and sites still run.
"""
from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config import settings
from core.connections import ConnectionManager
from core.errors import EvaluationError
from core.health import HealthCounters
from core.live_cache import LiveValueCache
from models.alarm_record import AlarmRecord
from models.alarm_rule import AlarmRule
from models.site import Site
from services.alarm_records import AlarmRecordService
from services.alarm_state import AlarmState, AlarmStateTracker

logger = logging.getLogger("pumproom.alarm_evaluator")

_BOOL_STRINGS = {"true": True, "false": False}


def evaluate_condition(value: Any, trigger_bit: int | None = None) -> bool:
    """Is the trigger condition met for a raw cache value?

    With ``trigger_bit`` an integer value has that bit tested; a boolean value
    (``True`` or "true"/"false") is taken as is. Without it the value is read
    as a boolean, then as a number (non-zero is true). Anything unparseable is
    not a trigger.
    """
    if trigger_bit is not None:
        if trigger_bit < 0:
            raise ValueError(f"trigger_bit must be >= 0, got {trigger_bit}")
        number = _as_int(value)
        if number is not None:
            return bool(number & (1 << trigger_bit))
        flag = _as_bool(value)
        return bool(flag)

    flag = _as_bool(value)
    if flag is not None:
        return flag
    try:
        return float(str(value).strip()) != 0
    except ValueError:
        return False


def _as_bool(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    return _BOOL_STRINGS.get(str(value).strip().lower())


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except ValueError:
        return None


class Edge(enum.Enum):
    TRIGGERED = "triggered"
    CLEARED = "cleared"


@dataclass
class EvaluationStats:
    sites: int = 0
    rules_checked: int = 0
    triggered: int = 0
    cleared: int = 0
    errors: int = 0


class AlarmEvaluator:

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: LiveValueCache,
        connections: ConnectionManager,
        *,
        records: AlarmRecordService | None = None,
        state: AlarmStateTracker | None = None,
        dispatcher=None,
        health: HealthCounters | None = None,
        warmup_delay: float | None = None,
        interval: float | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.session_factory = session_factory
        self.cache = cache
        self.connections = connections
        self.records = records or AlarmRecordService(session_factory)
        self.state = state or AlarmStateTracker()
        self.dispatcher = dispatcher
        self.health = health or HealthCounters()
        self.warmup_delay = settings.ALARM_WARMUP_DELAY if warmup_delay is None else warmup_delay
        self.interval = settings.ALARM_CHECK_INTERVAL if interval is None else interval
        self._clock = clock
        self._stop = asyncio.Event()
        self.last_stats: EvaluationStats | None = None

    async def start(self) -> None:
        self._stop.clear()
        logger.info(
            "AlarmEvaluator started (warmup=%.0fs, interval=%.0fs)",
            self.warmup_delay, self.interval,
        )
        if await self._wait(self.warmup_delay):
            return
        while not self._stop.is_set():
            try:
                await self.run_cycle()
            except Exception as exc:
                logger.error("AlarmEvaluator cycle error: %s", exc, exc_info=True)
            if await self._wait(self.interval):
                break

    async def stop(self) -> None:
        self._stop.set()
        logger.info("AlarmEvaluator stopped")

    async def _wait(self, seconds: float) -> bool:
        if seconds > 0:
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=seconds)
            except asyncio.TimeoutError:
                pass
        return self._stop.is_set()

    # ------------------------------------------------------------------
    async def run_cycle(self) -> EvaluationStats:
        stats = EvaluationStats()
        sites, rules = await self._load_config()

        for site in sites:
            client = await self.connections.get_client(site.code)
            if client is None or not client.is_connected:
                continue
            stats.sites += 1
            health_key = f"alarm_evaluator:{site.code}"
            site_failed = False

            for rule in rules:
                if not rule.applies_to(site.id):
                    continue
                stats.rules_checked += 1
                try:
                    edge = await self.evaluate_rule(site, rule)
                except Exception as exc:
                    stats.errors += 1
                    site_failed = True
                    err = exc if isinstance(exc, EvaluationError) else EvaluationError(
                        site.code, rule.code, str(exc),
                    )
                    logger.error("Alarm evaluation failed: %s", err)
                    continue
                if edge is Edge.TRIGGERED:
                    stats.triggered += 1
                elif edge is Edge.CLEARED:
                    stats.cleared += 1

            if site_failed:
                self.health.failure(health_key)
            else:
                self.health.success(health_key)

        self.last_stats = stats
        if stats.triggered or stats.cleared or stats.errors:
            logger.info(
                "Alarm cycle: sites=%d rules=%d triggered=%d cleared=%d errors=%d",
                stats.sites, stats.rules_checked, stats.triggered, stats.cleared, stats.errors,
            )
        return stats

    async def evaluate_rule(self, site: Site, rule: AlarmRule) -> Edge | None:
        if not rule.trigger_variable:
            return None
        snapshot = await self.cache.try_get(site.code, rule.trigger_variable)
        if snapshot is None:
            return None
        try:
            triggered = evaluate_condition(snapshot.value, rule.trigger_bit)
        except ValueError as exc:
            raise EvaluationError(site.code, rule.code, str(exc)) from exc

        key = self.state.key(site.code, rule.code)
        edge: Edge | None = None
        record: AlarmRecord | None = None

        async with self.state.lock:
            previous = self.state.get(key)
            was_triggered = previous is not None and previous.is_triggered
            now = self._clock()

            if triggered and not was_triggered:
                record = await self.records.create_active(site, rule, snapshot.value, now)
                self.state.set(key, AlarmState(True, record.id, now))
                edge = Edge.TRIGGERED
            elif not triggered and was_triggered:
                if rule.auto_clear and previous.alarm_record_id is not None:
                    await self.records.auto_clear(previous.alarm_record_id, now)
                else:
                    logger.info(
                        "[%s] %s condition gone, record %s left open for operator",
                        site.code, rule.code, previous.alarm_record_id,
                    )
                self.state.set(key, AlarmState(False, None, now))
                edge = Edge.CLEARED
            else:
                self.state.touch(key, now)

        if record is not None and self.dispatcher is not None:
            self.dispatcher.submit(record, site)
        return edge

    async def _load_config(self) -> tuple[list[Site], list[AlarmRule]]:
        async with self.session_factory() as session:
            sites = (await session.execute(
                select(Site).where(Site.is_enabled == True).order_by(Site.id)  # noqa: E712
            )).scalars().all()
            rules = (await session.execute(
                select(AlarmRule).where(AlarmRule.is_active == True).order_by(AlarmRule.id)  # noqa: E712
            )).scalars().all()
        return list(sites), list(rules)

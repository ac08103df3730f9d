"""Tests for alarm condition evaluation and edge detection."""
from datetime import datetime, timedelta

import pytest
from sqlalchemy import select

from core.health import HealthCounters
from models import AlarmRecord, AlarmRule, AlarmSeverity, AlarmStatus
from services.alarm_evaluator import AlarmEvaluator, Edge, evaluate_condition
from services.alarm_state import AlarmStateTracker
from conftest import FakeClock, add_all

T0 = datetime(2024, 1, 1, 12, 0, 0)


class RecordingDispatcher:

    def __init__(self):
        self.submitted = []

    def submit(self, record, site):
        self.submitted.append((record.id, site.code))
        return True


class BrokenCache:
    """Raises for one variable, delegates the rest."""

    def __init__(self, inner, broken_variable):
        self.inner = inner
        self.broken_variable = broken_variable

    async def try_get(self, site_code, node_id):
        if node_id == self.broken_variable:
            raise ConnectionError("cache unavailable")
        return await self.inner.try_get(site_code, node_id)


async def records_of(session_factory):
    async with session_factory() as session:
        stmt = select(AlarmRecord).order_by(AlarmRecord.id)
        return list((await session.execute(stmt)).scalars().all())


@pytest.fixture
def clock():
    return FakeClock(T0)


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def evaluator(session_factory, cache, connections, clock, dispatcher):
    connections.set_connected("PS01")
    return AlarmEvaluator(
        session_factory, cache, connections,
        state=AlarmStateTracker(), dispatcher=dispatcher, warmup_delay=0, interval=0, clock=clock,
    )


class TestEvaluateCondition:

    @pytest.mark.parametrize("value, expected", [
        ("1", True), ("0", False), ("true", True), ("False", False), (" TRUE ", True),
        (True, True), (False, False), (2.5, True), ("0.0", False), ("-3", True),
        ("abc", False), ("", False), (None, False),
    ])
    def test_plain(self, value, expected):
        assert evaluate_condition(value) is expected

    @pytest.mark.parametrize("value, bit, expected", [
        ("5", 0, True), ("5", 1, False), ("5", 2, True), (4, 2, True),
        ("8", 3, True), ("8", 0, False), ("1.5", 0, False), ("x", 0, False),
        (True, 0, True), (True, 3, True), ("True", 3, True), (" false ", 3, False), (False, 0, False),
    ])
    def test_bit(self, value, bit, expected):
        assert evaluate_condition(value, bit) is expected

    def test_negative_bit_rejected(self):
        with pytest.raises(ValueError):
            evaluate_condition("1", -1)


class TestEdgeDetection:

    async def test_trigger_then_auto_clear(self, evaluator, session_factory, site, level_rule,
                                           cache, clock, dispatcher):
        """LVL_HI: "1" at t0 opens a record, "0" at t1 closes the same record."""
        cache.put("PS01", "level", "1")
        stats = await evaluator.run_cycle()
        assert stats.triggered == 1

        (record,) = await records_of(session_factory)
        assert record.status is AlarmStatus.active
        assert record.start_time == T0
        assert record.current_value == "1"
        assert record.severity is AlarmSeverity.high
        assert record.node_id == "level"
        assert dispatcher.submitted == [(record.id, "PS01")]

        t1 = T0 + timedelta(seconds=10)
        clock.now = t1
        cache.put("PS01", "level", "0")
        stats = await evaluator.run_cycle()
        assert stats.cleared == 1

        (record,) = await records_of(session_factory)
        assert record.status is AlarmStatus.cleared
        assert record.end_time == t1
        assert record.remarks == "auto cleared"
        assert len(dispatcher.submitted) == 1

    async def test_continuous_trigger_creates_one_record(self, evaluator, session_factory, site,
                                                         level_rule, cache, clock):
        cache.put("PS01", "level", "1")
        for i in range(5):
            clock.now = T0 + timedelta(seconds=10 * i)
            await evaluator.run_cycle()

        assert len(await records_of(session_factory)) == 1
        state = evaluator.state.get("PS01:LVL_HI")
        assert state.is_triggered
        assert state.last_check_time == T0 + timedelta(seconds=40)

    async def test_without_auto_clear_record_stays_active(self, evaluator, session_factory, site,
                                                          cache, clock):
        await add_all(session_factory, AlarmRule(
            site_id=site.id, code="PUMP_FAULT", name="Pump fault",
            trigger_variable="fault", auto_clear=False, severity="critical",
        ))
        cache.put("PS01", "fault", "true")
        await evaluator.run_cycle()
        cache.put("PS01", "fault", "false")
        clock.now = T0 + timedelta(minutes=1)
        await evaluator.run_cycle()

        (record,) = await records_of(session_factory)
        assert record.status is AlarmStatus.active
        assert record.end_time is None
        assert not evaluator.state.get("PS01:PUMP_FAULT").is_triggered

        # A new rising edge opens a second record
        cache.put("PS01", "fault", "true")
        await evaluator.run_cycle()
        assert len(await records_of(session_factory)) == 2

    async def test_bit_trigger(self, evaluator, session_factory, site, cache):
        await add_all(session_factory, AlarmRule(
            site_id=None, code="ALARM_WORD_B2", name="Overcurrent",
            trigger_variable="alarmWord", trigger_bit=2, auto_clear=True,
        ))
        cache.put("PS01", "alarmWord", "3")
        await evaluator.run_cycle()
        assert await records_of(session_factory) == []

        cache.put("PS01", "alarmWord", "7")
        await evaluator.run_cycle()
        (record,) = await records_of(session_factory)
        assert record.alarm_value == "2"
        assert record.severity is AlarmSeverity.medium

    async def test_site_rule_only_applies_to_its_site(self, evaluator, session_factory, site,
                                                      second_site, cache, connections):
        connections.set_connected("PS02")
        await add_all(session_factory, AlarmRule(
            site_id=second_site.id, code="DOOR", name="Door open", trigger_variable="door",
        ))
        cache.put("PS01", "door", "1")
        cache.put("PS02", "door", "1")

        await evaluator.run_cycle()

        (record,) = await records_of(session_factory)
        assert record.site_id == second_site.id

    async def test_disconnected_site_is_not_evaluated(self, evaluator, session_factory, site,
                                                      level_rule, cache, connections):
        connections.set_connected("PS01", False)
        cache.put("PS01", "level", "1")

        stats = await evaluator.run_cycle()

        assert stats.sites == 0
        assert await records_of(session_factory) == []

    async def test_missing_value_is_no_change(self, evaluator, site, level_rule):
        assert await evaluator.evaluate_rule(site, level_rule) is None
        assert len(evaluator.state) == 0

    async def test_inactive_rule_ignored(self, evaluator, session_factory, site, cache):
        await add_all(session_factory, AlarmRule(
            code="OLD", name="Retired", trigger_variable="old", is_active=False,
        ))
        cache.put("PS01", "old", "1")
        stats = await evaluator.run_cycle()
        assert stats.rules_checked == 0

    async def test_failing_rule_does_not_stop_others(self, session_factory, site, level_rule,
                                                     cache, connections, clock):
        await add_all(session_factory, AlarmRule(code="BROKEN", name="Broken", trigger_variable="broken"))
        connections.set_connected("PS01")
        cache.put("PS01", "level", "1")
        health = HealthCounters()
        evaluator = AlarmEvaluator(
            session_factory, BrokenCache(cache, "broken"), connections,
            health=health, warmup_delay=0, interval=0, clock=clock,
        )

        stats = await evaluator.run_cycle()

        assert stats.errors == 1
        assert stats.triggered == 1
        assert health.consecutive("alarm_evaluator:PS01") == 1

    async def test_returns_edges(self, evaluator, site, level_rule, cache):
        cache.put("PS01", "level", "1")
        assert await evaluator.evaluate_rule(site, level_rule) is Edge.TRIGGERED
        assert await evaluator.evaluate_rule(site, level_rule) is None
        cache.put("PS01", "level", "0")
        assert await evaluator.evaluate_rule(site, level_rule) is Edge.CLEARED

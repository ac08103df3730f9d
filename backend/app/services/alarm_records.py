"""AlarmRecordService: persistence of alarm occurrences.

Evaluator side:  create_active(), auto_clear()
Operator side:   acknowledge(), clear(), clear_by_site()

Every transition ends in Cleared and a Cleared record is never reopened.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from models.alarm_record import AlarmRecord, AlarmSeverity, AlarmStatus
from models.alarm_rule import AlarmRule
from models.site import Site

logger = logging.getLogger("pumproom.alarm_records")

DEFAULT_OPERATOR = "System"
AUTO_CLEAR_REMARK = "auto cleared"
OPEN_STATUSES = (AlarmStatus.active, AlarmStatus.acknowledged)


class AlarmRecordService:

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def create_active(
        self, site: Site, rule: AlarmRule, current_value: Any, now: datetime,
    ) -> AlarmRecord:
        record = AlarmRecord(
            site_id=site.id,
            rule_id=rule.id,
            alarm_name=rule.name,
            alarm_description=rule.message,
            node_id=rule.trigger_variable or "",
            node_name=rule.name,
            severity=AlarmSeverity.from_rule(rule.severity),
            status=AlarmStatus.active,
            current_value=None if current_value is None else str(current_value),
            alarm_value=None if rule.trigger_bit is None else str(rule.trigger_bit),
            unit="",
            start_time=now,
        )
        async with self.session_factory() as session:
            session.add(record)
            await session.commit()
            await session.refresh(record)
        logger.warning(
            "ALARM TRIGGERED: site=%s code=%s record=%d value=%s",
            site.code, rule.code, record.id, record.current_value,
        )
        return record

    async def auto_clear(self, record_id: int, now: datetime) -> bool:
        async with self.session_factory() as session:
            record = await session.get(AlarmRecord, record_id)
            if record is None:
                logger.warning("Auto-clear: alarm record %d not found", record_id)
                return False
            if record.status == AlarmStatus.cleared:
                return True
            record.status = AlarmStatus.cleared
            record.end_time = now
            record.remarks = AUTO_CLEAR_REMARK
            await session.commit()
        logger.info("ALARM AUTO-CLEARED: record=%d", record_id)
        return True

    async def acknowledge(
        self, record_id: int, acknowledged_by: str, now: datetime | None = None,
    ) -> bool:
        now = now or datetime.now()
        async with self.session_factory() as session:
            record = await session.get(AlarmRecord, record_id)
            if record is None:
                return False
            if record.status == AlarmStatus.cleared:
                return True
            record.status = AlarmStatus.cleared
            record.acknowledged_by = acknowledged_by or DEFAULT_OPERATOR
            record.acknowledged_time = now
            record.end_time = now
            await session.commit()
        logger.info("Alarm %d acknowledged by %s", record_id, acknowledged_by)
        return True

    async def clear(
        self, record_id: int, acknowledged_by: str | None = None, now: datetime | None = None,
    ) -> bool:
        now = now or datetime.now()
        async with self.session_factory() as session:
            record = await session.get(AlarmRecord, record_id)
            if record is None:
                return False
            if record.status != AlarmStatus.cleared:
                self._force_clear(record, acknowledged_by, now)
                await session.commit()
                logger.info("Alarm %d cleared", record_id)
        return True

    async def clear_by_site(
        self, site_id: int, acknowledged_by: str | None = None, now: datetime | None = None,
    ) -> int:
        now = now or datetime.now()
        async with self.session_factory() as session:
            stmt = select(AlarmRecord).where(
                AlarmRecord.site_id == site_id,
                AlarmRecord.status == AlarmStatus.active,
            )
            records = (await session.execute(stmt)).scalars().all()
            for record in records:
                self._force_clear(record, acknowledged_by, now)
            await session.commit()
        if records:
            logger.info("Cleared %d active alarms for site %d", len(records), site_id)
        return len(records)

    async def list_active(self, site_id: int | None = None) -> list[AlarmRecord]:
        async with self.session_factory() as session:
            stmt = select(AlarmRecord).where(AlarmRecord.status.in_(OPEN_STATUSES))
            if site_id is not None:
                stmt = stmt.where(AlarmRecord.site_id == site_id)
            stmt = stmt.order_by(AlarmRecord.start_time.desc())
            return list((await session.execute(stmt)).scalars().all())

    async def get(self, record_id: int) -> AlarmRecord | None:
        async with self.session_factory() as session:
            return await session.get(AlarmRecord, record_id)

    @staticmethod
    def _force_clear(record: AlarmRecord, acknowledged_by: str | None, now: datetime) -> None:
        record.status = AlarmStatus.cleared
        if not record.acknowledged_by:
            record.acknowledged_by = acknowledged_by or DEFAULT_OPERATOR
        if record.acknowledged_time is None:
            record.acknowledged_time = now
        if record.end_time is None:
            record.end_time = now

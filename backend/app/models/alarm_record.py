"""Alarm occurrences.

One row per Idle -> Triggered edge. Moves to Cleared on auto-clear or on an
operator Acknowledge / Clear and never leaves Cleared afterwards.
"""
from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base, TimestampMixin


class AlarmSeverity(str, enum.Enum):
    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"

    @classmethod
    def from_rule(cls, severity: str | None) -> "AlarmSeverity":
        return _RULE_SEVERITY.get((severity or "").lower(), cls.medium)


_RULE_SEVERITY = {
    "critical": AlarmSeverity.critical,
    "high": AlarmSeverity.high,
    "error": AlarmSeverity.high,
    "medium": AlarmSeverity.medium,
    "warning": AlarmSeverity.medium,
    "low": AlarmSeverity.low,
    "info": AlarmSeverity.low,
}


class AlarmStatus(str, enum.Enum):
    active = "active"
    acknowledged = "acknowledged"
    cleared = "cleared"


class AlarmRecord(TimestampMixin, Base):
    __tablename__ = "alarm_records"

    __table_args__ = (
        Index("ix_alarm_records_site_status", "site_id", "status"),
        Index("ix_alarm_records_start", "start_time"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    site_id: Mapped[int] = mapped_column(ForeignKey("sites.id", ondelete="CASCADE"))
    rule_id: Mapped[int | None] = mapped_column(
        ForeignKey("alarm_rules.id", ondelete="SET NULL"), default=None
    )

    # Snapshot of the rule at trigger time
    alarm_name: Mapped[str] = mapped_column(String(200))
    alarm_description: Mapped[str | None] = mapped_column(Text, default=None)
    node_id: Mapped[str] = mapped_column(String(200))
    node_name: Mapped[str] = mapped_column(String(200))

    severity: Mapped[AlarmSeverity] = mapped_column(default=AlarmSeverity.medium)
    status: Mapped[AlarmStatus] = mapped_column(default=AlarmStatus.active)

    current_value: Mapped[str | None] = mapped_column(String(100), default=None)
    alarm_value: Mapped[str | None] = mapped_column(String(100), default=None)
    unit: Mapped[str | None] = mapped_column(String(20), default=None)

    start_time: Mapped[datetime] = mapped_column()
    end_time: Mapped[datetime | None] = mapped_column(default=None)
    acknowledged_time: Mapped[datetime | None] = mapped_column(default=None)
    acknowledged_by: Mapped[str | None] = mapped_column(String(100), default=None)
    remarks: Mapped[str | None] = mapped_column(Text, default=None)

    def __repr__(self) -> str:
        return f"<AlarmRecord {self.id} {self.alarm_name} {self.status.value}>"

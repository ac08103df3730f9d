"""Minute time series: one row per site, metric and wall-clock minute.

The unique (site_id, metric_type, timestamp) constraint is what makes a
re-run of an acquisition cycle harmless.
"""
from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import Float, ForeignKey, Index, SmallInteger, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base


class MetricStatus(str, enum.Enum):
    normal = "normal"
    warning = "warning"
    alarm = "alarm"
    offline = "offline"


class MetricSample(Base):
    __tablename__ = "metric_samples"

    __table_args__ = (
        UniqueConstraint(
            "site_id", "metric_type", "timestamp",
            name="uq_metric_samples_site_metric_ts",
        ),
        Index("ix_metric_samples_metric_ts", "metric_type", "timestamp"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    site_id: Mapped[int] = mapped_column(ForeignKey("sites.id", ondelete="CASCADE"))
    metric_type: Mapped[str] = mapped_column(String(50))
    timestamp: Mapped[datetime] = mapped_column()
    value: Mapped[float] = mapped_column(Float)
    status: Mapped[str] = mapped_column(String(20), default=MetricStatus.normal.value)
    quality: Mapped[int] = mapped_column(SmallInteger, default=100)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now())

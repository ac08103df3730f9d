"""SampleWriter: dedup-safe insert of one MetricSample.

Uses INSERT ... ON CONFLICT (site_id, metric_type, timestamp) DO NOTHING
RETURNING id. No returned id means the row already existed.
"""
from __future__ import annotations

import enum
import logging
from datetime import datetime

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from models.metric_sample import MetricSample, MetricStatus

logger = logging.getLogger("pumproom.sample_writer")

_CONFLICT_COLUMNS = ["site_id", "metric_type", "timestamp"]


class InsertResult(enum.Enum):
    INSERTED = "inserted"
    DUPLICATE = "duplicate"


def truncate_to_minute(ts: datetime) -> datetime:
    return ts.replace(second=0, microsecond=0)


class SampleWriter:

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def insert(
        self,
        site_id: int,
        metric_type: str,
        timestamp: datetime,
        value: float,
        status: MetricStatus = MetricStatus.normal,
        quality: int = 100,
    ) -> InsertResult:
        row = {
            "site_id": site_id,
            "metric_type": metric_type,
            "timestamp": truncate_to_minute(timestamp),
            "value": float(value),
            "status": MetricStatus(status).value,
            "quality": max(0, min(100, int(quality))),
        }
        async with self.session_factory() as session:
            stmt = (
                self._insert_for(session)(MetricSample)
                .values(**row)
                .on_conflict_do_nothing(index_elements=_CONFLICT_COLUMNS)
                .returning(MetricSample.id)
            )
            result = await session.execute(stmt)
            new_id = result.scalar_one_or_none()
            await session.commit()

        if new_id is None:
            logger.debug(
                "Duplicate sample skipped: site=%s metric=%s ts=%s",
                site_id, metric_type, row["timestamp"],
            )
            return InsertResult.DUPLICATE
        return InsertResult.INSERTED

    @staticmethod
    def _insert_for(session: AsyncSession):
        dialect = session.get_bind().dialect.name
        if dialect == "sqlite":
            return sqlite.insert
        return postgresql.insert

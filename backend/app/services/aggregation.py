"""AggregationQueryEngine: downsampled reads of metric_samples.

minute              every raw row in [start, end), ascending
hour / day / month  one row per bucket (start of hour/day/month) that holds
                    data: the raw sample whose timestamp is closest to the
                    bucket start, earliest on ties. Ranking runs in the
                    database (row_number over the truncated timestamp)

Coarse rows keep the avg/min/max/stddev field names used by chart clients.
They describe a single sample, so avg == min == max == value, stddev == 0
and data_count == 1.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime

from sqlalchemy import DateTime, Select, desc, extract, func, literal_column, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.errors import InvalidQueryError
from models.metric_sample import MetricSample

logger = logging.getLogger("pumproom.aggregation")

INTERVALS = ("minute", "hour", "day", "month")


def bucket_start(ts: datetime, interval: str) -> datetime:
    if interval == "minute":
        return ts.replace(second=0, microsecond=0)
    if interval == "hour":
        return ts.replace(minute=0, second=0, microsecond=0)
    if interval == "day":
        return ts.replace(hour=0, minute=0, second=0, microsecond=0)
    if interval == "month":
        return ts.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    raise InvalidQueryError(f"Unsupported interval '{interval}', expected one of {', '.join(INTERVALS)}")


@dataclass(frozen=True)
class AggregatedPoint:
    time_bucket: datetime
    timestamp: datetime
    value: float
    avg: float
    min: float
    max: float
    stddev: float = 0.0
    data_count: int = 1
    status: str | None = None

    @classmethod
    def from_sample(cls, bucket: datetime, sample: MetricSample) -> "AggregatedPoint":
        return cls(
            time_bucket=bucket,
            timestamp=sample.timestamp,
            value=sample.value,
            avg=sample.value,
            min=sample.value,
            max=sample.value,
            status=sample.status,
        )

    def as_dict(self) -> dict:
        return asdict(self)


def validate_request(start: datetime, end: datetime, interval: str, limit: int | None) -> None:
    if end <= start:
        raise InvalidQueryError("end_time must be later than start_time")
    if interval not in INTERVALS:
        raise InvalidQueryError(f"Unsupported interval '{interval}', expected one of {', '.join(INTERVALS)}")
    if limit is not None and limit <= 0:
        raise InvalidQueryError("limit must be a positive integer")


# strftime patterns equivalent to date_trunc on SQLite
_SQLITE_BUCKETS = {
    "hour": "%Y-%m-%d %H:00:00",
    "day": "%Y-%m-%d 00:00:00",
    "month": "%Y-%m-01 00:00:00",
}


def nearest_sample_ids(dialect: str, interval: str):
    """Select the id of the sample nearest each bucket start, ranked in SQL.

    PostgreSQL buckets with date_trunc and ranks by the absolute epoch
    distance; SQLite uses strftime and julianday for the same ranking.
    Ties go to the earliest timestamp.
    """
    ts = MetricSample.timestamp
    if dialect == "sqlite":
        bucket = func.strftime(_SQLITE_BUCKETS[interval], ts)
        distance = func.abs(func.julianday(ts) - func.julianday(bucket))
    else:
        bucket = func.date_trunc(literal_column(f"'{interval}'"), ts, type_=DateTime)
        distance = func.abs(extract("epoch", ts - bucket))
    rank = func.row_number().over(partition_by=bucket, order_by=(distance, ts))
    return select(MetricSample.id, rank.label("nearness_rank"))


class AggregationQueryEngine:

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def query(
        self,
        site_id: int,
        metric_type: str,
        start: datetime,
        end: datetime,
        interval: str = "hour",
        limit: int | None = None,
    ) -> list[AggregatedPoint]:
        validate_request(start, end, interval, limit)

        async with self.session_factory() as session:
            if interval == "minute":
                stmt = self._in_range(select(MetricSample), site_id, metric_type, start, end)
            else:
                dialect = session.get_bind().dialect.name
                ranked = self._in_range(
                    nearest_sample_ids(dialect, interval), site_id, metric_type, start, end,
                ).subquery()
                stmt = (
                    select(MetricSample)
                    .join(ranked, MetricSample.id == ranked.c.id)
                    .where(ranked.c.nearness_rank == 1)
                )
            stmt = stmt.order_by(MetricSample.timestamp)
            if limit is not None:
                stmt = stmt.limit(limit)
            result = await session.execute(stmt)
            samples = result.scalars().all()

        if interval == "minute":
            points = [AggregatedPoint.from_sample(s.timestamp, s) for s in samples]
        else:
            points = [AggregatedPoint.from_sample(bucket_start(s.timestamp, interval), s) for s in samples]
        logger.debug(
            "History site=%s metric=%s interval=%s: %d points",
            site_id, metric_type, interval, len(points),
        )
        return points

    async def latest(self, site_id: int, metric_type: str) -> MetricSample | None:
        async with self.session_factory() as session:
            stmt = (
                select(MetricSample)
                .where(MetricSample.site_id == site_id, MetricSample.metric_type == metric_type)
                .order_by(desc(MetricSample.timestamp))
                .limit(1)
            )
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    @staticmethod
    def _in_range(stmt: Select, site_id: int, metric_type: str, start: datetime, end: datetime) -> Select:
        return stmt.where(
            MetricSample.site_id == site_id,
            MetricSample.metric_type == metric_type,
            MetricSample.timestamp >= start,
            MetricSample.timestamp < end,
        )

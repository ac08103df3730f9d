"""History API: downsampled metric series.

GET /api/history/{site_id}/{metric_type}?start=&end=&interval=hour&limit=
    interval: minute (raw rows) | hour | day | month (nearest sample per bucket)
GET /api/history/{site_id}/{metric_type}/latest
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel

from core.errors import InvalidQueryError
from models import async_session
from services.aggregation import AggregationQueryEngine
from services.metric_catalog import get_metric

router = APIRouter(prefix="/api/history", tags=["history"])
logger = logging.getLogger("pumproom.api.history")


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class AggregatedPointOut(BaseModel):
    time_bucket: datetime
    timestamp: datetime
    value: float
    avg: float
    min: float
    max: float
    stddev: float
    data_count: int
    status: Optional[str] = None
    model_config = {"from_attributes": True}


class HistoryOut(BaseModel):
    site_id: int
    metric_type: str
    unit: str
    interval: str
    start: datetime
    end: datetime
    points: list[AggregatedPointOut]


class SampleOut(BaseModel):
    site_id: int
    metric_type: str
    timestamp: datetime
    value: float
    status: str
    quality: int
    model_config = {"from_attributes": True}


def get_query_engine(request: Request) -> AggregationQueryEngine:
    engine = getattr(request.app.state, "query_engine", None)
    return engine or AggregationQueryEngine(async_session)


# ---------------------------------------------------------------------------
# ENDPOINTS
# ---------------------------------------------------------------------------
@router.get("/{site_id}/{metric_type}", response_model=HistoryOut)
async def get_history(
    site_id: int,
    metric_type: str,
    start: Optional[datetime] = Query(None, description="Start (ISO 8601), default end - 24h"),
    end: Optional[datetime] = Query(None, description="End (ISO 8601, exclusive), default now"),
    interval: str = Query("hour", description="minute | hour | day | month"),
    limit: Optional[int] = Query(None, description="Max points"),
    engine: AggregationQueryEngine = Depends(get_query_engine),
):
    metric = get_metric(metric_type)
    if metric is None:
        raise HTTPException(400, f"Unknown metric type '{metric_type}'")

    end_ts = end or datetime.now()
    start_ts = start or end_ts - timedelta(hours=24)
    try:
        points = await engine.query(site_id, metric_type, start_ts, end_ts, interval, limit)
    except InvalidQueryError as exc:
        raise HTTPException(400, str(exc))

    return HistoryOut(
        site_id=site_id,
        metric_type=metric_type,
        unit=metric.unit,
        interval=interval,
        start=start_ts,
        end=end_ts,
        points=[AggregatedPointOut.model_validate(p) for p in points],
    )


@router.get("/{site_id}/{metric_type}/latest", response_model=SampleOut)
async def get_latest(
    site_id: int,
    metric_type: str,
    engine: AggregationQueryEngine = Depends(get_query_engine),
):
    if get_metric(metric_type) is None:
        raise HTTPException(400, f"Unknown metric type '{metric_type}'")
    sample = await engine.latest(site_id, metric_type)
    if sample is None:
        raise HTTPException(404, "No data")
    return sample

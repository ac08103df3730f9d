from fastapi import APIRouter, Request

router = APIRouter(prefix="/api/acquisition", tags=["acquisition"])


@router.get("/status")
async def acquisition_status(request: Request) -> list[dict]:
    """Last cycle counts per metric (null until the first minute boundary)."""
    schedulers = getattr(request.app.state, "schedulers", [])
    return [
        {
            "metric_type": s.metric.metric_type,
            "nodes": s.node_ids,
            "last_cycle": s.last_stats.as_dict() if s.last_stats else None,
        }
        for s in schedulers
    ]

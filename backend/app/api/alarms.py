"""Alarm records API: active list and operator actions."""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel

from models import AlarmSeverity, AlarmStatus, async_session
from services.alarm_records import DEFAULT_OPERATOR, AlarmRecordService

router = APIRouter(prefix="/api/alarms", tags=["alarms"])


# --- Schemas ---

class AlarmRecordOut(BaseModel):
    id: int
    site_id: int
    rule_id: Optional[int] = None
    alarm_name: str
    alarm_description: Optional[str] = None
    node_id: str
    node_name: str
    severity: AlarmSeverity
    status: AlarmStatus
    current_value: Optional[str] = None
    alarm_value: Optional[str] = None
    unit: Optional[str] = None
    start_time: datetime
    end_time: Optional[datetime] = None
    acknowledged_time: Optional[datetime] = None
    acknowledged_by: Optional[str] = None
    remarks: Optional[str] = None

    model_config = {"from_attributes": True}


class AcknowledgeIn(BaseModel):
    acknowledged_by: str = DEFAULT_OPERATOR


class ClearIn(BaseModel):
    acknowledged_by: Optional[str] = None


def get_record_service(request: Request) -> AlarmRecordService:
    service = getattr(request.app.state, "alarm_records", None)
    return service or AlarmRecordService(async_session)


# --- Endpoints ---

@router.get("/active", response_model=list[AlarmRecordOut])
async def list_active(
    site_id: Optional[int] = Query(None),
    service: AlarmRecordService = Depends(get_record_service),
):
    return await service.list_active(site_id)


@router.post("/{record_id}/acknowledge", response_model=AlarmRecordOut)
async def acknowledge(
    record_id: int,
    data: AcknowledgeIn,
    service: AlarmRecordService = Depends(get_record_service),
):
    if not await service.acknowledge(record_id, data.acknowledged_by):
        raise HTTPException(404, "Alarm record not found")
    return await service.get(record_id)


@router.post("/{record_id}/clear", response_model=AlarmRecordOut)
async def clear(
    record_id: int,
    data: Optional[ClearIn] = None,
    service: AlarmRecordService = Depends(get_record_service),
):
    who = data.acknowledged_by if data else None
    if not await service.clear(record_id, who):
        raise HTTPException(404, "Alarm record not found")
    return await service.get(record_id)


@router.post("/site/{site_id}/clear")
async def clear_site(
    site_id: int,
    data: Optional[ClearIn] = None,
    service: AlarmRecordService = Depends(get_record_service),
):
    who = data.acknowledged_by if data else None
    cleared = await service.clear_by_site(site_id, who)
    return {"site_id": site_id, "cleared": cleared}

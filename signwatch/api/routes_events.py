# signwatch/api/routes_events.py
from __future__ import annotations
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict
from sqlalchemy.ext.asyncio import AsyncSession

from signwatch.api.deps import get_session
from signwatch.repositories.alerts import alerted_event_ids
from signwatch.repositories.devices import list_device_changes
from signwatch.repositories.events import list_events

router = APIRouter(tags=["events"])


class EventOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    external_id: str
    user_id: str
    principal_name: str
    ip_address: str
    login_time: datetime
    status: str
    country: Optional[str] = None
    region: Optional[str] = None
    city: Optional[str] = None
    lat: Optional[float] = None
    lon: Optional[float] = None
    is_impossible_travel: bool
    is_region_change: bool
    travel_speed_kph: Optional[float] = None
    compared_event_id: Optional[int] = None
    region_compared_event_id: Optional[int] = None
    alerted: bool = False


class EventsPage(BaseModel):
    total: int
    items: List[EventOut]


class DeviceChangeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str
    principal_name: str
    device_display_name: str
    change_type: str
    change_time: datetime


class DeviceChangesPage(BaseModel):
    total: int
    items: List[DeviceChangeOut]


@router.get("/events", response_model=EventsPage)
async def get_events(
    user_id: Optional[str] = Query(None),
    flagged: bool = Query(False, description="yalnızca travel/region bayraklı olaylar"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_session),
):
    total, rows = await list_events(session, user_id=user_id, flagged_only=flagged, limit=limit, offset=offset)
    alerted = await alerted_event_ids(session, [r.id for r in rows])
    items = [EventOut.model_validate(r).model_copy(update={"alerted": r.id in alerted}) for r in rows]
    return EventsPage(total=total, items=items)


@router.get("/device-changes", response_model=DeviceChangesPage)
async def get_device_changes(
    user_id: Optional[str] = Query(None),
    since: Optional[datetime] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_session),
):
    total, rows = await list_device_changes(session, user_id=user_id, since=since, limit=limit, offset=offset)
    return DeviceChangesPage(total=total, items=[DeviceChangeOut.model_validate(r) for r in rows])

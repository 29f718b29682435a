# signwatch/repositories/events.py
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Sequence

from sqlalchemy import select, func, desc, delete, update, or_
from sqlalchemy.ext.asyncio import AsyncSession

from signwatch.anomaly.window import window_bounds
from signwatch.persistence.models import LoginEvent

FLAG_RESET = {
    "is_impossible_travel": False,
    "is_region_change": False,
    "travel_speed_kph": None,
    "compared_event_id": None,
    "region_compared_event_id": None,
}


async def event_exists(session: AsyncSession, external_id: str) -> bool:
    q = select(LoginEvent.id).where(LoginEvent.external_id == external_id).limit(1)
    return (await session.execute(q)).scalar_one_or_none() is not None


async def insert_event(
    session: AsyncSession,
    *,
    external_id: str,
    user_id: str,
    principal_name: str,
    ip_address: str,
    login_time: datetime,
    status: str,
    country: Optional[str] = None,
    region: Optional[str] = None,
    city: Optional[str] = None,
    lat: Optional[float] = None,
    lon: Optional[float] = None,
) -> LoginEvent:
    ev = LoginEvent(
        external_id=external_id,
        user_id=user_id,
        principal_name=principal_name,
        ip_address=ip_address,
        login_time=login_time,
        status=status,
        country=country,
        region=region,
        city=city,
        lat=lat,
        lon=lon,
        **FLAG_RESET,
    )
    session.add(ev)
    # id'yi almak için flush; commit çağıranın işi
    await session.flush()
    return ev


async def load_window(session: AsyncSession, user_id: str, login_time: datetime) -> Sequence[LoginEvent]:
    start, end = window_bounds(login_time)
    q = (
        select(LoginEvent)
        .where(
            LoginEvent.user_id == user_id,
            LoginEvent.login_time >= start,
            LoginEvent.login_time < end,
        )
        .order_by(desc(LoginEvent.login_time), desc(LoginEvent.id))
    )
    return (await session.execute(q)).scalars().all()


async def latest_login_time(session: AsyncSession) -> Optional[datetime]:
    return (await session.execute(select(func.max(LoginEvent.login_time)))).scalar_one_or_none()


async def all_events_for_replay(session: AsyncSession) -> Sequence[LoginEvent]:
    q = select(LoginEvent).order_by(LoginEvent.user_id, LoginEvent.login_time, LoginEvent.id)
    return (await session.execute(q)).scalars().all()


async def reset_flags(session: AsyncSession) -> int:
    res = await session.execute(update(LoginEvent).values(**FLAG_RESET))
    return getattr(res, "rowcount", 0) or 0


async def update_flags(session: AsyncSession, event_id: int, values: Dict[str, Any]) -> None:
    await session.execute(update(LoginEvent).where(LoginEvent.id == event_id).values(**values))


async def list_events(
    session: AsyncSession,
    *,
    user_id: Optional[str] = None,
    flagged_only: bool = False,
    limit: int = 100,
    offset: int = 0,
) -> tuple[int, Sequence[LoginEvent]]:
    conds = []
    if user_id:
        conds.append(LoginEvent.user_id == user_id)
    if flagged_only:
        conds.append(or_(LoginEvent.is_impossible_travel.is_(True), LoginEvent.is_region_change.is_(True)))

    q_count = select(func.count()).select_from(LoginEvent).where(*conds)
    total = (await session.execute(q_count)).scalar_one()

    q = (
        select(LoginEvent)
        .where(*conds)
        .order_by(desc(LoginEvent.login_time), desc(LoginEvent.id))
        .limit(limit)
        .offset(offset)
    )
    rows = (await session.execute(q)).scalars().all()
    return total, rows


async def events_since(session: AsyncSession, since: datetime) -> Sequence[LoginEvent]:
    q = select(LoginEvent).where(LoginEvent.login_time >= since).order_by(LoginEvent.user_id, LoginEvent.login_time)
    return (await session.execute(q)).scalars().all()


async def prune_events(session: AsyncSession, *, days: int, now: datetime) -> int:
    cutoff = now - timedelta(days=days)
    res = await session.execute(delete(LoginEvent).where(LoginEvent.login_time < cutoff))
    return getattr(res, "rowcount", 0) or 0

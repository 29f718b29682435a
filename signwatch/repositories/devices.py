# signwatch/repositories/devices.py
from datetime import datetime
from typing import Dict, Iterable, Mapping, Optional, Sequence

from sqlalchemy import select, delete, desc, func
from sqlalchemy.ext.asyncio import AsyncSession

from signwatch.anomaly.devices import DeviceDelta, DeviceInfo, DeviceKind
from signwatch.persistence.models import DeviceChangeEvent, DeviceSnapshot


def _kind(raw: str) -> DeviceKind:
    try:
        return DeviceKind(raw)
    except ValueError:
        return DeviceKind.UNRECOGNIZED


async def load_snapshot(session: AsyncSession, user_id: str) -> Dict[str, DeviceInfo]:
    q = select(DeviceSnapshot).where(DeviceSnapshot.user_id == user_id)
    rows = (await session.execute(q)).scalars().all()
    return {r.device_id: DeviceInfo(display_name=r.display_name, kind=_kind(r.device_type)) for r in rows}


async def replace_snapshot(session: AsyncSession, user_id: str, devices: Mapping[str, DeviceInfo]) -> None:
    """Delete + insert; caller wraps it in the same transaction as the change rows."""
    await session.execute(delete(DeviceSnapshot).where(DeviceSnapshot.user_id == user_id))
    session.add_all([
        DeviceSnapshot(user_id=user_id, device_id=device_id, display_name=info.display_name, device_type=info.kind.value)
        for device_id, info in sorted(devices.items())
    ])
    await session.flush()


async def record_changes(
    session: AsyncSession,
    *,
    user_id: str,
    principal_name: str,
    delta: DeviceDelta,
    at: datetime,
) -> None:
    session.add_all([
        DeviceChangeEvent(
            user_id=user_id,
            principal_name=principal_name,
            device_display_name=c.display_name,
            change_type=c.change.value,
            change_time=at,
        )
        for c in delta.changes
    ])
    await session.flush()


async def clear_snapshots(session: AsyncSession, *, keep: Iterable[str] = ()) -> None:
    """Drop every snapshot row except those of the users in `keep`."""
    q = delete(DeviceSnapshot)
    keep = sorted(set(keep))
    if keep:
        q = q.where(DeviceSnapshot.user_id.not_in(keep))
    await session.execute(q)


async def device_changes_since(session: AsyncSession, since: datetime) -> Sequence[DeviceChangeEvent]:
    q = (
        select(DeviceChangeEvent)
        .where(DeviceChangeEvent.change_time >= since)
        .order_by(DeviceChangeEvent.user_id, DeviceChangeEvent.change_time, DeviceChangeEvent.id)
    )
    return (await session.execute(q)).scalars().all()


async def list_device_changes(
    session: AsyncSession,
    *,
    user_id: Optional[str] = None,
    since: Optional[datetime] = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[int, Sequence[DeviceChangeEvent]]:
    conds = []
    if user_id:
        conds.append(DeviceChangeEvent.user_id == user_id)
    if since:
        conds.append(DeviceChangeEvent.change_time >= since)
    total = (await session.execute(select(func.count()).select_from(DeviceChangeEvent).where(*conds))).scalar_one()
    q = (
        select(DeviceChangeEvent)
        .where(*conds)
        .order_by(desc(DeviceChangeEvent.change_time), desc(DeviceChangeEvent.id))
        .limit(limit)
        .offset(offset)
    )
    return total, (await session.execute(q)).scalars().all()

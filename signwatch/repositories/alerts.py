# signwatch/repositories/alerts.py
"""Notification log and IP whitelist tables."""
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Sequence, Set

from sqlalchemy import select, delete, update, desc, func
from sqlalchemy.ext.asyncio import AsyncSession

from signwatch.anomaly.incidents import LogKey
from signwatch.persistence.models import NotificationLogEntry, WhitelistEntry


# --- whitelist ---------------------------------------------------------------

async def whitelist_ips(session: AsyncSession) -> Set[str]:
    return set((await session.execute(select(WhitelistEntry.ip_address))).scalars().all())


async def list_whitelist(session: AsyncSession) -> Sequence[WhitelistEntry]:
    q = select(WhitelistEntry).order_by(desc(WhitelistEntry.created_at), desc(WhitelistEntry.id))
    return (await session.execute(q)).scalars().all()


async def add_whitelist(session: AsyncSession, *, ip_address: str, note: Optional[str], now: datetime) -> WhitelistEntry:
    entry = WhitelistEntry(ip_address=ip_address.strip(), note=note, created_at=now)
    session.add(entry)
    await session.flush()
    return entry


async def delete_whitelist(session: AsyncSession, entry_id: int) -> bool:
    res = await session.execute(delete(WhitelistEntry).where(WhitelistEntry.id == entry_id))
    return bool(getattr(res, "rowcount", 0))


# --- notification log --------------------------------------------------------

async def logged_keys(session: AsyncSession, subject_ids: Iterable[int]) -> Set[LogKey]:
    ids = sorted(set(subject_ids))
    if not ids:
        return set()
    q = select(
        NotificationLogEntry.subject_event_id,
        NotificationLogEntry.compared_event_id,
        NotificationLogEntry.alert_kind,
    ).where(NotificationLogEntry.subject_event_id.in_(ids))
    return {(r[0], r[1], r[2]) for r in (await session.execute(q)).all()}


async def record_notifications(session: AsyncSession, keys: Iterable[LogKey], *, now: datetime) -> List[int]:
    entries = [
        NotificationLogEntry(subject_event_id=s, compared_event_id=c, alert_kind=k, created_at=now)
        for s, c, k in keys
    ]
    session.add_all(entries)
    await session.flush()
    return [e.id for e in entries]


async def mark_delivered(session: AsyncSession, entry_ids: Sequence[int], delivered: bool) -> None:
    if not entry_ids:
        return
    await session.execute(
        update(NotificationLogEntry).where(NotificationLogEntry.id.in_(list(entry_ids))).values(delivered=delivered)
    )


async def alerted_event_ids(session: AsyncSession, event_ids: Iterable[int]) -> Set[int]:
    ids = sorted(set(event_ids))
    if not ids:
        return set()
    q = select(NotificationLogEntry.subject_event_id).where(NotificationLogEntry.subject_event_id.in_(ids))
    return set((await session.execute(q)).scalars().all())


async def count_notifications(session: AsyncSession) -> int:
    return (await session.execute(select(func.count()).select_from(NotificationLogEntry))).scalar_one()


async def clear_notification_log(session: AsyncSession) -> None:
    await session.execute(delete(NotificationLogEntry))


async def prune_notification_log(session: AsyncSession, *, days: int, now: datetime) -> int:
    cutoff = now - timedelta(days=days)
    res = await session.execute(delete(NotificationLogEntry).where(NotificationLogEntry.created_at < cutoff))
    return getattr(res, "rowcount", 0) or 0

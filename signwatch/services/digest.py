"""
Weekly per-user activity digest.

For the last 7 days: impossible travel / region change / device change counts
and successful-login locations with counts; compared against the locations
seen on days 8-14. Users with nothing detected and no new location are left out.
"""
from __future__ import annotations
import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from signwatch.alerts.base import Notifier
from signwatch.core.timeutil import utcnow
from signwatch.repositories.devices import device_changes_since
from signwatch.repositories.events import events_since

logger = logging.getLogger(__name__)

WEEK = timedelta(days=7)


def location_label(region: Optional[str], country: Optional[str]) -> Optional[str]:
    parts = [p for p in (region, country) if p]
    return ", ".join(parts) or None


def _entry(principal: str) -> Dict[str, Any]:
    return {
        "user": principal,
        "impossible_travel": 0,
        "region_change": 0,
        "device_changes": 0,
        "_current": Counter(),
        "_prior": set(),
    }


async def build_weekly_digest(session: AsyncSession, *, now: datetime) -> List[Dict[str, Any]]:
    week_start = now - WEEK
    users: Dict[str, Dict[str, Any]] = {}

    for ev in await events_since(session, now - 2 * WEEK):
        if ev.login_time >= now:
            continue
        entry = users.setdefault(ev.principal_name or ev.user_id, _entry(ev.principal_name or ev.user_id))
        loc = location_label(ev.region, ev.country) if ev.succeeded else None
        if ev.login_time >= week_start:
            entry["impossible_travel"] += int(ev.is_impossible_travel)
            entry["region_change"] += int(ev.is_region_change)
            if loc:
                entry["_current"][loc] += 1
        elif loc:
            entry["_prior"].add(loc)

    for change in await device_changes_since(session, week_start):
        principal = change.principal_name or change.user_id
        users.setdefault(principal, _entry(principal))["device_changes"] += 1

    digest: List[Dict[str, Any]] = []
    for principal in sorted(users):
        entry = users[principal]
        current: Counter = entry.pop("_current")
        prior = entry.pop("_prior")
        new_locations = sorted(set(current) - prior)
        entry["locations"] = [
            {"location": loc, "count": n}
            for loc, n in sorted(current.items(), key=lambda kv: (-kv[1], kv[0]))
        ]
        entry["prior_locations"] = sorted(prior)
        entry["new_locations"] = new_locations
        entry["has_new_location"] = bool(new_locations)
        detected = entry["impossible_travel"] or entry["region_change"] or entry["device_changes"]
        if detected or new_locations:
            digest.append(entry)
    return digest


async def send_weekly_digest(
    sessions: async_sessionmaker[AsyncSession],
    notifier: Notifier,
    *,
    clock: Callable[[], datetime] = utcnow,
) -> List[Dict[str, Any]]:
    now = clock()
    async with sessions() as session:
        digest = await build_weekly_digest(session, now=now)
    if not digest:
        logger.info("weekly digest: nothing to report")
        return digest
    period = {"start": (now - WEEK).isoformat(), "end": now.isoformat()}
    report = await notifier.notify_digest(period, digest)
    if report.failed:
        logger.warning("weekly digest delivery failed on %s", ", ".join(report.failed))
    logger.info("weekly digest sent for %d user(s)", len(digest))
    return digest

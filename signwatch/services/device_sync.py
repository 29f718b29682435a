from __future__ import annotations
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from signwatch.alerts.base import Notifier
from signwatch.anomaly.devices import DeviceInfo, diff_devices, mfa_only
from signwatch.anomaly.incidents import IncidentAggregator, device_incidents
from signwatch.core.errors import ProviderError
from signwatch.core.timeutil import utcnow
from signwatch.metrics import DEVICE_CHANGES, RUN_DURATION, RUN_ERRORS
from signwatch.providers.graph import DirectoryUser, IdentityProvider
from signwatch.repositories.devices import clear_snapshots, load_snapshot, record_changes, replace_snapshot
from signwatch.services.notifications import NotificationDispatcher
from signwatch.services.workers import run_partitioned

logger = logging.getLogger(__name__)


@dataclass
class DeviceSyncReport:
    users: int = 0
    changed_users: int = 0
    added: int = 0
    removed: int = 0
    skipped: int = 0
    errors: int = 0


async def _current_devices(provider: IdentityProvider, user_id: str) -> Dict[str, DeviceInfo]:
    methods = await provider.fetch_auth_methods(user_id)
    return mfa_only({m.device_id: m.info() for m in methods})


class DeviceSyncRunner:
    """
    Kayıtlı MFA cihazlarını son snapshot ile kıyaslar.
    Provider hatası olan kullanıcı atlanır; boş liste gibi davranılmaz.
    """

    def __init__(
        self,
        sessions: async_sessionmaker[AsyncSession],
        provider: IdentityProvider,
        notifier: Notifier,
        *,
        workers: int = 1,
        notify_per_user: bool = True,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.sessions = sessions
        self.provider = provider
        self.notifier = notifier
        self.workers = workers
        self.notify_per_user = notify_per_user
        self._clock = clock
        self.dispatcher = NotificationDispatcher(sessions, notifier, clock=clock)

    async def run(self) -> DeviceSyncReport:
        started = time.perf_counter()
        report = DeviceSyncReport()
        try:
            users = await self.provider.fetch_all_users()
        except ProviderError as e:
            logger.error("user listing failed: %s", e)
            RUN_ERRORS.labels(stage="device_sync").inc()
            report.errors += 1
            return report

        by_id = {u.id: u for u in users}
        report.users = len(by_id)
        aggregator = IncidentAggregator()

        async def handle_user(user_id: str) -> None:
            await self._sync_user(by_id[user_id], aggregator, report)

        await run_partitioned(sorted(by_id), handle_user, workers=self.workers)
        await self.dispatcher.dispatch(aggregator)

        RUN_DURATION.labels(run="device_sync").observe(time.perf_counter() - started)
        logger.info("device sync finished: %s", report)
        return report

    async def _sync_user(self, user: DirectoryUser, aggregator: IncidentAggregator, report: DeviceSyncReport) -> None:
        try:
            current = await _current_devices(self.provider, user.id)
        except ProviderError as e:
            logger.warning("skipping device check for %s: %s", user.principal_name, e)
            report.skipped += 1
            return

        now = self._clock()
        try:
            async with self.sessions() as session:
                known = await load_snapshot(session, user.id)
                delta = diff_devices(current, known)
                if not delta.changed:
                    return
                await record_changes(session, user_id=user.id, principal_name=user.principal_name, delta=delta, at=now)
                await replace_snapshot(session, user.id, current)
                await session.commit()
        except SQLAlchemyError:
            logger.exception("device snapshot update failed for %s, rolled back", user.principal_name)
            RUN_ERRORS.labels(stage="device_sync").inc()
            report.errors += 1
            return

        report.changed_users += 1
        report.added += len(delta.added)
        report.removed += len(delta.removed)
        DEVICE_CHANGES.labels(change="added").inc(len(delta.added))
        DEVICE_CHANGES.labels(change="removed").inc(len(delta.removed))
        logger.info("%s: %d device(s) added, %d removed", user.principal_name, len(delta.added), len(delta.removed))

        aggregator.extend(device_incidents(user.id, user.principal_name, delta, now))
        if self.notify_per_user:
            await self.notifier.notify_user(user.principal_name, "device_change", {
                "added": [c.display_name for c in delta.added],
                "removed": [c.display_name for c in delta.removed],
                "time": now.isoformat(),
            })


async def populate_baseline(
    sessions: async_sessionmaker[AsyncSession],
    provider: IdentityProvider,
) -> int:
    """
    Snapshot tablosunu sıfırdan doldurur, değişiklik kaydı üretmez.
    Cihazları okunamayan kullanıcıların mevcut satırları korunur.
    """
    users = await provider.fetch_all_users()
    seeded: Dict[str, Dict[str, DeviceInfo]] = {}
    failed: List[str] = []
    for user in users:
        try:
            seeded[user.id] = await _current_devices(provider, user.id)
        except ProviderError as e:
            logger.warning("baseline: skipping %s: %s", user.principal_name, e)
            failed.append(user.id)

    async with sessions() as session:
        await clear_snapshots(session, keep=failed)
        for user_id, devices in sorted(seeded.items()):
            await replace_snapshot(session, user_id, devices)
        await session.commit()
    logger.info("baseline seeded for %d user(s), %d skipped", len(seeded), len(failed))
    return len(seeded)

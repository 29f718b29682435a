"""
Incremental ingestion run.

fetch (since newest stored login) -> filter -> per user, in time order:
dedupe, geo, insert, detect, flag, commit -> per-user alert (optional) ->
consolidated notification -> prune.
"""
from __future__ import annotations
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from signwatch.alerts.base import Notifier, render_incident
from signwatch.anomaly.incidents import IncidentAggregator, login_incidents
from signwatch.anomaly.travel import AnomalyDetector, DetectionResult, apply_result
from signwatch.core.errors import InvalidEventError, PersistenceError, ProviderError
from signwatch.core.timeutil import utcnow
from signwatch.metrics import (
    ANOMALIES_FLAGGED, EVENTS_INGESTED, EVENTS_SKIPPED, RUN_DURATION, RUN_ERRORS,
)
from signwatch.persistence.models import LoginEvent
from signwatch.providers.graph import IdentityProvider, RawSignIn
from signwatch.repositories.alerts import whitelist_ips
from signwatch.repositories.events import event_exists, insert_event, latest_login_time, load_window, prune_events
from signwatch.services.geolocation import GeoInfo, GeoLookup
from signwatch.services.notifications import NotificationDispatcher
from signwatch.services.workers import run_partitioned

logger = logging.getLogger(__name__)


@dataclass
class RunReport:
    fetched: int = 0
    processed: int = 0
    skipped: int = 0
    duplicates: int = 0
    flagged: int = 0
    errors: int = 0
    pruned: int = 0

    def as_dict(self) -> Dict[str, int]:
        return dict(self.__dict__)


def skip_reason(raw: RawSignIn) -> Optional[str]:
    """None -> işlenebilir; aksi halde atlama sebebi."""
    if not raw.external_id:
        return "missing_external_id"
    if not raw.user_id:
        return "missing_user_id"
    if raw.login_time is None:
        return "missing_timestamp"
    if not raw.ip_address:
        return "no_ip"
    if raw.ip_address.startswith("127."):
        return "loopback"
    return None


class IngestRunner:
    def __init__(
        self,
        sessions: async_sessionmaker[AsyncSession],
        provider: IdentityProvider,
        detector: AnomalyDetector,
        notifier: Notifier,
        *,
        geo: Optional[GeoLookup] = None,
        workers: int = 1,
        notify_per_user: bool = True,
        retention_days: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.sessions = sessions
        self.provider = provider
        self.detector = detector
        self.notifier = notifier
        self.geo = geo
        self.workers = workers
        self.notify_per_user = notify_per_user
        self.retention_days = retention_days
        self._clock = clock
        self.dispatcher = NotificationDispatcher(sessions, notifier, clock=clock)

    async def run(self) -> RunReport:
        started = time.perf_counter()
        report = RunReport()

        async with self.sessions() as session:
            since = await latest_login_time(session)
            whitelist = await whitelist_ips(session)

        try:
            raw_events = await self.provider.fetch_sign_ins(since)
        except ProviderError as e:
            logger.error("sign-in fetch failed: %s", e)
            RUN_ERRORS.labels(stage="fetch").inc()
            report.errors += 1
            return report
        report.fetched = len(raw_events)

        per_user: Dict[str, List[RawSignIn]] = {}
        for raw in raw_events:
            reason = skip_reason(raw)
            if reason is not None:
                logger.warning("skipping sign-in %s: %s", raw.external_id or "?", reason)
                EVENTS_SKIPPED.labels(reason=reason).inc()
                report.skipped += 1
                continue
            per_user.setdefault(raw.user_id, []).append(raw)
        for events in per_user.values():
            events.sort(key=lambda r: (r.login_time, r.external_id))

        aggregator = IncidentAggregator(whitelist)

        async def handle_user(user_id: str) -> None:
            for raw in per_user[user_id]:
                await self._process(raw, aggregator, report)

        await run_partitioned(sorted(per_user), handle_user, workers=self.workers)
        await self.dispatcher.dispatch(aggregator)

        if self.retention_days:
            async with self.sessions() as session:
                report.pruned = await prune_events(session, days=self.retention_days, now=self._clock())
                await session.commit()

        RUN_DURATION.labels(run="ingest").observe(time.perf_counter() - started)
        logger.info("ingest run finished: %s", report.as_dict())
        return report

    async def _exists(self, external_id: str) -> bool:
        try:
            async with self.sessions() as session:
                return await event_exists(session, external_id)
        except SQLAlchemyError as e:
            raise PersistenceError(f"dedup lookup for {external_id} failed: {e}") from e

    async def _store(self, raw: RawSignIn, geo: Optional[GeoInfo]) -> Tuple[LoginEvent, DetectionResult]:
        """Insert + detect + flag in one transaction."""
        try:
            async with self.sessions() as session:
                ev = await insert_event(
                    session,
                    external_id=raw.external_id,
                    user_id=raw.user_id,
                    principal_name=raw.principal_name,
                    ip_address=raw.ip_address,
                    login_time=raw.login_time,
                    status=raw.status,
                    country=geo.country if geo else None,
                    region=geo.region if geo else None,
                    city=geo.city if geo else None,
                    lat=geo.lat if geo else None,
                    lon=geo.lon if geo else None,
                )
                window = await load_window(session, ev.user_id, ev.login_time)
                result = self.detector.evaluate(ev, window)
                apply_result(ev, result)
                await session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"storing sign-in {raw.external_id} failed: {e}", user_id=raw.user_id) from e
        return ev, result

    async def _process(self, raw: RawSignIn, aggregator: IncidentAggregator, report: RunReport) -> None:
        try:
            if await self._exists(raw.external_id):
                report.duplicates += 1
                EVENTS_SKIPPED.labels(reason="duplicate").inc()
                return
            geo = await self.geo.resolve(raw.ip_address) if self.geo is not None else None
            ev, result = await self._store(raw, geo)
        except InvalidEventError as e:
            logger.warning("skipping sign-in %s: %s", raw.external_id, e)
            EVENTS_SKIPPED.labels(reason="invalid").inc()
            report.skipped += 1
            return
        except PersistenceError:
            logger.exception("sign-in %s rolled back", raw.external_id)
            RUN_ERRORS.labels(stage="ingest").inc()
            report.errors += 1
            return

        report.processed += 1
        EVENTS_INGESTED.inc()
        if not result.anomalous:
            return

        report.flagged += 1
        if result.travel.flagged:
            ANOMALIES_FLAGGED.labels(kind="impossible_travel").inc()
        if result.region.flagged:
            ANOMALIES_FLAGGED.labels(kind="region_change").inc()

        incidents = login_incidents(ev, raw.principal_name, result)
        aggregator.extend(incidents)
        if not self.notify_per_user:
            return
        for inc in incidents:
            if aggregator.whitelisted(inc):
                continue
            await self.notifier.notify_user(inc.principal_name, inc.kind.value, render_incident(inc))

"""
Full from-scratch recomputation of every anomaly flag.

idle -> resetting_flags -> replaying_history -> finalizing -> idle

The reset (flags + notification log) is one transaction. Each user's replay
is its own transaction, so a failure part way leaves cleared flags plus the
users rebuilt so far; running replay again recovers.
"""
from __future__ import annotations
import logging
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from itertools import groupby
from typing import Any, Deque, Dict, List, Sequence, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from signwatch.anomaly.incidents import Incident, IncidentAggregator, login_incidents
from signwatch.anomaly.travel import AnomalyDetector, flag_values
from signwatch.anomaly.window import build_window, window_bounds
from signwatch.core.errors import PersistenceError, ReplayAbortedError
from signwatch.metrics import ANOMALIES_FLAGGED, REPLAY_RUNS, RUN_DURATION, RUN_ERRORS
from signwatch.persistence.models import LoginEvent
from signwatch.repositories.alerts import clear_notification_log
from signwatch.repositories.events import all_events_for_replay, reset_flags, update_flags
from signwatch.services.notifications import NotificationDispatcher
from signwatch.services.workers import run_partitioned

logger = logging.getLogger(__name__)


class ReplayState(str, Enum):
    IDLE = "idle"
    RESETTING_FLAGS = "resetting_flags"
    REPLAYING_HISTORY = "replaying_history"
    FINALIZING = "finalizing"


@dataclass
class ReplayReport:
    users: int = 0
    events: int = 0
    reset: int = 0
    flagged: int = 0
    errors: int = 0
    notified: int = 0
    suppressed: int = 0


def replay_user(
    detector: AnomalyDetector,
    events: Sequence[LoginEvent],
) -> Tuple[List[Tuple[int, Dict[str, Any]]], List[Incident]]:
    """
    Bir kullanıcının olaylarını (login_time, id) sırasıyla yeniden değerlendirir.
    Dönüş: (event_id, flag kolonları) listesi ve bildirim adayları.
    """
    buffer: Deque[LoginEvent] = deque()
    updates: List[Tuple[int, Dict[str, Any]]] = []
    incidents: List[Incident] = []
    for ev in events:
        start, _ = window_bounds(ev.login_time)
        # artan sırada geziyoruz; pencereden düşen bir daha girmez
        while buffer and buffer[0].login_time < start:
            buffer.popleft()
        result = detector.evaluate(ev, build_window(ev, buffer))
        updates.append((ev.id, flag_values(result)))
        incidents.extend(login_incidents(ev, ev.principal_name, result))
        buffer.append(ev)
    return updates, incidents


class ReplayEngine:
    def __init__(
        self,
        sessions: async_sessionmaker[AsyncSession],
        detector: AnomalyDetector,
        dispatcher: NotificationDispatcher,
        *,
        workers: int = 1,
    ):
        self.sessions = sessions
        self.detector = detector
        self.dispatcher = dispatcher
        self.workers = workers
        self.state = ReplayState.IDLE

    async def run(self) -> ReplayReport:
        if self.state is not ReplayState.IDLE:
            raise ReplayAbortedError("replay already in progress", state=self.state.value)
        started = time.perf_counter()
        report = ReplayReport()
        try:
            await self._reset(report)
            aggregator = await self._replay(report)

            self.state = ReplayState.FINALIZING
            plan = await self.dispatcher.dispatch(aggregator)
            report.notified = len(plan.to_send)
            report.suppressed = len(plan.suppressed)
        finally:
            self.state = ReplayState.IDLE

        REPLAY_RUNS.labels(outcome="completed" if not report.errors else "partial").inc()
        RUN_DURATION.labels(run="replay").observe(time.perf_counter() - started)
        logger.info("replay finished: %s", report)
        return report

    async def _reset(self, report: ReplayReport) -> None:
        self.state = ReplayState.RESETTING_FLAGS
        try:
            async with self.sessions() as session:
                async with session.begin():
                    report.reset = await reset_flags(session)
                    await clear_notification_log(session)
        except SQLAlchemyError as e:
            REPLAY_RUNS.labels(outcome="aborted").inc()
            logger.exception("replay reset failed, nothing committed")
            raise ReplayAbortedError(f"flag reset failed: {e}", state=self.state.value) from e

    async def _replay(self, report: ReplayReport) -> IncidentAggregator:
        self.state = ReplayState.REPLAYING_HISTORY
        async with self.sessions() as session:
            events = await all_events_for_replay(session)

        per_user = {uid: list(evs) for uid, evs in groupby(events, key=lambda e: e.user_id)}
        report.users = len(per_user)
        report.events = len(events)
        aggregator = IncidentAggregator()

        async def handle_user(user_id: str) -> None:
            updates, incidents = replay_user(self.detector, per_user[user_id])
            try:
                await self._persist_user(user_id, updates)
            except PersistenceError:
                logger.exception("replay of user %s rolled back", user_id)
                RUN_ERRORS.labels(stage="replay").inc()
                report.errors += 1
                return
            for _, v in updates:
                if v["is_impossible_travel"]:
                    ANOMALIES_FLAGGED.labels(kind="impossible_travel").inc()
                if v["is_region_change"]:
                    ANOMALIES_FLAGGED.labels(kind="region_change").inc()
                if v["is_impossible_travel"] or v["is_region_change"]:
                    report.flagged += 1
            aggregator.extend(incidents)

        await run_partitioned(sorted(per_user), handle_user, workers=self.workers)
        return aggregator

    async def _persist_user(self, user_id: str, updates: List[Tuple[int, Dict[str, Any]]]) -> None:
        try:
            async with self.sessions() as session:
                for event_id, values in updates:
                    await update_flags(session, event_id, values)
                await session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"flag update failed: {e}", user_id=user_id) from e

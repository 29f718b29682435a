from __future__ import annotations
import logging
from datetime import datetime
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from signwatch.alerts.base import Notifier
from signwatch.anomaly.incidents import IncidentAggregator, NotificationPlan
from signwatch.core.timeutil import utcnow
from signwatch.repositories.alerts import logged_keys, mark_delivered, record_notifications, whitelist_ips

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """
    Run sonunda toplanan olayları tek bir konsolide mesaja çevirir.

    Sıra: whitelist + log oku -> plan -> log satırlarını yaz ve commit ->
    gönder -> delivered işaretle. Log satırı gönderimden önce yazılır; teslim
    başarısız olsa da kalır.
    """

    def __init__(
        self,
        sessions: async_sessionmaker[AsyncSession],
        notifier: Notifier,
        *,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.sessions = sessions
        self.notifier = notifier
        self._clock = clock

    async def plan(self, aggregator: IncidentAggregator) -> NotificationPlan:
        async with self.sessions() as session:
            return await self._plan(session, aggregator)

    async def _plan(self, session: AsyncSession, aggregator: IncidentAggregator) -> NotificationPlan:
        aggregator.whitelist |= await whitelist_ips(session)
        subject_ids = [i.subject.id for i in aggregator.login_incidents()]
        return aggregator.build(await logged_keys(session, subject_ids))

    async def dispatch(self, aggregator: IncidentAggregator) -> NotificationPlan:
        async with self.sessions() as session:
            plan = await self._plan(session, aggregator)
            if plan.empty:
                logger.info("no notifications to send (suppressed=%d)", len(plan.suppressed))
                return plan
            entry_ids = await record_notifications(session, plan.log_keys(), now=self._clock())
            await session.commit()

        report = await self.notifier.notify_consolidated(plan)
        if report.failed:
            logger.warning("consolidated notification failed on %s", ", ".join(report.failed))

        async with self.sessions() as session:
            await mark_delivered(session, entry_ids, report.delivered)
            await session.commit()
        logger.info("notification plan sent: %s", plan.summary())
        return plan

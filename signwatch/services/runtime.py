"""
Process-root wiring: one engine, one session factory, one notifier.
Both the FastAPI app and the CLI build a Runtime and hand its parts down.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from signwatch.alerts import Notifier, build_sinks
from signwatch.anomaly.travel import AnomalyDetector
from signwatch.core.errors import ConfigurationError
from signwatch.core.settings import Settings
from signwatch.persistence.db import make_engine, make_sessionmaker
from signwatch.providers.graph import GraphClient, IdentityProvider
from signwatch.services.device_sync import DeviceSyncRunner
from signwatch.services.geolocation import GeoLookup
from signwatch.services.ingest import IngestRunner
from signwatch.services.notifications import NotificationDispatcher
from signwatch.services.replay import ReplayEngine

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@dataclass
class Runtime:
    settings: Settings
    engine: AsyncEngine
    sessions: async_sessionmaker[AsyncSession]
    notifier: Notifier
    detector: AnomalyDetector
    geo: GeoLookup
    provider: Optional[IdentityProvider] = None
    replay_engine: Optional[ReplayEngine] = field(default=None, repr=False)

    def require_provider(self) -> IdentityProvider:
        if self.provider is None:
            raise ConfigurationError(
                "identity provider credentials are not configured",
                details={"keys": ["AZURE_TENANT_ID", "AZURE_CLIENT_ID", "AZURE_CLIENT_SECRET"]},
            )
        return self.provider

    def ingest_runner(self) -> IngestRunner:
        s = self.settings
        return IngestRunner(
            self.sessions,
            self.require_provider(),
            self.detector,
            self.notifier,
            geo=self.geo,
            workers=s.WORKER_COUNT,
            notify_per_user=s.NOTIFY_PER_USER,
            retention_days=s.RETENTION_DAYS,
        )

    def device_sync_runner(self) -> DeviceSyncRunner:
        return DeviceSyncRunner(
            self.sessions,
            self.require_provider(),
            self.notifier,
            workers=self.settings.WORKER_COUNT,
            notify_per_user=self.settings.NOTIFY_PER_USER,
        )

    def replay(self) -> ReplayEngine:
        # tek instance: state makinesi eşzamanlı ikinci replay'i reddeder
        if self.replay_engine is None:
            self.replay_engine = ReplayEngine(
                self.sessions,
                self.detector,
                NotificationDispatcher(self.sessions, self.notifier),
                workers=self.settings.WORKER_COUNT,
            )
        return self.replay_engine

    async def aclose(self) -> None:
        close = getattr(self.provider, "aclose", None)
        if close is not None:
            await close()
        await self.engine.dispose()


def build_runtime(
    settings: Settings,
    *,
    provider: Optional[IdentityProvider] = None,
    notifier: Optional[Notifier] = None,
) -> Runtime:
    engine = make_engine(settings.DATABASE_URL)
    sessions = make_sessionmaker(engine)

    if notifier is None:
        notifier = Notifier(keep_recent=settings.ALERT_KEEP_RECENT)
        for sink in build_sinks(settings):
            notifier.register(sink)

    if provider is None and settings.provider_configured():
        provider = GraphClient(
            tenant_id=settings.AZURE_TENANT_ID,
            client_id=settings.AZURE_CLIENT_ID,
            client_secret=settings.AZURE_CLIENT_SECRET,
            base_url=settings.GRAPH_BASE_URL,
            login_url=settings.GRAPH_LOGIN_URL,
            page_size=settings.SIGNIN_PAGE_SIZE,
        )
    elif provider is None:
        logger.warning("identity provider not configured; ingest and device sync are disabled")

    geo = GeoLookup(
        sessions,
        api_url=settings.IP_GEOLOCATION_API_URL,
        ttl_days=settings.GEO_CACHE_TTL_DAYS,
        timeout_sec=settings.GEO_TIMEOUT_SEC,
    )
    return Runtime(
        settings=settings,
        engine=engine,
        sessions=sessions,
        notifier=notifier,
        detector=AnomalyDetector(settings.detection_config()),
        geo=geo,
        provider=provider,
    )

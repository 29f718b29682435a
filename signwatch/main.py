from dotenv import load_dotenv
load_dotenv()  # .env'yi settings okunmadan önce yükle

# signwatch/main.py
# ASGI factory: signwatch.main:create_app
import logging
from typing import Optional

from fastapi import FastAPI
from starlette.responses import JSONResponse
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from signwatch.api.routes_admin import router as admin_router
from signwatch.api.routes_events import router as events_router
from signwatch.api.routes_metrics import router as metrics_router
from signwatch.api.routes_whitelist import router as whitelist_router
from signwatch.core.errors import SignwatchError
from signwatch.core.settings import get_settings
from signwatch.metrics import get_metrics
from signwatch.services.digest import send_weekly_digest
from signwatch.services.retention import run_retention
from signwatch.services.runtime import Runtime, build_runtime, configure_logging

logger = logging.getLogger(__name__)


def create_app(runtime: Optional[Runtime] = None, *, start_scheduler: bool = True) -> FastAPI:
    if runtime is None:
        settings = get_settings()
        configure_logging(settings.LOG_LEVEL)
        runtime = build_runtime(settings)

    app = FastAPI(title="signwatch")
    app.state.runtime = runtime
    app.state.notifier = runtime.notifier
    app.state.signwatch_metrics = get_metrics()

    @app.exception_handler(SignwatchError)
    async def _signwatch_error(request, exc: SignwatchError):
        return JSONResponse(exc.to_dict(), status_code=500)

    @app.get("/health")
    def health():
        return JSONResponse({"status": "ok"})

    app.include_router(metrics_router)
    app.include_router(events_router)
    app.include_router(whitelist_router)
    app.include_router(admin_router)

    @app.on_event("startup")
    async def _startup():
        if not start_scheduler:
            return
        app.state.scheduler = build_scheduler(runtime)
        app.state.scheduler.start()

    @app.on_event("shutdown")
    async def _shutdown():
        sch = getattr(app.state, "scheduler", None)
        if sch:
            sch.shutdown(wait=False)
        await runtime.aclose()

    return app


def build_scheduler(runtime: Runtime) -> AsyncIOScheduler:
    s = runtime.settings
    scheduler = AsyncIOScheduler()
    if runtime.provider is not None:
        scheduler.add_job(_ingest_job, IntervalTrigger(minutes=s.INGEST_INTERVAL_MINUTES), args=[runtime],
                          max_instances=1, coalesce=True)
        scheduler.add_job(_device_sync_job, CronTrigger(minute=0), args=[runtime], max_instances=1, coalesce=True)
    # Her gün 03:30'da retention
    scheduler.add_job(_retention_job, CronTrigger(hour=3, minute=30), args=[runtime])
    # Pazartesi 07:00 haftalık özet
    scheduler.add_job(_digest_job, CronTrigger(day_of_week="mon", hour=7, minute=0), args=[runtime])
    return scheduler


async def _ingest_job(runtime: Runtime):
    try:
        await runtime.ingest_runner().run()
    except Exception:
        logger.exception("scheduled ingest failed")


async def _device_sync_job(runtime: Runtime):
    try:
        await runtime.device_sync_runner().run()
    except Exception:
        logger.exception("scheduled device sync failed")


async def _retention_job(runtime: Runtime):
    # bağımsız bir session açıp retention çalıştır
    s = runtime.settings
    async with runtime.sessions() as session:
        deleted = await run_retention(
            session,
            event_days=s.RETENTION_DAYS,
            geo_days=s.GEO_CACHE_TTL_DAYS,
            alert_log_days=s.ALERT_LOG_RETENTION_DAYS,
        )
        await session.commit()
    logger.info("retention: %s", deleted)


async def _digest_job(runtime: Runtime):
    try:
        await send_weekly_digest(runtime.sessions, runtime.notifier)
    except Exception:
        logger.exception("weekly digest failed")

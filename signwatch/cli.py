"""
Batch entry points.

    python -m signwatch.cli ingest
    python -m signwatch.cli sync-devices
    python -m signwatch.cli populate-devices
    python -m signwatch.cli replay
    python -m signwatch.cli prune
    python -m signwatch.cli digest
    python -m signwatch.cli init-db
"""
from dotenv import load_dotenv
load_dotenv()

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from signwatch.core.errors import SignwatchError
from signwatch.core.settings import get_settings
from signwatch.persistence.db import init_models
from signwatch.services.device_sync import populate_baseline
from signwatch.services.digest import send_weekly_digest
from signwatch.services.retention import run_retention
from signwatch.services.runtime import Runtime, build_runtime, configure_logging

logger = logging.getLogger("signwatch.cli")


async def _ingest(rt: Runtime):
    return (await rt.ingest_runner().run()).as_dict()


async def _sync_devices(rt: Runtime):
    return (await rt.device_sync_runner().run()).__dict__


async def _populate_devices(rt: Runtime):
    return {"seeded_users": await populate_baseline(rt.sessions, rt.require_provider())}


async def _replay(rt: Runtime):
    return (await rt.replay().run()).__dict__


async def _prune(rt: Runtime):
    s = rt.settings
    async with rt.sessions() as session:
        deleted = await run_retention(
            session,
            event_days=s.RETENTION_DAYS,
            geo_days=s.GEO_CACHE_TTL_DAYS,
            alert_log_days=s.ALERT_LOG_RETENTION_DAYS,
        )
        await session.commit()
    return deleted


async def _digest(rt: Runtime):
    return {"users": len(await send_weekly_digest(rt.sessions, rt.notifier))}


async def _init_db(rt: Runtime):
    await init_models(rt.engine)
    return {"ok": True}


COMMANDS = {
    "ingest": (_ingest, "fetch new sign-ins, detect and notify"),
    "sync-devices": (_sync_devices, "compare registered MFA devices against the last snapshot"),
    "populate-devices": (_populate_devices, "seed the device snapshot table without change events"),
    "replay": (_replay, "reset and recompute every anomaly flag from history"),
    "prune": (_prune, "apply retention to events, geo cache and notification log"),
    "digest": (_digest, "send the weekly activity digest"),
    "init-db": (_init_db, "create tables directly (development; use alembic otherwise)"),
}


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="signwatch", description="Sign-in anomaly detection batch runs")
    sub = p.add_subparsers(dest="command", required=True)
    for name, (_, help_text) in COMMANDS.items():
        sub.add_parser(name, help=help_text)
    return p


async def run(command: str) -> dict:
    rt = build_runtime(get_settings())
    try:
        fn, _ = COMMANDS[command]
        return await fn(rt)
    finally:
        await rt.aclose()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)
    try:
        result = asyncio.run(run(args.command))
    except SignwatchError as e:
        logger.error("%s failed: %s", args.command, e)
        print(json.dumps(e.to_dict()), file=sys.stderr)
        return 1
    print(json.dumps(result, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())

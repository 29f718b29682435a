import httpx
import pytest
from sqlalchemy import select

from signwatch.alerts.base import Notifier
from signwatch.anomaly import AnomalyDetector, DetectionConfig
from signwatch.persistence.models import NotificationLogEntry
from signwatch.repositories.events import list_events
from signwatch.services.geolocation import GeoLookup
from signwatch.services.ingest import IngestRunner, skip_reason
from signwatch.services.notifications import NotificationDispatcher
from signwatch.services.replay import ReplayEngine
from signwatch.tests.factories import (
    LONDON, NYC, T0, FailingSink, FakeGeo, FakeProvider, drop_table, hours, reject_writes, sign_in,
)

DETECTOR = AnomalyDetector(DetectionConfig(speed_threshold_kph=800, region_change_ignore_km=80))
GEO = FakeGeo({"1.1.1.1": NYC, "2.2.2.2": LONDON})


def _runner(sessions, provider, notifier, **kw):
    return IngestRunner(sessions, provider, DETECTOR, notifier, geo=GEO, **kw)


async def _log_rows(sessions):
    async with sessions() as session:
        return (await session.execute(select(NotificationLogEntry))).scalars().all()


def test_skip_rules():
    assert skip_reason(sign_in("a", T0, "")) == "no_ip"
    assert skip_reason(sign_in("a", T0, "127.0.0.1")) == "loopback"
    assert skip_reason(sign_in("a", None, "1.1.1.1")) == "missing_timestamp"
    assert skip_reason(sign_in("", T0, "1.1.1.1")) == "missing_external_id"
    assert skip_reason(sign_in("a", T0, "1.1.1.1")) is None


@pytest.mark.asyncio
async def test_nyc_to_london_end_to_end(sessions, notifier, sink):
    # provider yeni->eski sırada döndürür; runner kronolojik işler
    provider = FakeProvider(sign_ins=[
        sign_in("e2", T0 + hours(1), "2.2.2.2"),
        sign_in("e1", T0, "1.1.1.1"),
        sign_in("lo", T0, "127.0.0.1"),
        sign_in("noip", T0, ""),
    ])
    report = await _runner(sessions, provider, notifier).run()

    assert report.fetched == 4
    assert report.processed == 2
    assert report.skipped == 2
    assert report.flagged == 1

    async with sessions() as session:
        total, rows = await list_events(session, flagged_only=True)
    assert total == 1
    flagged = rows[0]
    assert flagged.external_id == "e2"
    assert flagged.is_impossible_travel and flagged.is_region_change
    assert flagged.travel_speed_kph == pytest.approx(5570, rel=0.01)
    assert flagged.region == "England"

    # per-user (travel + region) ve bir konsolide mesaj
    assert sink.kinds() == ["user", "user", "consolidated"]
    logs = await _log_rows(sessions)
    assert sorted(l.alert_kind for l in logs) == ["impossible_travel", "region_change"]
    assert all(l.delivered is True for l in logs)


@pytest.mark.asyncio
async def test_rerun_is_deduplicated(sessions, notifier, sink):
    provider = FakeProvider(sign_ins=[sign_in("e1", T0, "1.1.1.1"), sign_in("e2", T0 + hours(1), "2.2.2.2")])
    runner = _runner(sessions, provider, notifier)
    await runner.run()
    sink.payloads.clear()

    report = await runner.run()
    assert report.duplicates == 2
    assert report.processed == 0
    assert sink.payloads == []
    assert provider.since_calls[-1] == T0 + hours(1)
    assert len(await _log_rows(sessions)) == 2


@pytest.mark.asyncio
async def test_consolidated_only_when_per_user_disabled(sessions, notifier, sink):
    provider = FakeProvider(sign_ins=[sign_in("e1", T0, "1.1.1.1"), sign_in("e2", T0 + hours(1), "2.2.2.2")])
    await _runner(sessions, provider, notifier, notify_per_user=False).run()
    assert sink.kinds() == ["consolidated"]


@pytest.mark.asyncio
async def test_failed_delivery_keeps_log_entries(sessions):
    notifier = Notifier()
    notifier.register(FailingSink())
    provider = FakeProvider(sign_ins=[sign_in("e1", T0, "1.1.1.1"), sign_in("e2", T0 + hours(1), "2.2.2.2")])
    await _runner(sessions, provider, notifier, notify_per_user=False).run()

    logs = await _log_rows(sessions)
    assert len(logs) == 2
    assert all(l.delivered is False for l in logs)


@pytest.mark.asyncio
async def test_incremental_flags_match_replay(sessions, notifier):
    provider = FakeProvider(sign_ins=[
        sign_in("e1", T0, "1.1.1.1"),
        sign_in("e2", T0 + hours(1), "2.2.2.2"),
        sign_in("e3", T0 + hours(2), "1.1.1.1", ok=False),
        sign_in("e4", T0 + hours(3), "2.2.2.2", user_id="u2"),
    ])
    await _runner(sessions, provider, notifier).run()

    cols = ("is_impossible_travel", "is_region_change", "travel_speed_kph", "compared_event_id")

    async def snapshot():
        async with sessions() as session:
            _, rows = await list_events(session, limit=100)
        return {r.external_id: tuple(getattr(r, c) for c in cols) for r in rows}

    incremental = await snapshot()
    await ReplayEngine(sessions, DETECTOR, NotificationDispatcher(sessions, notifier)).run()
    assert await snapshot() == incremental


@pytest.mark.asyncio
async def test_store_failure_rolls_back_only_that_sign_in(engine, sessions, notifier, sink):
    await reject_writes(engine, "reject_u2_insert", "BEFORE INSERT", "login_events", when="NEW.user_id = 'u2'")
    provider = FakeProvider(sign_ins=[
        sign_in("a1", T0, "1.1.1.1"),
        sign_in("a2", T0 + hours(1), "2.2.2.2"),
        sign_in("b1", T0, "2.2.2.2", user_id="u2"),
    ])

    report = await _runner(sessions, provider, notifier).run()

    assert report.errors == 1
    assert report.processed == 2
    assert report.flagged == 1
    async with sessions() as session:
        _, rows = await list_events(session)
    assert sorted(r.external_id for r in rows) == ["a1", "a2"]
    assert sink.kinds()[-1] == "consolidated"
    assert len(await _log_rows(sessions)) == 2


@pytest.mark.asyncio
async def test_unreadable_geo_cache_does_not_stop_the_run(engine, sessions, notifier, sink):
    await drop_table(engine, "ip_geolocation_cache")

    def api(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/1.1.1.1"):
            g = NYC
        else:
            g = LONDON
        return httpx.Response(200, json={
            "status": "success", "country": g.country, "regionName": g.region,
            "city": g.city, "lat": g.lat, "lon": g.lon,
        })

    provider = FakeProvider(sign_ins=[
        sign_in("e1", T0, "1.1.1.1"),
        sign_in("e2", T0 + hours(1), "2.2.2.2"),
    ])
    async with httpx.AsyncClient(transport=httpx.MockTransport(api)) as client:
        geo = GeoLookup(sessions, api_url="http://geo.test/json/", client=client, clock=lambda: T0)
        report = await IngestRunner(sessions, provider, DETECTOR, notifier, geo=geo).run()

    assert report.errors == 0
    assert report.processed == 2
    assert report.flagged == 1
    async with sessions() as session:
        _, rows = await list_events(session)
    assert {r.external_id: r.region for r in rows} == {"e1": "New York", "e2": "England"}
    assert sink.kinds()[-1] == "consolidated"

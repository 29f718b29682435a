from datetime import timedelta

import httpx
import pytest

from signwatch.persistence.models import GeoCacheEntry
from signwatch.services.geolocation import GeoLookup, prune_geo_cache
from signwatch.tests.factories import T0, drop_table


def _api(calls):
    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(str(request.url))
        if request.url.path.endswith("/203.0.113.9"):
            return httpx.Response(200, json={"status": "fail", "message": "reserved range"})
        if request.url.path.endswith("/198.51.100.1"):
            return httpx.Response(502)
        return httpx.Response(200, json={
            "status": "success", "country": "Germany", "regionName": "Bavaria", "region": "BY",
            "city": "Munich", "lat": 48.13, "lon": 11.57, "isp": "Example",
        })
    return handler


@pytest.mark.asyncio
async def test_resolve_caches_results(sessions):
    calls = []
    async with httpx.AsyncClient(transport=httpx.MockTransport(_api(calls))) as client:
        geo = GeoLookup(sessions, api_url="http://geo.test/json/", client=client, clock=lambda: T0)
        first = await geo.resolve("8.8.8.8")
        second = await geo.resolve("8.8.8.8")

    assert first.region == "Bavaria"
    assert second == first
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_stale_cache_is_refreshed(sessions):
    calls = []
    async with sessions() as session:
        session.add(GeoCacheEntry(ip_address="8.8.8.8", country="X", last_updated=T0 - timedelta(days=91)))
        await session.commit()
    async with httpx.AsyncClient(transport=httpx.MockTransport(_api(calls))) as client:
        geo = GeoLookup(sessions, api_url="http://geo.test/json/", ttl_days=90, client=client, clock=lambda: T0)
        info = await geo.resolve("8.8.8.8")
    assert info.country == "Germany"
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_lookup_failures_are_absent_data(sessions):
    async with httpx.AsyncClient(transport=httpx.MockTransport(_api([]))) as client:
        geo = GeoLookup(sessions, api_url="http://geo.test/json/", client=client, clock=lambda: T0)
        assert await geo.resolve("203.0.113.9") is None
        assert await geo.resolve("198.51.100.1") is None


@pytest.mark.asyncio
async def test_prune_geo_cache(sessions):
    async with sessions() as session:
        session.add_all([
            GeoCacheEntry(ip_address="a", last_updated=T0 - timedelta(days=100)),
            GeoCacheEntry(ip_address="b", last_updated=T0),
        ])
        await session.commit()
        assert await prune_geo_cache(session, days=90, now=T0) == 1
        await session.commit()


@pytest.mark.asyncio
async def test_cache_read_failure_falls_back_to_api(engine, sessions):
    await drop_table(engine, "ip_geolocation_cache")
    calls = []
    async with httpx.AsyncClient(transport=httpx.MockTransport(_api(calls))) as client:
        geo = GeoLookup(sessions, api_url="http://geo.test/json/", client=client, clock=lambda: T0)
        info = await geo.resolve("8.8.8.8")
    assert info.city == "Munich"
    assert len(calls) == 1

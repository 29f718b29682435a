# signwatch/services/geolocation.py
from __future__ import annotations
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

import httpx
from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from signwatch.core.timeutil import utcnow
from signwatch.persistence.models import GeoCacheEntry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GeoInfo:
    country: Optional[str] = None
    region: Optional[str] = None
    city: Optional[str] = None
    lat: Optional[float] = None
    lon: Optional[float] = None
    isp: Optional[str] = None


def _from_api(data: Dict[str, Any]) -> GeoInfo:
    # ip-api.com alan adları: regionName uzun isim, region kısa kod
    return GeoInfo(
        country=data.get("country"),
        region=data.get("regionName") or data.get("region"),
        city=data.get("city"),
        lat=data.get("lat"),
        lon=data.get("lon"),
        isp=data.get("isp"),
    )


class GeoLookup:
    """
    IP -> konum. Önce ip_geolocation_cache, yoksa HTTP API.
    Hata durumunda None döner; detection eksik veriyle devam eder.
    """

    def __init__(
        self,
        sessions: async_sessionmaker[AsyncSession],
        *,
        api_url: str,
        ttl_days: int = 90,
        timeout_sec: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.sessions = sessions
        self.api_url = api_url
        self.ttl = timedelta(days=ttl_days)
        self.timeout = timeout_sec
        self._client = client
        self._clock = clock

    async def resolve(self, ip: str) -> Optional[GeoInfo]:
        now = self._clock()
        try:
            async with self.sessions() as session:
                row = await session.get(GeoCacheEntry, ip)
                if row is not None and row.last_updated >= now - self.ttl:
                    return GeoInfo(row.country, row.region, row.city, row.lat, row.lon, row.isp)
        except SQLAlchemyError:
            # cache okunamazsa API ile devam
            logger.warning("geo cache read failed for %s", ip, exc_info=True)

        info = await self._fetch(ip)
        if info is None:
            return None

        try:
            async with self.sessions() as session:
                await session.merge(GeoCacheEntry(
                    ip_address=ip,
                    country=info.country,
                    region=info.region,
                    city=info.city,
                    lat=info.lat,
                    lon=info.lon,
                    isp=info.isp,
                    last_updated=now,
                ))
                await session.commit()
        except SQLAlchemyError:
            logger.warning("geo cache write failed for %s", ip, exc_info=True)
        return info

    async def _fetch(self, ip: str) -> Optional[GeoInfo]:
        try:
            if self._client is not None:
                resp = await self._client.get(self.api_url + ip, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    resp = await client.get(self.api_url + ip)
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("geo lookup failed for %s: %s", ip, e)
            return None
        if not isinstance(data, dict) or data.get("status") != "success":
            logger.info("geo lookup returned no data for %s", ip)
            return None
        return _from_api(data)


async def prune_geo_cache(session: AsyncSession, *, days: int, now: datetime) -> int:
    cutoff = now - timedelta(days=days)
    res = await session.execute(delete(GeoCacheEntry).where(GeoCacheEntry.last_updated < cutoff))
    return getattr(res, "rowcount", 0) or 0


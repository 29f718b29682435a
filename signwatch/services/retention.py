# signwatch/services/retention.py
from datetime import datetime
from typing import Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from signwatch.core.timeutil import utcnow
from signwatch.repositories.alerts import prune_notification_log
from signwatch.repositories.events import prune_events
from signwatch.services.geolocation import prune_geo_cache


async def run_retention(
    session: AsyncSession,
    *,
    event_days: int,
    geo_days: int,
    alert_log_days: int,
    now: Optional[datetime] = None,
) -> Dict[str, int]:
    """
    Eski login olaylarını, geo cache ve bildirim log satırlarını temizler.
    Silinen satır sayılarını döndürür; commit çağıranın işi.
    """
    now = now or utcnow()
    # önce log: login_events silinince CASCADE zaten siler ama sqlite FK zorlamıyor
    alerts = await prune_notification_log(session, days=alert_log_days, now=now)
    events = await prune_events(session, days=event_days, now=now)
    geo = await prune_geo_cache(session, days=geo_days, now=now)
    return {"login_events": events, "geo_cache": geo, "notification_log": alerts}

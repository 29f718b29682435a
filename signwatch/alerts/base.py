from __future__ import annotations
from dataclasses import dataclass, asdict, field
from collections import deque
from typing import Any, Dict, List, Optional, Protocol
import asyncio, logging, os, socket, time

from signwatch.anomaly.incidents import Incident, NotificationPlan
from signwatch.metrics import NOTIFICATIONS

logger = logging.getLogger(__name__)


@dataclass
class AlertPayload:
    ts: float
    kind: str          # consolidated | user | weekly_digest
    subject: str
    body: Dict[str, Any]
    recipient: Optional[str] = None
    host: str = socket.gethostname()
    env: str = os.getenv("APP_ENV", "dev")


class AlertSink(Protocol):
    async def send(self, payload: AlertPayload) -> None: ...


@dataclass
class DeliveryReport:
    attempted: int = 0
    failed: List[str] = field(default_factory=list)

    @property
    def delivered(self) -> bool:
        return self.attempted > 0 and not self.failed


def _login_view(ev) -> Dict[str, Any]:
    return {
        "id": ev.id,
        "time": ev.login_time.isoformat() if ev.login_time else None,
        "location": ", ".join(x or "N/A" for x in (ev.city, ev.region, ev.country)),
        "ip_address": ev.ip_address,
        "status": ev.status,
    }


def render_incident(inc: Incident) -> Dict[str, Any]:
    out: Dict[str, Any] = {"type": inc.kind.value, "user": inc.principal_name}
    if inc.subject is not None:
        out["current"] = _login_view(inc.subject)
    if inc.compared is not None:
        out["previous"] = _login_view(inc.compared)
    if "speed_kph" in inc.extra:
        out["speed_kph"] = round(inc.extra["speed_kph"])
    if "distance_km" in inc.extra:
        out["distance_km"] = round(inc.extra["distance_km"], 1)
    return out


def render_plan(plan: NotificationPlan) -> Dict[str, Any]:
    return {
        "summary": plan.summary(),
        "note": (
            "A single sign-in may appear more than once when it is anomalous against "
            "several different logins from the past 24 hours."
        ),
        "incidents": [render_incident(i) for i in plan.to_send],
        "device_changes": [
            {"user": g.principal_name, "added": list(g.added), "removed": list(g.removed)}
            for _, g in sorted(plan.device_groups.items())
        ],
    }


class Notifier:
    """
    Sink'lere paralel gönderim; hata yutulmaz, loglanır ve rapora yazılır.
    Pipeline hiçbir zaman teslim hatası yüzünden durmaz.
    """

    def __init__(self, keep_recent: int = 0):
        self.sinks: List[AlertSink] = []
        self._recent = deque(maxlen=int(keep_recent)) if keep_recent > 0 else None
        self.m_sent = NOTIFICATIONS

    def register(self, sink: AlertSink) -> None:
        self.sinks.append(sink)

    async def notify_consolidated(self, plan: NotificationPlan) -> DeliveryReport:
        if plan.empty:
            return DeliveryReport()
        s = plan.summary()
        payload = AlertPayload(
            ts=time.time(),
            kind="consolidated",
            subject=f"Security Alert: {s['total']} notable incident(s) detected",
            body=render_plan(plan),
        )
        return await self.emit(payload)

    async def notify_user(self, principal_name: str, alert_kind: str, detail: Dict[str, Any]) -> DeliveryReport:
        payload = AlertPayload(
            ts=time.time(),
            kind="user",
            subject=f"Security Alert for {principal_name}: {alert_kind.replace('_', ' ')}",
            body={"alert_kind": alert_kind, **detail},
            recipient=principal_name,
        )
        return await self.emit(payload)

    async def notify_digest(self, period: Dict[str, str], users: List[Dict[str, Any]]) -> DeliveryReport:
        payload = AlertPayload(
            ts=time.time(),
            kind="weekly_digest",
            subject=f"Weekly Sign-in Activity Digest - {period['end'][:10]}",
            body={"period": period, "users": users},
        )
        return await self.emit(payload)

    async def emit(self, payload: AlertPayload) -> DeliveryReport:
        report = DeliveryReport(attempted=len(self.sinks))
        results = await asyncio.gather(*(self._send_one(s, payload) for s in self.sinks))
        report.failed = [name for name, ok in results if not ok]
        if self._recent is not None:
            self._recent.append(asdict(payload))
        return report

    async def _send_one(self, sink: AlertSink, payload: AlertPayload) -> tuple[str, bool]:
        name = sink.__class__.__name__
        try:
            await sink.send(payload)
        except Exception:
            logger.exception("notification via %s failed (%s)", name, payload.subject)
            self.m_sent.labels(sink=name, outcome="failed").inc()
            return name, False
        self.m_sent.labels(sink=name, outcome="sent").inc()
        return name, True

    def recent(self, limit: int | None = None) -> List[Dict[str, Any]]:
        if self._recent is None:
            return []
        if not limit or limit <= 0:
            return list(self._recent)
        return list(self._recent)[-int(limit):]

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from signwatch.anomaly.devices import ChangeType, DeviceDelta
from signwatch.anomaly.travel import DetectionResult
from signwatch.anomaly.window import LoginLike


class AlertKind(str, Enum):
    IMPOSSIBLE_TRAVEL = "impossible_travel"
    REGION_CHANGE = "region_change"
    DEVICE_CHANGE = "device_change"


LogKey = Tuple[int, Optional[int], str]


@dataclass
class Incident:
    kind: AlertKind
    user_id: str
    principal_name: str
    subject: Optional[LoginLike] = None
    compared: Optional[LoginLike] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_device_change(self) -> bool:
        return self.kind is AlertKind.DEVICE_CHANGE

    def log_key(self) -> LogKey:
        compared_id = self.compared.id if self.compared is not None else None
        return (self.subject.id, compared_id, self.kind.value)

    def ips(self) -> List[str]:
        return [ev.ip_address for ev in (self.subject, self.compared) if ev is not None]


def login_incidents(current: LoginLike, principal_name: str, result: DetectionResult) -> List[Incident]:
    """Incidents that qualify for notification; UI-only flags produce none."""
    out: List[Incident] = []
    if result.notify_travel:
        out.append(Incident(
            kind=AlertKind.IMPOSSIBLE_TRAVEL,
            user_id=current.user_id,
            principal_name=principal_name,
            subject=current,
            compared=result.travel.compared,
            extra={"speed_kph": result.travel.speed_kph},
        ))
    if result.notify_region:
        out.append(Incident(
            kind=AlertKind.REGION_CHANGE,
            user_id=current.user_id,
            principal_name=principal_name,
            subject=current,
            compared=result.region.compared,
            extra={"distance_km": result.region.distance_km},
        ))
    return out


def device_incidents(user_id: str, principal_name: str, delta: DeviceDelta, at: datetime) -> List[Incident]:
    return [
        Incident(
            kind=AlertKind.DEVICE_CHANGE,
            user_id=user_id,
            principal_name=principal_name,
            extra={"device": c.display_name, "change": c.change.value, "time": at.isoformat()},
        )
        for c in delta.changes
    ]


@dataclass
class DeviceGroup:
    principal_name: str
    added: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)


@dataclass
class NotificationPlan:
    to_send: List[Incident] = field(default_factory=list)
    suppressed: List[Incident] = field(default_factory=list)
    already_notified: List[Incident] = field(default_factory=list)
    device_groups: Dict[str, DeviceGroup] = field(default_factory=dict)

    @property
    def empty(self) -> bool:
        return not self.to_send and not self.device_groups

    def log_keys(self) -> List[LogKey]:
        return [i.log_key() for i in self.to_send]

    def summary(self) -> Dict[str, int]:
        kinds = [i.kind for i in self.to_send]
        return {
            "total": len(self.to_send) + sum(len(g.added) + len(g.removed) for g in self.device_groups.values()),
            "users": len({i.user_id for i in self.to_send} | set(self.device_groups)),
            "impossible_travel": kinds.count(AlertKind.IMPOSSIBLE_TRAVEL),
            "region_change": kinds.count(AlertKind.REGION_CHANGE),
            "device_change_users": len(self.device_groups),
            "suppressed": len(self.suppressed),
        }


_KIND_ORDER = {AlertKind.IMPOSSIBLE_TRAVEL: 0, AlertKind.REGION_CHANGE: 1, AlertKind.DEVICE_CHANGE: 2}


def _sort_key(i: Incident):
    s = i.subject
    return (i.user_id, s.login_time, s.id or 0, _KIND_ORDER[i.kind])


class IncidentAggregator:
    """
    Bir koşudaki (run) tüm olayları toplar:
      - login olayları tek tek listelenir (aynı subject birden çok kez olabilir)
      - cihaz değişiklikleri kullanıcı başına {added, removed} altında birleşir
      - whitelist'teki IP yalnızca bildirimi bastırır, bayrak DB'de kalır
    """

    def __init__(self, whitelist: Iterable[str] = ()):
        self.whitelist: Set[str] = set(whitelist)
        self._incidents: List[Incident] = []

    def add(self, incident: Incident) -> None:
        self._incidents.append(incident)

    def extend(self, incidents: Iterable[Incident]) -> None:
        self._incidents.extend(incidents)

    def __len__(self) -> int:
        return len(self._incidents)

    def login_incidents(self) -> List[Incident]:
        return [i for i in self._incidents if not i.is_device_change]

    def whitelisted(self, incident: Incident) -> bool:
        return any(ip in self.whitelist for ip in incident.ips())

    def build(self, already_logged: Iterable[LogKey] = ()) -> NotificationPlan:
        logged = set(already_logged)
        plan = NotificationPlan()
        seen: Set[LogKey] = set()

        login = sorted(self.login_incidents(), key=_sort_key)
        for inc in login:
            key = inc.log_key()
            if key in seen:
                continue
            seen.add(key)
            if self.whitelisted(inc):
                plan.suppressed.append(inc)
            elif key in logged:
                plan.already_notified.append(inc)
            else:
                plan.to_send.append(inc)

        devices = sorted(
            (i for i in self._incidents if i.is_device_change),
            key=lambda i: (i.user_id, i.extra.get("change", ""), i.extra.get("device", "")),
        )
        for inc in devices:
            group = plan.device_groups.setdefault(inc.user_id, DeviceGroup(principal_name=inc.principal_name))
            if inc.extra.get("change") == ChangeType.ADDED.value:
                group.added.append(inc.extra["device"])
            else:
                group.removed.append(inc.extra["device"])
        return plan

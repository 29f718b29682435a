from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Mapping


class DeviceKind(str, Enum):
    """MFA method variants, decoded once at the provider boundary."""

    AUTHENTICATOR_APP = "authenticator_app"
    SECURITY_KEY = "security_key"
    SOFTWARE_TOKEN = "software_token"
    UNRECOGNIZED = "unrecognized"

    @property
    def label(self) -> str:
        return _LABELS[self]


_LABELS = {
    DeviceKind.AUTHENTICATOR_APP: "Microsoft Authenticator",
    DeviceKind.SECURITY_KEY: "FIDO2 Security Key",
    DeviceKind.SOFTWARE_TOKEN: "Software OATH Token",
    DeviceKind.UNRECOGNIZED: "Unrecognized",
}


class ChangeType(str, Enum):
    ADDED = "added"
    REMOVED = "removed"


@dataclass(frozen=True)
class DeviceInfo:
    display_name: str
    kind: DeviceKind


@dataclass(frozen=True)
class DeviceChange:
    device_id: str
    display_name: str
    change: ChangeType


@dataclass
class DeviceDelta:
    added: List[DeviceChange] = field(default_factory=list)
    removed: List[DeviceChange] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.added or self.removed)

    @property
    def changes(self) -> List[DeviceChange]:
        return self.added + self.removed


def diff_devices(current: Mapping[str, DeviceInfo], known: Mapping[str, DeviceInfo]) -> DeviceDelta:
    """
    Id-only set difference. Attribute drift on an id present on both sides is
    not a change. Output is sorted by device id so it does not depend on dict order.
    """
    added = [
        DeviceChange(device_id=d, display_name=current[d].display_name, change=ChangeType.ADDED)
        for d in sorted(current.keys() - known.keys())
    ]
    removed = [
        DeviceChange(device_id=d, display_name=known[d].display_name, change=ChangeType.REMOVED)
        for d in sorted(known.keys() - current.keys())
    ]
    return DeviceDelta(added=added, removed=removed)


def mfa_only(devices: Mapping[str, DeviceInfo]) -> Dict[str, DeviceInfo]:
    return {k: v for k, v in devices.items() if v.kind is not DeviceKind.UNRECOGNIZED}

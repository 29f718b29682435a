from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

from signwatch.anomaly.geo import has_coordinates, haversine_km
from signwatch.anomaly.window import LoginLike
from signwatch.core.errors import InvalidEventError
from signwatch.persistence.models import STATUS_SUCCESS


@dataclass(frozen=True)
class DetectionConfig:
    speed_threshold_kph: float
    region_change_ignore_km: float


@dataclass(frozen=True)
class TravelCheck:
    flagged: bool = False
    compared: Optional[LoginLike] = None
    speed_kph: Optional[float] = None


@dataclass(frozen=True)
class RegionCheck:
    flagged: bool = False
    compared: Optional[LoginLike] = None
    distance_km: Optional[float] = None


@dataclass(frozen=True)
class DetectionResult:
    travel: TravelCheck
    region: RegionCheck
    notify_travel: bool
    notify_region: bool

    @property
    def compared_event(self) -> Optional[LoginLike]:
        # impossible travel bağlantısı önceliklidir
        if self.travel.flagged:
            return self.travel.compared
        if self.region.flagged:
            return self.region.compared
        return None

    @property
    def anomalous(self) -> bool:
        return self.travel.flagged or self.region.flagged


def _succeeded(ev: LoginLike) -> bool:
    return ev.status == STATUS_SUCCESS


def _region_candidate(current: LoginLike, p: LoginLike) -> bool:
    return (
        p.ip_address != current.ip_address
        and bool(p.region)
        and bool(current.region)
        and p.region != current.region
        and _succeeded(current)
        and _succeeded(p)
    )


class AnomalyDetector:
    """
    Tek bir login olayını, aynı kullanıcının son 24 saatlik penceresiyle kıyaslar.
    - region change: pencerede (yeniden eskiye) ilk uygun aday
    - impossible travel: tüm pencere içinde en yüksek hız (eşitlikte ilk görülen)
    Saf fonksiyon: saat okumaz, store'a dokunmaz.
    """

    def __init__(self, config: DetectionConfig):
        self.config = config

    def evaluate(self, current: LoginLike, window: Sequence[LoginLike]) -> DetectionResult:
        if current.login_time is None:
            raise InvalidEventError("login event has no timestamp", event_ref=str(current.id))

        region = RegionCheck()
        best: Optional[LoginLike] = None
        best_speed: Optional[float] = None

        for p in window:
            if p.login_time is None:
                continue

            if not region.flagged and _region_candidate(current, p):
                region = RegionCheck(
                    flagged=True,
                    compared=p,
                    distance_km=haversine_km(p.lat, p.lon, current.lat, current.lon),
                )

            if p.ip_address == current.ip_address:
                continue
            if not (has_coordinates(p.lat, p.lon) and has_coordinates(current.lat, current.lon)):
                continue
            hours = (current.login_time - p.login_time).total_seconds() / 3600.0
            if hours <= 0:
                continue
            speed = haversine_km(p.lat, p.lon, current.lat, current.lon) / hours
            if best_speed is None or speed > best_speed:
                best, best_speed = p, speed

        if best is not None and best_speed > self.config.speed_threshold_kph:
            travel = TravelCheck(flagged=True, compared=best, speed_kph=best_speed)
        else:
            travel = TravelCheck()

        notify_travel = travel.flagged and _succeeded(current) and _succeeded(travel.compared)
        notify_region = (
            region.flagged and region.distance_km > self.config.region_change_ignore_km
        )
        return DetectionResult(
            travel=travel,
            region=region,
            notify_travel=notify_travel,
            notify_region=notify_region,
        )


def flag_values(result: DetectionResult) -> Dict[str, Any]:
    """Detection output mapped onto the stored flag columns of a LoginEvent."""
    compared = result.compared_event
    return {
        "is_impossible_travel": result.travel.flagged,
        "travel_speed_kph": result.travel.speed_kph if result.travel.flagged else None,
        "is_region_change": result.region.flagged,
        "region_compared_event_id": result.region.compared.id if result.region.flagged else None,
        "compared_event_id": compared.id if compared is not None else None,
    }


def apply_result(event, result: DetectionResult) -> None:
    for column, value in flag_values(result).items():
        setattr(event, column, value)

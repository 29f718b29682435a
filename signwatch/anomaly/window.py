from __future__ import annotations
from datetime import datetime, timedelta
from typing import Iterable, List, Protocol, Optional

WINDOW = timedelta(hours=24)


class LoginLike(Protocol):
    id: Optional[int]
    user_id: str
    ip_address: str
    login_time: Optional[datetime]
    status: str
    region: Optional[str]
    lat: Optional[float]
    lon: Optional[float]


def window_bounds(login_time: datetime) -> tuple[datetime, datetime]:
    """[login_time - 24h, login_time)"""
    return login_time - WINDOW, login_time


def newest_first_key(ev: LoginLike):
    # aynı zaman damgasında büyük id önce gelir (stabil sıra)
    return (ev.login_time, ev.id if ev.id is not None else -1)


def build_window(current: LoginLike, history: Iterable[LoginLike]) -> List[LoginLike]:
    """
    Materialize the sliding window for `current` out of an arbitrary history:
    same user, login_time in [t - 24h, t), sorted newest-first.
    Events without a timestamp never enter a window.
    """
    start, end = window_bounds(current.login_time)
    picked = [
        ev for ev in history
        if ev is not current
        and ev.user_id == current.user_id
        and ev.login_time is not None
        and start <= ev.login_time < end
    ]
    picked.sort(key=newest_first_key, reverse=True)
    return picked

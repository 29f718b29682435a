from __future__ import annotations
import math
from typing import Optional

EARTH_RADIUS_KM = 6371.0


def has_coordinates(lat: Optional[float], lon: Optional[float]) -> bool:
    return lat is not None and lon is not None


def haversine_km(
    lat1: Optional[float], lon1: Optional[float], lat2: Optional[float], lon2: Optional[float]
) -> float:
    """
    Great-circle distance in km. Any missing coordinate gives 0.0, callers
    that care (travel speed) must check has_coordinates() first.
    """
    if not (has_coordinates(lat1, lon1) and has_coordinates(lat2, lon2)):
        return 0.0
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c

"""
Detection core re-exports: `from signwatch.anomaly import AnomalyDetector, ...`.
"""
from .geo import EARTH_RADIUS_KM, haversine_km
from .window import build_window, window_bounds
from .travel import AnomalyDetector, DetectionConfig, DetectionResult, flag_values
from .devices import DeviceInfo, DeviceKind, DeviceDelta, diff_devices
from .incidents import AlertKind, Incident, IncidentAggregator, NotificationPlan

__all__ = [
    "EARTH_RADIUS_KM",
    "haversine_km",
    "build_window",
    "window_bounds",
    "AnomalyDetector",
    "DetectionConfig",
    "DetectionResult",
    "flag_values",
    "DeviceInfo",
    "DeviceKind",
    "DeviceDelta",
    "diff_devices",
    "AlertKind",
    "Incident",
    "IncidentAggregator",
    "NotificationPlan",
]

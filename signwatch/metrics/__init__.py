# signwatch/metrics/__init__.py
"""
Thin re-export layer; the registry and collectors live in
signwatch.metrics.registry so `from signwatch.metrics import ...` works.
"""
from .registry import (
    METRICS_REGISTRY,
    EVENTS_INGESTED,
    EVENTS_SKIPPED,
    ANOMALIES_FLAGGED,
    DEVICE_CHANGES,
    NOTIFICATIONS,
    RUN_ERRORS,
    REPLAY_RUNS,
    RUN_DURATION,
    get_metrics,
)

__all__ = [
    "METRICS_REGISTRY",
    "EVENTS_INGESTED",
    "EVENTS_SKIPPED",
    "ANOMALIES_FLAGGED",
    "DEVICE_CHANGES",
    "NOTIFICATIONS",
    "RUN_ERRORS",
    "REPLAY_RUNS",
    "RUN_DURATION",
    "get_metrics",
]

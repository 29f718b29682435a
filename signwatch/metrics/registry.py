from __future__ import annotations
import builtins
from prometheus_client import CollectorRegistry, Counter, Histogram

_KEY = "_signwatch_metrics_singleton_v1"


def _build() -> dict[str, object]:
    registry = CollectorRegistry()
    store = dict(
        registry=registry,
        ingested=Counter(
            "signin_events_ingested_total",
            "Sign-in events stored by the ingest run",
            registry=registry,
        ),
        skipped=Counter(
            "signin_events_skipped_total",
            "Sign-in events skipped before detection",
            ["reason"],
            registry=registry,
        ),
        anomalies=Counter(
            "anomalies_flagged_total",
            "Login events flagged by the detector",
            ["kind"],
            registry=registry,
        ),
        device_changes=Counter(
            "device_changes_total",
            "MFA device additions/removals detected",
            ["change"],
            registry=registry,
        ),
        notifications=Counter(
            "notifications_total",
            "Notification deliveries per sink",
            ["sink", "outcome"],
            registry=registry,
        ),
        run_errors=Counter(
            "run_errors_total",
            "Per-user units of work rolled back",
            ["stage"],
            registry=registry,
        ),
        replays=Counter(
            "replay_runs_total",
            "Full replay runs",
            ["outcome"],
            registry=registry,
        ),
        duration=Histogram(
            "run_duration_seconds",
            "Batch run wall time in seconds",
            ["run"],
            registry=registry,
            buckets=(0.1, 0.5, 1.0, 5.0, 15.0, 60.0, 300.0, 900.0, 3600.0),
        ),
    )
    return store


# importlib.reload sonrası aynı isimle ikinci kez kayıt olmasın
if hasattr(builtins, _KEY):
    _store = getattr(builtins, _KEY)
else:
    _store = _build()
    setattr(builtins, _KEY, _store)

METRICS_REGISTRY = _store["registry"]
EVENTS_INGESTED = _store["ingested"]
EVENTS_SKIPPED = _store["skipped"]
ANOMALIES_FLAGGED = _store["anomalies"]
DEVICE_CHANGES = _store["device_changes"]
NOTIFICATIONS = _store["notifications"]
RUN_ERRORS = _store["run_errors"]
REPLAY_RUNS = _store["replays"]
RUN_DURATION = _store["duration"]


def get_metrics() -> dict[str, object]:
    return dict(_store)

from .base import AlertPayload, AlertSink, DeliveryReport, Notifier, render_incident, render_plan
from .sinks import StdoutSink, FileSink, WebhookSink, build_sinks

__all__ = [
    "AlertPayload",
    "AlertSink",
    "DeliveryReport",
    "Notifier",
    "render_incident",
    "render_plan",
    "StdoutSink",
    "FileSink",
    "WebhookSink",
    "build_sinks",
]

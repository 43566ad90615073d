"""Services package for the responder.

This package provides:
- Request event distribution with bounded history
- Aggregate request metrics
"""

from responder.app.services.events import (
    EventHub,
    RequestEvent,
    Subscription,
)
from responder.app.services.metrics import (
    ClientCount,
    MetricsCollector,
    MetricsSnapshot,
    render_prometheus,
)

__all__ = [
    "EventHub",
    "RequestEvent",
    "Subscription",
    "ClientCount",
    "MetricsCollector",
    "MetricsSnapshot",
    "render_prometheus",
]

"""Core utilities for the responder."""

from responder.app.core.clock import Clock, FixedClock, SystemClock
from responder.app.core.config import Settings, settings
from responder.app.core.logging import get_logger, setup_logging

__all__ = [
    "Clock",
    "FixedClock",
    "SystemClock",
    "Settings",
    "settings",
    "get_logger",
    "setup_logging",
]

"""Core primitives for relay-panel."""

from .errors import (
    BrokerConnectionError,
    InvalidReadingError,
    PublishError,
    RelayPanelError,
    SessionStateError,
    ValidationError,
)
from .models import TIMER_PREFIX, TURN_OFF, TURN_ON, Command, TelemetryReading
from .protocols import MessageObserver, StatusListener

__all__ = [
    "BrokerConnectionError",
    "Command",
    "InvalidReadingError",
    "MessageObserver",
    "PublishError",
    "RelayPanelError",
    "SessionStateError",
    "StatusListener",
    "TIMER_PREFIX",
    "TURN_OFF",
    "TURN_ON",
    "TelemetryReading",
    "ValidationError",
]

"""Error hierarchy shared by the session, policy and panel layers."""

from __future__ import annotations


class RelayPanelError(Exception):
    """Base class for relay-panel errors."""


class BrokerConnectionError(RelayPanelError, ConnectionError):
    """Raised when the broker is unreachable or rejects the handshake."""


class PublishError(RelayPanelError, RuntimeError):
    """Raised when a command cannot be handed to the broker."""


class SessionStateError(RelayPanelError, RuntimeError):
    """Raised when an operation is invalid for the current session state."""


class ValidationError(RelayPanelError, ValueError):
    """Raised for user input that fails validation."""


class InvalidReadingError(ValidationError):
    """Raised for telemetry readings that cannot drive the shutoff policy."""

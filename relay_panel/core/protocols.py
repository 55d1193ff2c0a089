"""Callback contracts shared across components."""

from __future__ import annotations

from typing import Awaitable, Callable

MessageObserver = Callable[[str, str], Awaitable[None] | None]
"""Receives ``(topic, payload)`` for every message on a subscribed topic."""

StatusListener = Callable[[str], None]
"""Receives user-visible status text."""

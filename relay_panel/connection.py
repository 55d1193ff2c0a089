"""Connection lifecycle and reconnection management.

This module owns the broker connection state machine for a session:
initial connection with bounded retry, supervision of unexpected
disconnects, and reconnection with exponential backoff and full jitter.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import random
from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Callable, List, Optional

from .core.errors import BrokerConnectionError

if TYPE_CHECKING:
    from .adapters.mqtt import MQTTClient
    from .config import ResilienceConfig

LOGGER = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    """Current state of the broker connection."""

    DISCONNECTED = "disconnected"
    """Not connected to the broker (initial and terminal state)."""

    CONNECTING = "connecting"
    """Handshake with the broker in progress."""

    CONNECTED = "connected"
    """Handshake completed; publish and subscribe are allowed."""

    RECONNECTING = "reconnecting"
    """Waiting out a backoff delay after an unexpected disconnect."""


StateCallback = Callable[[ConnectionState, ConnectionState], None]
LifecycleCallback = Callable[[], Awaitable[None] | None]


def compute_backoff(
    attempt: int,
    *,
    initial: float,
    maximum: float,
    rng: Optional[random.Random] = None,
) -> float:
    """Return a full-jitter delay for the given zero-based attempt number.

    The delay is drawn uniformly from ``[0, min(maximum, initial * 2**attempt)]``.
    """

    ceiling = min(max(maximum, 0.0), max(initial, 0.0) * (2 ** max(attempt, 0)))
    generator = rng or random
    return generator.uniform(0.0, ceiling)


class ConnectionCoordinator:
    """Drives one :class:`MQTTClient` through the connection state machine.

    State transitions are reported through ``on_state_change``. All methods
    must be called from the event loop that owns the session.
    """

    def __init__(
        self,
        *,
        resilience_config: ResilienceConfig,
        on_state_change: Optional[StateCallback] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._resilience = resilience_config
        self._on_state_change = on_state_change
        self._rng = rng

        self._state = ConnectionState.DISCONNECTED
        self._mqtt_client: Optional[MQTTClient] = None
        self._stop_event = asyncio.Event()
        self._reconnect_task: Optional[asyncio.Task[None]] = None

        self._on_reconnected_callbacks: List[LifecycleCallback] = []
        self._on_lost_callbacks: List[LifecycleCallback] = []

    @property
    def state(self) -> ConnectionState:
        """Current connection state."""
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    def register_reconnected_callback(self, callback: LifecycleCallback) -> None:
        """Register callback to be invoked after a successful reconnection."""
        self._on_reconnected_callbacks.append(callback)

    def register_lost_callback(self, callback: LifecycleCallback) -> None:
        """Register callback to be invoked when reconnection is abandoned."""
        self._on_lost_callbacks.append(callback)

    async def connect(self, mqtt_client: MQTTClient, *, attempts: Optional[int] = None) -> None:
        """Establish the initial connection, retrying with backoff.

        Raises:
            BrokerConnectionError: If every attempt fails.
        """

        if self._mqtt_client is not mqtt_client:
            mqtt_client.register_disconnect_handler(self._handle_disconnect)
        self._mqtt_client = mqtt_client
        self._stop_event.clear()

        total = max(1, attempts if attempts is not None else self._resilience.connect_attempts)
        last_error: Optional[BaseException] = None

        try:
            for attempt in range(total):
                self._transition(ConnectionState.CONNECTING)
                try:
                    await mqtt_client.connect()
                except BrokerConnectionError as exc:
                    last_error = exc
                    LOGGER.warning(
                        "Connection attempt %d/%d to %s failed: %s",
                        attempt + 1,
                        total,
                        mqtt_client.address,
                        exc,
                    )
                else:
                    self._transition(ConnectionState.CONNECTED)
                    return

                if attempt + 1 < total:
                    await self._sleep_backoff(attempt)
        except BaseException:
            self._transition(ConnectionState.DISCONNECTED)
            raise

        self._transition(ConnectionState.DISCONNECTED)
        raise BrokerConnectionError(
            f"Unable to connect to {mqtt_client.address} after {total} attempt(s): {last_error}"
        ) from last_error

    async def disconnect(self) -> None:
        """Stop supervision and disconnect the client."""

        self._stop_event.set()
        await self._cancel_reconnect()

        client = self._mqtt_client
        previous = self._state
        self._transition(ConnectionState.DISCONNECTED)
        if client is None or previous == ConnectionState.DISCONNECTED:
            return

        LOGGER.info("Disconnecting from MQTT broker %s", client.address)
        try:
            await client.disconnect()
        except Exception:
            LOGGER.warning("MQTT disconnect did not complete cleanly", exc_info=True)

    def _handle_disconnect(self, rc: int) -> None:
        if rc == 0 or self._state != ConnectionState.CONNECTED:
            return
        if self._stop_event.is_set():
            return

        LOGGER.warning("Unexpected disconnect from MQTT broker (rc=%s)", rc)
        self._transition(ConnectionState.RECONNECTING)
        self._reconnect_task = asyncio.create_task(self._reconnect_loop())

    async def _reconnect_loop(self) -> None:
        client = self._mqtt_client
        assert client is not None

        total = self._resilience.reconnect_attempts
        for attempt in range(total):
            self._transition(ConnectionState.RECONNECTING)
            await self._sleep_backoff(attempt)
            if self._stop_event.is_set():
                return

            with contextlib.suppress(Exception):
                await client.disconnect()

            self._transition(ConnectionState.CONNECTING)
            try:
                await client.connect()
            except BrokerConnectionError as exc:
                LOGGER.warning(
                    "Reconnect attempt %d/%d failed: %s", attempt + 1, total, exc
                )
                continue

            self._transition(ConnectionState.CONNECTED)
            await self._run_callbacks(self._on_reconnected_callbacks, "Reconnected")
            return

        LOGGER.error("Giving up on MQTT broker after %d reconnect attempt(s)", total)
        self._transition(ConnectionState.DISCONNECTED)
        with contextlib.suppress(Exception):
            await client.disconnect()
        await self._run_callbacks(self._on_lost_callbacks, "Connection lost")

    async def _sleep_backoff(self, attempt: int) -> None:
        delay = compute_backoff(
            attempt,
            initial=self._resilience.reconnect_initial_seconds,
            maximum=self._resilience.reconnect_max_seconds,
            rng=self._rng,
        )
        LOGGER.debug("Backing off %.2fs before next connection attempt", delay)
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)

    async def _cancel_reconnect(self) -> None:
        task = self._reconnect_task
        self._reconnect_task = None
        if task is None or task.done():
            return
        if task is asyncio.current_task():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def _run_callbacks(self, callbacks: List[LifecycleCallback], label: str) -> None:
        for callback in list(callbacks):
            try:
                result = callback()
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                LOGGER.exception("%s callback failed", label)

    def _transition(self, state: ConnectionState) -> None:
        previous = self._state
        if previous == state:
            return
        self._state = state
        LOGGER.debug("Connection state %s -> %s", previous.value, state.value)
        if self._on_state_change is not None:
            try:
                self._on_state_change(previous, state)
            except Exception:
                LOGGER.exception("Connection state listener failed")

"""Battery telemetry intake and automatic shutoff."""

from __future__ import annotations

import asyncio
import concurrent.futures
import contextlib
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

import psutil

from .core.errors import InvalidReadingError, PublishError
from .core.models import Command, TelemetryReading
from .policy import ShutoffPolicy
from .session import SessionManager

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TelemetryOutcome:
    """Result of processing one reading."""

    reading: TelemetryReading
    command: Optional[Command] = None
    error: Optional[str] = None

    @property
    def shutoff_sent(self) -> bool:
        return self.command is not None and self.command.is_shutoff and self.error is None


ReadingListener = Callable[[TelemetryOutcome], None]


class BatteryMonitor:
    """Turns raw ``(level, scale)`` pushes into policy decisions.

    Readings are processed one at a time on the session's event loop so a
    shutoff triggered by telemetry is queued behind any command already
    submitted by the user.
    """

    def __init__(self, session: SessionManager, policy: ShutoffPolicy) -> None:
        self._session = session
        self._policy = policy
        self._listeners: List[ReadingListener] = []
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._last_reading: Optional[TelemetryReading] = None
        self._last_outcome: Optional[TelemetryOutcome] = None

    @property
    def last_reading(self) -> Optional[TelemetryReading]:
        return self._last_reading

    @property
    def last_outcome(self) -> Optional[TelemetryOutcome]:
        return self._last_outcome

    @property
    def policy(self) -> ShutoffPolicy:
        return self._policy

    def add_listener(self, listener: ReadingListener) -> None:
        self._listeners.append(listener)

    def bind(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        """Bind to the loop that :meth:`push` hands readings to."""
        self._loop = loop or asyncio.get_running_loop()

    def push(
        self, level: int, scale: int
    ) -> Optional["concurrent.futures.Future[Optional[TelemetryOutcome]]"]:
        """Thread-safe entry point for telemetry sources."""

        loop = self._loop
        if loop is None or loop.is_closed():
            LOGGER.debug("Dropping battery reading %s/%s; monitor not bound", level, scale)
            return None
        return asyncio.run_coroutine_threadsafe(self.handle(level, scale), loop)

    async def handle(self, level: int, scale: int) -> Optional[TelemetryOutcome]:
        """Process one reading and send the shutoff command if it is due."""

        try:
            reading = TelemetryReading.from_raw(level, scale)
        except InvalidReadingError as exc:
            LOGGER.warning("Ignoring battery reading: %s", exc)
            return None

        self._last_reading = reading
        command = self._policy.evaluate(reading)
        error: Optional[str] = None
        if command is not None:
            LOGGER.info(
                "Battery at %s%% reached threshold %d%%; sending %s",
                reading.format_percentage(),
                self._policy.config.threshold,
                command.payload,
            )
            try:
                await self._session.send(command)
            except PublishError as exc:
                error = str(exc)

        outcome = TelemetryOutcome(reading=reading, command=command, error=error)
        self._last_outcome = outcome
        for listener in list(self._listeners):
            try:
                listener(outcome)
            except Exception:
                LOGGER.exception("Battery listener failed")
        return outcome


class PsutilBatterySource:
    """Polls the host battery through psutil and pushes readings."""

    def __init__(self, monitor: BatteryMonitor, *, interval_seconds: float = 60.0) -> None:
        self._monitor = monitor
        self._interval = interval_seconds
        self._task: Optional[asyncio.Task[None]] = None
        self._stop_event = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._poll_loop())

    async def stop(self) -> None:
        self._stop_event.set()
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    def read(self) -> Optional[tuple[int, int]]:
        try:
            battery = psutil.sensors_battery()
        except (AttributeError, NotImplementedError, OSError) as exc:
            LOGGER.debug("Battery sensors unavailable: %s", exc)
            return None
        if battery is None:
            return None
        return int(round(battery.percent)), 100

    async def _poll_loop(self) -> None:
        warned = False
        while not self._stop_event.is_set():
            sample = self.read()
            if sample is None:
                if not warned:
                    LOGGER.warning("No battery reported by the host; polling continues")
                    warned = True
            else:
                await self._monitor.handle(*sample)

            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)

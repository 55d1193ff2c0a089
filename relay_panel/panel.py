"""Headless control panel mapping user intents to relay commands."""

from __future__ import annotations

import logging
from typing import List, Optional

from .config import PanelConfig
from .connection import ConnectionState
from .core.errors import BrokerConnectionError, PublishError, ValidationError
from .core.models import Command
from .core.protocols import StatusListener
from .policy import ShutoffPolicy, ThresholdConfig, parse_timer_duration
from .session import SessionManager
from .telemetry import BatteryMonitor, TelemetryOutcome

LOGGER = logging.getLogger(__name__)

STATUS_CONNECTED = "MQTT Connected"
STATUS_SHUTOFF = "Battery threshold reached. Sending OFF signal."
STATUS_RECONNECTING = "MQTT connection lost; reconnecting"
STATUS_LOST = "MQTT connection lost"


class ControlPanel:
    """User-facing operations of the relay controller.

    Every operation reports its outcome as status text to the registered
    listeners instead of raising, mirroring a status line on screen. The
    latest battery line is kept separately in :attr:`battery_text`.
    """

    def __init__(
        self,
        config: PanelConfig,
        *,
        session: Optional[SessionManager] = None,
    ) -> None:
        self._config = config
        self.session = session or SessionManager(config.broker, config.resilience)
        self.threshold = ThresholdConfig(config.policy.threshold)
        self.policy = ShutoffPolicy(
            self.threshold,
            config.control_topic,
            edge_triggered=config.policy.edge_triggered,
        )
        self.monitor = BatteryMonitor(self.session, self.policy)
        self.monitor.add_listener(self._on_battery_outcome)
        self.session.add_state_listener(self._on_state_change)

        self._status_listeners: List[StatusListener] = []
        self._battery_listeners: List[StatusListener] = []
        self.status_text = ""
        self.battery_text = ""
        self._reconnecting = False

    @property
    def control_topic(self) -> str:
        return self._config.control_topic

    def add_status_listener(self, listener: StatusListener) -> None:
        self._status_listeners.append(listener)

    def add_battery_listener(self, listener: StatusListener) -> None:
        self._battery_listeners.append(listener)

    async def connect(self, broker_address: Optional[str] = None) -> bool:
        self.monitor.bind()
        try:
            await self.session.start(broker_address)
            self.session.subscribe(self.control_topic, self._on_control_message)
        except BrokerConnectionError as exc:
            self._set_status(f"MQTT Connection error: {exc}")
            return False

        self._set_status(STATUS_CONNECTED)
        return True

    async def close(self) -> None:
        await self.session.stop()

    async def turn_on(self) -> bool:
        return await self._send(Command.turn_on(self.control_topic))

    async def turn_off(self) -> bool:
        return await self._send(Command.turn_off(self.control_topic))

    async def set_timer(self, duration: str) -> bool:
        try:
            value = parse_timer_duration(duration, strict=self._config.policy.strict_timer)
        except ValidationError as exc:
            self._set_status(str(exc))
            return False
        return await self._send(Command.timer(self.control_topic, value))

    def set_threshold(self, text: str) -> bool:
        try:
            value = self.threshold.update(text)
        except ValidationError as exc:
            self._set_status(str(exc))
            return False
        self._set_status(f"Battery threshold set to {value}%")
        return True

    async def report_battery(self, level: int, scale: int) -> Optional[TelemetryOutcome]:
        """Feed one battery reading through the shutoff policy."""
        return await self.monitor.handle(level, scale)

    async def _send(self, command: Command) -> bool:
        try:
            await self.session.send(command)
        except PublishError as exc:
            self._set_status(f"Error sending message: {exc}")
            return False
        self._set_status(f"Message sent: {command.payload}")
        return True

    def _on_control_message(self, topic: str, payload: str) -> None:
        self._set_status(f"Message received: {payload}")

    def _on_battery_outcome(self, outcome: TelemetryOutcome) -> None:
        self.battery_text = f"Battery Level: {outcome.reading.format_percentage()}%"
        for listener in list(self._battery_listeners):
            try:
                listener(self.battery_text)
            except Exception:
                LOGGER.exception("Battery listener failed")

        if outcome.command is None:
            return
        if outcome.error is not None:
            self._set_status(f"Error sending message: {outcome.error}")
        else:
            self._set_status(STATUS_SHUTOFF)

    def _on_state_change(self, previous: ConnectionState, current: ConnectionState) -> None:
        if current == ConnectionState.RECONNECTING:
            if not self._reconnecting:
                self._reconnecting = True
                self._set_status(STATUS_RECONNECTING)
            return
        if not self._reconnecting:
            return
        if current == ConnectionState.CONNECTED:
            self._reconnecting = False
            self._set_status(STATUS_CONNECTED)
        elif current == ConnectionState.DISCONNECTED:
            self._reconnecting = False
            self._set_status(STATUS_LOST)

    def _set_status(self, text: str) -> None:
        self.status_text = text
        LOGGER.info("Status: %s", text)
        for listener in list(self._status_listeners):
            try:
                listener(text)
            except Exception:
                LOGGER.exception("Status listener failed")

"""Main application entry-point for relay-panel."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .config import PanelConfig, load_config
from .console import PanelConsole
from .health import HealthReporter, HealthServer
from .logging import configure_logging
from .panel import ControlPanel
from .telemetry import PsutilBatterySource

LOGGER = logging.getLogger(__name__)


class RelayPanelApp:
    """Coordinates application startup and shutdown.

    Wires the control panel to the broker session, the optional battery
    poller, the optional health endpoint and, when interactive, the console.
    """

    def __init__(
        self,
        config: Optional[PanelConfig] = None,
        *,
        panel: Optional[ControlPanel] = None,
        interactive: bool = True,
    ) -> None:
        self._config = config or load_config()
        self._panel = panel or ControlPanel(self._config)
        self._interactive = interactive
        self._health = HealthReporter(self._panel)
        self._health_server: Optional[HealthServer] = None
        self._battery_source: Optional[PsutilBatterySource] = None
        self._shutdown_event: Optional[asyncio.Event] = None

    @property
    def panel(self) -> ControlPanel:
        return self._panel

    async def run(self) -> None:
        self._shutdown_event = asyncio.Event()

        LOGGER.info("relay-panel starting with config: %s", self._config.path)
        await self._start_services()

        try:
            if self._interactive:
                console = PanelConsole(self._panel)
                await console.run(self._shutdown_event)
            else:
                LOGGER.info("relay-panel active; awaiting shutdown signal")
                await self._shutdown_event.wait()
        except asyncio.CancelledError:
            LOGGER.info("relay-panel received shutdown signal")
            raise
        finally:
            await self._stop_services()

    @classmethod
    def start(cls, config: Optional[PanelConfig] = None, *, interactive: bool = True) -> None:
        instance = cls(config=config, interactive=interactive)
        configure_logging(instance._config.logging)
        try:
            asyncio.run(instance.run())
        except KeyboardInterrupt:
            LOGGER.info("relay-panel received shutdown signal")

    async def _start_services(self) -> bool:
        await self._start_health_server()

        connected = await self._panel.connect()
        if not connected:
            LOGGER.warning("Broker unavailable; commands will fail until restart")

        if self._config.battery.source == "psutil":
            self._battery_source = PsutilBatterySource(
                self._panel.monitor,
                interval_seconds=self._config.battery.poll_interval_seconds,
            )
            self._battery_source.start()
            await self._health.update("battery-source", True, "psutil")
        elif self._config.battery.source != "none":
            LOGGER.warning(
                "Unknown battery source %r; battery polling disabled",
                self._config.battery.source,
            )
            await self._health.update(
                "battery-source", False, f"unknown source {self._config.battery.source!r}"
            )

        return connected

    async def _stop_services(self) -> None:
        if self._battery_source is not None:
            await self._battery_source.stop()
            self._battery_source = None

        await self._panel.close()

        if self._health_server is not None:
            await self._health_server.stop()
            self._health_server = None
        LOGGER.info("relay-panel stopped")

    async def _start_health_server(self) -> None:
        resilience = self._config.resilience
        if not resilience.health_enabled or resilience.health_port <= 0:
            return

        server = HealthServer(
            self._health,
            resilience.health_host,
            resilience.health_port,
        )
        try:
            await server.start()
        except OSError as exc:
            LOGGER.error("Failed to start health endpoint: %s", exc)
            await self._health.update("health-endpoint", False, str(exc))
        else:
            self._health_server = server
            await self._health.update("health-endpoint", True, None)


"""Health reporting for a running control panel.

The ``mqtt`` and ``battery`` components are read live from the
:class:`~relay_panel.panel.ControlPanel`; anything else (the endpoint itself,
the battery poller) is pushed in with :meth:`HealthReporter.update`.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from aiohttp import web

from .panel import ControlPanel

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ComponentStatus:
    name: str
    healthy: bool
    detail: Optional[str] = None
    attributes: Dict[str, Any] = field(default_factory=dict)
    updated_at: Optional[datetime] = None

    def as_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "name": self.name,
            "healthy": self.healthy,
            "detail": self.detail,
            **self.attributes,
        }
        if self.updated_at is not None:
            payload["updatedAt"] = self.updated_at.isoformat(timespec="seconds")
        return payload


def mqtt_status(panel: ControlPanel) -> ComponentStatus:
    session = panel.session
    return ComponentStatus(
        name="mqtt",
        healthy=session.is_connected,
        detail=panel.status_text or None,
        attributes={
            "state": session.state.value,
            "clientId": session.client_id,
            "broker": session.broker_address,
            "controlTopic": panel.control_topic,
        },
    )


def battery_status(panel: ControlPanel) -> ComponentStatus:
    threshold = panel.threshold.threshold
    outcome = panel.monitor.last_outcome
    if outcome is None:
        return ComponentStatus(
            name="battery",
            healthy=True,
            detail="no reading yet",
            attributes={"threshold": threshold, "level": None},
        )

    detail = panel.battery_text
    if outcome.error is not None:
        detail = f"{detail}; shutoff failed: {outcome.error}"
    return ComponentStatus(
        name="battery",
        healthy=outcome.error is None,
        detail=detail,
        attributes={
            "threshold": threshold,
            "level": outcome.reading.percentage,
            "shutoffSent": outcome.shutoff_sent,
        },
    )


class HealthReporter:
    """Aggregates panel state and pushed component statuses."""

    def __init__(self, panel: Optional[ControlPanel] = None) -> None:
        self._panel = panel
        self._extra: Dict[str, ComponentStatus] = {}
        self._lock = asyncio.Lock()

    async def update(
        self, name: str, healthy: bool, detail: Optional[str] = None
    ) -> None:
        async with self._lock:
            self._extra[name] = ComponentStatus(
                name=name,
                healthy=healthy,
                detail=detail,
                updated_at=datetime.now(timezone.utc),
            )

    async def snapshot(self) -> Dict[str, object]:
        components: List[ComponentStatus] = []
        if self._panel is not None:
            components.append(mqtt_status(self._panel))
            components.append(battery_status(self._panel))
        async with self._lock:
            components.extend(self._extra.values())

        overall = "ok" if all(item.healthy for item in components) else "degraded"
        return {
            "status": overall,
            "components": [item.as_dict() for item in components],
        }


class HealthServer:
    """Serves ``GET /healthz``; 200 when every component is healthy, else 503."""

    def __init__(self, reporter: HealthReporter, host: str, port: int) -> None:
        self._reporter = reporter
        self._host = host
        self._port = port
        self._runner: Optional[web.AppRunner] = None

    async def start(self) -> None:
        app = web.Application()
        app.router.add_get("/healthz", self._handle_health)

        runner = web.AppRunner(app, access_log=None)
        await runner.setup()
        try:
            await web.TCPSite(runner, self._host, self._port).start()
        except OSError:
            await runner.cleanup()
            raise
        self._runner = runner
        LOGGER.info("Health endpoint on http://%s:%s/healthz", self._host, self._port)

    async def stop(self) -> None:
        runner, self._runner = self._runner, None
        if runner is not None:
            with contextlib.suppress(RuntimeError):
                await runner.cleanup()

    async def _handle_health(self, request: web.Request) -> web.Response:
        snapshot = await self._reporter.snapshot()
        status = 200 if snapshot["status"] == "ok" else 503
        return web.json_response(snapshot, status=status)

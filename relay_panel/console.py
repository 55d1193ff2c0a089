"""Line-oriented console driving a :class:`ControlPanel`."""

from __future__ import annotations

import asyncio
import logging
import shlex
import sys
from typing import Callable, Optional

from .panel import ControlPanel

LOGGER = logging.getLogger(__name__)

HELP_TEXT = """Commands:
  on                      Turn the relay on
  off                     Turn the relay off
  timer <duration>        Start the relay timer
  threshold <percent>     Set the battery shutoff threshold (1-100)
  battery <level> [scale] Feed a battery reading (scale defaults to 100)
  status                  Show connection, threshold and battery state
  help                    Show this help
  quit | exit             Leave the console"""


def _read_stdin_line() -> str:
    return sys.stdin.readline()


class PanelConsole:
    """Reads commands from a line source and reports status text."""

    def __init__(
        self,
        panel: ControlPanel,
        *,
        reader: Callable[[], str] = _read_stdin_line,
        writer: Callable[[str], None] = print,
    ) -> None:
        self._panel = panel
        self._reader = reader
        self._writer = writer
        panel.add_status_listener(writer)
        panel.add_battery_listener(writer)

    async def run(self, stop_event: Optional[asyncio.Event] = None) -> None:
        loop = asyncio.get_running_loop()
        self._writer("Type 'help' for commands.")
        while stop_event is None or not stop_event.is_set():
            line = await loop.run_in_executor(None, self._reader)
            if not line:
                # EOF
                break
            if not await self.execute(line):
                break

    async def execute(self, line: str) -> bool:
        """Run one console command. Returns False when the console should exit."""

        try:
            parts = shlex.split(line)
        except ValueError as exc:
            self._writer(f"Could not parse command: {exc}")
            return True
        if not parts:
            return True

        command, args = parts[0].lower(), parts[1:]
        panel = self._panel

        if command in {"quit", "exit"}:
            return False
        if command == "help":
            self._writer(HELP_TEXT)
        elif command == "on":
            await panel.turn_on()
        elif command == "off":
            await panel.turn_off()
        elif command == "timer":
            await panel.set_timer(" ".join(args))
        elif command == "threshold":
            panel.set_threshold(" ".join(args))
        elif command == "battery":
            await self._battery(args)
        elif command == "status":
            self._writer(
                f"state={panel.session.state.value} "
                f"topic={panel.control_topic} "
                f"threshold={panel.threshold.threshold}% "
                f"{panel.battery_text or 'Battery Level: unknown'}"
            )
        else:
            self._writer(f"Unknown command: {command}. Type 'help' for commands.")
        return True

    async def _battery(self, args: list[str]) -> None:
        if not 1 <= len(args) <= 2:
            self._writer("Usage: battery <level> [scale]")
            return
        try:
            level = int(args[0])
            scale = int(args[1]) if len(args) == 2 else 100
        except ValueError:
            self._writer("Battery level and scale must be integers.")
            return

        outcome = await self._panel.report_battery(level, scale)
        if outcome is None:
            self._writer(f"Ignored invalid battery reading {level}/{scale}.")

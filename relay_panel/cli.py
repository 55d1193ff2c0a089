"""Command-line interface for relay-panel."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

from . import constants
from .app import RelayPanelApp
from .config import PanelConfig, load_config, save_config, split_broker_address
from .core.errors import ValidationError
from .logging import configure_logging
from .panel import ControlPanel
from .policy import parse_threshold

LOGGER = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="relay-panel", description="MQTT control panel for a remote relay"
    )
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=constants.DEFAULT_CONFIG_PATH,
        help=f"Path to configuration file (default: {constants.DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument(
        "--broker",
        help="Broker address as host[:port], overriding the configuration",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    start_parser = subparsers.add_parser("start", help="Run the control panel")
    start_parser.add_argument(
        "--no-console",
        action="store_true",
        help="Run headless (battery policy only) until interrupted",
    )

    send_parser = subparsers.add_parser("send", help="Send a single relay command")
    send_parser.add_argument("action", choices=["on", "off", "timer"])
    send_parser.add_argument("duration", nargs="?", default="", help="Timer duration")

    threshold_parser = subparsers.add_parser(
        "set-threshold", help="Store the battery shutoff threshold"
    )
    threshold_parser.add_argument("value", help="Percentage between 1 and 100")

    subparsers.add_parser(
        "show-config", help="Print the resolved configuration and exit"
    )

    return parser


async def _send_once(config: PanelConfig, action: str, duration: str) -> int:
    panel = ControlPanel(config)
    panel.add_status_listener(print)
    try:
        if not await panel.connect():
            return 1
        if action == "on":
            sent = await panel.turn_on()
        elif action == "off":
            sent = await panel.turn_off()
        else:
            sent = await panel.set_timer(duration)
    finally:
        await panel.close()
    return 0 if sent else 1


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    config = load_config(args.config)

    if args.broker:
        config.broker.host, config.broker.port = split_broker_address(
            args.broker, config.broker.port
        )

    if args.command == "start":
        RelayPanelApp.start(config, interactive=not args.no_console)
        return 0

    if args.command == "send":
        configure_logging(config.logging)
        return asyncio.run(_send_once(config, args.action, args.duration))

    if args.command == "set-threshold":
        try:
            value = parse_threshold(args.value)
        except ValidationError as exc:
            print(exc, file=sys.stderr)
            return 1
        config.raw.set("policy", "threshold", str(value))
        save_config(config)
        print(f"Battery threshold set to {value}% in {config.path}")
        return 0

    if args.command == "show-config":
        print(f"Configuration loaded from {config.path!s}\n")
        for section in config.raw.sections():
            print(f"[{section}]")
            for key, value in config.raw[section].items():
                if key == "password":
                    value = "********"
                print(f"{key} = {value}")
            print()
        return 0

    LOGGER.error("Unknown command: %s", args.command)
    return 1


if __name__ == "__main__":
    sys.exit(main())

"""Constants used across the relay-panel package."""

from __future__ import annotations

from pathlib import Path

APP_NAME = "relay-panel"
DEFAULT_CONFIG_FILENAME = f"{APP_NAME}.cfg"
DEFAULT_CONFIG_PATH = Path.home() / ".config" / APP_NAME / DEFAULT_CONFIG_FILENAME

DEFAULT_BROKER_HOST = "broker.hivemq.com"
DEFAULT_BROKER_PORT = 1883
DEFAULT_CLIENT_ID_PREFIX = "relay-panel"

DEFAULT_DEVICE_ID = "deepanshu_esp32"
CONTROL_TOPIC_TEMPLATE = "{device_id}/relay/control"

THRESHOLD_MIN = 1
THRESHOLD_MAX = 100
DEFAULT_THRESHOLD = 100

"""Adapter modules for external integrations."""

from .mqtt import MQTTClient

__all__ = [
    "MQTTClient",
]

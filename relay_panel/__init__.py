"""relay-panel: MQTT control panel for a remote relay device."""

__version__ = "0.3.0"

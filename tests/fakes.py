"""Test doubles shared across the relay-panel test suite."""

import asyncio
from configparser import ConfigParser
from pathlib import Path
from typing import Callable, List, Optional, Tuple

import paho.mqtt.client as mqtt

from relay_panel.config import (
    BatteryConfig,
    BrokerConfig,
    DeviceConfig,
    LoggingConfig,
    PanelConfig,
    PolicyConfig,
    ResilienceConfig,
)
from relay_panel.core.errors import BrokerConnectionError, PublishError


class FakeBroker:
    """In-memory broker shared by every FakeMQTTClient it creates."""

    def __init__(self) -> None:
        self.clients: List["FakeMQTTClient"] = []
        self.published: List[Tuple[str, bytes]] = []
        self.connect_failures = 0
        self.hang_connect = False
        self.reject_publish = False

    def factory(self, config, *, client_id, host=None, port=None):
        client = FakeMQTTClient(self, config, client_id=client_id, host=host, port=port)
        self.clients.append(client)
        return client

    @property
    def client(self) -> "FakeMQTTClient":
        return self.clients[-1]

    def route(self, topic: str, payload: bytes) -> None:
        for client in self.clients:
            client.deliver(topic, payload)


class FakeMQTTClient:
    """Stand-in for relay_panel.adapters.mqtt.MQTTClient."""

    def __init__(self, broker: FakeBroker, config, *, client_id, host=None, port=None):
        self.broker = broker
        self.config = config
        self.client_id = client_id
        self.host = host or config.host
        self.port = port or config.port
        self.connected = False
        self.connect_calls = 0
        self.disconnect_calls = 0
        self.subscriptions: List[str] = []
        self.subscribe_calls: List[str] = []
        self.unsubscribed: List[str] = []
        self._handler: Optional[Callable[[str, bytes], None]] = None
        self._disconnect_handlers: List[Callable[[int], None]] = []

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    async def connect(self, timeout=None) -> None:
        self.connect_calls += 1
        if self.broker.hang_connect:
            await asyncio.Event().wait()
        if self.broker.connect_failures > 0:
            self.broker.connect_failures -= 1
            raise BrokerConnectionError("Simulated connection failure")
        self.connected = True

    async def disconnect(self, timeout: float = 5.0) -> None:
        self.disconnect_calls += 1
        self.connected = False

    def publish(self, topic: str, payload: bytes, qos: int = 0, retain: bool = False) -> None:
        if not self.connected:
            raise PublishError("MQTT client not connected")
        if self.broker.reject_publish:
            raise PublishError("Publish failed with rc=4")
        self.broker.published.append((topic, payload))
        self.broker.route(topic, payload)

    def subscribe(self, topic: str, qos: int = 0) -> None:
        if not self.connected:
            raise BrokerConnectionError("MQTT client not connected")
        self.subscribe_calls.append(topic)
        if topic not in self.subscriptions:
            self.subscriptions.append(topic)

    def unsubscribe(self, topic: str) -> None:
        self.unsubscribed.append(topic)
        if topic in self.subscriptions:
            self.subscriptions.remove(topic)

    def set_message_handler(self, handler) -> None:
        self._handler = handler

    def register_disconnect_handler(self, handler) -> None:
        self._disconnect_handlers.append(handler)

    def is_connected(self) -> bool:
        return self.connected

    # test helpers ---------------------------------------------------
    def deliver(self, topic: str, payload: bytes) -> None:
        if not self.connected or self._handler is None:
            return
        if not any(mqtt.topic_matches_sub(sub, topic) for sub in self.subscriptions):
            return
        asyncio.get_running_loop().call_soon(self._handler, topic, payload)

    def drop(self, rc: int = 7) -> None:
        self.connected = False
        loop = asyncio.get_running_loop()
        for handler in self._disconnect_handlers:
            loop.call_soon(handler, rc)


def fast_resilience(**overrides) -> ResilienceConfig:
    values = dict(
        connect_attempts=1,
        reconnect_attempts=3,
        reconnect_initial_seconds=0.01,
        reconnect_max_seconds=0.02,
    )
    values.update(overrides)
    return ResilienceConfig(**values)


def build_config(**policy_overrides) -> PanelConfig:
    return PanelConfig(
        broker=BrokerConfig(host="broker.test", port=1883),
        device=DeviceConfig(device_id="esp32", control_topic="esp32/relay/control"),
        policy=PolicyConfig(**policy_overrides),
        battery=BatteryConfig(),
        logging=LoggingConfig(),
        resilience=fast_resilience(),
        raw=ConfigParser(),
        path=Path("relay-panel.cfg"),
    )


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)

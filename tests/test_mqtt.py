"""Tests for the MQTT adapter."""

import asyncio
from types import SimpleNamespace

import pytest
import pytest_asyncio

from relay_panel.adapters import MQTTClient
from relay_panel.config import BrokerConfig
from relay_panel.core.errors import BrokerConnectionError, PublishError

import paho.mqtt.client as mqtt


class FakePahoClient:
    """Minimal fake paho-mqtt client for testing."""

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        events: dict,
        *args,
        rc_connect: int = 0,
        rc_disconnect: int = 0,
        publish_rc: int = mqtt.MQTT_ERR_SUCCESS,
        subscribe_rc: int = mqtt.MQTT_ERR_SUCCESS,
        ack_connect: bool = True,
        **kwargs,
    ):
        self._loop = loop
        self._events = events
        self._rc_connect = rc_connect
        self._rc_disconnect = rc_disconnect
        self._publish_rc = publish_rc
        self._subscribe_rc = subscribe_rc
        self._ack_connect = ack_connect
        events["init"] = (args, kwargs)

        self.on_connect = None
        self.on_disconnect = None
        self.on_message = None

    # paho interface -------------------------------------------------
    def enable_logger(self, logger):
        self._events.setdefault("logger_enabled", True)

    def username_pw_set(self, username, password=None):
        self._events["auth"] = (username, password)

    def tls_set(self, ca_certs=None, **kwargs):
        self._events["tls"] = ca_certs

    def connect_async(self, host, port, keepalive):
        self._events["connect_args"] = (host, port, keepalive)
        if self.on_connect and self._ack_connect:
            self._loop.call_soon(
                self.on_connect,
                self,
                None,
                None,
                self._rc_connect,
                None,
            )

    def loop_start(self):
        self._events["loop_start"] = self._events.get("loop_start", 0) + 1

    def loop_stop(self):
        self._events["loop_stop"] = self._events.get("loop_stop", 0) + 1

    def disconnect(self):
        self._events["disconnect_called"] = True
        if self.on_disconnect:
            self._loop.call_soon(
                self.on_disconnect,
                self,
                None,
                None,
                self._rc_disconnect,
                None,
            )

    def publish(self, topic, payload, qos=0, retain=False):
        if "#" in topic:
            raise ValueError("Publish topic cannot contain wildcards.")
        self._events.setdefault("published", []).append((topic, payload, qos, retain))
        return SimpleNamespace(rc=self._publish_rc)

    def subscribe(self, topic, qos=0):
        self._events.setdefault("subscribed", []).append((topic, qos))
        return self._subscribe_rc, 1

    def unsubscribe(self, topic):
        self._events.setdefault("unsubscribed", []).append(topic)
        return mqtt.MQTT_ERR_SUCCESS, 2


def _install_fake(monkeypatch, events: dict, **options) -> None:
    loop = asyncio.get_running_loop()

    def factory(*args, **kwargs):
        return FakePahoClient(loop, events, *args, **options, **kwargs)

    monkeypatch.setattr("relay_panel.adapters.mqtt.mqtt.Client", factory)


@pytest_asyncio.fixture
async def mqtt_client(monkeypatch):
    events: dict = {}
    _install_fake(monkeypatch, events)

    config = BrokerConfig(
        host="broker.relay.dev",
        port=1883,
        username="panel",
        password="secret",
    )

    client = MQTTClient(config, client_id="panel-42")
    await client.connect()

    yield client, events

    await client.disconnect()


@pytest.mark.asyncio
async def test_connect_configures_client(mqtt_client):
    client, events = mqtt_client

    args, kwargs = events["init"]
    assert args == (mqtt.CallbackAPIVersion.VERSION2,)
    assert kwargs == {"client_id": "panel-42", "clean_session": True}
    assert events["connect_args"] == ("broker.relay.dev", 1883, 60)
    assert events["auth"] == ("panel", "secret")
    assert events["loop_start"] == 1
    assert "tls" not in events
    assert client.is_connected()


@pytest.mark.asyncio
async def test_connect_uses_address_override_and_tls(monkeypatch):
    events: dict = {}
    _install_fake(monkeypatch, events)

    config = BrokerConfig(host="ignored", port=1, use_tls=True, ca_certs="/etc/ca.pem")
    client = MQTTClient(config, client_id="panel-1", host="secure.relay.dev", port=8883)
    await client.connect()

    assert events["connect_args"] == ("secure.relay.dev", 8883, 60)
    assert events["tls"] == "/etc/ca.pem"
    assert client.address == "secure.relay.dev:8883"

    await client.disconnect()


@pytest.mark.asyncio
async def test_publish_delegates_to_client(mqtt_client):
    client, events = mqtt_client

    client.publish("esp32/relay/control", b"TURN_ON", qos=1, retain=True)

    assert events["published"] == [("esp32/relay/control", b"TURN_ON", 1, True)]


@pytest.mark.asyncio
async def test_publish_invalid_topic_raises_publish_error(mqtt_client):
    client, _ = mqtt_client

    with pytest.raises(PublishError):
        client.publish("esp32/#", b"TURN_ON")


@pytest.mark.asyncio
async def test_subscribe_records_topics(mqtt_client):
    client, events = mqtt_client

    client.subscribe("esp32/relay/control", qos=1)
    client.unsubscribe("esp32/relay/control")

    assert events["subscribed"] == [("esp32/relay/control", 1)]
    assert events["unsubscribed"] == ["esp32/relay/control"]


@pytest.mark.asyncio
async def test_message_handler_runs_on_event_loop(monkeypatch):
    events: dict = {}
    _install_fake(monkeypatch, events)

    client = MQTTClient(BrokerConfig(host="broker.relay.dev"), client_id="panel-99")

    message_event = asyncio.Event()

    def handler(topic: str, payload: bytes) -> None:
        events["handled"] = (topic, payload)
        message_event.set()

    client.set_message_handler(handler)
    await client.connect()

    message = SimpleNamespace(topic="esp32/relay/control", payload=b"TIMER:30")
    client._on_message(client._client, None, message)  # type: ignore[arg-type]

    await asyncio.wait_for(message_event.wait(), timeout=1.0)
    await client.disconnect()

    assert events["handled"] == ("esp32/relay/control", b"TIMER:30")


@pytest.mark.asyncio
async def test_publish_failure_raises(monkeypatch):
    events: dict = {}
    _install_fake(monkeypatch, events, publish_rc=mqtt.MQTT_ERR_NO_CONN)

    client = MQTTClient(BrokerConfig(host="broker.relay.dev"), client_id="panel-7")
    await client.connect()

    with pytest.raises(PublishError):
        client.publish("esp32/relay/control", b"TURN_OFF")

    await client.disconnect()


@pytest.mark.asyncio
async def test_publish_without_connection_raises():
    client = MQTTClient(BrokerConfig(), client_id="panel-0")

    with pytest.raises(PublishError):
        client.publish("esp32/relay/control", b"TURN_OFF")


@pytest.mark.asyncio
async def test_disconnect_handler_invoked(monkeypatch):
    events: dict = {}
    _install_fake(monkeypatch, events, rc_disconnect=1)

    client = MQTTClient(BrokerConfig(host="broker.relay.dev"), client_id="panel-123")

    disconnect_event = asyncio.Event()

    def _handler(rc: int) -> None:
        events["disconnect_rc"] = rc
        disconnect_event.set()

    client.register_disconnect_handler(_handler)

    await client.connect()
    await client.disconnect()

    await asyncio.wait_for(disconnect_event.wait(), timeout=1.0)
    assert events.get("disconnect_rc") == 1
    assert events.get("loop_stop") == 1
    assert not client.is_connected()


@pytest.mark.asyncio
async def test_connect_failure_raises(monkeypatch):
    events: dict = {}
    _install_fake(monkeypatch, events, rc_connect=5)

    client = MQTTClient(BrokerConfig(host="broker.relay.dev"), client_id="panel-8")

    with pytest.raises(BrokerConnectionError):
        await client.connect()

    assert events.get("loop_stop") == 1


@pytest.mark.asyncio
async def test_connect_timeout_raises(monkeypatch):
    events: dict = {}
    _install_fake(monkeypatch, events, ack_connect=False)

    client = MQTTClient(BrokerConfig(host="broker.relay.dev"), client_id="panel-9")

    with pytest.raises(BrokerConnectionError, match="Timed out"):
        await client.connect(timeout=0.05)

    assert events.get("loop_stop") == 1


@pytest.mark.asyncio
async def test_disconnect_without_connect_is_noop():
    client = MQTTClient(BrokerConfig(), client_id="panel-5")

    await client.disconnect()

    assert not client.is_connected()

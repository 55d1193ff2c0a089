"""MQTT adapter encapsulating paho-mqtt client usage."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, Callable, List, Optional

import paho.mqtt.client as mqtt

from ..config import BrokerConfig
from ..core.errors import BrokerConnectionError, PublishError

LOGGER = logging.getLogger(__name__)

MessageHandler = Callable[[str, bytes], None]


def _reason_value(reason_code: Any) -> int:
    """Normalise a paho ``ReasonCode`` (or plain int) to its integer value."""

    if reason_code is None:
        return 0
    return int(getattr(reason_code, "value", reason_code))


class MQTTClient:
    """Async-friendly wrapper over the threaded paho-mqtt client.

    Paho runs its network loop on a background thread. Every callback that
    reaches user code is handed to the asyncio loop that called
    :meth:`connect`, so handlers never run on the paho thread.
    """

    def __init__(
        self,
        config: BrokerConfig,
        *,
        client_id: str,
        host: Optional[str] = None,
        port: Optional[int] = None,
    ) -> None:
        self.config = config
        self.client_id = client_id
        self.host = host or config.host
        self.port = port or config.port
        self.keepalive = config.keepalive

        self._client: Optional[mqtt.Client] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._connected_event: Optional[asyncio.Event] = None
        self._disconnect_event: Optional[asyncio.Event] = None
        self._message_handler: Optional[MessageHandler] = None
        self._last_connect_rc: Optional[int] = None
        self._connected: bool = False
        self._disconnect_handlers: List[Callable[[int], None]] = []

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    async def connect(self, timeout: Optional[float] = None) -> None:
        """Connect to the MQTT broker and wait for acknowledgement."""

        timeout = self.config.connect_timeout_seconds if timeout is None else timeout
        self._loop = asyncio.get_running_loop()
        self._connected_event = asyncio.Event()
        self._disconnect_event = asyncio.Event()
        self._last_connect_rc = None

        client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=self.client_id,
            clean_session=True,
        )
        client.enable_logger(LOGGER.getChild("paho"))

        if self.config.username:
            client.username_pw_set(self.config.username, self.config.password)
        if self.config.use_tls:
            client.tls_set(ca_certs=self.config.ca_certs)

        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message

        self._client = client

        LOGGER.info("Connecting to MQTT broker %s as %s", self.address, self.client_id)

        try:
            client.connect_async(self.host, self.port, self.keepalive)
        except (OSError, ValueError) as exc:
            self._client = None
            raise BrokerConnectionError(
                f"Invalid broker address {self.address}: {exc}"
            ) from exc
        client.loop_start()

        try:
            await asyncio.wait_for(self._connected_event.wait(), timeout=timeout)
            if self._last_connect_rc is None or self._last_connect_rc != 0:
                raise BrokerConnectionError(
                    f"MQTT broker rejected connection (rc={self._last_connect_rc})"
                )
        except asyncio.TimeoutError as exc:
            self._release_client()
            raise BrokerConnectionError(
                f"Timed out connecting to MQTT broker {self.address}"
            ) from exc
        except BaseException:
            # Rejections and cancellation both leave no network thread behind.
            self._release_client()
            raise

    async def disconnect(self, timeout: float = 5.0) -> None:
        """Gracefully disconnect from the broker."""

        client = self._client
        if client is None:
            return

        was_connected = self._connected
        client.disconnect()

        try:
            if was_connected and self._disconnect_event is not None:
                await asyncio.wait_for(self._disconnect_event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            LOGGER.warning("Timed out waiting for MQTT disconnect acknowledgement")
        finally:
            self._release_client()

    def publish(
        self, topic: str, payload: bytes, qos: int = 0, retain: bool = False
    ) -> None:
        if not self._client:
            raise PublishError("MQTT client not connected")

        try:
            info = self._client.publish(topic, payload, qos=qos, retain=retain)
        except ValueError as exc:
            raise PublishError(f"Broker rejected publish to {topic!r}: {exc}") from exc
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise PublishError(
                f"Publish failed with rc={info.rc} ({mqtt.error_string(info.rc)})"
            )

    def subscribe(self, topic: str, qos: int = 0) -> None:
        if not self._client:
            raise BrokerConnectionError("MQTT client not connected")
        result, _ = self._client.subscribe(topic, qos=qos)
        if result != mqtt.MQTT_ERR_SUCCESS:
            raise BrokerConnectionError(f"Subscribe failed with rc={result}")

    def unsubscribe(self, topic: str) -> None:
        if not self._client:
            raise BrokerConnectionError("MQTT client not connected")

        result, _ = self._client.unsubscribe(topic)
        if result != mqtt.MQTT_ERR_SUCCESS:
            raise BrokerConnectionError(f"Unsubscribe failed with rc={result}")

    def set_message_handler(self, handler: Optional[MessageHandler]) -> None:
        self._message_handler = handler

    def register_disconnect_handler(self, handler: Callable[[int], None]) -> None:
        self._disconnect_handlers.append(handler)

    def is_connected(self) -> bool:
        return self._connected

    def _release_client(self) -> None:
        client = self._client
        self._client = None
        self._connected = False
        if client is not None:
            with contextlib.suppress(Exception):
                client.loop_stop()

    # ------------------------------------------------------------------
    # Internal callbacks bridging the threaded paho callbacks into asyncio
    # ------------------------------------------------------------------
    def _on_connect(self, client, userdata, flags, reason_code, properties=None) -> None:
        rc = _reason_value(reason_code)
        loop = self._loop
        self._last_connect_rc = rc
        if rc == 0:
            LOGGER.info("Connected to MQTT broker %s", self.address)
            self._connected = True
        else:
            LOGGER.error("MQTT connection failed with rc=%s", rc)
            self._connected = False

        event = self._connected_event
        if loop is not None and event is not None:
            loop.call_soon_threadsafe(event.set)

    def _on_disconnect(
        self, client, userdata, flags=None, reason_code=None, properties=None
    ) -> None:
        rc = _reason_value(reason_code)
        LOGGER.info("Disconnected from MQTT broker (rc=%s)", rc)
        self._connected = False
        loop = self._loop
        if loop is None:
            return
        if self._disconnect_event is not None:
            loop.call_soon_threadsafe(self._disconnect_event.set)
        for handler in self._disconnect_handlers:
            loop.call_soon_threadsafe(handler, rc)

    def _on_message(self, client, userdata, message: mqtt.MQTTMessage) -> None:
        handler = self._message_handler
        loop = self._loop
        if not handler or not loop:
            return

        loop.call_soon_threadsafe(self._deliver, handler, message.topic, message.payload)

    @staticmethod
    def _deliver(handler: MessageHandler, topic: str, payload: bytes) -> None:
        try:
            handler(topic, payload)
        except Exception:
            LOGGER.exception("MQTT message handler raised an exception")

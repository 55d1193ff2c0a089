"""Session manager for the relay control link.

A :class:`SessionManager` owns one broker connection at a time. It routes
outbound :class:`~relay_panel.core.models.Command` objects through a single
FIFO queue and dispatches inbound messages to observers registered per topic.

Every piece of session state is mutated on the asyncio loop that called
:meth:`SessionManager.start`. Paho's network thread only ever hands work to
that loop, and other threads use :meth:`SessionManager.submit`.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import contextlib
import logging
import uuid
from typing import Callable, Dict, List, Optional, Tuple

import paho.mqtt.client as mqtt

from .adapters.mqtt import MQTTClient
from .config import BrokerConfig, ResilienceConfig, split_broker_address
from .connection import ConnectionCoordinator, ConnectionState, StateCallback
from .core.errors import BrokerConnectionError, PublishError, SessionStateError
from .core.models import Command
from .core.protocols import MessageObserver

LOGGER = logging.getLogger(__name__)

ClientFactory = Callable[..., MQTTClient]

_Outbound = Tuple[Command, "asyncio.Future[None]"]


def generate_client_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


class SessionManager:
    """Connection lifecycle, command publishing and message routing."""

    def __init__(
        self,
        broker_config: Optional[BrokerConfig] = None,
        resilience_config: Optional[ResilienceConfig] = None,
        *,
        client_factory: ClientFactory = MQTTClient,
    ) -> None:
        self._broker_config = broker_config or BrokerConfig()
        self._resilience = resilience_config or ResilienceConfig()
        self._client_factory = client_factory

        self._coordinator = ConnectionCoordinator(
            resilience_config=self._resilience,
            on_state_change=self._handle_state_change,
        )
        self._coordinator.register_reconnected_callback(self._resubscribe_all)
        self._coordinator.register_lost_callback(self._release_observers)

        self._client: Optional[MQTTClient] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._observers: Dict[str, List[MessageObserver]] = {}
        self._state_listeners: List[StateCallback] = []
        self._outbound: Optional[asyncio.Queue[_Outbound]] = None
        self._inbound: Optional[asyncio.Queue[Tuple[str, bytes]]] = None
        self._sender_task: Optional[asyncio.Task[None]] = None
        self._dispatch_task: Optional[asyncio.Task[None]] = None
        self._connect_task: Optional[asyncio.Task[None]] = None
        self._stop_requested = False

        self.broker_address: Optional[str] = None
        self.client_id: Optional[str] = None

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------
    @property
    def state(self) -> ConnectionState:
        return self._coordinator.state

    @property
    def is_connected(self) -> bool:
        return self._coordinator.is_connected

    @property
    def topics(self) -> List[str]:
        return list(self._observers)

    def observers(self, topic: str) -> List[MessageObserver]:
        return list(self._observers.get(topic, ()))

    def add_state_listener(self, listener: StateCallback) -> None:
        self._state_listeners.append(listener)

    def remove_state_listener(self, listener: StateCallback) -> None:
        with contextlib.suppress(ValueError):
            self._state_listeners.remove(listener)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def start(
        self,
        broker_address: Optional[str] = None,
        client_id: Optional[str] = None,
    ) -> None:
        """Connect to the broker.

        ``broker_address`` is ``host`` or ``host:port``; the configured broker
        is used when omitted. A fresh client id is generated when
        ``client_id`` is omitted.

        Raises:
            BrokerConnectionError: If the broker cannot be reached, rejects
                the handshake, or :meth:`stop` is called while connecting.
            SessionStateError: If the session is not disconnected.
        """

        if self.state != ConnectionState.DISCONNECTED or self._connect_task is not None:
            raise SessionStateError(f"Cannot start session in state {self.state.value}")

        await self._teardown()

        host, port = split_broker_address(
            broker_address or self._broker_config.host, self._broker_config.port
        )
        self.broker_address = f"{host}:{port}"
        self.client_id = client_id or generate_client_id(
            self._broker_config.client_id_prefix
        )
        self._loop = asyncio.get_running_loop()
        self._stop_requested = False

        client = self._client_factory(
            self._broker_config, client_id=self.client_id, host=host, port=port
        )
        client.set_message_handler(self._enqueue_inbound)
        self._client = client

        self._connect_task = asyncio.create_task(self._coordinator.connect(client))
        try:
            await self._connect_task
        except asyncio.CancelledError:
            if not self._stop_requested:
                raise
            raise BrokerConnectionError(
                f"Session stopped while connecting to {self.broker_address}"
            ) from None
        except BrokerConnectionError:
            self._client = None
            raise
        finally:
            self._connect_task = None

        if self._stop_requested or not self.is_connected:
            raise BrokerConnectionError(
                f"Session stopped while connecting to {self.broker_address}"
            )

        self._outbound = asyncio.Queue()
        self._inbound = asyncio.Queue()
        self._sender_task = asyncio.create_task(self._sender_loop())
        self._dispatch_task = asyncio.create_task(self._dispatch_loop())
        LOGGER.info(
            "Session %s connected to %s", self.client_id, self.broker_address
        )

    async def stop(self) -> None:
        """Disconnect and release every observer. Safe to call repeatedly."""

        self._stop_requested = True

        connect_task = self._connect_task
        if connect_task is not None and not connect_task.done():
            connect_task.cancel()
            with contextlib.suppress(asyncio.CancelledError, BrokerConnectionError):
                await connect_task

        await self._coordinator.disconnect()
        await self._teardown()

    async def _teardown(self) -> None:
        for task in (self._sender_task, self._dispatch_task):
            if task is not None and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._sender_task = None
        self._dispatch_task = None

        if self._outbound is not None:
            while not self._outbound.empty():
                command, future = self._outbound.get_nowait()
                if not future.done():
                    future.set_exception(
                        PublishError(f"Session stopped before {command.payload!r} was sent")
                    )
        self._outbound = None
        self._inbound = None

        if self._observers:
            LOGGER.debug("Releasing observers for %d topic(s)", len(self._observers))
        self._observers.clear()
        self._client = None

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------
    def subscribe(self, topic: str, observer: MessageObserver) -> None:
        """Deliver every message published on ``topic`` to ``observer``."""

        if not self.is_connected or self._client is None:
            raise SessionStateError(
                f"Cannot subscribe to {topic!r} while {self.state.value}"
            )

        observers = self._observers.get(topic)
        if observers is None:
            self._client.subscribe(topic, qos=self._broker_config.qos)
            observers = self._observers[topic] = []
            LOGGER.info("Subscribed to %s", topic)
        observers.append(observer)

    def unsubscribe(self, topic: str, observer: MessageObserver) -> None:
        observers = self._observers.get(topic)
        if not observers or observer not in observers:
            return
        observers.remove(observer)
        if observers:
            return

        del self._observers[topic]
        if self.is_connected and self._client is not None:
            try:
                self._client.unsubscribe(topic)
            except BrokerConnectionError as exc:
                LOGGER.warning("Failed to unsubscribe from %s: %s", topic, exc)

    def _resubscribe_all(self) -> None:
        client = self._client
        if client is None:
            return
        for topic in list(self._observers):
            try:
                client.subscribe(topic, qos=self._broker_config.qos)
            except BrokerConnectionError as exc:
                LOGGER.error("Failed to restore subscription %s: %s", topic, exc)
        if self._observers:
            LOGGER.info("Restored %d subscription(s)", len(self._observers))

    def _release_observers(self) -> None:
        self._observers.clear()

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------
    async def send(self, command: Command) -> None:
        """Publish ``command`` once it reaches the head of the outbound queue.

        Raises:
            PublishError: If the session is not connected or the broker
                refuses the publish.
        """

        if not self.is_connected or self._outbound is None or self._loop is None:
            raise PublishError(
                f"Cannot send {command.payload!r}: session is {self.state.value}"
            )

        future: asyncio.Future[None] = self._loop.create_future()
        self._outbound.put_nowait((command, future))
        await future

    def submit(self, command: Command) -> "concurrent.futures.Future[None]":
        """Schedule :meth:`send` from any thread and return its future."""

        loop = self._loop
        if loop is None or loop.is_closed():
            raise PublishError(
                f"Cannot send {command.payload!r}: session is {self.state.value}"
            )
        return asyncio.run_coroutine_threadsafe(self.send(command), loop)

    async def _sender_loop(self) -> None:
        queue = self._outbound
        assert queue is not None
        while True:
            command, future = await queue.get()
            if future.done():
                continue
            client = self._client
            try:
                if client is None or not self.is_connected:
                    raise PublishError(
                        f"Cannot send {command.payload!r}: session is {self.state.value}"
                    )
                client.publish(
                    command.topic,
                    command.payload.encode("utf-8"),
                    qos=self._broker_config.qos,
                )
            except PublishError as exc:
                LOGGER.warning("Publish to %s failed: %s", command.topic, exc)
                future.set_exception(exc)
            else:
                LOGGER.debug("Published %r to %s", command.payload, command.topic)
                future.set_result(None)

    # ------------------------------------------------------------------
    # Inbound dispatch
    # ------------------------------------------------------------------
    def _enqueue_inbound(self, topic: str, payload: bytes) -> None:
        queue = self._inbound
        if queue is None:
            LOGGER.debug("Dropping message on %s received outside a session", topic)
            return
        queue.put_nowait((topic, payload))

    async def _dispatch_loop(self) -> None:
        queue = self._inbound
        assert queue is not None
        while True:
            topic, payload = await queue.get()
            await self._dispatch(topic, payload)

    async def _dispatch(self, topic: str, payload: bytes) -> None:
        text = payload.decode("utf-8", errors="replace")
        delivered: List[MessageObserver] = []
        for subscription, observers in list(self._observers.items()):
            if subscription != topic and not mqtt.topic_matches_sub(subscription, topic):
                continue
            for observer in list(observers):
                if observer in delivered:
                    continue
                delivered.append(observer)
                try:
                    result = observer(topic, text)
                    if asyncio.iscoroutine(result):
                        await result
                except Exception:
                    LOGGER.exception("Observer %r failed for message on %s", observer, topic)

    def _handle_state_change(
        self, previous: ConnectionState, current: ConnectionState
    ) -> None:
        LOGGER.info("Session state %s -> %s", previous.value, current.value)
        for listener in list(self._state_listeners):
            try:
                listener(previous, current)
            except Exception:
                LOGGER.exception("Session state listener failed")

"""MQTT transport for the bridge.

MQTT is the bridge's local accessory protocol: adapter state leaves on
retained ``{prefix}/{device}/{channel}/state`` topics and commands
arrive on ``.../set``.  Everything above this module talks to the
:class:`MqttPort` protocol; three transports implement it:

- :class:`MqttClient` keeps one aiomqtt session alive and re-subscribes
  the command wildcards after every reconnect.
- :class:`MockMqttClient` records traffic for tests.
- :class:`NullMqttClient` drops everything.

aiomqtt is imported inside the connection task, so test suites can
substitute it through ``sys.modules``.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, NamedTuple, Protocol, runtime_checkable

from smartthings2mqtt._settings import MqttSettings

logger = logging.getLogger(__name__)

MessageCallback = Callable[[str, str], Awaitable[None]]
"""Receives ``(topic, payload)`` for every inbound message."""

_JITTER_FRACTION = 0.1


@dataclass(frozen=True)
class WillConfig:
    """Broker-side last will, kept free of aiomqtt types."""

    topic: str
    payload: str = "offline"
    qos: int = 1
    retain: bool = True


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


@runtime_checkable
class MqttPort(Protocol):
    """Publish/subscribe surface used by contexts, health and errors."""

    async def publish(
        self,
        topic: str,
        payload: str,
        *,
        retain: bool = False,
        qos: int = 1,
    ) -> None: ...

    async def subscribe(self, topic: str) -> None: ...


@runtime_checkable
class MqttLifecycle(Protocol):
    """Transports owning a background connection."""

    async def start(self) -> None: ...

    async def stop(self) -> None: ...


@runtime_checkable
class MqttMessageHandler(Protocol):
    """Transports that push inbound messages to callbacks."""

    def on_message(self, callback: MessageCallback) -> None: ...


# ---------------------------------------------------------------------------
# Test and no-op transports
# ---------------------------------------------------------------------------


@dataclass
class NullMqttClient:
    """Discards every publish and subscribe."""

    async def publish(
        self,
        topic: str,
        payload: str,  # noqa: ARG002
        *,
        retain: bool = False,  # noqa: ARG002
        qos: int = 1,  # noqa: ARG002
    ) -> None:
        logger.debug("Dropped publish to %s", topic)

    async def subscribe(self, topic: str) -> None:
        logger.debug("Dropped subscription to %s", topic)


class Published(NamedTuple):
    topic: str
    payload: str
    retain: bool
    qos: int


@dataclass
class MockMqttClient:
    """Records publishes and subscriptions; ``deliver()`` fakes inbound traffic.

    Callback errors from :meth:`deliver` propagate so tests see them.
    """

    published: list[Published] = field(default_factory=list)
    subscriptions: list[str] = field(default_factory=list)
    _callbacks: list[MessageCallback] = field(default_factory=list, init=False, repr=False)

    async def publish(
        self,
        topic: str,
        payload: str,
        *,
        retain: bool = False,
        qos: int = 1,
    ) -> None:
        self.published.append(Published(topic, payload, retain, qos))

    async def subscribe(self, topic: str) -> None:
        self.subscriptions.append(topic)

    def on_message(self, callback: MessageCallback) -> None:
        self._callbacks.append(callback)

    async def deliver(self, topic: str, payload: str) -> None:
        for callback in self._callbacks:
            await callback(topic, payload)

    def get_messages_for(self, topic: str) -> list[tuple[str, bool, int]]:
        """``(payload, retain, qos)`` for each publish to *topic*, oldest first."""
        return [(m.payload, m.retain, m.qos) for m in self.published if m.topic == topic]

    def last_payload(self, topic: str) -> str | None:
        for message in reversed(self.published):
            if message.topic == topic:
                return message.payload
        return None

    def reset(self) -> None:
        self.published.clear()
        self.subscriptions.clear()
        self._callbacks.clear()


# ---------------------------------------------------------------------------
# aiomqtt transport
# ---------------------------------------------------------------------------


class MqttClient:
    """aiomqtt-backed transport with automatic reconnection.

    Subscriptions are remembered so that the per-device ``+/set``
    wildcards survive broker restarts.  Consecutive connection failures
    back off exponentially from ``reconnect_interval`` up to
    ``reconnect_max_interval``.
    """

    def __init__(self, settings: MqttSettings, will: WillConfig | None = None) -> None:
        self.settings = settings
        self.will = will
        self._callbacks: list[MessageCallback] = []
        self._topics: set[str] = set()
        self._session: Any = None
        self._task: asyncio.Task[None] | None = None
        self._online = asyncio.Event()

    def __repr__(self) -> str:
        return f"<MqttClient {self.settings.host}:{self.settings.port}>"

    @property
    def is_connected(self) -> bool:
        return self._online.is_set()

    async def publish(
        self,
        topic: str,
        payload: str,
        *,
        retain: bool = False,
        qos: int = 1,
    ) -> None:
        """Publish on the live session.

        Raises:
            RuntimeError: No broker session is open.
        """
        session = self._session
        if session is None:
            msg = f"Cannot publish to {topic}: not connected to the MQTT broker"
            raise RuntimeError(msg)
        await session.publish(topic, payload, retain=retain, qos=qos)
        logger.debug("Published to %s (qos=%d, retain=%s)", topic, qos, retain)

    async def subscribe(self, topic: str) -> None:
        self._topics.add(topic)
        if self._session is not None:
            await self._session.subscribe(topic, qos=self.settings.qos)

    def on_message(self, callback: MessageCallback) -> None:
        self._callbacks.append(callback)

    async def start(self) -> None:
        if self._task is not None and not self._task.done():
            logger.debug("MQTT connection task already running")
            return
        self._task = asyncio.create_task(self._run(), name="mqtt-connection")

    async def stop(self) -> None:
        """Cancel the connection task.  Safe to call more than once."""
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._session = None
        self._online.clear()

    async def wait_connected(self, timeout: float | None = None) -> bool:
        """``True`` once a session is up, ``False`` if *timeout* passes first."""
        try:
            await asyncio.wait_for(self._online.wait(), timeout)
        except TimeoutError:
            return False
        return True

    def _next_delay(self, failures: int) -> float:
        base = self.settings.reconnect_interval * 2 ** max(0, failures - 1)
        delay = min(base, self.settings.reconnect_max_interval)
        return delay + random.uniform(0, delay * _JITTER_FRACTION)  # noqa: S311

    def _client_kwargs(self, aiomqtt: Any) -> dict[str, Any]:
        password = self.settings.password
        kwargs: dict[str, Any] = {
            "hostname": self.settings.host,
            "port": self.settings.port,
            "username": self.settings.username,
            "password": password.get_secret_value() if password is not None else None,
            "identifier": self.settings.client_id or None,
            "will": None,
        }
        if self.will is not None:
            kwargs["will"] = aiomqtt.Will(
                topic=self.will.topic,
                payload=self.will.payload,
                qos=self.will.qos,
                retain=self.will.retain,
            )
        return kwargs

    async def _run(self) -> None:
        import aiomqtt  # noqa: PLC0415

        failures = 0
        while True:
            try:
                async with aiomqtt.Client(**self._client_kwargs(aiomqtt)) as session:
                    failures = 0
                    await self._serve(session)
            except asyncio.CancelledError:
                raise
            except Exception:
                failures += 1
                delay = self._next_delay(failures)
                logger.warning(
                    "MQTT connection to %s:%d lost, retrying in %.1fs",
                    self.settings.host,
                    self.settings.port,
                    delay,
                    exc_info=True,
                )
                await asyncio.sleep(delay)

    async def _serve(self, session: Any) -> None:
        """Restore subscriptions, then pump inbound messages until disconnect."""
        self._session = session
        try:
            for topic in sorted(self._topics):
                await session.subscribe(topic, qos=self.settings.qos)
            self._online.set()
            logger.info("Connected to MQTT broker %s:%d", self.settings.host, self.settings.port)
            async for message in session.messages:
                await self._dispatch(message)
        finally:
            self._online.clear()
            self._session = None

    async def _dispatch(self, message: Any) -> None:
        topic = str(message.topic)
        raw = message.payload
        if raw is None:
            logger.debug("Ignoring empty message on %s", topic)
            return
        payload = bytes(raw).decode("utf-8") if isinstance(raw, bytes | bytearray) else str(raw)
        for callback in self._callbacks:
            try:
                await callback(topic, payload)
            except Exception:
                logger.exception("Message handler failed for %s", topic)

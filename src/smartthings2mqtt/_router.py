"""MQTT command topic routing.

Parses ``{prefix}/{device}/{channel}/set`` topics and dispatches the
payload to the handler registered for ``device``.

Topic convention::

    {prefix}/{device}/{channel}/set    → command topic (subscribed, routed here)
    {prefix}/{device}/{channel}/state  → state topic (published, not routed)

One wildcard subscription per device (``{prefix}/{device}/+/set``)
covers every channel the device's adapters expose.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

ChannelHandler = Callable[[str, str], Awaitable[None]]
"""Async callback receiving (channel, payload) for one device."""


class TopicRouter:
    """Routes MQTT command messages to per-device handlers."""

    def __init__(self, *, topic_prefix: str) -> None:
        self._topic_prefix = topic_prefix
        self._handlers: dict[str, ChannelHandler] = {}

    def register(self, device_name: str, handler: ChannelHandler) -> None:
        """Register the command handler for *device_name*.

        Raises:
            ValueError: If a handler is already registered for the device.
        """
        if device_name in self._handlers:
            msg = f"Handler already registered for device '{device_name}'"
            raise ValueError(msg)
        self._handlers[device_name] = handler

    async def route(self, topic: str, payload: str) -> None:
        """Dispatch an inbound message; unknown topics are ignored."""
        parsed = self.parse(topic)
        if parsed is None:
            return
        device, channel = parsed
        handler = self._handlers.get(device)
        if handler is None:
            logger.warning(
                "No handler registered for device '%s' (topic: %s)",
                device,
                topic,
            )
            return
        await handler(channel, payload)

    def parse(self, topic: str) -> tuple[str, str] | None:
        """``(device, channel)`` for a command topic, else ``None``."""
        prefix = self._topic_prefix + "/"
        suffix = "/set"
        if not (topic.startswith(prefix) and topic.endswith(suffix)):
            return None
        parts = topic[len(prefix) : -len(suffix)].split("/")
        if len(parts) != 2 or not all(parts):  # noqa: PLR2004
            return None
        return parts[0], parts[1]

    @property
    def subscriptions(self) -> list[str]:
        """Wildcard command subscriptions, one per registered device."""
        return [f"{self._topic_prefix}/{device}/+/set" for device in self._handlers]

"""Per-device MQTT context.

:class:`DeviceContext` scopes MQTT publication to one device's topic
namespace and provides a shutdown-aware sleep for the device's polling
loop.  The device synchronizer uses it as its state publisher::

    {prefix}/{device}/{channel}/state   ← adapter state (retained JSON)
    {prefix}/{device}/availability      ← online / offline (retained)
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

from smartthings2mqtt._clock import ClockPort, sleep_or_shutdown
from smartthings2mqtt._health import HealthReporter
from smartthings2mqtt._mqtt import MqttPort


class DeviceContext:
    """Device-scoped MQTT publishing and lifecycle helpers."""

    def __init__(
        self,
        *,
        name: str,
        mqtt: MqttPort,
        topic_prefix: str,
        shutdown_event: asyncio.Event,
        clock: ClockPort,
        health: HealthReporter | None = None,
    ) -> None:
        self._name = name
        self._mqtt = mqtt
        self._topic_prefix = topic_prefix
        self._shutdown_event = shutdown_event
        self._clock = clock
        self._health = health

    @property
    def name(self) -> str:
        """MQTT device name (label slug)."""
        return self._name

    @property
    def clock(self) -> ClockPort:
        return self._clock

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown_event.is_set()

    def topic(self, *parts: str) -> str:
        return "/".join((self._topic_prefix, self._name, *parts))

    async def publish_state(
        self,
        channel: str,
        payload: dict[str, Any],
        *,
        retain: bool = True,
    ) -> None:
        """Publish adapter state to ``{prefix}/{device}/{channel}/state``."""
        await self._mqtt.publish(
            self.topic(channel, "state"),
            json.dumps(payload),
            retain=retain,
            qos=1,
        )

    async def publish_availability(self, online: bool) -> None:
        """Publish ``online``/``offline`` to ``{prefix}/{device}/availability``.

        Goes through the health reporter when one is attached, so the
        heartbeat's device map stays in step.
        """
        if self._health is not None:
            if online:
                await self._health.publish_device_available(self._name)
            else:
                await self._health.publish_device_unavailable(self._name)
            return
        await self._mqtt.publish(
            self.topic("availability"),
            "online" if online else "offline",
            retain=True,
            qos=1,
        )

    async def publish(
        self,
        channel: str,
        payload: str,
        *,
        retain: bool = False,
        qos: int = 1,
    ) -> None:
        """Publish to an arbitrary sub-topic ``{prefix}/{device}/{channel}``."""
        await self._mqtt.publish(self.topic(channel), payload, retain=retain, qos=qos)

    async def sleep(self, seconds: float) -> None:
        """Shutdown-aware sleep; returns early without raising."""
        await sleep_or_shutdown(seconds, self._shutdown_event)

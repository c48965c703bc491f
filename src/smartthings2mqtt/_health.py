"""Bridge heartbeat and per-device availability over MQTT.

Topic layout::

    {prefix}/status                  ← bridge heartbeat (retained JSON)
    {prefix}/{device}/availability   ← device online/offline (retained)

Heartbeat payload schema::

    {
        "status": "online",
        "uptime_s": 3600,
        "version": "0.1.0",
        "auth_pending": false,
        "devices": {
            "living-room-lamp": {"status": "online"},
            "garage-door": {"status": "offline"}
        }
    }

Unlike availability topics, the heartbeat keeps offline devices in its
``devices`` map so a dashboard sees them as unreachable rather than
vanished.  The broker publishes the LWT ``"offline"`` to
``{prefix}/status`` on an unexpected disconnect.

All publication is retained, QoS 1 and fire-and-forget.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field

from smartthings2mqtt._clock import ClockPort
from smartthings2mqtt._mqtt import MqttPort, WillConfig

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class DeviceStatus:
    """Availability of one device inside the heartbeat."""

    status: str = "online"

    def to_dict(self) -> dict[str, str]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class HeartbeatPayload:
    status: str
    uptime_s: float
    version: str
    auth_pending: bool = False
    devices: dict[str, DeviceStatus] = field(default_factory=dict)

    def to_json(self) -> str:
        data: dict[str, object] = {
            "status": self.status,
            "uptime_s": round(self.uptime_s, 3),
            "version": self.version,
            "auth_pending": self.auth_pending,
            "devices": {name: device.to_dict() for name, device in self.devices.items()},
        }
        return json.dumps(data)


def build_will_config(topic_prefix: str) -> WillConfig:
    """LWT for ``{topic_prefix}/status`` (payload ``"offline"``, retained)."""
    return WillConfig(
        topic=f"{topic_prefix}/status",
        payload="offline",
        qos=1,
        retain=True,
    )


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


@dataclass
class HealthReporter:
    """Publishes the heartbeat and device availability.

    Parameters
    ----------
    mqtt:
        MQTT port used for publishing.
    topic_prefix:
        Base prefix for health topics (e.g. ``"smartthings"``).
    version:
        Bridge version included in heartbeats.
    clock:
        Monotonic clock for uptime measurement.
    """

    mqtt: MqttPort
    topic_prefix: str
    version: str
    clock: ClockPort
    auth_pending: bool = False
    _start_time: float = field(init=False, repr=False)
    _devices: dict[str, DeviceStatus] = field(
        init=False,
        default_factory=dict,
        repr=False,
    )

    def __post_init__(self) -> None:
        self._start_time = self.clock.now()

    @property
    def devices(self) -> dict[str, str]:
        """Current availability per device name."""
        return {name: device.status for name, device in self._devices.items()}

    def set_device_status(self, device: str, status: str = "online") -> None:
        self._devices[device] = DeviceStatus(status=status)

    def remove_device(self, device: str) -> None:
        self._devices.pop(device, None)

    async def publish_device_available(self, device: str) -> None:
        """Publish ``"online"`` to ``{prefix}/{device}/availability``."""
        self.set_device_status(device, "online")
        await self._safe_publish(f"{self.topic_prefix}/{device}/availability", "online")

    async def publish_device_unavailable(self, device: str) -> None:
        """Publish ``"offline"``; the device stays in the heartbeat as offline."""
        self.set_device_status(device, "offline")
        await self._safe_publish(f"{self.topic_prefix}/{device}/availability", "offline")

    async def publish_heartbeat(self) -> None:
        payload = HeartbeatPayload(
            status="online",
            uptime_s=self.clock.now() - self._start_time,
            version=self.version,
            auth_pending=self.auth_pending,
            devices=dict(self._devices),
        )
        topic = f"{self.topic_prefix}/status"
        logger.debug("Publishing heartbeat to %s", topic)
        await self._safe_publish(topic, payload.to_json())

    async def shutdown(self) -> None:
        """Publish ``"offline"`` for every tracked device and the bridge."""
        logger.info("Health reporter shutting down, publishing offline")
        for device in list(self._devices):
            await self._safe_publish(f"{self.topic_prefix}/{device}/availability", "offline")
        await self._safe_publish(f"{self.topic_prefix}/status", "offline")
        self._devices.clear()

    async def _safe_publish(self, topic: str, payload: str, *, retain: bool = True) -> None:
        try:
            await self.mqtt.publish(topic, payload, retain=retain, qos=1)
        except Exception:
            logger.exception("Failed to publish health to %s", topic)

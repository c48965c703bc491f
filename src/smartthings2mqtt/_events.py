"""Routing of pushed device events to their synchronizers.

Pushed events bypass polling: each one goes to the single adapter bound
to its component and capability and never touches the shared status
cache.  Events for devices the bridge does not manage are dropped.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from smartthings2mqtt._models import DeviceEvent
from smartthings2mqtt._synchronizer import DeviceSynchronizer

logger = logging.getLogger(__name__)

_ENVELOPE_KEYS = ("deviceEvents", "events")


class EventRouter:
    """Device-id keyed registry of synchronizers."""

    def __init__(self) -> None:
        self._synchronizers: dict[str, DeviceSynchronizer] = {}

    def register(self, synchronizer: DeviceSynchronizer) -> None:
        self._synchronizers[synchronizer.device_id] = synchronizer

    def __len__(self) -> int:
        return len(self._synchronizers)

    def get(self, device_id: str) -> DeviceSynchronizer | None:
        return self._synchronizers.get(device_id)

    async def route(self, event: DeviceEvent) -> bool:
        """Deliver *event*; ``True`` when an adapter consumed it."""
        synchronizer = self._synchronizers.get(event.device_id)
        if synchronizer is None:
            logger.debug("Dropping event for unknown device %s", event.device_id)
            return False
        return await synchronizer.process_event(event)

    async def route_payload(self, payload: Any) -> int:
        """Route one event object, a list of them, or an envelope.

        Malformed entries are logged and skipped.  Returns the number of
        events an adapter consumed.
        """
        delivered = 0
        for item in _iter_events(payload):
            try:
                event = DeviceEvent.from_payload(item)
            except ValueError as exc:
                logger.warning("Ignoring malformed event: %s", exc)
                continue
            if await self.route(event):
                delivered += 1
        return delivered


def _iter_events(payload: Any) -> Iterable[Mapping[str, Any]]:
    if isinstance(payload, list):
        for item in payload:
            yield from _iter_events(item)
        return
    if not isinstance(payload, Mapping):
        logger.warning("Ignoring event payload of type %s", type(payload).__name__)
        return
    for key in _ENVELOPE_KEYS:
        if isinstance(payload.get(key), list):
            yield from _iter_events(payload[key])
            return
    # SmartApp lifecycle envelopes: {"eventData": {"events": [{"deviceEvent": {...}}]}}
    if "deviceEvent" in payload:
        yield from _iter_events(payload["deviceEvent"])
        return
    event_data = payload.get("eventData")
    if isinstance(event_data, Mapping):
        yield from _iter_events(event_data)
        return
    yield payload

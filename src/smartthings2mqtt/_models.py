"""Value objects for devices, commands, status snapshots and events.

Devices and components are built once from the discovery listing.  The
only mutable part is :attr:`Component.status`, which the device
synchronizer replaces wholesale after each successful status fetch;
adapters hold a reference to their component and read from it.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

MAIN_COMPONENT = "main"

_CURLY_QUOTES = str.maketrans({"‘": "'", "’": "'", "“": '"', "”": '"'})
_SLUG_STRIP = re.compile(r"[^a-z0-9]+")


def normalize_label(label: str) -> str:
    """Replace typographic quotes with ASCII ones and trim whitespace.

    The mobile apps insert curly apostrophes (``Kid’s Room``), which
    would otherwise never match a user-typed ignore-list entry.
    """
    return label.translate(_CURLY_QUOTES).strip()


def slugify(label: str) -> str:
    """MQTT-safe device name: ``"Kid's Room Lamp"`` → ``"kid-s-room-lamp"``."""
    slug = _SLUG_STRIP.sub("-", normalize_label(label).lower()).strip("-")
    return slug or "device"


# ---------------------------------------------------------------------------
# Devices
# ---------------------------------------------------------------------------


@dataclass
class Component:
    """A sub-addressable part of a device with its own capabilities."""

    component_id: str
    capabilities: tuple[str, ...]
    categories: tuple[str, ...] = ()
    status: dict[str, Any] = field(default_factory=dict)

    @property
    def is_main(self) -> bool:
        return self.component_id == MAIN_COMPONENT

    def attribute(self, capability: str, attribute: str) -> Any:
        """Last fetched ``value`` of ``status[capability][attribute]``."""
        entry = self.status.get(capability, {}).get(attribute)
        if isinstance(entry, Mapping):
            return entry.get("value")
        return None

    @classmethod
    def from_api(cls, payload: Mapping[str, Any]) -> Component:
        capabilities = tuple(
            cap["id"]
            for cap in payload.get("capabilities", [])
            if isinstance(cap, Mapping) and "id" in cap
        )
        categories = tuple(
            cat["name"]
            for cat in payload.get("categories", [])
            if isinstance(cat, Mapping) and "name" in cat
        )
        return cls(
            component_id=str(payload.get("id", MAIN_COMPONENT)),
            capabilities=capabilities,
            categories=categories,
        )


@dataclass
class Device:
    """A device from the discovery listing.

    ``name`` is the MQTT-safe slug of ``label`` and is what appears in
    topics; the synchronizer and registry key devices by ``device_id``.
    """

    device_id: str
    label: str
    components: list[Component]
    name: str = ""
    manufacturer: str | None = None
    location_id: str | None = None
    room_id: str | None = None
    ocf_device_type: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    def __post_init__(self) -> None:
        if not self.name:
            self.name = slugify(self.label)

    def component(self, component_id: str) -> Component | None:
        for component in self.components:
            if component.component_id == component_id:
                return component
        return None

    @property
    def categories(self) -> tuple[str, ...]:
        """Categories of every component, in component order."""
        return tuple(cat for comp in self.components for cat in comp.categories)

    @property
    def capabilities(self) -> frozenset[str]:
        return frozenset(cap for comp in self.components for cap in comp.capabilities)

    @classmethod
    def from_api(cls, payload: Mapping[str, Any]) -> Device:
        """Build a device from one item of ``GET /devices``."""
        label = normalize_label(
            str(payload.get("label") or payload.get("name") or payload["deviceId"]),
        )
        ocf = payload.get("ocf")
        ocf_type = payload.get("ocfDeviceType")
        if ocf_type is None and isinstance(ocf, Mapping):
            ocf_type = ocf.get("ocfDeviceType")
        return cls(
            device_id=str(payload["deviceId"]),
            label=label,
            components=[
                Component.from_api(comp)
                for comp in payload.get("components", [])
                if isinstance(comp, Mapping)
            ],
            manufacturer=payload.get("manufacturerName"),
            location_id=payload.get("locationId"),
            room_id=payload.get("roomId"),
            ocf_device_type=ocf_type,
            raw=dict(payload),
        )


# ---------------------------------------------------------------------------
# Commands, snapshots and events
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Command:
    """One remote command; always submitted inside a batch."""

    capability: str
    command: str
    arguments: tuple[Any, ...] = ()
    component: str = MAIN_COMPONENT

    def to_dict(self) -> dict[str, Any]:
        """Wire form for ``POST /devices/{id}/commands``."""
        return {
            "component": self.component,
            "capability": self.capability,
            "command": self.command,
            "arguments": list(self.arguments),
        }


@dataclass(frozen=True, slots=True)
class StatusSnapshot:
    """Per-device status trees with a single fetch timestamp."""

    components: dict[str, dict[str, Any]]
    fetched_at: float

    @classmethod
    def from_api(cls, payload: Mapping[str, Any], *, fetched_at: float) -> StatusSnapshot:
        components = payload.get("components")
        if not isinstance(components, Mapping):
            components = {}
        return cls(
            components={str(k): dict(v) for k, v in components.items() if isinstance(v, Mapping)},
            fetched_at=fetched_at,
        )


@dataclass(frozen=True, slots=True)
class DeviceEvent:
    """A pushed attribute change for one component capability."""

    device_id: str
    component_id: str
    capability: str
    attribute: str
    value: Any
    unit: str | None = None
    data: dict[str, Any] | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> DeviceEvent:
        """Parse a pushed event object.

        Raises:
            ValueError: If a required key is missing.
        """
        try:
            return cls(
                device_id=str(payload["deviceId"]),
                component_id=str(payload.get("componentId") or MAIN_COMPONENT),
                capability=str(payload["capability"]),
                attribute=str(payload["attribute"]),
                value=payload.get("value"),
                unit=payload.get("unit"),
                data=payload.get("data"),
            )
        except KeyError as exc:
            msg = f"Event is missing required key {exc.args[0]!r}"
            raise ValueError(msg) from None

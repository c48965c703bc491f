"""Adapter contract: one component + a fixed capability subset → one MQTT channel.

An adapter is created once per :class:`AdapterBinding` when the device
synchronizer is built, and never re-bound.  It reads state exclusively
from its component's status tree (refreshed by the synchronizer) plus
values overlaid from pushed events, and it issues commands exclusively
through :meth:`AdapterHost.send_commands`.

Subclasses declare *what* they expose:

- ``kind`` / ``poll_class``: identity and polling cadence class
- ``readings``: ``state()`` keys and the status attributes behind them
- :meth:`Adapter.commands_for`: JSON command → command batch
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, ClassVar, Literal, Protocol, TypeAlias

from smartthings2mqtt._errors import CommandFailure, InvalidCommandError
from smartthings2mqtt._models import Command, Component, DeviceEvent

logger = logging.getLogger(__name__)

PollClass: TypeAlias = Literal["sensor", "control"]

ON_VALUES = frozenset({"on", "true", "1", "open", "yes"})
OFF_VALUES = frozenset({"off", "false", "0", "closed", "close", "no"})


class AdapterHost(Protocol):
    """What an adapter needs from its device synchronizer."""

    async def send_commands(self, batch: Sequence[Command]) -> bool: ...

    async def publish_state(self, channel: str, payload: dict[str, Any]) -> None: ...


@dataclass(frozen=True, slots=True)
class Reading:
    """``state()[key]`` is ``status[capability][attribute].value``."""

    key: str
    capability: str
    attribute: str


def parse_on_off(value: Any) -> bool:
    """Interpret ``true``/``"ON"``/``1``/``"open"`` style payload values.

    Raises:
        InvalidCommandError: If *value* is not recognisably on or off.
    """
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ON_VALUES:
        return True
    if text in OFF_VALUES:
        return False
    msg = f"Expected an on/off value, got {value!r}"
    raise InvalidCommandError(msg)


def parse_number(value: Any, *, low: float | None = None, high: float | None = None) -> float:
    """Parse and clamp a numeric payload value."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        msg = f"Expected a number, got {value!r}"
        raise InvalidCommandError(msg) from None
    if low is not None:
        number = max(low, number)
    if high is not None:
        number = min(high, number)
    return number


def as_int(number: float) -> int | float:
    return int(number) if float(number).is_integer() else number


class Adapter:
    """Base class for every adapter kind."""

    kind: ClassVar[str] = ""
    poll_class: ClassVar[PollClass] = "control"
    readings: ClassVar[tuple[Reading, ...]] = ()

    def __init__(
        self,
        component_id: str,
        capabilities: Sequence[str],
        synchronizer: AdapterHost,
        device_name: str,
        component: Component,
    ) -> None:
        self.component_id = component_id
        self.capabilities = tuple(capabilities)
        self.synchronizer = synchronizer
        self.device_name = device_name
        self.component = component
        self.channel = self.kind if component.is_main else f"{component_id}-{self.kind}"
        self._overlay: dict[tuple[str, str], Any] = {}
        self._published: dict[str, Any] | None = None

    def __repr__(self) -> str:
        name = type(self).__name__
        return f"<{name} {self.device_name}/{self.channel} {list(self.capabilities)}>"

    def has(self, capability: str) -> bool:
        return capability in self.capabilities

    # -- State --------------------------------------------------------------

    def value(self, capability: str, attribute: str) -> Any:
        """Pushed value if one arrived since the last fetch, else the fetched one."""
        key = (capability, attribute)
        if key in self._overlay:
            return self._overlay[key]
        return self.component.attribute(capability, attribute)

    def state(self) -> dict[str, Any]:
        """Protocol-facing values; first bound reading wins for a key."""
        result: dict[str, Any] = {}
        for reading in self.readings:
            if reading.key in result or not self.has(reading.capability):
                continue
            result[reading.key] = self.value(reading.capability, reading.attribute)
        return result

    async def on_status_update(self) -> None:
        """Called by the synchronizer after each successful status fetch."""
        self._overlay.clear()
        await self._publish()

    async def process_event(self, event: DeviceEvent) -> None:
        logger.debug(
            "Event for %s/%s: %s.%s = %r",
            self.device_name,
            self.channel,
            event.capability,
            event.attribute,
            event.value,
        )
        self._overlay[(event.capability, event.attribute)] = event.value
        await self._publish()

    async def _publish(self) -> None:
        state = self.state()
        if state == self._published:
            return
        self._published = state
        await self.synchronizer.publish_state(self.channel, state)

    # -- Commands -----------------------------------------------------------

    async def handle_command(self, payload: Mapping[str, Any]) -> None:
        """Translate *payload* and send it as one batch.

        Raises:
            InvalidCommandError: The payload maps to no command.
            DeviceUnreachableError: The device is offline.
            CommandFailure: The remote call failed.
        """
        batch = self.translate(payload)
        if not batch:
            msg = f"No command understood by {self.kind} in {dict(payload)!r}"
            raise InvalidCommandError(msg)
        if not await self.synchronizer.send_commands(batch):
            msg = f"Command failed for {self.device_name}/{self.channel}"
            raise CommandFailure(msg)

    def translate(self, payload: Mapping[str, Any]) -> list[Command]:
        if "capability" in payload and "command" in payload:
            arguments = payload.get("arguments") or []
            if not isinstance(arguments, list):
                arguments = [arguments]
            return [self.command(str(payload["capability"]), str(payload["command"]), *arguments)]
        return self.commands_for(payload)

    def commands_for(self, payload: Mapping[str, Any]) -> list[Command]:  # noqa: ARG002
        """Kind-specific translation; read-only kinds understand nothing."""
        return []

    def command(self, capability: str, name: str, *arguments: Any) -> Command:
        """Build a command for a bound capability of this adapter's component."""
        if not self.has(capability):
            msg = f"{self.kind} on {self.device_name} is not bound to {capability!r}"
            raise InvalidCommandError(msg)
        return Command(capability, name, tuple(arguments), component=self.component_id)

    def switch_command(self, value: Any, capability: str = "switch") -> Command:
        return self.command(capability, "on" if parse_on_off(value) else "off")


class SensorAdapter(Adapter):
    """Read-only adapter polled at the sensor cadence."""

    poll_class: ClassVar[PollClass] = "sensor"


@dataclass(frozen=True, slots=True)
class AdapterBinding:
    """Resolver output: which adapter class covers which capabilities."""

    adapter_class: type[Adapter]
    component_id: str
    capabilities: tuple[str, ...]

    @property
    def kind(self) -> str:
        return self.adapter_class.kind

    def create(self, host: AdapterHost, device_name: str, component: Component) -> Adapter:
        return self.adapter_class(
            self.component_id,
            self.capabilities,
            host,
            device_name,
            component,
        )

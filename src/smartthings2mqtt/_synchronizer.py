"""Per-device command/status synchronization.

One :class:`DeviceSynchronizer` per physical device owns:

- the status cache (one snapshot, one timestamp, shared by all adapters),
- command serialization (one batch on the wire at a time),
- the polling tick,
- the online/offline state machine.

Concurrency model (single event loop):

- ``_command_lock`` serializes batches in request order.
- ``_command_idle`` is set whenever no batch is in flight; status
  fetches wait on it so they never read state a command has not yet
  applied remotely.
- ``_status_task`` is the in-flight fetch.  Concurrent callers await the
  same task (shielded), so N overlapping refreshes cost one remote call
  and all observe the same result.

Online/offline::

    Online ──(failure_threshold-th consecutive status failure)──▶ Offline
    Offline ──(health probe says ONLINE after offline_cooldown)──▶ Online

While offline, commands fail fast with :class:`DeviceUnreachableError`
and polling ticks only run the health probe.
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
from collections.abc import Callable, Sequence
from typing import Any, Protocol

from smartthings2mqtt._adapter import Adapter, AdapterBinding
from smartthings2mqtt._api import DeviceApi
from smartthings2mqtt._clock import ClockPort
from smartthings2mqtt._errors import BridgeError, DeviceUnreachableError, InvalidCommandError
from smartthings2mqtt._models import MAIN_COMPONENT, Command, Device, DeviceEvent, StatusSnapshot
from smartthings2mqtt._settings import PollingSettings

logger = logging.getLogger(__name__)

HEALTHY_STATE = "ONLINE"


class DeviceRuntime(Protocol):
    """Publishing and lifecycle services (satisfied by ``DeviceContext``)."""

    @property
    def shutdown_requested(self) -> bool: ...

    async def publish_state(self, channel: str, payload: dict[str, Any]) -> None: ...

    async def publish_availability(self, online: bool) -> None: ...

    async def sleep(self, seconds: float) -> None: ...


class DeviceSynchronizer:
    """Status cache, command queue, polling and health for one device."""

    def __init__(
        self,
        device: Device,
        api: DeviceApi,
        bindings: Sequence[AdapterBinding],
        *,
        settings: PollingSettings,
        clock: ClockPort,
        context: DeviceRuntime | None = None,
        event_push: bool = False,
        jitter: Callable[[float, float], float] = random.uniform,
    ) -> None:
        self.device = device
        self._api = api
        self._settings = settings
        self._clock = clock
        self._context = context
        self._jitter = jitter
        self.event_push = event_push

        self.status: StatusSnapshot | None = None
        self.status_fetched_at: float | None = None
        self.consecutive_failures = 0
        self.online = True
        self.offline_since: float | None = None
        self.last_command_completed: float | None = None

        self._command_lock = asyncio.Lock()
        self._command_idle = asyncio.Event()
        self._command_idle.set()
        self._status_task: asyncio.Task[bool] | None = None

        self.adapters: list[Adapter] = self._build_adapters(bindings)

    def __repr__(self) -> str:
        return f"<DeviceSynchronizer {self.device.name} online={self.online}>"

    # -- Introspection ------------------------------------------------------

    @property
    def device_id(self) -> str:
        return self.device.device_id

    @property
    def name(self) -> str:
        return self.device.name

    @property
    def command_in_progress(self) -> bool:
        return not self._command_idle.is_set()

    @property
    def status_query_in_progress(self) -> bool:
        return self._status_task is not None and not self._status_task.done()

    @property
    def poll_interval(self) -> float:
        """Control cadence if any adapter is controllable, else sensor cadence."""
        if any(adapter.poll_class == "control" for adapter in self.adapters):
            return self._settings.control_seconds
        return self._settings.sensor_seconds

    def adapter_for(self, component_id: str, capability: str) -> Adapter | None:
        for adapter in self.adapters:
            if adapter.component_id == component_id and adapter.has(capability):
                return adapter
        return None

    def adapter_by_channel(self, channel: str) -> Adapter | None:
        for adapter in self.adapters:
            if adapter.channel == channel:
                return adapter
        return None

    # -- Status -------------------------------------------------------------

    def force_next_status_refresh(self) -> None:
        self.status_fetched_at = None

    def _is_fresh(self) -> bool:
        if self.status_fetched_at is None:
            return False
        return self._clock.now() - self.status_fetched_at < self._settings.staleness_seconds

    async def refresh_status(self, *, force: bool = False) -> bool:
        """Make the cached snapshot current.  Never raises for remote failures.

        Returns ``True`` when the cache is fresh (or was just refreshed)
        and ``False`` when the fetch failed.
        """
        if not force and self._is_fresh():
            return True
        task = self._status_task
        if task is None or task.done():
            task = self._status_task = asyncio.create_task(self._fetch_status())
        else:
            logger.debug("Status query already in progress for %s, waiting", self.name)
        return await asyncio.shield(task)

    async def _fetch_status(self) -> bool:
        while not self._command_idle.is_set():
            logger.debug("%s status request waiting for command to finish", self.name)
            await self._command_idle.wait()

        logger.debug("Requesting status for %s", self.name)
        try:
            payload = await self._api.get_status(self.device_id)
        except BridgeError as exc:
            await self._record_status_failure(exc)
            return False

        snapshot = StatusSnapshot.from_api(payload, fetched_at=self._clock.now())
        for component in self.device.components:
            tree = snapshot.components.get(component.component_id)
            if tree is None:
                logger.warning(
                    "No status returned for %s component %s",
                    self.name,
                    component.component_id,
                )
                continue
            component.status = tree
        self.status = snapshot
        self.status_fetched_at = snapshot.fetched_at
        self.consecutive_failures = 0
        await self._notify_adapters()
        return True

    async def _notify_adapters(self) -> None:
        for adapter in self.adapters:
            try:
                await adapter.on_status_update()
            except Exception:
                logger.exception("Failed to publish state for %r", adapter)

    async def _record_status_failure(self, exc: BaseException) -> None:
        self.consecutive_failures += 1
        logger.error(
            "Failed to request status from %s: %s. This is failure number %d",
            self.name,
            exc,
            self.consecutive_failures,
        )
        if self.online and self.consecutive_failures >= self._settings.failure_threshold:
            logger.error("Exceeded allowed failures for %s. Device is offline", self.name)
            await self._set_online(False)

    # -- Commands -----------------------------------------------------------

    async def send_commands(self, batch: Sequence[Command]) -> bool:
        """Send *batch* as one remote call, after any batch already queued.

        Returns ``False`` on remote failure (never retried).

        Raises:
            DeviceUnreachableError: The device is offline; nothing was sent.
        """
        if not self.online:
            msg = f"{self.device.label} is offline"
            raise DeviceUnreachableError(msg)
        if not batch:
            return True
        async with self._command_lock:
            self._command_idle.clear()
            try:
                await self._api.send_commands(self.device_id, batch)
            except BridgeError as exc:
                logger.error(
                    "%s failed for %s: %s",
                    [command.to_dict() for command in batch],
                    self.name,
                    exc,
                )
                return False
            else:
                logger.debug("%d command(s) successful for %s", len(batch), self.name)
                self.force_next_status_refresh()
                return True
            finally:
                self.last_command_completed = self._clock.now()
                self._command_idle.set()

    async def send_command(
        self,
        capability: str,
        command: str,
        *arguments: Any,
        component: str = MAIN_COMPONENT,
    ) -> bool:
        return await self.send_commands([Command(capability, command, arguments, component)])

    async def handle_command(self, channel: str, payload: str) -> None:
        """Dispatch a raw MQTT command payload to the adapter on *channel*.

        Raises:
            InvalidCommandError: Unknown channel or malformed JSON.
            CommandFailure: Propagated from the adapter.
        """
        adapter = self.adapter_by_channel(channel)
        if adapter is None:
            msg = f"{self.name} has no channel {channel!r}"
            raise InvalidCommandError(msg)
        try:
            data = json.loads(payload)
        except ValueError:
            data = payload.strip()
        if not isinstance(data, dict):
            # Bare values ("ON", 42) address the adapter's primary state key.
            data = {"state": data}
        await adapter.handle_command(data)

    # -- Polling and health -------------------------------------------------

    async def poll_tick(self) -> None:
        """One polling interval.  Busy ticks are dropped, never queued."""
        if self.event_push:
            return
        if self.command_in_progress:
            logger.debug("Command in progress, skipping polling for %s", self.name)
            return
        now = self._clock.now()
        if (
            self.last_command_completed is not None
            and now - self.last_command_completed < self._settings.command_settle_seconds
        ):
            logger.debug("Recent command, skipping polling for %s", self.name)
            return
        try:
            if self.online:
                await self.refresh_status()
            elif self.offline_since is not None and (
                now - self.offline_since >= self._settings.offline_cooldown_seconds
            ):
                await self._probe()
        except Exception:
            logger.exception("Unexpected error while polling %s", self.name)

    async def _probe(self) -> None:
        try:
            health = await self._api.get_health(self.device_id)
        except BridgeError as exc:
            logger.warning("Health probe failed for %s: %s", self.name, exc)
            return
        if health.get("state") == HEALTHY_STATE:
            logger.info("%s is reachable again", self.name)
            await self._set_online(True)
            self.force_next_status_refresh()

    async def check_health(self) -> bool:
        """Initial probe at registration; sets and publishes availability.

        Raises:
            BridgeError: The probe itself failed.
        """
        health = await self._api.get_health(self.device_id)
        online = health.get("state") == HEALTHY_STATE
        if not online:
            logger.warning("%s reports health state %r", self.name, health.get("state"))
        await self._set_online(online, force=True)
        return online

    async def announce(self) -> None:
        """Republish the current availability."""
        await self._set_online(self.online, force=True)

    async def run_polling(self, interval: float | None = None) -> None:
        """Poll until shutdown, with up to ``jitter_seconds`` of random delay."""
        if self._context is None:
            msg = "run_polling requires a device context"
            raise RuntimeError(msg)
        period = self.poll_interval if interval is None else interval
        if self.event_push or period <= 0:
            logger.debug("Polling disabled for %s", self.name)
            return
        while not self._context.shutdown_requested:
            await self._context.sleep(period + self._jitter(0.0, self._settings.jitter_seconds))
            if self._context.shutdown_requested:
                break
            await self.poll_tick()

    async def _set_online(self, online: bool, *, force: bool = False) -> None:
        if online == self.online and not force:
            return
        self.online = online
        if online:
            self.offline_since = None
            self.consecutive_failures = 0
        else:
            self.offline_since = self._clock.now()
        if self._context is not None:
            try:
                await self._context.publish_availability(online)
            except Exception:
                logger.exception("Failed to publish availability for %s", self.name)

    # -- Events -------------------------------------------------------------

    async def process_event(self, event: DeviceEvent) -> bool:
        """Hand *event* to the adapter bound to its component and capability."""
        adapter = self.adapter_for(event.component_id, event.capability)
        if adapter is None:
            logger.debug(
                "No adapter on %s for %s/%s",
                self.name,
                event.component_id,
                event.capability,
            )
            return False
        await adapter.process_event(event)
        return True

    # -- AdapterHost --------------------------------------------------------

    async def publish_state(self, channel: str, payload: dict[str, Any]) -> None:
        if self._context is not None:
            await self._context.publish_state(channel, payload)

    def _build_adapters(self, bindings: Sequence[AdapterBinding]) -> list[Adapter]:
        adapters: list[Adapter] = []
        channels: set[str] = set()
        for binding in bindings:
            component = self.device.component(binding.component_id)
            if component is None:
                logger.warning(
                    "Skipping %s binding for unknown component %s on %s",
                    binding.kind,
                    binding.component_id,
                    self.name,
                )
                continue
            adapter = binding.create(self, self.name, component)
            base, suffix = adapter.channel, 2
            while adapter.channel in channels:
                adapter.channel = f"{base}-{suffix}"
                suffix += 1
            channels.add(adapter.channel)
            adapters.append(adapter)
        return adapters

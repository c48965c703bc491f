"""Test harness wrapping Bridge with pre-configured test doubles.

Provides :class:`BridgeHarness`: one call builds a Bridge, a
MockMqttClient, a FakeClock, a FakeSmartThingsApi, isolated Settings
(with bootstrap tokens so no authorization flow starts) and a shutdown
Event.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Self

from pydantic import SecretStr

from smartthings2mqtt._app import Bridge
from smartthings2mqtt._mqtt import MockMqttClient
from smartthings2mqtt._settings import Settings, SmartThingsSettings
from smartthings2mqtt.testing._api import FakeSmartThingsApi
from smartthings2mqtt.testing._clock import FakeClock
from smartthings2mqtt.testing._settings import make_settings


@dataclass
class BridgeHarness:
    """Bridge plus doubles, with start/stop helpers.

    Usage::

        harness = BridgeHarness.create(tmp_path)
        harness.api.devices.append(make_device_payload("d1", "Lamp"))
        await harness.start()
        ...
        await harness.stop()
    """

    bridge: Bridge
    mqtt: MockMqttClient
    clock: FakeClock
    api: FakeSmartThingsApi
    settings: Settings
    shutdown_event: asyncio.Event
    task: asyncio.Task[None] | None = field(default=None, init=False)

    @classmethod
    def create(
        cls,
        storage_dir: Path,
        *,
        version: str = "1.0.0",
        smartthings: SmartThingsSettings | None = None,
        **settings_overrides: Any,
    ) -> Self:
        """Create a harness with fresh test doubles.

        Args:
            storage_dir: Where tokens and the crash window are persisted.
            version: Bridge version reported in heartbeats.
            smartthings: Remote settings; defaults carry bootstrap tokens.
            **settings_overrides: Forwarded to :func:`make_settings`.
        """
        if smartthings is None:
            smartthings = SmartThingsSettings(
                oauth_access_token=SecretStr("access-bootstrap"),
                oauth_refresh_token=SecretStr("refresh-bootstrap"),
            )
        settings_overrides.setdefault("heartbeat_interval", None)
        return cls(
            bridge=Bridge(version=version),
            mqtt=MockMqttClient(),
            clock=FakeClock(1_700_000_000.0),
            api=FakeSmartThingsApi(),
            settings=make_settings(
                storage_dir=storage_dir,
                smartthings=smartthings,
                **settings_overrides,
            ),
            shutdown_event=asyncio.Event(),
        )

    async def run(self) -> None:
        """Run the bridge to completion with the harness's doubles."""
        await self.bridge.run_async(
            self.settings,
            mqtt=self.mqtt,
            api=self.api,
            shutdown_event=self.shutdown_event,
            clock=self.clock,
        )

    async def start(self, timeout: float = 5.0) -> None:
        """Run in the background until startup completes.

        Startup errors are re-raised here.
        """
        self.task = asyncio.create_task(self.run())
        started = asyncio.create_task(self.bridge.started.wait())
        done, _ = await asyncio.wait(
            {self.task, started},
            timeout=timeout,
            return_when=asyncio.FIRST_COMPLETED,
        )
        if self.task in done:
            started.cancel()
            self.task.result()
            return
        if started not in done:
            started.cancel()
            msg = "bridge did not start in time"
            raise TimeoutError(msg)

    async def stop(self) -> None:
        """Signal shutdown and wait for teardown."""
        self.shutdown_event.set()
        if self.task is not None:
            await self.task

    def trigger_shutdown(self) -> None:
        self.shutdown_event.set()

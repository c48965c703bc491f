"""Pytest plugin providing shared fixtures for smartthings2mqtt.

Registers ``mock_mqtt``, ``fake_clock``, ``fake_api``, ``settings`` and
``device_context``.  Discovered via the ``pytest11`` entry point.

Imports are deferred into the fixture bodies: the plugin is loaded
before ``pytest-cov`` starts tracing, and eager imports would leave the
package's module-level code unmeasured.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import pytest

if TYPE_CHECKING:
    from smartthings2mqtt._context import DeviceContext
    from smartthings2mqtt._mqtt import MockMqttClient
    from smartthings2mqtt._settings import Settings
    from smartthings2mqtt.testing._api import FakeSmartThingsApi
    from smartthings2mqtt.testing._clock import FakeClock


@pytest.fixture
def mock_mqtt() -> MockMqttClient:
    """Fresh MockMqttClient for each test."""
    from smartthings2mqtt._mqtt import MockMqttClient

    return MockMqttClient()


@pytest.fixture
def fake_clock() -> FakeClock:
    """FakeClock starting at a realistic epoch (2023-11-14)."""
    from smartthings2mqtt.testing._clock import FakeClock

    return FakeClock(1_700_000_000.0)


@pytest.fixture
def fake_api() -> FakeSmartThingsApi:
    """Empty FakeSmartThingsApi."""
    from smartthings2mqtt.testing._api import FakeSmartThingsApi

    return FakeSmartThingsApi()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Isolated settings persisting into ``tmp_path``."""
    from smartthings2mqtt.testing._settings import make_settings

    return make_settings(storage_dir=tmp_path)


@pytest.fixture
def device_context(mock_mqtt: MockMqttClient, fake_clock: FakeClock) -> DeviceContext:
    """DeviceContext named ``test-device`` under the ``test`` prefix."""
    import asyncio

    from smartthings2mqtt._context import DeviceContext

    return DeviceContext(
        name="test-device",
        mqtt=mock_mqtt,
        topic_prefix="test",
        shutdown_event=asyncio.Event(),
        clock=fake_clock,
    )

"""Public test-support utilities for smartthings2mqtt.

Re-exports test doubles and factories so test suites can import
everything from a single ``smartthings2mqtt.testing`` namespace instead
of reaching into private modules.

Provided symbols:

- :class:`FakeSmartThingsApi`: scriptable in-memory remote API.
- :class:`MockMqttClient`: in-memory MQTT double that records calls.
- :class:`NullMqttClient`: silent no-op MQTT adapter.
- :class:`FakeClock`: deterministic clock for timing tests.
- :func:`make_settings`: factory for ``Settings`` without ``.env`` files.
- :func:`make_device_payload` / :func:`make_status_payload`: API bodies.
- :class:`BridgeHarness`: a Bridge wired to all of the above.
"""

from smartthings2mqtt._mqtt import MockMqttClient, NullMqttClient
from smartthings2mqtt.testing._api import (
    FakeSmartThingsApi,
    make_device_payload,
    make_status_payload,
)
from smartthings2mqtt.testing._clock import FakeClock
from smartthings2mqtt.testing._harness import BridgeHarness
from smartthings2mqtt.testing._settings import make_settings

__all__ = [
    "BridgeHarness",
    "FakeClock",
    "FakeSmartThingsApi",
    "MockMqttClient",
    "NullMqttClient",
    "make_device_payload",
    "make_settings",
    "make_status_payload",
]

"""Tests for smartthings2mqtt._discovery — listing, filtering and retry.

Test Techniques Used:
    - Decision Table: ignore lists × supported capabilities
    - Error Guessing: transient vs permanent listing failures
    - Mock-based Isolation: recorded sleeper instead of real delays
"""

from __future__ import annotations

import pytest

from smartthings2mqtt._discovery import discover_devices, locations_to_ignore, with_retry
from smartthings2mqtt._errors import ApiError, AuthError, NetworkError
from smartthings2mqtt._resolver import CapabilityResolver
from smartthings2mqtt._settings import DiscoverySettings, FeatureSettings
from smartthings2mqtt.testing import FakeSmartThingsApi, make_device_payload


class _Sleeps:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def sleeps() -> _Sleeps:
    return _Sleeps()


class TestWithRetry:
    """Technique: Error Guessing."""

    async def test_first_attempt_succeeds(self, sleeps: _Sleeps) -> None:
        async def op() -> str:
            return "ok"

        assert await with_retry(op, sleep=sleeps) == "ok"
        assert sleeps.delays == []

    async def test_network_errors_back_off_exponentially(self, sleeps: _Sleeps) -> None:
        attempts: list[int] = []

        async def op() -> str:
            attempts.append(1)
            if len(attempts) < 3:
                raise NetworkError("reset")
            return "ok"

        assert await with_retry(op, max_retries=3, base_delay=2.0, sleep=sleeps) == "ok"
        assert sleeps.delays == [2.0, 4.0]

    async def test_budget_exhausted_raises_last_error(self, sleeps: _Sleeps) -> None:
        async def op() -> str:
            raise NetworkError("still down")

        with pytest.raises(NetworkError, match="still down"):
            await with_retry(op, max_retries=3, sleep=sleeps)
        assert len(sleeps.delays) == 2

    async def test_other_errors_are_not_retried(self, sleeps: _Sleeps) -> None:
        async def op() -> str:
            raise ApiError("forbidden", status=403)

        with pytest.raises(ApiError):
            await with_retry(op, sleep=sleeps)
        assert sleeps.delays == []

    async def test_zero_retries_rejected(self, sleeps: _Sleeps) -> None:
        async def op() -> str:
            return "never"

        with pytest.raises(ValueError, match="at least 1"):
            await with_retry(op, max_retries=0, sleep=sleeps)


class TestLocationsToIgnore:
    """Technique: Equivalence Partitioning."""

    async def test_no_names_skips_the_call(self, fake_api: FakeSmartThingsApi) -> None:
        assert await locations_to_ignore(fake_api, []) == set()
        assert fake_api.calls == []

    async def test_case_and_quote_insensitive(self, fake_api: FakeSmartThingsApi) -> None:
        fake_api.locations = [
            {"locationId": "loc-1", "name": "Home"},
            {"locationId": "loc-2", "name": "Mom’s House"},
            {"name": "No Id"},
        ]

        ignored = await locations_to_ignore(fake_api, ["mom's house", "No Id"])

        assert ignored == {"loc-2"}

    async def test_failure_yields_empty_set(self, fake_api: FakeSmartThingsApi) -> None:
        fake_api.fail("list_locations", ApiError("scope missing", status=403))
        assert await locations_to_ignore(fake_api, ["Home"]) == set()


class TestDiscoverDevices:
    """Technique: Decision Table."""

    async def test_filters(self, fake_api: FakeSmartThingsApi, sleeps: _Sleeps) -> None:
        fake_api.locations = [{"locationId": "cabin", "name": "Cabin"}]
        fake_api.devices = [
            make_device_payload("d1", "Lamp", {"main": ["switch"]}),
            make_device_payload("d2", "Garage Door", {"main": ["doorControl"]}),
            make_device_payload("d3", "Cabin Heater", {"main": ["switch"]}, location_id="cabin"),
            make_device_payload("d4", "Hub", {"main": ["bridge"]}),
            {"label": "no id"},
            make_device_payload("d5", "Motion", {"main": ["motionSensor"]}, location_id=None),
        ]
        settings = DiscoverySettings(ignore_devices=["garage door"], ignore_locations=["cabin"])

        devices = await discover_devices(fake_api, settings, CapabilityResolver(), sleep=sleeps)

        assert [d.device_id for d in devices] == ["d1", "d5"]

    async def test_devices_resolving_to_no_adapter_are_dropped(
        self,
        fake_api: FakeSmartThingsApi,
        sleeps: _Sleeps,
    ) -> None:
        fake_api.devices = [
            make_device_payload(
                "d1", "Speaker", {"main": ["audioVolume", "audioMute", "mediaPlayback"]}
            ),
            make_device_payload("d2", "AC Panel", {"main": ["samsungce.airConditionerLighting"]}),
        ]

        devices = await discover_devices(
            fake_api, DiscoverySettings(), CapabilityResolver(), sleep=sleeps
        )

        assert devices == []

    async def test_gated_adapter_keeps_device_when_enabled(
        self,
        fake_api: FakeSmartThingsApi,
        sleeps: _Sleeps,
    ) -> None:
        fake_api.devices = [
            make_device_payload("d2", "AC Panel", {"main": ["samsungce.airConditionerLighting"]}),
        ]
        resolver = CapabilityResolver(FeatureSettings(ac_display_light=True))

        devices = await discover_devices(fake_api, DiscoverySettings(), resolver, sleep=sleeps)

        assert [d.device_id for d in devices] == ["d2"]

    async def test_transient_failure_is_retried(
        self,
        fake_api: FakeSmartThingsApi,
        sleeps: _Sleeps,
    ) -> None:
        fake_api.devices = [make_device_payload("d1", "Lamp")]
        fake_api.fail("list_devices", NetworkError("timeout"))

        devices = await discover_devices(
            fake_api,
            DiscoverySettings(base_delay_seconds=3.0),
            CapabilityResolver(),
            sleep=sleeps,
        )

        assert len(devices) == 1
        assert sleeps.delays == [3.0]

    async def test_auth_failure_propagates(
        self,
        fake_api: FakeSmartThingsApi,
        sleeps: _Sleeps,
    ) -> None:
        fake_api.fail("list_devices", AuthError("no token"))

        with pytest.raises(AuthError):
            await discover_devices(
                fake_api, DiscoverySettings(), CapabilityResolver(), sleep=sleeps
            )

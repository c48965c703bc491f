"""Tests for smartthings2mqtt._errors — taxonomy and error publication.

Test Techniques Used:
    - Specification-based Testing: ErrorPayload construction and JSON
    - Equivalence Partitioning: mapped, inherited and unmapped exceptions
    - State-based Testing: ErrorPublisher topics
    - Clock Injection: deterministic timestamps
    - Exception Safety: publication failures never propagate
"""

from __future__ import annotations

import json
from dataclasses import FrozenInstanceError
from datetime import UTC, datetime
from typing import Any

import pytest

from smartthings2mqtt._errors import (
    ApiError,
    AuthenticationRequired,
    AuthError,
    BridgeError,
    CommandFailure,
    DeviceUnreachableError,
    ErrorPayload,
    ErrorPublisher,
    InvalidCommandError,
    NetworkError,
    UnauthorizedError,
    build_error_payload,
)
from smartthings2mqtt._mqtt import MockMqttClient

FIXED_DT = datetime(2026, 2, 14, 12, 0, 0, tzinfo=UTC)


def _fixed_clock() -> datetime:
    return FIXED_DT


@pytest.fixture
def publisher(mock_mqtt: MockMqttClient) -> ErrorPublisher:
    return ErrorPublisher(mqtt=mock_mqtt, topic_prefix="smartthings", clock=_fixed_clock)


class TestTaxonomy:
    """Technique: Specification-based Testing."""

    @pytest.mark.parametrize(
        ("error_class", "parent"),
        [
            (AuthenticationRequired, AuthError),
            (UnauthorizedError, ApiError),
            (DeviceUnreachableError, CommandFailure),
            (NetworkError, BridgeError),
            (InvalidCommandError, BridgeError),
        ],
    )
    def test_hierarchy(self, error_class: type[Exception], parent: type[Exception]) -> None:
        assert issubclass(error_class, parent)

    def test_api_error_carries_status(self) -> None:
        assert ApiError("nope", status=503).status == 503
        assert ApiError("nope").status is None


class TestErrorPayload:
    """Technique: Specification-based Testing."""

    def test_to_json(self) -> None:
        payload = ErrorPayload(
            error_type="device_unreachable",
            message="Lamp is offline",
            device="lamp",
            timestamp=FIXED_DT.isoformat(),
        )

        assert json.loads(payload.to_json()) == {
            "error_type": "device_unreachable",
            "message": "Lamp is offline",
            "device": "lamp",
            "timestamp": "2026-02-14T12:00:00+00:00",
            "details": {},
        }

    def test_frozen(self) -> None:
        payload = ErrorPayload("e", "m", None, "t")
        with pytest.raises(FrozenInstanceError):
            payload.message = "x"  # type: ignore[misc]


class TestBuildErrorPayload:
    """Technique: Equivalence Partitioning."""

    @pytest.mark.parametrize(
        ("error", "expected"),
        [
            (DeviceUnreachableError("offline"), "device_unreachable"),
            (CommandFailure("rejected"), "command_failure"),
            (InvalidCommandError("bad json"), "invalid_command"),
            (AuthenticationRequired("visit url"), "auth_required"),
            (UnauthorizedError("401", status=401), "unauthorized"),
            (ValueError("plain"), "error"),
        ],
    )
    def test_error_type(self, error: Exception, expected: str) -> None:
        assert build_error_payload(error, clock=_fixed_clock).error_type == expected

    def test_subclass_inherits_nearest_type(self) -> None:
        class FlakyRadio(DeviceUnreachableError):
            pass

        assert build_error_payload(FlakyRadio("x")).error_type == "device_unreachable"

    def test_custom_map(self) -> None:
        payload = build_error_payload(KeyError("k"), error_type_map={KeyError: "missing"})
        assert payload.error_type == "missing"

    def test_status_lands_in_details(self) -> None:
        payload = build_error_payload(ApiError("boom", status=422), details={"channel": "light"})
        assert payload.details == {"channel": "light", "status": 422}

    def test_timestamp_from_clock(self) -> None:
        payload = build_error_payload(BridgeError("x"), device="lamp", clock=_fixed_clock)
        assert payload.timestamp == "2026-02-14T12:00:00+00:00"
        assert payload.device == "lamp"


class TestErrorPublisher:
    """Technique: State-based Testing with Exception Safety."""

    async def test_global_topic_only_without_device(
        self,
        publisher: ErrorPublisher,
        mock_mqtt: MockMqttClient,
    ) -> None:
        await publisher.publish(NetworkError("dns"))

        assert [t for t, *_ in mock_mqtt.published] == ["smartthings/error"]
        [(_, _, retain, qos)] = mock_mqtt.published
        assert (retain, qos) == (False, 1)

    async def test_device_topic_as_well(
        self,
        publisher: ErrorPublisher,
        mock_mqtt: MockMqttClient,
    ) -> None:
        await publisher.publish(DeviceUnreachableError("Lamp is offline"), device="lamp")

        assert [t for t, *_ in mock_mqtt.published] == [
            "smartthings/error",
            "smartthings/lamp/error",
        ]
        body = json.loads(mock_mqtt.last_payload("smartthings/lamp/error") or "{}")
        assert body["error_type"] == "device_unreachable"
        assert body["device"] == "lamp"

    async def test_publish_failure_is_swallowed(self) -> None:
        class Broken:
            async def publish(self, *args: object, **kwargs: object) -> None:
                raise ConnectionError("gone")

            async def subscribe(self, topic: str) -> None: ...

        broken: Any = Broken()
        publisher = ErrorPublisher(mqtt=broken, topic_prefix="smartthings")

        await publisher.publish(CommandFailure("x"), device="lamp")

    async def test_payload_build_failure_is_swallowed(
        self,
        mock_mqtt: MockMqttClient,
    ) -> None:
        def bad_clock() -> datetime:
            raise RuntimeError("clock broke")

        publisher = ErrorPublisher(mqtt=mock_mqtt, topic_prefix="smartthings", clock=bad_clock)

        await publisher.publish(BridgeError("x"))

        assert mock_mqtt.published == []

"""Tests for smartthings2mqtt._models — devices, commands, snapshots, events.

Test Techniques Used:
    - Equivalence Partitioning: label normalisation and slug edge cases
    - Specification-based Testing: API payload parsing, command wire form
    - Error Condition Testing: malformed status and event payloads
"""

from __future__ import annotations

import pytest

from smartthings2mqtt._models import (
    Command,
    Component,
    Device,
    DeviceEvent,
    StatusSnapshot,
    normalize_label,
    slugify,
)
from smartthings2mqtt.testing import make_device_payload


class TestLabels:
    """Technique: Equivalence Partitioning."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("Kid’s Room", "Kid's Room"),
            ("“Big” Lamp ", '"Big" Lamp'),
            ("Plain", "Plain"),
        ],
    )
    def test_normalize_label(self, raw: str, expected: str) -> None:
        assert normalize_label(raw) == expected

    @pytest.mark.parametrize(
        ("label", "slug"),
        [
            ("Kid’s Room Lamp", "kid-s-room-lamp"),
            ("  Hall / Light #2 ", "hall-light-2"),
            ("???", "device"),
        ],
    )
    def test_slugify(self, label: str, slug: str) -> None:
        assert slugify(label) == slug


class TestDevice:
    """Technique: Specification-based Testing."""

    def test_from_api(self) -> None:
        payload = make_device_payload(
            "d1",
            "Living Room TV",
            {"main": ["switch", "tvChannel"], "sub": ["switch"]},
            categories={"main": ["Television"]},
            manufacturer="Samsung",
        )
        payload["roomId"] = "room-9"

        device = Device.from_api(payload)

        assert device.device_id == "d1"
        assert device.name == "living-room-tv"
        assert device.manufacturer == "Samsung"
        assert device.location_id == "loc-1"
        assert device.room_id == "room-9"
        assert device.categories == ("Television",)
        assert device.capabilities == frozenset({"switch", "tvChannel"})
        assert [c.component_id for c in device.components] == ["main", "sub"]

    def test_label_falls_back_to_id(self) -> None:
        device = Device.from_api({"deviceId": "abc", "components": []})
        assert device.label == "abc"

    def test_ocf_type_from_nested_block(self) -> None:
        device = Device.from_api(
            {"deviceId": "d", "label": "TV", "ocf": {"ocfDeviceType": "oic.d.tv"}},
        )
        assert device.ocf_device_type == "oic.d.tv"

    def test_component_lookup(self) -> None:
        device = Device.from_api(make_device_payload("d", "X", {"main": ["switch"]}))
        assert device.component("main") is device.components[0]
        assert device.component("missing") is None

    def test_explicit_name_is_kept(self) -> None:
        device = Device("d", "Lamp", [], name="lamp-2")
        assert device.name == "lamp-2"


class TestComponent:
    """Technique: Error Condition Testing."""

    def test_attribute_value(self) -> None:
        component = Component(
            "main",
            ("switch",),
            status={"switch": {"switch": {"value": "on", "timestamp": "t"}}},
        )
        assert component.attribute("switch", "switch") == "on"
        assert component.attribute("switch", "missing") is None
        assert component.attribute("switchLevel", "level") is None

    def test_malformed_entries_are_ignored_on_parse(self) -> None:
        component = Component.from_api(
            {"id": "main", "capabilities": [{"id": "switch"}, "junk", {"version": 1}]},
        )
        assert component.capabilities == ("switch",)
        assert component.is_main


class TestCommandAndSnapshot:
    """Technique: Specification-based Testing."""

    def test_command_wire_form(self) -> None:
        command = Command("switchLevel", "setLevel", (40,), component="bulb")
        assert command.to_dict() == {
            "component": "bulb",
            "capability": "switchLevel",
            "command": "setLevel",
            "arguments": [40],
        }

    def test_snapshot_keeps_only_mapping_components(self) -> None:
        snapshot = StatusSnapshot.from_api(
            {"components": {"main": {"switch": {}}, "broken": "x"}},
            fetched_at=12.0,
        )
        assert snapshot.components == {"main": {"switch": {}}}
        assert snapshot.fetched_at == 12.0

    def test_snapshot_without_components(self) -> None:
        assert StatusSnapshot.from_api({}, fetched_at=0.0).components == {}


class TestDeviceEvent:
    """Technique: Error Condition Testing."""

    def test_from_payload(self) -> None:
        event = DeviceEvent.from_payload(
            {
                "deviceId": "d1",
                "capability": "temperatureMeasurement",
                "attribute": "temperature",
                "value": 21,
                "unit": "C",
            },
        )
        assert event.component_id == "main"
        assert (event.value, event.unit) == (21, "C")

    def test_missing_key(self) -> None:
        with pytest.raises(ValueError, match="capability"):
            DeviceEvent.from_payload({"deviceId": "d1", "attribute": "switch"})

"""Concrete adapter kinds and the resolver's rule tables.

Each adapter exposes one MQTT channel.  State keys are plain JSON
values taken from the SmartThings status tree; command payloads are
JSON objects keyed the same way, e.g. ``{"state": "on", "level": 40}``
for a light.  Every adapter also accepts the generic form
``{"capability": ..., "command": ..., "arguments": [...]}`` for any
capability it is bound to.

The tables at the bottom are consumed by
:class:`~smartthings2mqtt._resolver.CapabilityResolver`; their order
is part of the resolution contract.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from smartthings2mqtt._adapter import (
    Adapter,
    Reading,
    SensorAdapter,
    as_int,
    parse_number,
    parse_on_off,
)
from smartthings2mqtt._errors import InvalidCommandError
from smartthings2mqtt._models import Command, Device

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _choice(value: Any, choices: Mapping[str, str], what: str) -> str:
    key = str(value).strip().lower()
    if key not in choices:
        msg = f"Unsupported {what} {value!r}; expected one of {sorted(choices)}"
        raise InvalidCommandError(msg)
    return choices[key]


_VOLUME_STEPS = {"up": "volumeUp", "down": "volumeDown"}
_CHANNEL_STEPS = {"up": "channelUp", "down": "channelDown"}
_PLAYBACK = {"play": "play", "pause": "pause", "stop": "stop"}
_TRACK = {"next": "nextTrack", "previous": "previousTrack"}
_SHADE_ACTIONS = {"open": "open", "close": "close", "closed": "close", "pause": "pause"}
_LOCK_STATES = {"lock": "lock", "locked": "lock", "unlock": "unlock", "unlocked": "unlock"}


def _percent(value: Any) -> int | float:
    return as_int(parse_number(value, low=0, high=100))


def _power(adapter: Adapter, payload: Mapping[str, Any]) -> list[Command]:
    for key in ("state", "power"):
        if key in payload:
            return [adapter.switch_command(payload[key])]
    return []


# ---------------------------------------------------------------------------
# Television family
# ---------------------------------------------------------------------------

TELEVISION_CAPABILITIES = (
    "switch",
    "audioVolume",
    "audioMute",
    "tvChannel",
    "mediaInputSource",
    "samsungvd.mediaInputSource",
    "mediaPlayback",
    "mediaTrackControl",
)
VOLUME_SLIDER_CAPABILITIES = ("audioVolume", "audioMute")

_TV_FINGERPRINT = frozenset({"tvChannel", "samsungvd.mediaInputSource"})


def is_television_device(device: Device | None) -> bool:
    """OCF type ``oic.d.tv``, a television category, or a TV-only capability."""
    if device is None:
        return False
    if (device.ocf_device_type or "").lower() == "oic.d.tv":
        return True
    if any(cat.lower() in {"television", "tv"} for cat in device.categories):
        return True
    main = device.component("main")
    return main is not None and bool(_TV_FINGERPRINT & set(main.capabilities))


class _VolumeMixin(Adapter):
    def volume_commands(self, payload: Mapping[str, Any]) -> list[Command]:
        batch: list[Command] = []
        if "volume" in payload:
            volume = parse_number(payload["volume"], low=0, high=100)
            level = as_int(round(volume))
            batch.append(self.command("audioVolume", "setVolume", level))
        if "volume_step" in payload:
            step = _choice(payload["volume_step"], _VOLUME_STEPS, "volume step")
            batch.append(self.command("audioVolume", step))
        if "mute" in payload:
            verb = "mute" if parse_on_off(payload["mute"]) else "unmute"
            batch.append(self.command("audioMute", verb))
        return batch


class TelevisionAdapter(_VolumeMixin):
    kind = "television"
    readings = (
        Reading("state", "switch", "switch"),
        Reading("volume", "audioVolume", "volume"),
        Reading("mute", "audioMute", "mute"),
        Reading("channel", "tvChannel", "tvChannel"),
        Reading("input", "samsungvd.mediaInputSource", "inputSource"),
        Reading("input", "mediaInputSource", "inputSource"),
        Reading("playback", "mediaPlayback", "playbackStatus"),
    )

    def commands_for(self, payload: Mapping[str, Any]) -> list[Command]:
        batch = _power(self, payload) + self.volume_commands(payload)
        if "channel" in payload:
            batch.append(self.command("tvChannel", "setTvChannel", str(payload["channel"])))
        if "channel_step" in payload:
            step = _choice(payload["channel_step"], _CHANNEL_STEPS, "channel step")
            batch.append(self.command("tvChannel", step))
        if "input" in payload:
            source = "mediaInputSource"
            if self.has("samsungvd.mediaInputSource"):
                source = "samsungvd.mediaInputSource"
            batch.append(self.command(source, "setInputSource", str(payload["input"])))
        if "playback" in payload:
            action = _choice(payload["playback"], _PLAYBACK, "playback")
            batch.append(self.command("mediaPlayback", action))
        if "track" in payload:
            action = _choice(payload["track"], _TRACK, "track action")
            batch.append(self.command("mediaTrackControl", action))
        return batch


class VolumeSliderAdapter(_VolumeMixin):
    """Volume as a dimmer-style control next to the television channel."""

    kind = "volume_slider"
    readings = (
        Reading("volume", "audioVolume", "volume"),
        Reading("mute", "audioMute", "mute"),
    )

    def state(self) -> dict[str, Any]:
        state = super().state()
        # A slider at zero or muted reads as "off".
        volume = state.get("volume")
        muted = state.get("mute") == "muted"
        state["state"] = "off" if muted or not volume else "on"
        return state

    def commands_for(self, payload: Mapping[str, Any]) -> list[Command]:
        batch = self.volume_commands(payload)
        if "state" in payload and "mute" not in payload and self.has("audioMute"):
            on = parse_on_off(payload["state"])
            batch.append(self.command("audioMute", "unmute" if on else "mute"))
        return batch


# ---------------------------------------------------------------------------
# Combination kinds
# ---------------------------------------------------------------------------


class AirConditionerAdapter(Adapter):
    kind = "air_conditioner"
    readings = (
        Reading("state", "switch", "switch"),
        Reading("mode", "airConditionerMode", "airConditionerMode"),
        Reading("fan_mode", "airConditionerFanMode", "fanMode"),
        Reading("cooling_setpoint", "thermostatCoolingSetpoint", "coolingSetpoint"),
        Reading("temperature", "temperatureMeasurement", "temperature"),
        Reading("oscillation", "fanOscillationMode", "fanOscillationMode"),
        Reading("humidity", "relativeHumidityMeasurement", "humidity"),
        Reading("optional_mode", "custom.airConditionerOptionalMode", "acOptionalMode"),
    )

    def commands_for(self, payload: Mapping[str, Any]) -> list[Command]:
        batch: list[Command] = []
        mode = payload.get("mode")
        if mode is not None and str(mode).lower() == "off":
            return [self.command("switch", "off")]
        if mode is not None:
            if self.value("switch", "switch") != "on":
                batch.append(self.command("switch", "on"))
            batch.append(self.command("airConditionerMode", "setAirConditionerMode", str(mode)))
        elif "state" in payload:
            batch.append(self.switch_command(payload["state"]))
        if "fan_mode" in payload:
            fan_mode = str(payload["fan_mode"])
            batch.append(self.command("airConditionerFanMode", "setFanMode", fan_mode))
        if "cooling_setpoint" in payload:
            setpoint = as_int(parse_number(payload["cooling_setpoint"]))
            batch.append(self.command("thermostatCoolingSetpoint", "setCoolingSetpoint", setpoint))
        if "oscillation" in payload:
            oscillation = str(payload["oscillation"])
            batch.append(self.command("fanOscillationMode", "setFanOscillationMode", oscillation))
        if "optional_mode" in payload:
            batch.append(
                self.command(
                    "custom.airConditionerOptionalMode",
                    "setAcOptionalMode",
                    str(payload["optional_mode"]),
                ),
            )
        return batch


class FanAdapter(Adapter):
    kind = "fan"
    readings = (
        Reading("state", "switch", "switch"),
        Reading("speed", "fanSpeed", "fanSpeed"),
    )

    def commands_for(self, payload: Mapping[str, Any]) -> list[Command]:
        batch = _power(self, payload)
        if "speed" in payload:
            speed = int(parse_number(payload["speed"], low=0))
            batch.append(self.command("fanSpeed", "setFanSpeed", speed))
        return batch


class FanLevelAdapter(FanAdapter):
    kind = "fan_level"
    readings = (*FanAdapter.readings, Reading("level", "switchLevel", "level"))

    def commands_for(self, payload: Mapping[str, Any]) -> list[Command]:
        batch = super().commands_for(payload)
        if "level" in payload:
            level = int(parse_number(payload["level"], low=0, high=100))
            batch.append(self.command("switchLevel", "setLevel", level))
        return batch


class LightAdapter(Adapter):
    kind = "light"
    readings = (
        Reading("state", "switch", "switch"),
        Reading("level", "switchLevel", "level"),
        Reading("hue", "colorControl", "hue"),
        Reading("saturation", "colorControl", "saturation"),
        Reading("color_temperature", "colorTemperature", "colorTemperature"),
    )

    def commands_for(self, payload: Mapping[str, Any]) -> list[Command]:
        batch = _power(self, payload)
        if "level" in payload:
            level = int(parse_number(payload["level"], low=0, high=100))
            batch.append(self.command("switchLevel", "setLevel", level))
        hue = payload.get("hue")
        saturation = payload.get("saturation")
        if hue is not None and saturation is not None:
            color = {
                "hue": _percent(hue),
                "saturation": _percent(saturation),
            }
            batch.append(self.command("colorControl", "setColor", color))
        elif hue is not None:
            batch.append(self.command("colorControl", "setHue", _percent(hue)))
        elif saturation is not None:
            batch.append(self.command("colorControl", "setSaturation", _percent(saturation)))
        if "color_temperature" in payload:
            kelvin = int(parse_number(payload["color_temperature"], low=1))
            batch.append(self.command("colorTemperature", "setColorTemperature", kelvin))
        return batch


class ValveAdapter(Adapter):
    kind = "valve"
    readings = (
        Reading("state", "valve", "valve"),
        Reading("switch", "switch", "switch"),
    )

    def commands_for(self, payload: Mapping[str, Any]) -> list[Command]:
        batch: list[Command] = []
        if "state" in payload:
            verb = "open" if parse_on_off(payload["state"]) else "close"
            batch.append(self.command("valve", verb))
        if "switch" in payload:
            batch.append(self.switch_command(payload["switch"]))
        return batch


class ThermostatAdapter(Adapter):
    kind = "thermostat"
    readings = (
        Reading("temperature", "temperatureMeasurement", "temperature"),
        Reading("mode", "thermostatMode", "thermostatMode"),
        Reading("heating_setpoint", "thermostatHeatingSetpoint", "heatingSetpoint"),
        Reading("cooling_setpoint", "thermostatCoolingSetpoint", "coolingSetpoint"),
    )

    def commands_for(self, payload: Mapping[str, Any]) -> list[Command]:
        batch: list[Command] = []
        if "mode" in payload:
            batch.append(self.command("thermostatMode", "setThermostatMode", str(payload["mode"])))
        if "heating_setpoint" in payload:
            setpoint = as_int(parse_number(payload["heating_setpoint"]))
            batch.append(self.command("thermostatHeatingSetpoint", "setHeatingSetpoint", setpoint))
        if "cooling_setpoint" in payload:
            setpoint = as_int(parse_number(payload["cooling_setpoint"]))
            batch.append(self.command("thermostatCoolingSetpoint", "setCoolingSetpoint", setpoint))
        return batch

    def state(self) -> dict[str, Any]:
        state = super().state()
        unit = self.component.status.get("temperatureMeasurement", {}).get("temperature", {})
        if isinstance(unit, dict) and unit.get("unit"):
            state["unit"] = unit["unit"]
        return state


class WindowCoveringAdapter(Adapter):
    kind = "window_covering"
    readings = (
        Reading("state", "windowShade", "windowShade"),
        Reading("position", "windowShadeLevel", "shadeLevel"),
        Reading("position", "switchLevel", "level"),
    )

    def commands_for(self, payload: Mapping[str, Any]) -> list[Command]:
        batch: list[Command] = []
        action = payload.get("action", payload.get("state"))
        if action is not None:
            verb = _choice(action, _SHADE_ACTIONS, "action")
            batch.append(self.command("windowShade", verb))
        if "position" in payload:
            position = int(parse_number(payload["position"], low=0, high=100))
            if self.has("windowShadeLevel"):
                batch.append(self.command("windowShadeLevel", "setShadeLevel", position))
            else:
                batch.append(self.command("switchLevel", "setLevel", position))
        return batch


# ---------------------------------------------------------------------------
# Single-capability kinds
# ---------------------------------------------------------------------------


class DoorAdapter(Adapter):
    kind = "door"
    readings = (Reading("state", "doorControl", "door"),)

    def commands_for(self, payload: Mapping[str, Any]) -> list[Command]:
        if "state" not in payload:
            return []
        return [self.command("doorControl", "open" if parse_on_off(payload["state"]) else "close")]


class LockAdapter(Adapter):
    kind = "lock"
    readings = (
        Reading("state", "lock", "lock"),
        Reading("state", "absoluteweather46907.lock", "lock"),
    )

    def commands_for(self, payload: Mapping[str, Any]) -> list[Command]:
        if "state" not in payload:
            return []
        verb = _choice(payload["state"], _LOCK_STATES, "lock state")
        capability = "lock" if self.has("lock") else "absoluteweather46907.lock"
        return [self.command(capability, verb)]


class SwitchAdapter(Adapter):
    kind = "switch"
    readings = (Reading("state", "switch", "switch"),)

    def commands_for(self, payload: Mapping[str, Any]) -> list[Command]:
        return _power(self, payload)


class AcDisplayLightAdapter(Adapter):
    kind = "ac_display_light"
    readings = (Reading("state", "samsungce.airConditionerLighting", "lighting"),)

    def commands_for(self, payload: Mapping[str, Any]) -> list[Command]:
        if "state" not in payload:
            return []
        verb = "on" if parse_on_off(payload["state"]) else "off"
        return [self.command("samsungce.airConditionerLighting", verb)]


class MotionAdapter(SensorAdapter):
    kind = "motion"
    readings = (Reading("motion", "motionSensor", "motion"),)


class LeakAdapter(SensorAdapter):
    kind = "leak"
    readings = (Reading("water", "waterSensor", "water"),)


class SmokeAdapter(SensorAdapter):
    kind = "smoke"
    readings = (Reading("smoke", "smokeDetector", "smoke"),)


class CarbonMonoxideAdapter(SensorAdapter):
    kind = "carbon_monoxide"
    readings = (Reading("carbon_monoxide", "carbonMonoxideDetector", "carbonMonoxide"),)


class OccupancyAdapter(SensorAdapter):
    kind = "occupancy"
    readings = (Reading("presence", "presenceSensor", "presence"),)


class TemperatureAdapter(SensorAdapter):
    kind = "temperature"
    readings = (Reading("temperature", "temperatureMeasurement", "temperature"),)

    def state(self) -> dict[str, Any]:
        state = super().state()
        entry = self.component.status.get("temperatureMeasurement", {}).get("temperature", {})
        if isinstance(entry, dict) and entry.get("unit"):
            state["unit"] = entry["unit"]
        return state


class HumidityAdapter(SensorAdapter):
    kind = "humidity"
    readings = (Reading("humidity", "relativeHumidityMeasurement", "humidity"),)


class IlluminanceAdapter(SensorAdapter):
    kind = "illuminance"
    readings = (Reading("illuminance", "illuminanceMeasurement", "illuminance"),)


class ContactAdapter(SensorAdapter):
    kind = "contact"
    readings = (Reading("contact", "contactSensor", "contact"),)


class ButtonAdapter(SensorAdapter):
    kind = "button"
    readings = (Reading("action", "button", "button"),)


class BatteryAdapter(SensorAdapter):
    kind = "battery"
    readings = (Reading("battery", "battery", "battery"),)


# ---------------------------------------------------------------------------
# Rule tables
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CombinationRule:
    """One adapter covering ``required`` plus whatever of ``optional`` remains."""

    adapter_class: type[Adapter]
    required: tuple[str, ...]
    optional: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class SingleRule:
    """One capability → one adapter, optionally behind a feature flag name."""

    capability: str
    adapter_class: type[Adapter]
    feature: str | None = None


_LIGHT_OPTIONAL = ("switchLevel", "colorControl", "colorTemperature")

COMBINATION_RULES: tuple[CombinationRule, ...] = (
    CombinationRule(
        AirConditionerAdapter,
        (
            "switch",
            "airConditionerMode",
            "airConditionerFanMode",
            "thermostatCoolingSetpoint",
            "temperatureMeasurement",
        ),
        ("fanOscillationMode", "relativeHumidityMeasurement", "custom.airConditionerOptionalMode"),
    ),
    CombinationRule(FanLevelAdapter, ("switch", "fanSpeed", "switchLevel")),
    CombinationRule(FanAdapter, ("switch", "fanSpeed")),
    CombinationRule(LightAdapter, ("switch", "switchLevel"), _LIGHT_OPTIONAL),
    CombinationRule(LightAdapter, ("switch", "colorControl"), _LIGHT_OPTIONAL),
    CombinationRule(LightAdapter, ("switch", "colorTemperature"), _LIGHT_OPTIONAL),
    CombinationRule(ValveAdapter, ("switch", "valve")),
    CombinationRule(
        ThermostatAdapter,
        (
            "temperatureMeasurement",
            "thermostatMode",
            "thermostatHeatingSetpoint",
            "thermostatCoolingSetpoint",
        ),
    ),
    CombinationRule(ThermostatAdapter, ("temperatureMeasurement", "thermostatHeatingSetpoint")),
    CombinationRule(WindowCoveringAdapter, ("windowShade", "windowShadeLevel")),
    CombinationRule(WindowCoveringAdapter, ("windowShade", "switchLevel")),
)

SINGLE_RULES: tuple[SingleRule, ...] = (
    SingleRule("doorControl", DoorAdapter),
    SingleRule("lock", LockAdapter),
    SingleRule("absoluteweather46907.lock", LockAdapter),
    SingleRule("switch", SwitchAdapter),
    SingleRule("windowShadeLevel", WindowCoveringAdapter),
    SingleRule("windowShade", WindowCoveringAdapter),
    SingleRule("motionSensor", MotionAdapter),
    SingleRule("waterSensor", LeakAdapter),
    SingleRule("smokeDetector", SmokeAdapter),
    SingleRule("carbonMonoxideDetector", CarbonMonoxideAdapter),
    SingleRule("presenceSensor", OccupancyAdapter),
    SingleRule("temperatureMeasurement", TemperatureAdapter),
    SingleRule("relativeHumidityMeasurement", HumidityAdapter),
    SingleRule("illuminanceMeasurement", IlluminanceAdapter),
    SingleRule("contactSensor", ContactAdapter),
    SingleRule("button", ButtonAdapter),
    SingleRule("battery", BatteryAdapter),
    SingleRule("valve", ValveAdapter),
    SingleRule(
        "samsungce.airConditionerLighting",
        AcDisplayLightAdapter,
        feature="ac_display_light",
    ),
)

ADAPTER_KINDS: dict[str, type[Adapter]] = {
    cls.kind: cls
    for cls in (
        TelevisionAdapter,
        VolumeSliderAdapter,
        *(rule.adapter_class for rule in COMBINATION_RULES),
        *(rule.adapter_class for rule in SINGLE_RULES),
    )
}

"""Capability resolver: ordered greedy assignment of capabilities to adapters.

For one component, :meth:`CapabilityResolver.resolve` walks:

1. device-type heuristics (television, then the volume slider),
2. combination rules, largest required set first (ties keep table
   order),
3. single-capability rules in declaration order, skipping rules whose
   feature flag is off.

Every step removes what it claims from the remaining set, so no
capability is ever bound to two adapters.  Whatever is left over is
simply not exposed.  The result is order-sensitive by contract: an
earlier claim can leave a later, larger rule unsatisfiable, and that is
kept rather than "optimised".
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from smartthings2mqtt._adapter import AdapterBinding
from smartthings2mqtt._catalog import (
    COMBINATION_RULES,
    SINGLE_RULES,
    TELEVISION_CAPABILITIES,
    VOLUME_SLIDER_CAPABILITIES,
    CombinationRule,
    SingleRule,
    TelevisionAdapter,
    VolumeSliderAdapter,
    is_television_device,
)
from smartthings2mqtt._models import MAIN_COMPONENT, Device
from smartthings2mqtt._settings import FeatureSettings

logger = logging.getLogger(__name__)


class CapabilityResolver:
    """Resolves component capability lists into adapter bindings."""

    def __init__(
        self,
        features: FeatureSettings | None = None,
        *,
        combination_rules: Sequence[CombinationRule] = COMBINATION_RULES,
        single_rules: Sequence[SingleRule] = SINGLE_RULES,
    ) -> None:
        self._features = features or FeatureSettings()
        # sorted() is stable, so equal-size rules keep their table order.
        self._combination_rules = sorted(combination_rules, key=lambda r: -len(r.required))
        self._single_rules = tuple(single_rules)

    @property
    def combination_rules(self) -> list[CombinationRule]:
        return list(self._combination_rules)

    def resolve(
        self,
        component_id: str,
        capabilities: Sequence[str],
        device: Device | None = None,
    ) -> list[AdapterBinding]:
        remaining = list(dict.fromkeys(capabilities))
        bindings: list[AdapterBinding] = []

        def claim(adapter_class: type, claimed: Sequence[str]) -> None:
            bindings.append(AdapterBinding(adapter_class, component_id, tuple(claimed)))
            for cap in claimed:
                remaining.remove(cap)

        if self._television_applies(component_id, device):
            slider = self._volume_slider_capabilities(component_id, remaining)
            tv_caps = [
                cap
                for cap in remaining
                if cap in TELEVISION_CAPABILITIES
                and cap not in slider
                and (cap != "switch" or self._features.remove_legacy_switch)
            ]
            if tv_caps:
                claim(TelevisionAdapter, tv_caps)
                if slider:
                    claim(VolumeSliderAdapter, slider)

        for rule in self._combination_rules:
            if not all(cap in remaining for cap in rule.required):
                continue
            claimed = [*rule.required, *(c for c in rule.optional if c in remaining)]
            claim(rule.adapter_class, claimed)

        for single in self._single_rules:
            if single.capability not in remaining:
                continue
            if single.feature is not None and not getattr(self._features, single.feature):
                logger.debug("Skipping %s: feature %s disabled", single.capability, single.feature)
                continue
            claim(single.adapter_class, [single.capability])

        if remaining:
            logger.debug("Unassigned capabilities on %s: %s", component_id, remaining)
        return bindings

    def resolve_device(self, device: Device) -> list[AdapterBinding]:
        """Bindings for every component of *device*, in component order."""
        return [
            binding
            for component in device.components
            for binding in self.resolve(component.component_id, component.capabilities, device)
        ]

    def capability_supported(self, capability: str) -> bool:
        return (
            any(rule.capability == capability for rule in self._single_rules)
            or capability in TELEVISION_CAPABILITIES
            or capability in VOLUME_SLIDER_CAPABILITIES
        )

    def device_supported(self, device: Device) -> bool:
        """True when at least one adapter binds under the current feature gates."""
        return bool(self.resolve_device(device))

    # -- Heuristics ---------------------------------------------------------

    def _television_applies(self, component_id: str, device: Device | None) -> bool:
        return (
            self._features.television
            and component_id == MAIN_COMPONENT
            and is_television_device(device)
        )

    def _volume_slider_capabilities(self, component_id: str, remaining: Sequence[str]) -> list[str]:
        if not self._features.volume_slider or component_id != MAIN_COMPONENT:
            return []
        if "audioVolume" not in remaining:
            return []
        return [cap for cap in remaining if cap in VOLUME_SLIDER_CAPABILITIES]

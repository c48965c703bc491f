"""Startup device discovery.

Lists the account's devices, applies the configured ignore lists and
keeps only devices the resolver can bind at least one adapter to.
Transient network failures while listing are retried with exponential
backoff; every other failure propagates to the caller.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeAlias, TypeVar

from smartthings2mqtt._api import DiscoveryApi
from smartthings2mqtt._errors import BridgeError, NetworkError
from smartthings2mqtt._models import Device, normalize_label
from smartthings2mqtt._resolver import CapabilityResolver
from smartthings2mqtt._settings import DiscoverySettings

logger = logging.getLogger(__name__)

Sleeper: TypeAlias = Callable[[float], Awaitable[None]]

T = TypeVar("T")


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    max_retries: int = 3,
    base_delay: float = 2.0,
    name: str = "API call",
    sleep: Sleeper = asyncio.sleep,
) -> T:
    """Run *operation*, retrying :class:`NetworkError` with doubling delay.

    Any other exception is raised immediately.  After *max_retries*
    attempts the last network error is raised.
    """
    for attempt in range(1, max_retries + 1):
        try:
            return await operation()
        except NetworkError as exc:
            if attempt >= max_retries:
                logger.error("%s failed after %d attempts", name, max_retries)
                raise
            delay = base_delay * 2 ** (attempt - 1)
            logger.warning(
                "[Retry %d/%d] %s failed: %s. Retrying in %.1f seconds...",
                attempt,
                max_retries,
                name,
                exc,
                delay,
            )
            await sleep(delay)
    msg = "max_retries must be at least 1"
    raise ValueError(msg)


async def locations_to_ignore(api: DiscoveryApi, names: list[str]) -> set[str]:
    """Location ids whose name matches *names* (case-insensitive).

    Failures are logged and yield an empty set; discovery continues.
    """
    if not names:
        return set()
    wanted = {normalize_label(name).lower() for name in names}
    try:
        locations = await api.list_locations()
    except BridgeError as exc:
        logger.error(
            "Could not load locations: %s. The token needs the r:locations scope",
            exc,
        )
        return set()
    ignored = {
        str(location["locationId"])
        for location in locations
        if "locationId" in location
        and normalize_label(str(location.get("name", ""))).lower() in wanted
    }
    logger.info("Found %d locations to ignore", len(ignored))
    return ignored


async def discover_devices(
    api: DiscoveryApi,
    settings: DiscoverySettings,
    resolver: CapabilityResolver,
    *,
    sleep: Sleeper = asyncio.sleep,
) -> list[Device]:
    """Supported, non-ignored devices in listing order.

    Raises:
        NetworkError: Listing still failed after the retry budget.
        BridgeError: Any non-network failure while listing.
    """
    ignored_locations = await locations_to_ignore(api, settings.ignore_locations)
    ignored_names = {normalize_label(name).lower() for name in settings.ignore_devices}

    payloads = await with_retry(
        api.list_devices,
        max_retries=settings.max_retries,
        base_delay=settings.base_delay_seconds,
        name="Device discovery",
        sleep=sleep,
    )

    devices: list[Device] = []
    for payload in payloads:
        try:
            device = Device.from_api(payload)
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Skipping malformed device entry: %s", exc)
            continue
        if device.label.lower() in ignored_names:
            logger.info("Ignoring %s because it is in the ignore list", device.label)
            continue
        if device.location_id is not None and device.location_id in ignored_locations:
            logger.info(
                "Ignoring %s because it is in a location to ignore (%s)",
                device.label,
                device.location_id,
            )
            continue
        if not resolver.device_supported(device):
            logger.info("Ignoring %s: no supported capabilities", device.label)
            continue
        devices.append(device)
    logger.info("Discovered %d supported device(s)", len(devices))
    return devices

"""SmartThings REST client.

A thin aiohttp client for the handful of endpoints the bridge uses.
Every request is authorized with the token store's current access
token.  Failures are mapped onto the bridge's error taxonomy:

- connection errors and timeouts → :class:`NetworkError`
- HTTP 401 → one refresh through the token store and a single retry;
  a second 401 → :class:`UnauthorizedError`
- any other status ≥ 400 → :class:`ApiError` carrying the status

The client never mutates token state itself.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from typing import Any, Protocol, runtime_checkable

import aiohttp

from smartthings2mqtt._errors import ApiError, AuthError, NetworkError, UnauthorizedError
from smartthings2mqtt._models import Command
from smartthings2mqtt._settings import SmartThingsSettings
from smartthings2mqtt._tokens import TokenStore

logger = logging.getLogger(__name__)

_SNIPPET_LIMIT = 800

# ---------------------------------------------------------------------------
# Ports
# ---------------------------------------------------------------------------


@runtime_checkable
class DeviceApi(Protocol):
    """Per-device calls used by the device synchronizer."""

    async def get_status(self, device_id: str) -> dict[str, Any]: ...

    async def get_health(self, device_id: str) -> dict[str, Any]: ...

    async def send_commands(self, device_id: str, commands: Sequence[Command]) -> None: ...


@runtime_checkable
class DiscoveryApi(Protocol):
    """Account-level listings used at startup."""

    async def list_devices(self) -> list[dict[str, Any]]: ...

    async def list_locations(self) -> list[dict[str, Any]]: ...


@runtime_checkable
class SmartThingsPort(DeviceApi, DiscoveryApi, Protocol):
    """Everything the bridge calls on the remote API."""


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------


class SmartThingsApi:
    """aiohttp implementation of :class:`DeviceApi` and :class:`DiscoveryApi`."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        settings: SmartThingsSettings,
        tokens: TokenStore,
    ) -> None:
        self._session = session
        self._settings = settings
        self._tokens = tokens
        self._base_url = settings.base_url.rstrip("/")

    async def list_devices(self) -> list[dict[str, Any]]:
        """All devices, following ``_links.next.href`` pagination."""
        return await self._list("/devices")

    async def list_locations(self) -> list[dict[str, Any]]:
        return await self._list("/locations")

    async def get_status(self, device_id: str) -> dict[str, Any]:
        return await self._get_object(f"/devices/{device_id}/status")

    async def get_health(self, device_id: str) -> dict[str, Any]:
        return await self._get_object(f"/devices/{device_id}/health")

    async def send_commands(self, device_id: str, commands: Sequence[Command]) -> None:
        await self._request(
            "POST",
            f"/devices/{device_id}/commands",
            json_body={"commands": [command.to_dict() for command in commands]},
        )

    # -- Internals ----------------------------------------------------------

    async def _list(self, path: str) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        next_path: str | None = path
        while next_path:
            payload = await self._request("GET", next_path)
            if not isinstance(payload, dict):
                break
            items.extend(it for it in payload.get("items", []) if isinstance(it, dict))
            next_path = None
            links = payload.get("_links")
            if isinstance(links, dict) and isinstance(links.get("next"), dict):
                href = links["next"].get("href")
                if isinstance(href, str) and href:
                    next_path = href
        return items

    async def _get_object(self, path: str) -> dict[str, Any]:
        payload = await self._request("GET", path)
        if not isinstance(payload, dict):
            msg = f"Unexpected response body for GET {path}"
            raise ApiError(msg)
        return payload

    def _url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return f"{self._base_url}{path}"

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json_body: dict[str, Any] | None = None,
        retry_unauthorized: bool = True,
    ) -> Any:
        token = self._tokens.get_access_token()
        if token is None:
            msg = "No access token available; authorization required"
            raise AuthError(msg)

        url = self._url(path)
        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
        }
        try:
            async with self._session.request(
                method,
                url,
                headers=headers,
                json=json_body,
                timeout=aiohttp.ClientTimeout(total=self._settings.request_timeout),
            ) as resp:
                status = resp.status
                text = await resp.text()
        except (aiohttp.ClientError, TimeoutError) as exc:
            msg = f"{method} {path} failed: {exc or type(exc).__name__}"
            raise NetworkError(msg) from exc

        if status == 401:  # noqa: PLR2004
            if retry_unauthorized and await self._tokens.handle_unauthorized():
                logger.debug("Retrying %s %s with refreshed token", method, path)
                return await self._request(
                    method,
                    path,
                    json_body=json_body,
                    retry_unauthorized=False,
                )
            msg = f"SmartThings API rejected the access token for {method} {path}"
            raise UnauthorizedError(msg, status=status)

        if status >= 400:  # noqa: PLR2004
            snippet = (text or "").strip()
            if len(snippet) > _SNIPPET_LIMIT:
                snippet = snippet[:_SNIPPET_LIMIT] + "..."
            msg = f"SmartThings API error {status} for {method} {path}: {snippet}"
            raise ApiError(msg, status=status)

        # Command posts may answer 202 with an empty body.
        if not text:
            return None
        try:
            return json.loads(text)
        except ValueError as exc:
            msg = f"SmartThings API returned invalid JSON for {method} {path}"
            raise ApiError(msg, status=status) from exc

"""OAuth token store and refresh monitor.

:class:`TokenStore` is the single owner of the process-wide
:class:`TokenRecord`.  Every remote call reads the current access token
through it; only the store mutates the record.

Refresh happens on two paths:

- **Proactive**: :meth:`TokenStore.run_monitor` ticks every
  ``monitor_interval_seconds`` and refreshes once the access token is
  inside the refresh margin.
- **Reactive**: the API client calls
  :meth:`TokenStore.handle_unauthorized` after an HTTP 401.

Both paths go through :meth:`TokenStore.refresh`, which is
single-flight: callers arriving while a refresh is running await the
same task instead of starting a second token-endpoint exchange.  When
refreshing is impossible or fails, the store notifies its
re-authentication listeners rather than retrying.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol, TypeAlias, runtime_checkable

from pydantic import BaseModel

from smartthings2mqtt._clock import ClockPort, sleep_or_shutdown
from smartthings2mqtt._errors import AuthError, BridgeError
from smartthings2mqtt._settings import SmartThingsSettings, TokenSettings
from smartthings2mqtt._store import JsonFileStore

logger = logging.getLogger(__name__)

TOKEN_FILE_NAME = "smartthings_tokens.json"

TokenListener: TypeAlias = "Callable[[TokenRecord | None], None]"
ReauthCallback: TypeAlias = Callable[[], object]

# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------


class TokenRecord(BaseModel):
    """The persisted access/refresh token pair.

    Expiry instants are wall-clock epoch seconds so they stay
    meaningful across process restarts.
    """

    access_token: str
    refresh_token: str | None = None
    expires_at: float
    refresh_token_expires_at: float
    installed_app_id: str | None = None
    location_id: str | None = None


@dataclass(frozen=True, slots=True)
class TokenGrant:
    """Result of a token-endpoint exchange.

    ``expires_in=None`` means the lifetime is unknown (bootstrap
    credentials); the store then assumes its configured bootstrap
    lifetime.
    """

    access_token: str
    refresh_token: str | None = None
    expires_in: float | None = None
    installed_app_id: str | None = None
    location_id: str | None = None

    @classmethod
    def from_response(cls, payload: Mapping[str, Any]) -> TokenGrant:
        """Parse a token-endpoint JSON body.

        Raises:
            AuthError: If the body carries no access token.
        """
        access_token = payload.get("access_token")
        if not isinstance(access_token, str) or not access_token:
            msg = "Token response did not contain an access token"
            raise AuthError(msg)
        expires_in = payload.get("expires_in")
        return cls(
            access_token=access_token,
            refresh_token=payload.get("refresh_token") or None,
            expires_in=float(expires_in) if expires_in is not None else 0.0,
            installed_app_id=payload.get("installed_app_id"),
            location_id=payload.get("location_id"),
        )


def bootstrap_grant(settings: SmartThingsSettings) -> TokenGrant | None:
    """One-time credentials from configuration, if both tokens are set."""
    if settings.oauth_access_token is None or settings.oauth_refresh_token is None:
        return None
    access = settings.oauth_access_token.get_secret_value()
    refresh = settings.oauth_refresh_token.get_secret_value()
    if not access or not refresh:
        return None
    return TokenGrant(access_token=access, refresh_token=refresh)


@dataclass(frozen=True, slots=True)
class TokenExpiry:
    """Seconds until the access and refresh tokens expire (never negative)."""

    access_expires_in: float
    refresh_expires_in: float


# ---------------------------------------------------------------------------
# Ports
# ---------------------------------------------------------------------------


@runtime_checkable
class TokenRefresher(Protocol):
    """Performs the remote refresh-token exchange."""

    async def refresh(self, refresh_token: str) -> TokenGrant: ...


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class TokenStore:
    """Owns, persists and refreshes the process-wide token record."""

    def __init__(
        self,
        store: JsonFileStore[TokenRecord],
        refresher: TokenRefresher,
        *,
        settings: TokenSettings,
        clock: ClockPort,
    ) -> None:
        self._store = store
        self._refresher = refresher
        self._settings = settings
        self._clock = clock
        self._record: TokenRecord | None = None
        self._refresh_task: asyncio.Task[TokenRecord] | None = None
        self._listeners: list[TokenListener] = []
        self._reauth_callbacks: list[ReauthCallback] = []

    # -- Loading ------------------------------------------------------------

    def load(self, bootstrap: TokenGrant | None = None) -> TokenRecord | None:
        """Load the durable record, falling back to *bootstrap*.

        Bootstrap credentials are persisted immediately so the next
        start uses the token file.
        """
        record = self._store.load()
        if record is not None:
            logger.debug("Loaded tokens from %s", self._store.path)
            self._record = record
            return record
        if bootstrap is not None:
            logger.info("Loading bootstrap tokens from configuration")
            self._commit(self._record_from_grant(bootstrap))
            logger.info("Bootstrap tokens saved to %s", self._store.path)
        return self._record

    # -- Read access --------------------------------------------------------

    @property
    def record(self) -> TokenRecord | None:
        return self._record

    def get_access_token(self) -> str | None:
        return self._record.access_token if self._record else None

    def get_refresh_token(self) -> str | None:
        return self._record.refresh_token if self._record else None

    def is_access_token_valid(self) -> bool:
        if self._record is None:
            return False
        margin = self._settings.refresh_margin_seconds
        return self._clock.wall() < self._record.expires_at - margin

    def is_refresh_token_valid(self) -> bool:
        if self._record is None or not self._record.refresh_token:
            return False
        margin = self._settings.refresh_margin_seconds
        return self._clock.wall() < self._record.refresh_token_expires_at - margin

    def expiry_info(self) -> TokenExpiry:
        if self._record is None:
            return TokenExpiry(0.0, 0.0)
        now = self._clock.wall()
        return TokenExpiry(
            access_expires_in=max(0.0, self._record.expires_at - now),
            refresh_expires_in=max(0.0, self._record.refresh_token_expires_at - now),
        )

    # -- Listeners ----------------------------------------------------------

    def on_token_changed(self, listener: TokenListener) -> None:
        """Register *listener*; called with the new record (``None`` on clear)."""
        self._listeners.append(listener)

    def on_reauthentication_required(self, callback: ReauthCallback) -> None:
        """Register the entry point that starts a full authorization flow."""
        self._reauth_callbacks.append(callback)

    def request_reauthentication(self) -> None:
        if not self._reauth_callbacks:
            logger.error("Re-authentication required but no handler is registered")
        for callback in self._reauth_callbacks:
            try:
                callback()
            except Exception:
                logger.exception("Re-authentication handler failed")

    # -- Mutation -----------------------------------------------------------

    def update(self, grant: TokenGrant) -> TokenRecord:
        """Store a grant obtained outside the refresh path (authorization code)."""
        record = self._record_from_grant(grant)
        self._commit(record)
        return record

    async def refresh(self, refresh_token: str | None = None) -> TokenRecord:
        """Exchange the refresh token for a new record.  Single-flight.

        Raises:
            AuthError: No refresh token, or the exchange was rejected.
            NetworkError: The token endpoint was unreachable.
        """
        if self._refresh_task is None or self._refresh_task.done():
            self._refresh_task = asyncio.create_task(self._do_refresh(refresh_token))
            self._refresh_task.add_done_callback(_retrieve_exception)
        else:
            logger.debug("Token refresh already in flight, joining it")
        return await asyncio.shield(self._refresh_task)

    async def _do_refresh(self, refresh_token: str | None) -> TokenRecord:
        token = refresh_token or self.get_refresh_token()
        if not token:
            msg = "No refresh token available"
            raise AuthError(msg)
        logger.debug("Refreshing access token")
        grant = await self._refresher.refresh(token)
        record = self._record_from_grant(grant)
        self._commit(record)
        logger.info("Access token refreshed")
        return record

    async def check_and_refresh(self) -> bool:
        """One monitor tick.  Returns ``True`` when a refresh succeeded."""
        if self._record is None or not self._record.refresh_token:
            logger.debug("Skipping token check: no refresh token")
            return False
        if self.is_access_token_valid():
            return False
        logger.debug("Access token is about to expire, refreshing")
        try:
            await self.refresh()
        except BridgeError as exc:
            logger.error("Token refresh failed: %s", exc)
            logger.warning("Starting a new authorization flow")
            self.request_reauthentication()
            return False
        return True

    async def handle_unauthorized(self) -> bool:
        """React to an HTTP 401.  ``True`` when the caller may retry once."""
        if not self.get_refresh_token():
            logger.warning("Request unauthorized and no refresh token is available")
            self.request_reauthentication()
            return False
        try:
            await self.refresh()
        except BridgeError as exc:
            logger.error("Refresh after 401 failed: %s", exc)
            self.request_reauthentication()
            return False
        return True

    async def run_monitor(self, shutdown_event: asyncio.Event) -> None:
        """Proactive refresh loop; returns when *shutdown_event* is set."""
        interval = self._settings.monitor_interval_seconds
        while not await sleep_or_shutdown(interval, shutdown_event):
            await self.check_and_refresh()

    def clear(self) -> None:
        """Forget the record and delete the token file."""
        self._record = None
        if self._store.exists():
            self._store.clear()
            logger.info("Cleared stored tokens")
        else:
            logger.info("No stored token file to clear")
        self._notify(None)

    # -- Internals ----------------------------------------------------------

    def _record_from_grant(self, grant: TokenGrant) -> TokenRecord:
        now = self._clock.wall()
        lifetime = (
            self._settings.bootstrap_lifetime_seconds
            if grant.expires_in is None
            else grant.expires_in
        )
        previous = self._record
        return TokenRecord(
            access_token=grant.access_token,
            refresh_token=grant.refresh_token
            or (previous.refresh_token if previous else None),
            expires_at=now + lifetime,
            refresh_token_expires_at=now + self._settings.refresh_token_lifetime_seconds,
            installed_app_id=grant.installed_app_id
            or (previous.installed_app_id if previous else None),
            location_id=grant.location_id or (previous.location_id if previous else None),
        )

    def _commit(self, record: TokenRecord) -> None:
        self._record = record
        try:
            self._store.save(record)
        except OSError:
            logger.exception("Could not persist tokens to %s", self._store.path)
        self._notify(record)

    def _notify(self, record: TokenRecord | None) -> None:
        for listener in self._listeners:
            try:
                listener(record)
            except Exception:
                logger.exception("Token listener failed")


def _retrieve_exception(task: asyncio.Task[TokenRecord]) -> None:
    # Every waiter may have been cancelled; mark the result as observed.
    if not task.cancelled():
        task.exception()

"""OAuth token-endpoint client and the authorization flow.

:class:`OAuthClient` talks to the token endpoint (HTTP Basic client
authentication, form-encoded body) for both the authorization-code and
the refresh-token grant.

:class:`Authenticator` is the re-authentication entry point.  Starting
a flow never blocks: it logs a call-to-action (the authorization URL,
or instructions for supplying bootstrap tokens) and waits for the
browser redirect to reach :meth:`Authenticator.handle_callback` through
the inbound listener.
"""

from __future__ import annotations

import json
import logging
import secrets

import aiohttp
from yarl import URL

from smartthings2mqtt._errors import AuthError, BridgeError, NetworkError
from smartthings2mqtt._settings import SmartThingsSettings
from smartthings2mqtt._tokens import TokenGrant, TokenStore

logger = logging.getLogger(__name__)

_BANNER = "=" * 49


class OAuthClient:
    """Token-endpoint exchanges for the configured SmartApp."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        settings: SmartThingsSettings,
    ) -> None:
        self._session = session
        self._settings = settings

    async def exchange_code(self, code: str, redirect_uri: str) -> TokenGrant:
        """Trade an authorization code for a token grant."""
        return await self._post_token(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri,
            },
        )

    async def refresh(self, refresh_token: str) -> TokenGrant:
        """Trade a refresh token for a new grant."""
        if not refresh_token:
            msg = "No refresh token provided"
            raise AuthError(msg)
        return await self._post_token(
            {"grant_type": "refresh_token", "refresh_token": refresh_token},
        )

    async def _post_token(self, form: dict[str, str]) -> TokenGrant:
        grant_type = form["grant_type"]
        auth = aiohttp.BasicAuth(
            self._settings.client_id,
            self._settings.client_secret.get_secret_value(),
        )
        try:
            async with self._session.post(
                self._settings.token_url,
                data=form,
                auth=auth,
                headers={"Accept": "application/json"},
                timeout=aiohttp.ClientTimeout(total=self._settings.request_timeout),
            ) as resp:
                status = resp.status
                text = await resp.text()
        except (aiohttp.ClientError, TimeoutError) as exc:
            msg = f"Token endpoint unreachable during {grant_type} grant: {exc}"
            raise NetworkError(msg) from exc

        if status >= 400:  # noqa: PLR2004
            msg = f"Token endpoint rejected {grant_type} grant (HTTP {status})"
            raise AuthError(msg)
        try:
            payload = json.loads(text)
        except ValueError as exc:
            msg = f"Token endpoint returned invalid JSON for {grant_type} grant"
            raise AuthError(msg) from exc
        if not isinstance(payload, dict):
            msg = f"Token endpoint returned an unexpected body for {grant_type} grant"
            raise AuthError(msg)
        logger.debug("Token endpoint accepted %s grant", grant_type)
        return TokenGrant.from_response(payload)


class Authenticator:
    """Drives full (browser-based) re-authorization.

    Registers :meth:`start_auth_flow` as the token store's
    re-authentication handler, so refresh failures and crash-loop
    recovery both land here.
    """

    def __init__(
        self,
        oauth: OAuthClient,
        tokens: TokenStore,
        settings: SmartThingsSettings,
    ) -> None:
        self._oauth = oauth
        self._tokens = tokens
        self._settings = settings
        self._state: str | None = None
        self.auth_pending = False
        tokens.on_reauthentication_required(self.start_auth_flow)

    @property
    def redirect_uri(self) -> str | None:
        return self._settings.redirect_uri

    def authorization_url(self, state: str) -> str:
        redirect_uri = self.redirect_uri
        if redirect_uri is None:
            msg = "server_url is not configured"
            raise AuthError(msg)
        url = URL(self._settings.authorize_url).update_query(
            client_id=self._settings.client_id,
            response_type="code",
            redirect_uri=redirect_uri,
            scope=self._settings.scopes,
            state=state,
        )
        return str(url)

    def start_auth_flow(self) -> str | None:
        """Log the call-to-action and return the authorization URL, if any.

        Safe to call repeatedly; each call issues a fresh ``state``.
        """
        self.auth_pending = True
        if self.redirect_uri is None:
            self._state = None
            logger.warning(_BANNER)
            logger.warning("SmartThings authorization required")
            logger.warning(
                "No public server_url is configured. Provide bootstrap "
                "credentials via ST2MQTT_SMARTTHINGS__OAUTH_ACCESS_TOKEN and "
                "ST2MQTT_SMARTTHINGS__OAUTH_REFRESH_TOKEN, then restart.",
            )
            logger.warning(_BANNER)
            return None

        self._state = secrets.token_hex(32)
        url = self.authorization_url(self._state)
        logger.warning(_BANNER)
        logger.warning("SmartThings authorization required")
        logger.warning("Visit this URL to authorize the bridge:")
        logger.warning("%s", url)
        logger.warning(_BANNER)
        return url

    async def handle_callback(self, code: str | None, state: str | None) -> None:
        """Complete the flow from the OAuth redirect.

        Raises:
            AuthError: Missing parameters, state mismatch, or rejected code.
            NetworkError: The token endpoint was unreachable.
        """
        if not code or not state:
            msg = "Missing code or state parameter"
            raise AuthError(msg)
        if self._state is None or not secrets.compare_digest(state, self._state):
            msg = "Invalid state parameter"
            raise AuthError(msg)
        redirect_uri = self.redirect_uri
        if redirect_uri is None:
            msg = "server_url is not configured"
            raise AuthError(msg)
        grant = await self._oauth.exchange_code(code, redirect_uri)
        self._tokens.update(grant)
        self._state = None
        self.auth_pending = False
        logger.info("Successfully authorized with SmartThings")

    async def initialize(self) -> bool:
        """Make sure a usable access token exists.

        Returns ``True`` when an authorization flow had to be started.
        """
        if self._tokens.get_access_token() and self._tokens.is_access_token_valid():
            return False
        if self._tokens.is_refresh_token_valid():
            try:
                await self._tokens.refresh()
            except BridgeError as exc:
                logger.warning("Token refresh failed during startup: %s", exc)
            else:
                return False
        self.start_auth_flow()
        return True

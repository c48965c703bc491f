"""Inbound HTTP listener (aiohttp.web).

Routes::

    GET  /oauth/callback?code=..&state=..   → Authenticator.handle_callback
    POST /                                   → EventRouter.route_payload

When a webhook token is configured, event posts must carry
``Authorization: Bearer <token>``.  Without one the listener is open and
:func:`build_webhook_app` logs a warning once.
"""

from __future__ import annotations

import logging
import secrets

from aiohttp import web

from smartthings2mqtt._errors import BridgeError
from smartthings2mqtt._events import EventRouter
from smartthings2mqtt._oauth import Authenticator

logger = logging.getLogger(__name__)

_SUCCESS_PAGE = (
    "<html><body><h1>Authentication successful!</h1>"
    "<p>You can close this window and return to smartthings2mqtt.</p>"
    "</body></html>"
)
_FAILURE_PAGE = (
    "<html><body><h1>Authentication failed</h1><p>Please try again.</p></body></html>"
)

AUTHENTICATOR_KEY = web.AppKey("authenticator", Authenticator)
EVENTS_KEY = web.AppKey("events", EventRouter)
TOKEN_KEY = web.AppKey("webhook_token", str)


async def handle_oauth_callback(request: web.Request) -> web.Response:
    authenticator = request.app[AUTHENTICATOR_KEY]
    try:
        await authenticator.handle_callback(
            request.query.get("code"),
            request.query.get("state"),
        )
    except BridgeError as exc:
        logger.error("OAuth callback error: %s", exc)
        return web.Response(status=500, text=_FAILURE_PAGE, content_type="text/html")
    return web.Response(text=_SUCCESS_PAGE, content_type="text/html")


async def handle_device_event(request: web.Request) -> web.Response:
    expected = request.app.get(TOKEN_KEY)
    if expected:
        header = request.headers.get("Authorization", "")
        scheme, _, supplied = header.partition(" ")
        if scheme.lower() != "bearer" or not secrets.compare_digest(supplied, expected):
            logger.warning("Rejected event post with invalid webhook token")
            return web.Response(status=401)
    try:
        payload = await request.json()
    except ValueError as exc:
        logger.error("Error parsing device event: %s", exc)
        return web.Response(status=400)
    delivered = await request.app[EVENTS_KEY].route_payload(payload)
    logger.debug("Delivered %d pushed event(s)", delivered)
    return web.Response(status=200)


def build_webhook_app(
    authenticator: Authenticator,
    events: EventRouter,
    *,
    webhook_token: str | None = None,
) -> web.Application:
    """Assemble the listener application (no sockets are opened)."""
    app = web.Application()
    app[AUTHENTICATOR_KEY] = authenticator
    app[EVENTS_KEY] = events
    if webhook_token:
        app[TOKEN_KEY] = webhook_token
    else:
        logger.warning(
            "Event posts are accepted without authentication; "
            "set ST2MQTT_SMARTTHINGS__WEBHOOK_TOKEN to require a bearer token"
        )
    app.router.add_get("/oauth/callback", handle_oauth_callback)
    app.router.add_post("/", handle_device_event)
    return app


class WebhookServer:
    """Runs :func:`build_webhook_app` on a TCP port."""

    def __init__(
        self,
        app: web.Application,
        *,
        port: int,
        host: str = "0.0.0.0",  # noqa: S104
    ) -> None:
        self._app = app
        self._host = host
        self._port = port
        self._runner: web.AppRunner | None = None

    @property
    def is_running(self) -> bool:
        return self._runner is not None

    async def start(self) -> None:
        runner = web.AppRunner(self._app, access_log=None)
        await runner.setup()
        site = web.TCPSite(runner, self._host, self._port)
        try:
            await site.start()
        except OSError:
            await runner.cleanup()
            raise
        self._runner = runner
        logger.info("Webhook server listening on port %d", self._port)

    async def stop(self) -> None:
        if self._runner is None:
            return
        await self._runner.cleanup()
        self._runner = None
        logger.info("Webhook server stopped")

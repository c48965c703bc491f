"""Bridge orchestration: composition root and lifecycle.

Startup order::

    1. logging, MQTT, heartbeat and error publication
    2. token store (durable record, else bootstrap credentials)
    3. crash-loop check, before any remote call
    4. authorization (refresh, or a logged call-to-action)
    5. discovery → resolver → one synchronizer per device
    6. per device: health probe, then an initial status fetch
    7. command routing, polling, token monitor
    8. block until SIGTERM/SIGINT, then tear down

Every collaborator can be injected (``mqtt``, ``api``, ``session``,
``shutdown_event``, ``clock``) so the whole lifecycle runs in tests
without sockets.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import uuid
from dataclasses import dataclass

import aiohttp

from smartthings2mqtt._adapter import AdapterBinding
from smartthings2mqtt._api import SmartThingsApi, SmartThingsPort
from smartthings2mqtt._clock import ClockPort, SystemClock
from smartthings2mqtt._context import DeviceContext
from smartthings2mqtt._crash_loop import (
    CRASH_FILE_NAME,
    CrashKind,
    CrashLoopManager,
    CrashRecord,
)
from smartthings2mqtt._discovery import discover_devices
from smartthings2mqtt._errors import (
    AuthenticationRequired,
    AuthError,
    BridgeError,
    ErrorPublisher,
    UnauthorizedError,
)
from smartthings2mqtt._events import EventRouter
from smartthings2mqtt._health import HealthReporter, build_will_config
from smartthings2mqtt._logging import configure_logging
from smartthings2mqtt._models import Device
from smartthings2mqtt._mqtt import (
    MqttClient,
    MqttLifecycle,
    MqttMessageHandler,
    MqttPort,
)
from smartthings2mqtt._oauth import Authenticator, OAuthClient
from smartthings2mqtt._resolver import CapabilityResolver
from smartthings2mqtt._router import TopicRouter
from smartthings2mqtt._settings import Settings
from smartthings2mqtt._store import JsonFileStore
from smartthings2mqtt._synchronizer import DeviceSynchronizer
from smartthings2mqtt._tokens import (
    TOKEN_FILE_NAME,
    TokenRecord,
    TokenStore,
    bootstrap_grant,
)
from smartthings2mqtt._webhook import WebhookServer, build_webhook_app

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class AuthServices:
    """Token store, authenticator and crash-loop manager for one run."""

    tokens: TokenStore
    authenticator: Authenticator
    crash_loop: CrashLoopManager


@dataclass(frozen=True, slots=True)
class DeviceListing:
    """One discovered device and the adapters it resolves to."""

    device: Device
    bindings: list[AdapterBinding]


class Bridge:
    """SmartThings ↔ MQTT bridge.

    Example::

        bridge = Bridge(version="1.0.0")
        bridge.run(Settings())
    """

    def __init__(self, *, name: str = "smartthings2mqtt", version: str = "0.0.0") -> None:
        self.name = name
        self.version = version
        self.started = asyncio.Event()
        self.synchronizers: dict[str, DeviceSynchronizer] = {}
        self.auth: AuthServices | None = None

    # --- Entry points ------------------------------------------------------

    def run(self, settings: Settings) -> None:
        """Blocking entry point; Ctrl-C shuts down cleanly."""
        with contextlib.suppress(KeyboardInterrupt):
            asyncio.run(self.run_async(settings))

    async def run_async(
        self,
        settings: Settings,
        *,
        mqtt: MqttPort | None = None,
        api: SmartThingsPort | None = None,
        session: aiohttp.ClientSession | None = None,
        shutdown_event: asyncio.Event | None = None,
        clock: ClockPort | None = None,
    ) -> None:
        """Run until shutdown.

        Raises:
            AuthenticationRequired: No usable token and no callback
                listener to complete authorization.
            BridgeError: Discovery failed (recorded in the crash window).
        """
        prefix = settings.mqtt.topic_prefix
        configure_logging(settings.logging, service=self.name, version=self.version)
        resolved_clock = clock if clock is not None else SystemClock()
        shutdown_event = self._install_signal_handlers(shutdown_event)

        mqtt = self._create_mqtt(mqtt, settings, prefix)
        health = HealthReporter(
            mqtt=mqtt,
            topic_prefix=prefix,
            version=self.version,
            clock=resolved_clock,
        )
        errors = ErrorPublisher(mqtt=mqtt, topic_prefix=prefix)

        owns_session = session is None
        http = session if session is not None else aiohttp.ClientSession()
        tasks: list[asyncio.Task[None]] = []
        server: WebhookServer | None = None

        if isinstance(mqtt, MqttLifecycle):
            await mqtt.start()
        try:
            auth = self.auth = self._create_auth(http, settings, resolved_clock)

            # Overwrites a retained LWT "offline" from a previous run.
            await health.publish_heartbeat()
            if settings.heartbeat_interval is not None:
                tasks.append(
                    asyncio.create_task(
                        self._heartbeat_loop(
                            health,
                            auth.authenticator,
                            settings.heartbeat_interval,
                        ),
                    ),
                )

            recovered = auth.crash_loop.check_and_recover(
                auth.tokens,
                auth.authenticator.start_auth_flow,
            )

            events = EventRouter()
            server = await self._start_webhook(settings, auth.authenticator, events)

            if not recovered:
                await auth.authenticator.initialize()
            if not await self._await_authorization(auth, server, shutdown_event):
                return

            device_api = api if api is not None else SmartThingsApi(
                http,
                settings.smartthings,
                auth.tokens,
            )
            await self._start_devices(
                settings,
                device_api,
                auth,
                mqtt,
                health,
                events,
                shutdown_event,
                resolved_clock,
            )
            router = self._wire_router(prefix, errors)
            await self._subscribe_and_connect(mqtt, router)

            for sync in self.synchronizers.values():
                tasks.append(asyncio.create_task(sync.run_polling()))
            tasks.append(asyncio.create_task(auth.tokens.run_monitor(shutdown_event)))

            self.started.set()
            logger.info("Bridge started with %d device(s)", len(self.synchronizers))
            await shutdown_event.wait()
        finally:
            await self._cancel_tasks(tasks)
            if server is not None:
                await server.stop()
            await health.shutdown()
            if owns_session:
                await http.close()
            if isinstance(mqtt, MqttLifecycle):
                await mqtt.stop()
            logger.info("Shutdown complete")

    async def list_devices(
        self,
        settings: Settings,
        *,
        api: SmartThingsPort | None = None,
        session: aiohttp.ClientSession | None = None,
        clock: ClockPort | None = None,
    ) -> list[DeviceListing]:
        """Authenticate, discover and resolve without touching MQTT.

        Raises:
            AuthenticationRequired: No usable token.
        """
        resolved_clock = clock if clock is not None else SystemClock()
        owns_session = session is None
        http = session if session is not None else aiohttp.ClientSession()
        try:
            auth = self.auth = self._create_auth(http, settings, resolved_clock)
            if await auth.authenticator.initialize():
                msg = "SmartThings authorization required; see the log for instructions"
                raise AuthenticationRequired(msg)
            device_api = api if api is not None else SmartThingsApi(
                http,
                settings.smartthings,
                auth.tokens,
            )
            resolver = CapabilityResolver(settings.features)
            devices = await discover_devices(device_api, settings.discovery, resolver)
            return [DeviceListing(device, resolver.resolve_device(device)) for device in devices]
        finally:
            if owns_session:
                await http.close()

    # --- run_async helpers -------------------------------------------------

    def _create_mqtt(self, mqtt: MqttPort | None, settings: Settings, prefix: str) -> MqttPort:
        """Create the MQTT client, or return the injected one.

        Without a configured ``client_id`` one is generated from the
        bridge name and a short random suffix.
        """
        if mqtt is not None:
            return mqtt
        mqtt_settings = settings.mqtt
        if not mqtt_settings.client_id:
            mqtt_settings = mqtt_settings.model_copy(
                update={"client_id": f"{self.name}-{uuid.uuid4().hex[:8]}"},
            )
        return MqttClient(settings=mqtt_settings, will=build_will_config(prefix))

    @staticmethod
    def _create_auth(
        session: aiohttp.ClientSession,
        settings: Settings,
        clock: ClockPort,
    ) -> AuthServices:
        storage = settings.storage_dir
        tokens = TokenStore(
            JsonFileStore(storage / TOKEN_FILE_NAME, TokenRecord),
            OAuthClient(session, settings.smartthings),
            settings=settings.tokens,
            clock=clock,
        )
        authenticator = Authenticator(
            OAuthClient(session, settings.smartthings),
            tokens,
            settings.smartthings,
        )
        tokens.load(bootstrap_grant(settings.smartthings))
        crash_loop = CrashLoopManager(
            JsonFileStore(storage / CRASH_FILE_NAME, CrashRecord),
            settings=settings.crash_loop,
            clock=clock,
        )
        return AuthServices(tokens, authenticator, crash_loop)

    @staticmethod
    def _install_signal_handlers(shutdown_event: asyncio.Event | None) -> asyncio.Event:
        """Install SIGTERM/SIGINT handlers.  Returns the shutdown event."""
        if shutdown_event is not None:
            return shutdown_event
        event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, event.set)
        return event

    @staticmethod
    async def _start_webhook(
        settings: Settings,
        authenticator: Authenticator,
        events: EventRouter,
    ) -> WebhookServer | None:
        st = settings.smartthings
        token = st.webhook_token.get_secret_value() if st.webhook_token else None
        if st.redirect_uri is None and not token:
            logger.debug("Webhook server not started: no server_url or webhook token")
            return None
        server = WebhookServer(
            build_webhook_app(authenticator, events, webhook_token=token),
            port=st.webhook_port,
        )
        try:
            await server.start()
        except OSError as exc:
            logger.error("Could not start webhook server on port %d: %s", st.webhook_port, exc)
            return None
        return server

    @staticmethod
    async def _await_authorization(
        auth: AuthServices,
        server: WebhookServer | None,
        shutdown_event: asyncio.Event,
    ) -> bool:
        """Block until a token arrives.  ``False`` when shutdown came first."""
        if not auth.authenticator.auth_pending:
            return True
        if server is None or auth.authenticator.redirect_uri is None:
            auth.crash_loop.record_potential_crash(CrashKind.AUTH_FAILURE)
            msg = "SmartThings authorization required; see the log for instructions"
            raise AuthenticationRequired(msg)

        authorized = asyncio.Event()

        def _on_token(record: TokenRecord | None) -> None:
            if record is not None:
                authorized.set()

        auth.tokens.on_token_changed(_on_token)
        logger.info("Waiting for the OAuth callback")
        waiters = [
            asyncio.create_task(authorized.wait()),
            asyncio.create_task(shutdown_event.wait()),
        ]
        try:
            await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()
        return authorized.is_set()

    async def _start_devices(
        self,
        settings: Settings,
        api: SmartThingsPort,
        auth: AuthServices,
        mqtt: MqttPort,
        health: HealthReporter,
        events: EventRouter,
        shutdown_event: asyncio.Event,
        clock: ClockPort,
    ) -> None:
        resolver = CapabilityResolver(settings.features)
        try:
            devices = await discover_devices(api, settings.discovery, resolver)
        except BridgeError as exc:
            kind = (
                CrashKind.AUTH_FAILURE
                if isinstance(exc, AuthError | UnauthorizedError)
                else CrashKind.API_INIT_FAILURE
            )
            auth.crash_loop.record_potential_crash(kind)
            logger.error("Device discovery failed: %s", exc)
            raise

        event_push = settings.smartthings.webhook_token is not None
        for device in _with_unique_names(devices):
            context = DeviceContext(
                name=device.name,
                mqtt=mqtt,
                topic_prefix=settings.mqtt.topic_prefix,
                shutdown_event=shutdown_event,
                clock=clock,
                health=health,
            )
            sync = DeviceSynchronizer(
                device,
                api,
                resolver.resolve_device(device),
                settings=settings.polling,
                clock=clock,
                context=context,
                event_push=event_push,
            )
            logger.info(
                "Registering %s (%s) with %s",
                device.label,
                device.name,
                ", ".join(adapter.kind for adapter in sync.adapters),
            )
            try:
                await sync.check_health()
            except BridgeError as exc:
                logger.error("Health check failed for %s: %s", device.label, exc)
                auth.crash_loop.record_potential_crash(CrashKind.DEVICE_HEALTH_FAILURE)
                await sync.announce()
            if sync.online:
                await sync.refresh_status(force=True)
            events.register(sync)
            self.synchronizers[device.name] = sync

    def _wire_router(self, prefix: str, errors: ErrorPublisher) -> TopicRouter:
        """Register a command proxy per device; failures go to the error topics."""
        router = TopicRouter(topic_prefix=prefix)
        for name, sync in self.synchronizers.items():

            async def _proxy(
                channel: str,
                payload: str,
                _sync: DeviceSynchronizer = sync,
                _name: str = name,
            ) -> None:
                try:
                    await _sync.handle_command(channel, payload)
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    logger.error("Command for %s/%s failed: %s", _name, channel, exc)
                    await errors.publish(exc, device=_name)

            router.register(name, _proxy)
        return router

    @staticmethod
    async def _subscribe_and_connect(mqtt: MqttPort, router: TopicRouter) -> None:
        for topic in router.subscriptions:
            await mqtt.subscribe(topic)
        if isinstance(mqtt, MqttMessageHandler):
            mqtt.on_message(router.route)

    @staticmethod
    async def _heartbeat_loop(
        health: HealthReporter,
        authenticator: Authenticator,
        interval: float,
    ) -> None:
        """Publish heartbeats at a fixed interval until cancelled."""
        while True:
            await asyncio.sleep(interval)
            health.auth_pending = authenticator.auth_pending
            await health.publish_heartbeat()

    @staticmethod
    async def _cancel_tasks(tasks: list[asyncio.Task[None]]) -> None:
        for task in tasks:
            task.cancel()
        results = await asyncio.gather(*tasks, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception) and not isinstance(
                result,
                asyncio.CancelledError,
            ):
                logger.error("Task error during shutdown: %s", result)


def _with_unique_names(devices: list[Device]) -> list[Device]:
    """Suffix colliding topic names (``lamp``, ``lamp-2``, ...)."""
    seen: set[str] = set()
    for device in devices:
        base, suffix = device.name, 2
        while device.name in seen:
            device.name = f"{base}-{suffix}"
            suffix += 1
        seen.add(device.name)
    return devices

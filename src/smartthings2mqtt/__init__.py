"""smartthings2mqtt.

Bridges SmartThings cloud devices to MQTT: capability resolution into
adapters, per-device status/command synchronization, OAuth token
upkeep and crash-loop recovery.
"""

from importlib.metadata import PackageNotFoundError, version

from smartthings2mqtt._adapter import Adapter, AdapterBinding, SensorAdapter
from smartthings2mqtt._api import DeviceApi, DiscoveryApi, SmartThingsApi, SmartThingsPort
from smartthings2mqtt._app import Bridge, DeviceListing
from smartthings2mqtt._clock import ClockPort, SystemClock
from smartthings2mqtt._context import DeviceContext
from smartthings2mqtt._crash_loop import CrashEntry, CrashKind, CrashLoopManager, CrashRecord
from smartthings2mqtt._discovery import discover_devices, with_retry
from smartthings2mqtt._errors import (
    ApiError,
    AuthenticationRequired,
    AuthError,
    BridgeError,
    CommandFailure,
    CrashLoopDetected,
    DeviceUnreachableError,
    ErrorPayload,
    ErrorPublisher,
    InvalidCommandError,
    NetworkError,
    StatusFailure,
    UnauthorizedError,
    build_error_payload,
)
from smartthings2mqtt._events import EventRouter
from smartthings2mqtt._health import (
    DeviceStatus,
    HealthReporter,
    HeartbeatPayload,
    build_will_config,
)
from smartthings2mqtt._logging import JsonFormatter, SecretRedactingFilter, configure_logging
from smartthings2mqtt._models import Command, Component, Device, DeviceEvent, StatusSnapshot
from smartthings2mqtt._mqtt import (
    MessageCallback,
    MockMqttClient,
    MqttClient,
    MqttLifecycle,
    MqttMessageHandler,
    MqttPort,
    NullMqttClient,
    WillConfig,
)
from smartthings2mqtt._oauth import Authenticator, OAuthClient
from smartthings2mqtt._resolver import CapabilityResolver
from smartthings2mqtt._router import TopicRouter
from smartthings2mqtt._settings import (
    CrashLoopSettings,
    DiscoverySettings,
    FeatureSettings,
    LoggingSettings,
    MqttSettings,
    PollingSettings,
    Settings,
    SmartThingsSettings,
    TokenSettings,
)
from smartthings2mqtt._store import JsonFileStore
from smartthings2mqtt._synchronizer import DeviceSynchronizer
from smartthings2mqtt._tokens import TokenGrant, TokenRecord, TokenStore
from smartthings2mqtt._webhook import WebhookServer, build_webhook_app

try:
    __version__ = version("smartthings2mqtt")
except PackageNotFoundError:
    # Running from a source tree without installed metadata
    __version__ = "0.0.0+unknown"

__all__ = [
    # Version
    "__version__",
    # Bridge
    "Bridge",
    "DeviceListing",
    # Adapters and resolution
    "Adapter",
    "AdapterBinding",
    "CapabilityResolver",
    "SensorAdapter",
    # Synchronization and events
    "DeviceContext",
    "DeviceSynchronizer",
    "EventRouter",
    # Model
    "Command",
    "Component",
    "Device",
    "DeviceEvent",
    "StatusSnapshot",
    # Remote API
    "DeviceApi",
    "DiscoveryApi",
    "SmartThingsApi",
    "SmartThingsPort",
    "discover_devices",
    "with_retry",
    # Auth and persistence
    "Authenticator",
    "CrashEntry",
    "CrashKind",
    "CrashLoopManager",
    "CrashRecord",
    "JsonFileStore",
    "OAuthClient",
    "TokenGrant",
    "TokenRecord",
    "TokenStore",
    # Inbound listener
    "WebhookServer",
    "build_webhook_app",
    # Clock
    "ClockPort",
    "SystemClock",
    # Logging
    "JsonFormatter",
    "SecretRedactingFilter",
    "configure_logging",
    # MQTT
    "MessageCallback",
    "MockMqttClient",
    "MqttClient",
    "MqttLifecycle",
    "MqttMessageHandler",
    "MqttPort",
    "NullMqttClient",
    "TopicRouter",
    "WillConfig",
    # Errors
    "ApiError",
    "AuthError",
    "AuthenticationRequired",
    "BridgeError",
    "CommandFailure",
    "CrashLoopDetected",
    "DeviceUnreachableError",
    "ErrorPayload",
    "ErrorPublisher",
    "InvalidCommandError",
    "NetworkError",
    "StatusFailure",
    "UnauthorizedError",
    "build_error_payload",
    # Health
    "DeviceStatus",
    "HealthReporter",
    "HeartbeatPayload",
    "build_will_config",
    # Settings
    "CrashLoopSettings",
    "DiscoverySettings",
    "FeatureSettings",
    "LoggingSettings",
    "MqttSettings",
    "PollingSettings",
    "Settings",
    "SmartThingsSettings",
    "TokenSettings",
]

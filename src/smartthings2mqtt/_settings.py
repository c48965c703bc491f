"""Application configuration via pydantic-settings.

Configuration is loaded from environment variables and/or a ``.env``
file.  Every variable carries the ``ST2MQTT_`` prefix and nested models
use ``__`` as the delimiter, e.g. ``ST2MQTT_MQTT__HOST=broker.local`` or
``ST2MQTT_SMARTTHINGS__CLIENT_ID=...``.

Sections:

* **MQTT**: broker connection and topic layout.
* **Logging**: level, format, optional file sink, rotation.
* **SmartThings**: API endpoints, OAuth client credentials, callback
  listener and one-time bootstrap tokens.
* **Polling**: per-device synchronizer timing and failure thresholds.
* **Tokens**: refresh margin and monitor cadence.
* **Crash loop**: size of the rolling failure window.
* **Features**: gates for the device-type heuristics of the resolver.
* **Discovery**: ignore lists and startup retry policy.

All durations are in **seconds**.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Literal

from pydantic import (
    BaseModel,
    Field,
    SecretStr,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

# -------------------------------------------------------------------
# Sub-models (BaseModel, not BaseSettings; nested via composition)
# -------------------------------------------------------------------


class MqttSettings(BaseModel):
    """MQTT broker connection and topic configuration.

    Environment variables (with ``__`` nesting)::

        ST2MQTT_MQTT__HOST=broker.local
        ST2MQTT_MQTT__PORT=1883
        ST2MQTT_MQTT__TOPIC_PREFIX=smartthings
    """

    host: str = Field(
        default="localhost",
        description="MQTT broker hostname or IP address.",
    )
    port: Annotated[int, Field(ge=1, le=65535)] = Field(
        default=1883,
        description="MQTT broker port.",
    )
    username: str | None = Field(
        default=None,
        description="MQTT authentication username (optional).",
    )
    password: SecretStr | None = Field(
        default=None,
        description="MQTT authentication password (optional).",
    )
    client_id: str = Field(
        default="",
        description=(
            "MQTT client identifier. When empty, the bridge generates "
            "'smartthings2mqtt-{hex8}' at startup."
        ),
    )
    qos: Annotated[int, Field(ge=0, le=2)] = Field(
        default=1,
        description="QoS used for command-topic subscriptions.",
    )
    reconnect_interval: Annotated[float, Field(gt=0)] = Field(
        default=5.0,
        description=(
            "Initial seconds to wait before reconnecting after "
            "connection loss.  Doubles on each consecutive failure "
            "up to ``reconnect_max_interval``."
        ),
    )
    reconnect_max_interval: Annotated[float, Field(gt=0)] = Field(
        default=300.0,
        description="Upper bound (seconds) for the reconnect backoff.",
    )
    topic_prefix: str = Field(
        default="smartthings",
        description="Root prefix for all MQTT topics.",
    )


class LoggingSettings(BaseModel):
    """Logging configuration.

    ``format="json"`` emits one JSON object per line for log
    aggregators; ``format="text"`` is meant for a terminal.  When
    ``file`` is set, logs are also written to a size-rotated file.
    """

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Root log level.",
    )
    format: Literal["json", "text"] = Field(
        default="json",
        description="Log output format ('json' or 'text').",
    )
    file: str | None = Field(
        default=None,
        description="Optional log file path. ``None`` means stderr only.",
    )
    max_file_size_mb: Annotated[int, Field(ge=1)] = Field(
        default=10,
        description="Maximum log file size in megabytes before rotation.",
    )
    backup_count: Annotated[int, Field(ge=0)] = Field(
        default=3,
        description="Number of rotated log files to keep.",
    )


class SmartThingsSettings(BaseModel):
    """SmartThings API endpoints and OAuth client configuration.

    ``oauth_access_token`` / ``oauth_refresh_token`` are one-time
    bootstrap credentials (e.g. produced by an out-of-band
    authorization exchange).  They are only read when no token file
    exists yet; after that the persisted token pair wins.

    ``server_url`` is the public URL that SmartThings redirects the
    browser to after authorization (``{server_url}/oauth/callback``).
    Setting it starts the local callback listener on ``webhook_port``.

    ``webhook_token`` switches every device into event-push mode: the
    listener accepts pushed events bearing this token and polling is
    disabled.
    """

    base_url: str = Field(
        default="https://api.smartthings.com/v1",
        description="Base URL of the SmartThings REST API.",
    )
    token_url: str = Field(
        default="https://api.smartthings.com/oauth/token",
        description="OAuth token endpoint.",
    )
    authorize_url: str = Field(
        default="https://api.smartthings.com/oauth/authorize",
        description="OAuth authorization endpoint.",
    )
    client_id: str = Field(
        default="",
        description="OAuth client identifier of the SmartApp.",
    )
    client_secret: SecretStr = Field(
        default=SecretStr(""),
        description="OAuth client secret of the SmartApp.",
    )
    scopes: str = Field(
        default="r:devices:* x:devices:* r:locations:*",
        description="Space-separated OAuth scopes requested.",
    )
    server_url: str | None = Field(
        default=None,
        description="Public base URL used to build the OAuth redirect URI.",
    )
    webhook_port: Annotated[int, Field(ge=1, le=65535)] = Field(
        default=3000,
        description="Port of the local callback/event listener.",
    )
    webhook_token: SecretStr | None = Field(
        default=None,
        description="Bearer token expected on pushed events (enables push mode).",
    )
    oauth_access_token: SecretStr | None = Field(
        default=None,
        description="Bootstrap access token (used only without a token file).",
    )
    oauth_refresh_token: SecretStr | None = Field(
        default=None,
        description="Bootstrap refresh token (used only without a token file).",
    )
    request_timeout: Annotated[float, Field(gt=0)] = Field(
        default=30.0,
        description="Total timeout for a single HTTP request.",
    )

    @property
    def redirect_uri(self) -> str | None:
        """OAuth redirect URI derived from ``server_url``, if configured."""
        if not self.server_url or not self.server_url.strip():
            return None
        base = self.server_url.strip()
        if not base.endswith("/"):
            base += "/"
        return base + "oauth/callback"


class PollingSettings(BaseModel):
    """Per-device synchronizer timing.

    Devices whose adapters are all sensors poll at ``sensor_seconds``;
    any device with a controllable adapter polls at
    ``control_seconds``.  A value of ``0`` disables polling for that
    class.
    """

    sensor_seconds: Annotated[float, Field(ge=0)] = Field(
        default=5.0,
        description="Polling interval for sensor-only devices.",
    )
    control_seconds: Annotated[float, Field(ge=0)] = Field(
        default=10.0,
        description="Polling interval for switches, lights and other controls.",
    )
    staleness_seconds: Annotated[float, Field(ge=0)] = Field(
        default=5.0,
        description="Age below which a cached status snapshot is reused.",
    )
    failure_threshold: Annotated[int, Field(ge=1)] = Field(
        default=5,
        description="Consecutive status failures before a device goes offline.",
    )
    offline_cooldown_seconds: Annotated[float, Field(ge=0)] = Field(
        default=600.0,
        description="Time offline before health probes may bring a device back.",
    )
    command_settle_seconds: Annotated[float, Field(ge=0)] = Field(
        default=20.0,
        description="Polls are skipped for this long after a command completes.",
    )
    jitter_seconds: Annotated[float, Field(ge=0)] = Field(
        default=1.0,
        description="Upper bound of the random delay added to each poll interval.",
    )


class TokenSettings(BaseModel):
    """Access/refresh token lifecycle policy."""

    refresh_margin_seconds: Annotated[float, Field(ge=0)] = Field(
        default=300.0,
        description="Tokens are treated as expired this long before expiry.",
    )
    monitor_interval_seconds: Annotated[float, Field(gt=0)] = Field(
        default=60.0,
        description="Cadence of the proactive refresh monitor.",
    )
    refresh_token_lifetime_seconds: Annotated[float, Field(gt=0)] = Field(
        default=30 * 24 * 60 * 60,
        description="Refresh-token validity assumed after each exchange.",
    )
    bootstrap_lifetime_seconds: Annotated[float, Field(gt=0)] = Field(
        default=24 * 60 * 60,
        description="Access-token validity assumed for bootstrap credentials.",
    )


class CrashLoopSettings(BaseModel):
    """Rolling window for crash-loop detection ("N failures within W")."""

    max_crashes: Annotated[int, Field(ge=1)] = Field(
        default=3,
        description="Entries inside the window that constitute a crash loop.",
    )
    window_seconds: Annotated[float, Field(gt=0)] = Field(
        default=300.0,
        description="Length of the rolling window.",
    )


class FeatureSettings(BaseModel):
    """Gates for the device-type heuristics of the capability resolver."""

    television: bool = Field(
        default=True,
        description="Expose television-class devices through the TV adapter.",
    )
    remove_legacy_switch: bool = Field(
        default=False,
        description=(
            "Let the TV adapter own the 'switch' capability instead of "
            "keeping the legacy power switch service."
        ),
    )
    volume_slider: bool = Field(
        default=False,
        description="Expose TV volume as an auxiliary slider service.",
    )
    ac_display_light: bool = Field(
        default=False,
        description="Expose the air conditioner display light as a service.",
    )


class DiscoverySettings(BaseModel):
    """Device discovery filters and startup retry policy."""

    ignore_devices: list[str] = Field(
        default_factory=list,
        description="Device labels to skip (case-insensitive).",
    )
    ignore_locations: list[str] = Field(
        default_factory=list,
        description="Location names whose devices are skipped.",
    )
    max_retries: Annotated[int, Field(ge=1)] = Field(
        default=3,
        description="Attempts for the discovery call on network errors.",
    )
    base_delay_seconds: Annotated[float, Field(ge=0)] = Field(
        default=3.0,
        description="First retry delay; doubles on each further attempt.",
    )


# -------------------------------------------------------------------
# Root settings
# -------------------------------------------------------------------


class Settings(BaseSettings):
    """Root settings for the smartthings2mqtt bridge.

    Example ``.env``::

        ST2MQTT_MQTT__HOST=broker.local
        ST2MQTT_SMARTTHINGS__CLIENT_ID=abc
        ST2MQTT_SMARTTHINGS__CLIENT_SECRET=secret
        ST2MQTT_SMARTTHINGS__SERVER_URL=https://bridge.example.com
        ST2MQTT_FEATURES__VOLUME_SLIDER=true
        ST2MQTT_DISCOVERY__IGNORE_DEVICES=["Hallway Sensor"]
        ST2MQTT_LOGGING__FORMAT=text
    """

    model_config = SettingsConfigDict(
        env_prefix="ST2MQTT_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    mqtt: MqttSettings = Field(
        default_factory=MqttSettings,
        description="MQTT broker connection settings.",
    )
    logging: LoggingSettings = Field(
        default_factory=LoggingSettings,
        description="Logging configuration.",
    )
    smartthings: SmartThingsSettings = Field(
        default_factory=SmartThingsSettings,
        description="SmartThings API and OAuth configuration.",
    )
    polling: PollingSettings = Field(
        default_factory=PollingSettings,
        description="Per-device polling and health policy.",
    )
    tokens: TokenSettings = Field(
        default_factory=TokenSettings,
        description="Token refresh policy.",
    )
    crash_loop: CrashLoopSettings = Field(
        default_factory=CrashLoopSettings,
        description="Crash-loop detection window.",
    )
    features: FeatureSettings = Field(
        default_factory=FeatureSettings,
        description="Resolver heuristic feature gates.",
    )
    discovery: DiscoverySettings = Field(
        default_factory=DiscoverySettings,
        description="Discovery filters and retry policy.",
    )
    storage_dir: Path = Field(
        default=Path(".smartthings2mqtt"),
        description="Directory holding the token file and the crash window.",
    )
    heartbeat_interval: Annotated[float, Field(gt=0)] | None = Field(
        default=60.0,
        description="Seconds between bridge heartbeats (``None`` disables).",
    )

"""Error taxonomy and structured error publication.

Every failure the bridge can surface derives from :class:`BridgeError`.
The classes encode *how* a failure is handled, not just where it came
from:

- :class:`AuthError`: token exchange rejected; escalates to full
  re-authentication and is never silently retried.
- :class:`NetworkError`: transient connectivity; retried with backoff
  only at discovery time.
- :class:`ApiError` / :class:`UnauthorizedError`: the remote API
  rejected a request.
- :class:`CommandFailure` / :class:`DeviceUnreachableError`: a command
  batch failed; surfaced to the caller, the device stays online.
- :class:`StatusFailure`: counted toward the offline transition.
- :class:`CrashLoopDetected`: destructive recovery (token wipe).

Errors that reach the MQTT boundary are converted into JSON payloads
and published to::

    {prefix}/error              ← all errors (global, always published)
    {prefix}/{device}/error     ← per-device errors (when device is known)

Payload schema::

    {
        "error_type": "device_unreachable",
        "message": "Living Room Lamp is offline",
        "device": "living-room-lamp" | null,
        "timestamp": "2026-02-14T12:34:56+00:00",
        "details": {}
    }

Publication is fire-and-forget: failures are logged, never propagated.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime

from smartthings2mqtt._mqtt import MqttPort

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Exception taxonomy
# ---------------------------------------------------------------------------


class BridgeError(Exception):
    """Base class for all smartthings2mqtt errors."""


class AuthError(BridgeError):
    """An OAuth exchange (authorization code or refresh) was rejected."""


class AuthenticationRequired(AuthError):
    """No usable token and no way to complete authorization unattended."""


class NetworkError(BridgeError):
    """The remote API could not be reached (DNS, connect, timeout)."""


class ApiError(BridgeError):
    """The remote API answered with an error status."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class UnauthorizedError(ApiError):
    """HTTP 401 that survived one refresh-and-retry."""


class CommandFailure(BridgeError):
    """A command batch could not be delivered."""


class DeviceUnreachableError(CommandFailure):
    """The device is offline; the command was not sent."""


class StatusFailure(BridgeError):
    """A status fetch failed."""


class CrashLoopDetected(BridgeError):
    """Repeated process-level failures inside the crash window."""


class InvalidCommandError(BridgeError):
    """An inbound MQTT command payload could not be interpreted."""


ERROR_TYPES: dict[type[Exception], str] = {
    AuthError: "auth_error",
    AuthenticationRequired: "auth_required",
    NetworkError: "network_error",
    ApiError: "api_error",
    UnauthorizedError: "unauthorized",
    CommandFailure: "command_failure",
    DeviceUnreachableError: "device_unreachable",
    StatusFailure: "status_failure",
    CrashLoopDetected: "crash_loop",
    InvalidCommandError: "invalid_command",
}
"""Default ``error_type`` strings for the bridge's own exceptions."""

# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ErrorPayload:
    """Immutable structured error payload."""

    error_type: str
    message: str
    device: str | None
    timestamp: str
    details: dict[str, object] = field(default_factory=dict)

    def to_json(self) -> str:
        """Serialise to a JSON string."""
        return json.dumps(asdict(self))


# ---------------------------------------------------------------------------
# Payload builder
# ---------------------------------------------------------------------------


def build_error_payload(
    error: Exception,
    *,
    error_type_map: dict[type[Exception], str] | None = None,
    device: str | None = None,
    details: dict[str, object] | None = None,
    clock: Callable[[], datetime] | None = None,
) -> ErrorPayload:
    """Convert an exception into a structured :class:`ErrorPayload`.

    The exception's MRO is walked so that subclasses inherit the type
    string of their nearest mapped ancestor (an unmapped
    ``DeviceUnreachableError`` subclass still reports
    ``"device_unreachable"``).  Unmapped exceptions fall back to
    ``"error"``.

    Args:
        error: The exception to convert.
        error_type_map: Mapping from exception types to ``error_type``
            strings.  Defaults to :data:`ERROR_TYPES`.
        device: Optional device name to include in the payload.
        details: Optional dict of additional context.
        clock: Optional callable returning a :class:`~datetime.datetime`.
            Defaults to ``datetime.now(UTC)``.
    """
    resolved_map = ERROR_TYPES if error_type_map is None else error_type_map
    error_type = "error"
    for klass in type(error).__mro__:
        if klass in resolved_map:
            error_type = resolved_map[klass]
            break
    resolved_details = dict(details or {})
    status = getattr(error, "status", None)
    if isinstance(status, int):
        resolved_details.setdefault("status", status)
    now = clock() if clock is not None else datetime.now(UTC)
    return ErrorPayload(
        error_type=error_type,
        message=str(error),
        device=device,
        timestamp=now.isoformat(),
        details=resolved_details,
    )


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


@dataclass
class ErrorPublisher:
    """Publishes structured error payloads to MQTT.

    Errors during publication are logged but never propagated: a
    command handler must not crash because an error *report* failed.

    Args:
        mqtt: MQTT port used for publishing.
        topic_prefix: Base prefix for error topics (e.g. ``"smartthings"``).
        error_type_map: Mapping from exception types to type strings.
        clock: Optional callable returning a :class:`~datetime.datetime`
            for deterministic testing.
    """

    mqtt: MqttPort
    topic_prefix: str
    error_type_map: dict[type[Exception], str] = field(
        default_factory=lambda: dict(ERROR_TYPES),
    )
    clock: Callable[[], datetime] | None = field(default=None, repr=False)

    async def publish(
        self,
        error: Exception,
        *,
        device: str | None = None,
    ) -> None:
        """Build an error payload and publish it to MQTT.

        Always publishes to ``{topic_prefix}/error``.  When *device* is
        provided, also publishes to ``{topic_prefix}/{device}/error``.
        """
        try:
            payload = build_error_payload(
                error,
                error_type_map=self.error_type_map,
                device=device,
                clock=self.clock,
            )
            payload_json = payload.to_json()
        except Exception:
            logger.exception(
                "Failed to build error payload for %r (device=%s)",
                error,
                device,
            )
            return

        logger.warning(
            "Publishing error: %s (type=%s, device=%s)",
            payload.message,
            payload.error_type,
            device,
        )
        await self._safe_publish(f"{self.topic_prefix}/error", payload_json)
        if device is not None:
            await self._safe_publish(
                f"{self.topic_prefix}/{device}/error",
                payload_json,
            )

    async def _safe_publish(self, topic: str, payload: str) -> None:
        """Publish to MQTT, logging (not raising) on failure."""
        try:
            await self.mqtt.publish(topic, payload, retain=False, qos=1)
        except Exception:
            logger.exception("Failed to publish error to %s", topic)

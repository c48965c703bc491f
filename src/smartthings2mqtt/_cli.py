"""Command-line entry point (Typer-based).

:func:`build_cli` wraps a :class:`~smartthings2mqtt._app.Bridge` in a
Typer app that parses ``--version``, ``--log-level``, ``--log-format``,
``--env-file`` and ``--list-devices``, builds :class:`Settings` and
hands off to the bridge's async lifecycle.

Exit codes::

    0  clean shutdown
    1  configuration error
    3  runtime error
    4  authorization required
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import sys
from collections.abc import Callable
from typing import TYPE_CHECKING, Annotated, TypeAlias, get_args

import typer
from pydantic import ValidationError

from smartthings2mqtt._errors import AuthenticationRequired
from smartthings2mqtt._settings import LoggingSettings, Settings

if TYPE_CHECKING:
    from smartthings2mqtt._app import Bridge, DeviceListing

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Exit codes
# ---------------------------------------------------------------------------

EXIT_OK = 0
EXIT_CONFIG_ERROR = 1
EXIT_RUNTIME_ERROR = 3
EXIT_AUTH_REQUIRED = 4

# ---------------------------------------------------------------------------
# Allowed values (extracted from LoggingSettings Literal types)
# ---------------------------------------------------------------------------

_VALID_LOG_LEVELS: tuple[str, ...] = get_args(
    LoggingSettings.model_fields["level"].annotation,
)
_VALID_LOG_FORMATS: tuple[str, ...] = get_args(
    LoggingSettings.model_fields["format"].annotation,
)

SettingsFactory: TypeAlias = Callable[[str], Settings]


def _load_settings(env_file: str) -> Settings:
    return Settings(_env_file=env_file)  # type: ignore[call-arg]


def format_listing(listing: list[DeviceListing]) -> str:
    """Human-readable device/adapter table for ``--list-devices``."""
    if not listing:
        return "No supported devices found."
    lines: list[str] = []
    for entry in listing:
        device = entry.device
        lines.append(f"{device.label} [{device.name}] ({device.device_id})")
        for binding in entry.bindings:
            caps = ", ".join(binding.capabilities)
            lines.append(f"  {binding.component_id}: {binding.kind} ({caps})")
    return "\n".join(lines)


def build_cli(
    bridge: Bridge,
    *,
    settings_factory: SettingsFactory = _load_settings,
) -> typer.Typer:
    """Construct the Typer CLI for *bridge*.

    *settings_factory* receives the ``--env-file`` path; tests pass one
    that ignores the environment.
    """
    cli = typer.Typer(
        help=f"{bridge.name} v{bridge.version}: SmartThings devices over MQTT",
    )

    @cli.callback(invoke_without_command=True)
    def main(
        version_flag: Annotated[
            bool | None,
            typer.Option("--version", is_eager=True, help="Show version and exit."),
        ] = None,
        log_level: Annotated[
            str | None,
            typer.Option("--log-level", help="Override log level."),
        ] = None,
        log_format: Annotated[
            str | None,
            typer.Option("--log-format", help="Override log format."),
        ] = None,
        env_file: Annotated[
            str,
            typer.Option("--env-file", help="Path to .env file."),
        ] = ".env",
        list_devices: Annotated[
            bool,
            typer.Option(
                "--list-devices",
                help="Print discovered devices and their adapters, then exit.",
            ),
        ] = False,
    ) -> None:
        if version_flag:
            typer.echo(f"{bridge.name} v{bridge.version}")
            raise typer.Exit()

        if log_level is not None and log_level.upper() not in _VALID_LOG_LEVELS:
            raise typer.BadParameter(
                f"Invalid log level '{log_level}'. "
                f"Choose from: {', '.join(_VALID_LOG_LEVELS)}",
                param_hint="'--log-level'",
            )
        if log_format is not None and log_format.lower() not in _VALID_LOG_FORMATS:
            raise typer.BadParameter(
                f"Invalid log format '{log_format}'. "
                f"Choose from: {', '.join(_VALID_LOG_FORMATS)}",
                param_hint="'--log-format'",
            )

        try:
            settings = settings_factory(env_file)
        except ValidationError as exc:
            logger.error("Configuration error: %s", exc)
            raise SystemExit(EXIT_CONFIG_ERROR) from exc

        overrides: dict[str, str] = {}
        if log_level is not None:
            overrides["level"] = log_level.upper()
        if log_format is not None:
            overrides["format"] = log_format.lower()
        if overrides:
            settings.logging = settings.logging.model_copy(update=overrides)

        try:
            if list_devices:
                listing = asyncio.run(bridge.list_devices(settings))
                typer.echo(format_listing(listing))
                return
            with contextlib.suppress(KeyboardInterrupt):
                asyncio.run(bridge.run_async(settings))
        except AuthenticationRequired as exc:
            logger.error("%s", exc)
            sys.exit(EXIT_AUTH_REQUIRED)
        except Exception as exc:
            logger.error("Runtime error: %s", exc)
            sys.exit(EXIT_RUNTIME_ERROR)

    return cli


def main() -> None:
    """Console-script entry point."""
    from smartthings2mqtt import __version__
    from smartthings2mqtt._app import Bridge

    build_cli(Bridge(version=__version__))(standalone_mode=True)

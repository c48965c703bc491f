"""Structured JSON log formatter, secret redaction and logging setup.

The bridge runs unattended inside containers, so its default output is
one JSON object per record (NDJSON).  Every line carries the
``service`` name and ``version`` for correlation in log aggregators.

OAuth credentials travel through this process constantly: bearer
headers, token-endpoint responses, callback query strings.  A
:class:`SecretRedactingFilter` is attached to every handler installed
by :func:`configure_logging` and masks those values before any
formatter sees the message.
"""

from __future__ import annotations

import json
import logging
import re
import sys
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from typing import Any

from smartthings2mqtt._settings import LoggingSettings

_MB = 1024 * 1024

_TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

REDACTED = "***"

_SECRET_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"(?i)(bearer\s+)[A-Za-z0-9\-._~+/]+=*"),
    re.compile(
        r"(?i)([\"']?(?:access_token|refresh_token|client_secret|code)"
        r"[\"']?\s*[:=]\s*[\"']?)[^\"'&\s,}]+",
    ),
)


def redact(text: str) -> str:
    """Mask bearer tokens and OAuth secret values inside *text*."""
    for pattern in _SECRET_PATTERNS:
        text = pattern.sub(lambda m: m.group(1) + REDACTED, text)
    return text


class SecretRedactingFilter(logging.Filter):
    """Rewrite a record's message so no credential reaches a handler.

    The message is rendered once (``record.getMessage()``), redacted,
    and stored back with ``args`` cleared.  Records are never dropped.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        cleaned = redact(message)
        if cleaned != message:
            record.msg = cleaned
            record.args = None
        return True


class JsonFormatter(logging.Formatter):
    """Emit log records as single-line JSON objects.

    Fields: ``timestamp`` (ISO 8601, UTC), ``level``, ``logger``,
    ``message``, ``service``, ``version`` (omitted when empty), and
    ``exception`` / ``stack_info`` when present.
    """

    def __init__(
        self,
        *,
        service: str = "",
        version: str = "",
    ) -> None:
        super().__init__()
        self._service = service
        self._version = version

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self._service,
        }

        if self._version:
            entry["version"] = self._version

        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = redact(self.formatException(record.exc_info))

        if record.stack_info:
            entry["stack_info"] = self.formatStack(record.stack_info)

        return json.dumps(entry, default=str)


def configure_logging(
    settings: LoggingSettings,
    *,
    service: str,
    version: str = "",
) -> None:
    """Configure the root logger from *settings*.

    Existing root handlers are removed.  A ``stderr`` stream handler is
    always installed; ``settings.file`` adds a size-rotated file
    handler (``max_file_size_mb`` / ``backup_count``).  Both handlers
    carry a :class:`SecretRedactingFilter`.
    """
    root = logging.getLogger()

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    if settings.format == "json":
        formatter: logging.Formatter = JsonFormatter(service=service, version=version)
    else:
        formatter = logging.Formatter(_TEXT_FORMAT)

    redactor = SecretRedactingFilter()

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    stream_handler.addFilter(redactor)
    root.addHandler(stream_handler)

    if settings.file is not None:
        file_handler = RotatingFileHandler(
            settings.file,
            maxBytes=settings.max_file_size_mb * _MB,
            backupCount=settings.backup_count,
        )
        file_handler.setFormatter(formatter)
        file_handler.addFilter(redactor)
        root.addHandler(file_handler)

    root.setLevel(settings.level)

    # aiohttp's access log repeats every webhook request at INFO.
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)

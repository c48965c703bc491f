"""Unit tests for smartthings2mqtt._logging — formatter, redaction and setup.

Test Techniques Used:
    - Specification-based Testing: JsonFormatter output schema
    - Security Testing: credentials never reach a handler
    - State Inspection: root logger handlers and level after configure
    - Fixture Isolation: save/restore root logger state
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Iterator
from logging.handlers import RotatingFileHandler
from pathlib import Path

import pytest

from smartthings2mqtt._logging import (
    REDACTED,
    JsonFormatter,
    SecretRedactingFilter,
    configure_logging,
    redact,
)
from smartthings2mqtt._settings import LoggingSettings


@pytest.fixture
def _restore_root_logger() -> Iterator[None]:
    """Undo ``configure_logging()`` so later tests see the original root."""
    root = logging.getLogger()
    original_handlers = root.handlers[:]
    original_level = root.level
    aiohttp_level = logging.getLogger("aiohttp.access").level
    yield
    for handler in root.handlers:
        if handler not in original_handlers:
            handler.close()
    root.handlers = original_handlers
    root.setLevel(original_level)
    logging.getLogger("aiohttp.access").setLevel(aiohttp_level)


def _record(msg: str, *args: object, level: int = logging.INFO) -> logging.LogRecord:
    return logging.LogRecord(
        name="smartthings2mqtt._tokens",
        level=level,
        pathname=__file__,
        lineno=1,
        msg=msg,
        args=args or None,
        exc_info=None,
    )


class TestRedact:
    """Technique: Security Testing."""

    @pytest.mark.parametrize(
        ("text", "secret"),
        [
            ("Authorization: Bearer abc.def-ghi", "abc.def-ghi"),
            ('{"access_token": "tok123", "expires_in": 10}', "tok123"),
            ("refresh_token=r-456&grant_type=refresh_token", "r-456"),
            ("client_secret: 's3cr3t'", "s3cr3t"),
            ("GET /oauth/callback?code=xyz789&state=1", "xyz789"),
        ],
    )
    def test_secret_is_masked(self, text: str, secret: str) -> None:
        cleaned = redact(text)
        assert secret not in cleaned
        assert REDACTED in cleaned

    def test_plain_text_untouched(self) -> None:
        text = "Discovered 3 supported device(s)"
        assert redact(text) == text

    def test_filter_rewrites_rendered_message(self) -> None:
        record = _record("Token response %s", '{"access_token": "abc"}')

        assert SecretRedactingFilter().filter(record) is True
        assert record.args is None
        assert "abc" not in record.getMessage()

    def test_filter_leaves_clean_records_alone(self) -> None:
        record = _record("Polling %s", "lamp")
        SecretRedactingFilter().filter(record)
        assert record.args == ("lamp",)


class TestJsonFormatter:
    """Technique: Specification-based Testing."""

    def test_schema(self) -> None:
        line = JsonFormatter(service="smartthings2mqtt", version="0.1.0").format(
            _record("hello %s", "world", level=logging.WARNING),
        )

        entry = json.loads(line)
        assert entry["message"] == "hello world"
        assert entry["level"] == "WARNING"
        assert entry["logger"] == "smartthings2mqtt._tokens"
        assert entry["service"] == "smartthings2mqtt"
        assert entry["version"] == "0.1.0"
        assert entry["timestamp"].endswith("+00:00")

    def test_version_omitted_when_empty(self) -> None:
        entry = json.loads(JsonFormatter(service="s").format(_record("x")))
        assert "version" not in entry

    def test_exception_is_redacted(self) -> None:
        try:
            raise RuntimeError("Bearer leaked-token")
        except RuntimeError:
            record = _record("failed")
            record.exc_info = sys.exc_info()

        entry = json.loads(JsonFormatter().format(record))
        assert "leaked-token" not in entry["exception"]
        assert "RuntimeError" in entry["exception"]


@pytest.mark.usefixtures("_restore_root_logger")
class TestConfigureLogging:
    """Technique: State Inspection."""

    def test_json_stream_handler(self) -> None:
        configure_logging(LoggingSettings(level="DEBUG"), service="smartthings2mqtt")

        root = logging.getLogger()
        [handler] = root.handlers
        assert isinstance(handler.formatter, JsonFormatter)
        assert any(isinstance(f, SecretRedactingFilter) for f in handler.filters)
        assert root.level == logging.DEBUG
        assert logging.getLogger("aiohttp.access").level == logging.WARNING

    def test_text_format(self) -> None:
        configure_logging(LoggingSettings(format="text"), service="s")

        [handler] = logging.getLogger().handlers
        assert not isinstance(handler.formatter, JsonFormatter)

    def test_replaces_existing_handlers(self) -> None:
        logging.getLogger().addHandler(logging.NullHandler())
        configure_logging(LoggingSettings(), service="s")
        assert len(logging.getLogger().handlers) == 1

    def test_rotating_file_handler(self, tmp_path: Path) -> None:
        log_file = tmp_path / "bridge.log"
        configure_logging(
            LoggingSettings(file=str(log_file), max_file_size_mb=2, backup_count=5),
            service="smartthings2mqtt",
        )

        handlers = logging.getLogger().handlers
        file_handlers = [h for h in handlers if isinstance(h, RotatingFileHandler)]
        assert len(file_handlers) == 1
        assert file_handlers[0].maxBytes == 2 * 1024 * 1024
        assert file_handlers[0].backupCount == 5

        logging.getLogger("smartthings2mqtt.test").warning("Bearer should-not-appear")
        file_handlers[0].flush()
        content = log_file.read_text(encoding="utf-8")
        assert "should-not-appear" not in content
        assert REDACTED in content

"""Crash-loop detection and destructive recovery.

Process-level failures (startup discovery failing, the initial health
probe failing) are recorded in a rolling window persisted next to the
token file, so the window survives the restarts that a supervisor
(systemd, Docker ``restart: always``) performs after each crash.

When the window fills up (``max_crashes`` entries within
``window_seconds``) the stored credentials are considered poisoned:
the token record is wiped and a fresh authorization flow is started.
This is distinct from a device going offline, which is per-device and
never touches credentials.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Collection
from enum import StrEnum

from pydantic import BaseModel, Field

from smartthings2mqtt._clock import ClockPort
from smartthings2mqtt._settings import CrashLoopSettings
from smartthings2mqtt._store import JsonFileStore
from smartthings2mqtt._tokens import TokenStore

logger = logging.getLogger(__name__)

CRASH_FILE_NAME = "crash_loop.json"


class CrashKind(StrEnum):
    """What failed; entries may be filtered by kind during detection."""

    API_INIT_FAILURE = "API_INIT_FAILURE"
    DEVICE_HEALTH_FAILURE = "DEVICE_HEALTH_FAILURE"
    AUTH_FAILURE = "AUTH_FAILURE"
    UNKNOWN = "UNKNOWN"


class CrashEntry(BaseModel):
    timestamp: float
    kind: CrashKind = CrashKind.UNKNOWN


class CrashRecord(BaseModel):
    """Persisted rolling window, oldest entry first."""

    entries: list[CrashEntry] = Field(default_factory=list)


class CrashLoopManager:
    """Records potential crashes and decides when to wipe credentials."""

    def __init__(
        self,
        store: JsonFileStore[CrashRecord],
        *,
        settings: CrashLoopSettings,
        clock: ClockPort,
    ) -> None:
        self._store = store
        self._settings = settings
        self._clock = clock
        self._record = store.load() or CrashRecord()

    @property
    def entries(self) -> list[CrashEntry]:
        return list(self._record.entries)

    def record_potential_crash(self, kind: CrashKind = CrashKind.UNKNOWN) -> None:
        """Append an entry, prune the window and persist it."""
        self._record.entries.append(CrashEntry(timestamp=self._clock.wall(), kind=kind))
        self._prune(self._settings)
        logger.warning(
            "Recorded potential crash (%s); %d in the last %.0fs",
            kind,
            len(self._record.entries),
            self._settings.window_seconds,
        )
        self._save()

    def is_crash_loop_detected(
        self,
        config: CrashLoopSettings | None = None,
        kinds: Collection[CrashKind] | None = None,
    ) -> bool:
        """``True`` iff the pruned window holds at least ``max_crashes`` entries."""
        settings = config or self._settings
        self._prune(settings)
        entries = self._record.entries
        if kinds is not None:
            entries = [e for e in entries if e.kind in kinds]
        detected = len(entries) >= settings.max_crashes
        if detected:
            logger.warning(
                "Crash loop detected: %d failures within %.0fs",
                len(entries),
                settings.window_seconds,
            )
        return detected

    def reset(self) -> None:
        """Empty the window."""
        self._record = CrashRecord()
        self._save()

    def recover(self, tokens: TokenStore, reauthenticate: Callable[[], object]) -> None:
        """Wipe the token record, reset the window and start re-authentication.

        The authorization flow is started even when wiping fails.
        """
        logger.warning("Recovering from crash loop: clearing tokens and re-authenticating")
        try:
            tokens.clear()
        except OSError:
            logger.exception("Could not clear stored tokens during crash-loop recovery")
        self.reset()
        reauthenticate()

    def check_and_recover(
        self,
        tokens: TokenStore,
        reauthenticate: Callable[[], object],
    ) -> bool:
        """Detect a crash loop and recover.  ``True`` when recovery ran."""
        if not self.is_crash_loop_detected():
            return False
        self.recover(tokens, reauthenticate)
        return True

    def _prune(self, settings: CrashLoopSettings) -> None:
        cutoff = self._clock.wall() - settings.window_seconds
        self._record.entries = [e for e in self._record.entries if e.timestamp >= cutoff]

    def _save(self) -> None:
        try:
            self._store.save(self._record)
        except OSError:
            logger.exception("Could not persist crash window to %s", self._store.path)

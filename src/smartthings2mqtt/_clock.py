"""Clock port and system adapter.

Provides ClockPort (Protocol) and SystemClock.  The bridge needs two
notions of time:

- **Monotonic** (``now()``) for in-process durations: status staleness,
  command settle windows, offline cool-downs.  Immune to NTP steps.
- **Wall clock** (``wall()``) for anything persisted across restarts:
  token expiry instants and crash-loop timestamps.  Monotonic values are
  meaningless once the process exits, so they must never reach disk.

Tests inject a :class:`~smartthings2mqtt.testing.FakeClock` that drives
both from a single controllable value.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from typing import Protocol, runtime_checkable


@runtime_checkable
class ClockPort(Protocol):
    """Clock used by synchronizers, the token store and the crash window."""

    def now(self) -> float:
        """Return monotonic time in seconds (arbitrary epoch)."""
        ...

    def wall(self) -> float:
        """Return wall-clock time in seconds since the Unix epoch."""
        ...


class SystemClock:
    """Production clock wrapping ``time.monotonic()`` and ``time.time()``.

    Satisfies :class:`ClockPort` via structural subtyping (PEP 544).
    """

    def now(self) -> float:
        """Return monotonic time in seconds."""
        return time.monotonic()

    def wall(self) -> float:
        """Return seconds since the Unix epoch."""
        return time.time()


async def sleep_or_shutdown(seconds: float, shutdown_event: asyncio.Event) -> bool:
    """Sleep for *seconds*; return ``True`` early if shutdown was requested."""
    with contextlib.suppress(TimeoutError):
        await asyncio.wait_for(shutdown_event.wait(), timeout=seconds)
    return shutdown_event.is_set()

"""Deterministic fake clock for testing.

Satisfies ClockPort (PEP 544 structural subtyping) with a manually
controllable time value with no real time dependency.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class FakeClock:
    """Test double for ClockPort.

    Both ``now()`` and ``wall()`` return ``_time``, so advancing the
    clock moves monotonic durations and persisted expiry instants
    together.

    Example::

        clock = FakeClock(1_700_000_000.0)
        clock.advance(300)
        assert clock.wall() == 1_700_000_300.0
    """

    _time: float = 0.0

    def now(self) -> float:
        """Return the manually set time value."""
        return self._time

    def wall(self) -> float:
        """Return the manually set time value."""
        return self._time

    def advance(self, seconds: float) -> None:
        """Move the clock forward by *seconds*."""
        self._time += seconds

"""Dwell-based stability detection.

A device must report "stable and aligned with gravity" continuously for
the dwell duration before a placement step is accepted.  Any unstable
observation clears the streak; there is no partial credit.
"""

from __future__ import annotations

DEFAULT_DWELL_MS = 1000.0


class StabilityDetector:
    """Track how long a boolean stability signal has held.

    Parameters
    ----------
    dwell_ms : float
        Minimum continuous stable duration in milliseconds.
    """

    def __init__(self, dwell_ms: float = DEFAULT_DWELL_MS) -> None:
        if dwell_ms < 0:
            raise ValueError(f"dwell_ms must be >= 0, got {dwell_ms}")
        self.dwell_ms = float(dwell_ms)
        self._was_stable = False
        self._stable_since = 0.0

    @property
    def is_stable(self) -> bool:
        return self._was_stable

    @property
    def stable_since(self) -> float | None:
        """Timestamp (ms) the current streak began, ``None`` when unstable."""
        return self._stable_since if self._was_stable else None

    def reset(self) -> None:
        self._was_stable = False
        self._stable_since = 0.0

    def observe(self, is_stable_now: bool, now: float) -> bool:
        """Feed one observation; return ``True`` once the dwell is reached.

        Parameters
        ----------
        is_stable_now : bool
            Current stability signal.
        now : float
            Monotonic timestamp in milliseconds.
        """
        if not is_stable_now:
            self._was_stable = False
            return False

        if not self._was_stable:
            self._was_stable = True
            self._stable_since = now

        return (now - self._stable_since) >= self.dwell_ms

    def stable_duration_ms(self, now: float) -> float:
        if not self._was_stable:
            return 0.0
        return max(0.0, now - self._stable_since)

    def progress(self, now: float) -> float:
        """Fraction of the dwell completed, clamped to [0, 1]."""
        if self.dwell_ms <= 0:
            return 1.0 if self._was_stable else 0.0
        return min(1.0, self.stable_duration_ms(now) / self.dwell_ms)

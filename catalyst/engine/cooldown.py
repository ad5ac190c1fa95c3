"""
catalyst.engine.cooldown — Trigger cooldowns & the chaos meter
===============================================================

:class:`CooldownTracker` remembers when each trigger category last fired
and refuses a new trigger until the window has elapsed.

:class:`ChaosMeter` is the server-wide "temperature": message scores pile
into it, and it bleeds off linearly over time (a fixed number of points per
minute) instead of resetting, so a steady drizzle of low-level activity
never adds up to a surge on its own.

Both take explicit ``now`` timestamps (seconds, ``time.time()`` scale) so
tests can drive them without sleeping.
"""

from __future__ import annotations

import time

CHAOS_MAX = 100.0


class CooldownTracker:
    """Per-category cooldown gate."""

    def __init__(self, window_seconds: float) -> None:
        self.window_seconds = window_seconds
        self._last: dict[str, float] = {}

    def ready(self, category: str, now: float | None = None) -> bool:
        return self.remaining(category, now) <= 0

    def remaining(self, category: str, now: float | None = None) -> float:
        """Seconds until *category* may fire again (``0`` when ready)."""
        last = self._last.get(category)
        if last is None:
            return 0.0
        now = time.time() if now is None else now
        return max(0.0, last + self.window_seconds - now)

    def mark(self, category: str, now: float | None = None) -> None:
        self._last[category] = time.time() if now is None else now

    def prune(self, now: float | None = None) -> int:
        """Forget categories whose window has passed.  Returns the count."""
        now = time.time() if now is None else now
        expired = [k for k, t in self._last.items() if t + self.window_seconds <= now]
        for k in expired:
            del self._last[k]
        return len(expired)

    def clear(self) -> None:
        self._last.clear()


class ChaosMeter:
    """Accumulating, linearly decaying level in ``[0, 100]``."""

    def __init__(self, decay_per_minute: float, *, level: float = 0.0, now: float | None = None) -> None:
        self.decay_per_minute = decay_per_minute
        self._level = max(0.0, min(level, CHAOS_MAX))
        self._updated = time.time() if now is None else now

    def _decay_to(self, now: float) -> None:
        elapsed = max(0.0, now - self._updated)
        self._level = max(0.0, self._level - self.decay_per_minute * elapsed / 60.0)
        self._updated = now

    def level(self, now: float | None = None) -> float:
        self._decay_to(time.time() if now is None else now)
        return self._level

    def add(self, amount: float, now: float | None = None) -> float:
        """Decay to *now*, add *amount*, clamp.  Returns the new level."""
        self._decay_to(time.time() if now is None else now)
        self._level = max(0.0, min(self._level + amount, CHAOS_MAX))
        return self._level

    def reset(self, now: float | None = None) -> None:
        self._level = 0.0
        self._updated = time.time() if now is None else now

"""
Per-user Rate Limiting

WHY: Sensitive endpoints (user creation, role changes) admit one call per
window per user. A second call inside the window is rejected with the
remaining cooldown.

DESIGN:
- One RateLimiter per application (app.extensions["passcard.rate_limiter"]),
  never a module-level dict, so tests and workers get isolated state
- Keyed by (rate_limit_key, user_id)
- Check-and-set runs under a lock so two near-simultaneous requests cannot
  both be admitted
- Clock is injectable for tests
"""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from typing import Callable

from flask import current_app


EXTENSION_KEY = "passcard.rate_limiter"


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining_seconds: float = 0.0

    @property
    def remaining_minutes(self) -> int:
        """Cooldown rounded up to whole minutes (what clients are told)."""
        return math.ceil(self.remaining_seconds / 60) if self.remaining_seconds > 0 else 0


class RateLimiter:
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self._last_admitted: dict[tuple[str, str], float] = {}

    def hit(self, key: str, user_id: str, window_minutes: float) -> RateLimitDecision:
        """
        Admit the call and start a new window, or reject it.

        A rejected call does not extend the window.
        """
        if not window_minutes or window_minutes <= 0:
            return RateLimitDecision(allowed=True)

        window_seconds = window_minutes * 60
        slot = (key, user_id)

        with self._lock:
            now = self._clock()
            last = self._last_admitted.get(slot)
            if last is not None:
                elapsed = now - last
                if elapsed < window_seconds:
                    return RateLimitDecision(allowed=False, remaining_seconds=window_seconds - elapsed)
            self._last_admitted[slot] = now

        return RateLimitDecision(allowed=True)

    def reset(self, key: str | None = None, user_id: str | None = None) -> None:
        with self._lock:
            if key is None and user_id is None:
                self._last_admitted.clear()
                return
            for slot in list(self._last_admitted):
                if (key is None or slot[0] == key) and (user_id is None or slot[1] == user_id):
                    del self._last_admitted[slot]


def get_rate_limiter() -> RateLimiter:
    return current_app.extensions[EXTENSION_KEY]

"""Per-key cooldown gates for searches and rating submissions.

A gate rejects an attempt made inside the cooldown window of the previous
accepted attempt for the same key. Rejected attempts are not queued and do
not extend the window.
"""

import threading
import time
from typing import Callable, Hashable

from kaimaku.config import get_settings
from kaimaku.core.errors import CooldownActive

settings = get_settings()

# Drop stale keys once the table grows past this size
_PRUNE_THRESHOLD = 10_000


class CooldownGate:
    def __init__(
        self,
        interval_seconds: float,
        action: str = "trying again",
        clock: Callable[[], float] = time.monotonic,
    ):
        self.interval = interval_seconds
        self.action = action
        self._clock = clock
        self._last: dict[Hashable, float] = {}
        self._lock = threading.Lock()

    def remaining(self, key: Hashable) -> float:
        last = self._last.get(key)
        if last is None:
            return 0.0
        return max(0.0, self.interval - (self._clock() - last))

    def attempt(self, key: Hashable) -> None:
        """Record an attempt for ``key`` or raise ``CooldownActive``."""
        if self.interval <= 0:
            return
        with self._lock:
            now = self._clock()
            last = self._last.get(key)
            if last is not None and now - last < self.interval:
                raise CooldownActive(self.interval - (now - last), self.action)
            self._last[key] = now
            if len(self._last) > _PRUNE_THRESHOLD:
                self._prune(now)

    def _prune(self, now: float) -> None:
        expired = [key for key, last in self._last.items() if now - last >= self.interval]
        for key in expired:
            del self._last[key]


_search_gate: CooldownGate | None = None
_rating_gate: CooldownGate | None = None


def get_search_gate() -> CooldownGate:
    global _search_gate
    if _search_gate is None:
        _search_gate = CooldownGate(settings.search_cooldown_seconds, action="searching again")
    return _search_gate


def get_rating_gate() -> CooldownGate:
    global _rating_gate
    if _rating_gate is None:
        _rating_gate = CooldownGate(settings.rating_cooldown_seconds, action="rating again")
    return _rating_gate

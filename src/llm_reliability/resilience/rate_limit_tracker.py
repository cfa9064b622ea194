"""Per-provider sliding window rate limit tracking."""

from __future__ import annotations

import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field

from llm_reliability.observability.logger import get_logger

logger = get_logger("rate_limit_tracker")

MINUTE_S = 60.0
DAY_S = 86400.0


@dataclass
class WindowLimits:
    per_minute: int
    per_day: int
    short_window_s: float = MINUTE_S
    long_window_s: float = DAY_S


@dataclass
class _ProviderWindows:
    limits: WindowLimits
    minute: deque[float] = field(default_factory=deque)
    day: deque[float] = field(default_factory=deque)
    blocked_until: float = 0.0
    lock: threading.Lock = field(default_factory=threading.Lock)


class RateLimitTracker:
    """Tracks call timestamps per provider within a rolling minute and a rolling day.

    A call is allowed only while both windows have headroom. Throttling is a
    separate failure mode from unhealthiness: nothing here touches the circuit
    breaker.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._providers: dict[str, _ProviderWindows] = {}

    def configure(
        self,
        provider: str,
        per_minute: int,
        per_day: int,
        short_window_s: float = MINUTE_S,
        long_window_s: float = DAY_S,
    ) -> None:
        limits = WindowLimits(per_minute, per_day, short_window_s, long_window_s)
        self._providers[provider] = _ProviderWindows(limits)

    def may_call(self, provider: str) -> bool:
        w = self._get(provider)
        with w.lock:
            return self._has_headroom(w, self._clock())

    def record(self, provider: str, timestamp: float | None = None) -> None:
        w = self._get(provider)
        ts = self._clock() if timestamp is None else timestamp
        with w.lock:
            w.minute.append(ts)
            w.day.append(ts)

    def try_acquire(self, provider: str) -> bool:
        """Check and record in one step so concurrent callers cannot overshoot a window."""
        w = self._get(provider)
        with w.lock:
            now = self._clock()
            if not self._has_headroom(w, now):
                return False
            w.minute.append(now)
            w.day.append(now)
            return True

    def penalize(self, provider: str, seconds: float) -> None:
        """Block a provider after an upstream 429, independent of local counts."""
        w = self._get(provider)
        with w.lock:
            w.blocked_until = max(w.blocked_until, self._clock() + max(seconds, 1.0))
        logger.info("provider_throttled", provider=provider, seconds=round(seconds, 2))

    def retry_after(self, provider: str) -> float:
        """Seconds until the next call would be permitted (0.0 if permitted now)."""
        w = self._get(provider)
        with w.lock:
            now = self._clock()
            self._prune(w, now)
            waits = [max(0.0, w.blocked_until - now)]
            if len(w.minute) >= w.limits.per_minute and w.minute:
                waits.append(w.minute[0] + w.limits.short_window_s - now)
            if len(w.day) >= w.limits.per_day and w.day:
                waits.append(w.day[0] + w.limits.long_window_s - now)
            return max(0.0, max(waits))

    def state(self, provider: str) -> dict:
        w = self._get(provider)
        with w.lock:
            now = self._clock()
            self._prune(w, now)
            return {
                "minute_used": len(w.minute),
                "minute_limit": w.limits.per_minute,
                "day_used": len(w.day),
                "day_limit": w.limits.per_day,
                "throttled": not self._has_headroom(w, now),
            }

    def _get(self, provider: str) -> _ProviderWindows:
        w = self._providers.get(provider)
        if w is None:
            raise KeyError(f"rate limits not configured for provider '{provider}'")
        return w

    def _has_headroom(self, w: _ProviderWindows, now: float) -> bool:
        if now < w.blocked_until:
            return False
        self._prune(w, now)
        return len(w.minute) < w.limits.per_minute and len(w.day) < w.limits.per_day

    @staticmethod
    def _prune(w: _ProviderWindows, now: float) -> None:
        while w.minute and w.minute[0] <= now - w.limits.short_window_s:
            w.minute.popleft()
        while w.day and w.day[0] <= now - w.limits.long_window_s:
            w.day.popleft()

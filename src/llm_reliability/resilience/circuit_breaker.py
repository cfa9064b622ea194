"""Per-provider circuit breaker.

States:
- CLOSED: calls pass through; consecutive failures are counted
- OPEN: calls are rejected until the cooldown elapses
- HALF_OPEN: exactly one probe call is admitted; its outcome closes or reopens

Each reopen from HALF_OPEN multiplies the cooldown, up to a cap. Closing
resets the cooldown to its base value.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from llm_reliability.observability.logger import get_logger

logger = get_logger("circuit_breaker")


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class Permit(str, Enum):
    ALLOWED = "allowed"
    PROBE = "probe"
    REJECTED = "rejected"


@dataclass
class CircuitBreakerConfig:
    failure_threshold: int = 5
    cooldown_s: float = 30.0
    cooldown_multiplier: float = 2.0
    max_cooldown_s: float = 600.0


class CircuitBreaker:
    def __init__(
        self,
        provider: str,
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
        on_state_change: Callable[[str, CircuitState, CircuitState], None] | None = None,
    ) -> None:
        self.provider = provider
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._on_state_change = on_state_change

        self._state = CircuitState.CLOSED
        self._failure_streak = 0
        self._cooldown = self.config.cooldown_s
        self._opened_at = 0.0
        self._probe_in_flight = False
        self._lock = threading.Lock()

    @property
    def state(self) -> CircuitState:
        """Current state, promoting OPEN to HALF_OPEN once the cooldown has elapsed."""
        with self._lock:
            self._maybe_half_open()
            return self._state

    @property
    def failure_streak(self) -> int:
        return self._failure_streak

    @property
    def cooldown_s(self) -> float:
        return self._cooldown

    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN

    def acquire(self) -> Permit:
        with self._lock:
            self._maybe_half_open()
            if self._state == CircuitState.CLOSED:
                return Permit.ALLOWED
            if self._state == CircuitState.HALF_OPEN and not self._probe_in_flight:
                self._probe_in_flight = True
                return Permit.PROBE
            return Permit.REJECTED

    def record_success(self) -> None:
        with self._lock:
            self._failure_streak = 0
            if self._state != CircuitState.CLOSED:
                self._cooldown = self.config.cooldown_s
                self._probe_in_flight = False
                self._transition(CircuitState.CLOSED)

    def record_failure(self) -> None:
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._probe_in_flight = False
                self._cooldown = min(
                    self._cooldown * self.config.cooldown_multiplier,
                    self.config.max_cooldown_s,
                )
                self._open()
                return
            if self._state == CircuitState.OPEN:
                return
            self._failure_streak += 1
            if self._failure_streak >= self.config.failure_threshold:
                self._open()
                logger.warning(
                    "circuit_opened",
                    provider=self.provider,
                    failures=self._failure_streak,
                    cooldown_s=self._cooldown,
                )

    def release_probe(self) -> None:
        """Give back an unused probe slot (the probe never reached the provider)."""
        with self._lock:
            self._probe_in_flight = False

    def reset(self) -> None:
        with self._lock:
            self._failure_streak = 0
            self._cooldown = self.config.cooldown_s
            self._probe_in_flight = False
            if self._state != CircuitState.CLOSED:
                self._transition(CircuitState.CLOSED)

    def _open(self) -> None:
        self._opened_at = self._clock()
        self._transition(CircuitState.OPEN)

    def _maybe_half_open(self) -> None:
        if (
            self._state == CircuitState.OPEN
            and self._clock() - self._opened_at >= self._cooldown
        ):
            self._transition(CircuitState.HALF_OPEN)

    def _transition(self, new_state: CircuitState) -> None:
        old = self._state
        self._state = new_state
        logger.info(
            "circuit_state_change",
            provider=self.provider,
            old=old.value,
            new=new_state.value,
        )
        if self._on_state_change:
            self._on_state_change(self.provider, old, new_state)

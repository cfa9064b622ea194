"""Bounded retries with exponential backoff, gated by the provider's circuit breaker."""

from __future__ import annotations

import asyncio
import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

from llm_reliability.exceptions import (
    CircuitOpenError,
    ProviderAuthError,
    ProviderError,
    ProviderRateLimitedError,
    ProviderServerError,
    ProviderTimeoutError,
)
from llm_reliability.observability.logger import get_logger
from llm_reliability.providers.registry import ProviderRegistry
from llm_reliability.resilience.circuit_breaker import CircuitState, Permit

logger = get_logger("retry")

T = TypeVar("T")


@dataclass
class RetryPolicy:
    max_attempts: int = 3
    base_delay_s: float = 0.25
    max_delay_s: float = 4.0
    jitter_s: float = 0.25

    def delay(self, retry_index: int, rng: random.Random) -> float:
        backoff = min(self.base_delay_s * (2**retry_index), self.max_delay_s)
        return backoff + rng.uniform(0.0, self.jitter_s)


@dataclass
class Execution(Generic[T]):
    value: T
    tries: int
    latency_ms: float


class ResilientExecutor:
    """Runs one provider hop: circuit check, local rate limit, timeout, retries.

    - CLOSED: up to ``max_attempts`` tries, retrying only retryable failures
    - OPEN: raises CircuitOpenError without calling the provider
    - HALF_OPEN: a single probe, no retries
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self._registry = registry
        self._policy = policy or RetryPolicy()
        self._sleep = sleep
        self._rng = rng or random.Random()

    async def execute(self, provider: str, attempt_fn: Callable[[], Awaitable[T]]) -> Execution[T]:
        breaker = self._registry.breaker(provider)
        descriptor = self._registry.descriptor(provider)

        permit = breaker.acquire()
        if permit == Permit.REJECTED:
            raise CircuitOpenError(provider, "circuit open")
        max_tries = 1 if permit == Permit.PROBE else self._policy.max_attempts

        tries = 0
        start = time.monotonic()
        while True:
            if not self._registry.rate_limits.try_acquire(provider):
                self._release(breaker, permit)
                err = ProviderRateLimitedError(
                    provider,
                    "local rate limit reached",
                    retry_after_s=self._registry.rate_limits.retry_after(provider),
                )
                err.tries = tries
                raise err

            tries += 1
            try:
                value = await asyncio.wait_for(attempt_fn(), timeout=descriptor.timeout_s)
            except asyncio.TimeoutError:
                err = ProviderTimeoutError(provider, f"no response within {descriptor.timeout_s}s")
            except asyncio.CancelledError:
                self._release(breaker, permit)
                raise
            except ProviderError as e:
                err = e
            except Exception as e:
                err = ProviderServerError(provider, f"unexpected client failure: {e!r}")
            else:
                breaker.record_success()
                latency_ms = (time.monotonic() - start) * 1000
                descriptor.last_latency_ms = latency_ms
                return Execution(value=value, tries=tries, latency_ms=latency_ms)

            err.tries = tries
            logger.info(
                "provider_attempt_failed",
                provider=provider,
                outcome=err.outcome,
                try_number=tries,
                retryable=err.retryable,
            )

            if isinstance(err, ProviderRateLimitedError):
                self._registry.rate_limits.penalize(provider, err.retry_after_s)
                self._release(breaker, permit)
                raise err
            if isinstance(err, ProviderAuthError):
                self._registry.mark_degraded(provider, err.outcome)
                self._release(breaker, permit)
                raise err
            if not err.retryable:
                self._release(breaker, permit)
                raise err

            breaker.record_failure()
            if tries >= max_tries or breaker.state != CircuitState.CLOSED:
                raise err
            await self._sleep(self._policy.delay(tries - 1, self._rng))

    @staticmethod
    def _release(breaker, permit: Permit) -> None:
        if permit == Permit.PROBE:
            breaker.release_probe()

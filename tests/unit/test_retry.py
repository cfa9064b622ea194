"""Tests for the resilient executor: retries, circuit gating and throttling."""

import random

import pytest

from conftest import FakeProvider
from llm_reliability.exceptions import (
    CircuitOpenError,
    ProviderAuthError,
    ProviderRateLimitedError,
    ProviderRequestError,
    ProviderServerError,
    ProviderTimeoutError,
)
from llm_reliability.models.domain import ProviderRequest
from llm_reliability.resilience.circuit_breaker import CircuitState
from llm_reliability.resilience.retry import ResilientExecutor, RetryPolicy


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def _executor(registry, max_attempts=3, sleep=None):
    policy = RetryPolicy(max_attempts=max_attempts, base_delay_s=0.1, max_delay_s=1.0, jitter_s=0.0)
    return ResilientExecutor(registry, policy, sleep=sleep or SleepRecorder())


def _call(provider):
    return lambda: provider.invoke(ProviderRequest(prompt="hi"))


async def test_retries_until_success(make_registry):
    provider = FakeProvider(
        "p", [ProviderServerError("p", "503"), ProviderServerError("p", "503"), "hello"]
    )
    sleep = SleepRecorder()
    executor = _executor(make_registry(provider), sleep=sleep)
    execution = await executor.execute("p", _call(provider))
    assert execution.value.content == "hello"
    assert execution.tries == 3
    assert sleep.delays == [pytest.approx(0.1), pytest.approx(0.2)]


def test_backoff_capped():
    policy = RetryPolicy(base_delay_s=1.0, max_delay_s=3.0, jitter_s=0.0)
    rng = random.Random(0)
    assert [policy.delay(i, rng) for i in range(4)] == [1.0, 2.0, 3.0, 3.0]


async def test_non_retryable_fails_immediately(make_registry):
    provider = FakeProvider("p", [ProviderRequestError("p", "400")])
    registry = make_registry(provider)
    with pytest.raises(ProviderRequestError) as exc:
        await _executor(registry).execute("p", _call(provider))
    assert provider.calls == 1
    assert exc.value.tries == 1
    assert registry.breaker("p").failure_streak == 0


async def test_auth_failure_marks_degraded(make_registry):
    provider = FakeProvider("p", [ProviderAuthError("p", "401")])
    registry = make_registry(provider)
    with pytest.raises(ProviderAuthError):
        await _executor(registry).execute("p", _call(provider))
    assert provider.calls == 1
    assert registry.descriptor("p").healthy is False
    assert registry.is_eligible("p") == (False, "degraded")


async def test_timeout_becomes_provider_error(make_registry):
    provider = FakeProvider("p", [0.5])
    registry = make_registry(provider, timeout_s=0.05)
    with pytest.raises(ProviderTimeoutError) as exc:
        await _executor(registry, max_attempts=1).execute("p", _call(provider))
    assert exc.value.tries == 1
    assert registry.breaker("p").failure_streak == 1


async def test_unexpected_exception_wrapped(make_registry):
    provider = FakeProvider("p", [ValueError("boom")])
    with pytest.raises(ProviderServerError):
        await _executor(make_registry(provider), max_attempts=1).execute("p", _call(provider))


async def test_open_circuit_skips_call(settings, make_registry):
    settings.circuit_failure_threshold = 2
    provider = FakeProvider("p")
    registry = make_registry(provider)
    registry.breaker("p").record_failure()
    registry.breaker("p").record_failure()
    with pytest.raises(CircuitOpenError):
        await _executor(registry).execute("p", _call(provider))
    assert provider.calls == 0


async def test_circuit_opening_abandons_retries(settings, make_registry):
    settings.circuit_failure_threshold = 2
    provider = FakeProvider("p", [ProviderServerError("p", "500")] * 5)
    registry = make_registry(provider)
    with pytest.raises(ProviderServerError):
        await _executor(registry, max_attempts=5).execute("p", _call(provider))
    assert provider.calls == 2
    assert registry.breaker("p").state == CircuitState.OPEN


async def test_half_open_probe_gets_single_try(settings, make_registry, clock):
    settings.circuit_failure_threshold = 1
    provider = FakeProvider("p", [ProviderServerError("p", "500"), ProviderServerError("p", "500")])
    registry = make_registry(provider, clock=clock)
    executor = _executor(registry, max_attempts=3)
    with pytest.raises(ProviderServerError):
        await executor.execute("p", _call(provider))
    assert registry.breaker("p").state == CircuitState.OPEN

    clock.advance(settings.circuit_cooldown_s)
    assert registry.breaker("p").state == CircuitState.HALF_OPEN
    with pytest.raises(ProviderServerError):
        await executor.execute("p", _call(provider))
    assert provider.calls == 2
    assert registry.breaker("p").state == CircuitState.OPEN
    assert registry.breaker("p").cooldown_s == settings.circuit_cooldown_s * 2


async def test_probe_success_closes_circuit(settings, make_registry, clock):
    settings.circuit_failure_threshold = 1
    provider = FakeProvider("p", [ProviderServerError("p", "500"), "back"])
    registry = make_registry(provider, clock=clock)
    executor = _executor(registry, max_attempts=1)
    with pytest.raises(ProviderServerError):
        await executor.execute("p", _call(provider))
    clock.advance(settings.circuit_cooldown_s)
    execution = await executor.execute("p", _call(provider))
    assert execution.value.content == "back"
    assert registry.breaker("p").state == CircuitState.CLOSED


async def test_local_throttling_leaves_circuit_alone(make_registry):
    provider = FakeProvider("p")
    registry = make_registry(provider, rpm=1)
    executor = _executor(registry)
    await executor.execute("p", _call(provider))
    with pytest.raises(ProviderRateLimitedError):
        await executor.execute("p", _call(provider))
    assert provider.calls == 1
    assert registry.breaker("p").state == CircuitState.CLOSED
    assert registry.breaker("p").failure_streak == 0
    assert registry.descriptor("p").healthy is True


async def test_upstream_429_penalizes_provider(make_registry, clock):
    provider = FakeProvider("p", [ProviderRateLimitedError("p", "429", retry_after_s=5.0)])
    registry = make_registry(provider, clock=clock)
    with pytest.raises(ProviderRateLimitedError):
        await _executor(registry).execute("p", _call(provider))
    assert provider.calls == 1
    assert registry.is_eligible("p") == (False, "throttled")
    assert registry.breaker("p").failure_streak == 0
    clock.advance(5)
    assert registry.is_eligible("p") == (True, None)

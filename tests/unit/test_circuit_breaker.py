"""Tests for the per-provider circuit breaker state machine."""

import pytest

from llm_reliability.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
    Permit,
)


@pytest.fixture
def breaker(clock):
    return CircuitBreaker(
        "p",
        CircuitBreakerConfig(failure_threshold=3, cooldown_s=30, cooldown_multiplier=2, max_cooldown_s=100),
        clock=clock,
    )


def test_opens_after_threshold(breaker):
    breaker.record_failure()
    breaker.record_failure()
    assert breaker.state == CircuitState.CLOSED
    breaker.record_failure()
    assert breaker.state == CircuitState.OPEN
    assert breaker.acquire() == Permit.REJECTED


def test_success_resets_streak(breaker):
    breaker.record_failure()
    breaker.record_failure()
    breaker.record_success()
    breaker.record_failure()
    breaker.record_failure()
    assert breaker.state == CircuitState.CLOSED
    assert breaker.failure_streak == 2


def test_half_open_admits_single_probe(breaker, clock):
    for _ in range(3):
        breaker.record_failure()
    clock.advance(29.9)
    assert breaker.state == CircuitState.OPEN
    clock.advance(0.1)
    assert breaker.state == CircuitState.HALF_OPEN
    assert breaker.acquire() == Permit.PROBE
    assert breaker.acquire() == Permit.REJECTED


def test_probe_success_closes(breaker, clock):
    for _ in range(3):
        breaker.record_failure()
    clock.advance(30)
    assert breaker.acquire() == Permit.PROBE
    breaker.record_success()
    assert breaker.state == CircuitState.CLOSED
    assert breaker.cooldown_s == 30
    assert breaker.acquire() == Permit.ALLOWED


def test_probe_failure_reopens_with_longer_cooldown(breaker, clock):
    for _ in range(3):
        breaker.record_failure()
    clock.advance(30)
    assert breaker.acquire() == Permit.PROBE
    breaker.record_failure()
    assert breaker.state == CircuitState.OPEN
    assert breaker.cooldown_s == 60
    clock.advance(30)
    assert breaker.state == CircuitState.OPEN
    clock.advance(30)
    assert breaker.state == CircuitState.HALF_OPEN


def test_cooldown_capped(breaker, clock):
    for _ in range(3):
        breaker.record_failure()
    for expected in (60, 100, 100):
        clock.advance(breaker.cooldown_s)
        assert breaker.acquire() == Permit.PROBE
        breaker.record_failure()
        assert breaker.cooldown_s == expected


def test_release_probe_allows_another(breaker, clock):
    for _ in range(3):
        breaker.record_failure()
    clock.advance(30)
    assert breaker.acquire() == Permit.PROBE
    breaker.release_probe()
    assert breaker.acquire() == Permit.PROBE


def test_reset_closes(breaker):
    for _ in range(3):
        breaker.record_failure()
    breaker.reset()
    assert breaker.state == CircuitState.CLOSED
    assert breaker.failure_streak == 0


def test_state_change_callback(clock):
    changes = []
    breaker = CircuitBreaker(
        "p",
        CircuitBreakerConfig(failure_threshold=1, cooldown_s=5),
        clock=clock,
        on_state_change=lambda name, old, new: changes.append((name, old, new)),
    )
    breaker.record_failure()
    clock.advance(5)
    assert breaker.acquire() == Permit.PROBE
    breaker.record_success()
    assert changes == [
        ("p", CircuitState.CLOSED, CircuitState.OPEN),
        ("p", CircuitState.OPEN, CircuitState.HALF_OPEN),
        ("p", CircuitState.HALF_OPEN, CircuitState.CLOSED),
    ]

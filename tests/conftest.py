"""Shared test fixtures."""

from __future__ import annotations

import asyncio
import tempfile
from pathlib import Path

import pytest

from llm_reliability.config.settings import Settings
from llm_reliability.exceptions import ProviderError
from llm_reliability.models.domain import KnowledgeResult, ProviderRequest, ProviderResponse
from llm_reliability.pipeline.factory import build_services
from llm_reliability.providers.registry import ProviderRegistry
from llm_reliability.resilience.circuit_breaker import CircuitBreakerConfig


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeProvider:
    """Provider client that replays a script of outcomes.

    Each script entry is a string (returned as content), an exception instance
    (raised), or a float (sleep that long, then return ``default``).
    """

    def __init__(
        self,
        name: str,
        script: list | None = None,
        default: str = "ok",
        capabilities: frozenset[str] = frozenset({"chat"}),
        healthy: bool = True,
    ) -> None:
        self.name = name
        self.capabilities = capabilities
        self._script = list(script or [])
        self._default = default
        self.healthy = healthy
        self.calls = 0
        self.requests: list[ProviderRequest] = []

    async def invoke(self, request: ProviderRequest) -> ProviderResponse:
        self.calls += 1
        self.requests.append(request)
        step = self._script.pop(0) if self._script else self._default
        if isinstance(step, BaseException):
            raise step
        if isinstance(step, float):
            await asyncio.sleep(step)
            step = self._default
        return ProviderResponse(content=step, model=f"{self.name}-model")

    async def health_check(self) -> bool:
        return self.healthy


class FakeKnowledge:
    def __init__(self, results: list[KnowledgeResult] | None = None, fail: bool = False) -> None:
        self.results = results or []
        self.fail = fail
        self.queries: list[str] = []

    async def search_knowledge(self, query: str, filters: dict | None = None):
        self.queries.append(query)
        if self.fail:
            raise RuntimeError("knowledge base unavailable")
        return list(self.results)


class RecordingSink:
    def __init__(self) -> None:
        self.alerts = []

    async def send(self, alert) -> None:
        self.alerts.append(alert)


def word_count(text: str) -> int:
    return len(text.split())


PARIS = KnowledgeResult(
    snippet_id="geo-1",
    text="Paris is the capital and largest city of France.",
    source="atlas",
    relevance=1.0,
    reliability=0.95,
)


@pytest.fixture
def settings():
    """Test settings with temp paths, no backoff delays and no configured chains."""
    tmp = tempfile.mkdtemp()
    return Settings(
        providers=[],
        fallback_chains={},
        retry_base_delay_s=0.0,
        retry_max_delay_s=0.0,
        retry_jitter_s=0.0,
        sqlite_db_path=str(Path(tmp) / "test_reliability.db"),
        knowledge_base_path=str(Path(tmp) / "knowledge.json"),
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_registry(settings):
    def _make(*providers: FakeProvider, timeout_s: float = 1.0, rpm: int = 1000, clock=None):
        kwargs = {"clock": clock} if clock is not None else {}
        registry = ProviderRegistry(
            breaker_config=CircuitBreakerConfig(
                failure_threshold=settings.circuit_failure_threshold,
                cooldown_s=settings.circuit_cooldown_s,
            ),
            **kwargs,
        )
        for priority, provider in enumerate(providers, 1):
            registry.register(provider, priority=priority, timeout_s=timeout_s, requests_per_minute=rpm)
        return registry

    return _make


@pytest.fixture
def make_services(settings, make_registry):
    def _make(*providers: FakeProvider, knowledge=None, store=None, timeout_s: float = 1.0, sinks=None):
        registry = make_registry(*providers, timeout_s=timeout_s)
        return build_services(
            settings,
            registry,
            knowledge if knowledge is not None else FakeKnowledge([PARIS]),
            store=store,
            sinks=sinks if sinks is not None else [],
            token_counter=word_count,
        )

    return _make


@pytest.fixture
def provider_error():
    def _make(cls: type[ProviderError], name: str = "p", **kwargs) -> ProviderError:
        return cls(name, "scripted failure", **kwargs)

    return _make


class RecordingStore:
    """In-memory ResultStore."""

    def __init__(self) -> None:
        self.orchestrations = []
        self.validations = []
        self.feedback = []
        self.events = []
        self.alerts = []

    async def save_orchestration(self, query_id, response_id, result) -> None:
        self.orchestrations.append((query_id, response_id, result))

    async def save_validation(self, response_id, query_type, result) -> None:
        self.validations.append((response_id, query_type, result))

    async def save_feedback(self, feedback) -> None:
        self.feedback.append(feedback)

    async def save_metric_event(self, name, payload) -> None:
        self.events.append((name, payload))

    async def save_alert(self, alert) -> None:
        self.alerts.append(alert)

    async def list_feedback(self, response_id=None, since=None, limit=1000):
        return [f for f in self.feedback if response_id is None or f.response_id == response_id]

    async def list_validations(self, query_type=None, max_score=None, limit=100):
        return [v for v in self.validations if query_type is None or v[1] == query_type]

    async def list_alerts(self, severity=None, limit=100):
        return [a for a in self.alerts if severity is None or a.severity == severity]

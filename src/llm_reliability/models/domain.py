"""Core domain objects used throughout the system."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from uuid import uuid4


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class QueryClassification:
    type: str  # "factual", "creative", "study", "general", "diagnostic"
    complexity: int  # 1..5
    requires_facts: bool
    requires_context: bool
    response_strategy: str
    language: str = "en"


@dataclass(frozen=True)
class Query:
    raw_text: str
    user_id: str
    session_id: str
    id: str = field(default_factory=lambda: str(uuid4()))
    text: str = ""  # sanitized text sent upstream
    classification: QueryClassification | None = None
    timestamp: datetime = field(default_factory=_now)

    def with_classification(self, classification: QueryClassification, text: str) -> Query:
        if self.classification is not None:
            raise ValueError("query is already classified")
        return replace(self, classification=classification, text=text)


@dataclass(frozen=True)
class PipelineConfig:
    """Per-request options, built once from caller preferences and settings."""

    enable_validation: bool = True
    validation_level: str = "basic"  # "basic", "strict", "enhanced"
    quality_threshold: float = 0.6
    collect_feedback: bool = True
    deadline_s: float = 45.0


@dataclass
class SanitizedInput:
    text: str
    flags: list[str]
    unsafe: bool
    reason: str | None = None


@dataclass
class ProviderRequest:
    prompt: str
    system: str | None = None
    temperature: float = 0.3
    max_tokens: int = 1024
    capability: str = "chat"


@dataclass
class ProviderResponse:
    content: str
    model: str
    tokens_in: int = 0
    tokens_out: int = 0


@dataclass
class ProviderDescriptor:
    name: str
    priority: int
    capabilities: frozenset[str]
    timeout_s: float
    healthy: bool = True
    degraded_reason: str | None = None
    fatal_failures: int = 0
    last_latency_ms: float = 0.0
    rate_limit_state: dict = field(default_factory=dict)
    circuit_state: str = "closed"


@dataclass
class Attempt:
    provider: str
    outcome: str  # "success", "timeout", "server_error", "auth_error", "circuit_open", ...
    latency_ms: float
    tries: int = 1


@dataclass(frozen=True)
class OrchestrationResult:
    content: str
    provider_used: str
    attempts: tuple[Attempt, ...]
    cached: bool
    fingerprint: str
    model: str = ""
    skipped: tuple[str, ...] = ()
    latency_ms: float = 0.0


@dataclass
class CacheEntry:
    fingerprint: str
    response: OrchestrationResult
    created_at: float
    ttl: float
    hit_count: int = 0
    requires_revalidation: bool = False

    def expired(self, now: float) -> bool:
        return now - self.created_at > self.ttl


@dataclass
class KnowledgeResult:
    snippet_id: str
    text: str
    source: str
    relevance: float
    reliability: float


@dataclass
class ContextItem:
    kind: str  # "history", "knowledge", "profile", "prevention"
    text: str
    relevance: float
    tokens: int = 0
    source: str = ""
    reliability: float = 1.0


@dataclass
class GroundedContext:
    items: list[ContextItem]
    fact_check_points: list[str]
    sources: list[KnowledgeResult]
    token_count: int
    dropped: int = 0
    preventions: list[str] = field(default_factory=list)

    @property
    def level(self) -> str:
        return "grounded" if self.sources else "plain"


@dataclass
class CheckResult:
    passed: bool
    score: float
    severity: str  # "none", "low", "medium", "high"


@dataclass
class ValidationResult:
    overall_score: float
    checks: dict[str, CheckResult]
    issues: list[str]
    confidence_score: float
    hallucination_risk: str  # "low", "medium", "high"
    fact_check_status: str  # "verified", "unverified", "disputed"
    contradictions: int = 0
    unverified_ratio: float = 0.0
    flagged: bool = False


@dataclass(frozen=True)
class Feedback:
    response_id: str
    type: str  # "positive", "negative", "correction", "flag"
    id: str = field(default_factory=lambda: str(uuid4()))
    rating: int | None = None
    corrections: str | None = None
    flag_reasons: tuple[str, ...] = ()
    implicit: bool = False
    timestamp: datetime = field(default_factory=_now)


@dataclass
class LearningPattern:
    type: str
    query_type: str
    frequency: int
    confidence: float
    suggested_preventions: list[str]
    provider: str | None = None


@dataclass
class Alert:
    alert_type: str
    severity: str  # "low", "medium", "high", "critical"
    message: str
    metric: str
    value: float
    threshold: float
    id: str = field(default_factory=lambda: str(uuid4()))
    created_at: datetime = field(default_factory=_now)


@dataclass
class HealthSnapshot:
    timestamp: datetime
    status: str  # "healthy", "degraded", "unhealthy"
    per_provider_status: dict[str, dict]
    per_layer_status: dict[str, dict]
    active_alerts: list[Alert]
    metrics: dict = field(default_factory=dict)


@dataclass
class DeliveredResponse:
    """What the pipeline remembers about a delivered response, for feedback routing."""

    response_id: str
    query_type: str
    provider_used: str
    fingerprint: str
    user_id: str


@dataclass
class PipelineTrace:
    trace_id: str
    query_id: str
    timestamp: datetime
    latency_ms: float
    final_state: str
    spans: list[dict]

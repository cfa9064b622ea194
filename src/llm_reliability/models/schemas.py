"""Pydantic models for API request/response serialization."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class Preferences(BaseModel):
    enable_validation: bool = True
    validation_level: Literal["basic", "strict", "enhanced"] = "basic"
    quality_threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    collect_feedback: bool = True


class ProcessMessageRequest(BaseModel):
    user_id: str
    session_id: str
    message: str
    preferences: Preferences = Field(default_factory=Preferences)
    profile: dict[str, str] = Field(default_factory=dict)


class CheckSummary(BaseModel):
    passed: bool
    score: float
    severity: str


class ValidationSummary(BaseModel):
    overall_score: float
    checks: dict[str, CheckSummary]
    issues: list[str]
    fact_check_status: Literal["verified", "unverified", "disputed"]
    contradictions: int = 0


class ProcessMessageResponse(BaseModel):
    content: str
    quality_score: float
    confidence_score: float
    hallucination_risk: Literal["low", "medium", "high"]
    validation_results: ValidationSummary | None = None
    response_id: str
    flagged: bool = False
    degraded: bool = False
    refused: bool = False
    cached: bool = False
    provider_used: str | None = None
    correlation_id: str | None = None
    error: str | None = None


class FeedbackRequest(BaseModel):
    response_id: str
    type: Literal["positive", "negative", "correction", "flag"]
    rating: int | None = Field(default=None, ge=1, le=5)
    corrections: str | None = None
    flag_reasons: list[str] = Field(default_factory=list)


class FeedbackResponse(BaseModel):
    feedback_id: str
    accepted: bool


class AlertSchema(BaseModel):
    id: str
    alert_type: str
    severity: Literal["low", "medium", "high", "critical"]
    message: str
    metric: str
    value: float
    threshold: float


class SystemHealthResponse(BaseModel):
    status: Literal["healthy", "degraded", "unhealthy"]
    per_provider_status: dict[str, dict]
    per_layer_status: dict[str, dict]
    active_alerts: list[AlertSchema]


class ProviderResetResponse(BaseModel):
    provider: str
    healthy: bool
    circuit_state: str


class ImplicitFeedbackRequest(BaseModel):
    response_id: str
    dwell_seconds: float = Field(ge=0.0)
    follow_up_count: int = Field(ge=0)

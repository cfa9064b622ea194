"""Metric logging helpers for pipeline traces."""

from __future__ import annotations

from llm_reliability.models.domain import OrchestrationResult, ValidationResult
from llm_reliability.observability.logger import get_logger

logger = get_logger("metrics")


def log_orchestration_metrics(trace_id: str, result: OrchestrationResult) -> None:
    logger.info(
        "orchestration_metrics",
        trace_id=trace_id,
        provider=result.provider_used,
        cached=result.cached,
        attempts=[(a.provider, a.outcome, a.tries) for a in result.attempts],
        skipped=list(result.skipped),
        latency_ms=round(result.latency_ms, 2),
    )


def log_validation_metrics(trace_id: str, result: ValidationResult) -> None:
    logger.info(
        "validation_metrics",
        trace_id=trace_id,
        overall=round(result.overall_score, 4),
        confidence=round(result.confidence_score, 4),
        risk=result.hallucination_risk,
        status=result.fact_check_status,
        contradictions=result.contradictions,
        flagged=result.flagged,
    )


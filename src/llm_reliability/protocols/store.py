"""Protocols for the persistence and alerting collaborators."""

from __future__ import annotations

from typing import Protocol

from llm_reliability.models.domain import (
    Alert,
    Feedback,
    OrchestrationResult,
    ValidationResult,
)


class ResultStore(Protocol):
    """Append-only writes plus filtered reads. No storage engine assumptions."""

    async def save_orchestration(
        self, query_id: str, response_id: str, result: OrchestrationResult
    ) -> None: ...

    async def save_validation(
        self, response_id: str, query_type: str, result: ValidationResult
    ) -> None: ...

    async def save_feedback(self, feedback: Feedback) -> None: ...

    async def save_metric_event(self, name: str, payload: dict) -> None: ...

    async def save_alert(self, alert: Alert) -> None: ...

    async def list_feedback(
        self, response_id: str | None = None, since: str | None = None, limit: int = 1000
    ) -> list[Feedback]: ...

    async def list_validations(
        self,
        query_type: str | None = None,
        max_score: float | None = None,
        limit: int = 100,
    ) -> list[dict]: ...

    async def list_alerts(self, severity: str | None = None, limit: int = 100) -> list[Alert]: ...


class AlertSink(Protocol):
    async def send(self, alert: Alert) -> None: ...

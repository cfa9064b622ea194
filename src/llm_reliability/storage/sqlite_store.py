"""SQLite-backed result store: orchestrations, validations, feedback, metric events, alerts."""

from __future__ import annotations

import json
import os
from dataclasses import asdict
from datetime import datetime, timezone

import aiosqlite

from llm_reliability.models.domain import (
    Alert,
    Feedback,
    OrchestrationResult,
    ValidationResult,
)
from llm_reliability.storage.migrations import initialize_result_db


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SQLiteResultStore:
    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    async def initialize(self) -> None:
        directory = os.path.dirname(self._db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        await initialize_result_db(self._db_path)

    async def save_orchestration(
        self, query_id: str, response_id: str, result: OrchestrationResult
    ) -> None:
        async with aiosqlite.connect(self._db_path) as db:
            await db.execute(
                "INSERT OR REPLACE INTO orchestrations "
                "(response_id, query_id, provider_used, model, cached, fingerprint, attempts, "
                "skipped, latency_ms, content, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    response_id,
                    query_id,
                    result.provider_used,
                    result.model,
                    int(result.cached),
                    result.fingerprint,
                    json.dumps([asdict(a) for a in result.attempts]),
                    json.dumps(list(result.skipped)),
                    result.latency_ms,
                    result.content,
                    _now(),
                ),
            )
            await db.commit()

    async def save_validation(
        self, response_id: str, query_type: str, result: ValidationResult
    ) -> None:
        async with aiosqlite.connect(self._db_path) as db:
            await db.execute(
                "INSERT OR REPLACE INTO validations "
                "(response_id, query_type, overall_score, confidence_score, hallucination_risk, "
                "fact_check_status, contradictions, unverified_ratio, flagged, checks, issues, "
                "created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    response_id,
                    query_type,
                    result.overall_score,
                    result.confidence_score,
                    result.hallucination_risk,
                    result.fact_check_status,
                    result.contradictions,
                    result.unverified_ratio,
                    int(result.flagged),
                    json.dumps({k: asdict(v) for k, v in result.checks.items()}),
                    json.dumps(result.issues),
                    _now(),
                ),
            )
            await db.commit()

    async def save_feedback(self, feedback: Feedback) -> None:
        async with aiosqlite.connect(self._db_path) as db:
            await db.execute(
                "INSERT INTO feedback "
                "(feedback_id, response_id, type, rating, corrections, flag_reasons, implicit, "
                "timestamp) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    feedback.id,
                    feedback.response_id,
                    feedback.type,
                    feedback.rating,
                    feedback.corrections,
                    json.dumps(list(feedback.flag_reasons)),
                    int(feedback.implicit),
                    feedback.timestamp.isoformat(),
                ),
            )
            await db.commit()

    async def save_metric_event(self, name: str, payload: dict) -> None:
        async with aiosqlite.connect(self._db_path) as db:
            await db.execute(
                "INSERT INTO metric_events (name, payload, created_at) VALUES (?, ?, ?)",
                (name, json.dumps(payload, default=str), _now()),
            )
            await db.commit()

    async def save_alert(self, alert: Alert) -> None:
        async with aiosqlite.connect(self._db_path) as db:
            await db.execute(
                "INSERT OR REPLACE INTO alerts "
                "(alert_id, alert_type, severity, message, metric, value, threshold, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    alert.id,
                    alert.alert_type,
                    alert.severity,
                    alert.message,
                    alert.metric,
                    alert.value,
                    alert.threshold,
                    alert.created_at.isoformat(),
                ),
            )
            await db.commit()

    async def list_feedback(
        self, response_id: str | None = None, since: str | None = None, limit: int = 1000
    ) -> list[Feedback]:
        clauses, params = [], []
        if response_id is not None:
            clauses.append("response_id = ?")
            params.append(response_id)
        if since is not None:
            clauses.append("timestamp >= ?")
            params.append(since)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        async with aiosqlite.connect(self._db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                f"SELECT * FROM feedback{where} ORDER BY timestamp ASC LIMIT ?",
                (*params, limit),
            ) as cursor:
                rows = await cursor.fetchall()
                return [self._row_to_feedback(row) for row in rows]

    async def list_validations(
        self,
        query_type: str | None = None,
        max_score: float | None = None,
        limit: int = 100,
    ) -> list[dict]:
        clauses, params = [], []
        if query_type is not None:
            clauses.append("query_type = ?")
            params.append(query_type)
        if max_score is not None:
            clauses.append("overall_score <= ?")
            params.append(max_score)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        async with aiosqlite.connect(self._db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                f"SELECT * FROM validations{where} ORDER BY created_at DESC LIMIT ?",
                (*params, limit),
            ) as cursor:
                rows = await cursor.fetchall()
        results = []
        for row in rows:
            record = dict(row)
            record["flagged"] = bool(record["flagged"])
            record["checks"] = json.loads(record["checks"])
            record["issues"] = json.loads(record["issues"])
            results.append(record)
        return results

    async def list_alerts(self, severity: str | None = None, limit: int = 100) -> list[Alert]:
        where = " WHERE severity = ?" if severity is not None else ""
        params = (severity,) if severity is not None else ()
        async with aiosqlite.connect(self._db_path) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                f"SELECT * FROM alerts{where} ORDER BY created_at DESC LIMIT ?",
                (*params, limit),
            ) as cursor:
                rows = await cursor.fetchall()
                return [self._row_to_alert(row) for row in rows]

    async def count_metric_events(self, name: str) -> int:
        async with aiosqlite.connect(self._db_path) as db:
            async with db.execute(
                "SELECT COUNT(*) FROM metric_events WHERE name = ?", (name,)
            ) as cursor:
                row = await cursor.fetchone()
                return row[0] if row else 0

    @staticmethod
    def _row_to_feedback(row: aiosqlite.Row) -> Feedback:
        return Feedback(
            id=row["feedback_id"],
            response_id=row["response_id"],
            type=row["type"],
            rating=row["rating"],
            corrections=row["corrections"],
            flag_reasons=tuple(json.loads(row["flag_reasons"])),
            implicit=bool(row["implicit"]),
            timestamp=datetime.fromisoformat(row["timestamp"]),
        )

    @staticmethod
    def _row_to_alert(row: aiosqlite.Row) -> Alert:
        return Alert(
            id=row["alert_id"],
            alert_type=row["alert_type"],
            severity=row["severity"],
            message=row["message"],
            metric=row["metric"],
            value=row["value"],
            threshold=row["threshold"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

"""Idempotent database schema creation."""

from __future__ import annotations

import aiosqlite

ORCHESTRATIONS_TABLE = """
CREATE TABLE IF NOT EXISTS orchestrations (
    response_id TEXT PRIMARY KEY,
    query_id TEXT NOT NULL,
    provider_used TEXT NOT NULL,
    model TEXT NOT NULL DEFAULT '',
    cached INTEGER NOT NULL,
    fingerprint TEXT NOT NULL,
    attempts TEXT NOT NULL DEFAULT '[]',
    skipped TEXT NOT NULL DEFAULT '[]',
    latency_ms REAL NOT NULL,
    content TEXT NOT NULL,
    created_at TEXT NOT NULL
)
"""

VALIDATIONS_TABLE = """
CREATE TABLE IF NOT EXISTS validations (
    response_id TEXT PRIMARY KEY,
    query_type TEXT NOT NULL,
    overall_score REAL NOT NULL,
    confidence_score REAL NOT NULL,
    hallucination_risk TEXT NOT NULL,
    fact_check_status TEXT NOT NULL,
    contradictions INTEGER NOT NULL,
    unverified_ratio REAL NOT NULL,
    flagged INTEGER NOT NULL,
    checks TEXT NOT NULL DEFAULT '{}',
    issues TEXT NOT NULL DEFAULT '[]',
    created_at TEXT NOT NULL
)
"""

FEEDBACK_TABLE = """
CREATE TABLE IF NOT EXISTS feedback (
    feedback_id TEXT PRIMARY KEY,
    response_id TEXT NOT NULL,
    type TEXT NOT NULL,
    rating INTEGER,
    corrections TEXT,
    flag_reasons TEXT NOT NULL DEFAULT '[]',
    implicit INTEGER NOT NULL DEFAULT 0,
    timestamp TEXT NOT NULL
)
"""

METRIC_EVENTS_TABLE = """
CREATE TABLE IF NOT EXISTS metric_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    payload TEXT NOT NULL DEFAULT '{}',
    created_at TEXT NOT NULL
)
"""

ALERTS_TABLE = """
CREATE TABLE IF NOT EXISTS alerts (
    alert_id TEXT PRIMARY KEY,
    alert_type TEXT NOT NULL,
    severity TEXT NOT NULL,
    message TEXT NOT NULL,
    metric TEXT NOT NULL,
    value REAL NOT NULL,
    threshold REAL NOT NULL,
    created_at TEXT NOT NULL
)
"""

INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_feedback_response ON feedback(response_id)",
    "CREATE INDEX IF NOT EXISTS idx_feedback_timestamp ON feedback(timestamp)",
    "CREATE INDEX IF NOT EXISTS idx_validations_type ON validations(query_type)",
    "CREATE INDEX IF NOT EXISTS idx_metric_events_name ON metric_events(name)",
    "CREATE INDEX IF NOT EXISTS idx_alerts_severity ON alerts(severity)",
)


async def initialize_result_db(db_path: str) -> None:
    async with aiosqlite.connect(db_path) as db:
        for statement in (
            ORCHESTRATIONS_TABLE,
            VALIDATIONS_TABLE,
            FEEDBACK_TABLE,
            METRIC_EVENTS_TABLE,
            ALERTS_TABLE,
            *INDEXES,
        ):
            await db.execute(statement)
        await db.commit()

"""Alert sinks."""

from __future__ import annotations

from llm_reliability.models.domain import Alert
from llm_reliability.observability.logger import get_logger

logger = get_logger("alerts")


class LoggingAlertSink:
    """Default sink: emits alerts as structured log events."""

    async def send(self, alert: Alert) -> None:
        log = logger.error if alert.severity in ("high", "critical") else logger.warning
        log(
            "alert_raised",
            alert_id=alert.id,
            alert_type=alert.alert_type,
            severity=alert.severity,
            metric=alert.metric,
            value=round(alert.value, 4),
            threshold=alert.threshold,
            message=alert.message,
        )

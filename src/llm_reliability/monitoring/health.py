"""Quality monitoring: rolling metric windows, health snapshots and threshold alerts.

Every component reports events here synchronously (in-memory appends only).
A background task recomputes the snapshot on a fixed cadence and dispatches
newly raised alerts. Nothing in this module may fail the request path.
"""

from __future__ import annotations

import asyncio
import time
from collections import defaultdict, deque
from collections.abc import Callable
from datetime import datetime, timezone

import numpy as np

from llm_reliability.config.settings import Settings
from llm_reliability.models.domain import Alert, HealthSnapshot, ValidationResult
from llm_reliability.observability.logger import get_logger
from llm_reliability.protocols.store import AlertSink, ResultStore
from llm_reliability.providers.registry import ProviderRegistry

logger = get_logger("health_monitor")

LAYERS = (
    "input_validation",
    "context_grounding",
    "orchestration",
    "response_validation",
    "feedback_collection",
    "quality_monitoring",
)


class RollingWindow:
    """Timestamped samples kept for ``window_s`` seconds."""

    def __init__(self, window_s: float, clock: Callable[[], float]) -> None:
        self._window_s = window_s
        self._clock = clock
        self._samples: deque[tuple[float, float]] = deque()

    def add(self, value: float) -> None:
        self._samples.append((self._clock(), value))

    def values(self) -> list[float]:
        cutoff = self._clock() - self._window_s
        while self._samples and self._samples[0][0] < cutoff:
            self._samples.popleft()
        return [v for _, v in self._samples]


class HealthMonitor:
    def __init__(
        self,
        settings: Settings,
        registry: ProviderRegistry | None = None,
        sinks: list[AlertSink] | None = None,
        store: ResultStore | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings = settings
        self._registry = registry
        self._sinks = sinks or []
        self._store = store
        self._clock = clock
        self._windows: dict[str, RollingWindow] = {}
        self._active: dict[str, Alert] = {}
        # Keys already sent to sinks; only evaluate() updates it.
        self._dispatched: set[str] = set()
        self._latest: HealthSnapshot | None = None
        self._task: asyncio.Task | None = None

    # -- event intake -------------------------------------------------------

    def record_attempt(self, provider: str, outcome: str, latency_ms: float) -> None:
        if outcome.startswith("skipped_"):
            self._window(f"provider.{provider}.skipped").add(1.0)
            return
        ok = outcome == "success"
        self._window(f"provider.{provider}.success").add(1.0 if ok else 0.0)
        if ok:
            self._window(f"provider.{provider}.latency_ms").add(latency_ms)

    def record_cache(self, hit: bool) -> None:
        self._window("cache.hit").add(1.0 if hit else 0.0)

    def record_all_failed(self) -> None:
        self._window("orchestration.all_failed").add(1.0)

    def record_request(self, latency_ms: float, outcome: str) -> None:
        """One completed process_message call; outcome is delivered/refused/degraded."""
        self._window("request.latency_ms").add(latency_ms)
        self._window("request.degraded").add(1.0 if outcome == "degraded" else 0.0)
        self._window("request.refused").add(1.0 if outcome == "refused" else 0.0)

    def record_stage(self, layer: str, ok: bool, latency_ms: float) -> None:
        self._window(f"layer.{layer}.ok").add(1.0 if ok else 0.0)
        self._window(f"layer.{layer}.latency_ms").add(latency_ms)

    def record_validation(self, result: ValidationResult, query_type: str) -> None:
        self._window("validation.overall").add(result.overall_score)
        self._window("validation.high_risk").add(1.0 if result.hallucination_risk == "high" else 0.0)
        self._window(f"validation.{query_type}.overall").add(result.overall_score)
        self._window("validation.flagged").add(1.0 if result.flagged else 0.0)

    def record_feedback(self, feedback_type: str) -> None:
        self._window("feedback.negative").add(
            1.0 if feedback_type in ("negative", "correction", "flag") else 0.0
        )

    # -- snapshot -----------------------------------------------------------

    def snapshot(self) -> HealthSnapshot:
        providers = self._provider_status()
        layers = self._layer_status()
        metrics = self._metrics()
        alerts = self._evaluate_alerts(providers, metrics)

        statuses = [p["status"] for p in providers.values()]
        if (providers and "healthy" not in statuses and "degraded" not in statuses) or any(
            a.severity == "critical" for a in alerts
        ):
            status = "unhealthy"
        elif alerts or any(s != "healthy" for s in statuses) or any(
            layer["status"] != "healthy" for layer in layers.values()
        ):
            status = "degraded"
        else:
            status = "healthy"

        self._latest = HealthSnapshot(
            timestamp=datetime.now(timezone.utc),
            status=status,
            per_provider_status=providers,
            per_layer_status=layers,
            active_alerts=alerts,
            metrics=metrics,
        )
        return self._latest

    @property
    def latest(self) -> HealthSnapshot | None:
        return self._latest

    def get_system_health(self) -> dict:
        snap = self.snapshot()
        return {
            "status": snap.status,
            "per_provider_status": snap.per_provider_status,
            "per_layer_status": snap.per_layer_status,
            "active_alerts": snap.active_alerts,
        }

    # -- background loop ----------------------------------------------------

    async def evaluate(self) -> HealthSnapshot:
        """Recompute the snapshot and dispatch alerts raised since the last pass."""
        start = self._clock()
        snap = self.snapshot()
        current = {alert.alert_type + ":" + alert.metric: alert for alert in snap.active_alerts}
        for key, alert in current.items():
            if key not in self._dispatched:
                await self._dispatch(alert)
        self._dispatched = set(current)
        self.record_stage("quality_monitoring", True, (self._clock() - start) * 1000)
        logger.info(
            "health_snapshot",
            status=snap.status,
            alerts=len(snap.active_alerts),
        )
        return snap

    async def run(self, interval_s: float | None = None) -> None:
        interval = interval_s or self._settings.monitor_interval_s
        while True:
            try:
                await self.evaluate()
            except Exception as e:
                self.record_stage("quality_monitoring", False, 0.0)
                logger.error("health_evaluation_failed", error=str(e))
            await asyncio.sleep(interval)

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self.run())

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    # -- internals ----------------------------------------------------------

    def _window(self, name: str) -> RollingWindow:
        w = self._windows.get(name)
        if w is None:
            w = RollingWindow(self._settings.monitor_window_s, self._clock)
            self._windows[name] = w
        return w

    def _values(self, name: str) -> list[float]:
        w = self._windows.get(name)
        return w.values() if w is not None else []

    def _provider_status(self) -> dict[str, dict]:
        if self._registry is None:
            return {}
        result: dict[str, dict] = {}
        for d in self._registry.descriptors():
            outcomes = self._values(f"provider.{d.name}.success")
            latencies = self._values(f"provider.{d.name}.latency_ms")
            success_rate = float(np.mean(outcomes)) if outcomes else None
            p95 = float(np.percentile(latencies, 95)) if latencies else None

            if not d.healthy or d.circuit_state == "open":
                status = "unhealthy"
            elif (
                d.circuit_state == "half_open"
                or d.rate_limit_state.get("throttled")
                or (
                    success_rate is not None
                    and len(outcomes) >= self._settings.monitor_min_samples
                    and 1.0 - success_rate > self._settings.alert_provider_failure_rate
                )
            ):
                status = "degraded"
            else:
                status = "healthy"

            result[d.name] = {
                "status": status,
                "healthy": d.healthy,
                "degraded_reason": d.degraded_reason,
                "circuit_state": d.circuit_state,
                "rate_limit": d.rate_limit_state,
                "success_rate": None if success_rate is None else round(success_rate, 4),
                "p95_latency_ms": None if p95 is None else round(p95, 2),
                "calls": len(outcomes),
                "fatal_failures": d.fatal_failures,
            }
        return result

    def _layer_status(self) -> dict[str, dict]:
        result: dict[str, dict] = {}
        for layer in LAYERS:
            oks = self._values(f"layer.{layer}.ok")
            latencies = self._values(f"layer.{layer}.latency_ms")
            error_rate = 1.0 - float(np.mean(oks)) if oks else 0.0
            if error_rate > 0.5:
                status = "unhealthy"
            elif error_rate > 0.2:
                status = "degraded"
            else:
                status = "healthy"
            result[layer] = {
                "status": status,
                "events": len(oks),
                "error_rate": round(error_rate, 4),
                "avg_latency_ms": round(float(np.mean(latencies)), 2) if latencies else None,
            }
        return result

    def _metrics(self) -> dict:
        def mean(name: str) -> float | None:
            vals = self._values(name)
            return float(np.mean(vals)) if vals else None

        latencies = self._values("request.latency_ms")
        return {
            "requests": len(latencies),
            "validations": len(self._values("validation.overall")),
            "avg_quality": mean("validation.overall"),
            "hallucination_rate": mean("validation.high_risk"),
            "flagged_rate": mean("validation.flagged"),
            "cache_hit_rate": mean("cache.hit"),
            "degraded_rate": mean("request.degraded"),
            "refusal_rate": mean("request.refused"),
            "negative_feedback_rate": mean("feedback.negative"),
            "all_failed_count": len(self._values("orchestration.all_failed")),
            "p95_latency_ms": float(np.percentile(latencies, 95)) if latencies else None,
        }

    def _evaluate_alerts(self, providers: dict[str, dict], metrics: dict) -> list[Alert]:
        s = self._settings
        raised: dict[str, Alert] = {}

        def check(alert_type: str, metric: str, value, threshold: float, above: bool,
                  severity: str, message: str, min_samples: int = 0, samples: int = 0) -> None:
            if value is None or samples < min_samples:
                return
            crossed = value > threshold if above else value < threshold
            if not crossed:
                return
            key = f"{alert_type}:{metric}"
            existing = self._active.get(key)
            if existing is not None:
                existing.value = value
                raised[key] = existing
            else:
                raised[key] = Alert(alert_type, severity, message, metric, float(value), threshold)

        n_val = metrics["validations"]
        check("hallucination_rate", "validation.high_risk", metrics["hallucination_rate"],
              s.alert_hallucination_rate, True, "high",
              "High hallucination-risk rate over the rolling window",
              s.monitor_min_samples, n_val)
        check("low_quality", "validation.overall", metrics["avg_quality"],
              s.alert_min_avg_quality, False, "medium",
              "Average response quality below threshold", s.monitor_min_samples, n_val)
        check("latency", "request.p95_latency_ms", metrics["p95_latency_ms"],
              s.alert_p95_latency_ms, True, "medium", "p95 request latency above threshold",
              s.monitor_min_samples, metrics["requests"])
        if metrics["requests"]:
            check("all_providers_failed", "orchestration.all_failed",
                  metrics["all_failed_count"] / metrics["requests"], s.alert_all_failed_rate,
                  True, "critical", "Requests are exhausting every provider",
                  s.monitor_min_samples, metrics["requests"])

        for name, p in providers.items():
            if p["success_rate"] is not None:
                check("provider_failure_rate", f"provider.{name}.failure_rate",
                      1.0 - p["success_rate"], s.alert_provider_failure_rate, True, "high",
                      f"Provider {name} failure rate above threshold",
                      s.monitor_min_samples, p["calls"])
            check("provider_fatal", f"provider.{name}.fatal_failures", p["fatal_failures"],
                  s.alert_fatal_failures - 0.5, True, "high",
                  f"Provider {name} has repeated fatal failures")

        if providers and all(p["status"] == "unhealthy" for p in providers.values()):
            check("no_providers", "providers.eligible", 0.0, 0.5, False, "critical",
                  "No provider is currently eligible")

        resolved = set(self._active) - set(raised)
        for key in resolved:
            logger.info("alert_resolved", alert=key)
        self._active = raised
        return list(raised.values())

    async def _dispatch(self, alert: Alert) -> None:
        for sink in self._sinks:
            try:
                await sink.send(alert)
            except Exception as e:
                logger.warning("alert_sink_failed", alert_type=alert.alert_type, error=str(e))
        if self._store is not None:
            try:
                await self._store.save_alert(alert)
            except Exception as e:
                logger.warning("alert_persist_failed", alert_type=alert.alert_type, error=str(e))

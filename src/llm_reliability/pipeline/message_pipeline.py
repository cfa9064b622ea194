"""Message pipeline: the request path from raw message to delivered response.

States: received -> input_validated -> context_built -> orchestrated ->
response_validated -> delivered, with terminal ``rejected`` (unsafe input) and
``degraded`` (provider exhaustion or deadline). Every stage reports its outcome
and latency to the health monitor.
"""

from __future__ import annotations

import asyncio
import time
from collections import defaultdict
from collections.abc import Coroutine
from typing import Any
from uuid import uuid4

from llm_reliability.cache.response_cache import ResponseCache
from llm_reliability.config.constants import APOLOGY_MESSAGE, LOW_QUALITY_NOTICE, REFUSAL_MESSAGE
from llm_reliability.config.settings import Settings
from llm_reliability.exceptions import (
    InputRejectedError,
    OrchestrationError,
    PipelineDeadlineExceeded,
)
from llm_reliability.models.domain import (
    DeliveredResponse,
    Feedback,
    GroundedContext,
    OrchestrationResult,
    PipelineConfig,
    Query,
    ValidationResult,
)
from llm_reliability.models.schemas import (
    CheckSummary,
    FeedbackRequest,
    FeedbackResponse,
    Preferences,
    ProcessMessageRequest,
    ProcessMessageResponse,
    ValidationSummary,
)
from llm_reliability.monitoring.health import HealthMonitor
from llm_reliability.observability.logger import get_logger
from llm_reliability.observability.metrics import log_orchestration_metrics, log_validation_metrics
from llm_reliability.observability.tracing import TraceContext
from llm_reliability.orchestration.orchestrator import ProviderOrchestrator
from llm_reliability.pipeline.context_grounding import ContextBuilder
from llm_reliability.pipeline.feedback import FeedbackCollector, LearningPatternBook
from llm_reliability.pipeline.input_validation import InputValidator
from llm_reliability.pipeline.response_validation import ResponseValidator
from llm_reliability.protocols.store import ResultStore

logger = get_logger("message_pipeline")


class MessagePipeline:
    def __init__(
        self,
        input_validator: InputValidator,
        context_builder: ContextBuilder,
        orchestrator: ProviderOrchestrator,
        response_validator: ResponseValidator,
        feedback: FeedbackCollector,
        patterns: LearningPatternBook,
        monitor: HealthMonitor,
        cache: ResponseCache,
        settings: Settings,
        store: ResultStore | None = None,
    ) -> None:
        self._input = input_validator
        self._context = context_builder
        self._orchestrator = orchestrator
        self._validator = response_validator
        self._feedback = feedback
        self._patterns = patterns
        self._monitor = monitor
        self._cache = cache
        self._settings = settings
        self._store = store
        self._inflight: dict[str, set[asyncio.Task]] = defaultdict(set)
        self._background: set[asyncio.Task] = set()

    def config_for(self, preferences: Preferences) -> PipelineConfig:
        return PipelineConfig(
            enable_validation=preferences.enable_validation,
            validation_level=preferences.validation_level,
            quality_threshold=preferences.quality_threshold,
            collect_feedback=preferences.collect_feedback,
            deadline_s=self._settings.pipeline_deadline_s,
        )

    # -- process_message ----------------------------------------------------

    async def process_message(self, request: ProcessMessageRequest) -> ProcessMessageResponse:
        task = asyncio.current_task()
        if task is not None:
            self._inflight[request.session_id].add(task)
        try:
            return await self._process(request)
        finally:
            if task is not None:
                tasks = self._inflight.get(request.session_id)
                if tasks is not None:
                    tasks.discard(task)
                    if not tasks:
                        self._inflight.pop(request.session_id, None)

    async def _process(self, request: ProcessMessageRequest) -> ProcessMessageResponse:
        config = self.config_for(request.preferences)
        trace = TraceContext()
        loop = asyncio.get_running_loop()
        deadline = loop.time() + config.deadline_s
        query = Query(
            raw_text=request.message, user_id=request.user_id, session_id=request.session_id
        )
        self._context.profiles.update(request.user_id, request.profile)

        # STEP 1: Input validation
        stage_start = time.monotonic()
        try:
            with trace.span("input_validation"):
                query, flags = self._input.validate(query)
        except InputRejectedError as e:
            self._stage("input_validation", True, stage_start)
            trace.transition("rejected")
            return self._finish_refusal(query, trace, e)
        self._stage("input_validation", True, stage_start)
        trace.transition("input_validated")
        classification = query.classification

        # STEP 2: Context grounding
        stage_start = time.monotonic()
        try:
            with trace.span("context_grounding"):
                context = await self._within(self._context.build(query), deadline)
            self._stage("context_grounding", True, stage_start)
        except PipelineDeadlineExceeded:
            self._stage("context_grounding", False, stage_start)
            return self._finish_degraded(query, trace, "deadline_exceeded")
        except Exception as e:
            # Grounding is best-effort; answer without context rather than fail.
            self._stage("context_grounding", False, stage_start)
            logger.warning("context_grounding_failed", query_id=query.id, error=str(e))
            context = GroundedContext(items=[], fact_check_points=[], sources=[], token_count=0)
        trace.transition("context_built")

        # STEP 3: Orchestration
        provider_request = self._context.build_request(query, context)
        demoted = self._patterns.demoted_providers(classification.type)
        stage_start = time.monotonic()
        try:
            with trace.span("orchestration", demoted=demoted):
                result = await self._within(
                    self._orchestrator.orchestrate(
                        query,
                        classification,
                        provider_request,
                        demoted=demoted,
                        context=context,
                    ),
                    deadline,
                )
        except OrchestrationError as e:
            self._stage("orchestration", False, stage_start)
            self._persist(
                "save_metric_event",
                "all_providers_failed",
                {
                    "query_id": query.id,
                    "correlation_id": e.correlation_id,
                    "attempts": [(a.provider, a.outcome, a.tries) for a in e.attempts],
                },
            )
            return self._finish_degraded(
                query, trace, "all_providers_failed", correlation_id=e.correlation_id
            )
        except PipelineDeadlineExceeded:
            self._stage("orchestration", False, stage_start)
            return self._finish_degraded(query, trace, "deadline_exceeded")
        self._stage("orchestration", True, stage_start)
        trace.transition("orchestrated")
        log_orchestration_metrics(trace.trace_id, result)

        response_id = str(uuid4())
        self._persist("save_orchestration", query.id, response_id, result)

        # Deadline passed before validation: deliver unvalidated.
        if loop.time() >= deadline:
            logger.warning("validation_skipped_deadline", query_id=query.id)
            return self._deliver(
                query, trace, config, result, response_id, None, degraded=True
            )

        # STEP 4: Response validation
        stage_start = time.monotonic()
        with trace.span("response_validation", level=config.validation_level):
            validation = self._validator.validate(
                query.text,
                result.content,
                context,
                classification,
                level=config.validation_level,
                history=self._context.history.assistant_texts(query.session_id),
                quality_threshold=config.quality_threshold if config.enable_validation else None,
            )
        self._stage("response_validation", True, stage_start)
        trace.transition("response_validated")
        log_validation_metrics(trace.trace_id, validation)
        self._emit("record_validation", validation, classification.type)
        self._persist("save_validation", response_id, classification.type, validation)

        if classification.requires_facts:
            if validation.hallucination_risk == "high":
                self._cache.require_revalidation(result.fingerprint)
            elif not result.cached:
                self._cache.mark_validated(result.fingerprint, result)

        return self._deliver(query, trace, config, result, response_id, validation)

    # -- terminal states ----------------------------------------------------

    def _finish_refusal(
        self, query: Query, trace: TraceContext, error: InputRejectedError
    ) -> ProcessMessageResponse:
        self._emit("record_request", trace.elapsed_ms, "refused")
        self._save_trace(trace, query)
        logger.info("message_refused", query_id=query.id, reason=error.reason)
        return ProcessMessageResponse(
            content=REFUSAL_MESSAGE,
            quality_score=0.0,
            confidence_score=0.0,
            hallucination_risk="low",
            response_id=str(uuid4()),
            refused=True,
            error="input_rejected",
        )

    def _finish_degraded(
        self,
        query: Query,
        trace: TraceContext,
        reason: str,
        correlation_id: str | None = None,
    ) -> ProcessMessageResponse:
        correlation_id = correlation_id or str(uuid4())
        trace.transition("degraded")
        self._emit("record_request", trace.elapsed_ms, "degraded")
        self._save_trace(trace, query)
        logger.error(
            "message_degraded", query_id=query.id, reason=reason, correlation_id=correlation_id
        )
        return ProcessMessageResponse(
            content=f"{APOLOGY_MESSAGE} (Reference: {correlation_id})",
            quality_score=0.0,
            confidence_score=0.0,
            hallucination_risk="high",
            response_id=str(uuid4()),
            degraded=True,
            correlation_id=correlation_id,
            error=reason,
        )

    def _deliver(
        self,
        query: Query,
        trace: TraceContext,
        config: PipelineConfig,
        result: OrchestrationResult,
        response_id: str,
        validation: ValidationResult | None,
        degraded: bool = False,
    ) -> ProcessMessageResponse:
        classification = query.classification
        content = result.content
        if validation is None:
            flagged = True
            quality, confidence, risk = 0.0, 0.0, "medium"
        else:
            flagged = config.enable_validation and validation.flagged
            quality = validation.overall_score
            confidence = validation.confidence_score
            risk = validation.hallucination_risk
        if flagged:
            content = f"{content}\n\n{LOW_QUALITY_NOTICE}"

        if config.collect_feedback:
            self._feedback.register_response(
                DeliveredResponse(
                    response_id=response_id,
                    query_type=classification.type,
                    provider_used=result.provider_used,
                    fingerprint=result.fingerprint,
                    user_id=query.user_id,
                )
            )
        self._context.history.append(query.session_id, query.text, result.content)

        if degraded:
            trace.transition("degraded")
        else:
            trace.transition("delivered")
        self._emit("record_request", trace.elapsed_ms, "degraded" if degraded else "delivered")
        self._save_trace(trace, query)

        logger.info(
            "message_delivered",
            query_id=query.id,
            response_id=response_id,
            provider=result.provider_used,
            cached=result.cached,
            quality=quality,
            risk=risk,
            flagged=flagged,
            degraded=degraded,
            latency_ms=round(trace.elapsed_ms, 2),
        )
        return ProcessMessageResponse(
            content=content,
            quality_score=quality,
            confidence_score=confidence,
            hallucination_risk=risk,
            validation_results=(
                self._summary(validation)
                if validation is not None and config.enable_validation
                else None
            ),
            response_id=response_id,
            flagged=flagged,
            degraded=degraded,
            cached=result.cached,
            provider_used=result.provider_used,
            error="validation_skipped_deadline" if degraded else None,
        )

    @staticmethod
    def _summary(validation: ValidationResult) -> ValidationSummary:
        return ValidationSummary(
            overall_score=validation.overall_score,
            checks={
                name: CheckSummary(passed=c.passed, score=c.score, severity=c.severity)
                for name, c in validation.checks.items()
            },
            issues=validation.issues,
            fact_check_status=validation.fact_check_status,
            contradictions=validation.contradictions,
        )

    # -- feedback / health / cancellation -----------------------------------

    async def submit_feedback(self, request: FeedbackRequest) -> FeedbackResponse:
        feedback = Feedback(
            response_id=request.response_id,
            type=request.type,
            rating=request.rating,
            corrections=request.corrections,
            flag_reasons=tuple(request.flag_reasons),
        )
        try:
            feedback_id, accepted = self._feedback.submit(feedback)
        except Exception as e:
            logger.error("feedback_submit_failed", response_id=request.response_id, error=str(e))
            return FeedbackResponse(feedback_id=feedback.id, accepted=False)
        return FeedbackResponse(feedback_id=feedback_id, accepted=accepted)

    def record_implicit(
        self, response_id: str, dwell_seconds: float, follow_up_count: int
    ) -> bool:
        _, accepted = self._feedback.record_implicit(response_id, dwell_seconds, follow_up_count)
        return accepted

    def get_system_health(self) -> dict:
        return self._monitor.get_system_health()

    def cancel_session(self, session_id: str) -> int:
        """Cancel in-flight messages for a session. Rate-limit charges stay."""
        tasks = list(self._inflight.get(session_id, ()))
        for task in tasks:
            task.cancel()
        if tasks:
            logger.info("session_cancelled", session_id=session_id, tasks=len(tasks))
        return len(tasks)

    async def shutdown(self) -> None:
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    # -- internals ----------------------------------------------------------

    @staticmethod
    async def _within(coro: Coroutine[Any, Any, Any], deadline: float) -> Any:
        remaining = deadline - asyncio.get_running_loop().time()
        if remaining <= 0:
            coro.close()
            raise PipelineDeadlineExceeded("pipeline deadline exceeded")
        try:
            return await asyncio.wait_for(coro, timeout=remaining)
        except asyncio.TimeoutError as e:
            raise PipelineDeadlineExceeded("pipeline deadline exceeded") from e

    def _stage(self, layer: str, ok: bool, started: float) -> None:
        self._emit("record_stage", layer, ok, (time.monotonic() - started) * 1000)

    def _emit(self, method: str, *args) -> None:
        try:
            getattr(self._monitor, method)(*args)
        except Exception as e:
            logger.warning("monitor_event_failed", event=method, error=str(e))

    def _save_trace(self, trace: TraceContext, query: Query) -> None:
        t = trace.to_trace(query.id)
        self._persist(
            "save_metric_event",
            "pipeline_trace",
            {
                "trace_id": t.trace_id,
                "query_id": t.query_id,
                "timestamp": t.timestamp.isoformat(),
                "latency_ms": t.latency_ms,
                "final_state": t.final_state,
                "states": trace.states,
                "spans": t.spans,
            },
        )

    def _persist(self, method: str, *args) -> None:
        """Fire-and-forget store write; failures are logged and dropped."""
        if self._store is None:
            return

        async def write() -> None:
            try:
                await getattr(self._store, method)(*args)
            except Exception as e:
                logger.warning("persist_failed", method=method, error=str(e))

        task = asyncio.create_task(write())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

"""Provider orchestration: cache lookup, fallback chain, resilient calls, cache write-back."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Iterable
from uuid import uuid4

from llm_reliability.cache.response_cache import ResponseCache, fingerprint
from llm_reliability.config.settings import Settings
from llm_reliability.exceptions import OrchestrationError, ProviderError, ProviderServerError
from llm_reliability.models.domain import (
    Attempt,
    GroundedContext,
    OrchestrationResult,
    ProviderDescriptor,
    ProviderRequest,
    ProviderResponse,
    Query,
    QueryClassification,
)
from llm_reliability.monitoring.health import HealthMonitor
from llm_reliability.observability.logger import get_logger
from llm_reliability.providers.registry import ProviderRegistry
from llm_reliability.resilience.retry import ResilientExecutor

logger = get_logger("orchestrator")


class ProviderOrchestrator:
    def __init__(
        self,
        registry: ProviderRegistry,
        executor: ResilientExecutor,
        cache: ResponseCache,
        settings: Settings,
        monitor: HealthMonitor | None = None,
    ) -> None:
        self._registry = registry
        self._executor = executor
        self._cache = cache
        self._settings = settings
        self._monitor = monitor
        self._semaphore = asyncio.Semaphore(settings.max_concurrent_provider_calls)

    @staticmethod
    def context_level(
        classification: QueryClassification,
        query: Query | None = None,
        context: GroundedContext | None = None,
    ) -> str:
        """Base level, scoped to the user and session whose data shaped the prompt."""
        level = "grounded" if classification.requires_context else "plain"
        if query is None or context is None:
            return level
        kinds = {item.kind for item in context.items}
        if "profile" in kinds:
            level += f"|user={query.user_id}"
        if "history" in kinds:
            level += f"|session={query.session_id}"
        return level

    def fingerprint_for(
        self,
        query: Query,
        classification: QueryClassification,
        context: GroundedContext | None = None,
    ) -> str:
        return fingerprint(
            query.text or query.raw_text, self.context_level(classification, query, context)
        )

    async def orchestrate(
        self,
        query: Query,
        classification: QueryClassification,
        request: ProviderRequest | None = None,
        demoted: Iterable[str] = (),
        context: GroundedContext | None = None,
    ) -> OrchestrationResult:
        start = time.monotonic()
        request = request or ProviderRequest(
            prompt=query.text or query.raw_text,
            temperature=self._settings.provider_temperature,
            max_tokens=self._settings.provider_max_tokens,
        )
        key = self.fingerprint_for(query, classification, context)

        # STEP 1: Cache
        cached = self._cache.get(key)
        if cached is not None:
            self._emit("record_cache", True)
            logger.info("cache_hit", query_id=query.id, fingerprint=key[:12])
            return OrchestrationResult(
                content=cached.content,
                provider_used=cached.provider_used,
                attempts=(),
                cached=True,
                fingerprint=key,
                model=cached.model,
                latency_ms=(time.monotonic() - start) * 1000,
            )
        self._emit("record_cache", False)

        # STEP 2: Build the eligible chain
        chain, skipped = self._build_chain(classification.type, request.capability, set(demoted))
        logger.info(
            "fallback_chain",
            query_id=query.id,
            chain=[d.name for d in chain],
            skipped=skipped,
        )

        # STEP 3: Walk the chain
        attempts: list[Attempt] = []
        for descriptor in chain:
            hop_start = time.monotonic()
            try:
                async with self._semaphore:
                    execution = await self._executor.execute(
                        descriptor.name, self._attempt_fn(descriptor.name, request)
                    )
            except ProviderError as e:
                latency_ms = (time.monotonic() - hop_start) * 1000
                attempts.append(Attempt(descriptor.name, e.outcome, latency_ms, e.tries))
                self._emit("record_attempt", descriptor.name, e.outcome, latency_ms)
                logger.warning(
                    "provider_failed",
                    query_id=query.id,
                    provider=descriptor.name,
                    outcome=e.outcome,
                    tries=e.tries,
                )
                continue

            latency_ms = (time.monotonic() - hop_start) * 1000
            attempts.append(Attempt(descriptor.name, "success", latency_ms, execution.tries))
            self._emit("record_attempt", descriptor.name, "success", latency_ms)
            response: ProviderResponse = execution.value
            result = OrchestrationResult(
                content=response.content,
                provider_used=descriptor.name,
                attempts=tuple(attempts),
                cached=False,
                fingerprint=key,
                model=response.model,
                skipped=tuple(skipped),
                latency_ms=(time.monotonic() - start) * 1000,
            )
            self._cache.put(key, result, pending_validation=classification.requires_facts)
            logger.info(
                "orchestration_succeeded",
                query_id=query.id,
                provider=descriptor.name,
                attempts=len(attempts),
                latency_ms=round(result.latency_ms, 2),
            )
            return result

        # STEP 4: Exhausted
        correlation_id = str(uuid4())
        self._emit("record_all_failed")
        logger.error(
            "all_providers_failed",
            query_id=query.id,
            correlation_id=correlation_id,
            attempts=[(a.provider, a.outcome) for a in attempts],
            skipped=skipped,
        )
        raise OrchestrationError(correlation_id=correlation_id, attempts=attempts)

    def _build_chain(
        self, query_type: str, capability: str, demoted: set[str]
    ) -> tuple[list[ProviderDescriptor], list[str]]:
        candidates = self._registry.by_capability(capability)
        order = self._settings.fallback_chains.get(query_type)
        if order:
            rank = {name: i for i, name in enumerate(order)}
            candidates.sort(key=lambda d: (rank.get(d.name, len(rank) + d.priority), d.priority))
        # stable sort keeps chain order inside each group
        candidates.sort(key=lambda d: d.name in demoted)

        chain: list[ProviderDescriptor] = []
        skipped: list[str] = []
        for d in candidates:
            eligible, reason = self._registry.is_eligible(d.name)
            if eligible:
                chain.append(d)
            else:
                skipped.append(d.name)
                self._emit("record_attempt", d.name, f"skipped_{reason}", 0.0)
        return chain, skipped

    def _attempt_fn(self, name: str, request: ProviderRequest):
        client = self._registry.client(name)

        async def call() -> ProviderResponse:
            response = await client.invoke(request)
            if not response.content.strip():
                raise ProviderServerError(name, "empty response")
            return response

        return call

    def _emit(self, method: str, *args) -> None:
        if self._monitor is None:
            return
        try:
            getattr(self._monitor, method)(*args)
        except Exception as e:
            logger.warning("monitor_event_failed", event=method, error=str(e))

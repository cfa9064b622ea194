"""Wires the request path from settings and the outer collaborators."""

from __future__ import annotations

import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from llm_reliability.cache.response_cache import ResponseCache
from llm_reliability.config.settings import Settings
from llm_reliability.monitoring.alerts import LoggingAlertSink
from llm_reliability.monitoring.health import HealthMonitor
from llm_reliability.orchestration.orchestrator import ProviderOrchestrator
from llm_reliability.pipeline.classifier import QueryClassifier
from llm_reliability.pipeline.context_grounding import (
    ContextBuilder,
    ConversationHistory,
    ProfileStore,
)
from llm_reliability.pipeline.feedback import FeedbackCollector, LearningPatternBook
from llm_reliability.pipeline.input_validation import InputValidator
from llm_reliability.pipeline.message_pipeline import MessagePipeline
from llm_reliability.pipeline.response_validation import ResponseValidator
from llm_reliability.protocols.knowledge import KnowledgeSource
from llm_reliability.protocols.store import AlertSink, ResultStore
from llm_reliability.providers.registry import ProviderRegistry
from llm_reliability.resilience.retry import ResilientExecutor, RetryPolicy


@dataclass
class Services:
    pipeline: MessagePipeline
    registry: ProviderRegistry
    monitor: HealthMonitor
    feedback: FeedbackCollector
    cache: ResponseCache
    patterns: LearningPatternBook


def build_services(
    settings: Settings,
    registry: ProviderRegistry,
    knowledge: KnowledgeSource,
    store: ResultStore | None = None,
    sinks: list[AlertSink] | None = None,
    token_counter: Callable[[str], int] | None = None,
    sleep: Callable[[float], Awaitable[None]] | None = None,
    rng: random.Random | None = None,
) -> Services:
    monitor = HealthMonitor(
        settings,
        registry=registry,
        sinks=sinks if sinks is not None else [LoggingAlertSink()],
        store=store,
    )
    cache = ResponseCache(settings.cache_max_entries, settings.cache_ttl_s)
    policy = RetryPolicy(
        max_attempts=settings.retry_max_attempts,
        base_delay_s=settings.retry_base_delay_s,
        max_delay_s=settings.retry_max_delay_s,
        jitter_s=settings.retry_jitter_s,
    )
    executor_kwargs = {"rng": rng}
    if sleep is not None:
        executor_kwargs["sleep"] = sleep
    executor = ResilientExecutor(registry, policy, **executor_kwargs)
    orchestrator = ProviderOrchestrator(registry, executor, cache, settings, monitor=monitor)

    patterns = LearningPatternBook()
    feedback = FeedbackCollector(settings, patterns, store=store, cache=cache, monitor=monitor)
    context_builder = ContextBuilder(
        knowledge,
        settings,
        profiles=ProfileStore(),
        history=ConversationHistory(settings.history_max_turns),
        patterns=patterns,
        token_counter=token_counter,
    )
    pipeline = MessagePipeline(
        input_validator=InputValidator(
            QueryClassifier(settings.classification_cache_size), settings.max_input_chars
        ),
        context_builder=context_builder,
        orchestrator=orchestrator,
        response_validator=ResponseValidator(settings),
        feedback=feedback,
        patterns=patterns,
        monitor=monitor,
        cache=cache,
        settings=settings,
        store=store,
    )
    return Services(
        pipeline=pipeline,
        registry=registry,
        monitor=monitor,
        feedback=feedback,
        cache=cache,
        patterns=patterns,
    )

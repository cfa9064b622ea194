"""FastAPI dependency injection helpers."""

from __future__ import annotations

from fastapi import Request

from llm_reliability.monitoring.health import HealthMonitor
from llm_reliability.pipeline.message_pipeline import MessagePipeline
from llm_reliability.providers.registry import ProviderRegistry


def get_pipeline(request: Request) -> MessagePipeline:
    return request.app.state.pipeline


def get_registry(request: Request) -> ProviderRegistry:
    return request.app.state.registry


def get_monitor(request: Request) -> HealthMonitor:
    return request.app.state.monitor

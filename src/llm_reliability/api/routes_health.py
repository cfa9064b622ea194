"""Health and provider administration endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from llm_reliability.api.dependencies import get_pipeline, get_registry
from llm_reliability.models.schemas import (
    AlertSchema,
    ProviderResetResponse,
    SystemHealthResponse,
)
from llm_reliability.pipeline.message_pipeline import MessagePipeline
from llm_reliability.providers.registry import ProviderRegistry

router = APIRouter()


@router.get("/health", response_model=SystemHealthResponse)
async def health(pipeline: MessagePipeline = Depends(get_pipeline)) -> SystemHealthResponse:
    snapshot = pipeline.get_system_health()
    return SystemHealthResponse(
        status=snapshot["status"],
        per_provider_status=snapshot["per_provider_status"],
        per_layer_status=snapshot["per_layer_status"],
        active_alerts=[
            AlertSchema(
                id=a.id,
                alert_type=a.alert_type,
                severity=a.severity,
                message=a.message,
                metric=a.metric,
                value=a.value,
                threshold=a.threshold,
            )
            for a in snapshot["active_alerts"]
        ],
    )


@router.post("/providers/{name}/reset", response_model=ProviderResetResponse)
async def reset_provider(
    name: str,
    registry: ProviderRegistry = Depends(get_registry),
) -> ProviderResetResponse:
    if name not in registry.names():
        raise HTTPException(status_code=404, detail=f"Unknown provider: {name}")
    healthy = await registry.run_health_check(name)
    descriptor = registry.descriptor(name)
    return ProviderResetResponse(
        provider=name,
        healthy=healthy,
        circuit_state=descriptor.circuit_state,
    )

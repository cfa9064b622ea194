"""Feedback endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from llm_reliability.api.dependencies import get_pipeline
from llm_reliability.models.schemas import (
    FeedbackRequest,
    FeedbackResponse,
    ImplicitFeedbackRequest,
)
from llm_reliability.pipeline.message_pipeline import MessagePipeline

router = APIRouter()


@router.post("/feedback", response_model=FeedbackResponse)
async def submit_feedback(
    body: FeedbackRequest,
    pipeline: MessagePipeline = Depends(get_pipeline),
) -> FeedbackResponse:
    return await pipeline.submit_feedback(body)


@router.post("/feedback/implicit")
async def record_implicit(
    body: ImplicitFeedbackRequest,
    pipeline: MessagePipeline = Depends(get_pipeline),
) -> dict:
    accepted = pipeline.record_implicit(body.response_id, body.dwell_seconds, body.follow_up_count)
    return {"response_id": body.response_id, "accepted": accepted}

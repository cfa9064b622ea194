"""Message endpoint."""

from __future__ import annotations

import asyncio
import contextlib

from fastapi import APIRouter, Depends, HTTPException, Request

from llm_reliability.api.dependencies import get_pipeline
from llm_reliability.models.schemas import ProcessMessageRequest, ProcessMessageResponse
from llm_reliability.observability.logger import get_logger
from llm_reliability.pipeline.message_pipeline import MessagePipeline

logger = get_logger("routes_chat")

DISCONNECT_POLL_S = 0.5

router = APIRouter()


@router.post("/messages", response_model=ProcessMessageResponse)
async def process_message(
    body: ProcessMessageRequest,
    request: Request,
    pipeline: MessagePipeline = Depends(get_pipeline),
) -> ProcessMessageResponse:
    task = asyncio.create_task(pipeline.process_message(body))

    async def watch_disconnect() -> None:
        while not task.done():
            if await request.is_disconnected():
                logger.info("client_disconnected", session_id=body.session_id)
                pipeline.cancel_session(body.session_id)
                return
            await asyncio.sleep(DISCONNECT_POLL_S)

    watcher = asyncio.create_task(watch_disconnect())
    try:
        return await task
    except asyncio.CancelledError:
        if not task.done():
            task.cancel()
            raise
        raise HTTPException(status_code=499, detail="Request cancelled")
    finally:
        watcher.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await watcher

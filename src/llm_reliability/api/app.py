"""FastAPI application factory with lifespan management."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from llm_reliability.api.middleware import RequestTimingMiddleware
from llm_reliability.api.routes_chat import router as chat_router
from llm_reliability.api.routes_feedback import router as feedback_router
from llm_reliability.api.routes_health import router as health_router
from llm_reliability.config.settings import Settings
from llm_reliability.knowledge.bm25_knowledge_base import BM25KnowledgeBase
from llm_reliability.observability.logger import get_logger, setup_logging
from llm_reliability.pipeline.factory import build_services
from llm_reliability.protocols.knowledge import KnowledgeSource
from llm_reliability.providers.registry import ProviderRegistry, create_default_registry
from llm_reliability.storage.sqlite_store import SQLiteResultStore

logger = get_logger("app")


def create_app(
    settings: Settings | None = None,
    registry: ProviderRegistry | None = None,
    knowledge: KnowledgeSource | None = None,
) -> FastAPI:
    """Build the app. Collaborators default to the configured providers,
    the BM25 snippet file and the SQLite store."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        cfg = settings or Settings()
        setup_logging(cfg.log_level, cfg.json_logs)

        store = SQLiteResultStore(cfg.sqlite_db_path)
        await store.initialize()

        services = build_services(
            cfg,
            registry or create_default_registry(cfg),
            knowledge or BM25KnowledgeBase.from_file(cfg.knowledge_base_path),
            store=store,
        )
        services.feedback.start()
        services.monitor.start()

        app.state.settings = cfg
        app.state.pipeline = services.pipeline
        app.state.registry = services.registry
        app.state.monitor = services.monitor

        logger.info("startup_complete", providers=services.registry.names())

        yield

        await services.monitor.stop()
        await services.feedback.stop()
        await services.pipeline.shutdown()
        logger.info("shutdown_complete")

    app = FastAPI(
        title="LLM Reliability Core",
        version="1.0.0",
        description="Provider orchestration and staged validation for LLM chat",
        lifespan=lifespan,
    )
    app.add_middleware(RequestTimingMiddleware)
    app.include_router(health_router, tags=["health"])
    app.include_router(chat_router, tags=["chat"])
    app.include_router(feedback_router, tags=["feedback"])
    return app

"""
RAGDesk - Main Application
==========================

Source-grounded support answers over a WhatsApp gateway webhook and a
direct HTTP chat endpoint.

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services, pipeline and DTOs
- Domain: Entities, prompts and output parsing
- Infrastructure: Database, LLM, hybrid search, messaging gateway
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from ragdesk.assistant.interfaces import chat_router
from ragdesk.config import Settings, get_settings
from ragdesk.container import Container, build_container
from ragdesk.core import ConfigurationException
from ragdesk.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    global_exception_handler,
)
from ragdesk.shared.infrastructure.logging import get_logger, setup_logging

logger = get_logger(__name__)


def create_app(settings: Optional[Settings] = None, container: Optional[Container] = None) -> FastAPI:
    """
    Application factory.

    A prebuilt container (tests) is used as is; otherwise one is built from
    settings at startup.
    """
    settings = settings or (container.settings if container else get_settings())

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator:
        """
        STARTUP:
        1. Setup structured logging
        2. Build clients and services
        3. Create database tables (development)

        SHUTDOWN:
        1. Close gateway client
        2. Close database connections
        """
        setup_logging(settings.log_level, settings.environment)
        logger.info("Starting RAGDesk", extra={
            "version": settings.app_version,
            "environment": settings.environment
        })

        active = container
        if active is None:
            try:
                active = build_container(settings)
            except ConfigurationException as e:
                logger.error(
                    "Assistant not configured - chat endpoints will return 503",
                    extra={"error": e.message}
                )

        if active is not None:
            try:
                await active.startup()
            except Exception as e:
                logger.warning(f"Database not available - running in degraded mode: {e}")

        app.state.container = active
        logger.info("RAGDesk started")

        yield

        logger.info("Shutting down RAGDesk")
        if active is not None:
            await active.shutdown()
        logger.info("RAGDesk shutdown complete")

    app = FastAPI(
        title="RAGDesk API",
        description="Retrieval-augmented support assistant with cited answers.",
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(LoggingMiddleware)
    # Added last so it runs first and the id is set before request logging
    app.add_middleware(CorrelationIDMiddleware)
    app.add_exception_handler(Exception, global_exception_handler)

    app.include_router(chat_router)

    @app.get("/health", tags=["Health"])
    async def health_check(request: Request):
        """Health check endpoint for load balancers and orchestrators."""
        active = getattr(request.app.state, "container", None)
        checks = {
            "assistant": "ready" if active is not None else "not_configured",
            "llm_client": type(active.llm_client).__name__ if active else None,
            "search": type(active.search).__name__ if active else None,
            "store": type(active.store).__name__ if active else None,
        }
        return {
            "status": "healthy" if active is not None else "degraded",
            "version": settings.app_version,
            "environment": settings.environment,
            "checks": checks,
        }

    @app.get("/", tags=["Root"])
    async def root():
        """Root endpoint with API information."""
        return {
            "service": "RAGDesk",
            "version": settings.app_version,
            "docs": "/docs",
            "health": "/health",
            "endpoints": [
                "POST /chat/webhook - Messaging gateway webhook",
                "POST /chat/message - Direct chat",
                "GET /chat/threads/{channel}/{participant_id}/messages - Thread history",
            ],
        }

    return app


app = create_app()


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    _settings = get_settings()
    uvicorn.run(
        "ragdesk.main:app",
        host=_settings.host,
        port=_settings.port,
        reload=_settings.environment == "development",
        log_level="info"
    )

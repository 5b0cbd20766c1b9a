"""FastAPI application factory.

Local bridge between the desktop shell and the job orchestrator.
"""

import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI

from cgelabs.config import Settings, get_settings
from cgelabs.core.exceptions import install_exception_handlers
from cgelabs.core.logging import bind_context, clear_context, configure_logging, get_logger
from cgelabs.jobs import PipelineOrchestrator
from cgelabs.services import ResultsService

logger = get_logger(__name__)


def create_app(
    settings: Settings | None = None,
    orchestrator: PipelineOrchestrator | None = None,
) -> FastAPI:
    """Create and configure FastAPI application."""
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan: startup and shutdown."""
        logger.info(
            "Starting CGELabs",
            version=settings.app_version,
            env=settings.env,
            results_dir=str(settings.storage.results_dir),
        )

        app.state.orchestrator = orchestrator or PipelineOrchestrator(settings)
        app.state.results = ResultsService(
            settings,
            registry=app.state.orchestrator.registry,
            metadata_store=app.state.orchestrator.metadata,
        )

        yield

        logger.info("Shutting down CGELabs")
        await app.state.orchestrator.shutdown()
        logger.info("CGELabs shutdown complete")

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Bioinformatics pipeline orchestration",
        docs_url="/docs" if settings.debug else None,
        redoc_url=None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan,
    )
    app.state.settings = settings

    install_exception_handlers(app, include_trace=settings.debug)

    # Request context for structured logging
    @app.middleware("http")
    async def add_request_context(request, call_next):
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4())[:8])
        bind_context(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )
        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            clear_context()

    from cgelabs.api.routes import (
        files_router,
        health_router,
        jobs_router,
        qc_presets_router,
        results_router,
    )

    app.include_router(health_router)
    app.include_router(jobs_router, prefix=settings.api_prefix)
    app.include_router(qc_presets_router, prefix=settings.api_prefix)
    app.include_router(results_router, prefix=settings.api_prefix)
    app.include_router(files_router, prefix=settings.api_prefix)

    return app


def build_default_app() -> FastAPI:
    """Factory used by uvicorn (``--factory``) with logging configured."""
    settings = get_settings()
    configure_logging(settings)
    return create_app(settings)

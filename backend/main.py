"""FastAPI application entry point."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from gatekeeper import __version__
from gatekeeper.api.v1 import router as api_v1_router
from gatekeeper.core.config import get_settings
from gatekeeper.core.database import get_session_factory
from gatekeeper.core.redis import close_redis_pools
from gatekeeper.services.orchestrator import Orchestrator
from gatekeeper.services.queue import QueueRegistry
from gatekeeper.services.store import AnalysisStore
from gatekeeper.workers.processors import register_processors

logger = logging.getLogger(__name__)


def create_app(registry: QueueRegistry | None = None, store: AnalysisStore | None = None) -> FastAPI:
    """Build the API application.

    Without arguments the queue registry, store and processors are wired from
    settings at startup. Passing ``registry`` and ``store`` skips that wiring.
    """
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler."""
        logging.basicConfig(level=settings.log_level.upper())
        logger.info(f"Starting gatekeeper API ({settings.app_env})")

        if registry is not None and store is not None:
            app.state.registry = registry
            app.state.store = store
        else:
            session_factory = get_session_factory()
            app.state.registry = QueueRegistry(settings, session_factory)
            orchestrator = Orchestrator.from_settings(settings, session_factory, app.state.registry.backend)
            app.state.store = orchestrator.store
            register_processors(app.state.registry, orchestrator)

        yield

        logger.info("Shutting down gatekeeper API")
        app.state.registry.close()
        await close_redis_pools()

    app = FastAPI(
        title="Gatekeeper API",
        description="Code-health gatekeeper: complexity, churn and risk analysis with PR verdicts",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_v1_router, prefix=settings.api_v1_prefix)

    @app.get("/")
    async def root() -> dict[str, str]:
        """Root endpoint."""
        return {
            "name": "Gatekeeper API",
            "version": __version__,
            "docs": "/docs",
        }

    return app


app = create_app()

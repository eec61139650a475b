"""FastAPI application factory for Reviewgate.

This module provides the application factory that creates and configures a
FastAPI application with:
- CORS middleware for cross-origin requests
- Request logging middleware with correlation IDs
- Database lifecycle management and the workflow orchestrator
- Change workflow and health endpoints

Example usage:
    >>> from reviewgate.config import ReviewgateConfig
    >>> from reviewgate.web.app import create_app
    >>>
    >>> app = create_app(ReviewgateConfig())
    >>>
    >>> import uvicorn
    >>> uvicorn.run(app, host="127.0.0.1", port=8000)
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from reviewgate.config import ReviewgateConfig
from reviewgate.database.connection import get_engine, get_session_factory, init_schema
from reviewgate.logging import get_logger
from reviewgate.web.middleware import RequestLoggingMiddleware
from reviewgate.web.routes.changes import create_changes_router
from reviewgate.web.routes.health import create_health_router
from reviewgate.workflow import SqlStageResultStore, WorkflowOrchestrator

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = get_logger(__name__)

APP_VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage the database engine and orchestrator for the app's lifetime.

    An orchestrator passed to ``create_app`` is used as is; otherwise one is
    built over a SQL-backed store from the app configuration.

    Args:
        app: FastAPI application instance

    Yields:
        None after startup, cleans up on context exit
    """
    config: ReviewgateConfig = app.state.config

    logger.info("app_startup_begin", host=config.web.host, port=config.web.port)

    engine = None
    if getattr(app.state, "orchestrator", None) is None:
        engine = get_engine(config.database)
        await init_schema(engine)
        store = SqlStageResultStore(get_session_factory(engine))
        app.state.engine = engine
        orchestrator = WorkflowOrchestrator.from_config(config, store)
        app.state.orchestrator = orchestrator
        logger.info(
            "orchestrator_initialized",
            database=config.database.url.split("://", 1)[0],
            reviewers=sorted(s.value for s in orchestrator.reviewers),
        )

    yield

    logger.info("app_shutdown_begin")
    if engine is not None:
        await engine.dispose()
        logger.info("database_engine_disposed")


def create_app(
    config: ReviewgateConfig | None = None,
    orchestrator: WorkflowOrchestrator | None = None,
) -> FastAPI:
    """Create and configure a FastAPI application.

    Args:
        config: Optional ReviewgateConfig. If None, creates default config.
        orchestrator: Optional pre-built orchestrator. If None, the lifespan
            builds one over the configured database.

    Returns:
        Configured FastAPI application instance.
    """
    if config is None:
        config = ReviewgateConfig()

    app = FastAPI(
        title="Reviewgate",
        version=APP_VERSION,
        description="Review-gated change workflow engine",
        lifespan=lifespan,
    )

    app.state.config = config
    app.state.orchestrator = orchestrator

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.web.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(create_health_router())
    app.include_router(create_changes_router())

    logger.info(
        "app_created",
        cors_origins=config.web.cors_origins,
        version=APP_VERSION,
    )

    return app

"""Devflow Workflow Engine - FastAPI Application."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import get_settings
from api.v1.router import api_v1_router
from api.routes import health
from api.routes.ws import router as ws_router
from api.websockets.connection_manager import ConnectionManager
from core.logging_config import setup_logging
from core.middleware import RequestTrackingMiddleware, setup_exception_handlers
from integrations.git_helper import SubprocessGitHelper
from services.storage_service import InMemoryWorkflowStorage, WorkflowStorage
from services.workflow_service import WorkflowOrchestrator
from tasks.base_task import StepServices

logger = logging.getLogger(__name__)


def build_orchestrator(storage: Optional[WorkflowStorage] = None) -> WorkflowOrchestrator:
    """Orchestrator with the default collaborators for this process."""
    return WorkflowOrchestrator(
        storage or InMemoryWorkflowStorage(),
        services=StepServices(git_helper=SubprocessGitHelper()),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    # Startup
    settings = get_settings()
    setup_logging()

    orchestrator = getattr(app.state, "orchestrator", None) or build_orchestrator()
    connections = getattr(app.state, "connections", None) or ConnectionManager()
    orchestrator.event_bus.subscribe(connections.on_engine_event)
    app.state.orchestrator = orchestrator
    app.state.connections = connections

    await orchestrator.init()
    if not settings.HOOK_TOKEN:
        logger.info("[startup] HOOK_TOKEN not set, /hooks endpoint disabled")
    logger.info(f"[startup] {settings.APP_NAME} v{settings.APP_VERSION} started ({settings.ENVIRONMENT})")
    yield
    # Shutdown
    logger.info("[shutdown] Application shutting down...")
    orchestrator.event_bus.unsubscribe(connections.on_engine_event)
    await orchestrator.destroy()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Workflow orchestration engine: cron, hook and chained triggers, "
                    "graph execution with retries, cancellation and live events.",
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        lifespan=lifespan,
    )

    # Request tracking middleware
    app.add_middleware(RequestTrackingMiddleware)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
    )

    # Global exception handlers
    setup_exception_handlers(app)

    # Root health check (unversioned, for supervisors)
    app.include_router(health.router, prefix="/api", tags=["Health"])

    # Versioned API
    app.include_router(api_v1_router, prefix=settings.API_V1_PREFIX)

    # WebSocket endpoint (mounted directly on the app)
    app.include_router(ws_router)

    return app


app = create_app()

"""FastAPI dependency injection functions."""

import hmac
import logging

from fastapi import Depends, Header, HTTPException, Request, status

from api.websockets.connection_manager import ConnectionManager
from app.config import Settings, get_settings
from services.workflow_service import WorkflowOrchestrator

logger = logging.getLogger(__name__)


def get_orchestrator(request: Request) -> WorkflowOrchestrator:
    """The orchestrator created by the application lifespan."""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Workflow engine is not running",
        )
    return orchestrator


def get_connection_manager(request: Request) -> ConnectionManager:
    return request.app.state.connections


async def verify_hook_token(
    authorization: str = Header(default=""),
    settings: Settings = Depends(get_settings),
) -> None:
    """
    Check the bearer token of an inbound hook event.

    Raises:
        HTTPException: 404 when hooks are disabled, 401 on a bad token
    """
    if not settings.HOOK_TOKEN:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Hook endpoint disabled")

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not hmac.compare_digest(token.strip(), settings.HOOK_TOKEN):
        logger.warning("Rejected hook event with invalid token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid hook token",
            headers={"WWW-Authenticate": "Bearer"},
        )

"""Inbound hook events, forwarded to the scheduler's hook matching."""

import json
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status as http_status
import logging

from app.config import Settings, get_settings
from app.dependencies import get_orchestrator, verify_hook_token
from services.workflow_service import WorkflowOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(tags=["hooks"])


@router.post("/", response_model=dict[str, Any], dependencies=[Depends(verify_hook_token)])
async def receive_hook_event(
    request: Request,
    settings: Settings = Depends(get_settings),
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    """
    Receive one hook event, e.g. ``{"type": "PostToolUse", "tool_name": "Edit"}``.

    Every enabled hook workflow whose hookType and condition match is
    triggered. Returns the ids of the workflows that fired.
    """
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > settings.HOOK_MAX_BODY_BYTES:
        raise HTTPException(status_code=http_status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail="Hook body too large")

    body = await request.body()
    if len(body) > settings.HOOK_MAX_BODY_BYTES:
        raise HTTPException(status_code=http_status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail="Hook body too large")

    try:
        payload = json.loads(body or b"{}")
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise HTTPException(status_code=http_status.HTTP_400_BAD_REQUEST, detail="Hook body must be JSON")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=http_status.HTTP_400_BAD_REQUEST, detail="Hook body must be a JSON object")

    fired = orchestrator.scheduler.on_hook_event(payload)
    logger.info(f"Hook event {payload.get('type', '')!r} fired {len(fired)} workflow(s)")
    return {"received": True, "fired": fired}

"""Run endpoints: history, active runs, cancel, approve wait steps."""

from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
import logging

from api.schemas.common import MessageResponse
from api.schemas.workflow import ApproveRequest, RunListResponse
from app.dependencies import get_orchestrator
from services.workflow_service import WorkflowOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(tags=["runs"])


@router.get("/", response_model=RunListResponse)
async def list_runs(
    workflow_id: Optional[str] = Query(default=None, alias="workflowId"),
    limit: int = Query(default=20, ge=1, le=500),
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
) -> RunListResponse:
    """Most recent runs first, optionally for one workflow."""
    runs = await orchestrator.get_runs(workflow_id, limit)
    return RunListResponse(runs=[run.model_dump(mode="json") for run in runs], total=len(runs))


@router.get("/active", response_model=RunListResponse)
async def list_active_runs(
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
) -> RunListResponse:
    runs = orchestrator.get_active_runs()
    return RunListResponse(runs=[run.model_dump(mode="json") for run in runs], total=len(runs))


@router.get("/{run_id}", response_model=dict[str, Any])
async def get_run(
    run_id: str,
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    """Run record plus its stored outputs, if any."""
    run = await orchestrator.get_run(run_id)
    result = await orchestrator.get_run_result(run_id)
    return {**run.model_dump(mode="json"), "result": result}


@router.post("/{run_id}/cancel", response_model=MessageResponse)
async def cancel_run(
    run_id: str,
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
) -> MessageResponse:
    orchestrator.cancel(run_id)
    return MessageResponse(message=f"Run {run_id} cancellation requested")


@router.post("/{run_id}/steps/{step_id}/approve", response_model=MessageResponse)
async def approve_wait(
    run_id: str,
    step_id: str,
    request: Optional[ApproveRequest] = None,
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
) -> MessageResponse:
    orchestrator.approve_wait(run_id, step_id, (request or ApproveRequest()).data)
    logger.info(f"Wait step approved: {run_id}/{step_id}")
    return MessageResponse(message="Approved")

"""Workflow endpoints: list, save, get, delete, enable, trigger, dependency graph, step types, single-step test."""

from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, status
import logging

from api.schemas.common import MessageResponse
from api.schemas.workflow import (
    DependencyGraphResponse,
    EnableRequest,
    RunListResponse,
    TestNodeRequest,
    TestNodeResponse,
    TriggerRequest,
    TriggerResponse,
    WorkflowListResponse,
)
from app.dependencies import get_orchestrator
from services.workflow_service import WorkflowOrchestrator
from workflow.models import TriggerOptions

logger = logging.getLogger(__name__)

router = APIRouter(tags=["workflows"])


@router.get("/", response_model=WorkflowListResponse)
async def list_workflows(
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
) -> WorkflowListResponse:
    workflows = await orchestrator.list_workflows()
    return WorkflowListResponse(workflows=[wf.to_dict() for wf in workflows], total=len(workflows))


@router.put("/", response_model=dict[str, Any])
async def save_workflow(
    payload: dict[str, Any] = Body(...),
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    """
    Create or replace a workflow.

    A missing id is generated. Rejected with 422 when the definition is
    invalid or its dependsOn list would create a cycle.
    """
    workflow = await orchestrator.save_workflow(payload)
    logger.info(f"Workflow saved: {workflow.id}")
    return workflow.to_dict()


@router.get("/dependency-graph", response_model=DependencyGraphResponse)
async def dependency_graph(
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
) -> DependencyGraphResponse:
    return DependencyGraphResponse(**await orchestrator.get_dependency_graph())


@router.get("/step-types", response_model=dict[str, Any])
async def step_types(
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    """Registered step types with their config schemas, for editors."""
    types = orchestrator.engine.registry.list_all()
    return {"types": types, "total": len(types)}


@router.post("/test-node", response_model=TestNodeResponse)
async def test_node(
    request: TestNodeRequest,
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
) -> TestNodeResponse:
    """Run one step in isolation and return its output."""
    return TestNodeResponse(**await orchestrator.test_node(request.step, request.ctx))


@router.get("/{workflow_id}", response_model=dict[str, Any])
async def get_workflow(
    workflow_id: str,
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    workflow = await orchestrator.get_workflow(workflow_id)
    return workflow.to_dict()


@router.delete("/{workflow_id}", response_model=MessageResponse)
async def delete_workflow(
    workflow_id: str,
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
) -> MessageResponse:
    await orchestrator.delete_workflow(workflow_id)
    return MessageResponse(message=f"Workflow {workflow_id} deleted")


@router.post("/{workflow_id}/enable", response_model=dict[str, Any])
async def set_enabled(
    workflow_id: str,
    request: EnableRequest,
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    workflow = await orchestrator.set_enabled(workflow_id, request.enabled)
    return workflow.to_dict()


@router.post("/{workflow_id}/migrate", response_model=dict[str, Any])
async def migrate_workflow(
    workflow_id: str,
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    """Convert a legacy step list into a graph."""
    workflow = await orchestrator.migrate_workflow(workflow_id)
    return workflow.to_dict()


@router.post("/{workflow_id}/trigger", response_model=TriggerResponse, status_code=status.HTTP_202_ACCEPTED)
async def trigger_workflow(
    workflow_id: str,
    request: Optional[TriggerRequest] = None,
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
) -> TriggerResponse:
    """
    Start a run.

    Returns immediately once the run has started. With concurrency=queue
    the response is held until the queued run starts; with concurrency=skip
    a busy workflow answers ``skipped: true``.
    """
    request = request or TriggerRequest()
    outcome = await orchestrator.trigger(
        workflow_id,
        TriggerOptions(
            source="manual",
            trigger_data=request.trigger_data,
            project_path=request.project_path,
        ),
    )
    return TriggerResponse(**outcome.model_dump())


@router.get("/{workflow_id}/runs", response_model=RunListResponse)
async def list_workflow_runs(
    workflow_id: str,
    limit: int = 20,
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
) -> RunListResponse:
    await orchestrator.get_workflow(workflow_id)
    runs = await orchestrator.get_runs(workflow_id, limit)
    return RunListResponse(runs=[run.model_dump(mode="json") for run in runs], total=len(runs))

"""Workflow and run schemas."""

from pydantic import BaseModel, Field
from typing import List, Optional, Dict, Any


class WorkflowListResponse(BaseModel):
    """Stored workflows, in their raw JSON shape."""

    workflows: List[Dict[str, Any]]
    total: int


class EnableRequest(BaseModel):
    enabled: bool = Field(default=True, description="Whether the workflow may be triggered")


class TriggerRequest(BaseModel):
    """Request to trigger a workflow run."""

    trigger_data: Dict[str, Any] = Field(default={}, alias="triggerData", description="Exposed as $trigger")
    project_path: Optional[str] = Field(default=None, alias="projectPath", description="Overrides scope.projectPath")

    model_config = {"populate_by_name": True}


class TriggerResponse(BaseModel):
    success: bool
    run_id: Optional[str] = None
    skipped: bool = False
    queued: bool = False
    error: Optional[str] = None


class TestNodeRequest(BaseModel):
    """Run a single step outside any workflow."""

    step: Dict[str, Any] = Field(description="Legacy step or graph node with a type")
    ctx: Dict[str, Any] = Field(default={}, description="Extra $ctx variables")


class TestNodeResponse(BaseModel):
    success: bool
    output: Any = None
    error: Optional[str] = None
    duration: float


class DependencyGraphResponse(BaseModel):
    nodes: List[Dict[str, Any]]
    edges: List[Dict[str, Any]]


class RunListResponse(BaseModel):
    runs: List[Dict[str, Any]]
    total: int


class ApproveRequest(BaseModel):
    data: Dict[str, Any] = Field(default={}, description="Returned to the wait step as data")

"""
Workflow Storage: definitions, run history and result payloads.

The engine talks to storage only through the ``WorkflowStorage`` protocol.
``InMemoryWorkflowStorage`` is the in-process implementation used by the
host by default and by the tests. Run history is kept newest first and
trimmed per workflow and globally.
"""

from typing import Any, Optional, Protocol, Sequence, runtime_checkable

import structlog

from app.config import get_settings
from workflow.models import DependencySpec, Run, WorkflowDefinition

logger = structlog.get_logger(__name__)


@runtime_checkable
class WorkflowStorage(Protocol):
    async def load_workflows(self) -> list[WorkflowDefinition]: ...

    async def get_workflow(self, workflow_id: str) -> Optional[WorkflowDefinition]: ...

    async def upsert_workflow(self, workflow: WorkflowDefinition) -> WorkflowDefinition: ...

    async def delete_workflow(self, workflow_id: str) -> bool: ...

    async def append_run(self, run: Run) -> None: ...

    async def update_run(self, run_id: str, patch: dict[str, Any]) -> Optional[Run]: ...

    async def save_result_payload(self, run_id: str, payload: dict[str, Any]) -> None: ...

    async def get_run_result(self, run_id: str) -> Optional[dict[str, Any]]: ...

    async def get_run(self, run_id: str) -> Optional[Run]: ...

    async def get_runs_for_workflow(self, workflow_id: str, limit: Optional[int] = None) -> list[Run]: ...

    async def get_recent_runs(self, limit: int = 20) -> list[Run]: ...

    async def clear_runs(self, workflow_id: str) -> int: ...

    def detect_cycle(
        self, workflow_id: str, depends_on: Sequence[Any], workflows: Sequence[WorkflowDefinition]
    ) -> dict[str, Any]: ...


def _dependency_id(dep: Any) -> str:
    if isinstance(dep, DependencySpec):
        return dep.workflow
    if isinstance(dep, dict):
        return str(dep.get("workflow", ""))
    return str(dep)


def detect_cycle(
    workflow_id: str,
    depends_on: Sequence[Any],
    workflows: Sequence[WorkflowDefinition],
) -> dict[str, Any]:
    """Check whether saving ``workflow_id`` with ``depends_on`` creates a cycle.

    Depth-first search over the dependsOn graph with the proposed edges
    applied. Returns ``{"has_cycle": bool, "cycle": [ids...]}``; the cycle
    path starts at ``workflow_id`` and ends at the repeated node.
    """
    graph: dict[str, list[str]] = {wf.id: [d.workflow for d in wf.depends_on] for wf in workflows}
    graph[workflow_id] = [_dependency_id(d) for d in depends_on or []]

    visited: set[str] = set()
    on_stack: set[str] = set()

    def dfs(node: str, path: list[str]) -> Optional[list[str]]:
        if node in on_stack:
            return path + [node]
        if node in visited:
            return None
        visited.add(node)
        on_stack.add(node)
        for neighbor in graph.get(node, []):
            cycle = dfs(neighbor, path + [node])
            if cycle:
                return cycle
        on_stack.discard(node)
        return None

    cycle = dfs(workflow_id, [])
    return {"has_cycle": bool(cycle), "cycle": cycle or []}


class InMemoryWorkflowStorage:
    """Process-local storage with the same retention rules as a persistent store."""

    def __init__(
        self,
        workflows: Optional[Sequence[WorkflowDefinition]] = None,
        max_runs_per_workflow: Optional[int] = None,
        max_runs_total: Optional[int] = None,
    ):
        settings = get_settings()
        self.max_runs_per_workflow = max_runs_per_workflow or settings.MAX_RUNS_PER_WORKFLOW
        self.max_runs_total = max_runs_total or settings.MAX_RUNS_TOTAL
        self._workflows: dict[str, WorkflowDefinition] = {}
        self._runs: list[Run] = []  # newest first
        self._results: dict[str, dict[str, Any]] = {}
        for workflow in workflows or []:
            self._workflows[workflow.id] = workflow

    # ─── Definitions ───────────────────────────────────────────

    async def load_workflows(self) -> list[WorkflowDefinition]:
        return list(self._workflows.values())

    async def get_workflow(self, workflow_id: str) -> Optional[WorkflowDefinition]:
        return self._workflows.get(workflow_id)

    async def upsert_workflow(self, workflow: WorkflowDefinition) -> WorkflowDefinition:
        self._workflows[workflow.id] = workflow
        return workflow

    async def delete_workflow(self, workflow_id: str) -> bool:
        return self._workflows.pop(workflow_id, None) is not None

    # ─── Run history ───────────────────────────────────────────

    async def append_run(self, run: Run) -> None:
        self._runs.insert(0, run.model_copy(deep=True))

        workflow_runs = [r for r in self._runs if r.workflow_id == run.workflow_id]
        if len(workflow_runs) > self.max_runs_per_workflow:
            dropped = {r.id for r in workflow_runs[self.max_runs_per_workflow:]}
            self._runs = [r for r in self._runs if r.id not in dropped]
            self._forget_results(dropped)

        if len(self._runs) > self.max_runs_total:
            excess = self._runs[self.max_runs_total:]
            self._runs = self._runs[: self.max_runs_total]
            self._forget_results({r.id for r in excess})

    async def update_run(self, run_id: str, patch: dict[str, Any]) -> Optional[Run]:
        for index, run in enumerate(self._runs):
            if run.id == run_id:
                updated = run.model_copy(update=patch, deep=True)
                self._runs[index] = updated
                return updated
        return None

    async def get_run(self, run_id: str) -> Optional[Run]:
        for run in self._runs:
            if run.id == run_id:
                return run
        return None

    async def get_runs_for_workflow(self, workflow_id: str, limit: Optional[int] = None) -> list[Run]:
        runs = [r for r in self._runs if r.workflow_id == workflow_id]
        return runs[: limit or self.max_runs_per_workflow]

    async def get_recent_runs(self, limit: int = 20) -> list[Run]:
        return self._runs[:limit]

    async def clear_runs(self, workflow_id: str) -> int:
        dropped = {r.id for r in self._runs if r.workflow_id == workflow_id}
        self._runs = [r for r in self._runs if r.id not in dropped]
        self._forget_results(dropped)
        return len(dropped)

    # ─── Result payloads ───────────────────────────────────────

    async def save_result_payload(self, run_id: str, payload: dict[str, Any]) -> None:
        self._results[run_id] = payload

    async def get_run_result(self, run_id: str) -> Optional[dict[str, Any]]:
        return self._results.get(run_id)

    def _forget_results(self, run_ids: set[str]) -> None:
        for run_id in run_ids:
            self._results.pop(run_id, None)

    # ─── Validation ────────────────────────────────────────────

    def detect_cycle(
        self, workflow_id: str, depends_on: Sequence[Any], workflows: Sequence[WorkflowDefinition]
    ) -> dict[str, Any]:
        return detect_cycle(workflow_id, depends_on, workflows)

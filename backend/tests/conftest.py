"""Shared pytest fixtures for the workflow engine test suite.

Provides:
- In-memory workflow storage
- Event bus with a recording subscriber
- ``scripted`` step type whose behaviour is driven by its properties
- Orchestrator factory with fast retry delays
- FastAPI test client (httpx.AsyncClient over ASGITransport)
"""

import os
from typing import Any, AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Override settings BEFORE any app imports
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_FORMAT", "text")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("HOOK_TOKEN", "test-hook-token")
os.environ.setdefault("DEFAULT_RETRY_DELAY", "10ms")

from api.websockets.connection_manager import ConnectionManager  # noqa: E402
from services.storage_service import InMemoryWorkflowStorage  # noqa: E402
from services.workflow_service import WorkflowOrchestrator  # noqa: E402
from tasks.base_task import BaseTask, StepContext  # noqa: E402
from tasks.registry import TaskRegistry  # noqa: E402
from workflow.events import EventBus, EventRecorder  # noqa: E402
from workflow.models import WorkflowDefinition  # noqa: E402


class ScriptedTask(BaseTask):
    """Test step. Properties:

    - ``output``: returned on success (default ``{"ok": True, "attempt": n}``)
    - ``fail``: always raise
    - ``fail_times``: raise on the first n attempts
    - ``sleep``: cancellable sleep (seconds) before finishing
    """

    step_type = "scripted"
    display_name = "Scripted"
    description = "Records calls, fails or sleeps on demand"
    calls: list = []

    async def execute(self, config: Any, ctx: StepContext) -> Any:
        props = config.model_dump() if config is not None else {}
        self.calls.append(ctx.step_id)
        attempt = self.calls.count(ctx.step_id)

        if props.get("sleep"):
            await ctx.cancel.sleep(float(props["sleep"]))
        if props.get("fail") or attempt <= int(props.get("fail_times") or 0):
            raise RuntimeError(props.get("error") or f"{ctx.step_id} failed (attempt {attempt})")
        if "output" in props:
            return ctx.resolve_deep(props["output"])
        return {"ok": True, "attempt": attempt}


def make_workflow(workflow_id: str, **fields: Any) -> WorkflowDefinition:
    data = {"id": workflow_id, "name": fields.pop("name", workflow_id), **fields}
    return WorkflowDefinition.model_validate(data)


def chain_graph(*nodes: dict, links: list = None) -> dict:
    """Graph with a trigger node 1 followed by ``nodes`` (ids 2..n).

    Without explicit ``links`` the nodes are chained on their success slot.
    """
    graph_nodes = [{"id": 1, "type": "workflow/trigger"}]
    for index, node in enumerate(nodes):
        properties = {k: v for k, v in node.items() if k != "type"}
        graph_nodes.append({"id": index + 2, "type": f"workflow/{node['type']}", "properties": properties})
    if links is None:
        links = [[i, i, 0, i + 1, 0, -1] for i in range(1, len(nodes) + 1)]
    return {"nodes": graph_nodes, "links": links}


# ---------------------------------------------------------------------------
# Engine fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def scripted() -> type:
    """A ScriptedTask subclass with its own call log."""
    return type("Scripted", (ScriptedTask,), {"calls": []})


@pytest.fixture
def registry(scripted) -> TaskRegistry:
    registry = TaskRegistry()
    registry.register("scripted", scripted)
    return registry


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def event_bus(recorder) -> EventBus:
    bus = EventBus()
    bus.subscribe(recorder)
    return bus


@pytest.fixture
def storage() -> InMemoryWorkflowStorage:
    return InMemoryWorkflowStorage()


@pytest_asyncio.fixture
async def make_orchestrator(storage, event_bus, registry):
    """Factory: store the given workflows and return an initialised orchestrator."""
    created = []

    async def factory(*workflows, **kwargs) -> WorkflowOrchestrator:
        for workflow in workflows:
            if isinstance(workflow, dict):
                workflow = WorkflowDefinition.model_validate(workflow)
            await storage.upsert_workflow(workflow)
        kwargs.setdefault("event_bus", event_bus)
        kwargs.setdefault("registry", registry)
        kwargs.setdefault("default_retry_delay", 0.01)
        orchestrator = WorkflowOrchestrator(storage, **kwargs)
        await orchestrator.init()
        created.append(orchestrator)
        return orchestrator

    yield factory

    for orchestrator in created:
        await orchestrator.destroy()


# ---------------------------------------------------------------------------
# App / HTTP client fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def orchestrator(make_orchestrator) -> WorkflowOrchestrator:
    return await make_orchestrator()


@pytest_asyncio.fixture
async def app(orchestrator):
    """FastAPI app wired to the test orchestrator (lifespan is not run by ASGITransport)."""
    from app.main import create_app

    test_app = create_app()
    test_app.state.orchestrator = orchestrator
    test_app.state.connections = ConnectionManager()
    yield test_app


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test", follow_redirects=True) as ac:
        yield ac

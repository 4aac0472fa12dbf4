"""Workflow service: run lifecycle, concurrency policy and dependencies.

``WorkflowOrchestrator`` owns every piece of process-wide run state (active
runs, per-workflow queues, the dependency result cache and pending
approvals). Runs execute as asyncio tasks on the orchestrator's event loop;
all of that state is only mutated from those tasks and from the public
coroutines, never from other threads.
"""

import asyncio
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Optional, Union

import pydantic
import structlog

from app.config import get_settings
from core.cancellation import CancelScope
from core.exceptions import (
    CycleDetectedError,
    DependencyUnresolvedError,
    ExecutionCancelledError,
    RunNotFoundError,
    ValidationError,
    WorkflowDisabledError,
    WorkflowNotFoundError,
)
from core.utils import generate_run_id, iso_now, parse_duration, safe_serialize
from notifications.manager import NotificationManager
from services.storage_service import WorkflowStorage
from tasks.base_task import StepServices
from tasks.registry import TaskRegistry
from triggers.base import TriggerSource, TriggerTypeEnum
from triggers.scheduler import WorkflowScheduler
from workflow.approvals import WaitRegistry
from workflow.engine import WorkflowEngine
from workflow.events import RUN_END, RUN_QUEUED, RUN_START, EventBus
from workflow.expressions import VariableScope
from workflow.graph import bfs_order, migrate_steps_to_graph
from workflow.result_cache import ResultCache
from workflow.models import (
    GRAPH_TYPE_PREFIX,
    NODE_TYPE_ALIASES,
    Concurrency,
    ExecutionResult,
    Run,
    RunStatus,
    StepDefinition,
    StepSnapshot,
    StepStatus,
    TriggerOptions,
    TriggerOutcome,
    WorkflowDefinition,
)

logger = structlog.get_logger(__name__)

SKIPPED_MESSAGE = "Workflow already running (concurrency: skip)"
WORKFLOW_TIMEOUT_MESSAGE = "Workflow timed out"
TEST_NODE_TIMEOUT = 60.0


@dataclass
class ActiveRun:
    """A run that has started and not yet been finalized."""

    run: Run
    cancel: CancelScope
    done: asyncio.Future
    started: float
    task: Optional[asyncio.Task] = None


@dataclass
class QueuedTrigger:
    options: TriggerOptions
    future: asyncio.Future
    queued_at: str = field(default_factory=iso_now)


class WorkflowOrchestrator:
    """Entry point for triggering, cancelling and managing workflows."""

    def __init__(
        self,
        storage: WorkflowStorage,
        *,
        event_bus: Optional[EventBus] = None,
        registry: Optional[TaskRegistry] = None,
        services: Optional[StepServices] = None,
        result_cache: Optional[ResultCache] = None,
        scheduler: Optional[WorkflowScheduler] = None,
        default_retry_delay: Optional[float] = None,
    ):
        settings = get_settings()
        self.storage = storage
        self.event_bus = event_bus or EventBus()
        self.services = services or StepServices()
        self.result_cache = result_cache or ResultCache(max_entries=settings.MAX_RESULT_CACHE_ENTRIES)

        if self.services.wait_registry is None:
            self.services.wait_registry = WaitRegistry()
        if self.services.workflows is None:
            self.services.workflows = self
        if self.services.notifications is None:
            notifications = NotificationManager()
            notifications.configure_channels(
                self.event_bus.emit,
                webhook_timeout=settings.NOTIFY_WEBHOOK_TIMEOUT,
                transport=self.services.http_transport,
            )
            self.services.notifications = notifications

        if default_retry_delay is None:
            default_retry_delay = parse_duration(settings.DEFAULT_RETRY_DELAY, 5.0)
        self.engine = WorkflowEngine(
            registry=registry,
            services=self.services,
            emit=self.event_bus.emit,
            default_retry_delay=default_retry_delay,
        )

        self.scheduler = scheduler or WorkflowScheduler()
        self.scheduler.dispatch = self._on_scheduled_trigger

        self._active: dict[str, ActiveRun] = {}
        self._queues: dict[str, deque] = {}
        self._draining: set[str] = set()
        self._scheduled: set[asyncio.Task] = set()
        self._closing = False

    @property
    def waits(self) -> WaitRegistry:
        return self.services.wait_registry

    @property
    def notifications(self) -> NotificationManager:
        return self.services.notifications

    # ─── Lifecycle ─────────────────────────────────────────────

    async def init(self) -> None:
        """Load workflows into the scheduler and start the cron loop."""
        self._closing = False
        workflows = await self.storage.load_workflows()
        self.scheduler.reload(workflows)
        logger.info("Orchestrator started", workflows=len(workflows), cron_jobs=len(self.scheduler.cron_jobs))

    async def destroy(self) -> None:
        """Stop scheduling, cancel active runs and wait for them to finalize."""
        self._closing = True
        self.scheduler.destroy()

        for queue in self._queues.values():
            while queue:
                entry = queue.popleft()
                if not entry.future.done():
                    entry.future.set_result(TriggerOutcome(success=False, error="Orchestrator shutting down"))
        self._queues.clear()

        tasks = []
        for active in list(self._active.values()):
            active.cancel.cancel("Orchestrator shutting down")
            if active.task is not None:
                tasks.append(active.task)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        for task in list(self._scheduled):
            task.cancel()
        if self._scheduled:
            await asyncio.gather(*list(self._scheduled), return_exceptions=True)

        await self.notifications.drain()
        await self.event_bus.drain()
        logger.info("Orchestrator stopped")

    # ─── Triggering ────────────────────────────────────────────

    async def trigger(self, workflow_id: str, options: Optional[TriggerOptions] = None) -> TriggerOutcome:
        """Start a run of ``workflow_id`` under its concurrency policy.

        Raises:
            WorkflowNotFoundError: unknown workflow id
            WorkflowDisabledError: the workflow is disabled
        """
        options = options or TriggerOptions()
        workflow = await self.storage.get_workflow(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(f"Workflow not found: {workflow_id}")
        if not workflow.enabled:
            raise WorkflowDisabledError(f"Workflow is disabled: {workflow.name or workflow_id}")

        if self._is_running(workflow_id):
            if workflow.concurrency == Concurrency.SKIP:
                logger.info("Trigger skipped, workflow already running", workflow_id=workflow_id, source=options.source)
                return TriggerOutcome(success=False, skipped=True, error=SKIPPED_MESSAGE)
            if workflow.concurrency == Concurrency.QUEUE:
                return await self._enqueue(workflow_id, options)

        return await self._start_run(workflow, options)

    async def _enqueue(self, workflow_id: str, options: TriggerOptions) -> TriggerOutcome:
        future = asyncio.get_running_loop().create_future()
        queue = self._queues.setdefault(workflow_id, deque())
        queue.append(QueuedTrigger(options=options, future=future))
        logger.info("Trigger queued", workflow_id=workflow_id, queue_length=len(queue))
        self.event_bus.emit(RUN_QUEUED, {"workflowId": workflow_id, "queueLength": len(queue)})
        return await future

    async def _drain_queue(self, workflow_id: str) -> None:
        """Start the next queued trigger for ``workflow_id``, if any."""
        queue = self._queues.get(workflow_id)
        if not queue or workflow_id in self._draining or self._closing:
            return
        if any(active.run.workflow_id == workflow_id for active in self._active.values()):
            return

        self._draining.add(workflow_id)
        try:
            while queue:
                entry = queue.popleft()
                if entry.future.done():
                    continue
                workflow = await self.storage.get_workflow(workflow_id)
                if workflow is None or not workflow.enabled:
                    logger.info("Dropping queued trigger", workflow_id=workflow_id, reason="missing or disabled")
                    entry.future.set_result(
                        TriggerOutcome(success=False, error=f"Workflow not available: {workflow_id}")
                    )
                    continue
                try:
                    outcome = await self._start_run(workflow, entry.options)
                except Exception as e:
                    logger.error("Queued run failed to start", workflow_id=workflow_id, error=str(e))
                    entry.future.set_result(TriggerOutcome(success=False, error=str(e)))
                    continue
                entry.future.set_result(outcome.model_copy(update={"queued": True}))
                break
        finally:
            self._draining.discard(workflow_id)
            if not queue:
                self._queues.pop(workflow_id, None)

    def _on_scheduled_trigger(self, workflow_id: str, trigger_data: dict[str, Any]) -> None:
        """Scheduler callback: fire ``trigger`` in the background."""
        if self._closing:
            return
        options = TriggerOptions(source=trigger_data.get("source", TriggerSource.MANUAL.value), trigger_data=trigger_data)
        task = asyncio.ensure_future(self.trigger(workflow_id, options))
        self._scheduled.add(task)
        task.add_done_callback(self._on_scheduled_done)

    def _on_scheduled_done(self, task: asyncio.Task) -> None:
        self._scheduled.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning("Scheduled trigger failed", error=str(error))

    # ─── Run lifecycle ─────────────────────────────────────────

    def _is_running(self, workflow_id: str) -> bool:
        return workflow_id in self._draining or self._find_active(workflow_id) is not None

    def _find_active(self, workflow_id: str) -> Optional[ActiveRun]:
        for active in self._active.values():
            if active.run.workflow_id == workflow_id:
                return active
        return None

    async def _start_run(
        self,
        workflow: WorkflowDefinition,
        options: TriggerOptions,
        in_progress: Optional[set[str]] = None,
    ) -> TriggerOutcome:
        active = await self._launch(workflow, options, in_progress)
        return TriggerOutcome(success=True, run_id=active.run.id)

    async def _launch(
        self,
        workflow: WorkflowDefinition,
        options: TriggerOptions,
        in_progress: Optional[set[str]] = None,
    ) -> ActiveRun:
        loop = asyncio.get_running_loop()
        project_path = options.project_path or workflow.project_path or ""
        run = Run(
            id=generate_run_id(),
            workflow_id=workflow.id,
            workflow_name=workflow.name,
            status=RunStatus.RUNNING,
            trigger=options.source,
            trigger_data=options.trigger_data,
            started_at=iso_now(),
            steps=self._initial_steps(workflow),
            project_path=project_path,
        )
        # Registered before the first await so concurrent triggers see it
        active = ActiveRun(run=run, cancel=CancelScope(), done=loop.create_future(), started=time.monotonic())
        self._active[run.id] = active

        try:
            context = await self._build_context(project_path, options.source)
            run.context_branch = context["branch"]
            run.context_commit = context["lastCommit"]
            await self.storage.append_run(run)
        except BaseException as e:
            self._active.pop(run.id, None)
            active.cancel.close()
            active.done.set_result(ExecutionResult(success=False, error=str(e)))
            raise

        logger.info(
            "Run started",
            run_id=run.id,
            workflow_id=workflow.id,
            workflow=workflow.name,
            source=options.source,
        )
        self.event_bus.emit(RUN_START, {"run": run.model_dump(mode="json")})
        active.task = loop.create_task(self._execute_run(workflow, active, context, set(in_progress or ())))
        return active

    @staticmethod
    def _initial_steps(workflow: WorkflowDefinition) -> list[StepSnapshot]:
        if workflow.is_graph:
            return [StepSnapshot(id=node.step_id, type=node.step_type) for node in bfs_order(workflow.graph)]
        return [StepSnapshot(id=step.id, type=step.type) for step in workflow.steps]

    async def _build_context(self, project_path: str, source: str) -> dict[str, Any]:
        """Context variables for ``$ctx.*``. Git lookups are best effort."""
        context = {
            "project": project_path,
            "branch": "",
            "date": date.today().isoformat(),
            "lastCommit": "",
            "trigger": source,
        }
        git = self.services.git_helper
        if not project_path or git is None:
            return context
        try:
            context["branch"] = await git.current_branch(project_path)
            commits = await git.recent_commits(project_path, 1)
            if commits:
                context["lastCommit"] = f"{commits[0].get('hash', '')} {commits[0].get('message', '')}".strip()
        except Exception as e:
            logger.warning("Could not read git context", project=project_path, error=str(e))
        return context

    async def _execute_run(
        self,
        workflow: WorkflowDefinition,
        active: ActiveRun,
        context: dict[str, Any],
        in_progress: set[str],
    ) -> None:
        run = active.run
        # Each run executes in its own task, so bound vars stay local to it
        structlog.contextvars.bind_contextvars(run_id=run.id, workflow_id=workflow.id)
        result = ExecutionResult(success=False, cancelled=True, error="Cancelled")
        timeout = parse_duration(workflow.timeout)
        timer = None
        if timeout:
            timer = asyncio.get_running_loop().call_later(timeout, active.cancel.cancel, WORKFLOW_TIMEOUT_MESSAGE)

        try:
            try:
                dependencies = await self._resolve_dependencies(workflow, in_progress | {workflow.id}, active.cancel)
                scope = VariableScope(dependencies)
                scope["ctx"] = context
                scope["trigger"] = run.trigger_data
                result = await self.engine.execute(workflow, run.id, scope, active.cancel)
            except ExecutionCancelledError:
                result = ExecutionResult(success=False, cancelled=True, error=active.cancel.reason or "Cancelled")
            except Exception as e:
                logger.error("Run crashed", run_id=run.id, workflow_id=workflow.id, error=str(e), exc_info=True)
                result = ExecutionResult(success=False, error=str(e))
            finally:
                if timer is not None:
                    timer.cancel()

            try:
                await self._finalize_run(workflow, active, result)
            except Exception as e:
                logger.error("Failed to finalize run", run_id=run.id, workflow_id=workflow.id, error=str(e))
        finally:
            self._active.pop(run.id, None)
            active.cancel.close()
            if not active.done.done():
                active.done.set_result(result)
            if not self._closing:
                await self._drain_queue(workflow.id)

    async def _resolve_dependencies(
        self,
        workflow: WorkflowDefinition,
        in_progress: set[str],
        cancel: CancelScope,
    ) -> dict[str, Any]:
        """Outputs of every dependsOn workflow, keyed by workflow id.

        Fresh cached results are reused, in-flight runs are awaited and
        anything else is run now. Ids already in ``in_progress`` are skipped.
        """
        resolved: dict[str, Any] = {}
        for dep in workflow.depends_on:
            dep_id = dep.workflow
            if dep_id in in_progress:
                logger.warning("Skipping circular dependency", workflow_id=workflow.id, dependency=dep_id)
                continue

            cached = self.result_cache.get_fresh(dep_id, parse_duration(dep.max_age))
            if cached is not None:
                logger.debug("Using cached dependency result", workflow_id=workflow.id, dependency=dep_id)
                resolved[dep_id] = cached
                continue

            running = self._find_active(dep_id)
            if running is not None:
                logger.info("Waiting for in-flight dependency", workflow_id=workflow.id, dependency=dep_id)
                resolved[dep_id] = await self._await_outputs(running, cancel)
                continue

            target = await self.storage.get_workflow(dep_id)
            if target is None:
                logger.warning(
                    "Dependency not found",
                    workflow_id=workflow.id,
                    error=str(DependencyUnresolvedError(dep_id)),
                )
                continue

            in_progress.add(dep_id)
            try:
                dep_run = await self._launch(target, TriggerOptions(source=TriggerSource.DEPENDS_ON.value), in_progress)
                resolved[dep_id] = await self._await_outputs(dep_run, cancel)
            finally:
                in_progress.discard(dep_id)
        return resolved

    @staticmethod
    async def _await_outputs(active: ActiveRun, cancel: CancelScope) -> dict[str, Any]:
        result = await cancel.guard(asyncio.shield(active.done))
        if not result.success:
            return {}
        return result.outputs or {}

    async def _finalize_run(self, workflow: WorkflowDefinition, active: ActiveRun, result: ExecutionResult) -> None:
        run = active.run
        if result.cancelled:
            status = RunStatus.CANCELLED
        elif result.success:
            status = RunStatus.SUCCESS
        else:
            status = RunStatus.FAILED
        duration = round(time.monotonic() - active.started, 2)

        steps = []
        for snapshot in run.steps:
            tracked = result.step_statuses.get(snapshot.id)
            if tracked is not None:
                steps.append(tracked)
            elif snapshot.status == StepStatus.PENDING:
                steps.append(snapshot.model_copy(update={"status": StepStatus.SKIPPED}))
            else:
                steps.append(snapshot)
        # Nested (loop / parallel) steps are not pre-listed
        known = {s.id for s in steps}
        steps.extend(s for step_id, s in result.step_statuses.items() if step_id not in known)

        error = None if status == RunStatus.SUCCESS else result.error
        await self.storage.update_run(run.id, {
            "status": status,
            "finished_at": iso_now(),
            "duration": duration,
            "steps": steps,
            "error": error,
        })
        if result.outputs:
            await self.storage.save_result_payload(run.id, {"outputs": safe_serialize(result.outputs)})

        if status == RunStatus.SUCCESS:
            self.result_cache.put(workflow.id, result.outputs)

        logger.info(
            "Run finished",
            run_id=run.id,
            workflow_id=workflow.id,
            status=status.value,
            duration=duration,
            error=error,
        )
        self.event_bus.emit(RUN_END, {
            "runId": run.id,
            "workflowId": workflow.id,
            "status": status.value,
            "duration": duration,
            "error": error,
        })

        if status != RunStatus.CANCELLED and not self._closing:
            self.scheduler.on_workflow_complete(workflow.name, {
                "success": status == RunStatus.SUCCESS,
                "outputs": safe_serialize(result.outputs),
                "workflowId": workflow.id,
            })
        if status == RunStatus.FAILED:
            self.notifications.notify_workflow_failed(workflow.name or workflow.id, run.id, error)

    # ─── Run control ───────────────────────────────────────────

    def cancel(self, run_id: str) -> None:
        active = self._active.get(run_id)
        if active is None:
            raise RunNotFoundError(f"Run not found or already finished: {run_id}")
        logger.info("Cancelling run", run_id=run_id, workflow_id=active.run.workflow_id)
        active.cancel.cancel("Cancelled")

    def approve_wait(self, run_id: str, step_id: str, data: Optional[dict[str, Any]] = None) -> None:
        self.waits.resolve(run_id, step_id, data)
        logger.info("Wait step approved", run_id=run_id, step_id=step_id)

    async def wait_for_run(self, run_id: str) -> Optional[Run]:
        """Wait until ``run_id`` is finalized and return the stored run."""
        active = self._active.get(run_id)
        if active is not None:
            await asyncio.shield(active.done)
            if active.task is not None:
                await asyncio.gather(active.task, return_exceptions=True)
        return await self.storage.get_run(run_id)

    def get_active_runs(self) -> list[Run]:
        return [active.run for active in self._active.values()]

    def get_queue_lengths(self) -> dict[str, int]:
        return {workflow_id: len(queue) for workflow_id, queue in self._queues.items() if queue}

    # ─── Workflow management ───────────────────────────────────

    async def list_workflows(self) -> list[WorkflowDefinition]:
        return await self.storage.load_workflows()

    async def get_workflow(self, workflow_id: str) -> WorkflowDefinition:
        workflow = await self.storage.get_workflow(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(f"Workflow not found: {workflow_id}")
        return workflow

    async def find_workflow(self, ref: str) -> WorkflowDefinition:
        """Look a workflow up by id, then by name."""
        workflow = await self.storage.get_workflow(ref)
        if workflow is None:
            workflow = next((wf for wf in await self.storage.load_workflows() if wf.name == ref), None)
        if workflow is None:
            raise WorkflowNotFoundError(f"Workflow not found: {ref}")
        return workflow

    async def save_workflow(self, data: Union[dict[str, Any], WorkflowDefinition]) -> WorkflowDefinition:
        """Validate, cycle-check and store a workflow, then reload triggers."""
        if isinstance(data, WorkflowDefinition):
            workflow = data
        else:
            data = dict(data)
            if not data.get("id"):
                data["id"] = f"wf_{uuid.uuid4().hex[:8]}"
            try:
                workflow = WorkflowDefinition.model_validate(data)
            except pydantic.ValidationError as e:
                raise ValidationError(f"Invalid workflow: {e.errors()[0].get('msg', str(e))}") from e

        if workflow.depends_on:
            existing = await self.storage.load_workflows()
            check = self.storage.detect_cycle(workflow.id, workflow.depends_on, existing)
            if check["has_cycle"]:
                raise CycleDetectedError(check["cycle"])

        saved = await self.storage.upsert_workflow(workflow)
        await self._reload_scheduler()
        logger.info("Workflow saved", workflow_id=saved.id, workflow=saved.name)
        return saved

    async def delete_workflow(self, workflow_id: str) -> None:
        if not await self.storage.delete_workflow(workflow_id):
            raise WorkflowNotFoundError(f"Workflow not found: {workflow_id}")
        cleared = await self.storage.clear_runs(workflow_id)
        self.result_cache.discard(workflow_id)
        await self._reload_scheduler()
        logger.info("Workflow deleted", workflow_id=workflow_id, runs_cleared=cleared)

    async def set_enabled(self, workflow_id: str, enabled: bool) -> WorkflowDefinition:
        workflow = await self.get_workflow(workflow_id)
        updated = await self.storage.upsert_workflow(workflow.model_copy(update={"enabled": enabled}))
        await self._reload_scheduler()
        return updated

    async def migrate_workflow(self, workflow_id: str) -> WorkflowDefinition:
        """Convert a stored legacy step list into a graph and persist it."""
        workflow = await self.get_workflow(workflow_id)
        if workflow.is_graph:
            return workflow
        migrated = await self.storage.upsert_workflow(migrate_steps_to_graph(workflow))
        await self._reload_scheduler()
        return migrated

    async def _reload_scheduler(self) -> None:
        self.scheduler.reload(await self.storage.load_workflows())

    async def get_dependency_graph(self) -> dict[str, list[dict[str, Any]]]:
        """Workflows as nodes; dependsOn and on_workflow chains as edges."""
        workflows = await self.storage.load_workflows()
        nodes = [{"id": wf.id, "name": wf.name, "enabled": wf.enabled} for wf in workflows]
        edges: list[dict[str, Any]] = []
        for wf in workflows:
            for dep in wf.depends_on:
                edges.append({"from": wf.id, "to": dep.workflow, "maxAge": dep.max_age})
            if wf.trigger.type == TriggerTypeEnum.ON_WORKFLOW:
                target = next(
                    (w for w in workflows if wf.trigger.value in (w.id, w.name)),
                    None,
                )
                if target is not None:
                    edges.append({"from": target.id, "to": wf.id, "type": "chain"})
        return {"nodes": nodes, "edges": edges}

    # ─── Run history ───────────────────────────────────────────

    async def get_runs(self, workflow_id: Optional[str] = None, limit: int = 20) -> list[Run]:
        if workflow_id:
            return await self.storage.get_runs_for_workflow(workflow_id, limit)
        return await self.storage.get_recent_runs(limit)

    async def get_run(self, run_id: str) -> Run:
        active = self._active.get(run_id)
        if active is not None:
            return active.run
        run = await self.storage.get_run(run_id)
        if run is None:
            raise RunNotFoundError(f"Run not found: {run_id}")
        return run

    async def get_run_result(self, run_id: str) -> Optional[dict[str, Any]]:
        return await self.storage.get_run_result(run_id)

    # ─── Single-step testing ───────────────────────────────────

    async def test_node(self, step_data: dict[str, Any], ctx: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        """Run one step in isolation, outside any workflow run.

        ``step_data`` is a legacy step or a graph node property bag with a
        ``type``. Returns ``{success, output, error, duration}``.
        """
        data = dict(step_data)
        props = data.pop("properties", None)
        if isinstance(props, dict):
            data = {**props, **{k: v for k, v in data.items() if k in ("id", "type")}}
        step_type = str(data.get("type") or "")
        if step_type.startswith(GRAPH_TYPE_PREFIX):
            step_type = step_type[len(GRAPH_TYPE_PREFIX):]
        data["type"] = NODE_TYPE_ALIASES.get(step_type, step_type)
        data.setdefault("id", "test")

        started = time.monotonic()
        try:
            step = StepDefinition.model_validate(data)
        except pydantic.ValidationError as e:
            return {"success": False, "output": None, "error": str(e), "duration": 0}

        context = await self._build_context((ctx or {}).get("project", ""), "test")
        context.update(ctx or {})
        scope = VariableScope(ctx=context, trigger={})

        cancel = CancelScope()
        step_cancel = cancel.child(parse_duration(step.timeout) or TEST_NODE_TIMEOUT)
        executor = self.engine.create_executor(f"test_{uuid.uuid4().hex[:8]}")
        try:
            result = await executor.dispatch(step, scope, step_cancel)
        finally:
            step_cancel.close()
            cancel.close()

        return {
            "success": result.success,
            "output": safe_serialize(result.output),
            "error": result.error,
            "duration": round((time.monotonic() - started) * 1000, 2),
        }



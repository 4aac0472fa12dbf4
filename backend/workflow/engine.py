"""Workflow Execution Engine: graph and linear step runner.

Takes a validated ``WorkflowDefinition`` and executes it for one run,
handling:

- Graph mode: breadth-first traversal from the trigger node over
  ``[id, origin, origin_slot, target, target_slot, type]`` links
- Legacy linear mode: ordered ``steps`` list with per-step conditions
- Conditional branching (condition nodes route slot 0 / slot 1)
- Error edges (a failing node with a slot-1 link continues down it)
- Retry with a fixed delay, per-step timeout, cooperative cancellation
- Variable passing between steps (``$stepId.field``)
- Real-time progress via ``step-update`` events

Graph example::

    {
        "nodes": [
            {"id": 1, "type": "workflow/trigger"},
            {"id": 2, "type": "workflow/shell", "properties": {"command": "make test", "retry": 1}},
            {"id": 3, "type": "workflow/notify", "properties": {"message": "ok"}},
            {"id": 4, "type": "workflow/shell", "properties": {"command": "make clean"}}
        ],
        "links": [[1, 1, 0, 2, 0, -1], [2, 2, 0, 3, 0, -1], [3, 2, 1, 4, 0, -1]]
    }

Node 3 runs when node 2 succeeds; node 4 runs (and the run still succeeds)
when node 2 fails.
"""

import time
from collections import deque
from typing import Any, Callable, Optional

import structlog

from core.cancellation import CancelScope
from core.exceptions import ExecutionCancelledError, StepFailedError
from core.utils import parse_duration, safe_serialize
from tasks.base_task import StepContext, StepServices, TaskResult
from tasks.registry import TaskRegistry
from workflow.events import STEP_UPDATE
from workflow.expressions import ExpressionEvaluator, VariableScope
from workflow.graph import find_trigger_node, has_edge_from, successors
from workflow.models import (
    SLOT_ERROR,
    SLOT_FALSE,
    SLOT_SUCCESS,
    SLOT_TRUE,
    ExecutionResult,
    StepDefinition,
    StepSnapshot,
    StepStatus,
    StepType,
    WorkflowDefinition,
    WorkflowGraph,
)

logger = structlog.get_logger(__name__)

DEFAULT_RETRY_DELAY = 5.0

Emit = Callable[[str, dict[str, Any]], None]


# ─── Step Executor ─────────────────────────────────────────────

class StepExecutor:
    """Executes individual steps of one run.

    Wraps every step with retry, timeout and status reporting, and delegates
    the actual work to the step implementation from the TaskRegistry. Keeps
    the latest status snapshot of each step it has touched.
    """

    def __init__(
        self,
        run_id: str,
        registry: TaskRegistry,
        services: Optional[StepServices] = None,
        emit: Optional[Emit] = None,
        default_retry_delay: float = DEFAULT_RETRY_DELAY,
    ):
        self.run_id = run_id
        self._registry = registry
        self._services = services or StepServices()
        self._emit = emit or (lambda event, payload: None)
        self._default_retry_delay = default_retry_delay
        self.snapshots: dict[str, StepSnapshot] = {}

    # ─── Status reporting ──────────────────────────────────────

    def emit_step(
        self,
        step_id: str,
        step_type: str,
        status: StepStatus,
        output: Any = None,
        attempt: Optional[int] = None,
        duration: Optional[float] = None,
    ) -> None:
        output = safe_serialize(output)
        self.snapshots[step_id] = StepSnapshot(
            id=step_id,
            type=step_type,
            status=status,
            output=output,
            duration=duration,
            attempt=attempt,
        )
        payload = {
            "runId": self.run_id,
            "stepId": step_id,
            "stepType": step_type,
            "status": status.value,
            "output": output,
        }
        if attempt is not None:
            payload["attempt"] = attempt
        self._emit(STEP_UPDATE, payload)

    # ─── Sequences ─────────────────────────────────────────────

    async def run_steps(
        self,
        steps: list[StepDefinition],
        scope: VariableScope,
        cancel: CancelScope,
        outputs: Optional[dict[str, Any]] = None,
    ) -> None:
        """Run steps in order, skipping those whose condition does not hold."""
        for step in steps:
            cancel.raise_if_cancelled()
            if step.condition and not ExpressionEvaluator.evaluate_condition(step.condition, scope):
                logger.debug("Step skipped by condition", run_id=self.run_id, step_id=step.id)
                self.emit_step(step.id, step.type, StepStatus.SKIPPED)
                continue
            await self.run_step(step, scope, cancel, outputs)

    # ─── Single step ───────────────────────────────────────────

    async def run_step(
        self,
        step: StepDefinition,
        scope: VariableScope,
        cancel: CancelScope,
        outputs: Optional[dict[str, Any]] = None,
    ) -> Any:
        """Run one step with retries and timeout.

        On success the output is stored in ``scope`` (and ``outputs``) under
        the step id and returned. After the last failed attempt raises
        StepFailedError; cancellation raises ExecutionCancelledError.
        """
        if step.type == StepType.CONDITION.value:
            return await self.run_condition(step, scope, cancel, outputs)

        attempts = max(step.retry, 0) + 1
        retry_delay = parse_duration(step.retry_delay, default=self._default_retry_delay)
        timeout = parse_duration(step.timeout)
        started = time.monotonic()
        last_error: Optional[BaseException] = None

        for attempt in range(1, attempts + 1):
            cancel.raise_if_cancelled()
            self.emit_step(step.id, step.type, StepStatus.RUNNING, attempt=attempt if attempt > 1 else None)

            step_cancel = cancel.child(timeout) if timeout else cancel
            try:
                result = await self.dispatch(step, scope, step_cancel)
            except ExecutionCancelledError:
                self._report_cancelled(step, started)
                raise
            finally:
                if step_cancel is not cancel:
                    step_cancel.close()

            if result.success:
                scope[step.id] = result.output
                if outputs is not None:
                    outputs[step.id] = result.output
                self.emit_step(
                    step.id,
                    step.type,
                    StepStatus.SUCCESS,
                    result.output,
                    attempt=attempt if attempt > 1 else None,
                    duration=self._elapsed(started),
                )
                return result.output

            if cancel.cancelled:
                self._report_cancelled(step, started)
                raise cancel.error() from result.exception

            last_error = result.exception or RuntimeError(result.error or f"Step {step.id} failed")
            if attempt < attempts:
                logger.info(
                    "Step failed, retrying",
                    run_id=self.run_id,
                    step_id=step.id,
                    attempt=attempt,
                    max_attempts=attempts,
                    retry_delay=retry_delay,
                    error=str(last_error),
                )
                self.emit_step(
                    step.id,
                    step.type,
                    StepStatus.RETRYING,
                    {"error": str(last_error), "attempt": attempt},
                    attempt=attempt,
                )
                try:
                    await cancel.sleep(retry_delay)
                except ExecutionCancelledError:
                    self._report_cancelled(step, started)
                    raise

        self.emit_step(
            step.id,
            step.type,
            StepStatus.FAILED,
            {"error": str(last_error)},
            attempt=attempts if attempts > 1 else None,
            duration=self._elapsed(started),
        )
        raise StepFailedError(step.id, cause=last_error) from last_error

    async def run_condition(
        self,
        step: StepDefinition,
        scope: VariableScope,
        cancel: CancelScope,
        outputs: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """Evaluate a condition step. Never fails: an error evaluates to false."""
        cancel.raise_if_cancelled()
        started = time.monotonic()
        self.emit_step(step.id, step.type, StepStatus.RUNNING)

        result = await self.dispatch(step, scope, cancel)
        if result.success and isinstance(result.output, dict):
            output = result.output
        else:
            logger.warning("Condition evaluation failed", run_id=self.run_id, step_id=step.id, error=result.error)
            output = {"result": False, "value": None, "error": result.error}

        scope[step.id] = output
        if outputs is not None:
            outputs[step.id] = output
        self.emit_step(step.id, step.type, StepStatus.SUCCESS, output, duration=self._elapsed(started))
        return output

    async def dispatch(self, step: StepDefinition, scope: VariableScope, cancel: CancelScope) -> TaskResult:
        """One attempt of one step, no retry."""
        try:
            task = self._registry.create_instance(step.type)
        except Exception as e:
            return TaskResult(success=False, error=str(e), exception=e)

        ctx = StepContext(
            run_id=self.run_id,
            step_id=step.id,
            step_type=step.type,
            scope=scope,
            cancel=cancel,
            services=self._services,
            emit=self._emit,
            executor=self,
        )
        return await task.run(step.config, ctx)

    def _report_cancelled(self, step: StepDefinition, started: float) -> None:
        self.emit_step(
            step.id,
            step.type,
            StepStatus.FAILED,
            {"error": "Cancelled"},
            duration=self._elapsed(started),
        )

    @staticmethod
    def _elapsed(started: float) -> float:
        return round((time.monotonic() - started) * 1000, 2)


# ─── Workflow Engine ───────────────────────────────────────────

class WorkflowEngine:
    """Main workflow execution engine.

    Stateless between runs: every ``execute`` call builds its own
    StepExecutor, so concurrent runs never share step state.
    """

    def __init__(
        self,
        registry: Optional[TaskRegistry] = None,
        services: Optional[StepServices] = None,
        emit: Optional[Emit] = None,
        default_retry_delay: float = DEFAULT_RETRY_DELAY,
    ):
        self.registry = registry or TaskRegistry()
        self.services = services or StepServices()
        self._emit = emit or (lambda event, payload: None)
        self.default_retry_delay = default_retry_delay

    def create_executor(self, run_id: str) -> StepExecutor:
        return StepExecutor(
            run_id,
            self.registry,
            services=self.services,
            emit=self._emit,
            default_retry_delay=self.default_retry_delay,
        )

    async def execute(
        self,
        workflow: WorkflowDefinition,
        run_id: str,
        scope: VariableScope,
        cancel: CancelScope,
    ) -> ExecutionResult:
        """Execute a workflow for one run.

        Returns an ExecutionResult; step failures and cancellation are
        reported on it, never raised.
        """
        executor = self.create_executor(run_id)
        outputs: dict[str, Any] = {}

        try:
            if workflow.is_graph:
                await self._execute_graph(executor, workflow.graph, scope, cancel, outputs)
            else:
                await executor.run_steps(workflow.steps, scope, cancel, outputs)
            return ExecutionResult(success=True, outputs=outputs, step_statuses=executor.snapshots)

        except Exception as e:
            if cancel.cancelled:
                logger.info("Execution cancelled", run_id=run_id, workflow_id=workflow.id, reason=cancel.reason)
                return ExecutionResult(
                    success=False,
                    outputs=outputs,
                    error=cancel.reason or "Cancelled",
                    cancelled=True,
                    step_statuses=executor.snapshots,
                )
            logger.info("Execution failed", run_id=run_id, workflow_id=workflow.id, error=str(e))
            return ExecutionResult(
                success=False,
                outputs=outputs,
                error=str(e),
                step_statuses=executor.snapshots,
            )

    async def _execute_graph(
        self,
        executor: StepExecutor,
        graph: WorkflowGraph,
        scope: VariableScope,
        cancel: CancelScope,
        outputs: dict[str, Any],
    ) -> None:
        """Breadth-first traversal from the trigger node.

        Each node runs at most once: the first path to reach it wins and
        later arrivals are ignored. Conditions continue on slot 0 or 1, a
        switch on its matched case slot, every other step on Done or Error.
        """
        trigger = find_trigger_node(graph)
        if trigger is None:
            raise ValueError("Workflow graph has no trigger node")

        executor.emit_step(trigger.step_id, trigger.step_type, StepStatus.RUNNING)
        executor.emit_step(trigger.step_id, trigger.step_type, StepStatus.SUCCESS)

        visited = {trigger.id}
        queue: deque = deque()
        self._enqueue(successors(graph, trigger.id, SLOT_SUCCESS), visited, queue)

        while queue:
            cancel.raise_if_cancelled()
            node = graph.node(queue.popleft())
            if node is None or node.is_trigger:
                continue

            step = node.to_step()
            if step.type == StepType.CONDITION.value:
                output = await executor.run_condition(step, scope, cancel, outputs)
                slot = SLOT_TRUE if output.get("result") else SLOT_FALSE
            else:
                try:
                    output = await executor.run_step(step, scope, cancel, outputs)
                    slot = output["matchedSlot"] if step.type == StepType.SWITCH.value else SLOT_SUCCESS
                except ExecutionCancelledError:
                    raise
                except Exception as e:
                    if cancel.cancelled:
                        raise cancel.error() from e
                    # Switch slots are all case branches, so a switch has no error edge
                    if step.type == StepType.SWITCH.value or not has_edge_from(graph, node.id, SLOT_ERROR):
                        raise
                    logger.info("Routing step failure to error edge", run_id=executor.run_id, step_id=step.id)
                    failure = {"error": str(e), "success": False}
                    scope[step.id] = failure
                    outputs[step.id] = failure
                    slot = SLOT_ERROR

            self._enqueue(successors(graph, node.id, slot), visited, queue)

    @staticmethod
    def _enqueue(targets: list[Any], visited: set, queue: deque) -> None:
        for target in targets:
            if target not in visited:
                visited.add(target)
                queue.append(target)

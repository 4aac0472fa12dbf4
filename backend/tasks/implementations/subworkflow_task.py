"""
Subworkflow step: start another workflow and, by default, wait for it.

The child is started through the orchestrator like any other trigger, so its
concurrency policy, dependencies and run history all apply. The child sees
the input variables and ``parentRunId`` as ``$trigger.*``.
"""

import asyncio
import json
from typing import Any, Dict

import structlog

from core.exceptions import ExecutionCancelledError, RunNotFoundError
from core.utils import parse_duration
from tasks.base_task import BaseTask, StepContext
from triggers.base import TriggerSource
from workflow.expressions import ExpressionEvaluator
from workflow.models import RunStatus, SubworkflowConfig, TriggerOptions

logger = structlog.get_logger(__name__)

DEFAULT_WAIT = 600.0


def parse_input_vars(raw: Any) -> Dict[str, Any]:
    """A dict, a JSON object string or ``key=value,key=value`` pairs."""
    if raw is None or raw == "":
        return {}
    if isinstance(raw, dict):
        return dict(raw)
    text = str(raw)
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        parsed = None
    if isinstance(parsed, dict):
        return parsed

    pairs: Dict[str, Any] = {}
    for pair in text.split(","):
        key, _, value = pair.partition("=")
        if key.strip():
            pairs[key.strip()] = value.strip()
    return pairs


class SubworkflowTask(BaseTask):
    """Trigger a workflow by id or name.

    Config:
        workflow: Target workflow id or name
        input_vars: Variables for the child (dict, JSON or ``k=v,k=v``)
        wait_for_completion: Wait for the child's result (default true)
        timeout: How long to wait (default 10m)
    """

    step_type = "subworkflow"
    display_name = "Sub-workflow"
    description = "Run another workflow"
    config_model = SubworkflowConfig

    async def execute(self, config: SubworkflowConfig, ctx: StepContext) -> Dict[str, Any]:
        orchestrator = ctx.services.workflows
        if orchestrator is None:
            raise RuntimeError("Workflow orchestrator not available")

        ref = str(ctx.resolve(config.workflow or "")).strip()
        if not ref:
            raise ValueError("Sub-workflow: missing workflow name or ID")

        workflow = await orchestrator.find_workflow(ref)
        input_vars = parse_input_vars(ExpressionEvaluator.resolve_value(config.input_vars, ctx.scope))
        options = TriggerOptions(
            source=TriggerSource.SUBWORKFLOW.value,
            trigger_data={**input_vars, "parentRunId": ctx.run_id},
        )

        timeout = parse_duration(ctx.resolve(config.timeout), default=DEFAULT_WAIT)
        # A queued trigger only returns once the child actually starts
        try:
            outcome = await ctx.cancel.guard(asyncio.wait_for(orchestrator.trigger(workflow.id, options), timeout))
        except asyncio.TimeoutError:
            raise TimeoutError(f'Sub-workflow "{ref}" did not start within {timeout:g}s') from None
        if not outcome.success or not outcome.run_id:
            raise RuntimeError(f'Sub-workflow "{ref}" did not start: {outcome.error}')
        logger.info("Sub-workflow started", run_id=ctx.run_id, step_id=ctx.step_id, child_run_id=outcome.run_id)

        if not config.wait_for_completion:
            return {"triggered": True, "runId": outcome.run_id, "waited": False}

        try:
            run = await ctx.cancel.guard(asyncio.wait_for(orchestrator.wait_for_run(outcome.run_id), timeout))
        except asyncio.TimeoutError:
            raise TimeoutError(f'Sub-workflow "{ref}" timed out after {timeout:g}s') from None
        except ExecutionCancelledError:
            try:
                orchestrator.cancel(outcome.run_id)
            except RunNotFoundError:
                logger.debug("Sub-workflow already finished", child_run_id=outcome.run_id)
            raise

        if run is None:
            raise RuntimeError(f'Sub-workflow "{ref}" run {outcome.run_id} not found')
        if run.status != RunStatus.SUCCESS:
            detail = f": {run.error}" if run.error else ""
            raise RuntimeError(f'Sub-workflow "{ref}" {run.status.value}{detail}')

        result = await orchestrator.get_run_result(outcome.run_id) or {}
        return {"success": True, "runId": outcome.run_id, "outputs": result.get("outputs", {}), "waited": True}


SUBWORKFLOW_TASK_TYPES = {
    "subworkflow": SubworkflowTask,
}

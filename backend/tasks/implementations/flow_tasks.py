"""
Control-flow steps: condition, switch, loop and parallel.

Loop and parallel run nested step definitions through the engine's
StepExecutor (``ctx.executor``), so nested steps get the same retry, timeout,
condition and status-event handling as top-level steps.
"""

import asyncio
from typing import Any, Dict

from core.exceptions import ExecutionCancelledError
from tasks.base_task import BaseTask, StepContext
from workflow.expressions import ExpressionEvaluator, stringify
from workflow.models import ConditionConfig, LoopConfig, ParallelConfig, SwitchConfig


class ConditionTask(BaseTask):
    """Evaluate a boolean condition.

    Config:
        expression: Condition string (``$x == done``, ``5 > 3``, ``$flag``)
        -- or --
        variable / operator / value: structured comparison
    """

    step_type = "condition"
    display_name = "Condition"
    description = "Evaluate an expression and branch on the result"
    config_model = ConditionConfig

    async def execute(self, config: ConditionConfig, ctx: StepContext) -> Dict[str, Any]:
        if config.variable:
            result = ExpressionEvaluator.evaluate_builder(config.variable, config.operator, config.value, ctx.scope)
            value = ExpressionEvaluator.resolve_value(config.variable, ctx.scope)
        else:
            result = ExpressionEvaluator.evaluate_condition(config.expression, ctx.scope)
            value = ctx.resolve(config.expression)
        return {"result": result, "value": value}


class SwitchTask(BaseTask):
    """Pick an output slot by matching a value against case labels.

    Config:
        variable: Value to match (``$build.status``)
        cases: Comma-separated labels (``ok,warn,error``) or a list

    Slot ``i`` belongs to the i-th case; the slot after the last case is the
    default branch.
    """

    step_type = "switch"
    display_name = "Switch"
    description = "Route to the branch whose case matches a value"
    config_model = SwitchConfig

    async def execute(self, config: SwitchConfig, ctx: StepContext) -> Dict[str, Any]:
        value = ExpressionEvaluator.resolve_value(config.variable, ctx.scope)
        text = stringify(value) if value is not None else ""
        cases = config.case_list()
        if text in cases:
            slot = cases.index(text)
            matched = cases[slot]
        else:
            slot = len(cases)
            matched = "default"
        return {"value": value, "matchedCase": matched, "matchedSlot": slot}


class LoopTask(BaseTask):
    """Run nested steps once per item of an array.

    Config:
        over: Variable path resolving to an array (``$list.files``)
        steps: Nested step definitions
        mode: sequential (default) | parallel
        max_iterations: Cap on the number of items processed

    Each iteration sees a cloned scope with ``item`` and ``index``.
    """

    step_type = "loop"
    display_name = "Loop"
    description = "Iterate over an array and run nested steps per item"
    config_model = LoopConfig

    async def execute(self, config: LoopConfig, ctx: StepContext) -> Dict[str, Any]:
        over = config.over.strip()
        items = ExpressionEvaluator.resolve_value(over if over.startswith("$") else f"${over}", ctx.scope)
        if not isinstance(items, (list, tuple)):
            raise TypeError(f'loop: "{config.over}" did not resolve to an array')

        items = list(items)
        if config.max_iterations is not None:
            items = items[: max(config.max_iterations, 0)]

        if config.mode == "parallel":
            results = await asyncio.gather(
                *(self._iteration(config, ctx, index, item) for index, item in enumerate(items))
            )
        else:
            results = []
            for index, item in enumerate(items):
                ctx.cancel.raise_if_cancelled()
                results.append(await self._iteration(config, ctx, index, item))

        return {"items": list(results), "count": len(results)}

    async def _iteration(self, config: LoopConfig, ctx: StepContext, index: int, item: Any) -> Dict[str, Any]:
        scope = ctx.scope.clone(item=item, index=index)
        outputs: Dict[str, Any] = {}
        await ctx.executor.run_steps(config.steps, scope, ctx.cancel, outputs)
        return outputs


class ParallelTask(BaseTask):
    """Run nested steps concurrently.

    Config:
        steps: Nested step definitions
        fail_fast: Fail this step when any sub-step failed (default true)

    Output is keyed by sub-step id; failed sub-steps map to ``{"error": msg}``.
    """

    step_type = "parallel"
    display_name = "Parallel"
    description = "Fan out nested steps concurrently"
    config_model = ParallelConfig

    async def execute(self, config: ParallelConfig, ctx: StepContext) -> Dict[str, Any]:
        settled = await asyncio.gather(
            *(ctx.executor.run_step(step, ctx.scope, ctx.cancel) for step in config.steps),
            return_exceptions=True,
        )

        ctx.cancel.raise_if_cancelled()
        results: Dict[str, Any] = {}
        failures = []
        for step, outcome in zip(config.steps, settled):
            if isinstance(outcome, ExecutionCancelledError):
                raise outcome
            if isinstance(outcome, BaseException):
                failures.append(f"{step.id}: {outcome}")
                results[step.id] = {"error": str(outcome)}
            else:
                results[step.id] = outcome

        if failures and config.fail_fast:
            raise RuntimeError(f"Parallel steps failed: {'; '.join(failures)}")
        return results


FLOW_TASK_TYPES = {
    "condition": ConditionTask,
    "switch": SwitchTask,
    "loop": LoopTask,
    "parallel": ParallelTask,
}

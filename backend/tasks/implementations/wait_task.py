"""
Wait step.

Two modes:
- ``duration`` set: sleep (cancellable) and continue.
- otherwise: suspend until the host approves the step, the optional
  ``timeout`` elapses, or the run is cancelled, whichever happens first.
  A timeout resolves the step (``timedOut: true``); cancellation fails it.
"""

import asyncio
from typing import Any, Dict

import structlog

from core.utils import parse_duration
from tasks.base_task import BaseTask, StepContext
from workflow.models import WaitConfig

logger = structlog.get_logger(__name__)


class WaitTask(BaseTask):
    step_type = "wait"
    display_name = "Wait"
    description = "Pause for a duration or until approved"
    config_model = WaitConfig

    async def execute(self, config: WaitConfig, ctx: StepContext) -> Dict[str, Any]:
        if config.duration is not None and config.mode != "approval":
            seconds = parse_duration(ctx.resolve(config.duration), default=0)
            await ctx.cancel.sleep(seconds)
            return {"waited": seconds, "timedOut": False}

        registry = ctx.services.wait_registry
        if registry is None:
            raise RuntimeError("Approval registry not available")

        timeout = parse_duration(ctx.resolve(config.timeout)) if config.timeout is not None else None
        approval = registry.register(ctx.run_id, ctx.step_id)
        logger.info(
            "Waiting for approval",
            run_id=ctx.run_id,
            step_id=ctx.step_id,
            timeout=timeout,
            message=ctx.resolve(config.message or ""),
        )

        try:
            return await ctx.cancel.guard(asyncio.wait_for(asyncio.shield(approval), timeout))
        except asyncio.TimeoutError:
            return {"approved": False, "timedOut": True}
        finally:
            registry.discard(ctx.run_id, ctx.step_id)


WAIT_TASK_TYPES = {
    "wait": WaitTask,
}

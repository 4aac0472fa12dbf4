"""Log step: write a message to the engine log and the event stream."""

from typing import Any, Dict

import structlog

from core.utils import iso_now
from tasks.base_task import BaseTask, StepContext
from workflow.events import WORKFLOW_LOG
from workflow.models import LogConfig

logger = structlog.get_logger(__name__)

LOG_LEVELS = ("debug", "info", "warn", "error")


class LogTask(BaseTask):
    """Emit a ``workflow-log`` event.

    Config:
        level: debug | info (default) | warn | error
        message: Text (variables resolved)
    """

    step_type = "log"
    display_name = "Log"
    description = "Write a message to the run log"
    config_model = LogConfig

    async def execute(self, config: LogConfig, ctx: StepContext) -> Dict[str, Any]:
        level = (config.level or "info").lower()
        if level == "warning":
            level = "warn"
        if level not in LOG_LEVELS:
            raise ValueError(f"Log step: unknown level {config.level}")
        message = ctx.resolve(config.message or "")

        log = getattr(logger, "warning" if level == "warn" else level)
        log("Workflow log", run_id=ctx.run_id, step_id=ctx.step_id, message=message)
        ctx.emit(WORKFLOW_LOG, {
            "runId": ctx.run_id,
            "stepId": ctx.step_id,
            "level": level,
            "message": message,
            "timestamp": iso_now(),
        })
        return {"level": level, "message": message, "logged": True}


LOG_TASK_TYPES = {
    "log": LogTask,
}

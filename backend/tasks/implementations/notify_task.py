"""Notify step: desktop event plus best-effort webhook posts."""

from typing import Any, Dict

from tasks.base_task import BaseTask, StepContext
from workflow.models import NotifyConfig


class NotifyTask(BaseTask):
    """Send a notification without waiting for delivery.

    Config:
        title: Title (default "Workflow")
        message: Body text (variables resolved)
        channels: ["desktop", {"discord": url}, {"slack": url}, {"<other>": url}]
    """

    step_type = "notify"
    display_name = "Notify"
    description = "Desktop notification and outgoing webhooks (fire-and-forget)"
    config_model = NotifyConfig

    async def execute(self, config: NotifyConfig, ctx: StepContext) -> Dict[str, Any]:
        manager = ctx.services.notifications
        if manager is None:
            raise RuntimeError("Notification manager not available")

        title = ctx.resolve(config.title or "Workflow")
        message = ctx.resolve(config.message or "")

        for spec in config.channels:
            for notification in manager.build(title, message, ctx.resolve_deep(spec)):
                manager.dispatch(notification)

        return {"sent": True, "message": message}


NOTIFY_TASK_TYPES = {
    "notify": NotifyTask,
}

"""Adapter running a dotted vendor step (``prefix.sub_type``) through its handler."""

from typing import Any

from tasks.base_task import BaseTask, StepContext


class ExtensionTask(BaseTask):
    """Delegates to a handler registered with ``TaskRegistry.register_extension``.

    The handler receives the sub-type, the step properties with variables
    resolved, and the step context (scope, cancellation, emit).
    """

    step_type = "extension"
    display_name = "Extension"
    description = "Vendor-specific step type"

    def __init__(self, handler: Any, sub_type: str):
        self.handler = handler
        self.sub_type = sub_type

    async def execute(self, config: Any, ctx: StepContext) -> Any:
        properties = config.model_dump() if hasattr(config, "model_dump") else dict(config or {})
        resolved = ctx.resolve_deep(properties)
        return await ctx.cancel.guard(self.handler.execute_step(self.sub_type, resolved, ctx))

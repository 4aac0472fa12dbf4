"""
Run variable steps.

``variable`` writes a named value into the run scope, where later steps read
it as ``$name``. Inside a loop iteration the write lands in the iteration's
scope copy and is gone after the iteration. ``get_variable`` reads one back.
"""

import re
from typing import Any, Dict

import structlog

from tasks.base_task import BaseTask, StepContext
from workflow.expressions import ExpressionEvaluator, stringify
from workflow.models import GetVariableConfig, VariableConfig

logger = structlog.get_logger(__name__)

_NAME_RE = re.compile(r"^[A-Za-z_]\w*$")
RESERVED_NAMES = frozenset({"ctx", "trigger"})


def _number(value: Any) -> float:
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(stringify(value))
    except (TypeError, ValueError):
        return 0.0


def _tidy(number: float) -> Any:
    return int(number) if number.is_integer() else number


def check_variable_name(name: str, label: str = "Variable step") -> str:
    if not name:
        raise ValueError(f"{label}: no name specified")
    if not _NAME_RE.match(name) or name in RESERVED_NAMES:
        raise ValueError(f'{label}: invalid name "{name}"')
    return name


class VariableTask(BaseTask):
    """Set, read, increment or append to a run variable.

    Config:
        action: set (default) | get | increment | append
        name: Variable name, referenced later as ``$name``
        value: New value, increment amount (default 1) or item to append
    """

    step_type = "variable"
    display_name = "Variable"
    description = "Store a value for later steps"
    config_model = VariableConfig

    async def execute(self, config: VariableConfig, ctx: StepContext) -> Dict[str, Any]:
        name = check_variable_name((config.name or "").strip().lstrip("$"))

        current = ctx.scope.get(name)
        value = ExpressionEvaluator.resolve_value(config.value, ctx.scope)
        if isinstance(value, (dict, list)):
            value = ExpressionEvaluator.resolve_deep(value, ctx.scope)

        if config.action == "get":
            return {"name": name, "value": current, "action": config.action}
        if config.action == "set":
            result = value
        elif config.action == "increment":
            result = _tidy(_number(current) + (_number(value) or 1))
        elif config.action == "append":
            if current is None:
                result = []
            elif isinstance(current, list):
                result = list(current)
            else:
                result = [current]
            result.append(value)
        else:
            raise ValueError(f"Variable step: unknown action {config.action}")

        ctx.scope[name] = result
        logger.debug("Variable updated", run_id=ctx.run_id, step_id=ctx.step_id, name=name, action=config.action)
        return {"name": name, "value": result, "action": config.action}


class GetVariableTask(BaseTask):
    """Read a run variable (or any scope path) into this step's output."""

    step_type = "get_variable"
    display_name = "Get Variable"
    description = "Read a stored value"
    config_model = GetVariableConfig

    async def execute(self, config: GetVariableConfig, ctx: StepContext) -> Dict[str, Any]:
        name = (config.name or "").strip().lstrip("$")
        if not name:
            raise ValueError("Get variable step: no name specified")
        return {"name": name, "value": ExpressionEvaluator.lookup(name, ctx.scope)}


VARIABLE_TASK_TYPES = {
    "variable": VariableTask,
    "get_variable": GetVariableTask,
}

"""
Transform step: reshape data produced by earlier steps.

There is no code evaluation. Per-item expressions are the same ``$`` templates
and conditions the rest of a workflow uses, resolved against a scope copy that
adds ``item`` and ``index``:

    map     expression is a template        ``$item.name``
    filter  expression is a condition       ``$item.size > 100``
    find    first item whose condition holds
    count   items whose condition holds (all items without an expression)
    reduce  sum of the items, or of the template's values
    pluck   expression is a field path      ``author.login``
    sort    ascending by field path
    unique  distinct items, or distinct by field path
    flatten one level, or ``expression`` levels
"""

import json
from typing import Any, Dict, List

from tasks.base_task import BaseTask, StepContext
from tasks.implementations.variable_task import check_variable_name
from workflow.expressions import ExpressionEvaluator, VariableScope, stringify
from workflow.models import TransformConfig

LIST_OPERATIONS = ("map", "filter", "find", "reduce", "pluck", "count", "sort", "unique", "flatten")


def _field(item: Any, path: str) -> Any:
    if not path:
        return item
    return ExpressionEvaluator.lookup(f"item.{path}", {"item": item})


def _identity(item: Any) -> str:
    return json.dumps(item, sort_keys=True, default=str)


def _number(value: Any) -> float:
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(stringify(value))
    except ValueError:
        raise ValueError(f"reduce: {stringify(value)!r} is not a number") from None


def _flatten(items: List[Any], depth: int) -> List[Any]:
    flat: List[Any] = []
    for item in items:
        if isinstance(item, list) and depth > 0:
            flat.extend(_flatten(item, depth - 1))
        else:
            flat.append(item)
    return flat


class TransformTask(BaseTask):
    """Apply one data operation to a value.

    Config:
        operation: json_parse | json_stringify | map | filter | find | reduce |
                   pluck | count | sort | unique | flatten (default map)
        input: Value or ``$path`` to transform
        expression: Per-item template, condition or field path
        output_var: Also store the result as a run variable
    """

    step_type = "transform"
    display_name = "Transform"
    description = "Parse, map, filter and reshape data"
    config_model = TransformConfig

    async def execute(self, config: TransformConfig, ctx: StepContext) -> Dict[str, Any]:
        operation = config.operation or "map"
        value = ExpressionEvaluator.resolve_value(config.input, ctx.scope)
        if isinstance(value, (dict, list)):
            value = ExpressionEvaluator.resolve_deep(value, ctx.scope)
        if value == "":
            value = None

        if operation == "json_parse":
            text = value if isinstance(value, str) else json.dumps(value, default=str)
            try:
                result = json.loads(text)
            except json.JSONDecodeError as e:
                raise ValueError(f"json_parse failed: {e}") from e
        elif operation == "json_stringify":
            result = json.dumps(value, indent=2, default=str)
        elif operation in LIST_OPERATIONS:
            items = value if isinstance(value, list) else ([] if value is None else [value])
            result = self._apply(operation, items, config.expression.strip(), ctx.scope)
        else:
            raise ValueError(f"Unknown transform operation: {operation}")

        if config.output_var:
            ctx.scope[check_variable_name(config.output_var, "Transform step")] = result

        return {"result": result, "count": len(result) if isinstance(result, list) else 1}

    def _apply(self, operation: str, items: List[Any], expression: str, scope: VariableScope) -> Any:
        def each(index: int, item: Any) -> VariableScope:
            return scope.clone(item=item, index=index)

        def holds(index: int, item: Any) -> bool:
            return not expression or ExpressionEvaluator.evaluate_condition(expression, each(index, item))

        if operation == "map":
            if not expression:
                return list(items)
            return [ExpressionEvaluator.resolve_value(expression, each(i, item)) for i, item in enumerate(items)]

        if operation == "filter":
            return [item for i, item in enumerate(items) if holds(i, item)]

        if operation == "find":
            return next((item for i, item in enumerate(items) if holds(i, item)), None)

        if operation == "count":
            return sum(1 for i, item in enumerate(items) if holds(i, item))

        if operation == "reduce":
            values = self._apply("map", items, expression, scope)
            total = float(sum(_number(v) for v in values))
            return int(total) if total.is_integer() else total

        if operation == "pluck":
            return [_field(item, expression) for item in items]

        if operation == "sort":
            if not expression:
                return list(items)
            keyed = [(_field(item, expression), item) for item in items]
            try:
                keyed.sort(key=lambda pair: (pair[0] is None, 0 if pair[0] is None else pair[0]))
            except TypeError:
                # Mixed key types order by their text form
                keyed.sort(key=lambda pair: (pair[0] is None, "" if pair[0] is None else stringify(pair[0])))
            return [item for _, item in keyed]

        if operation == "unique":
            seen = set()
            distinct = []
            for item in items:
                key = _identity(_field(item, expression))
                if key not in seen:
                    seen.add(key)
                    distinct.append(item)
            return distinct

        depth = int(expression) if expression.isdigit() else 1
        return _flatten(items, depth or 1)


TRANSFORM_TASK_TYPES = {
    "transform": TransformTask,
}

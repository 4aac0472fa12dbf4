"""Variable resolution and condition evaluation.

Step properties reference earlier outputs with ``$name.path`` tokens:

    $ctx.branch            -> context variable
    $trigger.tool_name     -> data from the trigger that started the run
    $build.exitCode        -> output of the step with id "build"
    $item.name / $index    -> current loop iteration

Resolution is a plain dotted-path lookup into the run's ``VariableScope``.
There is no operator support, no function calls and no ``eval``; tokens that
cannot be resolved are left in the text untouched.

Conditions are resolved first and then interpreted as a literal
(``true``/``false``), a single comparison (``left OP right``) or a
truthiness check.
"""

import json
import re
from typing import Any, Optional

_TOKEN_RE = re.compile(r"\$([A-Za-z_]\w*(?:\.(?:[A-Za-z_]\w*|\d+))*)")
_SINGLE_TOKEN_RE = re.compile(r"^\$([A-Za-z_]\w*(?:\.(?:[A-Za-z_]\w*|\d+))*)$")
_COMPARISON_RE = re.compile(r"^(.+?)\s*(==|!=|>=|<=|>|<)\s*(.+)$", re.DOTALL)

_NUMBER_RE = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?$")

FALSY_STRINGS = frozenset({"", "0", "null", "undefined"})

_MISSING = object()


class VariableScope(dict):
    """Per-run mapping of names (ctx, trigger, step ids) to values."""

    def clone(self, **extra: Any) -> "VariableScope":
        """Copy for a loop iteration; writes to the clone do not leak back."""
        scope = VariableScope(self)
        scope.update(extra)
        return scope


def _to_number(text: str) -> Optional[float]:
    if not isinstance(text, str) or not _NUMBER_RE.match(text.strip()):
        return None
    return float(text)


def stringify(value: Any) -> str:
    """Render a resolved value the way it appears inside a larger string."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"), default=str)
    return str(value).rstrip("\r\n")


class ExpressionEvaluator:
    """Resolves ``$path`` tokens and evaluates condition strings."""

    @staticmethod
    def lookup(path: str, scope: dict) -> Any:
        """Walk a dotted path into the scope. Returns ``None`` when any segment is missing."""
        value = ExpressionEvaluator._lookup(path, scope)
        return None if value is _MISSING else value

    @staticmethod
    def _lookup(path: str, scope: dict) -> Any:
        parts = path.lstrip("$").split(".")
        if parts[0] not in scope:
            return _MISSING
        current = scope[parts[0]]
        for part in parts[1:]:
            if current is None:
                return _MISSING
            if isinstance(current, dict):
                if part not in current:
                    return _MISSING
                current = current[part]
            elif isinstance(current, (list, tuple)) and part.isdigit():
                index = int(part)
                if index >= len(current):
                    return _MISSING
                current = current[index]
            else:
                return _MISSING
        return _MISSING if current is None else current

    @staticmethod
    def resolve(value: Any, scope: dict, missing: Optional[str] = None) -> Any:
        """Substitute every ``$path`` token in a string with its scope value.

        Unresolved tokens stay verbatim, or become ``missing`` when it is given.
        """
        if not isinstance(value, str) or "$" not in value:
            return value

        def _replace(match: re.Match) -> str:
            found = ExpressionEvaluator._lookup(match.group(1), scope)
            if found is _MISSING:
                return match.group(0) if missing is None else missing
            return stringify(found)

        return _TOKEN_RE.sub(_replace, value)

    @staticmethod
    def resolve_value(value: Any, scope: dict) -> Any:
        """Like ``resolve`` but a string that is exactly one token yields the raw value."""
        if isinstance(value, str):
            single = _SINGLE_TOKEN_RE.match(value.strip())
            if single:
                found = ExpressionEvaluator._lookup(single.group(1), scope)
                if found is not _MISSING:
                    return found
        return ExpressionEvaluator.resolve(value, scope)

    @staticmethod
    def resolve_deep(obj: Any, scope: dict) -> Any:
        """Recursively resolve every string leaf of a dict/list structure."""
        if isinstance(obj, str):
            return ExpressionEvaluator.resolve(obj, scope)
        if isinstance(obj, dict):
            return {k: ExpressionEvaluator.resolve_deep(v, scope) for k, v in obj.items()}
        if isinstance(obj, (list, tuple)):
            return [ExpressionEvaluator.resolve_deep(v, scope) for v in obj]
        return obj

    @staticmethod
    def evaluate_condition(condition: Optional[str], scope: dict, missing: Optional[str] = None) -> bool:
        """Evaluate a condition string. An empty condition is true.

        ``missing`` replaces unresolved tokens before evaluation (see ``resolve``).
        """
        if condition is None:
            return True
        if not isinstance(condition, str):
            return bool(condition)
        if not condition.strip():
            return True

        raw = ExpressionEvaluator.resolve(condition, scope, missing)
        resolved = raw.strip()

        if resolved == "true":
            return True
        if resolved == "false":
            return False

        # Unstripped, so a side that resolved to "" still compares
        match = _COMPARISON_RE.match(raw)
        if not match:
            return resolved not in FALSY_STRINGS

        left, op, right = match.group(1).strip(), match.group(2), match.group(3).strip()
        return ExpressionEvaluator.compare(left, op, right)

    @staticmethod
    def compare(left: str, op: str, right: str) -> bool:
        """Numeric comparison when both sides are numbers, string equality otherwise."""
        ln, rn = _to_number(left), _to_number(right)
        numeric = ln is not None and rn is not None

        if op == "==":
            return ln == rn if numeric else left == right
        if op == "!=":
            return ln != rn if numeric else left != right
        if not numeric:
            return False
        if op == ">":
            return ln > rn
        if op == "<":
            return ln < rn
        if op == ">=":
            return ln >= rn
        if op == "<=":
            return ln <= rn
        return False

    @staticmethod
    def evaluate_builder(variable: str, operator: str, value: Any, scope: dict) -> bool:
        """Evaluate a structured ``variable operator value`` condition."""
        left = stringify(ExpressionEvaluator.resolve_value(variable or "", scope))
        right = stringify(ExpressionEvaluator.resolve_value(value if value is not None else "", scope))
        op = (operator or "==").strip()

        if op in ("==", "!=", ">", "<", ">=", "<="):
            return ExpressionEvaluator.compare(left.strip(), op, right.strip())
        if op == "contains":
            return right in left
        if op in ("starts_with", "startsWith"):
            return left.startswith(right)
        if op in ("ends_with", "endsWith"):
            return left.endswith(right)
        if op == "is_empty":
            return left.strip() == "" or left.startswith("$")
        if op == "is_not_empty":
            return left.strip() != "" and not left.startswith("$")
        raise ValueError(f"Unsupported condition operator: {operator}")

"""Tests for variable resolution and condition evaluation."""

import pytest

from workflow.expressions import ExpressionEvaluator, VariableScope, stringify


@pytest.fixture
def scope():
    return VariableScope(
        ctx={"branch": "main", "project": "/tmp/app"},
        build={"exitCode": 0, "stdout": "ok\n", "files": ["a.py", "b.py"]},
        x="done",
        flag=True,
    )


@pytest.mark.unit
class TestResolve:
    """``$path`` substitution."""

    def test_simple_variable(self, scope):
        assert ExpressionEvaluator.resolve("on $ctx.branch", scope) == "on main"

    def test_step_output_field(self, scope):
        assert ExpressionEvaluator.resolve("code=$build.exitCode", scope) == "code=0"

    def test_list_index(self, scope):
        assert ExpressionEvaluator.resolve("$build.files.1", scope) == "b.py"

    def test_unresolved_token_left_verbatim(self, scope):
        assert ExpressionEvaluator.resolve("$missing.value and $ctx.nope", scope) == "$missing.value and $ctx.nope"

    def test_no_token_passthrough(self, scope):
        assert ExpressionEvaluator.resolve("plain text", scope) == "plain text"
        assert ExpressionEvaluator.resolve(42, scope) == 42

    def test_trailing_newline_stripped(self, scope):
        assert ExpressionEvaluator.resolve("[$build.stdout]", scope) == "[ok]"

    def test_values_rendered_as_text(self, scope):
        assert ExpressionEvaluator.resolve("$flag", scope) == "true"
        assert ExpressionEvaluator.resolve("$build.files", scope) == '["a.py","b.py"]'

    def test_single_token_keeps_raw_value(self, scope):
        assert ExpressionEvaluator.resolve_value("$build.files", scope) == ["a.py", "b.py"]
        assert ExpressionEvaluator.resolve_value("$flag", scope) is True

    def test_resolve_deep(self, scope):
        resolved = ExpressionEvaluator.resolve_deep(
            {"headers": {"X-Branch": "$ctx.branch"}, "args": ["$x", 3]},
            scope,
        )
        assert resolved == {"headers": {"X-Branch": "main"}, "args": ["done", 3]}

    def test_no_expression_language(self, scope):
        # Only path lookup: arithmetic and calls are never evaluated
        assert ExpressionEvaluator.resolve("$build.exitCode + 1", scope) == "0 + 1"
        assert ExpressionEvaluator.resolve("$__import__('os')", scope) == "$__import__('os')"


@pytest.mark.unit
class TestConditions:
    """Condition strings."""

    @pytest.mark.parametrize(
        "condition, expected",
        [
            ("5 > 3", True),
            ("3 >= 4", False),
            ("$x == done", True),
            ("$x != done", False),
            ("", True),
            (None, True),
            ("0", False),
            ("null", False),
            ("undefined", False),
            ("true", True),
            ("false", False),
            ("anything", True),
            ("10 == 10.0", True),
            ("abc > 3", False),
        ],
    )
    def test_evaluate(self, scope, condition, expected):
        assert ExpressionEvaluator.evaluate_condition(condition, scope) is expected

    def test_step_output_comparison(self, scope):
        assert ExpressionEvaluator.evaluate_condition("$build.exitCode == 0", scope) is True
        assert ExpressionEvaluator.evaluate_condition("$build.exitCode != 0", scope) is False

    def test_unresolved_variable_is_truthy_text(self, scope):
        assert ExpressionEvaluator.evaluate_condition("$nothing", scope) is True

    def test_missing_replacement(self, scope):
        assert ExpressionEvaluator.resolve("[$nothing.here]", scope, missing="") == "[]"
        assert ExpressionEvaluator.evaluate_condition("$trigger.tool", {"trigger": {}}, missing="") is False
        assert ExpressionEvaluator.evaluate_condition("$trigger.tool == ", {"trigger": {}}, missing="") is True
        assert ExpressionEvaluator.evaluate_condition("$trigger.tool != Edit", {"trigger": {}}, missing="") is True

    @pytest.mark.parametrize(
        "condition, expected",
        [
            ("nan == nan", True),
            ("inf > 1", False),
            ("1_000 == 1000", False),
            ("1e3 == 1000", True),
            ("-2.5 < .5", True),
            (" 7 >= 7 ", True),
        ],
    )
    def test_only_plain_decimals_compare_numerically(self, scope, condition, expected):
        assert ExpressionEvaluator.evaluate_condition(condition, scope) is expected

    @pytest.mark.parametrize(
        "variable, operator, value, expected",
        [
            ("$x", "==", "done", True),
            ("$build.stdout", "contains", "ok", True),
            ("$ctx.project", "starts_with", "/tmp", True),
            ("$ctx.project", "ends_with", "app", True),
            ("$nothing", "is_empty", None, True),
            ("$x", "is_not_empty", None, True),
            ("$build.exitCode", ">", "-1", True),
        ],
    )
    def test_builder(self, scope, variable, operator, value, expected):
        assert ExpressionEvaluator.evaluate_builder(variable, operator, value, scope) is expected

    def test_builder_unknown_operator(self, scope):
        with pytest.raises(ValueError):
            ExpressionEvaluator.evaluate_builder("$x", "matches", "d.*", scope)


@pytest.mark.unit
class TestVariableScope:

    def test_clone_does_not_leak(self, scope):
        child = scope.clone(item="a", index=0)
        child["step"] = {"ok": True}
        assert child["item"] == "a"
        assert "item" not in scope
        assert "step" not in scope

    def test_stringify(self):
        assert stringify(False) == "false"
        assert stringify(2.0) == "2"
        assert stringify({"a": 1}) == '{"a":1}'

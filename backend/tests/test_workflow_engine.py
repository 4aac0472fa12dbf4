"""Tests for the workflow execution engine."""

import asyncio

import pytest

from core.cancellation import CancelScope
from tasks.base_task import StepServices
from workflow.approvals import WaitRegistry
from workflow.engine import WorkflowEngine
from workflow.events import STEP_UPDATE, WORKFLOW_LOG
from workflow.expressions import VariableScope
from workflow.models import StepStatus, WorkflowDefinition

from conftest import chain_graph


@pytest.fixture
def engine(registry, recorder):
    return WorkflowEngine(
        registry=registry,
        services=StepServices(wait_registry=WaitRegistry()),
        emit=recorder,
        default_retry_delay=0.01,
    )


def graph_workflow(*nodes, links=None, **fields):
    return WorkflowDefinition.model_validate({"id": "wf", "graph": chain_graph(*nodes, links=links), **fields})


def statuses(recorder, step_id):
    return [e["status"] for e in recorder.of(STEP_UPDATE) if e["stepId"] == step_id]


async def run(engine, workflow, scope=None, cancel=None):
    return await engine.execute(workflow, "run_test", scope or VariableScope(), cancel or CancelScope())


@pytest.mark.unit
class TestRetries:

    @pytest.mark.asyncio
    async def test_always_failing_step_attempted_retry_plus_one_times(self, engine, scripted, recorder):
        wf = graph_workflow({"type": "scripted", "fail_times": 99, "retry": 2})

        result = await run(engine, wf)

        assert scripted.calls == ["node_2", "node_2", "node_2"]
        assert result.success is False
        assert result.cancelled is False
        assert result.error == "node_2 failed (attempt 3)"
        assert statuses(recorder, "node_2") == [
            "running", "retrying", "running", "retrying", "running", "failed",
        ]
        assert result.step_statuses["node_2"].status == StepStatus.FAILED

    @pytest.mark.asyncio
    async def test_retry_then_success(self, engine, scripted, recorder):
        wf = graph_workflow({"type": "scripted", "fail_times": 1, "retry": 1})

        result = await run(engine, wf)

        assert result.success is True
        assert result.outputs["node_2"] == {"ok": True, "attempt": 2}
        success = [e for e in recorder.of(STEP_UPDATE) if e["status"] == "success" and e["stepId"] == "node_2"]
        assert success[0]["attempt"] == 2

    @pytest.mark.asyncio
    async def test_retry_delay_is_applied(self, engine, scripted):
        wf = graph_workflow({"type": "scripted", "fail_times": 1, "retry": 1, "retry_delay": "100ms"})
        loop = asyncio.get_running_loop()
        started = loop.time()

        await run(engine, wf)

        assert loop.time() - started >= 0.09

    @pytest.mark.asyncio
    async def test_step_timeout_is_a_retryable_failure(self, engine, scripted):
        wf = graph_workflow({"type": "scripted", "sleep": 5, "timeout": "30ms", "retry": 1})

        result = await run(engine, wf)

        assert scripted.calls == ["node_2", "node_2"]
        assert result.success is False
        assert result.cancelled is False
        assert "timed out" in result.error


@pytest.mark.unit
class TestGraphRouting:

    @pytest.mark.asyncio
    async def test_error_edge_handles_failure(self, engine, scripted):
        # 2 fails; 2 -(success)-> 3, 2 -(error)-> 4
        wf = graph_workflow(
            {"type": "scripted", "fail": True, "error": "boom"},
            {"type": "scripted"},
            {"type": "scripted", "output": {"handled": "$node_2.error"}},
            links=[[1, 1, 0, 2, 0, -1], [2, 2, 0, 3, 0, -1], [3, 2, 1, 4, 0, -1]],
        )

        result = await run(engine, wf)

        assert result.success is True
        assert scripted.calls == ["node_2", "node_4"]
        assert result.outputs["node_2"] == {"error": "boom", "success": False}
        assert result.outputs["node_4"] == {"handled": "boom"}

    @pytest.mark.asyncio
    async def test_failure_without_error_edge_stops_the_run(self, engine, scripted, recorder):
        wf = graph_workflow({"type": "scripted", "fail": True, "error": "boom"}, {"type": "scripted"})

        result = await run(engine, wf)

        assert result.success is False
        assert result.error == "boom"
        assert scripted.calls == ["node_2"]
        assert statuses(recorder, "node_3") == []

    @pytest.mark.asyncio
    async def test_condition_routes_true_and_false_slots(self, engine, scripted):
        links = [[1, 1, 0, 2, 0, -1], [2, 2, 0, 3, 0, -1], [3, 2, 1, 4, 0, -1]]
        wf = graph_workflow(
            {"type": "condition", "expression": "$trigger.env == prod"},
            {"type": "scripted"},
            {"type": "scripted"},
            links=links,
        )

        result = await run(engine, wf, VariableScope(trigger={"env": "staging"}))

        assert result.success is True
        assert result.outputs["node_2"] == {"result": False, "value": "staging == prod"}
        assert scripted.calls == ["node_4"]

    @pytest.mark.asyncio
    async def test_condition_error_counts_as_false(self, engine, scripted, recorder):
        links = [[1, 1, 0, 2, 0, -1], [2, 2, 0, 3, 0, -1], [3, 2, 1, 4, 0, -1]]
        wf = graph_workflow(
            {"type": "condition", "variable": "$x", "operator": "matches", "value": "y"},
            {"type": "scripted"},
            {"type": "scripted"},
            links=links,
        )

        result = await run(engine, wf, VariableScope(x="y"))

        assert result.success is True
        assert result.outputs["node_2"]["result"] is False
        assert scripted.calls == ["node_4"]
        assert statuses(recorder, "node_2") == ["running", "success"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("level, expected", [
        ("info", "node_3"),
        ("warn", "node_4"),
        ("error", "node_5"),
        ("fatal", "node_6"),
    ])
    async def test_switch_routes_to_matched_case_slot(self, engine, scripted, level, expected):
        links = [[1, 1, 0, 2, 0, -1]] + [[slot + 2, 2, slot, slot + 3, 0, -1] for slot in range(4)]
        wf = graph_workflow(
            {"type": "switch", "variable": "$trigger.level", "cases": "info, warn,,error"},
            {"type": "scripted"},
            {"type": "scripted"},
            {"type": "scripted"},
            {"type": "scripted"},
            links=links,
        )

        result = await run(engine, wf, VariableScope(trigger={"level": level}))

        assert result.success is True
        assert scripted.calls == [expected]
        assert result.outputs["node_2"]["matchedCase"] == (level if level != "fatal" else "default")

    @pytest.mark.asyncio
    async def test_switch_without_edge_on_matched_slot_ends_branch(self, engine, scripted):
        links = [[1, 1, 0, 2, 0, -1], [2, 2, 0, 3, 0, -1]]
        wf = graph_workflow(
            {"type": "switch", "variable": "$trigger.level", "cases": "info,warn"},
            {"type": "scripted"},
            links=links,
        )

        result = await run(engine, wf, VariableScope(trigger={"level": "warn"}))

        assert result.success is True
        assert result.outputs["node_2"]["matchedSlot"] == 1
        assert scripted.calls == []

    @pytest.mark.asyncio
    async def test_variables_flow_between_nodes(self, engine, scripted):
        wf = graph_workflow(
            {"type": "variable", "name": "count", "value": "2"},
            {"type": "variable", "action": "increment", "name": "count"},
            {"type": "transform", "operation": "map", "input": "$trigger.files", "expression": "$item.name",
             "outputVar": "names"},
            {"type": "scripted", "output": {"count": "$count", "names": "$names"}},
        )

        result = await run(engine, wf, VariableScope(trigger={"files": [{"name": "a.py"}, {"name": "b.py"}]}))

        assert result.success is True
        assert result.outputs["node_3"] == {"name": "count", "value": 3, "action": "increment"}
        assert result.outputs["node_5"] == {"count": "3", "names": '["a.py","b.py"]'}

    @pytest.mark.asyncio
    async def test_log_node_emits_workflow_log(self, engine, recorder):
        wf = graph_workflow({"type": "log", "level": "warn", "message": "deploying $trigger.tag"})

        result = await run(engine, wf, VariableScope(trigger={"tag": "v2"}))

        assert result.success is True
        [event] = recorder.of(WORKFLOW_LOG)
        assert event["runId"] == "run_test"
        assert event["stepId"] == "node_2"
        assert (event["level"], event["message"]) == ("warn", "deploying v2")

    @pytest.mark.asyncio
    async def test_node_runs_once_on_first_arrival(self, engine, scripted):
        # Diamond: 1 -> 2, 1 -> 3, 2 -> 4, 3 -> 4
        wf = graph_workflow(
            {"type": "scripted"},
            {"type": "scripted"},
            {"type": "scripted"},
            links=[[1, 1, 0, 2, 0, -1], [2, 1, 0, 3, 0, -1], [3, 2, 0, 4, 0, -1], [4, 3, 0, 4, 0, -1]],
        )

        result = await run(engine, wf)

        assert result.success is True
        assert scripted.calls == ["node_2", "node_3", "node_4"]

    @pytest.mark.asyncio
    async def test_trigger_node_reported(self, engine, recorder):
        wf = graph_workflow()

        result = await run(engine, wf)

        assert result.success is True
        assert statuses(recorder, "node_1") == ["running", "success"]

    @pytest.mark.asyncio
    async def test_graph_without_trigger_fails(self, engine):
        wf = WorkflowDefinition.model_validate({
            "id": "wf",
            "graph": {"nodes": [{"id": 2, "type": "workflow/scripted"}], "links": []},
        })

        result = await run(engine, wf)

        assert result.success is False
        assert "no trigger node" in result.error

    @pytest.mark.asyncio
    async def test_unknown_step_type_fails_the_run(self, engine):
        wf = graph_workflow({"type": "nope"})

        result = await run(engine, wf)

        assert result.success is False
        assert result.error == "Unknown step type: nope"


@pytest.mark.unit
class TestCancellation:

    @pytest.mark.asyncio
    async def test_cancel_mid_step(self, engine, scripted, recorder):
        wf = graph_workflow({"type": "scripted", "sleep": 5, "retry": 3}, {"type": "scripted"})
        cancel = CancelScope()
        asyncio.get_running_loop().call_later(0.05, cancel.cancel)

        result = await run(engine, wf, cancel=cancel)

        assert result.cancelled is True
        assert result.success is False
        assert scripted.calls == ["node_2"]
        assert statuses(recorder, "node_2") == ["running", "failed"]
        assert result.step_statuses["node_2"].output == {"error": "Cancelled"}
        assert "node_3" not in result.step_statuses

    @pytest.mark.asyncio
    async def test_cancel_during_retry_delay(self, engine, scripted):
        wf = graph_workflow({"type": "scripted", "fail": True, "retry": 2, "retry_delay": "5s"})
        cancel = CancelScope()
        asyncio.get_running_loop().call_later(0.05, cancel.cancel)

        result = await run(engine, wf, cancel=cancel)

        assert result.cancelled is True
        assert scripted.calls == ["node_2"]

    @pytest.mark.asyncio
    async def test_cancel_pending_approval(self, engine, recorder):
        wf = graph_workflow({"type": "wait"})
        cancel = CancelScope()
        asyncio.get_running_loop().call_later(0.05, cancel.cancel)

        result = await run(engine, wf, cancel=cancel)

        assert result.cancelled is True
        assert engine.services.wait_registry.pending() == []


@pytest.mark.unit
class TestLinearMode:

    @pytest.mark.asyncio
    async def test_steps_run_in_order_with_conditions(self, engine, scripted, recorder):
        wf = WorkflowDefinition.model_validate({
            "id": "wf",
            "steps": [
                {"id": "a", "type": "scripted", "output": {"value": 1}},
                {"id": "b", "type": "scripted", "condition": "$a.value == 2"},
                {"id": "c", "type": "scripted", "condition": "$a.value == 1"},
            ],
        })

        result = await run(engine, wf)

        assert result.success is True
        assert scripted.calls == ["a", "c"]
        assert statuses(recorder, "b") == ["skipped"]

    @pytest.mark.asyncio
    async def test_loop_collects_one_output_map_per_item(self, engine, scripted):
        wf = WorkflowDefinition.model_validate({
            "id": "wf",
            "steps": [
                {"id": "list", "type": "scripted", "output": {"files": ["a", "b", "c"]}},
                {
                    "id": "each",
                    "type": "loop",
                    "over": "list.files",
                    "steps": [
                        {"id": "first", "type": "scripted", "output": {"name": "$item"}},
                        {"id": "second", "type": "scripted", "output": {"index": "$index"}},
                    ],
                },
            ],
        })

        result = await run(engine, wf)

        assert result.success is True
        loop_output = result.outputs["each"]
        assert loop_output["count"] == 3
        assert [item["first"]["name"] for item in loop_output["items"]] == ["a", "b", "c"]
        assert [item["second"]["index"] for item in loop_output["items"]] == ["0", "1", "2"]
        assert "item" not in result.outputs

    @pytest.mark.asyncio
    async def test_loop_over_non_array_fails(self, engine):
        wf = WorkflowDefinition.model_validate({
            "id": "wf",
            "steps": [{"id": "each", "type": "loop", "over": "$nothing", "steps": []}],
        })

        result = await run(engine, wf)

        assert result.success is False
        assert 'did not resolve to an array' in result.error

    @pytest.mark.asyncio
    async def test_parallel_fail_fast(self, engine, scripted):
        wf = WorkflowDefinition.model_validate({
            "id": "wf",
            "steps": [{
                "id": "fan",
                "type": "parallel",
                "steps": [{"id": "ok", "type": "scripted"}, {"id": "bad", "type": "scripted", "fail": True, "error": "x"}],
            }],
        })

        result = await run(engine, wf)

        assert result.success is False
        assert sorted(scripted.calls) == ["bad", "ok"]
        assert result.error == "Parallel steps failed: bad: x"

    @pytest.mark.asyncio
    async def test_parallel_collects_failures_without_fail_fast(self, engine):
        wf = WorkflowDefinition.model_validate({
            "id": "wf",
            "steps": [{
                "id": "fan",
                "type": "parallel",
                "failFast": False,
                "steps": [{"id": "ok", "type": "scripted"}, {"id": "bad", "type": "scripted", "fail": True, "error": "x"}],
            }],
        })

        result = await run(engine, wf)

        assert result.success is True
        assert result.outputs["fan"] == {"ok": {"ok": True, "attempt": 1}, "bad": {"error": "x"}}

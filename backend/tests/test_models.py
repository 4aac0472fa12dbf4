"""Tests for workflow models and graph helpers."""

import pytest

from core.utils import parse_duration, safe_serialize
from workflow.graph import bfs_order, find_trigger_node, successors
from workflow.graph import migrate_steps_to_graph
from workflow.models import (
    Concurrency,
    ExtensionConfig,
    GraphLink,
    LoopConfig,
    ShellConfig,
    StepDefinition,
    SubworkflowConfig,
    WaitConfig,
    WorkflowDefinition,
)

from conftest import chain_graph


@pytest.mark.unit
class TestStepDefinition:
    """Property bags become typed configs at load time."""

    def test_shell_config(self):
        step = StepDefinition.model_validate(
            {"id": "build", "type": "shell", "command": "npm run build", "retry": 1, "retry_delay": "2s", "timeout": "5m"}
        )
        assert isinstance(step.config, ShellConfig)
        assert step.config.command == "npm run build"
        assert step.config.timeout == "5m"
        assert step.retry == 1
        assert step.retry_delay == "2s"

    def test_unknown_type_loads_as_extension(self):
        step = StepDefinition.model_validate({"id": "x", "type": "fivem.ensure", "resource": "core"})
        assert step.is_extension
        assert isinstance(step.config, ExtensionConfig)
        assert step.config.model_dump() == {"resource": "core"}

    def test_wait_timeout_belongs_to_config(self):
        step = StepDefinition.model_validate({"id": "gate", "type": "wait", "timeout": "1h"})
        assert isinstance(step.config, WaitConfig)
        assert step.config.timeout == "1h"
        assert step.timeout is None

    def test_loop_nested_steps_get_ids(self):
        step = StepDefinition.model_validate(
            {"id": "each", "type": "loop", "over": "$list.files", "steps": [{"type": "shell", "command": "echo $item"}]}
        )
        assert isinstance(step.config, LoopConfig)
        assert step.config.steps[0].id == "step_0"
        assert isinstance(step.config.steps[0].config, ShellConfig)

    def test_to_raw_round_trips_wrapper_fields(self):
        raw = {"id": "s", "type": "shell", "command": "ls", "retry": 2, "condition": "$x == 1"}
        step = StepDefinition.model_validate(raw)
        assert StepDefinition.model_validate(step.to_raw()).model_dump() == step.model_dump()


@pytest.mark.unit
class TestWorkflowDefinition:

    def test_defaults(self):
        wf = WorkflowDefinition.model_validate({"id": "wf_1"})
        assert wf.enabled is True
        assert wf.concurrency == Concurrency.SKIP
        assert wf.depends_on == []
        assert not wf.is_graph

    def test_depends_on_accepts_ids_and_aliases(self):
        wf = WorkflowDefinition.model_validate(
            {"id": "a", "dependsOn": ["b", {"workflow": "c", "maxAge": "5m"}], "concurrency": None}
        )
        assert [d.workflow for d in wf.depends_on] == ["b", "c"]
        assert wf.depends_on[1].max_age == "5m"
        assert wf.concurrency == Concurrency.SKIP

    def test_graph_node_types(self):
        wf = WorkflowDefinition.model_validate({
            "id": "g",
            "graph": {
                "nodes": [
                    {"id": 1, "type": "workflow/trigger"},
                    {"id": 2, "type": "workflow/claude", "properties": {"prompt": "hi"}},
                ],
                "links": [[1, 1, 0, 2, 0, -1]],
            },
        })
        node = wf.graph.node(2)
        assert wf.is_graph
        assert node.step_type == "agent"
        assert node.step_id == "node_2"
        assert node.to_step().config.prompt == "hi"

    def test_link_from_object(self):
        link = GraphLink.model_validate({"id": 5, "origin_id": 2, "origin_slot": 1, "target_id": 3})
        assert link.to_array() == [5, 2, 1, 3, 0, None]


@pytest.mark.unit
class TestGraphHelpers:

    def _graph(self):
        # 1 -> 2, 2 -(error)-> 4, 2 -> 3, 5 disconnected
        data = chain_graph(
            {"type": "shell", "command": "a"},
            {"type": "notify", "message": "b"},
            {"type": "shell", "command": "c"},
            {"type": "shell", "command": "d"},
            links=[[1, 1, 0, 2, 0, -1], [2, 2, 0, 3, 0, -1], [3, 2, 1, 4, 0, -1]],
        )
        return WorkflowDefinition.model_validate({"id": "g", "graph": data}).graph

    def test_successors_by_slot(self):
        graph = self._graph()
        assert successors(graph, 2, 0) == [3]
        assert successors(graph, 2, 1) == [4]
        assert successors(graph, 3, 0) == []

    def test_find_trigger_node(self):
        assert find_trigger_node(self._graph()).id == 1

    def test_bfs_order_appends_disconnected(self):
        assert [n.id for n in bfs_order(self._graph())] == [2, 3, 4, 5]

    def test_migrate_steps_to_graph(self):
        wf = WorkflowDefinition.model_validate({
            "id": "legacy",
            "trigger": {"type": "cron", "value": "0 8 * * 1"},
            "steps": [
                {"id": "a", "type": "shell", "command": "make", "retry": 1},
                {"id": "b", "type": "agent", "prompt": "review"},
            ],
        })

        migrated = migrate_steps_to_graph(wf)

        assert migrated.steps == []
        assert [n.type for n in migrated.graph.nodes] == ["workflow/trigger", "workflow/shell", "workflow/claude"]
        assert migrated.graph.nodes[0].properties["triggerValue"] == "0 8 * * 1"
        assert migrated.graph.nodes[1].properties["retry"] == 1
        assert [(l.origin_id, l.target_id) for l in migrated.graph.links] == [(1, 2), (2, 3)]

    def test_migrated_switch_falls_through_every_case(self):
        wf = WorkflowDefinition.model_validate({
            "id": "legacy",
            "steps": [
                {"id": "pick", "type": "switch", "variable": "$ctx.branch", "cases": "main,dev"},
                {"id": "after", "type": "shell", "command": "make"},
            ],
        })

        migrated = migrate_steps_to_graph(wf)

        assert [(l.origin_id, l.origin_slot, l.target_id) for l in migrated.graph.links] == [
            (1, 0, 2), (2, 0, 3), (2, 1, 3), (2, 2, 3),
        ]

    def test_flow_node_configs(self):
        switch = StepDefinition.model_validate({"id": "s", "type": "switch", "cases": " a, ,b "})
        sub = StepDefinition.model_validate(
            {"id": "c", "type": "subworkflow", "workflow": "Build", "waitForCompletion": False, "timeout": "30s"}
        )
        transform = StepDefinition.model_validate({"id": "t", "type": "transform", "outputVar": "rows"})

        assert switch.config.case_list() == ["a", "b"]
        assert isinstance(sub.config, SubworkflowConfig)
        assert sub.config.wait_for_completion is False
        assert sub.config.timeout == "30s"
        assert transform.config.output_var == "rows"


@pytest.mark.unit
class TestUtils:

    @pytest.mark.parametrize(
        "value, expected",
        [
            (500, 0.5),
            ("500", 0.5),
            ("500ms", 0.5),
            ("5s", 5.0),
            ("2m", 120.0),
            ("1h", 3600.0),
            ("1.5s", 1.5),
        ],
    )
    def test_parse_duration(self, value, expected):
        assert parse_duration(value) == expected

    def test_parse_duration_default(self):
        assert parse_duration(None, 5.0) == 5.0
        assert parse_duration("soon", 5.0) == 5.0

    def test_safe_serialize(self):
        class Opaque:
            def __str__(self):
                return "opaque"

        assert safe_serialize({"a": (1, 2), "b": {3}, "c": Opaque()}) == {
            "a": [1, 2],
            "b": [3],
            "c": {"_raw": "opaque"},
        }

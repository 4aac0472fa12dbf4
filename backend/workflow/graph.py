"""Graph helpers: successor lookup, execution ordering and legacy migration."""

from typing import Any, Optional, Union

from workflow.models import (
    GRAPH_TYPE_PREFIX,
    SLOT_SUCCESS,
    StepType,
    GraphNode,
    WorkflowDefinition,
    WorkflowGraph,
)

NodeId = Union[int, str]

# Built-in step type -> registered node type, the reverse of NODE_TYPE_ALIASES
_NODE_TYPE_NAMES = {StepType.AGENT.value: "claude"}


def find_trigger_node(graph: WorkflowGraph) -> Optional[GraphNode]:
    for node in graph.nodes:
        if node.is_trigger:
            return node
    return None


def successors(graph: WorkflowGraph, node_id: NodeId, slot: int) -> list[NodeId]:
    """Target node ids linked from ``node_id``'s output ``slot``, in link order."""
    targets: list[NodeId] = []
    for link in graph.links:
        if link.origin_id == node_id and link.origin_slot == slot and link.target_id not in targets:
            targets.append(link.target_id)
    return targets


def has_edge_from(graph: WorkflowGraph, node_id: NodeId, slot: int) -> bool:
    return any(link.origin_id == node_id and link.origin_slot == slot for link in graph.links)


def bfs_order(graph: WorkflowGraph) -> list[GraphNode]:
    """Non-trigger nodes in breadth-first discovery order from the trigger.

    Follows every outgoing edge regardless of slot. Nodes unreachable from the
    trigger are appended at the end so they still get a step snapshot.
    """
    trigger = find_trigger_node(graph)
    if trigger is None:
        return [node for node in graph.nodes if not node.is_trigger]

    ordered: list[GraphNode] = []
    visited = {trigger.id}
    queue = [trigger.id]
    while queue:
        current = queue.pop(0)
        node = graph.node(current)
        if node is not None and not node.is_trigger:
            ordered.append(node)
        for link in graph.links:
            if link.origin_id == current and link.target_id not in visited:
                visited.add(link.target_id)
                queue.append(link.target_id)

    ordered.extend(node for node in graph.nodes if node.id not in visited and not node.is_trigger)
    return ordered


def migrate_steps_to_graph(workflow: WorkflowDefinition) -> WorkflowDefinition:
    """Convert a legacy step list into a trigger-rooted chain graph.

    Every step is linked from the previous node's slot 0 (Done / True), or
    from every case slot of a switch. Step conditions have no graph
    equivalent and are dropped.
    """
    nodes: list[dict[str, Any]] = [
        {
            "id": 1,
            "type": f"{GRAPH_TYPE_PREFIX}trigger",
            "properties": {
                "triggerType": workflow.trigger.type.value,
                "triggerValue": workflow.trigger.value or "",
                "hookType": workflow.trigger.hook_type or "",
            },
        }
    ]
    links: list[list[Any]] = []

    previous = 1
    previous_slots = [SLOT_SUCCESS]
    for index, step in enumerate(workflow.steps):
        node_id = index + 2
        node_name = _NODE_TYPE_NAMES.get(step.type, step.type)
        properties = step.properties()
        if step.retry:
            properties["retry"] = step.retry
        for key in ("retry_delay", "timeout"):
            value = getattr(step, key)
            if value is not None:
                properties[key] = value
        nodes.append({"id": node_id, "type": f"{GRAPH_TYPE_PREFIX}{node_name}", "properties": properties})
        for slot in previous_slots:
            links.append([len(links) + 1, previous, slot, node_id, 0, -1])
        previous = node_id
        # A legacy switch falls through to the next step whichever case matched
        if step.type == StepType.SWITCH.value:
            previous_slots = list(range(len(step.config.case_list()) + 1))
        else:
            previous_slots = [SLOT_SUCCESS]

    graph = WorkflowGraph.model_validate({"nodes": nodes, "links": links})
    return workflow.model_copy(update={"graph": graph, "steps": []})

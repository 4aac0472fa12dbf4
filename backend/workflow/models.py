"""Workflow, step, graph and run models.

Definitions arrive as loose JSON (either a legacy ``steps`` list or a
node/link ``graph``). They are validated once at load time into typed models:
every step's free-form property bag becomes the config class registered for
its ``type`` in ``STEP_CONFIG_TYPES``. Executors only ever see typed configs.

Legacy step::

    {"id": "build", "type": "shell", "command": "npm run build",
     "retry": 1, "retry_delay": "2s", "timeout": "5m"}

Graph node (links are ``[id, origin, origin_slot, target, target_slot, type]``)::

    {"id": 3, "type": "workflow/shell", "properties": {"command": "make"}}
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from app.config import get_settings
from triggers.base import TriggerTypeEnum

Duration = Optional[Union[float, str]]


# ─── Enums ────────────────────────────────────────────────────

class Concurrency(str, Enum):
    """How a trigger behaves while a run of the same workflow is active."""
    SKIP = "skip"
    QUEUE = "queue"
    PARALLEL = "parallel"


class RunStatus(str, Enum):
    PENDING = "pending"
    QUEUED = "queued"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    RETRYING = "retrying"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class StepType(str, Enum):
    """Built-in step kinds. Dotted types (``vendor.action``) are extensions."""
    AGENT = "agent"
    SHELL = "shell"
    GIT = "git"
    HTTP = "http"
    FILE = "file"
    DB = "db"
    CONDITION = "condition"
    NOTIFY = "notify"
    WAIT = "wait"
    LOOP = "loop"
    PARALLEL = "parallel"
    SWITCH = "switch"
    SUBWORKFLOW = "subworkflow"
    VARIABLE = "variable"
    GET_VARIABLE = "get_variable"
    TRANSFORM = "transform"
    LOG = "log"


# ─── Step configs ─────────────────────────────────────────────

class _StepConfig(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class ShellConfig(_StepConfig):
    command: str = ""
    cwd: Optional[str] = None
    timeout: Duration = None


class HttpConfig(_StepConfig):
    method: str = "GET"
    url: str = ""
    headers: dict[str, Any] = Field(default_factory=dict)
    body: Any = None
    timeout: Duration = None


class GitAction(_StepConfig):
    pull: Any = None
    push: Any = None
    commit: Optional[str] = None
    files: Optional[list[str]] = None
    checkout: Optional[str] = None
    branch: Optional[str] = None
    command: Optional[str] = None


class GitConfig(_StepConfig):
    cwd: Optional[str] = None
    actions: list[GitAction] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _single_action(cls, data: Any) -> Any:
        # A git step without an actions list is itself the single action
        if isinstance(data, dict) and not isinstance(data.get("actions"), list):
            return {"cwd": data.get("cwd"), "actions": [data]}
        return data


class FileConfig(_StepConfig):
    action: str = "read"
    path: str = ""
    destination: str = Field(default="", validation_alias=AliasChoices("destination", "dest"))
    content: Any = ""
    pattern: str = "*"
    type: str = "files"
    recursive: bool = False


class DbConfig(_StepConfig):
    connection: str = ""
    action: str = "query"
    query: str = ""
    limit: Optional[int] = None


class AgentConfig(_StepConfig):
    prompt: str = ""
    cwd: Optional[str] = None
    model: Optional[str] = None
    effort: Optional[str] = None
    max_turns: Optional[int] = Field(default=None, validation_alias=AliasChoices("max_turns", "maxTurns"))
    output_schema: Optional[dict[str, Any]] = Field(
        default=None, validation_alias=AliasChoices("output_schema", "outputSchema")
    )


class NotifyConfig(_StepConfig):
    title: str = "Workflow"
    message: str = ""
    channels: list[Union[str, dict[str, str]]] = Field(default_factory=lambda: ["desktop"])


class WaitConfig(_StepConfig):
    mode: Optional[str] = None
    duration: Duration = None
    timeout: Duration = None
    message: str = ""


class ConditionConfig(_StepConfig):
    expression: str = ""
    variable: Optional[str] = None
    operator: str = "=="
    value: Any = None


class LoopConfig(_StepConfig):
    over: str = Field(default="", validation_alias=AliasChoices("over", "items"))
    steps: list["StepDefinition"] = Field(default_factory=list)
    mode: str = "sequential"
    max_iterations: Optional[int] = Field(
        default=None, validation_alias=AliasChoices("max_iterations", "maxIterations")
    )

    @field_validator("steps", mode="before")
    @classmethod
    def _default_ids(cls, value: Any) -> Any:
        return _assign_missing_ids(value, "step_")

    @field_validator("max_iterations", mode="before")
    @classmethod
    def _blank_is_none(cls, value: Any) -> Any:
        return None if value == "" else value


class ParallelConfig(_StepConfig):
    steps: list["StepDefinition"] = Field(default_factory=list)
    fail_fast: bool = Field(default=True, validation_alias=AliasChoices("fail_fast", "failFast"))

    @field_validator("steps", mode="before")
    @classmethod
    def _default_ids(cls, value: Any) -> Any:
        return _assign_missing_ids(value, "p")


class SwitchConfig(_StepConfig):
    variable: str = ""
    cases: Union[str, list[Any]] = ""

    def case_list(self) -> list[str]:
        """Non-empty case labels; comma-separated strings are split."""
        raw = self.cases.split(",") if isinstance(self.cases, str) else self.cases
        return [str(case).strip() for case in raw if str(case).strip()]


class SubworkflowConfig(_StepConfig):
    workflow: str = ""
    input_vars: Any = Field(default=None, validation_alias=AliasChoices("input_vars", "inputVars"))
    wait_for_completion: bool = Field(
        default=True, validation_alias=AliasChoices("wait_for_completion", "waitForCompletion")
    )
    timeout: Duration = "10m"


class VariableConfig(_StepConfig):
    action: str = "set"
    name: str = ""
    value: Any = None


class GetVariableConfig(_StepConfig):
    name: str = ""


class TransformConfig(_StepConfig):
    operation: str = ""
    input: Any = None
    expression: str = ""
    output_var: Optional[str] = Field(default=None, validation_alias=AliasChoices("output_var", "outputVar"))


class LogConfig(_StepConfig):
    level: str = "info"
    message: str = ""


class ExtensionConfig(_StepConfig):
    """Vendor step properties. Passed through untouched."""
    model_config = ConfigDict(extra="allow")


STEP_CONFIG_TYPES: dict[str, type[_StepConfig]] = {
    StepType.SHELL.value: ShellConfig,
    StepType.HTTP.value: HttpConfig,
    StepType.GIT.value: GitConfig,
    StepType.FILE.value: FileConfig,
    StepType.DB.value: DbConfig,
    StepType.AGENT.value: AgentConfig,
    StepType.NOTIFY.value: NotifyConfig,
    StepType.WAIT.value: WaitConfig,
    StepType.CONDITION.value: ConditionConfig,
    StepType.LOOP.value: LoopConfig,
    StepType.PARALLEL.value: ParallelConfig,
    StepType.SWITCH.value: SwitchConfig,
    StepType.SUBWORKFLOW.value: SubworkflowConfig,
    StepType.VARIABLE.value: VariableConfig,
    StepType.GET_VARIABLE.value: GetVariableConfig,
    StepType.TRANSFORM.value: TransformConfig,
    StepType.LOG.value: LogConfig,
}

# Keys that belong to the step wrapper, not to the type-specific config
STEP_WRAPPER_FIELDS = ("id", "type", "retry", "retry_delay", "timeout", "condition")


def _assign_missing_ids(value: Any, prefix: str) -> Any:
    if not isinstance(value, list):
        return value
    out = []
    for index, item in enumerate(value):
        if isinstance(item, dict) and not item.get("id"):
            item = {**item, "id": f"{prefix}{index}"}
        out.append(item)
    return out


# ─── Steps ────────────────────────────────────────────────────

class StepDefinition(BaseModel):
    """One unit of work: wrapper policy plus a typed config."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = ""
    type: str
    retry: int = 0
    retry_delay: Duration = None
    timeout: Duration = None
    condition: Optional[str] = None
    # One of the STEP_CONFIG_TYPES classes, or ExtensionConfig
    config: Any = None

    @model_validator(mode="before")
    @classmethod
    def _split_properties(cls, data: Any) -> Any:
        if not isinstance(data, dict) or isinstance(data.get("config"), BaseModel):
            return data

        raw = dict(data)
        props = dict(raw.pop("config", None) or {})
        step = {key: raw.pop(key) for key in STEP_WRAPPER_FIELDS if key in raw}
        props.update(raw)

        step_type = str(step.get("type") or "")
        step["type"] = step_type
        if step.get("retry") in (None, ""):
            step.pop("retry", None)

        config_cls = STEP_CONFIG_TYPES.get(step_type, ExtensionConfig)
        timeout = step.get("timeout")
        if step_type == StepType.WAIT.value:
            # The approval timeout resolves the step, it must not fail it
            if timeout is not None:
                props.setdefault("timeout", timeout)
            step["timeout"] = None
        elif timeout is not None and "timeout" in config_cls.model_fields:
            props.setdefault("timeout", timeout)

        step["config"] = config_cls.model_validate(props)
        return step

    @property
    def is_extension(self) -> bool:
        return "." in self.type

    def properties(self) -> dict[str, Any]:
        """Flat property bag, as stored in a graph node or legacy step."""
        if self.config is None:
            return {}
        return self.config.model_dump(exclude_none=True)

    def to_raw(self) -> dict[str, Any]:
        raw = {"id": self.id, "type": self.type, **self.properties()}
        if self.retry:
            raw["retry"] = self.retry
        for key in ("retry_delay", "timeout", "condition"):
            value = getattr(self, key)
            if value is not None:
                raw[key] = value
        return raw


# ─── Graph ────────────────────────────────────────────────────

GRAPH_TYPE_PREFIX = "workflow/"
TRIGGER_NODE_TYPE = "trigger"
# Legacy node type names that map onto a built-in step type
NODE_TYPE_ALIASES = {"claude": StepType.AGENT.value}

SLOT_SUCCESS = 0
SLOT_ERROR = 1
SLOT_TRUE = 0
SLOT_FALSE = 1


class GraphLink(BaseModel):
    """Edge from ``origin_id``/``origin_slot`` to ``target_id``/``target_slot``."""

    model_config = ConfigDict(populate_by_name=True)

    id: Any = None
    origin_id: Union[int, str] = Field(validation_alias=AliasChoices("origin_id", "originId", "origin"))
    origin_slot: int = Field(default=0, validation_alias=AliasChoices("origin_slot", "originSlot"))
    target_id: Union[int, str] = Field(validation_alias=AliasChoices("target_id", "targetId", "target"))
    target_slot: int = Field(default=0, validation_alias=AliasChoices("target_slot", "targetSlot"))
    type: Any = None

    @model_validator(mode="before")
    @classmethod
    def _from_array(cls, data: Any) -> Any:
        if isinstance(data, (list, tuple)):
            padded = list(data) + [None] * (6 - len(data))
            link_id, origin, origin_slot, target, target_slot, link_type = padded[:6]
            return {
                "id": link_id,
                "origin_id": origin,
                "origin_slot": origin_slot or 0,
                "target_id": target,
                "target_slot": target_slot or 0,
                "type": link_type,
            }
        return data

    def to_array(self) -> list[Any]:
        return [self.id, self.origin_id, self.origin_slot, self.target_id, self.target_slot, self.type]


class GraphNode(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Union[int, str]
    type: str
    properties: dict[str, Any] = Field(default_factory=dict)

    @property
    def step_type(self) -> str:
        name = self.type[len(GRAPH_TYPE_PREFIX):] if self.type.startswith(GRAPH_TYPE_PREFIX) else self.type
        return NODE_TYPE_ALIASES.get(name, name)

    @property
    def step_id(self) -> str:
        return f"node_{self.id}"

    @property
    def is_trigger(self) -> bool:
        return self.step_type == TRIGGER_NODE_TYPE

    def to_step(self) -> StepDefinition:
        props = {k: v for k, v in self.properties.items() if not k.startswith("_")}
        return StepDefinition.model_validate({**props, "id": self.step_id, "type": self.step_type})


class WorkflowGraph(BaseModel):
    model_config = ConfigDict(extra="ignore")

    nodes: list[GraphNode] = Field(default_factory=list)
    links: list[GraphLink] = Field(default_factory=list)

    def node(self, node_id: Union[int, str]) -> Optional[GraphNode]:
        for candidate in self.nodes:
            if candidate.id == node_id:
                return candidate
        return None


# ─── Workflow definition ──────────────────────────────────────

class TriggerConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: TriggerTypeEnum = TriggerTypeEnum.MANUAL
    value: Optional[str] = None
    hook_type: Optional[str] = Field(default=None, alias="hookType")
    condition: Optional[str] = None


class DependencySpec(BaseModel):
    workflow: str
    max_age: Duration = Field(default=None, validation_alias=AliasChoices("max_age", "maxAge"))

    @model_validator(mode="before")
    @classmethod
    def _from_id(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"workflow": data}
        return data


class WorkflowDefinition(BaseModel):
    """A stored workflow. Read-only to the engine."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str = ""
    enabled: bool = True
    trigger: TriggerConfig = Field(default_factory=TriggerConfig)
    scope: dict[str, Any] = Field(default_factory=dict)
    concurrency: Concurrency = Field(default_factory=lambda: Concurrency(get_settings().DEFAULT_CONCURRENCY))
    depends_on: list[DependencySpec] = Field(default_factory=list, alias="dependsOn")
    timeout: Duration = None
    steps: list[StepDefinition] = Field(default_factory=list)
    graph: Optional[WorkflowGraph] = None

    @field_validator("concurrency", mode="before")
    @classmethod
    def _default_concurrency(cls, value: Any) -> Any:
        return value or get_settings().DEFAULT_CONCURRENCY

    @field_validator("depends_on", mode="before")
    @classmethod
    def _none_is_empty(cls, value: Any) -> Any:
        return value or []

    @property
    def is_graph(self) -> bool:
        return self.graph is not None and bool(self.graph.nodes)

    @property
    def project_path(self) -> Optional[str]:
        return self.scope.get("projectPath") or self.scope.get("project_path") or None

    def to_dict(self) -> dict[str, Any]:
        data = self.model_dump(mode="json", by_alias=True, exclude={"steps", "graph"})
        data["steps"] = [step.to_raw() for step in self.steps]
        if self.graph is not None:
            data["graph"] = {
                "nodes": [node.model_dump(mode="json") for node in self.graph.nodes],
                "links": [link.to_array() for link in self.graph.links],
            }
        return data


# ─── Runs ─────────────────────────────────────────────────────

class StepSnapshot(BaseModel):
    id: str
    type: str
    status: StepStatus = StepStatus.PENDING
    output: Any = None
    duration: Optional[float] = None
    attempt: Optional[int] = None


class Run(BaseModel):
    """One execution of a workflow. Finalized exactly once."""

    id: str
    workflow_id: str
    workflow_name: str = ""
    status: RunStatus = RunStatus.PENDING
    trigger: str = "manual"
    trigger_data: dict[str, Any] = Field(default_factory=dict)
    started_at: str
    finished_at: Optional[str] = None
    duration: Optional[float] = None
    steps: list[StepSnapshot] = Field(default_factory=list)
    project_path: str = ""
    context_branch: str = ""
    context_commit: str = ""
    error: Optional[str] = None


class TriggerOptions(BaseModel):
    source: str = "manual"
    trigger_data: dict[str, Any] = Field(default_factory=dict)
    project_path: Optional[str] = None


class TriggerOutcome(BaseModel):
    """What ``trigger`` returns. ``skipped`` is the soft concurrency=skip result."""

    success: bool
    run_id: Optional[str] = None
    skipped: bool = False
    queued: bool = False
    error: Optional[str] = None


@dataclass
class ExecutionResult:
    """Result of a graph/linear execution, before the orchestrator finalizes the run."""
    success: bool
    outputs: dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    cancelled: bool = False
    step_statuses: dict[str, StepSnapshot] = field(default_factory=dict)


LoopConfig.model_rebuild()
ParallelConfig.model_rebuild()

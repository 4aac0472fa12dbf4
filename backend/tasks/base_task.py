"""
Base task interface for all step executors.

Every step type (shell, http, git, wait, loop, ...) inherits from BaseTask
and implements execute(). execute() returns the step output and raises on
failure; run() is the entry point used by the engine and adds timing logs.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

import structlog

from core.cancellation import CancelScope
from core.exceptions import ExecutionCancelledError
from workflow.expressions import ExpressionEvaluator, VariableScope

logger = structlog.get_logger(__name__)


class TaskResult:
    """Standardized result from task execution."""

    def __init__(
        self,
        success: bool,
        output: Any = None,
        error: Optional[str] = None,
        exception: Optional[BaseException] = None,
        duration_ms: float = 0,
    ):
        self.success = success
        self.output = output
        self.error = error
        self.exception = exception
        self.duration_ms = duration_ms


@dataclass
class StepServices:
    """Collaborators injected into step executors.

    Any of them may be None; the step types that need a missing collaborator
    fail with a clear error instead.
    """

    agent_provider: Any = None
    db_provider: Any = None
    git_helper: Any = None
    notifications: Any = None
    wait_registry: Any = None
    http_transport: Any = None
    # WorkflowOrchestrator, for steps that start other workflows
    workflows: Any = None


@dataclass
class StepContext:
    """Everything a step executor may touch while running one step."""

    run_id: str
    step_id: str
    step_type: str
    scope: VariableScope
    cancel: CancelScope
    services: StepServices = field(default_factory=StepServices)
    emit: Callable[[str, Dict[str, Any]], None] = lambda event, payload: None
    # StepExecutor running this step; flow steps use it for nested steps
    executor: Any = None

    @property
    def project_dir(self) -> Optional[str]:
        ctx = self.scope.get("ctx") or {}
        return ctx.get("project") or None

    def resolve(self, value: Any) -> Any:
        return ExpressionEvaluator.resolve(value, self.scope)

    def resolve_deep(self, value: Any) -> Any:
        return ExpressionEvaluator.resolve_deep(value, self.scope)


class BaseTask(ABC):
    """
    Abstract base class for all step executors.

    Subclasses must implement:
    - execute(config, ctx) -> output
    - step_type (class property)
    - display_name (class property)
    """

    step_type: str = "base"
    display_name: str = "Base Step"
    description: str = "Abstract base step"

    @abstractmethod
    async def execute(self, config: Any, ctx: StepContext) -> Any:
        """
        Execute the step.

        Args:
            config: Typed step configuration (unresolved; resolve against ctx.scope)
            ctx: Run-scoped context: variables, cancellation, collaborators

        Returns:
            Step output, stored in the variable scope under the step id

        Raises:
            Any exception on failure. ExecutionCancelledError on cancellation.
        """

    async def run(self, config: Any, ctx: StepContext) -> TaskResult:
        """
        Run the step with timing and error handling.

        Cancellation propagates; every other exception is captured on the result.
        """
        start = time.monotonic()
        try:
            logger.debug(
                "Step starting",
                step_type=self.step_type,
                step_id=ctx.step_id,
                run_id=ctx.run_id,
            )
            output = await self.execute(config, ctx)
            duration_ms = (time.monotonic() - start) * 1000
            logger.debug(
                "Step completed",
                step_type=self.step_type,
                step_id=ctx.step_id,
                duration_ms=round(duration_ms, 2),
            )
            return TaskResult(success=True, output=output, duration_ms=duration_ms)

        except ExecutionCancelledError:
            raise

        except Exception as e:
            duration_ms = (time.monotonic() - start) * 1000
            logger.info(
                "Step failed",
                step_type=self.step_type,
                step_id=ctx.step_id,
                error=str(e),
                duration_ms=round(duration_ms, 2),
            )
            return TaskResult(success=False, error=str(e), exception=e, duration_ms=duration_ms)

    @classmethod
    def get_config_schema(cls) -> Dict[str, Any]:
        """
        Return JSON schema for the step configuration.

        Derived from the typed config model when the subclass declares one.
        """
        config_model = getattr(cls, "config_model", None)
        if config_model is not None:
            return config_model.model_json_schema()
        return {"type": "object", "properties": {}}

"""Custom exceptions for the workflow engine."""

from typing import Optional


class WorkflowEngineError(Exception):
    """Base exception for the workflow engine."""

    def __init__(self, message: str, status_code: int = 500):
        """Initialize exception with message and status code.

        Args:
            message: Exception message
            status_code: HTTP status code
        """
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class WorkflowNotFoundError(WorkflowEngineError):
    """Workflow id is not known to storage."""

    def __init__(self, message: str = "Workflow not found"):
        super().__init__(message, 404)


class WorkflowDisabledError(WorkflowEngineError):
    """Workflow exists but is disabled."""

    def __init__(self, message: str = "Workflow is disabled"):
        super().__init__(message, 409)


class RunNotFoundError(WorkflowEngineError):
    """Run (or pending wait step) is not active."""

    def __init__(self, message: str = "Run not found or already finished"):
        super().__init__(message, 404)


class ValidationError(WorkflowEngineError):
    """Validation error exception."""

    def __init__(self, message: str = "Validation failed"):
        super().__init__(message, 422)


class UnknownStepTypeError(WorkflowEngineError):
    """No executor is registered for a step type."""

    def __init__(self, step_type: str):
        self.step_type = step_type
        super().__init__(f"Unknown step type: {step_type}", 422)


class StepFailedError(WorkflowEngineError):
    """A step exhausted its attempts.

    The underlying exception is kept on ``cause`` and chained via ``__cause__``.
    """

    def __init__(self, step_id: str, cause: Optional[BaseException] = None, message: str = ""):
        self.step_id = step_id
        self.cause = cause
        super().__init__(message or (str(cause) if cause else f"Step {step_id} failed"), 500)


class StepTimeoutError(WorkflowEngineError):
    """A per-step timeout elapsed. Retryable like any other step failure."""

    def __init__(self, message: str = "Step timed out"):
        super().__init__(message, 504)


class ExecutionCancelledError(WorkflowEngineError):
    """The run was cancelled. Never reported as a step failure."""

    def __init__(self, message: str = "Cancelled"):
        super().__init__(message, 499)


class CycleDetectedError(WorkflowEngineError):
    """Saving a workflow would create a dependsOn cycle."""

    def __init__(self, cycle: list[str]):
        self.cycle = list(cycle)
        super().__init__(f"Circular dependency: {' -> '.join(self.cycle)}", 422)


class DependencyUnresolvedError(WorkflowEngineError):
    """A dependsOn target does not exist."""

    def __init__(self, dependency_id: str):
        self.dependency_id = dependency_id
        super().__init__(f"depends_on workflow not found: {dependency_id}", 404)


class PathTraversalError(WorkflowEngineError):
    """A file step tried to leave the project directory."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f'Path "{path}" is outside the project directory', 403)

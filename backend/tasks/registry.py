"""
Step Type Registry: central registry for all available step types.

Maintains a mapping of step type strings to their implementations, plus an
open extension point for dotted vendor types (``fivem.ensure``,
``api.request``): the part before the first dot selects a registered
extension handler, the rest is passed to it as the sub-type.
"""

from typing import Any, Dict, Optional, Type

from core.exceptions import UnknownStepTypeError
from tasks.base_task import BaseTask
from tasks.implementations.agent_task import AGENT_TASK_TYPES
from tasks.implementations.db_task import DB_TASK_TYPES
from tasks.implementations.extension_task import ExtensionTask
from tasks.implementations.file_task import FILE_TASK_TYPES
from tasks.implementations.flow_tasks import FLOW_TASK_TYPES
from tasks.implementations.git_task import GIT_TASK_TYPES
from tasks.implementations.http_task import HTTP_TASK_TYPES
from tasks.implementations.log_task import LOG_TASK_TYPES
from tasks.implementations.notify_task import NOTIFY_TASK_TYPES
from tasks.implementations.shell_task import SHELL_TASK_TYPES
from tasks.implementations.subworkflow_task import SUBWORKFLOW_TASK_TYPES
from tasks.implementations.transform_task import TRANSFORM_TASK_TYPES
from tasks.implementations.variable_task import VARIABLE_TASK_TYPES
from tasks.implementations.wait_task import WAIT_TASK_TYPES


class TaskRegistry:
    """Central registry for all step type implementations."""

    def __init__(self):
        self._tasks: Dict[str, Type[BaseTask]] = {}
        self._extensions: Dict[str, Any] = {}
        self._register_builtin_tasks()

    def _register_builtin_tasks(self):
        """Register all built-in step types."""
        for task_types in (
            AGENT_TASK_TYPES,
            SHELL_TASK_TYPES,
            GIT_TASK_TYPES,
            HTTP_TASK_TYPES,
            FILE_TASK_TYPES,
            DB_TASK_TYPES,
            NOTIFY_TASK_TYPES,
            WAIT_TASK_TYPES,
            FLOW_TASK_TYPES,
            VARIABLE_TASK_TYPES,
            TRANSFORM_TASK_TYPES,
            LOG_TASK_TYPES,
            SUBWORKFLOW_TASK_TYPES,
        ):
            for task_type, task_class in task_types.items():
                self.register(task_type, task_class)

    def register(self, task_type: str, task_class: Type[BaseTask]):
        """Register a new step type."""
        self._tasks[task_type] = task_class

    def register_extension(self, prefix: str, handler: Any):
        """Register a handler for ``<prefix>.<sub_type>`` steps.

        The handler must provide ``async execute_step(sub_type, config, ctx)``.
        """
        if not prefix or "." in prefix:
            raise ValueError(f"Invalid extension prefix: {prefix!r}")
        self._extensions[prefix] = handler

    def get(self, task_type: str) -> Type[BaseTask]:
        """Get a step class by type string."""
        task_class = self._tasks.get(task_type)
        if task_class is None:
            raise UnknownStepTypeError(task_type)
        return task_class

    def create_instance(self, task_type: str) -> BaseTask:
        """Create a new instance of a step by type.

        Dotted types resolve through the extension handlers.
        """
        if "." in task_type:
            extension = self.get_extension(task_type)
            if extension is None:
                raise UnknownStepTypeError(task_type)
            handler, sub_type = extension
            return ExtensionTask(handler, sub_type)
        return self.get(task_type)()

    def get_extension(self, task_type: str) -> Optional[tuple[Any, str]]:
        """``(handler, sub_type)`` for a dotted type, or None."""
        prefix, dot, sub_type = task_type.partition(".")
        if not dot or not prefix:
            return None
        handler = self._extensions.get(prefix)
        if handler is None or not hasattr(handler, "execute_step"):
            return None
        return handler, sub_type

    def list_all(self) -> list:
        """List all registered step types with metadata."""
        return [
            {
                "step_type": task_type,
                "display_name": cls.display_name,
                "description": cls.description,
                "config_schema": cls.get_config_schema(),
            }
            for task_type, cls in self._tasks.items()
        ]

"""
Collaborator interfaces consumed by step executors.

The engine does not own an LLM-agent runtime, database drivers or a git
implementation. Hosts inject objects satisfying these protocols through
``StepServices``.
"""

from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional, Protocol, runtime_checkable


@dataclass
class GitResult:
    """Outcome of one git command."""
    success: bool
    output: str = ""
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {"success": self.success, "output": self.output, "error": self.error}


@runtime_checkable
class GitHelper(Protocol):
    async def current_branch(self, cwd: str) -> str: ...

    async def recent_commits(self, cwd: str, limit: int = 1) -> list[dict[str, str]]: ...

    async def pull(self, cwd: str) -> GitResult: ...

    async def push(self, cwd: str) -> GitResult: ...

    async def stage(self, cwd: str, files: list[str]) -> GitResult: ...

    async def commit(self, cwd: str, message: str) -> GitResult: ...

    async def checkout(self, cwd: str, branch: str) -> GitResult: ...

    async def create_branch(self, cwd: str, branch: str) -> GitResult: ...

    async def run(self, cwd: str, args: list[str]) -> GitResult: ...


class AgentSession(Protocol):
    """A running LLM-agent session.

    ``messages()`` yields raw message dicts until the session finishes.
    Messages of ``type == "assistant"`` carry ``message.content`` blocks; a
    ``type == "result"`` message may carry ``structured_output``; a
    ``type == "error"`` message fails the step.
    """

    id: str

    def messages(self) -> AsyncIterator[dict[str, Any]]: ...

    async def interrupt(self) -> None: ...

    async def close(self) -> None: ...


@runtime_checkable
class AgentProvider(Protocol):
    async def start_session(
        self,
        *,
        prompt: str,
        cwd: Optional[str],
        model: Optional[str] = None,
        effort: Optional[str] = None,
        max_turns: int = 30,
        output_schema: Optional[dict[str, Any]] = None,
    ) -> AgentSession: ...


@runtime_checkable
class DatabaseProvider(Protocol):
    async def get_connection_config(self, connection_id: str) -> Optional[dict[str, Any]]: ...

    async def is_connected(self, connection_id: str) -> bool: ...

    async def connect(self, connection_id: str, config: dict[str, Any]) -> None: ...

    async def get_schema(self, connection_id: str) -> list[Any]: ...

    async def query(self, connection_id: str, sql: str, limit: int) -> dict[str, Any]: ...


@runtime_checkable
class StepExtension(Protocol):
    """Handler for dotted vendor step types (``prefix.sub_type``)."""

    async def execute_step(self, sub_type: str, config: dict[str, Any], ctx: Any) -> Any: ...

"""
Agent step: runs an LLM-agent session through the injected AgentProvider.

Every message the session produces is forwarded as an ``agent-message``
event. Assistant text blocks are concatenated into ``output``; a structured
result (when an output schema was requested) is merged into the step output.
"""

import json
from typing import Any, Dict, Optional

import structlog

from app.config import get_settings
from core.exceptions import ExecutionCancelledError, StepTimeoutError
from tasks.base_task import BaseTask, StepContext
from workflow.events import AGENT_MESSAGE
from workflow.models import AgentConfig

logger = structlog.get_logger(__name__)


def _assistant_text(message: Dict[str, Any]) -> str:
    content = (message.get("message") or {}).get("content")
    if isinstance(content, str):
        return content
    if not isinstance(content, list):
        return ""
    return "".join(block.get("text", "") for block in content if isinstance(block, dict) and block.get("type") == "text")


def _structured(message: Dict[str, Any]) -> Optional[Any]:
    value = message.get("structured_output", message.get("structured"))
    if isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError:
            return None
    return value


class AgentTask(BaseTask):
    """Run an agent session to completion.

    Config:
        prompt: Prompt text (variables resolved)
        cwd: Working directory (default: project directory)
        model / effort: Passed through to the provider
        max_turns: Turn budget (default: AGENT_MAX_TURNS)
        output_schema: JSON schema for a structured result
    """

    step_type = "agent"
    display_name = "Agent"
    description = "Delegate a prompt to an LLM agent session"
    config_model = AgentConfig

    async def execute(self, config: AgentConfig, ctx: StepContext) -> Dict[str, Any]:
        provider = ctx.services.agent_provider
        if provider is None:
            raise RuntimeError("Agent provider not available")

        ctx.cancel.raise_if_cancelled()
        prompt = ctx.resolve(config.prompt or "")
        if not prompt.strip():
            raise ValueError("Agent prompt is empty")

        session = await ctx.cancel.guard(
            provider.start_session(
                prompt=prompt,
                cwd=ctx.resolve(config.cwd) if config.cwd else ctx.project_dir,
                model=config.model,
                effort=config.effort,
                max_turns=config.max_turns or get_settings().AGENT_MAX_TURNS,
                output_schema=config.output_schema,
            )
        )

        text_parts: list[str] = []
        structured: Any = None
        try:
            stream = session.messages().__aiter__()
            while True:
                try:
                    message = await ctx.cancel.guard(stream.__anext__())
                except StopAsyncIteration:
                    break

                ctx.emit(AGENT_MESSAGE, {"runId": ctx.run_id, "stepId": ctx.step_id, "message": message})
                kind = message.get("type")
                if kind == "assistant":
                    text_parts.append(_assistant_text(message))
                elif kind == "result":
                    structured = _structured(message)
                    if not text_parts and isinstance(message.get("result"), str):
                        text_parts.append(message["result"])
                elif kind == "error":
                    raise RuntimeError(message.get("error") or "Agent step failed")

        except (ExecutionCancelledError, StepTimeoutError):
            logger.info("Interrupting agent session", step_id=ctx.step_id, session_id=getattr(session, "id", None))
            await session.interrupt()
            raise
        finally:
            await session.close()

        output: Dict[str, Any] = {"output": "".join(text_parts).strip(), "success": True}
        if structured is not None:
            output["structured"] = structured
            if isinstance(structured, dict):
                for key, value in structured.items():
                    output.setdefault(key, value)
        return output


AGENT_TASK_TYPES = {
    "agent": AgentTask,
}

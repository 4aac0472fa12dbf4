"""Shell step.

Runs a command without a shell: the command string is split into argv
(double and single quotes group words) and executed directly, so no pipes,
redirections or variable expansion happen. A non-zero exit code is part of
the output, not a failure; downstream steps branch on ``$step.exitCode``.
"""

import asyncio
import contextlib
import os
import shlex
from typing import Any, Dict

import structlog

from app.config import get_settings
from core.exceptions import ExecutionCancelledError, StepTimeoutError
from core.utils import parse_duration
from tasks.base_task import BaseTask, StepContext
from workflow.models import ShellConfig

logger = structlog.get_logger(__name__)


def split_command(command: str) -> list[str]:
    """Quote-aware argv split. Raises ValueError on unbalanced quotes."""
    return shlex.split(command, posix=True)


def _decode(data: bytes, limit: int) -> str:
    return data[:limit].decode("utf-8", errors="replace")


class ShellTask(BaseTask):
    """Execute a command and capture its output.

    Config:
        command: Command line (variables resolved before splitting)
        cwd: Working directory (default: project directory)
        timeout: Kill the process after this long (default: SHELL_TIMEOUT)
    """

    step_type = "shell"
    display_name = "Shell"
    description = "Run a command and capture exit code, stdout and stderr"
    config_model = ShellConfig

    async def execute(self, config: ShellConfig, ctx: StepContext) -> Dict[str, Any]:
        settings = get_settings()
        ctx.cancel.raise_if_cancelled()

        command = ctx.resolve(config.command or "")
        argv = split_command(command)
        if not argv:
            return {"exitCode": 0, "stdout": "", "stderr": ""}

        cwd = ctx.resolve(config.cwd) if config.cwd else ctx.project_dir
        if cwd and not os.path.isdir(cwd):
            raise FileNotFoundError(f"Working directory not found: {cwd}")

        timeout = parse_duration(config.timeout, None) or parse_duration(settings.SHELL_TIMEOUT, 60.0)

        process = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd or None,
        )

        scope = ctx.cancel.child(timeout=timeout)
        try:
            stdout, stderr = await scope.guard(process.communicate())
        except (ExecutionCancelledError, StepTimeoutError, asyncio.CancelledError):
            if process.returncode is None:
                with contextlib.suppress(ProcessLookupError):
                    process.kill()
                await process.wait()
            logger.info("Shell process killed", step_id=ctx.step_id, command=argv[0])
            raise
        finally:
            scope.close()

        return {
            "exitCode": process.returncode,
            "stdout": _decode(stdout, settings.SHELL_MAX_OUTPUT),
            "stderr": _decode(stderr, settings.SHELL_MAX_OUTPUT),
        }


SHELL_TASK_TYPES = {
    "shell": ShellTask,
}

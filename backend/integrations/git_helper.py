"""Git helper backed by the ``git`` executable."""

import asyncio
from typing import Optional

import structlog

from integrations.base import GitResult

logger = structlog.get_logger(__name__)


class SubprocessGitHelper:
    """Runs git commands with asyncio subprocesses (never through a shell)."""

    def __init__(self, git_binary: str = "git", timeout: float = 120.0):
        self._git = git_binary
        self._timeout = timeout

    async def run(self, cwd: str, args: list[str]) -> GitResult:
        try:
            process = await asyncio.create_subprocess_exec(
                self._git,
                *args,
                cwd=cwd or None,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            return GitResult(success=False, error=f"git not available: {e}")

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self._timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            return GitResult(success=False, error=f"git {' '.join(args)} timed out after {self._timeout:g}s")
        except asyncio.CancelledError:
            process.kill()
            await process.wait()
            raise

        out = stdout.decode("utf-8", errors="replace").strip()
        err = stderr.decode("utf-8", errors="replace").strip()
        if process.returncode != 0:
            return GitResult(success=False, output=out, error=err or f"git exited with {process.returncode}")
        return GitResult(success=True, output=out or err)

    async def current_branch(self, cwd: str) -> str:
        result = await self.run(cwd, ["rev-parse", "--abbrev-ref", "HEAD"])
        if not result.success:
            raise RuntimeError(result.error)
        return result.output

    async def recent_commits(self, cwd: str, limit: int = 1) -> list[dict[str, str]]:
        result = await self.run(cwd, ["log", f"-{limit}", "--pretty=format:%h%x09%s"])
        if not result.success:
            raise RuntimeError(result.error)
        commits = []
        for line in result.output.splitlines():
            commit_hash, _, message = line.partition("\t")
            commits.append({"hash": commit_hash, "message": message})
        return commits

    async def pull(self, cwd: str) -> GitResult:
        return await self.run(cwd, ["pull"])

    async def push(self, cwd: str) -> GitResult:
        return await self.run(cwd, ["push"])

    async def stage(self, cwd: str, files: Optional[list[str]] = None) -> GitResult:
        return await self.run(cwd, ["add", "--", *(files or ["."])])

    async def commit(self, cwd: str, message: str) -> GitResult:
        return await self.run(cwd, ["commit", "-m", message])

    async def checkout(self, cwd: str, branch: str) -> GitResult:
        return await self.run(cwd, ["checkout", branch])

    async def create_branch(self, cwd: str, branch: str) -> GitResult:
        return await self.run(cwd, ["checkout", "-b", branch])

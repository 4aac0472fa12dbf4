"""Git step: an ordered list of git sub-actions, stopping at the first failure."""

from typing import Any, Dict

from tasks.base_task import BaseTask, StepContext
from workflow.models import GitAction, GitConfig
from integrations.base import GitResult


class GitTask(BaseTask):
    """Run git sub-actions in order.

    Config:
        cwd: Repository directory (default: project directory)
        actions: List of actions, each one of
            {"pull": true} | {"push": true} | {"commit": "msg", "files": [...]}
            | {"checkout": "branch"} | {"branch": "new-branch"} | {"command": "status -s"}
    """

    step_type = "git"
    display_name = "Git"
    description = "Pull, push, commit, checkout or run raw git commands"
    config_model = GitConfig

    async def execute(self, config: GitConfig, ctx: StepContext) -> Dict[str, Any]:
        helper = ctx.services.git_helper
        if helper is None:
            raise RuntimeError("Git helper not available")

        cwd = ctx.resolve(config.cwd) if config.cwd else (ctx.project_dir or "")
        results: list[GitResult] = []

        for action in config.actions:
            resolved = GitAction.model_validate(ctx.resolve_deep(action.model_dump(exclude_none=True)))
            result = await ctx.cancel.guard(self._run_action(helper, cwd, resolved))
            results.append(result)
            if not result.success:
                raise RuntimeError(result.error or "git action failed")

        return {
            "output": "\n".join(r.output for r in results if r.output),
            "results": [r.to_dict() for r in results],
        }

    async def _run_action(self, helper: Any, cwd: str, action: GitAction) -> GitResult:
        if action.pull:
            return await helper.pull(cwd)
        if action.push:
            return await helper.push(cwd)
        if action.commit:
            staged = await helper.stage(cwd, action.files or ["."])
            if not staged.success:
                return staged
            return await helper.commit(cwd, action.commit)
        if action.checkout:
            return await helper.checkout(cwd, action.checkout)
        if action.branch:
            return await helper.create_branch(cwd, action.branch)
        if action.command:
            return await helper.run(cwd, action.command.split())
        return GitResult(success=False, error="Unknown git action")


GIT_TASK_TYPES = {
    "git": GitTask,
}

"""File step.

Relative paths are resolved against the run's project directory (the
process working directory when the run has none), and every path touched
(source, destination, listed entries) must stay inside it. The base
directory itself can be listed but never deleted or moved.
"""

import asyncio
import os
import shutil
from pathlib import Path
from typing import Any, Dict, Optional

from core.exceptions import PathTraversalError
from tasks.base_task import BaseTask, StepContext
from workflow.models import FileConfig

FILE_ACTIONS = ("read", "write", "append", "copy", "move", "delete", "exists", "list")


def project_base(project_dir: Optional[str]) -> Path:
    return Path(project_dir or os.getcwd()).resolve()


def resolve_in_project(raw_path: str, base: Path) -> Path:
    """Absolute path for ``raw_path``; raises PathTraversalError outside ``base``."""
    candidate = Path(raw_path or ".")
    resolved = (candidate if candidate.is_absolute() else base / candidate).resolve()
    if not resolved.is_relative_to(base):
        raise PathTraversalError(raw_path)
    return resolved


class FileTask(BaseTask):
    """Read, write and manage files inside the project.

    Config:
        action: read | write | append | copy | move | delete | exists | list
        path: Target file (or base directory for list)
        destination: Target path for copy / move
        content: Text for write / append
        pattern: Glob for list (default "*")
        type: files | dirs | all (list only)
        recursive: Descend into sub-directories (list only)
    """

    step_type = "file"
    display_name = "File"
    description = "File operations confined to the project directory"
    config_model = FileConfig

    async def execute(self, config: FileConfig, ctx: StepContext) -> Dict[str, Any]:
        action = (config.action or "read").lower()
        if action not in FILE_ACTIONS:
            raise ValueError(f"Unknown file action: {action}")

        base = project_base(ctx.project_dir)
        path = resolve_in_project(ctx.resolve(config.path or ""), base)
        destination = None
        if action in ("delete", "move") and path == base:
            raise PathTraversalError(config.path or ".")
        if action in ("copy", "move"):
            if not config.destination:
                raise ValueError(f"File {action} requires a destination")
            destination = resolve_in_project(ctx.resolve(config.destination), base)

        content = ctx.resolve_deep(config.content)
        if not isinstance(content, str):
            content = "" if content is None else str(content)

        ctx.cancel.raise_if_cancelled()
        return await asyncio.to_thread(self._perform, action, path, destination, content, config, base)

    def _perform(
        self,
        action: str,
        path: Path,
        destination: Optional[Path],
        content: str,
        config: FileConfig,
        base: Path,
    ) -> Dict[str, Any]:
        if action == "read":
            return {"content": path.read_text(encoding="utf-8")}

        if action == "write":
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")
            return {"success": True, "path": str(path)}

        if action == "append":
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("a", encoding="utf-8") as handle:
                handle.write(content)
            return {"success": True, "path": str(path)}

        if action == "copy":
            destination.parent.mkdir(parents=True, exist_ok=True)
            if path.is_dir():
                shutil.copytree(path, destination, dirs_exist_ok=True)
            else:
                shutil.copy2(path, destination)
            return {"success": True, "path": str(destination)}

        if action == "move":
            destination.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(path), str(destination))
            return {"success": True, "path": str(destination)}

        if action == "delete":
            if path.is_dir():
                shutil.rmtree(path)
            elif path.exists():
                path.unlink()
            return {"success": True}

        if action == "exists":
            return {"exists": path.exists()}

        return self._list(path, config, base)

    def _list(self, directory: Path, config: FileConfig, base: Path) -> Dict[str, Any]:
        if not directory.is_dir():
            raise NotADirectoryError(f"Not a directory: {directory}")

        pattern = config.pattern or "*"
        if Path(pattern).is_absolute() or ".." in Path(pattern).parts:
            raise PathTraversalError(pattern)
        matches = directory.rglob(pattern) if config.recursive else directory.glob(pattern)
        kind = (config.type or "files").lower()

        files = []
        for entry in matches:
            # Symlinked entries may still point outside the project
            if not entry.resolve().is_relative_to(base):
                raise PathTraversalError(str(entry))
            if kind == "files" and not entry.is_file():
                continue
            if kind == "dirs" and not entry.is_dir():
                continue
            files.append(entry.relative_to(directory).as_posix())
        files.sort()
        return {"files": files, "count": len(files)}


FILE_TASK_TYPES = {
    "file": FileTask,
}

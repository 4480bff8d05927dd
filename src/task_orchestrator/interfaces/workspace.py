"""Local workspace implementations of the file, context and command collaborators."""

import asyncio
import logging
import os
import re
from pathlib import Path
from typing import Any

from task_orchestrator.utils.constants import BLOCKED_COMMANDS, IGNORED_DIRECTORIES


class WorkspaceFileMutator:
    """File operations confined to a workspace root."""

    def __init__(self, root: Path | str):
        self.root = Path(root).resolve()
        self.logger = logging.getLogger(__name__)

    def resolve(self, path: str) -> Path:
        """Resolve ``path`` against the root; refuse paths that escape it."""
        target = (self.root / path).resolve()
        if not target.is_relative_to(self.root):
            raise PermissionError(f"Path is outside the workspace: {path}")
        return target

    async def read_file(self, path: str) -> str:
        target = self.resolve(path)
        return await asyncio.to_thread(target.read_text, encoding="utf-8")

    async def create_file(self, path: str, content: str) -> dict[str, Any]:
        target = self.resolve(path)
        await asyncio.to_thread(self._write, target, content)
        self.logger.info(f"Created file {path}")
        return {"path": path, "bytes": len(content.encode("utf-8"))}

    async def modify_file(self, path: str, content: str) -> dict[str, Any]:
        target = self.resolve(path)
        if not target.exists():
            raise FileNotFoundError(f"File does not exist: {path}")
        await asyncio.to_thread(self._write, target, content)
        self.logger.info(f"Modified file {path}")
        return {"path": path, "bytes": len(content.encode("utf-8"))}

    async def delete_file(self, path: str) -> dict[str, Any]:
        target = self.resolve(path)
        await asyncio.to_thread(target.unlink)
        self.logger.info(f"Deleted file {path}")
        return {"path": path, "deleted": True}

    @staticmethod
    def _write(target: Path, content: str) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")


class WorkspaceContextProvider:
    """Context snapshot describing the workspace root and its files."""

    def __init__(self, root: Path | str, max_files: int = 200):
        self.root = Path(root).resolve()
        self.max_files = max_files

    async def get_current_context(self) -> dict[str, Any]:
        files = await asyncio.to_thread(self._list_files)
        return {
            "workspace_root": str(self.root),
            "files": files,
            "file_count": len(files),
        }

    def _list_files(self) -> list[str]:
        files: list[str] = []
        for dirpath, dirnames, filenames in os.walk(self.root):
            dirnames[:] = sorted(d for d in dirnames if d not in IGNORED_DIRECTORIES)
            for filename in sorted(filenames):
                files.append(str((Path(dirpath) / filename).relative_to(self.root)))
                if len(files) >= self.max_files:
                    return files
        return files


class BlocklistCommandValidator:
    """Refuses commands containing a blocked command word."""

    def __init__(self, blocked_commands: tuple[str, ...] | list[str] = BLOCKED_COMMANDS):
        self.logger = logging.getLogger(__name__)
        self.patterns = [
            (blocked, re.compile(rf"(?<![\w-]){re.escape(blocked.lower())}(?![\w-])"))
            for blocked in blocked_commands
        ]

    async def validate_command(self, command: str) -> bool:
        lowered = command.lower()
        for blocked, pattern in self.patterns:
            if pattern.search(lowered):
                self.logger.warning(f"Blocked command detected: {blocked}")
                return False
        return True

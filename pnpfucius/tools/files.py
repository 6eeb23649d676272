"""File tools confined to the configured workspace."""

import asyncio
import fnmatch
from pathlib import Path
from typing import Any

from pnpfucius.logging import get_logger
from pnpfucius.tools.registry import Tool

log = get_logger(__name__)


class WorkspaceTool(Tool):
    """Base for tools that resolve user paths inside a workspace root."""

    category = "file"
    timeout_seconds = 15.0

    def __init__(self, workspace: Path | str, max_read_bytes: int = 200_000):
        self.workspace = Path(workspace).expanduser().resolve()
        self.max_read_bytes = max_read_bytes

    def _resolve(self, path: str) -> Path:
        """Resolve *path* under the workspace.

        Raises:
            PermissionError if the path escapes the workspace
        """
        requested = Path(path or ".").expanduser()
        candidate = requested if requested.is_absolute() else self.workspace / requested
        candidate = candidate.resolve()
        try:
            candidate.relative_to(self.workspace)
        except ValueError:
            raise PermissionError(f"Path is outside the workspace: {path}")
        return candidate


class ReadFileTool(WorkspaceTool):
    """Read file contents."""

    name = "read_file"
    description = "Read the contents of a file in the workspace."
    parameters = {
        "type": "object",
        "properties": {
            "path": {
                "type": "string",
                "description": "Path to the file (relative to the workspace)",
            },
        },
        "required": ["path"],
    }

    async def execute(self, path: str, **kwargs: Any) -> dict[str, Any]:
        file_path = self._resolve(path)
        if not file_path.exists():
            raise FileNotFoundError(f"File not found: {path}")
        if not file_path.is_file():
            raise IsADirectoryError(f"Not a file: {path}")

        file_size = file_path.stat().st_size
        if file_size > self.max_read_bytes:
            raise ValueError(f"File too large: {file_size} bytes (max {self.max_read_bytes})")

        content = await asyncio.to_thread(file_path.read_text, encoding="utf-8")
        return {
            "path": path,
            "content": content,
            "size": len(content),
            "lines": len(content.split("\n")),
        }


class WriteFileTool(WorkspaceTool):
    """Write content to files."""

    name = "write_file"
    description = "Create or overwrite a file in the workspace."
    parameters = {
        "type": "object",
        "properties": {
            "path": {
                "type": "string",
                "description": "Path to the file (relative to the workspace)",
            },
            "content": {
                "type": "string",
                "description": "Content to write to the file",
            },
        },
        "required": ["path", "content"],
    }

    async def execute(self, path: str, content: str, **kwargs: Any) -> dict[str, Any]:
        file_path = self._resolve(path)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(file_path.write_text, content, encoding="utf-8")
        log.info("Wrote file", path=str(file_path), size=len(content))
        return {
            "success": True,
            "path": path,
            "size": len(content),
            "lines": len(content.split("\n")),
        }


class ListFilesTool(WorkspaceTool):
    """List directory entries."""

    name = "list_files"
    description = "List files in a workspace directory, optionally filtered by a glob pattern."
    parameters = {
        "type": "object",
        "properties": {
            "path": {
                "type": "string",
                "description": "Directory path (default: workspace root)",
            },
            "pattern": {
                "type": "string",
                "description": "Glob pattern to filter names (e.g., '*.json')",
            },
        },
    }

    async def execute(self, path: str = ".", pattern: str | None = None, **kwargs: Any) -> dict[str, Any]:
        dir_path = self._resolve(path)
        if not dir_path.is_dir():
            raise FileNotFoundError(f"Directory not found: {path}")

        files: list[dict[str, Any]] = []
        for entry in sorted(dir_path.iterdir(), key=lambda p: p.name):
            if pattern and not fnmatch.fnmatch(entry.name, pattern):
                continue
            is_file = entry.is_file()
            files.append({
                "name": entry.name,
                "type": "file" if is_file else "directory",
                "size": entry.stat().st_size if is_file else None,
            })

        return {
            "path": path or ".",
            "files": files,
            "total": len(files),
        }

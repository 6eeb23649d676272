"""Shell tool for executing commands."""

import asyncio
import os
import signal
from pathlib import Path
from typing import Any

from pnpfucius.config import ShellToolConfig
from pnpfucius.logging import get_logger
from pnpfucius.tools.registry import Tool, is_blocked_shell_command

log = get_logger(__name__)

_MAX_OUTPUT_CHARS = 10_000


def _truncate(text: str) -> str:
    if len(text) > _MAX_OUTPUT_CHARS:
        return text[:_MAX_OUTPUT_CHARS] + f"\n... [truncated, {len(text)} total chars]"
    return text


async def _kill_process_group(process: asyncio.subprocess.Process) -> None:
    """Kill the shell and everything it started, then reap the shell."""
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass
    await process.wait()


class RunCommandTool(Tool):
    """Execute shell commands."""

    name = "run_command"
    description = (
        "Execute a shell command and return its exit code, stdout and stderr. "
        "Use for git, npm, inspecting files, or other system tasks."
    )
    category = "system"
    parameters = {
        "type": "object",
        "properties": {
            "command": {
                "type": "string",
                "description": "The shell command to execute",
            },
            "cwd": {
                "type": "string",
                "description": "Working directory (default: workspace root)",
            },
            "timeout": {
                "type": "number",
                "description": "Timeout in milliseconds (default: 30000)",
            },
        },
        "required": ["command"],
    }

    def __init__(self, config: ShellToolConfig, workspace: Path | str = "."):
        self.config = config
        self.workspace = Path(workspace).expanduser().resolve()
        self.timeout_seconds = float(config.timeout or 30)

    def _timeout_seconds(self, timeout_ms: float | None) -> float:
        if timeout_ms is None:
            return self.timeout_seconds
        return max(1.0, float(timeout_ms) / 1000.0)

    def effective_timeout(self, arguments: dict[str, Any]) -> float:
        # Leave room for the tool's own kill-and-report path.
        return self._timeout_seconds(arguments.get("timeout")) + 5.0

    def _check_command(self, command: str) -> None:
        blocked, matched = is_blocked_shell_command(command, self.config.blocked)
        if not blocked:
            return
        if matched == "empty_command":
            reason = "Command is empty"
        elif matched == "unparseable_command":
            reason = "Command is not parseable"
        else:
            reason = f"Command matches blocked pattern: {matched}"
        log.warning("Blocked unsafe command", command=command, reason=reason)
        raise PermissionError(f"Command blocked: {reason}")

    async def execute(
        self,
        command: str,
        cwd: str | None = None,
        timeout: float | None = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        """Execute a shell command.

        Args:
            command: Shell command to execute
            cwd: Working directory, relative paths anchored at the workspace
            timeout: Timeout in milliseconds

        Returns:
            command, exit_code, stdout, stderr, success

        Raises:
            PermissionError for blocked commands
            TimeoutError after killing a command that ran too long
        """
        self._check_command(command)
        timeout_seconds = self._timeout_seconds(timeout)

        workdir = self.workspace
        if cwd:
            requested = Path(cwd).expanduser()
            workdir = (requested if requested.is_absolute() else self.workspace / requested).resolve()
        if not workdir.is_dir():
            raise FileNotFoundError(f"Working directory not found: {cwd}")

        env = os.environ.copy()
        env["PATH"] = os.environ.get("PATH", "/usr/local/bin:/usr/bin:/bin")

        log.info("Executing shell command", command=command, timeout=timeout_seconds, cwd=str(workdir))
        process = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(workdir),
            env=env,
            start_new_session=True,
        )

        communicate_task = asyncio.create_task(process.communicate())
        try:
            done, _ = await asyncio.wait({communicate_task}, timeout=timeout_seconds)
            if communicate_task not in done:
                await _kill_process_group(process)
                communicate_task.cancel()
                try:
                    await communicate_task
                except asyncio.CancelledError:
                    pass
                label = int(timeout_seconds) if timeout_seconds.is_integer() else timeout_seconds
                raise TimeoutError(f"Command timed out after {label}s")
            stdout, stderr = communicate_task.result()
        except asyncio.CancelledError:
            await _kill_process_group(process)
            communicate_task.cancel()
            raise

        exit_code = process.returncode
        return {
            "command": command,
            "exit_code": exit_code,
            "stdout": _truncate(stdout.decode("utf-8", errors="replace").strip()),
            "stderr": _truncate(stderr.decode("utf-8", errors="replace").strip()),
            "success": exit_code == 0,
        }

"""Tool registry, dispatcher and base tool class."""

import asyncio
import re
import shlex
import time
from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from pnpfucius.exceptions import DuplicateToolError, ToolInputError, ToolNotFoundError
from pnpfucius.llm import ToolDefinition
from pnpfucius.logging import get_logger

log = get_logger(__name__)

_ASSIGNMENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*=.*$")
_SHELL_SEPARATOR_TOKENS = {";", "&&", "||", "|", "&"}
_SHELL_WRAPPER_TOKENS = {"sudo", "command", "builtin", "nohup", "time"}

_JSON_TYPES: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
    "array": (list,),
    "object": (dict,),
}


def _compile_shell_pattern(pattern: str) -> re.Pattern[str]:
    """Compile regex pattern with literal fallback for invalid regex input."""
    try:
        return re.compile(pattern)
    except re.error:
        return re.compile(re.escape(pattern))


def _tokenize_shell_command(command: str) -> list[str]:
    """Tokenize shell command while preserving control operators."""
    lexer = shlex.shlex(command, posix=True, punctuation_chars=";&|")
    lexer.whitespace_split = True
    lexer.commenters = ""
    return list(lexer)


def _split_shell_segments(command: str) -> list[list[str]]:
    """Split shell command into tokenized segments separated by control operators."""
    segments: list[list[str]] = []
    current: list[str] = []
    for token in _tokenize_shell_command(command):
        if token in _SHELL_SEPARATOR_TOKENS:
            if current:
                segments.append(current)
                current = []
            continue
        current.append(token)
    if current:
        segments.append(current)
    return segments


def _extract_segment_base_command(tokens: list[str]) -> str:
    """Extract executable command token from a tokenized shell segment."""
    for token in tokens:
        token = str(token).strip()
        if not token or token in _SHELL_WRAPPER_TOKENS:
            continue
        if _ASSIGNMENT_RE.match(token) and "/" not in token:
            continue
        return token
    return ""


def is_blocked_shell_command(command: str, blocked_patterns: list[str]) -> tuple[bool, str]:
    """Evaluate command against blocked patterns using parsed command matching.

    Patterns containing whitespace are searched in each whole segment;
    single-word patterns must match a segment's base command.
    """
    cleaned = str(command or "").strip()
    if not cleaned:
        return True, "empty_command"

    try:
        segments = _split_shell_segments(cleaned)
    except ValueError:
        return True, "unparseable_command"
    if not segments:
        return True, "unparseable_command"

    segment_texts = [" ".join(tokens) for tokens in segments]
    base_commands = [
        base
        for segment in segments
        if (base := _extract_segment_base_command(segment))
    ]
    if not base_commands:
        return True, "unparseable_command"

    for raw_pattern in blocked_patterns or []:
        pattern = str(raw_pattern or "").strip()
        if not pattern:
            continue
        compiled = _compile_shell_pattern(pattern)
        segment_level_pattern = bool(re.search(r"\s", pattern))
        targets = segment_texts if segment_level_pattern else base_commands
        matcher = compiled.search if segment_level_pattern else compiled.match
        for target in targets:
            if matcher(target):
                return True, pattern
        # Raw text check catches patterns the tokenizer splits apart.
        if pattern in cleaned:
            return True, pattern
    return False, ""


class ToolMeta(BaseModel):
    """Bookkeeping attached to every tool invocation."""

    model_config = ConfigDict(populate_by_name=True)

    tool: str
    duration_ms: int = Field(ge=0, alias="durationMs")


class ToolInvocationResult(BaseModel):
    """Outcome of one dispatched tool call.

    Successful calls carry the tool's own fields as extras; failed
    calls carry ``error`` plus only dispatcher-supplied details.
    ``_meta`` is always present.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    error: str | None = None
    meta: ToolMeta = Field(alias="_meta")

    @classmethod
    def success(cls, tool: str, payload: dict[str, Any], duration_ms: int) -> "ToolInvocationResult":
        data = {k: v for k, v in payload.items() if k not in {"error", "_meta", "meta"}}
        return cls(_meta=ToolMeta(tool=tool, duration_ms=duration_ms), **data)

    @classmethod
    def failure(
        cls,
        tool: str,
        error: str,
        duration_ms: int,
        **details: Any,
    ) -> "ToolInvocationResult":
        return cls(error=error or "Tool execution failed", _meta=ToolMeta(tool=tool, duration_ms=duration_ms), **details)

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def data(self) -> dict[str, Any]:
        """Tool-specific fields (or failure details)."""
        return dict(self.model_extra or {})

    def to_payload(self) -> dict[str, Any]:
        """Return the wire shape fed back to the model."""
        payload = self.data
        if self.error is not None:
            payload["error"] = self.error
        payload["_meta"] = self.meta.model_dump(by_alias=True)
        return payload


class Tool(ABC):
    """Base class for all tools."""

    name: str = ""
    description: str = ""
    parameters: dict[str, Any] = {}
    category: str = "general"
    timeout_seconds: float = 30.0

    @abstractmethod
    async def execute(self, **kwargs: Any) -> dict[str, Any]:
        """Execute the tool.

        Args:
            **kwargs: Tool-specific arguments

        Returns:
            JSON-serializable result fields

        Raises:
            Any exception; the registry converts it into an error result.
        """
        pass

    def get_definition(self) -> ToolDefinition:
        """Get the tool definition for the LLM."""
        return ToolDefinition(
            name=self.name,
            description=self.description,
            parameters=self.parameters,
        )

    def effective_timeout(self, arguments: dict[str, Any]) -> float:
        """Wall-clock limit the dispatcher applies to one call."""
        return max(1.0, float(self.timeout_seconds or 30.0))

    def validate_arguments(self, arguments: dict[str, Any]) -> None:
        """Validate tool arguments against the declared schema.

        Checks required fields, JSON types and enums of declared
        properties. Undeclared extra fields are passed through.

        Raises:
            ToolInputError if invalid
        """
        if not isinstance(arguments, dict):
            raise ToolInputError(self.name, "Arguments must be an object")

        for field_name in self.parameters.get("required", []):
            if arguments.get(field_name) is None:
                raise ToolInputError(self.name, f"Missing required argument: {field_name}")

        properties = self.parameters.get("properties", {})
        for key, value in arguments.items():
            schema = properties.get(key)
            if not schema or value is None:
                continue
            expected = schema.get("type")
            allowed = _JSON_TYPES.get(expected) if isinstance(expected, str) else None
            if allowed is not None:
                # bool is an int subclass; reject it for numeric fields.
                if isinstance(value, bool) and expected != "boolean":
                    raise ToolInputError(self.name, f"Argument '{key}' must be {expected}")
                if not isinstance(value, allowed):
                    raise ToolInputError(self.name, f"Argument '{key}' must be {expected}")
            choices = schema.get("enum")
            if choices and value not in choices:
                raise ToolInputError(
                    self.name,
                    f"Argument '{key}' must be one of: {', '.join(map(str, choices))}",
                )


class ToolRegistry:
    """Registry and dispatcher for the available tools.

    Tools are registered once at startup, then the registry is frozen.
    ``execute`` never raises for tool-level problems: unknown names,
    bad input, timeouts and executor exceptions all come back as an
    error ``ToolInvocationResult``.
    """

    def __init__(self):
        self._tools: dict[str, Tool] = {}
        self._frozen = False

    def register(self, tool: Tool) -> None:
        """Register a tool.

        Raises:
            ValueError if the tool has no name or the registry is frozen
            DuplicateToolError if the name is already taken
        """
        if not tool.name:
            raise ValueError("Tool must have a name")
        if self._frozen:
            raise ValueError(f"Tool registry is frozen; cannot register '{tool.name}'")
        if tool.name in self._tools:
            raise DuplicateToolError(tool.name)

        log.debug("Registering tool", tool=tool.name, category=tool.category)
        self._tools[tool.name] = tool

    def freeze(self) -> None:
        """Disallow further registration."""
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def get(self, name: str) -> Tool:
        """Get a tool by name.

        Raises:
            ToolNotFoundError if not found
        """
        if name not in self._tools:
            raise ToolNotFoundError(name)
        return self._tools[name]

    def list_tools(self) -> list[str]:
        """List registered tool names in registration order."""
        return list(self._tools)

    def get_definitions(self) -> list[ToolDefinition]:
        """Get all tool definitions for the LLM."""
        return [tool.get_definition() for tool in self._tools.values()]

    def tools_by_category(self) -> dict[str, list[Tool]]:
        """Group tools by category, preserving registration order."""
        grouped: dict[str, list[Tool]] = {}
        for tool in self._tools.values():
            grouped.setdefault(tool.category, []).append(tool)
        return grouped

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return max(0, int(round((time.perf_counter() - started) * 1000)))

    @staticmethod
    async def _cancel_task(task: asyncio.Task[Any] | None) -> None:
        """Cancel task and await it to avoid pending task warnings."""
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            log.debug("Cancelled tool task raised", error=str(e))

    async def execute(
        self,
        name: str,
        arguments: dict[str, Any] | None = None,
        input_error: str | None = None,
    ) -> ToolInvocationResult:
        """Execute a tool by name.

        Args:
            name: Tool name
            arguments: Tool arguments
            input_error: Set when the caller could not decode the
                arguments; the tool is not invoked.

        Returns:
            ToolInvocationResult with timing metadata
        """
        started = time.perf_counter()
        arguments = arguments if arguments is not None else {}

        tool = self._tools.get(name)
        if tool is None:
            log.warning("Unknown tool requested", tool=name)
            return ToolInvocationResult.failure(
                name,
                str(ToolNotFoundError(name)),
                self._elapsed_ms(started),
                available_tools=self.list_tools(),
            )

        if input_error:
            return ToolInvocationResult.failure(
                name,
                str(ToolInputError(name, input_error)),
                self._elapsed_ms(started),
            )

        try:
            tool.validate_arguments(arguments)
        except ToolInputError as e:
            return ToolInvocationResult.failure(name, str(e), self._elapsed_ms(started))

        timeout_seconds = tool.effective_timeout(arguments)
        execute_task: asyncio.Task[dict[str, Any]] | None = None
        try:
            log.info("Executing tool", tool=name, args=arguments)
            execute_task = asyncio.create_task(tool.execute(**arguments))
            done, _ = await asyncio.wait({execute_task}, timeout=timeout_seconds)

            if execute_task not in done:
                await self._cancel_task(execute_task)
                timeout_label = int(timeout_seconds) if float(timeout_seconds).is_integer() else timeout_seconds
                log.warning("Tool timed out", tool=name, timeout_seconds=timeout_seconds)
                return ToolInvocationResult.failure(
                    name,
                    f"Execution timed out after {timeout_label}s",
                    self._elapsed_ms(started),
                )

            payload = execute_task.result()
        except asyncio.CancelledError:
            await self._cancel_task(execute_task)
            raise
        except Exception as e:
            duration_ms = self._elapsed_ms(started)
            log.error("Tool execution failed", tool=name, error=str(e), duration_ms=duration_ms)
            return ToolInvocationResult.failure(name, str(e) or type(e).__name__, duration_ms)

        duration_ms = self._elapsed_ms(started)
        if not isinstance(payload, dict):
            return ToolInvocationResult.failure(name, "Tool returned invalid result payload", duration_ms)
        if payload.get("error"):
            log.info("Tool reported error", tool=name, duration_ms=duration_ms)
            return ToolInvocationResult.failure(name, str(payload["error"]), duration_ms)

        log.info("Tool executed", tool=name, duration_ms=duration_ms)
        return ToolInvocationResult.success(name, payload, duration_ms)

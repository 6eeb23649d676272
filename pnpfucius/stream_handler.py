"""Reduce a streamed model turn into a finalized assistant message."""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from pnpfucius.exceptions import LLMAPIError
from pnpfucius.llm import ContentBlock, Message, StreamEvent, TextBlock, ToolUseBlock
from pnpfucius.logging import get_logger

log = get_logger(__name__)


class TurnStatus(str, Enum):
    """Continuation signal for the conversation loop."""

    DONE = "done"
    PENDING_TOOLS = "pending_tools"


@dataclass
class TurnResult:
    """Finalized output of one streamed turn."""

    message: Message
    status: TurnStatus
    stop_reason: str | None = None
    usage: dict[str, int] = field(default_factory=dict)


@dataclass
class _OpenBlock:
    block_type: str
    tool_id: str = ""
    name: str = ""
    parts: list[str] = field(default_factory=list)


class StreamHandler:
    """Finite-state reducer over the events of one model turn.

    Text deltas are forwarded to ``on_text`` as they arrive. Tool input
    fragments are buffered per block and parsed only at ``block_stop``.
    ``finish()`` returns the assistant message with blocks in stream
    order and whether tool calls are pending.
    """

    def __init__(self, on_text: Callable[[str], None] | None = None):
        self.on_text = on_text
        self._open: dict[int, _OpenBlock] = {}
        self._closed: dict[int, ContentBlock] = {}
        self._stop_reason: str | None = None
        self._usage: dict[str, int] = {}
        self._finished = False

    def feed(self, event: StreamEvent) -> None:
        """Apply one stream event."""
        if self._finished:
            raise LLMAPIError("Stream event received after turn was finished")

        if event.kind == "block_start":
            self._start(event)
        elif event.kind == "block_delta":
            self._delta(event)
        elif event.kind == "block_stop":
            self._stop(event.index)
        elif event.kind == "message_delta":
            if event.stop_reason:
                self._stop_reason = event.stop_reason
            for key, value in event.usage.items():
                if isinstance(value, int):
                    self._usage[key] = value
        else:
            log.debug("Ignoring stream event", kind=event.kind)

    def _start(self, event: StreamEvent) -> None:
        if event.index in self._open or event.index in self._closed:
            raise LLMAPIError(f"Stream block {event.index} started twice")
        if event.block_type not in {"text", "tool_use"}:
            log.debug("Ignoring stream block", block_type=event.block_type, index=event.index)
            return
        block = _OpenBlock(block_type=event.block_type, tool_id=event.tool_id, name=event.name)
        self._open[event.index] = block
        if block.block_type == "text" and event.text:
            block.parts.append(event.text)
            if self.on_text:
                self.on_text(event.text)

    def _delta(self, event: StreamEvent) -> None:
        block = self._open.get(event.index)
        if block is None:
            if event.index in self._closed:
                raise LLMAPIError(f"Stream delta for closed block {event.index}")
            # Deltas for ignored block types (e.g. thinking) are dropped.
            return
        if block.block_type == "text":
            if event.text:
                block.parts.append(event.text)
                if self.on_text:
                    self.on_text(event.text)
        else:
            block.parts.append(event.partial_json)

    def _stop(self, index: int) -> None:
        block = self._open.pop(index, None)
        if block is None:
            return
        self._closed[index] = self._finalize(block, complete=True)

    @staticmethod
    def _finalize(block: _OpenBlock, complete: bool) -> ContentBlock:
        raw = "".join(block.parts)
        if block.block_type == "text":
            return TextBlock(text=raw)

        if not complete:
            return ToolUseBlock(
                id=block.tool_id,
                name=block.name,
                input={},
                input_error="Tool input stream ended before the block was complete",
            )
        if not raw.strip():
            return ToolUseBlock(id=block.tool_id, name=block.name, input={})
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as e:
            log.warning("Malformed tool input", tool=block.name, error=str(e))
            return ToolUseBlock(
                id=block.tool_id,
                name=block.name,
                input={},
                input_error=f"Malformed tool input JSON: {e}",
            )
        if not isinstance(parsed, dict):
            return ToolUseBlock(
                id=block.tool_id,
                name=block.name,
                input={},
                input_error="Tool input must be a JSON object",
            )
        return ToolUseBlock(id=block.tool_id, name=block.name, input=parsed)

    def finish(self) -> TurnResult:
        """Finalize the turn and return the assistant message."""
        for index in sorted(self._open):
            self._closed[index] = self._finalize(self._open[index], complete=False)
        self._open.clear()
        self._finished = True

        content: list[ContentBlock] = []
        for index in sorted(self._closed):
            block = self._closed[index]
            if isinstance(block, TextBlock) and not block.text:
                continue
            content.append(block)

        message = Message(role="assistant", content=content)
        status = TurnStatus.PENDING_TOOLS if message.tool_uses else TurnStatus.DONE
        return TurnResult(
            message=message,
            status=status,
            stop_reason=self._stop_reason,
            usage=dict(self._usage),
        )

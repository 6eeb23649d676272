"""Conversation loop for Pnpfucius."""

import asyncio
import json
from enum import Enum
from typing import Any, Awaitable, Callable

from pnpfucius.exceptions import LLMRateLimitError
from pnpfucius.llm import LLMProvider, Message, TextBlock, ToolResultBlock
from pnpfucius.logging import get_logger
from pnpfucius.session import Session
from pnpfucius.stream_handler import StreamHandler, TurnResult, TurnStatus
from pnpfucius.tools.registry import ToolInvocationResult, ToolRegistry

log = get_logger(__name__)


class AgentState(str, Enum):
    """Conversation loop states."""

    IDLE = "idle"
    AWAITING_MODEL = "awaiting_model"
    DISPATCHING_TOOLS = "dispatching_tools"


class Agent:
    """Drive model turns and tool dispatch for one session.

    One user turn runs to completion before the next is accepted:
    the user message is appended, the model is called, any requested
    tools run in order and their results go back as a single user
    message, and the loop repeats until the model answers without
    tool requests.
    """

    def __init__(
        self,
        provider: LLMProvider,
        tools: ToolRegistry,
        session: Session,
        text_callback: Callable[[str], None] | None = None,
        tool_start_callback: Callable[[str, dict[str, Any]], None] | None = None,
        tool_result_callback: Callable[[str, ToolInvocationResult], None] | None = None,
        status_callback: Callable[[str], None] | None = None,
        rate_limit_cooldown: float = 10.0,
        max_rate_limit_retries: int = 5,
        max_iterations: int = 25,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """Initialize the agent.

        Args:
            provider: Streaming LLM provider
            tools: Frozen tool registry
            session: Conversation session (history owner)
            text_callback: Receives assistant text fragments in order
            tool_start_callback: Called before each tool dispatch
            tool_result_callback: Called after each tool dispatch
            status_callback: Receives user-facing notices (rate limits)
            rate_limit_cooldown: Seconds to wait after a rate-limit error
            max_rate_limit_retries: Retries per model call before giving up
            max_iterations: Model calls allowed per user turn
            sleep: Awaitable sleep used for the cooldown
        """
        self.provider = provider
        self.tools = tools
        self.session = session
        self.text_callback = text_callback
        self.tool_start_callback = tool_start_callback
        self.tool_result_callback = tool_result_callback
        self.status_callback = status_callback
        self.rate_limit_cooldown = max(0.0, float(rate_limit_cooldown))
        self.max_rate_limit_retries = max(0, int(max_rate_limit_retries))
        self.max_iterations = max(1, int(max_iterations))
        self._sleep = sleep
        self.state = AgentState.IDLE
        self.last_usage: dict[str, int] = self._empty_usage()
        self.total_usage: dict[str, int] = self._empty_usage()
        self._tool_definitions = tools.get_definitions()
        # Text already shown for the current model call, and text seen in this attempt.
        self._shown_text = ""
        self._attempt_text = ""

    @staticmethod
    def _empty_usage() -> dict[str, int]:
        """Create an empty usage bucket."""
        return {
            "prompt_tokens": 0,
            "completion_tokens": 0,
            "total_tokens": 0,
        }

    @staticmethod
    def _accumulate_usage(target: dict[str, int], usage: dict[str, int] | None) -> None:
        """Add provider usage values into target totals."""
        if not usage:
            return
        prompt = int(usage.get("input_tokens", 0))
        completion = int(usage.get("output_tokens", 0))
        target["prompt_tokens"] += prompt
        target["completion_tokens"] += completion
        target["total_tokens"] += prompt + completion

    def _emit_status(self, message: str) -> None:
        if self.status_callback:
            self.status_callback(message)

    def _emit_text(self, text: str) -> None:
        if self.text_callback:
            self.text_callback(text)

    def _emit_attempt_text(self, text: str) -> None:
        """Forward attempt text, skipping what an earlier attempt already showed.

        A retried call usually repeats the same opening; only the part
        beyond the shown prefix is printed. If the retry diverges, the
        user is told and the new attempt is printed from its start.
        """
        self._attempt_text += text
        current, shown = self._attempt_text, self._shown_text
        if len(current) <= len(shown) and shown.startswith(current):
            return
        if current.startswith(shown):
            fresh = current[len(shown):]
        else:
            log.debug("Retried response diverged from shown text")
            self._emit_status("Response restarted after retry.")
            fresh = current
        self._shown_text = current
        self._emit_text(fresh)

    async def _call_model(self) -> TurnResult:
        """Stream one model call, retrying on rate limits.

        Each attempt sends the same history; nothing is appended until
        a turn finishes.
        """
        self._shown_text = ""
        attempt = 0
        while True:
            attempt += 1
            self._attempt_text = ""
            handler = StreamHandler(on_text=self._emit_attempt_text)
            try:
                log.debug("Calling model", attempt=attempt, messages=len(self.session.messages))
                async for event in self.provider.stream(
                    system=self.session.system_prompt,
                    messages=list(self.session.messages),
                    tools=self._tool_definitions,
                ):
                    handler.feed(event)
                return handler.finish()
            except LLMRateLimitError as e:
                if attempt > self.max_rate_limit_retries:
                    log.error("Rate limit retries exhausted", attempts=attempt)
                    raise LLMRateLimitError(
                        f"Still rate limited after {attempt} attempts: {e}",
                        retry_after=e.retry_after,
                    ) from e
                delay = max(self.rate_limit_cooldown, e.retry_after or 0.0)
                log.warning("Rate limited", attempt=attempt, delay=delay)
                self._emit_status(f"Rate limited. Waiting {delay:g} seconds...")
                await self._sleep(delay)

    @staticmethod
    def _notify_tool(callback: Callable[..., None] | None, name: str, payload: Any) -> None:
        """Run a tool display callback; every tool_use must still get its result."""
        if not callback:
            return
        try:
            callback(name, payload)
        except Exception as e:
            log.warning("Tool notice failed", tool=name, error=str(e), exc_info=True)

    async def _dispatch_tools(self, assistant: Message) -> Message:
        """Run requested tools in order and build the tool-result message."""
        blocks: list[ToolResultBlock] = []
        for use in assistant.tool_uses:
            self._notify_tool(self.tool_start_callback, use.name, use.input)
            result = await self.tools.execute(use.name, use.input, input_error=use.input_error)
            self._notify_tool(self.tool_result_callback, use.name, result)
            blocks.append(
                ToolResultBlock(
                    tool_use_id=use.id,
                    content=json.dumps(result.to_payload(), default=str, ensure_ascii=False),
                    is_error=not result.ok,
                )
            )
        return Message(role="user", content=list(blocks))

    async def chat(self, user_input: str) -> str:
        """Process one user turn and return the final assistant text.

        Raises:
            LLMError for provider failures; the session stays usable.
        """
        self.session.append(Message.user_text(user_input))
        return await self.run_turn()

    async def run_turn(self) -> str:
        """Drive the loop from the current history until the model stops."""
        turn_usage = self._empty_usage()
        try:
            for iteration in range(1, self.max_iterations + 1):
                self.state = AgentState.AWAITING_MODEL
                turn = await self._call_model()
                self._accumulate_usage(turn_usage, turn.usage)
                log.debug(
                    "Model turn finished",
                    iteration=iteration,
                    stop_reason=turn.stop_reason,
                    tool_calls=len(turn.message.tool_uses),
                )

                if turn.message.content:
                    self.session.append(turn.message)
                if turn.status is TurnStatus.DONE:
                    return turn.message.text

                self.state = AgentState.DISPATCHING_TOOLS
                self.session.append(await self._dispatch_tools(turn.message))

            notice = f"Stopped after {self.max_iterations} model calls without a final answer."
            log.warning("Iteration limit reached", max_iterations=self.max_iterations)
            self.session.append(Message(role="assistant", content=[TextBlock(text=notice)]))
            self._emit_status(notice)
            return notice
        finally:
            self.state = AgentState.IDLE
            self.last_usage = turn_usage
            for key, value in turn_usage.items():
                self.total_usage[key] += value

"""Ollama provider - direct HTTP calls to Ollama API."""

import json
import uuid
from typing import Any, AsyncIterator

import httpx

from pnpfucius.exceptions import LLMAPIError, LLMError, LLMRateLimitError
from pnpfucius.llm import (
    LLMProvider,
    Message,
    StreamEvent,
    TextBlock,
    ToolDefinition,
    ToolResultBlock,
    ToolUseBlock,
)
from pnpfucius.logging import get_logger

log = get_logger(__name__)


OLLAMA_NATIVE_BASE_URL = "http://127.0.0.1:11434"


class OllamaProvider(LLMProvider):
    """Direct Ollama API provider.

    Ollama streams NDJSON chunks with whole tool calls rather than
    block events, so each chunk is translated: text becomes deltas of
    one text block and every tool call becomes a start, a single JSON
    delta and a stop.
    """

    def __init__(
        self,
        model: str = "llama3.2",
        base_url: str = OLLAMA_NATIVE_BASE_URL,
        temperature: float = 0.7,
        max_tokens: int = 4096,
        api_key: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize Ollama provider.

        Args:
            model: Ollama model name (e.g., 'llama3.2', 'qwen3:32b')
            base_url: Ollama API base URL
            temperature: Sampling temperature
            max_tokens: Max tokens to generate
            api_key: Optional API key (Ollama usually doesn't need one locally)
            transport: Optional httpx transport (tests use MockTransport)
        """
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.api_key = api_key

        self.client = httpx.AsyncClient(
            timeout=120.0,
            follow_redirects=True,
            transport=transport,
        )

    def _convert_messages(self, system: str, messages: list[Message]) -> list[dict[str, Any]]:
        """Convert block messages to Ollama chat format."""
        result: list[dict[str, Any]] = []
        if system:
            result.append({"role": "system", "content": system})

        tool_names: dict[str, str] = {}
        for msg in messages:
            text = "".join(b.text for b in msg.content if isinstance(b, TextBlock))
            if msg.role == "assistant":
                entry: dict[str, Any] = {"role": "assistant", "content": text}
                calls = []
                for block in msg.content:
                    if isinstance(block, ToolUseBlock):
                        tool_names[block.id] = block.name
                        calls.append({"function": {"name": block.name, "arguments": block.input}})
                if calls:
                    entry["tool_calls"] = calls
                result.append(entry)
                continue

            for block in msg.content:
                if isinstance(block, ToolResultBlock):
                    entry = {"role": "tool", "content": block.content}
                    name = tool_names.get(block.tool_use_id)
                    if name:
                        entry["tool_name"] = name
                    result.append(entry)
            if text:
                result.append({"role": "user", "content": text})

        return result

    @staticmethod
    def _convert_tools(tools: list[ToolDefinition]) -> list[dict[str, Any]]:
        """Convert tools to Ollama format."""
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description or "",
                    "parameters": tool.parameters or {},
                },
            }
            for tool in tools
        ]

    def _body(
        self,
        messages: list[dict[str, Any]],
        tools: list[ToolDefinition] | None,
        max_tokens: int | None,
        stream: bool,
        model: str | None = None,
    ) -> dict[str, Any]:
        options: dict[str, Any] = {
            "num_ctx": 65536,
            "temperature": self.temperature,
        }
        if max_tokens or self.max_tokens:
            options["num_predict"] = max_tokens or self.max_tokens

        body: dict[str, Any] = {
            "model": model or self.model,
            "messages": messages,
            "stream": stream,
            "options": options,
        }
        if tools:
            body["tools"] = self._convert_tools(tools)
        return body

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    @staticmethod
    def _raise_for_status(status_code: int, error_text: str) -> None:
        if status_code == 429:
            raise LLMRateLimitError(f"Ollama rate limit: {error_text}")
        raise LLMAPIError(
            f"Ollama API error {status_code}: {error_text}",
            status_code=status_code,
        )

    async def stream(
        self,
        system: str,
        messages: list[Message],
        tools: list[ToolDefinition] | None = None,
        max_tokens: int | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Stream a completion as block events."""
        url = f"{self.base_url}/api/chat"
        body = self._body(self._convert_messages(system, messages), tools, max_tokens, stream=True)

        index = 0
        text_open = False
        saw_tool = False
        try:
            async with self.client.stream("POST", url, json=body, headers=self._headers()) as response:
                if not response.is_success:
                    error_text = (await response.aread()).decode("utf-8", errors="replace")
                    self._raise_for_status(response.status_code, error_text)

                async for line in response.aiter_lines():
                    if not line.strip():
                        continue
                    try:
                        chunk = json.loads(line)
                    except json.JSONDecodeError:
                        log.debug("Skipping undecodable Ollama line", line=line[:200])
                        continue
                    if not isinstance(chunk, dict):
                        raise LLMAPIError(f"Unexpected Ollama stream line: {line[:200]}")
                    if chunk.get("error"):
                        raise LLMAPIError(f"Ollama stream error: {chunk['error']}")

                    message = chunk.get("message") or {}
                    content = message.get("content") or ""
                    if content:
                        if not text_open:
                            yield StreamEvent(kind="block_start", index=index, block_type="text")
                            text_open = True
                        yield StreamEvent(kind="block_delta", index=index, text=content)

                    for call in message.get("tool_calls") or []:
                        if text_open:
                            yield StreamEvent(kind="block_stop", index=index)
                            text_open = False
                            index += 1
                        function = call.get("function") or {}
                        saw_tool = True
                        yield StreamEvent(
                            kind="block_start",
                            index=index,
                            block_type="tool_use",
                            tool_id=f"ollama_call_{call.get('id') or uuid.uuid4().hex[:12]}",
                            name=str(function.get("name", "")),
                        )
                        yield StreamEvent(
                            kind="block_delta",
                            index=index,
                            partial_json=json.dumps(function.get("arguments") or {}),
                        )
                        yield StreamEvent(kind="block_stop", index=index)
                        index += 1

                    if chunk.get("done"):
                        if text_open:
                            yield StreamEvent(kind="block_stop", index=index)
                            text_open = False
                        yield StreamEvent(
                            kind="message_delta",
                            stop_reason="tool_use" if saw_tool else "end_turn",
                            usage={
                                "input_tokens": int(chunk.get("prompt_eval_count", 0) or 0),
                                "output_tokens": int(chunk.get("eval_count", 0) or 0),
                            },
                        )
                        break
        except httpx.HTTPError as e:
            raise LLMAPIError(f"Ollama streaming error: {e}")

    async def complete(
        self,
        system: str,
        prompt: str,
        max_tokens: int | None = None,
        model: str | None = None,
    ) -> str:
        """Generate a one-shot completion."""
        url = f"{self.base_url}/api/chat"
        body = self._body(
            self._convert_messages(system, [Message.user_text(prompt)]),
            None,
            max_tokens,
            stream=False,
            model=model,
        )

        try:
            response = await self.client.post(url, json=body, headers=self._headers())
        except httpx.HTTPError as e:
            raise LLMAPIError(f"Ollama HTTP error: {e}")

        if not response.is_success:
            self._raise_for_status(response.status_code, response.text)

        try:
            data = response.json()
        except json.JSONDecodeError as e:
            raise LLMError(f"Ollama response decode error: {e}")
        return str((data.get("message") or {}).get("content", ""))

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

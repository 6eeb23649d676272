"""Anthropic provider - direct HTTP calls to the Messages API."""

import json
from typing import Any, AsyncIterator

import httpx

from pnpfucius.exceptions import LLMAPIError, LLMError, LLMRateLimitError
from pnpfucius.llm import (
    LLMProvider,
    Message,
    StreamEvent,
    ToolDefinition,
)
from pnpfucius.logging import get_logger

log = get_logger(__name__)


ANTHROPIC_BASE_URL = "https://api.anthropic.com"
ANTHROPIC_VERSION = "2023-06-01"


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def _decode_payload(payload: str) -> dict[str, Any]:
    try:
        decoded = json.loads(payload)
    except json.JSONDecodeError as e:
        raise LLMAPIError(f"Malformed stream payload: {e}") from e
    if not isinstance(decoded, dict):
        raise LLMAPIError(f"Unexpected stream payload: {type(decoded).__name__}")
    return decoded


async def iter_sse_payloads(lines: AsyncIterator[str]) -> AsyncIterator[dict[str, Any]]:
    """Group server-sent-event lines into decoded JSON ``data`` objects."""
    data_lines: list[str] = []
    async for raw in lines:
        line = raw.rstrip("\r")
        if not line:
            if data_lines:
                payload = "\n".join(data_lines)
                data_lines = []
                yield _decode_payload(payload)
            continue
        if line.startswith(":"):
            continue
        if line.startswith("data:"):
            data_lines.append(line[5:].lstrip())
    if data_lines:
        yield _decode_payload("\n".join(data_lines))


def translate_event(payload: dict[str, Any]) -> StreamEvent | None:
    """Map one Messages API stream payload onto a ``StreamEvent``.

    Returns ``None`` for payloads the turn reducer does not need
    (``ping``, ``message_stop``). Raises on ``error`` payloads.
    """
    kind = payload.get("type")
    index = int(payload.get("index", 0) or 0)

    if kind == "message_start":
        usage = (payload.get("message") or {}).get("usage") or {}
        return StreamEvent(kind="message_delta", usage=dict(usage))

    if kind == "content_block_start":
        block = payload.get("content_block") or {}
        block_type = str(block.get("type", ""))
        return StreamEvent(
            kind="block_start",
            index=index,
            block_type=block_type,
            tool_id=str(block.get("id", "")),
            name=str(block.get("name", "")),
            text=str(block.get("text", "")) if block_type == "text" else "",
        )

    if kind == "content_block_delta":
        delta = payload.get("delta") or {}
        delta_type = delta.get("type")
        if delta_type == "text_delta":
            return StreamEvent(kind="block_delta", index=index, text=str(delta.get("text", "")))
        if delta_type == "input_json_delta":
            return StreamEvent(
                kind="block_delta",
                index=index,
                partial_json=str(delta.get("partial_json", "")),
            )
        return None

    if kind == "content_block_stop":
        return StreamEvent(kind="block_stop", index=index)

    if kind == "message_delta":
        delta = payload.get("delta") or {}
        return StreamEvent(
            kind="message_delta",
            stop_reason=delta.get("stop_reason"),
            usage=dict(payload.get("usage") or {}),
        )

    if kind == "error":
        error = payload.get("error") or {}
        error_type = str(error.get("type", ""))
        message = str(error.get("message", "stream error"))
        if error_type in {"rate_limit_error", "overloaded_error"}:
            raise LLMRateLimitError(f"Anthropic {error_type}: {message}")
        raise LLMAPIError(f"Anthropic stream error ({error_type}): {message}")

    return None


class AnthropicProvider(LLMProvider):
    """Direct Anthropic Messages API provider."""

    def __init__(
        self,
        model: str = "claude-opus-4-5",
        api_key: str = "",
        base_url: str = ANTHROPIC_BASE_URL,
        temperature: float = 0.7,
        max_tokens: int = 16000,
        timeout: float = 600.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize Anthropic provider.

        Args:
            model: Model id (e.g., 'claude-opus-4-5')
            api_key: Anthropic API key
            base_url: API base URL
            temperature: Sampling temperature
            max_tokens: Max tokens to generate per turn
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests use MockTransport)
        """
        self.model = model
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.temperature = temperature
        self.max_tokens = max_tokens

        self.client = httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            transport=transport,
        )

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
        }

    def _body(
        self,
        system: str,
        messages: list[Message],
        tools: list[ToolDefinition] | None,
        max_tokens: int | None,
        stream: bool,
        model: str | None = None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": model or self.model,
            "max_tokens": max_tokens or self.max_tokens,
            "temperature": self.temperature,
            "system": system,
            "messages": [msg.to_api() for msg in messages],
        }
        if tools:
            body["tools"] = [tool.to_api() for tool in tools]
        if stream:
            body["stream"] = True
        return body

    @staticmethod
    def _raise_for_status(response: httpx.Response, error_text: str) -> None:
        if response.status_code == 429:
            raise LLMRateLimitError(
                f"Anthropic rate limit: {error_text}",
                retry_after=_parse_retry_after(response.headers.get("retry-after")),
            )
        raise LLMAPIError(
            f"Anthropic API error {response.status_code}: {error_text}",
            status_code=response.status_code,
        )

    async def stream(
        self,
        system: str,
        messages: list[Message],
        tools: list[ToolDefinition] | None = None,
        max_tokens: int | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Stream a turn, yielding provider-neutral block events."""
        url = f"{self.base_url}/v1/messages"
        body = self._body(system, messages, tools, max_tokens, stream=True)

        try:
            log.debug("Calling Anthropic", model=self.model, msg_count=len(messages))
            async with self.client.stream("POST", url, json=body, headers=self._headers()) as response:
                if not response.is_success:
                    error_text = (await response.aread()).decode("utf-8", errors="replace")
                    self._raise_for_status(response, error_text)

                async for payload in iter_sse_payloads(response.aiter_lines()):
                    event = translate_event(payload)
                    if event is not None:
                        yield event
        except httpx.HTTPError as e:
            raise LLMAPIError(f"Anthropic streaming error: {e}")

    async def complete(
        self,
        system: str,
        prompt: str,
        max_tokens: int | None = None,
        model: str | None = None,
    ) -> str:
        """Run a one-shot prompt and return concatenated text content."""
        url = f"{self.base_url}/v1/messages"
        body = self._body(
            system,
            [Message.user_text(prompt)],
            None,
            max_tokens or 1024,
            stream=False,
            model=model,
        )

        try:
            response = await self.client.post(url, json=body, headers=self._headers())
        except httpx.HTTPError as e:
            raise LLMAPIError(f"Anthropic HTTP error: {e}")

        if not response.is_success:
            self._raise_for_status(response, response.text)

        try:
            data = response.json()
        except json.JSONDecodeError as e:
            raise LLMError(f"Anthropic response decode error: {e}")

        return "".join(
            str(block.get("text", ""))
            for block in data.get("content", [])
            if block.get("type") == "text"
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

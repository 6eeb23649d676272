"""LLM message types, streaming events and provider factory."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Union

from pnpfucius.logging import get_logger

log = get_logger(__name__)


@dataclass
class TextBlock:
    """Rendered assistant or user text."""

    text: str

    def to_api(self) -> dict[str, Any]:
        return {"type": "text", "text": self.text}


@dataclass
class ToolUseBlock:
    """A tool invocation requested by the model."""

    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)
    # Set when the streamed input could not be parsed; the tool is never run.
    input_error: str | None = None

    def to_api(self) -> dict[str, Any]:
        return {"type": "tool_use", "id": self.id, "name": self.name, "input": self.input}


@dataclass
class ToolResultBlock:
    """Result of a tool invocation, fed back to the model."""

    tool_use_id: str
    content: str
    is_error: bool = False

    def to_api(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "type": "tool_result",
            "tool_use_id": self.tool_use_id,
            "content": self.content,
        }
        if self.is_error:
            payload["is_error"] = True
        return payload


ContentBlock = Union[TextBlock, ToolUseBlock, ToolResultBlock]


@dataclass
class Message:
    """A message in the conversation."""

    role: str  # "user", "assistant"
    content: list[ContentBlock] = field(default_factory=list)

    @classmethod
    def user_text(cls, text: str) -> "Message":
        return cls(role="user", content=[TextBlock(text=text)])

    @property
    def text(self) -> str:
        return "".join(block.text for block in self.content if isinstance(block, TextBlock))

    @property
    def tool_uses(self) -> list[ToolUseBlock]:
        return [block for block in self.content if isinstance(block, ToolUseBlock)]

    @property
    def tool_results(self) -> list[ToolResultBlock]:
        return [block for block in self.content if isinstance(block, ToolResultBlock)]

    def to_api(self) -> dict[str, Any]:
        return {"role": self.role, "content": [block.to_api() for block in self.content]}


@dataclass(frozen=True)
class ToolDefinition:
    """Definition of a tool for the LLM."""

    name: str
    description: str
    parameters: dict[str, Any]  # JSON Schema

    def to_api(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.parameters,
        }


@dataclass
class StreamEvent:
    """One provider-neutral event of a streamed model turn.

    ``kind`` is one of ``block_start``, ``block_delta``, ``block_stop``
    or ``message_delta``. Block events carry the block ``index``;
    ``block_start`` declares ``block_type`` (``text`` or ``tool_use``)
    and, for tools, ``tool_id`` and ``name``. Deltas carry either
    ``text`` or ``partial_json``. ``message_delta`` carries the stop
    reason and usage counters.
    """

    kind: str
    index: int = 0
    block_type: str = ""
    tool_id: str = ""
    name: str = ""
    text: str = ""
    partial_json: str = ""
    stop_reason: str | None = None
    usage: dict[str, int] = field(default_factory=dict)


class LLMProvider(ABC):
    """Abstract base class for LLM providers."""

    model: str = ""

    @abstractmethod
    def stream(
        self,
        system: str,
        messages: list[Message],
        tools: list[ToolDefinition] | None = None,
        max_tokens: int | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Stream one model turn as block events."""
        pass

    @abstractmethod
    async def complete(
        self,
        system: str,
        prompt: str,
        max_tokens: int | None = None,
        model: str | None = None,
    ) -> str:
        """Run a one-shot, tool-free prompt and return the reply text."""
        pass

    async def close(self) -> None:
        """Release network resources."""
        return None


def create_provider(
    provider: str = "anthropic",
    model: str = "claude-opus-4-5",
    api_key: str | None = None,
    base_url: str | None = None,
    temperature: float = 0.7,
    max_tokens: int = 16000,
) -> LLMProvider:
    """Create an LLM provider.

    Args:
        provider: Provider name (anthropic, ollama)
        model: Model name
        api_key: API key (required for anthropic)
        base_url: Optional base URL
        temperature: Default temperature
        max_tokens: Default max tokens

    Returns:
        Configured LLMProvider instance
    """
    name = (provider or "").strip().lower()
    if name in {"anthropic", "claude"}:
        from pnpfucius.llm.anthropic import ANTHROPIC_BASE_URL, AnthropicProvider

        return AnthropicProvider(
            model=model,
            api_key=api_key or "",
            base_url=base_url or ANTHROPIC_BASE_URL,
            temperature=temperature,
            max_tokens=max_tokens,
        )
    if name == "ollama":
        from pnpfucius.llm.ollama import OLLAMA_NATIVE_BASE_URL, OllamaProvider

        return OllamaProvider(
            model=model,
            base_url=base_url or OLLAMA_NATIVE_BASE_URL,
            temperature=temperature,
            max_tokens=max_tokens,
            api_key=api_key,
        )
    raise ValueError(f"Provider '{provider}' not supported. Use 'anthropic' or 'ollama'.")


# Global provider instance
_provider: LLMProvider | None = None


def get_provider() -> LLMProvider:
    """Get the global LLM provider instance."""
    global _provider
    if _provider is None:
        from pnpfucius.config import get_config

        cfg = get_config()
        _provider = create_provider(
            provider=cfg.model.provider,
            model=cfg.model.model,
            api_key=cfg.model.resolved_api_key() or None,
            base_url=cfg.model.base_url or None,
            temperature=cfg.model.temperature,
            max_tokens=cfg.model.max_tokens,
        )
    return _provider


def set_provider(provider: LLMProvider | None) -> None:
    """Set the global LLM provider instance."""
    global _provider
    _provider = provider

"""In-memory conversation session."""

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from pnpfucius.llm import Message


def _utcnow_iso() -> str:
    """Return current UTC timestamp in ISO format."""
    return datetime.now(UTC).isoformat()


@dataclass
class Session:
    """A conversation session.

    History is append-only for the life of the session; ``clear()`` is
    the only way to discard it.
    """

    model: str
    system_prompt: str
    messages: list[Message] = field(default_factory=list)
    verbose: bool = False
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: str = field(default_factory=_utcnow_iso)
    updated_at: str = field(default_factory=_utcnow_iso)

    def append(self, message: Message) -> None:
        """Append a message to the history."""
        self.messages.append(message)
        self.updated_at = _utcnow_iso()

    def clear(self) -> None:
        """Discard the conversation history."""
        self.messages.clear()
        self.updated_at = _utcnow_iso()

    def __len__(self) -> int:
        return len(self.messages)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "model": self.model,
            "verbose": self.verbose,
            "messages": [msg.to_api() for msg in self.messages],
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

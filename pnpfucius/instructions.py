"""Prompt templates for the agent and the one-shot insight calls.

Every template the program reads is listed in ``REQUIRED_TEMPLATES``.
A file placed in ``~/.pnpfucius/instructions/`` replaces the packaged
copy of the same name, so prompts can be tuned without editing the
install. Templates use ``{name}`` placeholders.
"""

from __future__ import annotations

import os
from pathlib import Path

from pnpfucius.exceptions import ConfigurationError

REQUIRED_TEMPLATES: tuple[str, ...] = (
    "system_prompt.md",
    "welcome_message.md",
    "news_scoring_system_prompt.md",
    "news_scoring_user_prompt.md",
    "market_generation_system_prompt.md",
    "market_from_news_user_prompt.md",
    "market_from_topic_user_prompt.md",
    "resolution_system_prompt.md",
    "resolution_user_prompt.md",
)

_PACKAGED_DIR = Path(__file__).resolve().parent / "instructions"
_PERSONAL_DIR = Path("~/.pnpfucius/instructions").expanduser()


class _KeepUnknown(dict):
    """Placeholders with no value are left as written."""

    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


class InstructionLoader:
    """Find, cache and fill prompt templates."""

    def __init__(
        self,
        base_dir: Path | str | None = None,
        personal_dir: Path | str | None = None,
    ):
        if base_dir is None:
            base_dir = os.getenv("PNPFUCIUS_INSTRUCTIONS_DIR") or _PACKAGED_DIR
        if personal_dir is None:
            personal_dir = _PERSONAL_DIR
        self.base_dir = Path(base_dir).expanduser().resolve()
        self.personal_dir = Path(personal_dir).expanduser().resolve()
        self._cache: dict[str, str] = {}

    def locate(self, name: str) -> Path | None:
        """Return the file that provides *name*, personal copy first."""
        for folder in (self.personal_dir, self.base_dir):
            candidate = folder / name
            if candidate.is_file():
                return candidate
        return None

    def missing(self, names: tuple[str, ...] = REQUIRED_TEMPLATES) -> list[str]:
        return [name for name in names if self.locate(name) is None]

    def ensure_complete(self, names: tuple[str, ...] = REQUIRED_TEMPLATES) -> None:
        """Fail at startup rather than partway through a turn.

        Raises:
            ConfigurationError naming every absent template
        """
        absent = self.missing(names)
        if absent:
            raise ConfigurationError(
                f"Prompt templates missing from {self.base_dir}: {', '.join(absent)}"
            )

    def load(self, name: str) -> str:
        if name in self._cache:
            return self._cache[name]
        path = self.locate(name)
        if path is None:
            raise FileNotFoundError(f"Prompt template not found: {name} (looked in {self.base_dir})")
        text = path.read_text(encoding="utf-8").strip()
        self._cache[name] = text
        return text

    def render(self, name: str, **values: object) -> str:
        """Fill ``{placeholders}`` in template *name* with *values*."""
        filled = _KeepUnknown({key: str(value) for key, value in values.items()})
        return self.load(name).format_map(filled)


_loader: InstructionLoader | None = None


def get_instruction_loader() -> InstructionLoader:
    """Get the shared instruction loader."""
    global _loader
    if _loader is None:
        _loader = InstructionLoader()
    return _loader

"""One-shot LLM analyses: news scoring, market generation, resolution checks."""

import json
import re
from datetime import datetime, timezone
from typing import Any

from pnpfucius.exceptions import LLMError
from pnpfucius.instructions import InstructionLoader, get_instruction_loader
from pnpfucius.llm import LLMProvider
from pnpfucius.logging import get_logger

log = get_logger(__name__)

CATEGORY_NAMES = {
    "regulation": "Privacy Regulation",
    "technology": "Privacy Technology",
    "adoption": "Privacy Adoption",
    "events": "Privacy Events",
}


def extract_json_object(raw_text: str) -> dict[str, Any] | None:
    """Extract the first valid JSON object from model text."""
    text = (raw_text or "").strip()
    if not text:
        return None

    candidates: list[str] = [text]
    fenced_matches = re.findall(r"```(?:json)?\s*(\{.*?\})\s*```", text, flags=re.DOTALL | re.IGNORECASE)
    candidates.extend(fenced_matches)
    inline_match = re.search(r"\{.*\}", text, flags=re.DOTALL)
    if inline_match:
        candidates.append(inline_match.group(0))

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed
    return None


def _optional_line(label: str, value: str | None) -> str:
    return f"{label}: {value}" if value else ""


async def _ask_json(
    provider: LLMProvider,
    system: str,
    prompt: str,
    max_tokens: int,
    model: str | None,
) -> dict[str, Any]:
    raw = await provider.complete(system=system, prompt=prompt, max_tokens=max_tokens, model=model)
    parsed = extract_json_object(raw)
    if parsed is None:
        log.warning("Model reply was not JSON", preview=raw[:200])
        raise LLMError("Failed to parse AI response as JSON")
    return parsed


class ScoreCache:
    """Session-scoped memo of news scores keyed by normalized headline."""

    def __init__(self):
        self._entries: dict[str, dict[str, Any]] = {}

    @staticmethod
    def key(headline: str) -> str:
        return (headline or "").strip().lower()

    def get(self, headline: str) -> dict[str, Any] | None:
        entry = self._entries.get(self.key(headline))
        return dict(entry) if entry is not None else None

    def put(self, headline: str, score: dict[str, Any]) -> None:
        self._entries[self.key(headline)] = dict(score)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class NewsScorer:
    """Score headlines 0-100 for privacy-market relevance."""

    def __init__(
        self,
        provider: LLMProvider,
        cache: ScoreCache | None = None,
        model: str | None = None,
        loader: InstructionLoader | None = None,
    ):
        self.provider = provider
        self.cache = cache if cache is not None else ScoreCache()
        self.model = model or None
        self.instructions = loader or get_instruction_loader()

    async def score(
        self,
        title: str,
        summary: str = "",
        source: str = "",
    ) -> dict[str, Any]:
        """Score one news item, returning the cached result when available."""
        cached = self.cache.get(title)
        if cached is not None:
            log.debug("Score cache hit", title=title[:80])
            return cached

        prompt = self.instructions.render(
            "news_scoring_user_prompt.md",
            title=title,
            summary_line=_optional_line("Summary", summary),
            source_line=_optional_line("Source", source),
        )
        result = await _ask_json(
            self.provider,
            self.instructions.load("news_scoring_system_prompt.md"),
            prompt,
            max_tokens=300,
            model=self.model,
        )

        try:
            score = max(0, min(100, int(result.get("score", 0))))
        except (TypeError, ValueError):
            score = 0
        scored = {
            "score": score,
            "category": str(result.get("category", "none")),
            "urgency": str(result.get("urgency", "evergreen")),
            "market_potential": bool(result.get("marketPotential", result.get("market_potential", False))),
            "reasoning": str(result.get("reasoning", "")),
            "suggested_market_angle": str(result.get("suggestedMarketAngle", "") or ""),
        }
        self.cache.put(title, scored)
        return dict(scored)


class MarketGenerator:
    """Generate YES/NO market questions from topics or news."""

    def __init__(
        self,
        provider: LLMProvider,
        model: str | None = None,
        loader: InstructionLoader | None = None,
    ):
        self.provider = provider
        self.model = model or None
        self.instructions = loader or get_instruction_loader()

    @staticmethod
    def _normalize(raw: dict[str, Any]) -> dict[str, Any]:
        category = str(raw.get("category", "technology"))
        question = str(raw.get("question", "")).strip()
        if not question:
            raise LLMError("Generated market has no question")
        return {
            "question": question,
            "category": category,
            "category_name": str(raw.get("categoryName") or CATEGORY_NAMES.get(category, category.title())),
            "suggested_duration_days": int(raw.get("suggestedDurationDays", 30) or 30),
            "suggested_liquidity_usdc": float(raw.get("suggestedLiquidityUSDC", 1000) or 1000),
            "urgency": str(raw.get("urgency", "timely")),
            "reasoning": str(raw.get("reasoning", "")),
            "generated_at": datetime.now(timezone.utc).isoformat(),
        }

    async def from_topic(self, topic: str, category: str | None = None) -> dict[str, Any]:
        prompt = self.instructions.render(
            "market_from_topic_user_prompt.md",
            topic=topic,
            category_line=f"Focus on the {category} category." if category else "",
        )
        raw = await _ask_json(
            self.provider,
            self.instructions.load("market_generation_system_prompt.md"),
            prompt,
            max_tokens=500,
            model=self.model,
        )
        return {**self._normalize(raw), "topic": topic}

    async def from_news(self, title: str, summary: str = "", source: str = "") -> dict[str, Any]:
        prompt = self.instructions.render(
            "market_from_news_user_prompt.md",
            title=title,
            summary_line=_optional_line("Summary", summary),
            source_line=_optional_line("Source", source),
        )
        raw = await _ask_json(
            self.provider,
            self.instructions.load("market_generation_system_prompt.md"),
            prompt,
            max_tokens=500,
            model=self.model,
        )
        return {**self._normalize(raw), "source_news": {"title": title, "source": source or "Unknown"}}


class ResolutionAnalyzer:
    """Ask the model whether a market's condition has been met."""

    def __init__(
        self,
        provider: LLMProvider,
        model: str | None = None,
        loader: InstructionLoader | None = None,
    ):
        self.provider = provider
        self.model = model or None
        self.instructions = loader or get_instruction_loader()

    async def analyze(self, market: dict[str, Any], today: datetime | None = None) -> dict[str, Any]:
        now = today or datetime.now(timezone.utc)
        question = str(market.get("question", "")).strip()
        if not question:
            raise LLMError("Market has no question to analyze")

        end_time = market.get("end_time") or market.get("endTime")
        prompt = self.instructions.render(
            "resolution_user_prompt.md",
            question=question,
            created=market.get("created_at") or market.get("creationTime") or "unknown",
            duration_days=market.get("duration_days", "unknown"),
            end_line=f"- End Time: {end_time}" if end_time else "",
            today=now.date().isoformat(),
        )
        raw = await _ask_json(
            self.provider,
            self.instructions.load("resolution_system_prompt.md"),
            prompt,
            max_tokens=800,
            model=self.model,
        )
        try:
            confidence = max(0.0, min(1.0, float(raw.get("confidence", 0.0))))
        except (TypeError, ValueError):
            confidence = 0.0
        return {
            "question": question,
            "can_resolve": bool(raw.get("canResolve", False)),
            "outcome": str(raw.get("outcome", "unknown")),
            "confidence": confidence,
            "reasoning": str(raw.get("reasoning", "")),
            "sources": list(raw.get("sources") or []),
            "suggested_action": str(raw.get("suggestedAction", "wait")),
            "analyzed_at": now.isoformat(),
        }

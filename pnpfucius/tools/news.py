"""News scoring, fetching and market-from-news tools."""

from typing import Any

from pnpfucius.insights import MarketGenerator, NewsScorer
from pnpfucius.logging import get_logger
from pnpfucius.news_feed import NewsFeedReader
from pnpfucius.tools.registry import Tool

log = get_logger(__name__)

# Upper bound on LLM scoring calls per fetch_news invocation.
_MAX_SCORED_ITEMS = 20


class ScoreNewsTool(Tool):
    """Score a headline for privacy-market relevance."""

    name = "score_news"
    description = (
        "Score a news headline for privacy relevance (0-100). Returns score, category, "
        "urgency, and whether it has market potential."
    )
    category = "news"
    timeout_seconds = 60.0
    parameters = {
        "type": "object",
        "properties": {
            "headline": {
                "type": "string",
                "description": "The news headline to score",
            },
            "summary": {
                "type": "string",
                "description": "Optional article summary",
            },
        },
        "required": ["headline"],
    }

    def __init__(self, scorer: NewsScorer):
        self.scorer = scorer

    async def execute(self, headline: str, summary: str | None = None, **kwargs: Any) -> dict[str, Any]:
        result = await self.scorer.score(headline, summary or "")
        return {
            "headline": headline,
            "score": result["score"],
            "category": result["category"],
            "urgency": result["urgency"],
            "market_potential": result["market_potential"],
            "reasoning": result["reasoning"],
        }


class FetchNewsTool(Tool):
    """Read the configured feeds once, optionally scoring items."""

    name = "fetch_news"
    description = "Fetch recent privacy-related news from RSS feeds, optionally filtered by relevance score."
    category = "news"
    timeout_seconds = 180.0
    parameters = {
        "type": "object",
        "properties": {
            "limit": {
                "type": "number",
                "description": "Max news items to return (default: 10)",
            },
            "min_score": {
                "type": "number",
                "description": "Minimum relevance score 0-100; items are scored when above 0",
            },
        },
    }

    def __init__(self, reader: NewsFeedReader, scorer: NewsScorer):
        self.reader = reader
        self.scorer = scorer

    async def execute(
        self,
        limit: float | None = None,
        min_score: float | None = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        max_items = max(1, int(limit or 10))
        threshold = float(min_score or 0)
        items = await self.reader.fetch()

        results: list[dict[str, Any]] = [item.to_dict() for item in items]
        if threshold > 0:
            results = []
            for item in items[:_MAX_SCORED_ITEMS]:
                scored = await self.scorer.score(item.title, item.summary, item.source)
                if scored["score"] >= threshold:
                    results.append({
                        **item.to_dict(),
                        "relevance_score": scored["score"],
                        "category": scored["category"],
                    })

        return {
            "items": results[:max_items],
            "total": len(results),
            "min_score_filter": threshold,
        }


class GenerateFromNewsTool(Tool):
    """Turn a headline into a market question."""

    name = "generate_from_news"
    description = "Generate a prediction market question from a news headline."
    category = "news"
    timeout_seconds = 120.0
    parameters = {
        "type": "object",
        "properties": {
            "headline": {
                "type": "string",
                "description": "News headline",
            },
            "summary": {
                "type": "string",
                "description": "Optional article summary",
            },
            "source": {
                "type": "string",
                "description": "News source",
            },
        },
        "required": ["headline"],
    }

    def __init__(self, generator: MarketGenerator):
        self.generator = generator

    async def execute(
        self,
        headline: str,
        summary: str | None = None,
        source: str | None = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        return await self.generator.from_news(headline, summary or "", source or "Unknown")

import json
from typing import Any

import httpx
import pytest

from pnpfucius.config import NewsConfig
from pnpfucius.exceptions import LLMError
from pnpfucius.insights import NewsScorer, ScoreCache, extract_json_object
from pnpfucius.llm import LLMProvider
from pnpfucius.news_feed import NewsFeedReader, parse_feed
from pnpfucius.tools.news import FetchNewsTool, ScoreNewsTool
from pnpfucius.tools.registry import ToolRegistry

RSS = """<?xml version="1.0"?>
<rss version="2.0"><channel>
  <title>Privacy Wire</title>
  <item>
    <title>EU fines Meta over data transfers</title>
    <link>https://example.org/meta</link>
    <description>&lt;p&gt;The   regulator &lt;b&gt;acted&lt;/b&gt;.&lt;/p&gt;</description>
    <pubDate>Mon, 02 Mar 2026 10:00:00 GMT</pubDate>
  </item>
  <item>
    <title>Cat video goes viral</title>
    <link>https://example.org/cat</link>
  </item>
  <item><title></title></item>
</channel></rss>
"""

ATOM = """<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Crypto Privacy</title>
  <entry>
    <title>Zcash shielded usage hits record</title>
    <link href="https://example.org/zcash"/>
    <summary>Shielded pool grows.</summary>
    <updated>2026-03-01T00:00:00Z</updated>
  </entry>
  <entry>
    <title>EU fines Meta over data transfers</title>
    <link href="https://example.org/dup"/>
  </entry>
</feed>
"""


class _ScoringProvider(LLMProvider):
    def __init__(self, scores: dict[str, int]):
        self.scores = scores
        self.calls = 0

    async def stream(self, system, messages, tools=None, max_tokens=None):
        if False:
            yield None

    async def complete(self, system, prompt, max_tokens=None, model=None):
        self.calls += 1
        for title, score in self.scores.items():
            if title in prompt:
                return json.dumps(
                    {"score": score, "category": "regulation", "urgency": "breaking", "marketPotential": score > 50}
                )
        return "no idea"


def test_parse_rss_cleans_markup_and_skips_empty_titles():
    items = parse_feed(RSS, source="https://example.org/rss")

    assert [i.title for i in items] == ["EU fines Meta over data transfers", "Cat video goes viral"]
    assert items[0].summary == "The regulator acted ."
    assert items[0].source == "Privacy Wire"
    assert items[0].published == "Mon, 02 Mar 2026 10:00:00 GMT"


def test_parse_atom_entries():
    items = parse_feed(ATOM)

    assert items[0].title == "Zcash shielded usage hits record"
    assert items[0].link == "https://example.org/zcash"
    assert items[0].source == "Crypto Privacy"


def test_parse_feed_rejects_invalid_xml():
    with pytest.raises(ValueError):
        parse_feed("<rss><channel>")


def test_extract_json_object_handles_fences_and_prose():
    assert extract_json_object('{"a": 1}') == {"a": 1}
    assert extract_json_object('Sure!\n```json\n{"b": 2}\n```') == {"b": 2}
    assert extract_json_object('Result: {"c": 3} done') == {"c": 3}
    assert extract_json_object("[1, 2]") is None
    assert extract_json_object("") is None


@pytest.mark.asyncio
async def test_scorer_clamps_and_caches():
    provider = _ScoringProvider({"Headline": 140})
    cache = ScoreCache()
    scorer = NewsScorer(provider, cache=cache)

    first = await scorer.score("Headline")
    second = await scorer.score("  headline ")

    assert first["score"] == 100
    assert first["market_potential"] is True
    assert second == first
    assert provider.calls == 1
    assert len(cache) == 1


@pytest.mark.asyncio
async def test_scorer_raises_when_reply_is_not_json():
    scorer = NewsScorer(_ScoringProvider({}))

    with pytest.raises(LLMError):
        await scorer.score("Unknown headline")


@pytest.mark.asyncio
async def test_score_news_tool_reports_parse_failure_as_error():
    registry = ToolRegistry()
    registry.register(ScoreNewsTool(NewsScorer(_ScoringProvider({}))))

    result = await registry.execute("score_news", {"headline": "Unknown headline"})

    assert result.error == "Failed to parse AI response as JSON"


@pytest.mark.asyncio
async def test_fetch_news_reads_feeds_and_filters_by_score():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/rss":
            return httpx.Response(200, text=RSS)
        if request.url.path == "/atom":
            return httpx.Response(200, text=ATOM)
        return httpx.Response(500, text="down")

    config = NewsConfig(feeds=["https://feeds.test/rss", "https://feeds.test/broken", "https://feeds.test/atom"])
    reader = NewsFeedReader(config, transport=httpx.MockTransport(handler))
    provider = _ScoringProvider({"EU fines Meta": 90, "Cat video": 5, "Zcash": 70})
    registry = ToolRegistry()
    registry.register(FetchNewsTool(reader, NewsScorer(provider)))

    unfiltered = await registry.execute("fetch_news", {})
    filtered = await registry.execute("fetch_news", {"min_score": 60, "limit": 1})
    await reader.close()

    titles = [item["title"] for item in unfiltered.data["items"]]
    assert titles == ["EU fines Meta over data transfers", "Cat video goes viral", "Zcash shielded usage hits record"]
    assert filtered.data["total"] == 2
    assert len(filtered.data["items"]) == 1
    assert filtered.data["items"][0]["relevance_score"] == 90
    assert filtered.data["min_score_filter"] == 60.0

import json
from datetime import datetime, timezone
from typing import Any

import pytest

from pnpfucius.config import Config, MarketConfig
from pnpfucius.insights import MarketGenerator, ResolutionAnalyzer, ScoreCache
from pnpfucius.llm import LLMProvider
from pnpfucius.market import MarketBackend
from pnpfucius.tools import build_registry
from pnpfucius.tools.analytics import summarize_markets
from pnpfucius.tools.market import (
    CheckResolutionTool,
    CreateMarketFromSourceTool,
    CreateMarketTool,
    GenerateMarketTool,
    ListMarketsTool,
)
from pnpfucius.tools.registry import ToolRegistry
from pnpfucius.tools.trading import BuyTokensTool, GetMarketPricesTool


class _FakeBackend(MarketBackend):
    network = "devnet"

    def __init__(self, markets: list[dict[str, Any]] | None = None):
        self.markets = markets or []
        self.created: list[tuple[str, int, float, str]] = []
        self.sourced: list[dict[str, Any]] = []
        self.trades: list[tuple[str, str, str, float]] = []

    async def create_market(self, question, duration_days, liquidity_usdc, market_type="amm"):
        self.created.append((question, duration_days, liquidity_usdc, market_type))
        return {"market": "Mkt111", "signature": "Sig222"}

    async def create_market_from_source(self, question, source_url, source_type, duration_days, liquidity_usdc):
        self.sourced.append({"question": question, "source_url": source_url, "source_type": source_type})
        return {"market": "Src111", "signature": "Sig333"}

    async def list_markets(self, status="all", category=None, limit=10):
        return list(self.markets)

    async def get_market_info(self, address):
        for market in self.markets:
            if market.get("address") == address:
                return dict(market)
        return {}

    async def get_prices(self, address):
        return {"yes_price": 0.62, "no_price": 0.38}

    async def get_balances(self, address):
        return {"yes": 10, "no": 0}

    async def buy(self, address, side, amount_usdc):
        self.trades.append(("buy", address, side, amount_usdc))
        return {"signature": "BuySig"}

    async def sell(self, address, side, amount):
        self.trades.append(("sell", address, side, amount))
        return {"signature": "SellSig"}

    async def redeem(self, address):
        return {"signature": "RedeemSig"}

    async def claim_refund(self, address):
        return {"signature": "RefundSig"}


class _JsonProvider(LLMProvider):
    def __init__(self, reply: dict[str, Any]):
        self.reply = reply
        self.prompts: list[str] = []

    async def stream(self, system, messages, tools=None, max_tokens=None):
        if False:
            yield None

    async def complete(self, system, prompt, max_tokens=None, model=None):
        self.prompts.append(prompt)
        return "Here you go:\n```json\n" + json.dumps(self.reply) + "\n```"


def _registry(*tools) -> ToolRegistry:
    registry = ToolRegistry()
    for tool in tools:
        registry.register(tool)
    registry.freeze()
    return registry


@pytest.mark.asyncio
async def test_create_market_applies_defaults_and_reports_network():
    backend = _FakeBackend()
    registry = _registry(CreateMarketTool(backend, MarketConfig(default_liquidity_usdc=2.5)))

    result = await registry.execute("create_market", {"question": "  Will GDPR fines exceed 1B EUR in 2026?  "})

    assert result.ok
    assert backend.created == [("Will GDPR fines exceed 1B EUR in 2026?", 30, 2.5, "amm")]
    assert result.data["market"] == "Mkt111"
    assert result.data["signature"] == "Sig222"
    assert result.data["network"] == "devnet"


@pytest.mark.asyncio
async def test_create_market_rejects_non_positive_liquidity():
    backend = _FakeBackend()
    registry = _registry(CreateMarketTool(backend))

    result = await registry.execute("create_market", {"question": "Q?", "liquidity_usdc": -1})

    assert result.error == "liquidity_usdc must be positive"
    assert backend.created == []


@pytest.mark.parametrize(
    "url, expected",
    [
        ("https://x.com/someone/status/1", "twitter"),
        ("https://youtu.be/abc", "youtube"),
        ("https://defillama.com/protocol/foo", "defi"),
        ("https://example.org/article", "standard"),
    ],
)
def test_detect_source_type(url, expected):
    assert CreateMarketFromSourceTool.detect_source_type(url) == expected


@pytest.mark.asyncio
async def test_create_market_from_source_infers_type():
    backend = _FakeBackend()
    registry = _registry(CreateMarketFromSourceTool(backend))

    result = await registry.execute(
        "create_market_from_source",
        {"question": "Will the video hit 1M views?", "source_url": "https://www.youtube.com/watch?v=1"},
    )

    assert result.data["source_type"] == "youtube"
    assert backend.sourced[0]["source_type"] == "youtube"


@pytest.mark.asyncio
async def test_list_markets_filters_locally():
    backend = _FakeBackend(
        [
            {"address": "a", "status": "active", "category": "regulation"},
            {"address": "b", "status": "resolved", "category": "regulation"},
            {"address": "c", "status": "active", "category": "technology"},
        ]
    )
    registry = _registry(ListMarketsTool(backend))

    result = await registry.execute("list_markets", {"status": "active", "category": "regulation"})

    assert [m["address"] for m in result.data["markets"]] == ["a"]
    assert result.data["filters"] == {"status": "active", "category": "regulation"}


@pytest.mark.asyncio
async def test_generate_market_caps_count_at_five():
    provider = _JsonProvider({"question": "Will Signal reach 100M users?", "category": "adoption"})
    registry = _registry(GenerateMarketTool(MarketGenerator(provider)))

    single = await registry.execute("generate_market", {"topic": "Signal"})
    many = await registry.execute("generate_market", {"count": 9})

    assert single.data["question"] == "Will Signal reach 100M users?"
    assert single.data["category_name"] == "Privacy Adoption"
    assert single.data["topic"] == "Signal"
    assert many.data["count"] == 5
    assert len(provider.prompts) == 6


@pytest.mark.asyncio
async def test_check_resolution_uses_market_question():
    backend = _FakeBackend([{"address": "m1", "question": "Will the EU pass chat control?", "duration_days": 30}])
    provider = _JsonProvider(
        {"canResolve": True, "outcome": "no", "confidence": 1.7, "sources": ["eur-lex"], "suggestedAction": "resolve_no"}
    )
    registry = _registry(CheckResolutionTool(backend, ResolutionAnalyzer(provider)))

    result = await registry.execute("check_resolution", {"address": "m1"})
    missing = await registry.execute("check_resolution", {"address": "nope"})

    assert result.data["can_resolve"] is True
    assert result.data["confidence"] == 1.0
    assert result.data["suggested_action"] == "resolve_no"
    assert "Will the EU pass chat control?" in provider.prompts[0]
    assert missing.error == "Market not found: nope"


@pytest.mark.asyncio
async def test_trading_tools_validate_side_and_amount():
    backend = _FakeBackend()
    registry = _registry(BuyTokensTool(backend), GetMarketPricesTool(backend))

    bought = await registry.execute("buy_tokens", {"address": "m1", "side": "yes", "amount_usdc": 5})
    bad_side = await registry.execute("buy_tokens", {"address": "m1", "side": "maybe", "amount_usdc": 5})
    prices = await registry.execute("get_market_prices", {"address": "m1"})

    assert bought.data["signature"] == "BuySig"
    assert backend.trades == [("buy", "m1", "yes", 5)]
    assert not bad_side.ok
    assert prices.data == {"market": "m1", "yes_price": 0.62, "no_price": 0.38}


def test_summarize_markets_by_period():
    now = datetime(2026, 3, 10, tzinfo=timezone.utc)
    markets = [
        {"status": "active", "category": "regulation", "created_at": "2026-03-09T12:00:00Z", "liquidity_usdc": 10},
        {"status": "resolved", "category": "technology", "created_at": "2026-03-01T00:00:00Z", "liquidity_usdc": 5},
        {"status": "active", "category": "regulation", "created_at": None},
    ]

    week = summarize_markets(markets, "7d", now=now)
    everything = summarize_markets(markets, "all", now=now)

    assert week["total_markets"] == 1
    assert week["by_category"] == {"regulation": 1}
    assert everything["total_markets"] == 3
    assert everything["active_markets"] == 2
    assert everything["resolved_markets"] == 1
    assert everything["total_liquidity_usdc"] == 15.0


def test_build_registry_respects_enabled_categories(tmp_path):
    config = Config()
    config.tools.enabled = ["analytics", "file"]
    config.tools.workspace = str(tmp_path)

    registry = build_registry(config, _JsonProvider({}), _FakeBackend(), score_cache=ScoreCache())

    assert registry.frozen
    assert registry.list_tools() == ["get_stats", "get_categories", "read_file", "write_file", "list_files"]


def test_build_registry_registers_every_category(tmp_path):
    config = Config()
    config.tools.workspace = str(tmp_path)

    registry = build_registry(config, _JsonProvider({}), _FakeBackend())

    assert set(registry.tools_by_category()) == {"market", "trading", "news", "analytics", "file", "system"}
    assert "create_market" in registry.list_tools()
    assert "run_command" in registry.list_tools()

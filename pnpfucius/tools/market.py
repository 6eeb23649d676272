"""Market generation, creation and lookup tools."""

from typing import Any

from pnpfucius.config import MarketConfig
from pnpfucius.insights import MarketGenerator, ResolutionAnalyzer
from pnpfucius.logging import get_logger
from pnpfucius.market import MarketBackend
from pnpfucius.tools.registry import Tool

log = get_logger(__name__)

MARKET_CATEGORIES = ["regulation", "technology", "adoption", "events"]
_ADDRESS_PARAMETERS = {
    "type": "object",
    "properties": {
        "address": {
            "type": "string",
            "description": "Market address on Solana",
        },
    },
    "required": ["address"],
}


class MarketTool(Tool):
    """Base for tools backed by the market gateway."""

    category = "market"
    timeout_seconds = 90.0

    def __init__(self, backend: MarketBackend, config: MarketConfig | None = None):
        self.backend = backend
        self.config = config or MarketConfig()


class GenerateMarketTool(Tool):
    """Generate market ideas with the LLM."""

    name = "generate_market"
    description = (
        "Generate a privacy-themed prediction market question using AI. Returns a market idea "
        "with question, category, suggested duration, and liquidity."
    )
    category = "market"
    timeout_seconds = 120.0
    parameters = {
        "type": "object",
        "properties": {
            "topic": {
                "type": "string",
                "description": 'Optional topic (e.g., "GDPR enforcement", "Tornado Cash")',
            },
            "category": {
                "type": "string",
                "enum": MARKET_CATEGORIES,
                "description": "Market category to focus on",
            },
            "count": {
                "type": "number",
                "description": "Number of market ideas to generate (default: 1, max: 5)",
            },
        },
    }

    def __init__(self, generator: MarketGenerator):
        self.generator = generator

    async def execute(
        self,
        topic: str | None = None,
        category: str | None = None,
        count: float | None = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        topic = topic or "privacy technology"
        total = max(1, min(int(count or 1), 5))
        if total == 1:
            return await self.generator.from_topic(topic, category)

        markets = [await self.generator.from_topic(topic, category) for _ in range(total)]
        return {"markets": markets, "count": len(markets)}


class CreateMarketTool(MarketTool):
    """Create a market through the gateway."""

    name = "create_market"
    description = "Create a prediction market on Solana. Returns market address and transaction signature."
    parameters = {
        "type": "object",
        "properties": {
            "question": {
                "type": "string",
                "description": "The YES/NO market question",
            },
            "duration_days": {
                "type": "number",
                "description": "Market duration in days (default: 30)",
            },
            "liquidity_usdc": {
                "type": "number",
                "description": "Initial liquidity in USDC (default: 1)",
            },
            "type": {
                "type": "string",
                "enum": ["amm", "p2p"],
                "description": "Market type (default: amm)",
            },
        },
        "required": ["question"],
    }

    async def execute(
        self,
        question: str,
        duration_days: float | None = None,
        liquidity_usdc: float | None = None,
        type: str | None = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        question = question.strip()
        if not question:
            raise ValueError("Question must not be empty")
        days = int(duration_days or self.config.default_duration_days)
        liquidity = liquidity_usdc or self.config.default_liquidity_usdc
        market_type = type or "amm"
        if days <= 0:
            raise ValueError("duration_days must be positive")
        if liquidity <= 0:
            raise ValueError("liquidity_usdc must be positive")

        result = await self.backend.create_market(question, days, liquidity, market_type)
        log.info("Market created", market=result.get("market"), network=self.backend.network)
        return {
            "success": True,
            "market": result.get("market"),
            "signature": result.get("signature"),
            "question": question,
            "duration_days": days,
            "liquidity_usdc": liquidity,
            "type": market_type,
            "network": self.backend.network,
        }


class CreateMarketFromSourceTool(MarketTool):
    """Create a market that resolves from an external source URL."""

    name = "create_market_from_source"
    description = (
        "Create a prediction market tied to a source URL (tweet, video, DeFi dashboard or article) "
        "that will be used for resolution."
    )
    parameters = {
        "type": "object",
        "properties": {
            "question": {
                "type": "string",
                "description": "The YES/NO market question",
            },
            "source_url": {
                "type": "string",
                "description": "URL the market resolves against",
            },
            "source_type": {
                "type": "string",
                "enum": ["twitter", "youtube", "defi", "standard"],
                "description": "Kind of source (default: inferred from the URL)",
            },
            "duration_days": {
                "type": "number",
                "description": "Market duration in days (default: 30)",
            },
            "liquidity_usdc": {
                "type": "number",
                "description": "Initial liquidity in USDC (default: 1)",
            },
        },
        "required": ["question", "source_url"],
    }

    @staticmethod
    def detect_source_type(url: str) -> str:
        lowered = url.lower()
        if "twitter.com" in lowered or "x.com/" in lowered:
            return "twitter"
        if "youtube.com" in lowered or "youtu.be" in lowered:
            return "youtube"
        if any(host in lowered for host in ("defillama", "dune.com", "solscan", "birdeye")):
            return "defi"
        return "standard"

    async def execute(
        self,
        question: str,
        source_url: str,
        source_type: str | None = None,
        duration_days: float | None = None,
        liquidity_usdc: float | None = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        kind = source_type or self.detect_source_type(source_url)
        days = int(duration_days or self.config.default_duration_days)
        liquidity = liquidity_usdc or self.config.default_liquidity_usdc

        result = await self.backend.create_market_from_source(question, source_url, kind, days, liquidity)
        return {
            "success": True,
            "market": result.get("market"),
            "signature": result.get("signature"),
            "question": question,
            "source_url": source_url,
            "source_type": kind,
            "duration_days": days,
            "liquidity_usdc": liquidity,
            "network": self.backend.network,
        }


class ListMarketsTool(MarketTool):
    """List markets with optional filters."""

    name = "list_markets"
    description = "List existing prediction markets with optional filters"
    parameters = {
        "type": "object",
        "properties": {
            "status": {
                "type": "string",
                "enum": ["active", "resolved", "all"],
                "description": "Filter by market status",
            },
            "category": {
                "type": "string",
                "description": "Filter by category",
            },
            "limit": {
                "type": "number",
                "description": "Max markets to return (default: 10)",
            },
        },
    }

    async def execute(
        self,
        status: str | None = None,
        category: str | None = None,
        limit: float | None = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        status = status or "all"
        max_items = max(1, int(limit or 10))
        markets = await self.backend.list_markets(status=status, category=category, limit=max_items)

        # Gateways may ignore filters; apply them again locally.
        if status != "all":
            markets = [m for m in markets if m.get("status") == status]
        if category:
            markets = [m for m in markets if m.get("category") == category]
        markets = markets[:max_items]

        return {
            "markets": markets,
            "total": len(markets),
            "filters": {"status": status, "category": category or "all"},
        }


class GetMarketInfoTool(MarketTool):
    """Fetch details of one market."""

    name = "get_market_info"
    description = "Get detailed information about a specific market"
    parameters = _ADDRESS_PARAMETERS

    async def execute(self, address: str, **kwargs: Any) -> dict[str, Any]:
        info = await self.backend.get_market_info(address)
        return {"address": address, **info}


class CheckResolutionTool(MarketTool):
    """Ask the LLM whether a market can be resolved."""

    name = "check_resolution"
    description = "Use AI to analyze if a market can be resolved based on current information"
    parameters = _ADDRESS_PARAMETERS
    timeout_seconds = 120.0

    def __init__(self, backend: MarketBackend, analyzer: ResolutionAnalyzer):
        super().__init__(backend)
        self.analyzer = analyzer

    async def execute(self, address: str, **kwargs: Any) -> dict[str, Any]:
        market = await self.backend.get_market_info(address)
        if not market.get("question"):
            raise LookupError(f"Market not found: {address}")
        analysis = await self.analyzer.analyze(market)
        return {"address": address, **analysis}

"""Market statistics and category tools."""

from datetime import datetime, timedelta, timezone
from typing import Any

from pnpfucius.categories import list_categories
from pnpfucius.market import MarketBackend
from pnpfucius.tools.registry import Tool

PERIODS: dict[str, timedelta] = {
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
}


def _parse_timestamp(value: Any) -> datetime | None:
    """Accept ISO strings or epoch seconds/milliseconds."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = value / 1000.0 if value > 1e11 else float(value)
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def summarize_markets(
    markets: list[dict[str, Any]],
    period: str = "all",
    now: datetime | None = None,
) -> dict[str, Any]:
    """Count markets by status and category within a period."""
    now = now or datetime.now(timezone.utc)
    stats: dict[str, Any] = {"period": period}

    if period in PERIODS:
        cutoff = now - PERIODS[period]
        stats["period_start"] = cutoff.isoformat()
        markets = [
            m for m in markets
            if (created := _parse_timestamp(m.get("created_at"))) is not None and created >= cutoff
        ]

    by_status: dict[str, int] = {}
    by_category: dict[str, int] = {}
    total_liquidity = 0.0
    for market in markets:
        status = str(market.get("status") or "unknown")
        by_status[status] = by_status.get(status, 0) + 1
        category = str(market.get("category") or "uncategorized")
        by_category[category] = by_category.get(category, 0) + 1
        try:
            total_liquidity += float(market.get("liquidity_usdc") or 0)
        except (TypeError, ValueError):
            pass

    stats.update({
        "total_markets": len(markets),
        "active_markets": by_status.get("active", 0),
        "resolved_markets": by_status.get("resolved", 0),
        "by_status": by_status,
        "by_category": by_category,
        "total_liquidity_usdc": round(total_liquidity, 6),
    })
    return stats


class GetStatsTool(Tool):
    """Aggregate statistics over the gateway's market list."""

    name = "get_stats"
    description = "Get market statistics and analytics"
    category = "analytics"
    timeout_seconds = 60.0
    parameters = {
        "type": "object",
        "properties": {
            "period": {
                "type": "string",
                "enum": ["24h", "7d", "30d", "all"],
                "description": "Time period for statistics (default: all)",
            },
        },
    }

    def __init__(self, backend: MarketBackend, max_markets: int = 1000):
        self.backend = backend
        self.max_markets = max_markets

    async def execute(self, period: str | None = None, **kwargs: Any) -> dict[str, Any]:
        markets = await self.backend.list_markets(status="all", limit=self.max_markets)
        return summarize_markets(markets, period or "all")


class GetCategoriesTool(Tool):
    """List the privacy-market categories."""

    name = "get_categories"
    description = "List available market categories with their templates and weights"
    category = "analytics"
    parameters = {"type": "object", "properties": {}}

    async def execute(self, **kwargs: Any) -> dict[str, Any]:
        categories = list_categories()
        return {
            "categories": [
                {
                    "id": cat.id,
                    "name": cat.name,
                    "description": cat.description,
                    "weight": cat.weight,
                    "urgency": cat.urgency,
                    "template_count": len(cat.templates),
                    "examples": cat.templates[:2],
                }
                for cat in categories
            ],
            "total": len(categories),
        }

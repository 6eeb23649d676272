"""Tools package for Pnpfucius."""

from pnpfucius.config import Config
from pnpfucius.insights import MarketGenerator, NewsScorer, ResolutionAnalyzer, ScoreCache
from pnpfucius.llm import LLMProvider
from pnpfucius.logging import get_logger
from pnpfucius.market import MarketBackend
from pnpfucius.news_feed import NewsFeedReader
from pnpfucius.tools.analytics import GetCategoriesTool, GetStatsTool
from pnpfucius.tools.files import ListFilesTool, ReadFileTool, WriteFileTool
from pnpfucius.tools.market import (
    CheckResolutionTool,
    CreateMarketFromSourceTool,
    CreateMarketTool,
    GenerateMarketTool,
    GetMarketInfoTool,
    ListMarketsTool,
)
from pnpfucius.tools.news import FetchNewsTool, GenerateFromNewsTool, ScoreNewsTool
from pnpfucius.tools.registry import Tool, ToolInvocationResult, ToolRegistry
from pnpfucius.tools.shell import RunCommandTool
from pnpfucius.tools.trading import (
    BuyTokensTool,
    ClaimRefundTool,
    GetBalancesTool,
    GetMarketPricesTool,
    RedeemPositionTool,
    SellTokensTool,
)

log = get_logger(__name__)


def build_registry(
    config: Config,
    provider: LLMProvider,
    backend: MarketBackend,
    score_cache: ScoreCache | None = None,
    news_reader: NewsFeedReader | None = None,
) -> ToolRegistry:
    """Register every enabled tool category and freeze the registry."""
    enabled = {name.strip().lower() for name in config.tools.enabled}
    scorer = NewsScorer(provider, cache=score_cache, model=config.news.scoring_model or None)
    generator = MarketGenerator(provider, model=config.news.generation_model or None)
    workspace = config.resolved_workspace_path()

    groups: dict[str, list[Tool]] = {
        "market": [
            GenerateMarketTool(generator),
            CreateMarketTool(backend, config.market),
            CreateMarketFromSourceTool(backend, config.market),
            ListMarketsTool(backend, config.market),
            GetMarketInfoTool(backend, config.market),
            CheckResolutionTool(backend, ResolutionAnalyzer(provider)),
        ],
        "trading": [
            BuyTokensTool(backend, config.market),
            SellTokensTool(backend, config.market),
            GetMarketPricesTool(backend, config.market),
            GetBalancesTool(backend, config.market),
            RedeemPositionTool(backend, config.market),
            ClaimRefundTool(backend, config.market),
        ],
        "news": [
            ScoreNewsTool(scorer),
            FetchNewsTool(news_reader or NewsFeedReader(config.news), scorer),
            GenerateFromNewsTool(generator),
        ],
        "analytics": [
            GetStatsTool(backend),
            GetCategoriesTool(),
        ],
        "file": [
            ReadFileTool(workspace, config.tools.max_read_bytes),
            WriteFileTool(workspace, config.tools.max_read_bytes),
            ListFilesTool(workspace, config.tools.max_read_bytes),
        ],
        "system": [
            RunCommandTool(config.tools.shell, workspace),
        ],
    }

    registry = ToolRegistry()
    for category, tools in groups.items():
        if category not in enabled:
            log.debug("Tool category disabled", category=category)
            continue
        for tool in tools:
            registry.register(tool)
    registry.freeze()
    log.info("Tool registry ready", tools=len(registry.list_tools()))
    return registry


__all__ = [
    "Tool",
    "ToolInvocationResult",
    "ToolRegistry",
    "build_registry",
]

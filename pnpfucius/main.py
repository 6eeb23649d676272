"""Main entry point for Pnpfucius."""

import asyncio
import sys
from pathlib import Path

from pnpfucius.agent import Agent
from pnpfucius.cli import TerminalUI
from pnpfucius.commands import COMMAND_LIST, CommandContext, CommandKind, preprocess
from pnpfucius.config import Config, get_config, set_config
from pnpfucius.exceptions import ConfigurationError, PnpfuciusError
from pnpfucius.insights import ScoreCache
from pnpfucius.instructions import get_instruction_loader
from pnpfucius.llm import LLMProvider, create_provider, get_provider, set_provider
from pnpfucius.logging import configure_logging, get_logger
from pnpfucius.market import HttpMarketBackend
from pnpfucius.news_feed import NewsFeedReader
from pnpfucius.session import Session
from pnpfucius.tools import build_registry

log = get_logger(__name__)


def load_config(config: str = "", model: str = "", provider: str = "", verbose: bool = False) -> Config:
    """Load configuration and apply command-line overrides."""
    if config:
        path = Path(config).expanduser()
        if not path.exists():
            raise ConfigurationError(f"Config file not found: {path}")
        cfg = Config.from_yaml(path)
    else:
        cfg = Config.load()

    if model:
        cfg.model.model = model
    if provider:
        cfg.model.provider = provider
    if verbose:
        cfg.agent.verbose = True
        cfg.logging.level = "DEBUG"
    return cfg


def build_provider(cfg: Config) -> LLMProvider:
    """Create the model provider, failing before any turn if credentials are missing."""
    provider_name = cfg.model.provider.strip().lower()
    api_key = cfg.model.resolved_api_key()
    if provider_name in {"anthropic", "claude"} and not api_key:
        raise ConfigurationError(
            "ANTHROPIC_API_KEY is not set. Export it or set model.api_key in config.yaml."
        )
    try:
        return create_provider(
            provider=cfg.model.provider,
            model=cfg.model.model,
            api_key=api_key or None,
            base_url=cfg.model.base_url or None,
            temperature=cfg.model.temperature,
            max_tokens=cfg.model.max_tokens,
        )
    except ValueError as e:
        raise ConfigurationError(str(e)) from e


def main(
    config: str = "",
    model: str = "",
    provider: str = "",
    verbose: bool = False,
) -> None:
    """Start a Pnpfucius interactive session."""
    try:
        cfg = load_config(config, model, provider, verbose)
    except (ConfigurationError, ValueError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    set_config(cfg)
    configure_logging()

    try:
        llm = build_provider(cfg)
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    set_provider(llm)

    try:
        get_instruction_loader().ensure_complete()
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        asyncio.run(run_interactive())
    except KeyboardInterrupt:
        log.info("Shutting down...")
        sys.exit(0)
    except Exception as e:
        log.error("Fatal error", error=str(e))
        sys.exit(1)


async def run_interactive() -> None:
    """Run the interactive agent loop."""
    cfg = get_config()
    provider = get_provider()
    loader = get_instruction_loader()
    ui = TerminalUI(cfg)
    ui.set_commands(COMMAND_LIST)

    backend = HttpMarketBackend(cfg.market)
    news_reader = NewsFeedReader(cfg.news)
    score_cache = ScoreCache()
    tools = build_registry(cfg, provider, backend, score_cache=score_cache, news_reader=news_reader)
    session = Session(
        model=cfg.model.model,
        system_prompt=loader.load("system_prompt.md"),
        verbose=cfg.agent.verbose,
    )
    agent = Agent(
        provider=provider,
        tools=tools,
        session=session,
        text_callback=ui.print_streaming,
        tool_start_callback=ui.print_tool_call,
        tool_result_callback=ui.print_tool_result,
        status_callback=ui.print_status,
        rate_limit_cooldown=cfg.agent.rate_limit_cooldown_seconds,
        max_rate_limit_retries=cfg.agent.max_rate_limit_retries,
        max_iterations=cfg.agent.max_iterations,
    )
    ctx = CommandContext(ui=ui, tools=tools, session=session, config=cfg, score_cache=score_cache)

    ui.print_welcome(loader)
    try:
        while True:
            try:
                user_input = ui.prompt("You: ")
            except (KeyboardInterrupt, EOFError):
                log.info("Input closed")
                break

            if not user_input.strip():
                continue

            outcome = await preprocess(user_input, ctx)
            if outcome.exit_requested:
                break
            if outcome.kind is CommandKind.HANDLED:
                continue

            ui.begin_assistant_stream()
            try:
                await agent.chat(outcome.prompt)
            except PnpfuciusError as e:
                log.error("Turn failed", error=str(e))
                ui.print_error(str(e))
            finally:
                ui.end_assistant_stream()

            if cfg.agent.verbose:
                usage = agent.last_usage
                ui.print_hint(
                    f"tokens: {usage['prompt_tokens']} in / {usage['completion_tokens']} out"
                )
    finally:
        ui.print_goodbye()
        await backend.close()
        await news_reader.close()
        await provider.close()


def version() -> None:
    """Show version information."""
    from pnpfucius import __version__
    print(f"Pnpfucius v{__version__}")


def run_cli() -> None:
    """Console-script entry point."""
    import typer

    cli = typer.Typer(help="Pnpfucius - privacy prediction markets from the terminal")

    @cli.command()
    def run(
        config: str = typer.Option("", "-c", "--config", help="Path to config file"),
        model: str = typer.Option("", "-m", "--model", help="Override model"),
        provider: str = typer.Option("", "-p", "--provider", help="Override provider"),
        verbose: bool = typer.Option(False, "-v", "--verbose", help="Debug logging"),
    ) -> None:
        main(config, model, provider, verbose)

    @cli.command("version")
    def show_version() -> None:
        version()

    cli()


if __name__ == "__main__":
    run_cli()

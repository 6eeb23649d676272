"""Slash-command preprocessing for the interactive console."""

from __future__ import annotations

import shlex
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from pnpfucius.config import Config
from pnpfucius.insights import ScoreCache
from pnpfucius.logging import get_logger
from pnpfucius.session import Session
from pnpfucius.tools.registry import ToolRegistry

if TYPE_CHECKING:
    from pnpfucius.cli import TerminalUI

log = get_logger(__name__)

COMMAND_SIGIL = "/"

COMMAND_LIST: list[tuple[str, str]] = [
    ("/help", "Show available commands"),
    ("/generate [n]", "Generate n market ideas"),
    ("/create [question]", "Create a new market"),
    ("/stats [period]", "Show market statistics (24h, 7d, 30d, all)"),
    ("/news [limit]", "Fetch recent privacy news"),
    ("/markets [status]", "List your markets (active, resolved, all)"),
    ("/categories", "Show market categories"),
    ("/score <headline>", "Score news headline"),
    ("/prices <address>", "Show market prices"),
    ("/balances <address>", "Show your token balances"),
    ("/info <address>", "Show market details"),
    ("/tools", "Show available tools"),
    ("/config", "Show configuration"),
    ("/clear", "Clear screen and history"),
    ("/exit", "Exit Pnpfucius"),
]


class CommandKind(str, Enum):
    HANDLED = "handled"
    FORWARDED = "forwarded"
    NOT_A_COMMAND = "not_a_command"


@dataclass
class CommandOutcome:
    """Result of preprocessing one input line."""

    kind: CommandKind
    prompt: str = ""
    exit_requested: bool = False

    @classmethod
    def handled(cls, exit_requested: bool = False) -> "CommandOutcome":
        return cls(kind=CommandKind.HANDLED, exit_requested=exit_requested)

    @classmethod
    def forwarded(cls, prompt: str) -> "CommandOutcome":
        return cls(kind=CommandKind.FORWARDED, prompt=prompt)

    @classmethod
    def not_a_command(cls, text: str) -> "CommandOutcome":
        return cls(kind=CommandKind.NOT_A_COMMAND, prompt=text)


@dataclass
class CommandContext:
    """Collaborators a slash command may touch."""

    ui: TerminalUI
    tools: ToolRegistry
    session: Session
    config: Config
    score_cache: ScoreCache | None = None


def _split_args(raw_args: str) -> list[str]:
    try:
        return shlex.split(raw_args)
    except ValueError:
        return raw_args.split()


def _int_arg(args: list[str], default: int) -> int:
    if not args:
        return default
    try:
        return max(1, int(args[0]))
    except ValueError:
        return default


async def _run_tool(ctx: CommandContext, name: str, arguments: dict[str, Any]) -> CommandOutcome:
    """Invoke a tool directly and render its result."""
    ctx.ui.print_tool_call(name, arguments)
    result = await ctx.tools.execute(name, arguments)
    ctx.ui.print_tool_result(name, result)
    return CommandOutcome.handled()


async def preprocess(raw_input: str, ctx: CommandContext) -> CommandOutcome:
    """Classify one input line as a local action, a forwarded prompt or chat.

    Lines without the sigil pass through untouched. Unknown commands
    print a diagnostic and never reach the model.
    """
    text = raw_input.strip()
    if not text.startswith(COMMAND_SIGIL):
        return CommandOutcome.not_a_command(raw_input)

    parts = text[len(COMMAND_SIGIL):].split(None, 1)
    if not parts:
        ctx.ui.print_warning("Empty command. Type /help for available commands.")
        return CommandOutcome.handled()

    command = parts[0].lower()
    arg_string = parts[1].strip() if len(parts) > 1 else ""
    args = _split_args(arg_string)
    log.debug("Slash command", command=command, args=arg_string)

    if command in ("help", "h", "?"):
        ctx.ui.print_help(COMMAND_LIST)
        return CommandOutcome.handled()

    elif command in ("exit", "quit", "q"):
        return CommandOutcome.handled(exit_requested=True)

    elif command in ("clear", "cls"):
        ctx.session.clear()
        if ctx.score_cache is not None:
            ctx.score_cache.clear()
        ctx.ui.clear_screen()
        ctx.ui.print_success("Conversation cleared.")
        return CommandOutcome.handled()

    elif command == "config":
        ctx.ui.print_config(ctx.config)
        return CommandOutcome.handled()

    elif command == "tools":
        ctx.ui.print_tools(ctx.tools.tools_by_category())
        return CommandOutcome.handled()

    elif command in ("generate", "gen"):
        count = _int_arg(args, 3)
        return CommandOutcome.forwarded(
            f"Generate {count} privacy-themed prediction market ideas. "
            "Be creative and focus on current events."
        )

    elif command == "create":
        if arg_string:
            return await _run_tool(
                ctx,
                "create_market",
                {
                    "question": arg_string,
                    "duration_days": ctx.config.market.default_duration_days,
                    "liquidity_usdc": ctx.config.market.default_liquidity_usdc,
                },
            )
        return CommandOutcome.forwarded(
            "Help me create a new prediction market. "
            "Ask me what topic I want to create a market about."
        )

    elif command == "stats":
        period = args[0] if args else "7d"
        return CommandOutcome.forwarded(f"Show me market statistics for the {period} period.")

    elif command == "news":
        limit = _int_arg(args, 5)
        return CommandOutcome.forwarded(
            f"Fetch and score the top {limit} recent privacy-related news items for market potential."
        )

    elif command in ("markets", "list"):
        status = args[0] if args else "all"
        return CommandOutcome.forwarded(f"List my {status} markets.")

    elif command in ("categories", "cats"):
        return await _run_tool(ctx, "get_categories", {})

    elif command == "score":
        if not arg_string:
            ctx.ui.print_warning("Usage: /score <news headline>")
            return CommandOutcome.handled()
        return CommandOutcome.forwarded(
            f'Score this news headline for privacy market relevance: "{arg_string}"'
        )

    elif command in ("prices", "balances", "info"):
        if not args:
            ctx.ui.print_warning(f"Usage: /{command} <market address>")
            return CommandOutcome.handled()
        tool_name = {
            "prices": "get_market_prices",
            "balances": "get_balances",
            "info": "get_market_info",
        }[command]
        return await _run_tool(ctx, tool_name, {"address": args[0]})

    else:
        ctx.ui.print_warning(f"Unknown command: /{command}")
        ctx.ui.print_hint("Type /help for available commands.")
        return CommandOutcome.handled()

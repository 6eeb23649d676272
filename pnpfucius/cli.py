"""Terminal rendering for Pnpfucius."""

import atexit
import json
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from pnpfucius import __version__
from pnpfucius.config import Config, get_config
from pnpfucius.instructions import InstructionLoader, get_instruction_loader
from pnpfucius.logging import get_logger
from pnpfucius.tools.registry import Tool, ToolInvocationResult

log = get_logger(__name__)

_HISTORY_FILE = Path("~/.pnpfucius/history").expanduser()
_MAX_RESULT_CHARS = 1200


class TerminalUI:
    """Console renderer built on rich."""

    def __init__(
        self,
        config: Config | None = None,
        console: Console | None = None,
        enable_history: bool = True,
    ):
        self.config = config or get_config()
        self.console = console or Console(no_color=not self.config.ui.colors, highlight=False)
        self._readline = None
        self._assistant_output_active = False
        self._special_commands: list[str] = []
        if enable_history:
            self._setup_readline()

    def _setup_readline(self) -> None:
        """Set up line editing, history, and command completion."""
        try:
            import readline
        except ImportError:
            return

        self._readline = readline
        try:
            _HISTORY_FILE.parent.mkdir(parents=True, exist_ok=True)
            if _HISTORY_FILE.exists():
                readline.read_history_file(str(_HISTORY_FILE))
            readline.set_history_length(1000)
            if hasattr(readline, "set_auto_history"):
                readline.set_auto_history(False)
            readline.parse_and_bind("tab: complete")
            readline.set_completer(self._complete_special_command)
            atexit.register(self._save_history)
        except OSError as e:
            log.debug("Readline setup failed", error=str(e))

    def _save_history(self) -> None:
        """Persist readline history to disk."""
        if self._readline is None:
            return
        try:
            self._readline.write_history_file(str(_HISTORY_FILE))
        except OSError as e:
            log.debug("Failed to save history", error=str(e))

    def _complete_special_command(self, text: str, state: int) -> str | None:
        """Readline completer for slash commands."""
        if not text.startswith("/"):
            return None
        matches = [cmd for cmd in self._special_commands if cmd.startswith(text)]
        if state < len(matches):
            return matches[state]
        return None

    def set_commands(self, commands: list[tuple[str, str]]) -> None:
        """Register slash commands for tab completion."""
        self._special_commands = [usage.split()[0] for usage, _ in commands]

    def print_welcome(self, loader: InstructionLoader | None = None) -> None:
        """Print the startup banner."""
        loader = loader or get_instruction_loader()
        network = self.config.market.network
        network_style = "red" if self.config.market.is_mainnet else "green"
        header = (
            f"[bold cyan]Pnpfucius[/bold cyan] v{__version__}\n"
            f"Privacy prediction markets on Solana  "
            f"[dim]model:[/dim] {escape(self.config.model.model)}  "
            f"[dim]network:[/dim] [{network_style}]{network}[/{network_style}]"
        )
        self.console.print(Panel(header, border_style="cyan"))
        self.console.print(Markdown(loader.load("welcome_message.md")))
        self.console.print()

    def print_help(self, commands: list[tuple[str, str]]) -> None:
        """Print the slash-command list."""
        table = Table(title="Commands", show_header=False, box=None, title_style="bold cyan")
        table.add_column("Command", style="yellow", no_wrap=True)
        table.add_column("Description")
        for usage, description in commands:
            table.add_row(escape(usage), escape(description))
        self.console.print(table)
        self.console.print("[dim]Or just type a message to chat.[/dim]")

    def print_config(self, config: Config) -> None:
        """Print current configuration."""
        network = "[red]mainnet[/red]" if config.market.is_mainnet else "[green]devnet[/green]"
        api_key = "[green]Configured[/green]" if config.model.resolved_api_key() else "[yellow]Not set[/yellow]"
        gateway_key = "[green]Configured[/green]" if config.market.gateway_api_key else "[yellow]Not set[/yellow]"

        table = Table(title="Configuration", show_header=False, box=None, title_style="bold cyan")
        table.add_column("Key", style="dim", no_wrap=True)
        table.add_column("Value")
        table.add_row("Provider", escape(config.model.provider))
        table.add_row("Model", escape(config.model.model))
        table.add_row("API key", api_key)
        table.add_row("Network", network)
        table.add_row("RPC URL", escape(config.market.resolved_rpc_url()))
        table.add_row("Market gateway", escape(config.market.gateway_url))
        table.add_row("Gateway key", gateway_key)
        table.add_row("Collateral", escape(config.market.collateral_token))
        table.add_row("Default liquidity", f"{config.market.default_liquidity_usdc:g} USDC")
        table.add_row("Default duration", f"{config.market.default_duration_days} days")
        table.add_row("Enabled tools", escape(", ".join(config.tools.enabled)))
        self.console.print(table)

    def print_tools(self, grouped: dict[str, list[Tool]]) -> None:
        """Print tools grouped by category."""
        table = Table(title="Available Tools", show_header=True, header_style="bold cyan")
        table.add_column("Category", style="bold", no_wrap=True)
        table.add_column("Tool", style="yellow", no_wrap=True)
        table.add_column("Description", overflow="fold")
        for category, tools in grouped.items():
            for idx, tool in enumerate(tools):
                table.add_row(category.title() if idx == 0 else "", tool.name, escape(tool.description))
        self.console.print(table)

    def print_error(self, error: str) -> None:
        """Print an error message."""
        self._finish_stream_line()
        self.console.print(f"[bold red]Error:[/bold red] {escape(error)}")

    def print_warning(self, warning: str) -> None:
        """Print a warning message."""
        self._finish_stream_line()
        self.console.print(f"[yellow]{escape(warning)}[/yellow]")

    def print_success(self, message: str) -> None:
        """Print success message."""
        self.console.print(f"[green]{escape(message)}[/green]")

    def print_hint(self, message: str) -> None:
        self.console.print(f"[dim]{escape(message)}[/dim]")

    def print_status(self, message: str) -> None:
        """Print a loop notice such as a rate-limit wait."""
        self._finish_stream_line()
        self.console.print(f"[yellow]{escape(message)}[/yellow]")

    def begin_assistant_stream(self) -> None:
        """Start assistant streaming output."""
        self._assistant_output_active = False

    def print_streaming(self, chunk: str) -> None:
        """Print streaming response chunk."""
        if not chunk:
            return
        self._assistant_output_active = True
        self.console.print(chunk, end="", markup=False, highlight=False, soft_wrap=True)

    def _finish_stream_line(self) -> None:
        if self._assistant_output_active:
            self.console.print()
            self._assistant_output_active = False

    def end_assistant_stream(self) -> None:
        """Finish assistant streaming."""
        self._finish_stream_line()
        self.console.print()

    def print_tool_call(self, tool_name: str, arguments: dict[str, Any]) -> None:
        """Print a tool-starting notice."""
        self._finish_stream_line()
        line = f"[cyan]>[/cyan] [bold]{escape(tool_name)}[/bold]"
        if self.config.ui.show_tool_input and arguments:
            line += f" [dim]{escape(json.dumps(arguments, default=str))}[/dim]"
        self.console.print(line)

    def print_tool_result(self, tool_name: str, result: ToolInvocationResult) -> None:
        """Print a tool done/error notice with a compact summary."""
        elapsed = f"[dim]({result.meta.duration_ms} ms)[/dim]"
        if not result.ok:
            self.console.print(f"[red]x[/red] [bold]{escape(tool_name)}[/bold] {elapsed} [red]{escape(result.error or '')}[/red]")
            available = result.data.get("available_tools")
            if available:
                self.console.print(f"  [dim]Available: {escape(', '.join(available))}[/dim]")
            return

        self.console.print(f"[green]v[/green] [bold]{escape(tool_name)}[/bold] {elapsed}")
        data = result.data
        if tool_name in ("create_market", "create_market_from_source"):
            self._print_fields(data, ["market", "signature", "question", "network"])
        elif tool_name == "score_news":
            self._print_fields(data, ["headline", "score", "category", "urgency", "market_potential"])
        elif tool_name == "get_categories":
            self._print_categories(data.get("categories", []))
        elif tool_name in ("buy_tokens", "sell_tokens", "redeem_position", "claim_refund"):
            self._print_fields(data, ["market", "side", "amount_usdc", "amount", "signature"])
        else:
            text = json.dumps(data, indent=2, default=str, ensure_ascii=False)
            if len(text) > _MAX_RESULT_CHARS:
                text = text[:_MAX_RESULT_CHARS] + "\n... [truncated]"
            self.console.print(escape(text), style="dim")

    def _print_fields(self, data: dict[str, Any], keys: list[str]) -> None:
        for key in keys:
            if data.get(key) is None:
                continue
            self.console.print(f"  [dim]{key}:[/dim] {escape(str(data[key]))}")

    def _print_categories(self, categories: list[dict[str, Any]]) -> None:
        table = Table(show_header=True, header_style="bold cyan")
        table.add_column("Category", style="bold", no_wrap=True)
        table.add_column("Weight", justify="right")
        table.add_column("Urgency")
        table.add_column("Example", overflow="fold")
        for cat in categories:
            examples = cat.get("examples") or [""]
            table.add_row(
                escape(str(cat.get("name", ""))),
                f"{float(cat.get('weight', 0)) * 100:.0f}%",
                escape(str(cat.get("urgency", ""))),
                escape(str(examples[0])),
            )
        self.console.print(table)

    def prompt(self, prompt_text: str = "> ") -> str:
        """Prompt for input."""
        value = self.console.input(f"[bold cyan]{escape(prompt_text)}[/bold cyan]")
        if self._readline and value.strip():
            self._readline.add_history(value)
        return value

    def clear_screen(self) -> None:
        """Clear the terminal screen."""
        self.console.clear()

    def print_goodbye(self) -> None:
        self._finish_stream_line()
        self.console.print("\n[cyan]Goodbye![/cyan]")

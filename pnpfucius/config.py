"""Configuration management for Pnpfucius."""

import os
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Paths
DEFAULT_CONFIG_PATH = Path("~/.pnpfucius/config.yaml").expanduser()
LOCAL_CONFIG_FILENAME = "config.yaml"

DEVNET_RPC_URL = "https://api.devnet.solana.com"
MAINNET_RPC_URL = "https://api.mainnet-beta.solana.com"


class ModelConfig(BaseModel):
    """Model configuration."""

    provider: str = "anthropic"
    model: str = "claude-opus-4-5"
    temperature: float = 0.7
    max_tokens: int = 16000
    api_key: str = ""
    base_url: str = ""

    def resolved_api_key(self) -> str:
        """Return configured key, falling back to the provider's env var."""
        if self.api_key:
            return self.api_key
        if self.provider.strip().lower() in {"anthropic", "claude"}:
            return os.environ.get("ANTHROPIC_API_KEY", "")
        return ""


class AgentConfig(BaseModel):
    """Conversation loop configuration."""

    rate_limit_cooldown_seconds: float = 10.0
    max_rate_limit_retries: int = 5
    max_iterations: int = 25
    verbose: bool = False


class MarketConfig(BaseModel):
    """Market backend configuration."""

    network: Literal["devnet", "mainnet"] = "devnet"
    rpc_url: str = ""
    gateway_url: str = "http://127.0.0.1:8787"
    gateway_api_key: str = ""
    collateral_token: str = "USDC"
    default_liquidity_usdc: float = 1.0
    default_duration_days: int = 30
    timeout: float = 60.0

    @property
    def is_mainnet(self) -> bool:
        return self.network == "mainnet"

    def resolved_rpc_url(self) -> str:
        """Return explicit RPC URL or the public endpoint for the network."""
        if self.rpc_url:
            return self.rpc_url
        return MAINNET_RPC_URL if self.is_mainnet else DEVNET_RPC_URL


class NewsConfig(BaseModel):
    """News feed and scoring configuration."""

    feeds: list[str] = [
        "https://www.eff.org/rss/updates.xml",
        "https://feeds.arstechnica.com/arstechnica/tech-policy",
        "https://www.theverge.com/rss/policy/index.xml",
    ]
    scoring_model: str = ""
    generation_model: str = ""
    timeout: float = 20.0
    max_items_per_feed: int = 20


class ShellToolConfig(BaseModel):
    """Shell tool configuration."""

    timeout: int = 30
    blocked: list[str] = [
        "rm -rf /",
        "mkfs",
        ":(){:|:&};:",
    ]


class ToolsConfig(BaseModel):
    """Tools configuration."""

    enabled: list[str] = [
        "market",
        "trading",
        "news",
        "analytics",
        "file",
        "system",
    ]
    workspace: str = "."
    max_read_bytes: int = 200_000
    shell: ShellToolConfig = Field(default_factory=ShellToolConfig)


class UIConfig(BaseModel):
    """UI configuration."""

    colors: bool = True
    show_tool_input: bool = False


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "WARNING"
    format: str = "console"


class Config(BaseSettings):
    """Main configuration for Pnpfucius."""

    model: ModelConfig = Field(default_factory=ModelConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    market: MarketConfig = Field(default_factory=MarketConfig)
    news: NewsConfig = Field(default_factory=NewsConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    ui: UIConfig = Field(default_factory=UIConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="PNP_",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        """Let environment variables override values read from YAML."""
        return env_settings, dotenv_settings, init_settings, file_secret_settings

    @classmethod
    def resolve_default_config_path(cls) -> Path:
        """Resolve default config path with local-first precedence."""
        local_path = Path.cwd() / LOCAL_CONFIG_FILENAME
        if local_path.exists():
            return local_path
        return DEFAULT_CONFIG_PATH

    @classmethod
    def from_yaml(cls, path: Path | str | None = None) -> "Config":
        """Load configuration from YAML file."""
        config_path = Path(path).expanduser() if path else cls.resolve_default_config_path()

        if not config_path.exists():
            return cls()

        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    @classmethod
    def load(cls) -> "Config":
        """Load configuration from YAML; env vars are applied by BaseSettings."""
        return cls.from_yaml()

    def resolved_workspace_path(self, runtime_base: Path | str | None = None) -> Path:
        """Resolve file-tool workspace, anchoring relative paths to runtime base/cwd."""
        raw = Path(self.tools.workspace).expanduser()
        if raw.is_absolute():
            return raw.resolve()
        anchor = Path(runtime_base).expanduser().resolve() if runtime_base is not None else Path.cwd().resolve()
        return (anchor / raw).resolve()


# Global config instance
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.load()
    return _config


def set_config(config: Config) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config

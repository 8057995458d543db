"""Configuration management for ShellPilot."""

from pathlib import Path

import yaml
from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict


# Paths
DEFAULT_CONFIG_PATH = Path("~/.shellpilot/config.yaml").expanduser()
LOCAL_CONFIG_FILENAME = "config.yaml"


class ModelConfig(BaseModel):
    """Model endpoint configuration."""

    provider: str = "openai"
    model: str = "grok-code-fast-1"
    temperature: float = 0.7
    max_tokens: int = 8192
    api_key: str = ""
    base_url: str = ""
    max_tool_rounds: int = 400


class HistoryConfig(BaseModel):
    """Conversation history retention."""

    max_entries: int = 100
    display_size: int = 20

    @model_validator(mode="after")
    def _check_window(self) -> "HistoryConfig":
        """Display window must fit inside the retention cap."""
        if self.max_entries < 1:
            raise ValueError("history.max_entries must be at least 1")
        if self.display_size > self.max_entries:
            raise ValueError("history.display_size cannot exceed history.max_entries")
        return self


class StreamingConfig(BaseModel):
    """Streaming render coalescing."""

    flush_interval_ms: int = 50


class RateLimitConfig(BaseModel):
    """Sliding-window admission for shell commands."""

    max_commands: int = 30
    window_ms: int = 60000


class ShellToolConfig(BaseModel):
    """Shell tool configuration."""

    timeout: int = 30
    max_output_chars: int = 10000
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)


class SearchToolConfig(BaseModel):
    """Search tool configuration."""

    max_results: int = 50
    max_file_bytes: int = 1_000_000


class ToolsConfig(BaseModel):
    """Tools configuration."""

    shell: ShellToolConfig = Field(default_factory=ShellToolConfig)
    search: SearchToolConfig = Field(default_factory=SearchToolConfig)


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "console"


class Config(BaseSettings):
    """Main configuration for ShellPilot."""

    model: ModelConfig = Field(default_factory=ModelConfig)
    history: HistoryConfig = Field(default_factory=HistoryConfig)
    streaming: StreamingConfig = Field(default_factory=StreamingConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="SHELLPILOT_",
        env_file=".env",
        env_nested_delimiter="__",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # YAML values arrive as init kwargs; env and .env override them.
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
        """Load configuration; env vars win over YAML via pydantic-settings."""
        return cls.from_yaml()

    def save(self, path: Path | str | None = None) -> None:
        """Save configuration to YAML file."""
        config_path = Path(path) if path else DEFAULT_CONFIG_PATH
        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = self.model_dump(exclude_none=True)

        with open(config_path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)


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

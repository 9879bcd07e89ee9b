"""Configuration loading with environment variable substitution."""

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field

from parley_core.exceptions import ConfigError

ENV_VAR_PATTERN = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)\}")


def substitute_env_vars(value: Any) -> Any:
    """Recursively substitute ${VAR_NAME} patterns with environment variables."""
    if isinstance(value, str):
        def replace(match: re.Match[str]) -> str:
            var_name = match.group(1)
            env_value = os.environ.get(var_name)
            if env_value is None:
                raise ConfigError(f"Environment variable {var_name} is not set")
            return env_value

        return ENV_VAR_PATTERN.sub(replace, value)
    elif isinstance(value, dict):
        return {k: substitute_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [substitute_env_vars(v) for v in value]
    return value


class ProviderConfig(BaseModel):
    """Settings for one model provider.

    Emptiness of ``api_key`` or ``model`` is not rejected here: whether a
    config is usable is decided by the adapter for its provider kind.
    """

    model_config = ConfigDict(frozen=True)

    provider: str = "openai"  # openai | mock
    api_key: str = ""
    model: str = ""
    base_url: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    provider_specific: dict[str, Any] = Field(default_factory=dict)


class StreamingConfig(BaseModel):
    """Transport and dialect selection settings."""

    connect_timeout_seconds: float = 10.0
    read_timeout_seconds: float | None = None  # None waits forever
    responses_model_prefixes: list[str] = Field(
        default_factory=lambda: ["gpt-5", "gpt-4.1", "o3", "o4"]
    )
    web_search_model_prefixes: list[str] = Field(default_factory=lambda: ["gpt-5"])


class StorageConfig(BaseModel):
    """Message store backend configuration."""

    backend: str = "memory"  # memory | sqlite
    path: str | None = None  # For SQLite


class ServerConfig(BaseModel):
    """HTTP server configuration."""

    host: str = "127.0.0.1"
    port: int = 8080
    cors_origins: list[str] = Field(default_factory=list)


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "json"  # json | text


class Config(BaseModel):
    """Main configuration for parley-core."""

    llm: ProviderConfig = Field(default_factory=ProviderConfig)
    streaming: StreamingConfig = Field(default_factory=StreamingConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_file(cls, path: str | Path) -> "Config":
        """Load configuration from a YAML or JSON file."""
        path = Path(path)
        with path.open() as f:
            if path.suffix in (".yaml", ".yml"):
                data = yaml.safe_load(f)
            else:
                import json
                data = json.load(f)

        # Substitute environment variables
        data = substitute_env_vars(data or {})
        return cls.model_validate(data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Config":
        """Load configuration from a dictionary."""
        data = substitute_env_vars(data)
        return cls.model_validate(data)

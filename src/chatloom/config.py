"""Configuration loader with YAML parsing, env-var interpolation, and Pydantic validation."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

from chatloom.errors import ConfigError


class ProviderConfig(BaseModel):
    provider: str = "openai"  # "openai" | "anthropic" (alias "claude") | "moonshot" | "local"
    model: str = "gpt-4o-mini"
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    top_p: Optional[float] = None
    frequency_penalty: Optional[float] = None
    presence_penalty: Optional[float] = None
    timeout: float = 120.0


class MemoryConfig(BaseModel):
    max_messages: int = 50
    max_tokens: int = 8000  # <= 0 disables token trimming
    enable_summarization: bool = False
    system_prompt_locked: bool = True


class StorageConfig(BaseModel):
    enabled: bool = True
    db_path: str = "./data/chatloom.db"
    recent_ttl_days: int = 7


class AppConfig(BaseModel):
    log_level: str = "INFO"
    log_json: bool = False
    data_dir: str = "./data"
    system_prompt: str = ""
    session_id: Optional[str] = None
    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    memory: MemoryConfig = Field(default_factory=MemoryConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    tools: list[dict[str, Any]] = Field(default_factory=list)

    @field_validator("memory", mode="before")
    @classmethod
    def _memory_shorthand(cls, value: Any) -> Any:
        # `memory: 20` is shorthand for `memory: {max_messages: 20}`
        if isinstance(value, int) and not isinstance(value, bool):
            return {"max_messages": value}
        return value


_ENV_VAR_PATTERN = re.compile(r"\$\{(\w+)\}")


def _interpolate_env_vars(text: str, extra: dict[str, str] | None = None) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        if extra and var_name in extra:
            return extra[var_name]
        value = os.environ.get(var_name)
        if value is None:
            return match.group(0)
        return value

    return _ENV_VAR_PATTERN.sub(_replace, text)


def load_config(config_path: str | Path = "chatloom.yaml", env_path: str | Path = ".env") -> AppConfig:
    """Load and validate configuration from YAML file with env-var interpolation."""
    env_file = Path(env_path)
    if env_file.exists():
        load_dotenv(env_file)

    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    raw_text = config_file.read_text(encoding="utf-8")

    try:
        # First pass: extract data_dir for self-referencing
        raw_data = yaml.safe_load(raw_text) or {}
        if not isinstance(raw_data, dict):
            raise ConfigError(f"Configuration root must be a mapping: {config_file}")
        data_dir = _interpolate_env_vars(str(raw_data.get("data_dir", "./data")))

        # Second pass: interpolate all env vars
        interpolated = _interpolate_env_vars(raw_text, extra={"data_dir": data_dir})
        data = yaml.safe_load(interpolated) or {}
        return AppConfig(**data)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {config_file}: {exc}") from exc
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration in {config_file}: {exc}") from exc

"""Configuration: a pydantic schema wall plus frozen runtime payloads.

Resolution order, lowest to highest: schema defaults, config file (TOML or
JSON), ``CASTOR_*`` environment variables, keyword overrides. Provider API
keys left unset fall back to each provider's standard environment variable.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
import tomllib
from typing import Any, Literal

from dotenv import load_dotenv
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    ValidationError,
    field_validator,
)

from castor.errors import ConfigurationError
from castor.providers.base import ProviderConfig
from castor.retry import RetryPolicy

load_dotenv()

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "CASTOR_CONFIG"

# Provider-specific API key environment variable names, in lookup order.
_API_KEY_ENV_VARS: dict[str, tuple[str, ...]] = {
    "anthropic": ("ANTHROPIC_API_KEY",),
    "openai": ("OPENAI_API_KEY",),
    "gemini": ("GEMINI_API_KEY", "GOOGLE_API_KEY"),
}

DEFAULT_FALLBACK_ORDER = ["anthropic", "openai", "gemini", "mock"]


# --- Schema ---


class ProviderSettings(BaseModel):
    """Per-provider settings; unset values use the provider's defaults."""

    model_config = ConfigDict(extra="forbid")

    api_key: SecretStr | None = None
    base_url: str | None = None
    model: str | None = None
    max_tokens: int | None = Field(default=None, ge=1)
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    timeout_s: float | None = Field(default=None, gt=0)
    enabled: bool = True
    retry_attempts: int = Field(default=2, ge=1)

    @field_validator("api_key", mode="before")
    @classmethod
    def normalize_api_key(cls, v: Any) -> Any:
        """Trim whitespace and map empty strings to None."""
        if isinstance(v, SecretStr):
            v = v.get_secret_value()
        if isinstance(v, str):
            v = v.strip()
            return SecretStr(v) if v else None
        return v


class LLMSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    fallback_order: list[str] = Field(default_factory=lambda: list(DEFAULT_FALLBACK_ORDER))
    #: "lazy" picks one provider up front; "fallback" retries across providers per call.
    strategy: Literal["lazy", "fallback"] = "lazy"
    timeout_s: float = Field(default=30.0, gt=0)
    providers: dict[str, ProviderSettings] = Field(default_factory=dict)

    @field_validator("fallback_order", mode="before")
    @classmethod
    def normalize_order(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.split(",")
        if isinstance(v, list):
            return [str(name).strip().lower() for name in v if str(name).strip()]
        return v


class OrchestrationSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    max_depth: int = Field(default=20, ge=1)
    min_searches: int = Field(default=8, ge=0)
    search_tool: str = Field(default="kbase", min_length=1)
    round_timeout_s: float = Field(default=45.0, gt=0)
    tool_timeout_s: float = Field(default=30.0, gt=0)
    max_tool_output_chars: int = Field(default=8000, ge=100)
    min_answer_chars: int = Field(default=100, ge=0)
    useful_window: int = Field(default=4, ge=1)
    useful_min_message_chars: int = Field(default=200, ge=0)
    useful_min_total_chars: int = Field(default=500, ge=0)


class KnowledgeBaseSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    path: Path = Path("./kbase")
    max_results: int = Field(default=10, ge=1, le=50)
    extensions: list[str] = Field(
        default_factory=lambda: [".md", ".txt", ".rst", ".json", ".yaml", ".yml", ".html"]
    )


class MemorySettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    storage_dir: Path = Path("./agent_memory")
    autosave: bool = True
    max_messages: int = Field(default=100, ge=2)
    keep_recent: int = Field(default=30, ge=1)


class AgentSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = "castor"
    system_prompt: str | None = None


class Settings(BaseModel):
    """Top-level configuration schema."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    llm: LLMSettings = Field(default_factory=LLMSettings)
    orchestration: OrchestrationSettings = Field(default_factory=OrchestrationSettings)
    kbase: KnowledgeBaseSettings = Field(default_factory=KnowledgeBaseSettings)
    memory: MemorySettings = Field(default_factory=MemorySettings)
    agent: AgentSettings = Field(default_factory=AgentSettings)

    def provider_settings(self, name: str) -> ProviderSettings:
        return self.llm.providers.get(name) or ProviderSettings()

    def provider_config(self, name: str) -> ProviderConfig:
        """Resolve the runtime payload for *name*, including its API key."""
        ps = self.provider_settings(name)
        api_key = ps.api_key.get_secret_value() if ps.api_key else resolve_api_key(name)
        return ProviderConfig(
            api_key=api_key,
            model=ps.model,
            base_url=ps.base_url,
            max_tokens=ps.max_tokens,
            temperature=ps.temperature,
            timeout_s=ps.timeout_s,
            retry=RetryPolicy(max_attempts=ps.retry_attempts),
        )


def resolve_api_key(provider: str) -> str | None:
    """Look up *provider*'s API key in its standard environment variables."""
    for env_var in _API_KEY_ENV_VARS.get(provider, ()):
        value = os.environ.get(env_var, "").strip()
        if value:
            return value
    return None


# --- Loading ---


def _read_file(path: Path) -> dict[str, Any]:
    try:
        if path.suffix == ".toml":
            with path.open("rb") as f:
                data: Any = tomllib.load(f)
        else:
            with path.open(encoding="utf-8") as f:
                data = json.load(f)
    except FileNotFoundError as e:
        raise ConfigurationError(
            f"Config file not found: {path}",
            hint=f"Create it or unset {CONFIG_ENV_VAR}.",
        ) from e
    except (tomllib.TOMLDecodeError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Could not parse config file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a table/object")
    # Allow the settings to live under [tool.castor] in a pyproject-style file.
    tool_section = data.get("tool", {})
    if isinstance(tool_section, dict) and isinstance(tool_section.get("castor"), dict):
        return tool_section["castor"]
    return data


# env var -> (section, field)
_ENV_FIELDS: dict[str, tuple[str, str]] = {
    "CASTOR_MAX_DEPTH": ("orchestration", "max_depth"),
    "CASTOR_MIN_SEARCHES": ("orchestration", "min_searches"),
    "CASTOR_SEARCH_TOOL": ("orchestration", "search_tool"),
    "CASTOR_KBASE_PATH": ("kbase", "path"),
    "CASTOR_MEMORY_DIR": ("memory", "storage_dir"),
    "CASTOR_FALLBACK_ORDER": ("llm", "fallback_order"),
    "CASTOR_LLM_STRATEGY": ("llm", "strategy"),
}


def _load_env() -> dict[str, dict[str, Any]]:
    """Collect ``CASTOR_*`` overrides; pydantic coerces the string values."""
    config: dict[str, dict[str, Any]] = {}
    for env_var, (section, field_name) in _ENV_FIELDS.items():
        value = os.environ.get(env_var)
        if value is not None and value.strip():
            config.setdefault(section, {})[field_name] = value.strip()
    return config


def _merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in overlay.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _format_validation_error(exc: ValidationError) -> tuple[str, str]:
    first = exc.errors()[0]
    location = ".".join(str(p) for p in first.get("loc", ()))
    message = f"Invalid configuration at {location or '<root>'}: {first.get('msg')}"
    hint = f"{exc.error_count()} problem(s) found; check the {location or 'top-level'} setting."
    return message, hint


def load_settings(
    path: str | os.PathLike[str] | None = None, **overrides: Any
) -> Settings:
    """Resolve settings from file, environment and keyword overrides.

    Example:
        settings = load_settings("castor.toml", orchestration={"max_depth": 10})
    """
    data: dict[str, Any] = {}
    file_path = path if path is not None else os.environ.get(CONFIG_ENV_VAR)
    if file_path:
        data = _read_file(Path(file_path))
        logger.debug("Loaded config file %s", file_path)

    data = _merge(data, _load_env())
    data = _merge(data, overrides)

    try:
        return Settings.model_validate(data)
    except ValidationError as e:
        message, hint = _format_validation_error(e)
        raise ConfigurationError(message, hint=hint) from e

"""
Configuration

Built-in provider defaults, optionally overridden by a YAML file:

    providers:
      claude:
        model: claude-sonnet-4-20250514
        quota: {max_tokens_per_minute: 40000, concurrency_limit: 2}
    pipeline:
      chunk_size_hint: 4000
      smooth: false

API keys are read from each provider's environment variable unless the
file sets `api_key` directly.
"""
from __future__ import annotations
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, Literal, Optional
import copy
import os

import yaml

from doc_rewriter.errors import ConfigError

ProviderKind = Literal["anthropic", "openai"]


@dataclass
class QuotaConfig:
    """Per-backend rate limits, shared by every caller in the process."""
    max_tokens_per_minute: int
    max_requests_per_second: float
    concurrency_limit: int


@dataclass
class ProviderSettings:
    """Connection and generation settings for one backend."""
    name: str
    kind: ProviderKind
    model: str
    api_key_env: str
    quota: QuotaConfig
    base_url: Optional[str] = None
    api_key: Optional[str] = None
    max_tokens: int = 4000
    temperature: float = 0.7
    timeout: float = 120.0        # seconds, passed to the SDK client

    def resolve_api_key(self) -> Optional[str]:
        return self.api_key or os.environ.get(self.api_key_env)


@dataclass
class PipelineConfig:
    """Knobs for chunking, dispatch and smoothing."""
    chunk_size_hint: int = 5000
    max_retries: int = 3
    backoff_base: float = 30.0        # seconds; retry n waits backoff_base * n
    poll_interval: float = 0.05       # admission spin-wait interval
    chars_per_token: float = 4.0
    smooth: bool = True
    max_context_chars: int = 30000    # smoothing is skipped above this
    detection_protection: bool = False


DEFAULT_PROVIDERS: Dict[str, ProviderSettings] = {
    "claude": ProviderSettings(
        name="claude",
        kind="anthropic",
        model="claude-sonnet-4-20250514",
        api_key_env="ANTHROPIC_API_KEY",
        quota=QuotaConfig(max_tokens_per_minute=32000, max_requests_per_second=2, concurrency_limit=3),
    ),
    "openai": ProviderSettings(
        name="openai",
        kind="openai",
        model="gpt-4o",
        api_key_env="OPENAI_API_KEY",
        quota=QuotaConfig(max_tokens_per_minute=300000, max_requests_per_second=10, concurrency_limit=5),
    ),
    "deepseek": ProviderSettings(
        name="deepseek",
        kind="openai",
        model="deepseek-chat",
        api_key_env="DEEPSEEK_API_KEY",
        base_url="https://api.deepseek.com",
        quota=QuotaConfig(max_tokens_per_minute=50000, max_requests_per_second=5, concurrency_limit=3),
    ),
    "perplexity": ProviderSettings(
        name="perplexity",
        kind="openai",
        model="sonar",
        api_key_env="PERPLEXITY_API_KEY",
        base_url="https://api.perplexity.ai",
        quota=QuotaConfig(max_tokens_per_minute=50000, max_requests_per_second=2, concurrency_limit=2),
    ),
}


@dataclass
class AppConfig:
    providers: Dict[str, ProviderSettings] = field(default_factory=lambda: copy.deepcopy(DEFAULT_PROVIDERS))
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)


def _known_fields(cls) -> set:
    return {f.name for f in fields(cls)}


def _check_keys(section: str, data: Dict[str, Any], allowed: set) -> None:
    unknown = set(data) - allowed
    if unknown:
        raise ConfigError(f"Unknown keys in {section}: {', '.join(sorted(unknown))}")


def _merge_provider(name: str, base: Optional[ProviderSettings], data: Dict[str, Any]) -> ProviderSettings:
    if not isinstance(data, dict):
        raise ConfigError(f"providers.{name} must be a mapping")
    data = dict(data)
    _check_keys(f"providers.{name}", data, _known_fields(ProviderSettings) - {"name"})

    quota_data = data.pop("quota", None) or {}
    if not isinstance(quota_data, dict):
        raise ConfigError(f"providers.{name}.quota must be a mapping")
    _check_keys(f"providers.{name}.quota", quota_data, _known_fields(QuotaConfig))

    if base is None:
        # a brand-new backend has to spell everything out
        missing = {"kind", "model", "api_key_env"} - set(data)
        missing |= _known_fields(QuotaConfig) - set(quota_data)
        if missing:
            raise ConfigError(f"providers.{name} is missing: {', '.join(sorted(missing))}")
        if data["kind"] not in ("anthropic", "openai"):
            raise ConfigError(f"providers.{name}.kind must be 'anthropic' or 'openai'")
        return ProviderSettings(name=name, quota=QuotaConfig(**quota_data), **data)

    quota = replace(base.quota, **quota_data)
    return replace(base, quota=quota, **data)


def parse_config(raw: Dict[str, Any]) -> AppConfig:
    """Build an AppConfig from an already-parsed mapping."""
    config = AppConfig()
    if not raw:
        return config
    if not isinstance(raw, dict):
        raise ConfigError("Config root must be a mapping")
    _check_keys("config", raw, {"providers", "pipeline"})

    for name, data in (raw.get("providers") or {}).items():
        config.providers[name] = _merge_provider(name, config.providers.get(name), data or {})

    pipeline_data = raw.get("pipeline") or {}
    if not isinstance(pipeline_data, dict):
        raise ConfigError("pipeline must be a mapping")
    _check_keys("pipeline", pipeline_data, _known_fields(PipelineConfig))
    config.pipeline = replace(config.pipeline, **pipeline_data)
    return config


def load_config(path: Optional[str] = None) -> AppConfig:
    """Load configuration, falling back to built-in defaults when path is None."""
    if path is None:
        return AppConfig()
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    return parse_config(raw)

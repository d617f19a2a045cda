"""Application configuration loader.

Loads centralized configuration from data/config/app_config_v1.yaml,
falling back to built-in defaults when the file is missing. A handful of
environment variables override the file (secrets never live in YAML).

Usage:
    from chatgpa.config.app_config import load_app_config, get_provider_config

    config = load_app_config()
    provider = get_provider_config("openai")
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog
import yaml

logger = structlog.get_logger(__name__)

# Config file path (relative to project root)
CONFIG_FILE = Path("data/config/app_config_v1.yaml")

# Environment overrides
ENV_DB_PATH = "CHATGPA_DB_PATH"
ENV_JWT_SECRET = "CHATGPA_JWT_SECRET"
ENV_APP_MODE = "APP_MODE"
ENV_ALLOWED_MODELS = "ALLOWED_MODELS"
ENV_ENABLE_USAGE_LIMITS = "ENABLE_USAGE_LIMITS"
ENV_FREE_QUIZ_LIMIT = "FREE_QUIZ_LIMIT"


@dataclass
class ProviderConfig:
    """Configuration for a single LLM provider."""

    base_url: str | None
    default_model: str
    api_key_env: str | None = None

    def get_api_key(self, mode: str = "test") -> str | None:
        """Get API key from environment.

        A mode-specific variable (``OPENAI_API_KEY_LIVE``) wins over the
        plain one so test and live keys can coexist in one environment.
        """
        if not self.api_key_env:
            return None
        scoped = os.environ.get(f"{self.api_key_env}_{mode.upper()}")
        return scoped or os.environ.get(self.api_key_env)


@dataclass
class LLMDefaults:
    """Model choices and limits for outbound LLM calls."""

    default_provider: str = "openai"
    chat_model: str = "gpt-4o"
    grade_model: str = "gpt-4o-mini"
    generate_model: str = "gpt-4o-mini"
    allowed_models: list[str] = field(
        default_factory=lambda: ["gpt-5", "gpt-4o", "gpt-4-turbo", "gpt-4o-mini"]
    )
    temperature: float = 0.7
    max_tokens: int = 2048
    timeout: int = 60
    chat_timeout: int = 30
    system_prompt: str = "You are a helpful assistant."


@dataclass
class ChatLimits:
    """Input size guards for /api/chat."""

    max_messages: int = 32
    max_total_chars: int = 10000
    max_tokens_per_call: int = 120000


@dataclass
class SecurityConfig:
    """Bearer token handling and ownership policy."""

    jwt_secret: str | None = None
    jwt_algorithm: str = "HS256"
    # Answer 404 instead of 403 when a row exists but belongs to someone else
    conceal_forbidden: bool = True


@dataclass
class UsageLimits:
    """Free tier caps on quiz generation."""

    enabled: bool = True
    free_quiz_limit: int = 5
    # Test mode lifts the cap so a test account can generate freely
    test_quiz_limit: int = 100

    def quiz_limit(self, mode: str) -> int:
        """Quizzes a user may own before generation is refused."""
        return self.test_quiz_limit if mode == "test" else self.free_quiz_limit


@dataclass
class RateLimitConfig:
    """Sliding window: at most ``calls`` per ``window`` seconds."""

    calls: int
    window: int


@dataclass
class AppConfig:
    """Application-wide configuration."""

    mode: str = "test"
    providers: dict[str, ProviderConfig] = field(default_factory=dict)
    llm: LLMDefaults = field(default_factory=LLMDefaults)
    chat: ChatLimits = field(default_factory=ChatLimits)
    security: SecurityConfig = field(default_factory=SecurityConfig)
    rate_limits: dict[str, RateLimitConfig] = field(default_factory=dict)
    usage_limits: UsageLimits = field(default_factory=UsageLimits)
    db_path: Path = Path("db/chatgpa.db")

    def provider(self, name: str | None = None) -> ProviderConfig | None:
        """Get provider config by name (defaults to the configured provider)."""
        return self.providers.get(name or self.llm.default_provider)


# Module-level cache
_cached_config: AppConfig | None = None


def _get_defaults() -> dict[str, Any]:
    """Get default configuration values."""
    return {
        "mode": "test",
        "providers": {
            "openai": {
                "base_url": "https://api.openai.com/v1",
                "default_model": "gpt-4o-mini",
                "api_key_env": "OPENAI_API_KEY",
            },
            "lmstudio": {
                "base_url": "http://localhost:1234/v1",
                "default_model": "llama-3.2-3b-instruct",
                "api_key_env": None,
            },
        },
        "llm": {
            "default_provider": "openai",
            "chat_model": "gpt-4o",
            "grade_model": "gpt-4o-mini",
            "generate_model": "gpt-4o-mini",
            "allowed_models": ["gpt-5", "gpt-4o", "gpt-4-turbo", "gpt-4o-mini"],
            "temperature": 0.7,
            "max_tokens": 2048,
            "timeout": 60,
            "chat_timeout": 30,
            "system_prompt": "You are a helpful assistant.",
        },
        "chat": {
            "max_messages": 32,
            "max_total_chars": 10000,
            "max_tokens_per_call": 120000,
        },
        "security": {
            "jwt_secret": None,
            "jwt_algorithm": "HS256",
            "conceal_forbidden": True,
        },
        "rate_limits": {
            "ai": {"calls": 6, "window": 30},
            "attempts": {"calls": 30, "window": 60},
            "workspace": {"calls": 20, "window": 10},
            "util": {"calls": 30, "window": 60},
        },
        "usage_limits": {
            "enabled": True,
            "free_quiz_limit": 5,
            "test_quiz_limit": 100,
        },
        "database": {"path": "db/chatgpa.db"},
    }


def _merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge ``override`` into a copy of ``base``."""
    result = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _merge(result[key], value)
        else:
            result[key] = value
    return result


def _parse_config(data: dict[str, Any]) -> AppConfig:
    """Parse configuration dictionary into AppConfig object."""
    providers = {}
    for name, pconfig in data.get("providers", {}).items():
        providers[name] = ProviderConfig(
            base_url=pconfig.get("base_url"),
            default_model=pconfig.get("default_model", "default"),
            api_key_env=pconfig.get("api_key_env"),
        )

    llm_data = data.get("llm", {})
    llm = LLMDefaults(**{k: v for k, v in llm_data.items() if k in LLMDefaults.__dataclass_fields__})

    chat_data = data.get("chat", {})
    chat = ChatLimits(**{k: v for k, v in chat_data.items() if k in ChatLimits.__dataclass_fields__})

    security_data = data.get("security", {})
    security = SecurityConfig(
        jwt_secret=security_data.get("jwt_secret"),
        jwt_algorithm=security_data.get("jwt_algorithm", "HS256"),
        conceal_forbidden=bool(security_data.get("conceal_forbidden", True)),
    )

    rate_limits = {
        name: RateLimitConfig(calls=int(rl["calls"]), window=int(rl["window"]))
        for name, rl in data.get("rate_limits", {}).items()
    }

    usage_data = data.get("usage_limits", {})
    usage_limits = UsageLimits(
        enabled=bool(usage_data.get("enabled", True)),
        free_quiz_limit=int(usage_data.get("free_quiz_limit", 5)),
        test_quiz_limit=int(usage_data.get("test_quiz_limit", 100)),
    )

    db_path = Path(data.get("database", {}).get("path", "db/chatgpa.db"))

    return AppConfig(
        mode=str(data.get("mode", "test")).lower(),
        providers=providers,
        llm=llm,
        chat=chat,
        security=security,
        rate_limits=rate_limits,
        usage_limits=usage_limits,
        db_path=db_path,
    )


def _apply_env_overrides(config: AppConfig) -> AppConfig:
    """Apply environment variable overrides on top of file/default values."""
    if db_path := os.environ.get(ENV_DB_PATH):
        config.db_path = Path(db_path)
    if secret := os.environ.get(ENV_JWT_SECRET):
        config.security.jwt_secret = secret
    if mode := os.environ.get(ENV_APP_MODE):
        config.mode = "live" if mode.lower() == "live" else "test"
    if allowed := os.environ.get(ENV_ALLOWED_MODELS):
        config.llm.allowed_models = [m.strip() for m in allowed.split(",") if m.strip()]
    if enabled := os.environ.get(ENV_ENABLE_USAGE_LIMITS):
        config.usage_limits.enabled = enabled.lower() == "true"
    if limit := os.environ.get(ENV_FREE_QUIZ_LIMIT):
        config.usage_limits.free_quiz_limit = int(limit)
    return config


def load_app_config(force_reload: bool = False, config_file: Path | None = None) -> AppConfig:
    """Load application config.

    Args:
        force_reload: If True, ignore cached config and reload from file.
        config_file: Alternative YAML file (tests).

    Returns:
        AppConfig object with all settings.
    """
    global _cached_config

    if _cached_config is not None and not force_reload and config_file is None:
        return _cached_config

    path = config_file or CONFIG_FILE
    data = _get_defaults()

    if path.exists():
        logger.debug("loading_app_config", source=str(path))
        file_data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        data = _merge(data, file_data)
    else:
        logger.info("using_default_config", missing=str(path))

    config = _apply_env_overrides(_parse_config(data))
    if config_file is None:
        _cached_config = config
    return config


def get_provider_config(provider: str) -> ProviderConfig | None:
    """Get configuration for a specific provider.

    Args:
        provider: Provider name (e.g., "openai", "lmstudio")

    Returns:
        ProviderConfig or None if provider not found.
    """
    config = load_app_config()
    return config.providers.get(provider)


def clear_config_cache() -> None:
    """Clear the configuration cache.

    Useful for testing or when config is modified at runtime.
    """
    global _cached_config
    _cached_config = None

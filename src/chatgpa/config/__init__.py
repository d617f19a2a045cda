"""Configuration package for ChatGPA."""

from chatgpa.config.app_config import (
    AppConfig,
    ChatLimits,
    LLMDefaults,
    ProviderConfig,
    RateLimitConfig,
    SecurityConfig,
    clear_config_cache,
    get_provider_config,
    load_app_config,
)

__all__ = [
    "AppConfig",
    "ChatLimits",
    "LLMDefaults",
    "ProviderConfig",
    "RateLimitConfig",
    "SecurityConfig",
    "clear_config_cache",
    "get_provider_config",
    "load_app_config",
]

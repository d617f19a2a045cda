"""Per-app services shared by the route handlers.

One ``AppServices`` instance lives on ``app.state.services``; it owns the
configuration, the rate-limit store, gateway metrics and the factory that
builds LLM clients. Tests swap ``llm_factory`` for one returning a mock.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable

import structlog

from chatgpa.config.app_config import AppConfig
from chatgpa.core.rate_limiter import InMemoryRateLimitStore
from chatgpa.llm.client import LLMClient, LLMConfig

logger = structlog.get_logger(__name__)

LLMFactory = Callable[[], "LLMClient | None"]


@dataclass
class GatewayStats:
    """Counters for one gateway."""

    requests: int = 0
    errors: int = 0
    rate_limited: int = 0
    total_latency_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        avg = self.total_latency_ms / self.requests if self.requests else 0
        return {
            "requests": self.requests,
            "errors": self.errors,
            "rate_limited": self.rate_limited,
            "avg_latency_ms": round(avg, 1),
        }


class GatewayMetrics:
    """Request counters per gateway, reported by the health check."""

    def __init__(self) -> None:
        self._stats: dict[str, GatewayStats] = {}
        self._lock = threading.Lock()

    def _get(self, gateway: str) -> GatewayStats:
        return self._stats.setdefault(gateway, GatewayStats())

    def record(self, gateway: str, latency_ms: int, error: bool = False) -> None:
        with self._lock:
            stats = self._get(gateway)
            stats.requests += 1
            stats.total_latency_ms += latency_ms
            if error:
                stats.errors += 1

    def record_rate_limited(self, gateway: str) -> None:
        with self._lock:
            self._get(gateway).rate_limited += 1

    def snapshot(self) -> dict[str, dict[str, Any]]:
        with self._lock:
            return {name: stats.to_dict() for name, stats in sorted(self._stats.items())}


def validate_ai_config(config: AppConfig) -> tuple[bool, str | None]:
    """Check that the default provider can be called with allowed models.

    Returns:
        (valid, error message or None)
    """
    provider = config.provider()
    if provider is None:
        return False, f"Provider '{config.llm.default_provider}' is not configured"

    llm_config = LLMConfig.from_app_config(config)
    if not llm_config.has_credentials:
        return False, f"Missing API key ({provider.api_key_env})"

    if config.llm.chat_model not in config.llm.allowed_models:
        return False, f"Chat model '{config.llm.chat_model}' is not in allowed_models"

    return True, None


def ai_diagnostics(config: AppConfig) -> dict[str, Any]:
    """Non-secret facts about the AI setup."""
    llm_config = LLMConfig.from_app_config(config)
    return {
        "provider": llm_config.provider,
        "base_url": llm_config.base_url,
        "key_present": llm_config.has_credentials,
        "chat_model": config.llm.chat_model,
        "generate_model": config.llm.generate_model,
        "grade_model": config.llm.grade_model,
        "allowed_models": list(config.llm.allowed_models),
    }


def default_llm_factory(config: AppConfig) -> LLMFactory:
    """Factory building a client for the configured provider.

    Returns None from the factory when the provider has no credentials, so
    optional LLM features degrade instead of failing.
    """

    def factory() -> LLMClient | None:
        llm_config = LLMConfig.from_app_config(config)
        if not llm_config.has_credentials:
            logger.debug("llm_client_unavailable", provider=llm_config.provider)
            return None
        return LLMClient(llm_config)

    return factory


@dataclass
class AppServices:
    """Everything a handler needs besides the request."""

    config: AppConfig
    llm_factory: LLMFactory
    limiter_store: InMemoryRateLimitStore = field(default_factory=InMemoryRateLimitStore)
    metrics: GatewayMetrics = field(default_factory=GatewayMetrics)
    clock: Callable[[], float] = time.monotonic

    def llm_client(self) -> LLMClient | None:
        return self.llm_factory()

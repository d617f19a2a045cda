"""Action gateway: one HTTP endpoint dispatching to named actions.

``/api/v1/<domain>?action=<name>`` requests run through a fixed pipeline:

1. POST bodies must be ``application/json`` (415)
2. Body size limit per gateway (413)
3. Request id from the body or a fresh uuid, echoed in ``X-Request-ID``
4. Bearer auth when the gateway requires it (401)
5. Sliding-window rate limit keyed on ``user_id or ip`` plus the URL (429)
6. Action lookup from the query string or body (400 ACTION_UNKNOWN)
7. Execution; success is wrapped as ``{"ok": true, "data", "request_id"}``

Actions are plain synchronous functions ``(data, ctx) -> result`` run in
the threadpool, raising ``ApiError`` for expected failures.
"""

from __future__ import annotations

import json
import sqlite3
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable

import structlog
from fastapi import Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError
from starlette.concurrency import run_in_threadpool

from chatgpa.config.app_config import AppConfig, RateLimitConfig
from chatgpa.core.rate_limiter import SlidingWindowLimiter
from chatgpa.web.auth import authenticate
from chatgpa.web.errors import ApiError
from chatgpa.web.services import AppServices

logger = structlog.get_logger(__name__)

DEFAULT_MAX_BODY_SIZE = 1024 * 1024

# pydantic prefixes messages raised from validators
VALUE_ERROR_PREFIX = "Value error, "

# Body keys that belong to the gateway, not to the action
ENVELOPE_KEYS = {"action", "request_id", "data"}


@dataclass
class GatewayContext:
    """Per-request information handed to every action."""

    request_id: str
    user_id: str | None
    token: str | None
    ip: str
    method: str
    query: dict[str, str]
    services: AppServices

    @property
    def config(self) -> AppConfig:
        return self.services.config

    def require_user(self) -> str:
        """User id of an authenticated caller (for optional-auth gateways)."""
        if not self.user_id:
            raise ApiError("UNAUTHORIZED", "Authorization: Bearer <token> header required", 401)
        return self.user_id


Action = Callable[[dict[str, Any], GatewayContext], Any]


def parse_input(model: type[BaseModel], data: dict[str, Any], code: str = "INVALID_INPUT") -> Any:
    """Validate action input with a pydantic model.

    Raises:
        ApiError: 400 with the first validation message
    """
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise ApiError(code, validation_message(e), 400) from e


def validation_message(error: ValidationError) -> str:
    """First validation issue as ``field: message`` (or just the message)."""
    issues = error.errors()
    if not issues:
        return "Invalid input"
    first = issues[0]
    message = first["msg"].removeprefix(VALUE_ERROR_PREFIX)
    if first.get("loc"):
        message = f"{'.'.join(str(p) for p in first['loc'])}: {message}"
    return message


def require_owned(record: Any, ctx: GatewayContext, code: str, message: str) -> Any:
    """Return ``record`` if the caller owns it.

    A missing record is a 404. A record owned by someone else is also a 404
    while ``security.conceal_forbidden`` is on, so existence does not leak;
    otherwise it is a 403.
    """
    if record is None:
        raise ApiError(code, message, 404)
    if getattr(record, "user_id", None) != ctx.user_id:
        if ctx.config.security.conceal_forbidden:
            raise ApiError(code, message, 404)
        raise ApiError("FORBIDDEN", "You don't have access to this resource", 403)
    return record


def action_payload(body: dict[str, Any]) -> dict[str, Any]:
    """Input handed to the action.

    Clients may wrap the input as ``{"action", "data": {...}}``. The wrapper
    is only unwrapped when nothing else sits beside it, so an action input
    that has its own ``data`` field (track, client_log) passes through whole.
    """
    wrapped = body.get("data")
    if isinstance(wrapped, dict) and not set(body) - ENVELOPE_KEYS:
        return wrapped
    return {k: v for k, v in body.items() if k != "action"}


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded.split(",")[0].strip():
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


@dataclass
class Gateway:
    """A set of actions behind one URL with shared policies."""

    name: str
    actions: dict[str, Action]
    require_auth: bool = True
    max_body_size: int = DEFAULT_MAX_BODY_SIZE
    rate_limit_key: str | None = None

    def _limiter(self, services: AppServices) -> SlidingWindowLimiter | None:
        limit: RateLimitConfig | None = services.config.rate_limits.get(self.rate_limit_key or self.name)
        if limit is None:
            return None
        # Limiters are stateless; the per-app store holds the windows
        return SlidingWindowLimiter(limit.calls, limit.window, services.limiter_store, clock=services.clock)

    def _error(self, error: ApiError, request_id: str) -> JSONResponse:
        headers = {"X-Request-ID": request_id}
        if "retryAfter" in error.extra:
            headers["Retry-After"] = str(error.extra["retryAfter"])
        return JSONResponse(error.to_dict(), status_code=error.status, headers=headers)

    async def handle(self, request: Request) -> JSONResponse:
        """Run the gateway pipeline for one request."""
        services: AppServices = request.app.state.services
        start = time.monotonic()
        request_id = str(uuid.uuid4())

        try:
            body = await self._read_body(request)
            if isinstance(body.get("request_id"), str) and body["request_id"]:
                request_id = body["request_id"]

            user = authenticate(request, services.config.security, required=self.require_auth)
            ip = client_ip(request)

            limiter = self._limiter(services)
            if limiter is not None:
                url = request.url.path + (f"?{request.url.query}" if request.url.query else "")
                result = limiter.check(f"{user.user_id if user else ip}:{url}")
                if not result.allowed:
                    services.metrics.record_rate_limited(self.name)
                    logger.info(
                        "gateway_rate_limited",
                        gateway=self.name,
                        request_id=request_id,
                        retry_after=result.retry_after,
                    )
                    raise ApiError(
                        "RATE_LIMITED",
                        f"Rate limit exceeded. Retry after {result.retry_after} seconds",
                        429,
                        retryAfter=result.retry_after,
                    )

            action_name = request.query_params.get("action") or body.get("action")
            if not action_name:
                raise ApiError("ACTION_UNKNOWN", "Missing action parameter in query or body", 400)
            action = self.actions.get(action_name)
            if action is None:
                raise ApiError("ACTION_UNKNOWN", f"Unknown action: {action_name}", 400)
        except ApiError as e:
            logger.warning("gateway_rejected", gateway=self.name, request_id=request_id, code=e.code)
            return self._error(e, request_id)

        ctx = GatewayContext(
            request_id=request_id,
            user_id=user.user_id if user else None,
            token=user.token if user else None,
            ip=ip,
            method=request.method,
            query=dict(request.query_params),
            services=services,
        )
        data = action_payload(body)

        try:
            result = await run_in_threadpool(action, data, ctx)
        except ApiError as e:
            latency = int((time.monotonic() - start) * 1000)
            services.metrics.record(self.name, latency, error=True)
            logger.warning(
                "action_failed",
                gateway=self.name,
                action=action_name,
                request_id=request_id,
                code=e.code,
                latency_ms=latency,
            )
            return self._error(e, request_id)
        except sqlite3.Error as e:
            latency = int((time.monotonic() - start) * 1000)
            services.metrics.record(self.name, latency, error=True)
            logger.error(
                "action_database_error",
                gateway=self.name,
                action=action_name,
                request_id=request_id,
                error=str(e),
            )
            return self._error(ApiError("DATABASE_ERROR", "Database operation failed", 500), request_id)
        except Exception as e:
            latency = int((time.monotonic() - start) * 1000)
            services.metrics.record(self.name, latency, error=True)
            logger.exception(
                "action_crashed",
                gateway=self.name,
                action=action_name,
                request_id=request_id,
                latency_ms=latency,
            )
            return self._error(ApiError("SERVER_ERROR", str(e) or "Internal server error", 500), request_id)

        latency = int((time.monotonic() - start) * 1000)
        services.metrics.record(self.name, latency)
        logger.info(
            "action_completed",
            gateway=self.name,
            action=action_name,
            request_id=request_id,
            user_id=ctx.user_id,
            latency_ms=latency,
        )
        return JSONResponse(
            {"ok": True, "data": result, "request_id": request_id},
            headers={"X-Request-ID": request_id},
        )

    async def _read_body(self, request: Request) -> dict[str, Any]:
        """Check content type and size, then parse the JSON body (if any)."""
        raw = await request.body()

        if request.method == "POST":
            content_type = request.headers.get("content-type", "")
            if content_type.split(";")[0].strip().lower() != "application/json":
                raise ApiError("UNSUPPORTED_MEDIA_TYPE", "Content-Type must be application/json", 415)

        declared = request.headers.get("content-length")
        size = int(declared) if declared and declared.isdigit() else len(raw)
        if max(size, len(raw)) > self.max_body_size:
            raise ApiError(
                "PAYLOAD_TOO_LARGE", f"Request body exceeds {self.max_body_size} bytes", 413
            )

        if not raw:
            return {}
        try:
            parsed = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ApiError("INVALID_JSON", "Request body is not valid JSON", 400) from e
        return parsed if isinstance(parsed, dict) else {}

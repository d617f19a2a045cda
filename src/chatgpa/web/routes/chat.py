"""Chat proxy: forwards a conversation to the LLM and charges tokens.

Errors use the legacy ``{"error", "detail", "request_id"}`` envelope.
Token accounting runs after the reply is in hand; its failures are
reported in ``warnings`` and never fail the request.
"""

from __future__ import annotations

import json
import math
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Any

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from chatgpa.config.app_config import AppConfig, ChatLimits
from chatgpa.db import tokens_repository
from chatgpa.llm.client import LLMError, LLMResponse, LLMTimeoutError, Message
from chatgpa.web.auth import authenticate
from chatgpa.web.errors import ChatError
from chatgpa.web.services import AppServices

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["chat"])

ANONYMOUS_USER_ID = "00000000-0000-0000-0000-000000000000"
CHAT_TEMPERATURE = 0.7
VALID_ROLES = ("user", "assistant", "system")


def validate_messages(body: Any, limits: ChatLimits) -> list[Message]:
    """Check the ``messages`` array of a chat request.

    Raises:
        ChatError: 400 invalid_body describing the first problem
    """
    messages = body.get("messages") if isinstance(body, dict) else None
    if not isinstance(messages, list) or not messages:
        raise ChatError(400, "invalid_body", "messages array required")
    if len(messages) > limits.max_messages:
        raise ChatError(400, "invalid_body", f"too many messages (max {limits.max_messages})")

    result = []
    total_chars = 0
    for item in messages:
        if not isinstance(item, dict) or not isinstance(item.get("content"), str) or not item.get("role"):
            raise ChatError(400, "invalid_body", "invalid message item")
        if item["role"] not in VALID_ROLES:
            raise ChatError(400, "invalid_body", "invalid role")
        total_chars += len(item["content"])
        result.append(Message(role=item["role"], content=item["content"]))

    if total_chars > limits.max_total_chars:
        raise ChatError(400, "invalid_body", f"messages too large (max {limits.max_total_chars} chars)")
    return result


def estimate_tokens(response: LLMResponse, max_tokens: int) -> tuple[int, bool]:
    """Tokens to charge for a reply.

    Uses reported usage when present, else about four characters per token.

    Returns:
        (tokens clamped to 1..max_tokens, whether the estimate was used)
    """
    used_fallback = not response.total_tokens
    tokens = response.total_tokens or max(1, math.ceil(len(response.content) / 4))
    return max(1, min(max_tokens, tokens)), used_fallback


def charge_tokens(user_id: str, tokens: int, model: str, request_id: str) -> list[str]:
    """Spend tokens and log usage; returns warning codes for what failed."""
    warnings = []

    try:
        spent = tokens_repository.spend_tokens(user_id, tokens, model=model, source="chat", request_id=request_id)
        if not spent["ok"]:
            logger.warning("chat_spend_refused", request_id=request_id, reason=spent["reason"])
            warnings.append("spend_tokens_failed")
    except sqlite3.Error as e:
        logger.warning("chat_spend_failed", request_id=request_id, error=str(e))
        warnings.append("spend_tokens_failed")

    try:
        tokens_repository.log_usage(user_id, tokens, model, source="chat_message", request_id=request_id)
    except sqlite3.Error as e:
        logger.warning("chat_usage_log_failed", request_id=request_id, error=str(e))
        warnings.append("usage_log_failed")

    return warnings


def _resolve_user(request: Request, body: dict[str, Any], config: AppConfig) -> str:
    user = authenticate(request, config.security, required=False)
    if user is not None:
        return user.user_id
    return body.get("user_id") or body.get("userId") or ANONYMOUS_USER_ID


async def _chat(request: Request, request_id: str) -> dict[str, Any]:
    services: AppServices = request.app.state.services
    config = services.config
    timestamp = datetime.now(timezone.utc).isoformat()

    if request.method != "POST":
        raise ChatError(405, "method_not_allowed")

    client = services.llm_client()
    if client is None:
        provider = config.provider()
        key_env = provider.api_key_env if provider and provider.api_key_env else "OPENAI_API_KEY"
        mode = config.mode.upper()
        raise ChatError(500, "server_config_missing", f"{mode} mode - missing: {key_env}_{mode}")

    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ChatError(400, "invalid_body", "JSON parse failed") from e

    messages = validate_messages(body, config.chat)

    model = body.get("model") or config.llm.chat_model
    if model not in config.llm.allowed_models:
        raise ChatError(400, "invalid_model", f'model "{model}" is not in ALLOWED_MODELS')

    user_id = _resolve_user(request, body, config)
    conversation = [Message(role="system", content=config.llm.system_prompt), *messages]

    try:
        response = await run_in_threadpool(
            client.chat,
            conversation,
            temperature=CHAT_TEMPERATURE,
            model=model,
            timeout=config.llm.chat_timeout,
        )
    except LLMTimeoutError as e:
        raise ChatError(504, "openai_timeout") from e
    except LLMError as e:
        raise ChatError(502, "openai_call_error", str(e)) from e

    if not response.content:
        raise ChatError(502, "openai_empty_reply")

    tokens, used_fallback = estimate_tokens(response, config.chat.max_tokens_per_call)
    warnings = await run_in_threadpool(charge_tokens, user_id, tokens, model, request_id)

    usage: dict[str, Any] = {"total_tokens": tokens}
    if response.prompt_tokens:
        usage["prompt_tokens"] = response.prompt_tokens
    if response.completion_tokens:
        usage["completion_tokens"] = response.completion_tokens
    if used_fallback:
        usage["used_fallback_estimate"] = True

    logger.info(
        "chat_completed",
        request_id=request_id,
        model=model,
        tokens=tokens,
        input_chars=sum(len(m.content) for m in messages),
        output_chars=len(response.content),
        warnings=warnings,
    )
    return {
        "ok": True,
        "mode": config.mode,
        "model": model,
        "reply": response.content,
        "usage": usage,
        "timestamp": timestamp,
        "request_id": request_id,
        "warnings": warnings,
    }


@router.api_route("/api/chat", methods=["GET", "POST", "PUT", "PATCH", "DELETE"])
async def chat(request: Request) -> JSONResponse:
    """Forward a chat conversation to the configured model."""
    request_id = str(uuid.uuid4())
    try:
        return JSONResponse(await _chat(request, request_id))
    except ChatError as e:
        logger.warning("chat_failed", request_id=request_id, error=e.error, status=e.status)
        return JSONResponse(e.to_dict(request_id), status_code=e.status)

"""Util gateway: ping, health, telemetry, client logs and token spending.

Auth is optional here so that anonymous pages can still report.
"""

from __future__ import annotations

import json
import sqlite3
import time
from typing import Any

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from chatgpa.db import tokens_repository
from chatgpa.web.errors import ApiError
from chatgpa.web.gateway import Gateway, GatewayContext, parse_input
from chatgpa.web.routes.health import health_report, wants_details
from chatgpa.web.schemas import ClientLogInput, TrackInput, UseTokensInput

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["util"])

# Serialized client log data is cut to this many characters
MAX_LOG_DATA_CHARS = 4000


def ping(data: dict[str, Any], ctx: GatewayContext) -> dict[str, Any]:
    return {"ok": True, "t": int(time.time() * 1000)}


def health(data: dict[str, Any], ctx: GatewayContext) -> dict[str, Any]:
    return health_report(ctx.services, wants_details(ctx.config.mode, ctx.query))


def track(data: dict[str, Any], ctx: GatewayContext) -> dict[str, Any]:
    """Record a telemetry event. Never fails the caller."""
    try:
        params = TrackInput.model_validate(data)
    except ValidationError:
        logger.debug("telemetry_dropped", request_id=ctx.request_id)
        return {}

    logger.info(
        "telemetry_event",
        telemetry_event=params.event,
        data=params.data or {},
        user_id=ctx.user_id,
        ip=ctx.ip,
        request_id=ctx.request_id,
    )
    return {}


def client_log(data: dict[str, Any], ctx: GatewayContext) -> dict[str, Any]:
    """Forward a browser log line to the server log."""
    try:
        params = ClientLogInput.model_validate(data)
    except ValidationError:
        return {"ok": False, "error": "Invalid payload"}

    fields = {
        "source": params.source,
        "message": params.message,
        "gen_request_id": params.gen_request_id,
        "data": json.dumps(params.data or {})[:MAX_LOG_DATA_CHARS],
        "user_id": ctx.user_id or "anonymous",
        "request_id": ctx.request_id,
    }
    if params.level == "error":
        logger.error("client_log", **fields)
    elif params.level == "warn":
        logger.warning("client_log", **fields)
    else:
        logger.info("client_log", **fields)
    return {"ok": True}


def use_tokens(data: dict[str, Any], ctx: GatewayContext) -> dict[str, Any]:
    """Spend tokens from a user's ledger.

    Raises:
        ApiError: 402 OUT_OF_TOKENS when the balance cannot cover the spend
    """
    params = parse_input(UseTokensInput, data)

    try:
        result = tokens_repository.spend_tokens(params.userId, params.tokens, request_id=ctx.request_id)
    except sqlite3.Error as e:
        logger.error("use_tokens_failed", request_id=ctx.request_id, error=str(e))
        raise ApiError("DATABASE_ERROR", str(e), 400) from e

    if not result["ok"]:
        raise ApiError("OUT_OF_TOKENS", "out_of_tokens", 402, remaining=result["remaining"])
    return result


gateway = Gateway(
    name="util",
    actions={
        "ping": ping,
        "health": health,
        "track": track,
        "client_log": client_log,
        "use_tokens": use_tokens,
    },
    require_auth=False,
    max_body_size=10 * 1024,
)


@router.api_route("/api/v1/util", methods=["GET", "POST"])
async def util_gateway(request: Request) -> JSONResponse:
    """Dispatch ``?action=ping|health|track|use_tokens|client_log``."""
    return await gateway.handle(request)

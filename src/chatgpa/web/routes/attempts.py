"""Attempts gateway: start, autosave and rename quiz attempts."""

from __future__ import annotations

import json
import sqlite3
from datetime import date
from typing import Any

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from chatgpa.db import attempts_repository, quizzes_repository
from chatgpa.web.errors import ApiError
from chatgpa.web.gateway import Gateway, GatewayContext, parse_input, require_owned
from chatgpa.web.schemas import AutosaveInput, StartInput, UpdateMetaInput

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["attempts"])

VALIDATION_CODE = "SCHEMA_INVALID"

# Autosaves above this size are refused before touching the database
MAX_AUTOSAVE_BYTES = 500 * 1024


def _attempt_summary(record: attempts_repository.AttemptRecord, resumed: bool) -> dict[str, Any]:
    return {
        "attempt_id": record.id,
        "status": "in_progress",
        "title": record.title,
        "subject": record.subject,
        "started_at": record.started_at,
        "updated_at": record.updated_at,
        "autosave_version": record.autosave_version,
        "resumed": resumed,
    }


def start(data: dict[str, Any], ctx: GatewayContext) -> dict[str, Any]:
    """Open an attempt on a quiz, or resume the open one.

    Idempotent: a second start (double click, retry, or a racing request
    that lost on the unique index) returns the existing attempt with
    ``resumed=True``.
    """
    params = parse_input(StartInput, data, VALIDATION_CODE)
    user_id = ctx.require_user()

    quiz = require_owned(
        quizzes_repository.get_quiz(params.quiz_id),
        ctx,
        "NOT_FOUND",
        "Quiz not found or access denied",
    )

    existing = attempts_repository.find_in_progress(quiz.id, user_id)
    if existing is not None:
        logger.info("attempt_resumed", request_id=ctx.request_id, quiz_id=quiz.id, attempt_id=existing.id)
        return _attempt_summary(existing, resumed=True)

    try:
        record = attempts_repository.insert_attempt(
            quiz_id=quiz.id,
            user_id=user_id,
            title=quiz.title or f"Quiz Attempt - {date.today():%m/%d/%Y}",
            subject=quiz.subject or "General",
            class_id=quiz.class_id,
            idempotency_key=params.idempotency_key,
        )
    except sqlite3.IntegrityError as e:
        raced = attempts_repository.find_in_progress(quiz.id, user_id)
        if raced is None:
            logger.error("attempt_create_failed", request_id=ctx.request_id, quiz_id=quiz.id, error=str(e))
            raise ApiError("SERVER_ERROR", "Failed to create attempt", 500) from e
        logger.info("attempt_start_race", request_id=ctx.request_id, attempt_id=raced.id)
        return _attempt_summary(raced, resumed=True)

    logger.info("attempt_started", request_id=ctx.request_id, quiz_id=quiz.id, attempt_id=record.id)
    return _attempt_summary(record, resumed=False)


def autosave(data: dict[str, Any], ctx: GatewayContext) -> dict[str, Any]:
    """Store in-progress answers; bumps ``autosave_version``."""
    size = len(json.dumps(data).encode("utf-8"))
    if size > MAX_AUTOSAVE_BYTES:
        logger.warning("autosave_too_large", request_id=ctx.request_id, payload_size=size)
        raise ApiError(
            "PAYLOAD_TOO_LARGE",
            f"Autosave payload exceeds maximum size of {MAX_AUTOSAVE_BYTES // 1024}KB",
            413,
        )

    params = parse_input(AutosaveInput, data, VALIDATION_CODE)
    user_id = ctx.require_user()

    record = attempts_repository.save_responses(params.attempt_id, user_id, params.responses)
    if record is None:
        raise ApiError("NOT_FOUND", "Attempt not found, already submitted, or access denied", 404)

    logger.info(
        "attempt_autosaved",
        request_id=ctx.request_id,
        attempt_id=record.id,
        autosave_version=record.autosave_version,
        response_count=len(params.responses),
    )
    return {"ok": True, "autosave_version": record.autosave_version, "updated_at": record.updated_at}


def update_meta(data: dict[str, Any], ctx: GatewayContext) -> dict[str, Any]:
    """Rename an attempt or change its subject (open or submitted)."""
    params = parse_input(UpdateMetaInput, data, VALIDATION_CODE)
    user_id = ctx.require_user()

    record = attempts_repository.update_meta(params.attempt_id, user_id, params.title, params.subject)
    if record is None:
        raise ApiError("NOT_FOUND", "Attempt not found or access denied", 404)

    logger.info("attempt_meta_updated", request_id=ctx.request_id, attempt_id=record.id)
    return {
        "ok": True,
        "title": record.title,
        "subject": record.subject,
        "autosave_version": record.autosave_version,
        "updated_at": record.updated_at,
    }


gateway = Gateway(
    name="attempts",
    actions={"start": start, "autosave": autosave, "update_meta": update_meta},
    require_auth=True,
    max_body_size=1024 * 1024,
)


@router.api_route("/api/v1/attempts", methods=["GET", "POST"])
async def attempts_gateway(request: Request) -> JSONResponse:
    """Dispatch ``?action=start|autosave|update_meta``."""
    return await gateway.handle(request)

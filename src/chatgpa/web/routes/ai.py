"""AI gateway: quiz generation from notes and quiz grading."""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from chatgpa.core.grader import Question, grade_submission
from chatgpa.core.quiz_generator import QuizGenerationError, generate_questions, generate_quiz_metadata
from chatgpa.db import attempts_repository, notes_repository, quizzes_repository
from chatgpa.web.errors import ApiError
from chatgpa.web.gateway import Gateway, GatewayContext, parse_input, require_owned, validation_message
from chatgpa.web.schemas import GenerateQuizInput, GradeInput, parse_quiz_config

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["ai"])

VALIDATION_CODE = "SCHEMA_INVALID"

# Stored with the attempt when no model was involved in grading
DETERMINISTIC_MODEL = "deterministic"


def generate_quiz(data: dict[str, Any], ctx: GatewayContext) -> dict[str, Any]:
    """Generate a quiz from notes and store it.

    Returns:
        ``{"quiz_id", "config", "actual_question_count"}``
    """
    params = parse_input(GenerateQuizInput, data, VALIDATION_CODE)
    user_id = ctx.require_user()

    client = ctx.services.llm_client()
    if client is None:
        logger.error("ai_config_invalid", request_id=ctx.request_id, action="generate_quiz")
        raise ApiError("SERVER_ERROR", "AI service configuration error", 500)

    try:
        quiz_config = parse_quiz_config(params.config)
    except ValidationError as e:
        raise ApiError("CONFIG_INVALID", validation_message(e), 400) from e

    class_name = None
    if params.class_id:
        class_record = require_owned(
            notes_repository.get_class(params.class_id),
            ctx,
            "NOT_FOUND",
            "Class not found or access denied",
        )
        class_name = class_record.name

    limits = ctx.config.usage_limits
    if limits.enabled:
        quiz_limit = limits.quiz_limit(ctx.config.mode)
        quiz_count = quizzes_repository.count_quizzes(user_id)
        if quiz_count >= quiz_limit:
            logger.warning(
                "usage_limit_reached",
                request_id=ctx.request_id,
                user_id=user_id,
                action="generate_quiz",
                quizzes_count=quiz_count,
            )
            raise ApiError(
                "USAGE_LIMIT_REACHED",
                f"You've reached the Free plan limit of {quiz_limit} quizzes.",
                402,
            )

    try:
        questions = generate_questions(
            client,
            quiz_config,
            params.notes_text,
            model=ctx.config.llm.generate_model,
        )
    except QuizGenerationError as e:
        raise ApiError(e.code, str(e), e.status) from e

    title, subject = generate_quiz_metadata(params.notes_text, class_name, len(questions))
    quiz = quizzes_repository.insert_quiz(
        user_id=user_id,
        questions=questions,
        class_id=params.class_id,
        title=title,
        subject=subject,
        config=quiz_config.model_dump(),
    )

    logger.info(
        "quiz_created",
        request_id=ctx.request_id,
        quiz_id=quiz.id,
        class_id=params.class_id,
        question_count=len(questions),
    )
    return {
        "quiz_id": quiz.id,
        "config": quiz_config.model_dump(),
        "actual_question_count": len(questions),
    }


def _elapsed_ms(started_at: str) -> int | None:
    try:
        started = datetime.fromisoformat(started_at.replace("Z", "+00:00"))
    except ValueError:
        return None
    return int((datetime.now(timezone.utc) - started).total_seconds() * 1000)


def grade(data: dict[str, Any], ctx: GatewayContext) -> dict[str, Any]:
    """Grade responses and store the submitted attempt.

    Two flows:
        attempt_id: submit an open attempt (the usual path)
        quiz_id: one-shot grading that records a new submitted attempt

    Returns:
        ``{"attempt_id", "score", "letter", "summary", "breakdown"}``
    """
    params = parse_input(GradeInput, data, VALIDATION_CODE)
    user_id = ctx.require_user()

    attempt = None
    if params.attempt_id:
        attempt = require_owned(
            attempts_repository.get_attempt(params.attempt_id),
            ctx,
            "NOT_FOUND",
            "Attempt not found or access denied",
        )
        if attempt.status != "in_progress":
            raise ApiError("BAD_REQUEST", "Attempt already submitted", 400)
        quiz = quizzes_repository.get_quiz(attempt.quiz_id)
    else:
        quiz = require_owned(
            quizzes_repository.get_quiz(params.quiz_id),
            ctx,
            "NOT_FOUND",
            "Quiz not found",
        )

    questions = [Question.from_dict(q) for q in (quiz.questions if quiz else [])]
    if not questions:
        raise ApiError("EMPTY_QUIZ", "Quiz has no questions", 400)

    needs_model = any(q.type == "short" and not q.has_reference for q in questions)
    client = ctx.services.llm_client() if needs_model else None
    grade_model = ctx.config.llm.grade_model

    start = time.monotonic()
    result = grade_submission(questions, params.responses, client=client, model=grade_model)
    grading_ms = int((time.monotonic() - start) * 1000)

    breakdown = [item.to_dict() for item in result.breakdown]
    grading_model = grade_model if client is not None else DETERMINISTIC_MODEL

    if attempt is not None:
        record = attempts_repository.submit_attempt(
            attempt.id,
            responses=params.responses,
            score=result.percent / 100,
            grading=breakdown,
            grading_model=grading_model,
            duration_ms=_elapsed_ms(attempt.started_at) or grading_ms,
        )
    else:
        record = attempts_repository.insert_submitted_attempt(
            quiz_id=quiz.id,
            user_id=user_id,
            title=quiz.title or "Quiz Attempt",
            subject=quiz.subject or "General",
            responses=params.responses,
            score=result.percent / 100,
            grading=breakdown,
            grading_model=grading_model,
            class_id=quiz.class_id,
        )

    logger.info(
        "quiz_graded",
        request_id=ctx.request_id,
        quiz_id=quiz.id,
        attempt_id=record.id,
        score=result.percent,
        grading_ms=grading_ms,
    )
    return {
        "attempt_id": record.id,
        "score": result.percent,
        "letter": result.letter,
        "summary": result.summary,
        "breakdown": breakdown,
    }


gateway = Gateway(
    name="ai",
    actions={"generate_quiz": generate_quiz, "grade": grade},
    require_auth=True,
    max_body_size=1024 * 1024,
)


@router.post("/api/v1/ai")
async def ai_gateway(request: Request) -> JSONResponse:
    """Dispatch ``?action=generate_quiz|grade``."""
    return await gateway.handle(request)

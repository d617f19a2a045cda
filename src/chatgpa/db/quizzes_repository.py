"""Repository functions for quizzes table."""

from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass, field
from typing import Any

import structlog

from chatgpa.db.database import get_db, new_id, now_iso

logger = structlog.get_logger(__name__)


@dataclass
class QuizRecord:
    """Quiz record from database (questions decoded from JSON)."""

    id: str
    user_id: str
    class_id: str | None
    title: str | None
    subject: str | None
    questions: list[dict[str, Any]]
    created_at: str
    config: dict[str, Any] | None = field(default=None)


def _row_to_record(row: sqlite3.Row) -> QuizRecord:
    return QuizRecord(
        id=row["id"],
        user_id=row["user_id"],
        class_id=row["class_id"],
        title=row["title"],
        subject=row["subject"],
        questions=json.loads(row["questions"] or "[]"),
        created_at=row["created_at"],
        config=json.loads(row["config"]) if row["config"] else None,
    )


def insert_quiz(
    user_id: str,
    questions: list[dict[str, Any]],
    class_id: str | None = None,
    title: str | None = None,
    subject: str | None = None,
    config: dict[str, Any] | None = None,
    quiz_id: str | None = None,
) -> QuizRecord:
    """Insert a quiz.

    Args:
        user_id: Owner
        questions: Question dicts as produced by the generator
        class_id: Class the source notes came from
        title: Optional display title
        subject: Optional subject label
        config: Generation settings used
        quiz_id: Explicit id (generated when omitted)

    Returns:
        The stored QuizRecord
    """
    record = QuizRecord(
        id=quiz_id or new_id(),
        user_id=user_id,
        class_id=class_id,
        title=title,
        subject=subject,
        questions=questions,
        created_at=now_iso(),
        config=config,
    )
    with get_db() as conn:
        conn.execute(
            """
            INSERT INTO quizzes (id, user_id, class_id, title, subject, questions, config, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.id,
                record.user_id,
                record.class_id,
                record.title,
                record.subject,
                json.dumps(questions),
                json.dumps(config) if config is not None else None,
                record.created_at,
            ),
        )

    logger.debug("quizzes.inserted", quiz_id=record.id, questions=len(questions))
    return record


def get_quiz(quiz_id: str) -> QuizRecord | None:
    """Get quiz by ID.

    Returns:
        QuizRecord if found, None otherwise
    """
    with get_db() as conn:
        row = conn.execute("SELECT * FROM quizzes WHERE id = ?", (quiz_id,)).fetchone()
    if row is None:
        return None
    return _row_to_record(row)


def count_quizzes(user_id: str) -> int:
    """Number of quizzes owned by a user."""
    with get_db() as conn:
        row = conn.execute("SELECT COUNT(*) FROM quizzes WHERE user_id = ?", (user_id,)).fetchone()
    return row[0]

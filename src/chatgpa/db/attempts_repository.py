"""Repository functions for quiz_attempts table.

The partial unique index ``idx_attempts_one_in_progress`` guarantees at most
one in-progress attempt per (quiz, user); ``insert_attempt`` lets the
resulting ``sqlite3.IntegrityError`` propagate so callers can resume the
attempt that won the race.
"""

from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass
from typing import Any, Literal

import structlog

from chatgpa.db.database import get_db, new_id, now_iso

logger = structlog.get_logger(__name__)

AttemptStatus = Literal["in_progress", "submitted"]


@dataclass
class AttemptRecord:
    """Attempt record from database (JSON columns decoded)."""

    id: str
    quiz_id: str
    user_id: str
    class_id: str | None
    status: AttemptStatus
    title: str
    subject: str
    responses: dict[str, str]
    score: float | None
    grading: list[dict[str, Any]] | None
    grading_model: str | None
    autosave_version: int
    idempotency_key: str | None
    started_at: str
    updated_at: str
    submitted_at: str | None
    duration_ms: int | None


def _row_to_record(row: sqlite3.Row) -> AttemptRecord:
    data = dict(row)
    data["responses"] = json.loads(data["responses"] or "{}")
    data["grading"] = json.loads(data["grading"]) if data["grading"] else None
    return AttemptRecord(**data)


def _fetch(conn: sqlite3.Connection, attempt_id: str) -> AttemptRecord | None:
    row = conn.execute("SELECT * FROM quiz_attempts WHERE id = ?", (attempt_id,)).fetchone()
    return _row_to_record(row) if row else None


def get_attempt(attempt_id: str) -> AttemptRecord | None:
    """Get attempt by ID.

    Returns:
        AttemptRecord if found, None otherwise
    """
    with get_db() as conn:
        return _fetch(conn, attempt_id)


def find_in_progress(quiz_id: str, user_id: str) -> AttemptRecord | None:
    """The open attempt of ``user_id`` on ``quiz_id``, if any."""
    with get_db() as conn:
        row = conn.execute(
            """
            SELECT * FROM quiz_attempts
            WHERE quiz_id = ? AND user_id = ? AND status = 'in_progress'
            """,
            (quiz_id, user_id),
        ).fetchone()
    return _row_to_record(row) if row else None


def insert_attempt(
    quiz_id: str,
    user_id: str,
    title: str,
    subject: str,
    class_id: str | None = None,
    idempotency_key: str | None = None,
) -> AttemptRecord:
    """Open a new in-progress attempt.

    Raises:
        sqlite3.IntegrityError: If the user already has an open attempt
            on this quiz
    """
    now = now_iso()
    attempt_id = new_id()
    with get_db() as conn:
        conn.execute(
            """
            INSERT INTO quiz_attempts (
                id, quiz_id, user_id, class_id, status, title, subject,
                responses, autosave_version, idempotency_key, started_at, updated_at
            ) VALUES (?, ?, ?, ?, 'in_progress', ?, ?, '{}', 0, ?, ?, ?)
            """,
            (attempt_id, quiz_id, user_id, class_id, title, subject, idempotency_key, now, now),
        )
        record = _fetch(conn, attempt_id)

    assert record is not None
    logger.debug("attempts.inserted", attempt_id=attempt_id, quiz_id=quiz_id)
    return record


def save_responses(attempt_id: str, user_id: str, responses: dict[str, str]) -> AttemptRecord | None:
    """Store autosaved responses and bump ``autosave_version``.

    Only in-progress attempts owned by ``user_id`` are touched.

    Returns:
        The updated record, or None when no matching open attempt exists
    """
    with get_db() as conn:
        updated = conn.execute(
            """
            UPDATE quiz_attempts
            SET responses = ?, autosave_version = autosave_version + 1, updated_at = ?
            WHERE id = ? AND user_id = ? AND status = 'in_progress'
            """,
            (json.dumps(responses), now_iso(), attempt_id, user_id),
        ).rowcount
        record = _fetch(conn, attempt_id) if updated else None

    return record


def update_meta(
    attempt_id: str,
    user_id: str,
    title: str | None = None,
    subject: str | None = None,
) -> AttemptRecord | None:
    """Rename an attempt and/or change its subject; bumps ``autosave_version``.

    Returns:
        The updated record, or None when the attempt does not exist for
        ``user_id``
    """
    assignments = ["autosave_version = autosave_version + 1", "updated_at = ?"]
    params: list[Any] = [now_iso()]
    if title is not None:
        assignments.append("title = ?")
        params.append(title)
    if subject is not None:
        assignments.append("subject = ?")
        params.append(subject)
    params.extend([attempt_id, user_id])

    with get_db() as conn:
        updated = conn.execute(
            f"UPDATE quiz_attempts SET {', '.join(assignments)} WHERE id = ? AND user_id = ?",
            params,
        ).rowcount
        record = _fetch(conn, attempt_id) if updated else None

    return record


def submit_attempt(
    attempt_id: str,
    responses: dict[str, str],
    score: float,
    grading: list[dict[str, Any]],
    grading_model: str | None,
    duration_ms: int | None,
) -> AttemptRecord:
    """Mark an attempt submitted and store its grading."""
    now = now_iso()
    with get_db() as conn:
        conn.execute(
            """
            UPDATE quiz_attempts
            SET status = 'submitted', responses = ?, score = ?, grading = ?,
                grading_model = ?, duration_ms = ?, submitted_at = ?, updated_at = ?
            WHERE id = ?
            """,
            (
                json.dumps(responses),
                score,
                json.dumps(grading),
                grading_model,
                duration_ms,
                now,
                now,
                attempt_id,
            ),
        )
        record = _fetch(conn, attempt_id)

    assert record is not None
    logger.debug("attempts.submitted", attempt_id=attempt_id, score=score)
    return record


def insert_submitted_attempt(
    quiz_id: str,
    user_id: str,
    title: str,
    subject: str,
    responses: dict[str, str],
    score: float,
    grading: list[dict[str, Any]],
    grading_model: str | None,
    class_id: str | None = None,
) -> AttemptRecord:
    """Record a one-shot graded attempt (grading without a started attempt)."""
    now = now_iso()
    attempt_id = new_id()
    with get_db() as conn:
        conn.execute(
            """
            INSERT INTO quiz_attempts (
                id, quiz_id, user_id, class_id, status, title, subject, responses,
                score, grading, grading_model, autosave_version,
                started_at, updated_at, submitted_at, duration_ms
            ) VALUES (?, ?, ?, ?, 'submitted', ?, ?, ?, ?, ?, ?, 0, ?, ?, ?, 0)
            """,
            (
                attempt_id,
                quiz_id,
                user_id,
                class_id,
                title,
                subject,
                json.dumps(responses),
                score,
                json.dumps(grading),
                grading_model,
                now,
                now,
                now,
            ),
        )
        record = _fetch(conn, attempt_id)

    assert record is not None
    logger.debug("attempts.recorded", attempt_id=attempt_id, quiz_id=quiz_id, score=score)
    return record

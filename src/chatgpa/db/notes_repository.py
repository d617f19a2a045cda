"""Repository functions for classes and notes tables.

Lookups are by primary key only; callers compare ``user_id`` themselves so
the ownership policy (404 vs 403) stays in one place.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from typing import Any

import structlog

from chatgpa.db.database import get_db, new_id, now_iso

logger = structlog.get_logger(__name__)


@dataclass
class ClassRecord:
    """Class record from database."""

    id: str
    user_id: str
    name: str
    created_at: str


@dataclass
class NoteRecord:
    """Note record from database."""

    id: str
    user_id: str
    class_id: str
    title: str
    content: str
    created_at: str

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON responses."""
        return {
            "id": self.id,
            "class_id": self.class_id,
            "title": self.title,
            "content": self.content,
            "created_at": self.created_at,
        }


@dataclass
class NotePage:
    """One page of notes with a created_at cursor."""

    notes: list[NoteRecord]
    cursor: str | None
    has_more: bool


def insert_class(user_id: str, name: str, class_id: str | None = None) -> ClassRecord:
    """Insert a new class owned by ``user_id``."""
    record = ClassRecord(id=class_id or new_id(), user_id=user_id, name=name, created_at=now_iso())
    with get_db() as conn:
        conn.execute(
            "INSERT INTO classes (id, user_id, name, created_at) VALUES (?, ?, ?, ?)",
            (record.id, record.user_id, record.name, record.created_at),
        )
    logger.debug("classes.inserted", class_id=record.id)
    return record


def get_class(class_id: str) -> ClassRecord | None:
    """Get class by ID.

    Returns:
        ClassRecord if found, None otherwise
    """
    with get_db() as conn:
        row = conn.execute("SELECT * FROM classes WHERE id = ?", (class_id,)).fetchone()
    if row is None:
        return None
    return ClassRecord(**dict(row))


def insert_note(
    user_id: str,
    class_id: str,
    title: str = "",
    content: str = "",
    note_id: str | None = None,
    created_at: str | None = None,
) -> NoteRecord:
    """Insert a new note into a class.

    Args:
        user_id: Owner
        class_id: Class the note belongs to
        title: Note title
        content: Note body
        note_id: Explicit id (generated when omitted)
        created_at: Explicit timestamp (tests and imports)

    Returns:
        The stored NoteRecord
    """
    record = NoteRecord(
        id=note_id or new_id(),
        user_id=user_id,
        class_id=class_id,
        title=title,
        content=content,
        created_at=created_at or now_iso(),
    )
    with get_db() as conn:
        conn.execute(
            """
            INSERT INTO notes (id, user_id, class_id, title, content, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (record.id, record.user_id, record.class_id, record.title, record.content, record.created_at),
        )
    logger.debug("notes.inserted", note_id=record.id, class_id=class_id)
    return record


def get_note(note_id: str) -> NoteRecord | None:
    """Get note by ID.

    Returns:
        NoteRecord if found, None otherwise
    """
    with get_db() as conn:
        row = conn.execute("SELECT * FROM notes WHERE id = ?", (note_id,)).fetchone()
    if row is None:
        return None
    return NoteRecord(**dict(row))


def _page(rows: list[sqlite3.Row], limit: int) -> NotePage:
    has_more = len(rows) > limit
    notes = [NoteRecord(**dict(r)) for r in rows[:limit]]
    cursor = notes[-1].created_at if has_more and notes else None
    return NotePage(notes=notes, cursor=cursor, has_more=has_more)


def list_folder_notes(folder_id: str, limit: int, cursor: str | None = None) -> NotePage:
    """Notes mapped to a folder, newest first.

    Args:
        folder_id: Folder to list
        limit: Page size
        cursor: created_at of the last note of the previous page

    Returns:
        NotePage; ``cursor`` is set only when more notes follow
    """
    sql = """
        SELECT n.* FROM notes n
        JOIN note_folders nf ON nf.note_id = n.id
        WHERE nf.folder_id = ?
    """
    params: list[Any] = [folder_id]
    if cursor:
        sql += " AND n.created_at < ?"
        params.append(cursor)
    sql += " ORDER BY n.created_at DESC LIMIT ?"
    params.append(limit + 1)

    with get_db() as conn:
        rows = conn.execute(sql, params).fetchall()
    return _page(rows, limit)


def list_uncategorized_notes(
    user_id: str, class_id: str, limit: int, cursor: str | None = None
) -> NotePage:
    """Notes of a class that are not mapped to any folder, newest first."""
    sql = """
        SELECT n.* FROM notes n
        WHERE n.class_id = ? AND n.user_id = ?
          AND NOT EXISTS (SELECT 1 FROM note_folders nf WHERE nf.note_id = n.id)
    """
    params: list[Any] = [class_id, user_id]
    if cursor:
        sql += " AND n.created_at < ?"
        params.append(cursor)
    sql += " ORDER BY n.created_at DESC LIMIT ?"
    params.append(limit + 1)

    with get_db() as conn:
        rows = conn.execute(sql, params).fetchall()
    return _page(rows, limit)


def recent_note_ids(since: str) -> list[str]:
    """IDs of notes created at or after ``since`` (all users)."""
    with get_db() as conn:
        rows = conn.execute("SELECT id FROM notes WHERE created_at >= ?", (since,)).fetchall()
    return [r["id"] for r in rows]

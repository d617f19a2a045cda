"""SQLite database connection and schema management.

Provides connection management and schema initialization for ChatGPA.
"""

from __future__ import annotations

import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Generator

import structlog

logger = structlog.get_logger(__name__)

# Default database location
DEFAULT_DB_PATH = Path("db/chatgpa.db")

# Current database path (module-level, set by init_db)
_db_path: Path | None = None


def now_iso() -> str:
    """UTC timestamp with millisecond precision, e.g. 2025-01-31T12:00:00.123Z.

    Fixed width so that string comparison orders timestamps correctly.
    """
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def new_id() -> str:
    """Generate a row identifier."""
    return str(uuid.uuid4())


def init_db(db_path: Path | None = None) -> None:
    """Initialize database with schema.

    Creates the database file and all required tables if they don't exist.

    Args:
        db_path: Path to database file. Defaults to db/chatgpa.db
    """
    global _db_path
    _db_path = db_path or DEFAULT_DB_PATH

    _db_path.parent.mkdir(parents=True, exist_ok=True)

    with get_db() as conn:
        _create_schema(conn)

    logger.info("database.initialized", path=str(_db_path))


def get_db_path() -> Path:
    """Path of the database currently in use."""
    return _db_path or DEFAULT_DB_PATH


@contextmanager
def get_db() -> Generator[sqlite3.Connection, None, None]:
    """Get database connection as context manager.

    Everything executed inside one ``with`` block is a single transaction:
    committed on normal exit, rolled back if the block raises.

    Yields:
        SQLite connection with row factory set to sqlite3.Row

    Example:
        with get_db() as conn:
            rows = conn.execute("SELECT * FROM folders").fetchall()
    """
    db_path = get_db_path()
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")

    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def _create_schema(conn: sqlite3.Connection) -> None:
    """Create database schema.

    Uses IF NOT EXISTS for idempotency.
    """
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS classes (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            name TEXT NOT NULL,
            created_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS notes (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            class_id TEXT NOT NULL REFERENCES classes(id) ON DELETE CASCADE,
            title TEXT NOT NULL DEFAULT '',
            content TEXT NOT NULL DEFAULT '',
            created_at TEXT NOT NULL
        );

        -- parent_id = id is rejected here; longer cycles are rejected by
        -- folders_repository inside the updating transaction
        CREATE TABLE IF NOT EXISTS folders (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            class_id TEXT NOT NULL REFERENCES classes(id) ON DELETE CASCADE,
            parent_id TEXT REFERENCES folders(id),
            name TEXT NOT NULL,
            sort_index INTEGER NOT NULL DEFAULT 100,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            CHECK (parent_id IS NULL OR parent_id <> id)
        );

        CREATE TABLE IF NOT EXISTS note_folders (
            note_id TEXT NOT NULL REFERENCES notes(id) ON DELETE CASCADE,
            folder_id TEXT NOT NULL REFERENCES folders(id) ON DELETE CASCADE,
            class_id TEXT NOT NULL,
            user_id TEXT NOT NULL,
            created_at TEXT NOT NULL,
            PRIMARY KEY (note_id, folder_id)
        );

        -- A note lives in at most one folder per class
        CREATE TRIGGER IF NOT EXISTS trg_note_folders_single
        BEFORE INSERT ON note_folders
        WHEN EXISTS (
            SELECT 1 FROM note_folders
            WHERE note_id = NEW.note_id
              AND class_id = NEW.class_id
              AND folder_id <> NEW.folder_id
        )
        BEGIN
            SELECT RAISE(ABORT, 'Note already mapped to a folder in this class');
        END;

        CREATE TABLE IF NOT EXISTS quizzes (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            class_id TEXT REFERENCES classes(id) ON DELETE SET NULL,
            title TEXT,
            subject TEXT,
            questions TEXT NOT NULL DEFAULT '[]',
            config TEXT,
            created_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS quiz_attempts (
            id TEXT PRIMARY KEY,
            quiz_id TEXT NOT NULL REFERENCES quizzes(id) ON DELETE CASCADE,
            user_id TEXT NOT NULL,
            class_id TEXT,
            status TEXT NOT NULL DEFAULT 'in_progress'
                CHECK (status IN ('in_progress', 'submitted')),
            title TEXT NOT NULL,
            subject TEXT NOT NULL,
            responses TEXT NOT NULL DEFAULT '{}',
            score REAL,
            grading TEXT,
            grading_model TEXT,
            autosave_version INTEGER NOT NULL DEFAULT 0,
            idempotency_key TEXT,
            started_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            submitted_at TEXT,
            duration_ms INTEGER
        );

        -- One open attempt per (quiz, user)
        CREATE UNIQUE INDEX IF NOT EXISTS idx_attempts_one_in_progress
            ON quiz_attempts(quiz_id, user_id) WHERE status = 'in_progress';

        CREATE TABLE IF NOT EXISTS usage_limits (
            user_id TEXT PRIMARY KEY,
            personal INTEGER NOT NULL DEFAULT 0 CHECK (personal >= 0),
            reserve INTEGER NOT NULL DEFAULT 0 CHECK (reserve >= 0),
            pool_bonus INTEGER NOT NULL DEFAULT 0 CHECK (pool_bonus >= 0),
            updated_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS usage_logs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL,
            tokens INTEGER NOT NULL,
            model TEXT,
            source TEXT NOT NULL,
            request_id TEXT,
            created_at TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_notes_class_created ON notes(class_id, created_at);
        CREATE INDEX IF NOT EXISTS idx_folders_class ON folders(class_id);
        CREATE INDEX IF NOT EXISTS idx_folders_parent ON folders(parent_id);
        CREATE INDEX IF NOT EXISTS idx_note_folders_folder ON note_folders(folder_id);
        CREATE INDEX IF NOT EXISTS idx_usage_logs_user ON usage_logs(user_id);
        """
    )

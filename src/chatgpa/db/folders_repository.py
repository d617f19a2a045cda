"""Repository functions for folders and note_folders tables.

Multi-step changes (re-parenting, cascading deletes, note moves) run inside a
single ``get_db()`` block so they commit or roll back together.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from typing import Any, Literal

import structlog

from chatgpa.db.database import get_db, new_id, now_iso

logger = structlog.get_logger(__name__)

CascadeMode = Literal["move-to-parent", "move-to-uncategorized"]

# Gap between sibling sort indexes so items can be reordered in between
SORT_INDEX_STEP = 100

UPDATABLE_FIELDS = ("name", "parent_id", "sort_index")


class CircularFolderError(Exception):
    """Circular folder reference: the new parent is the folder or one of its descendants."""

    pass


@dataclass
class FolderRecord:
    """Folder record from database."""

    id: str
    user_id: str
    class_id: str
    parent_id: str | None
    name: str
    sort_index: int
    created_at: str
    updated_at: str

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON responses."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "class_id": self.class_id,
            "parent_id": self.parent_id,
            "name": self.name,
            "sort_index": self.sort_index,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class FolderContents:
    """Whether a folder still holds anything."""

    has_children: bool
    has_notes: bool

    @property
    def is_empty(self) -> bool:
        return not (self.has_children or self.has_notes)


def _row_to_record(row: sqlite3.Row) -> FolderRecord:
    return FolderRecord(**dict(row))


def _fetch(conn: sqlite3.Connection, folder_id: str) -> FolderRecord | None:
    row = conn.execute("SELECT * FROM folders WHERE id = ?", (folder_id,)).fetchone()
    return _row_to_record(row) if row else None


def _is_descendant_or_self(conn: sqlite3.Connection, folder_id: str, candidate_id: str) -> bool:
    """Check whether ``candidate_id`` is ``folder_id`` or sits below it.

    Walks up from the candidate; UNION (not UNION ALL) keeps the recursion
    finite even if the stored data already contains a loop.
    """
    row = conn.execute(
        """
        WITH RECURSIVE ancestors(id, parent_id) AS (
            SELECT id, parent_id FROM folders WHERE id = ?
            UNION
            SELECT f.id, f.parent_id FROM folders f
            JOIN ancestors a ON f.id = a.parent_id
        )
        SELECT 1 FROM ancestors WHERE id = ? LIMIT 1
        """,
        (candidate_id, folder_id),
    ).fetchone()
    return row is not None


def get_folder(folder_id: str) -> FolderRecord | None:
    """Get folder by ID.

    Returns:
        FolderRecord if found, None otherwise
    """
    with get_db() as conn:
        return _fetch(conn, folder_id)


def insert_folder(
    user_id: str,
    class_id: str,
    name: str,
    parent_id: str | None = None,
) -> FolderRecord:
    """Insert a folder at the end of its siblings.

    ``sort_index`` is the largest sibling index plus 100, or 100 for the
    first folder at that level.

    Args:
        user_id: Owner
        class_id: Class the folder belongs to
        name: Display name
        parent_id: Parent folder (None for a root folder)

    Returns:
        The stored FolderRecord
    """
    with get_db() as conn:
        if parent_id is None:
            row = conn.execute(
                "SELECT MAX(sort_index) AS m FROM folders WHERE class_id = ? AND parent_id IS NULL",
                (class_id,),
            ).fetchone()
        else:
            row = conn.execute(
                "SELECT MAX(sort_index) AS m FROM folders WHERE class_id = ? AND parent_id = ?",
                (class_id, parent_id),
            ).fetchone()
        current_max = row["m"] if row and row["m"] is not None else 0

        now = now_iso()
        record = FolderRecord(
            id=new_id(),
            user_id=user_id,
            class_id=class_id,
            parent_id=parent_id,
            name=name,
            sort_index=current_max + SORT_INDEX_STEP,
            created_at=now,
            updated_at=now,
        )
        conn.execute(
            """
            INSERT INTO folders (id, user_id, class_id, parent_id, name, sort_index, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.id,
                record.user_id,
                record.class_id,
                record.parent_id,
                record.name,
                record.sort_index,
                record.created_at,
                record.updated_at,
            ),
        )

    logger.debug("folders.inserted", folder_id=record.id, class_id=class_id, parent_id=parent_id)
    return record


def update_folder(folder_id: str, changes: dict[str, Any]) -> FolderRecord:
    """Apply a partial update to a folder.

    Args:
        folder_id: Folder to update
        changes: Subset of name / parent_id / sort_index. A ``parent_id`` of
            None moves the folder to the root.

    Returns:
        The updated FolderRecord

    Raises:
        CircularFolderError: If the new parent is the folder or a descendant
        KeyError: If the folder does not exist
    """
    updates = {k: v for k, v in changes.items() if k in UPDATABLE_FIELDS}

    with get_db() as conn:
        if _fetch(conn, folder_id) is None:
            raise KeyError(folder_id)

        new_parent = updates.get("parent_id")
        if new_parent is not None and _is_descendant_or_self(conn, folder_id, new_parent):
            raise CircularFolderError("Circular folder reference")

        if updates:
            assignments = ", ".join(f"{field} = ?" for field in updates)
            conn.execute(
                f"UPDATE folders SET {assignments}, updated_at = ? WHERE id = ?",
                (*updates.values(), now_iso(), folder_id),
            )

        record = _fetch(conn, folder_id)

    assert record is not None
    logger.debug("folders.updated", folder_id=folder_id, fields=sorted(updates))
    return record


def get_folder_contents(folder_id: str) -> FolderContents:
    """Check for child folders and mapped notes."""
    with get_db() as conn:
        child = conn.execute(
            "SELECT 1 FROM folders WHERE parent_id = ? LIMIT 1", (folder_id,)
        ).fetchone()
        note = conn.execute(
            "SELECT 1 FROM note_folders WHERE folder_id = ? LIMIT 1", (folder_id,)
        ).fetchone()
    return FolderContents(has_children=child is not None, has_notes=note is not None)


def delete_folder(folder_id: str, cascade: CascadeMode | None = None) -> None:
    """Delete a folder, relocating its contents first.

    Cascade modes:
        move-to-parent: child folders and notes move one level up. At the
            root there is no parent folder, so the notes become uncategorized.
        move-to-uncategorized: child folders become roots and every note
            mapping of the folder is dropped.

    Without a cascade mode, contents are left alone and the caller must have
    checked that the folder is empty.

    Args:
        folder_id: Folder to delete
        cascade: How to relocate contents
    """
    with get_db() as conn:
        folder = _fetch(conn, folder_id)
        if folder is None:
            return

        now = now_iso()
        if cascade == "move-to-parent":
            conn.execute(
                "UPDATE folders SET parent_id = ?, updated_at = ? WHERE parent_id = ?",
                (folder.parent_id, now, folder_id),
            )
            if folder.parent_id:
                conn.execute(
                    "UPDATE note_folders SET folder_id = ? WHERE folder_id = ?",
                    (folder.parent_id, folder_id),
                )
            else:
                conn.execute("DELETE FROM note_folders WHERE folder_id = ?", (folder_id,))
        elif cascade == "move-to-uncategorized":
            conn.execute(
                "UPDATE folders SET parent_id = NULL, updated_at = ? WHERE parent_id = ?",
                (now, folder_id),
            )
            conn.execute("DELETE FROM note_folders WHERE folder_id = ?", (folder_id,))

        conn.execute("DELETE FROM folders WHERE id = ?", (folder_id,))

    logger.debug("folders.deleted", folder_id=folder_id, cascade=cascade)


def list_folders(user_id: str, class_id: str) -> list[FolderRecord]:
    """All folders of a class owned by ``user_id``, ordered by sort_index."""
    with get_db() as conn:
        rows = conn.execute(
            """
            SELECT * FROM folders
            WHERE user_id = ? AND class_id = ?
            ORDER BY sort_index ASC, created_at ASC
            """,
            (user_id, class_id),
        ).fetchall()
    return [_row_to_record(r) for r in rows]


def count_notes_by_folder(folder_ids: list[str]) -> dict[str, int]:
    """Number of mapped notes per folder (folders without notes map to 0)."""
    counts = {fid: 0 for fid in folder_ids}
    if not folder_ids:
        return counts

    placeholders = ", ".join("?" for _ in folder_ids)
    with get_db() as conn:
        rows = conn.execute(
            f"""
            SELECT folder_id, COUNT(*) AS n FROM note_folders
            WHERE folder_id IN ({placeholders})
            GROUP BY folder_id
            """,
            folder_ids,
        ).fetchall()
    for row in rows:
        counts[row["folder_id"]] = row["n"]
    return counts


def add_note_to_folder(note_id: str, folder_id: str, class_id: str, user_id: str) -> None:
    """Map a note to a folder, replacing any mapping it had in the same class."""
    with get_db() as conn:
        removed = conn.execute(
            "DELETE FROM note_folders WHERE note_id = ? AND class_id = ? AND folder_id <> ?",
            (note_id, class_id, folder_id),
        ).rowcount
        conn.execute(
            """
            INSERT INTO note_folders (note_id, folder_id, class_id, user_id, created_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT (note_id, folder_id) DO NOTHING
            """,
            (note_id, folder_id, class_id, user_id, now_iso()),
        )

    logger.debug("note_folders.mapped", note_id=note_id, folder_id=folder_id, replaced=removed)


def remove_note_from_folder(note_id: str, folder_id: str, user_id: str) -> bool:
    """Delete one note→folder mapping.

    Returns:
        True if a mapping owned by ``user_id`` was removed
    """
    with get_db() as conn:
        deleted = conn.execute(
            "DELETE FROM note_folders WHERE note_id = ? AND folder_id = ? AND user_id = ?",
            (note_id, folder_id, user_id),
        ).rowcount

    logger.debug("note_folders.unmapped", note_id=note_id, folder_id=folder_id, deleted=deleted)
    return deleted > 0


def get_folder_links() -> list[tuple[str, str | None]]:
    """(id, parent_id) of every folder, for integrity metrics."""
    with get_db() as conn:
        rows = conn.execute("SELECT id, parent_id FROM folders").fetchall()
    return [(r["id"], r["parent_id"]) for r in rows]


def get_note_mappings() -> list[tuple[str, str]]:
    """(note_id, folder_id) of every mapping, for integrity metrics."""
    with get_db() as conn:
        rows = conn.execute("SELECT note_id, folder_id FROM note_folders").fetchall()
    return [(r["note_id"], r["folder_id"]) for r in rows]

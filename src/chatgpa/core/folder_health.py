"""Folder system health metrics.

Aggregates reported by the health endpoint when details are requested:
- avg_notes_per_folder: mean mapped notes over folders that hold any
- pct_uncategorized_notes: share of notes from the last 30 days with no folder
- avg_folder_depth: mean depth, root folders counting as 1
- duplicate_notes_detected: notes mapped to more than one folder
"""

from __future__ import annotations

import sqlite3
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog

from chatgpa.db import folders_repository, notes_repository

logger = structlog.get_logger(__name__)

RECENT_NOTES_DAYS = 30


@dataclass
class FolderHealthMetrics:
    """Folder integrity and usage aggregates."""

    avg_notes_per_folder: float = 0
    pct_uncategorized_notes: int = 0
    avg_folder_depth: float = 0
    duplicate_notes_detected: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _round1(value: float) -> float:
    return int(value * 10 + 0.5) / 10


def _folder_depths(links: list[tuple[str, str | None]]) -> dict[str, int]:
    parents = dict(links)
    depths: dict[str, int] = {}

    def depth_of(folder_id: str, visited: set[str]) -> int:
        if folder_id in depths:
            return depths[folder_id]
        if folder_id in visited:
            return 0
        visited.add(folder_id)

        parent_id = parents.get(folder_id)
        if folder_id not in parents or parent_id is None:
            depths[folder_id] = 1
            return 1

        depth = 1 + depth_of(parent_id, visited)
        depths[folder_id] = depth
        return depth

    for folder_id, _ in links:
        depth_of(folder_id, set())
    return depths


def compute_folder_metrics(
    folder_links: list[tuple[str, str | None]],
    mappings: list[tuple[str, str]],
    recent_note_ids: list[str],
) -> FolderHealthMetrics:
    """Compute metrics from raw rows.

    Args:
        folder_links: (folder_id, parent_id) for every folder
        mappings: (note_id, folder_id) for every note mapping
        recent_note_ids: Notes created in the reporting window

    Returns:
        FolderHealthMetrics
    """
    per_folder: dict[str, int] = {}
    per_note: dict[str, set[str]] = {}
    for note_id, folder_id in mappings:
        per_folder[folder_id] = per_folder.get(folder_id, 0) + 1
        per_note.setdefault(note_id, set()).add(folder_id)

    avg_notes = sum(per_folder.values()) / len(per_folder) if per_folder else 0

    uncategorized = [n for n in recent_note_ids if n not in per_note]
    pct_uncategorized = (
        int(len(uncategorized) / len(recent_note_ids) * 100 + 0.5) if recent_note_ids else 0
    )

    depths = _folder_depths(folder_links)
    avg_depth = sum(depths.values()) / len(depths) if depths else 0

    duplicates = sum(1 for folders in per_note.values() if len(folders) > 1)

    return FolderHealthMetrics(
        avg_notes_per_folder=_round1(avg_notes),
        pct_uncategorized_notes=pct_uncategorized,
        avg_folder_depth=_round1(avg_depth),
        duplicate_notes_detected=duplicates,
    )


def get_folder_health_metrics() -> FolderHealthMetrics:
    """Load rows from the database and compute metrics.

    Returns zeroed metrics if the database cannot be read; health checks
    must still answer.
    """
    since = (datetime.now(timezone.utc) - timedelta(days=RECENT_NOTES_DAYS)).isoformat(
        timespec="milliseconds"
    ).replace("+00:00", "Z")

    try:
        return compute_folder_metrics(
            folders_repository.get_folder_links(),
            folders_repository.get_note_mappings(),
            notes_repository.recent_note_ids(since),
        )
    except sqlite3.Error as e:
        logger.error("folder_health_metrics_failed", error=str(e))
        return FolderHealthMetrics()

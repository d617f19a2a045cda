"""Breadcrumb path reconstruction for folders.

Walks ``parent_id`` links from a folder up to the root and returns the
path class → root folder → ... → target folder. The walk is guarded twice:
a visited set stops on circular references and a hard cap stops runaway
chains. Both cases return the partial path instead of failing.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Literal

import structlog

logger = structlog.get_logger(__name__)

# Stop once more than this many folders have been collected
MAX_PATH_DEPTH = 20


@dataclass
class FolderLink:
    """The fields of a folder the walk needs."""

    id: str
    name: str
    parent_id: str | None


@dataclass
class BreadcrumbSegment:
    """One element of a breadcrumb path."""

    id: str
    name: str
    type: Literal["class", "folder"]

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "type": self.type}


def walk_folder_path(
    folder_id: str,
    fetch: Callable[[str], FolderLink | None],
) -> list[FolderLink]:
    """Collect the folder chain from the root down to ``folder_id``.

    Args:
        folder_id: Target folder
        fetch: Loads one folder by id, returning None when it is missing

    Returns:
        Folders in root-to-leaf order. Truncated (still root-to-leaf) when a
        cycle is found, a folder is missing, or the cap is exceeded.
    """
    chain: list[FolderLink] = []
    visited: set[str] = set()
    current: str | None = folder_id

    while current:
        if current in visited:
            logger.error("folder_path_circular", folder_id=folder_id, repeated_id=current)
            break
        visited.add(current)

        folder = fetch(current)
        if folder is None:
            break

        chain.insert(0, folder)
        current = folder.parent_id

        if len(chain) > MAX_PATH_DEPTH:
            logger.error("folder_path_too_deep", folder_id=folder_id, max_depth=MAX_PATH_DEPTH)
            break

    return chain


def build_breadcrumbs(
    class_id: str,
    class_name: str,
    chain: list[FolderLink],
) -> list[BreadcrumbSegment]:
    """Prefix the folder chain with its class."""
    path = [BreadcrumbSegment(id=class_id, name=class_name, type="class")]
    path.extend(BreadcrumbSegment(id=f.id, name=f.name, type="folder") for f in chain)
    return path

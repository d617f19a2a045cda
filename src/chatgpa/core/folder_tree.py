"""Folder tree assembly.

Turns the flat folder rows of a class into a nested tree:
- roots are folders with no parent
- a folder whose parent is missing from the list is promoted to a root
  instead of failing the whole response
- children are ordered by ``sort_index`` at every level
- an optional depth limit hides (but keeps) deeper subtrees
"""

from __future__ import annotations

from typing import Any

import structlog

logger = structlog.get_logger(__name__)


def build_tree(folders: list[dict[str, Any]], max_depth: int | None = None) -> list[dict[str, Any]]:
    """Assemble a nested folder tree from flat rows.

    Input dicts are not mutated; each node is a shallow copy with a
    ``children`` list added.

    Args:
        folders: Flat rows with at least id, parent_id and sort_index
        max_depth: If set, nodes ``max_depth`` levels below the roots
            (roots are level 0) lose their ``children`` key

    Returns:
        Root nodes sorted by sort_index
    """
    nodes: dict[str, dict[str, Any]] = {
        folder["id"]: {**folder, "children": []} for folder in folders
    }
    roots: list[dict[str, Any]] = []
    orphans: list[str] = []

    for folder in folders:
        node = nodes[folder["id"]]
        parent_id = folder.get("parent_id")
        if parent_id is None:
            roots.append(node)
        elif parent_id in nodes:
            nodes[parent_id]["children"].append(node)
        else:
            orphans.append(folder["id"])
            roots.append(node)

    if orphans:
        logger.warning("folder_tree_orphans", count=len(orphans), folder_ids=orphans)

    _sort_nodes(roots)

    if max_depth is not None:
        _limit_depth(roots, max_depth, 0)

    return roots


def _sort_key(node: dict[str, Any]) -> int:
    return node.get("sort_index") or 0


def _sort_nodes(nodes: list[dict[str, Any]]) -> None:
    nodes.sort(key=_sort_key)
    for node in nodes:
        _sort_nodes(node["children"])


def _limit_depth(nodes: list[dict[str, Any]], max_depth: int, depth: int) -> None:
    for node in nodes:
        if depth >= max_depth:
            node.pop("children", None)
        else:
            _limit_depth(node["children"], max_depth, depth + 1)


def flatten_ids(tree: list[dict[str, Any]]) -> list[str]:
    """Every folder id in the tree, depth-first."""
    ids: list[str] = []
    for node in tree:
        ids.append(node["id"])
        ids.extend(flatten_ids(node.get("children", [])))
    return ids

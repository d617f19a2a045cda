"""Workspace gateway: folders, folder trees and note-to-folder mapping.

Read actions take their parameters from the query string (GET/DELETE);
write actions take a JSON body (POST/PATCH).
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from chatgpa.core.breadcrumbs import FolderLink, build_breadcrumbs, walk_folder_path
from chatgpa.core.folder_tree import build_tree
from chatgpa.db import folders_repository, notes_repository
from chatgpa.db.folders_repository import CircularFolderError
from chatgpa.web.errors import ApiError
from chatgpa.web.gateway import Gateway, GatewayContext, parse_input, require_owned
from chatgpa.web.schemas import FolderCreateInput, FolderUpdateInput, NoteAddToFolderInput

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["workspace"])

CASCADE_MODES = ("move-to-parent", "move-to-uncategorized")

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

FOLDER_NOT_FOUND = "Folder not found or you don't have access"
CLASS_NOT_FOUND = "Class not found or you don't have access"


# =============================================================================
# HELPERS
# =============================================================================


def _query_param(ctx: GatewayContext, name: str, code: str) -> str:
    value = ctx.query.get(name)
    if not value:
        raise ApiError(code, f"{name} query parameter is required", 400)
    return value


def _page_size(raw: str | None) -> int:
    """Parse ``limit``; anything invalid or out of range falls back to 20."""
    if raw and raw.strip().lstrip("-").isdigit():
        value = int(raw)
        if 0 < value <= MAX_PAGE_SIZE:
            return value
    return DEFAULT_PAGE_SIZE


def _owned_folder(ctx: GatewayContext, folder_id: str) -> folders_repository.FolderRecord:
    return require_owned(folders_repository.get_folder(folder_id), ctx, "FOLDER_NOT_FOUND", FOLDER_NOT_FOUND)


def _owned_class(ctx: GatewayContext, class_id: str) -> notes_repository.ClassRecord:
    return require_owned(notes_repository.get_class(class_id), ctx, "CLASS_NOT_FOUND", CLASS_NOT_FOUND)


def _check_parent(ctx: GatewayContext, parent_id: str, class_id: str) -> None:
    parent = require_owned(
        folders_repository.get_folder(parent_id), ctx, "PARENT_NOT_FOUND", "Parent folder not found"
    )
    if parent.class_id != class_id:
        raise ApiError("PARENT_CLASS_MISMATCH", "Parent folder must belong to the same class", 400)


def _folders_with_counts(user_id: str, class_id: str) -> list[dict[str, Any]]:
    folders = [f.to_dict() for f in folders_repository.list_folders(user_id, class_id)]
    counts = folders_repository.count_notes_by_folder([f["id"] for f in folders])
    for folder in folders:
        folder["note_count"] = counts.get(folder["id"], 0)
    return folders


def _note_page(page: notes_repository.NotePage) -> dict[str, Any]:
    return {
        "notes": [n.to_dict() for n in page.notes],
        "cursor": page.cursor,
        "has_more": page.has_more,
    }


# =============================================================================
# FOLDER ACTIONS
# =============================================================================


def folder_create(data: dict[str, Any], ctx: GatewayContext) -> dict[str, Any]:
    """Create a folder at the end of its siblings."""
    params = parse_input(FolderCreateInput, data)
    user_id = ctx.require_user()

    _owned_class(ctx, params.class_id)
    if params.parent_id:
        _check_parent(ctx, params.parent_id, params.class_id)

    folder = folders_repository.insert_folder(user_id, params.class_id, params.name, params.parent_id)
    logger.info("folder_created", request_id=ctx.request_id, folder_id=folder.id, class_id=folder.class_id)
    return {"folder": folder.to_dict()}


def folder_update(data: dict[str, Any], ctx: GatewayContext) -> dict[str, Any]:
    """Rename, re-parent or reorder a folder."""
    params = parse_input(FolderUpdateInput, data)
    changes = params.changes()
    if not changes:
        raise ApiError("NO_UPDATES", "At least one of name, parent_id, or sort_index must be provided", 400)

    current = _owned_folder(ctx, params.folder_id)

    if "parent_id" in changes:
        parent_id = changes["parent_id"]
        if parent_id == current.id:
            raise ApiError("CANNOT_BE_OWN_PARENT", "Folder cannot be its own parent", 400)
        if parent_id is not None:
            _check_parent(ctx, parent_id, current.class_id)

    try:
        folder = folders_repository.update_folder(current.id, changes)
    except CircularFolderError as e:
        raise ApiError("CIRCULAR_REFERENCE", "Cannot move folder: would create a circular reference", 400) from e
    except KeyError as e:
        raise ApiError("FOLDER_NOT_FOUND", FOLDER_NOT_FOUND, 404) from e

    logger.info("folder_updated", request_id=ctx.request_id, folder_id=folder.id, fields=sorted(changes))
    return {"folder": folder.to_dict()}


def folder_delete(data: dict[str, Any], ctx: GatewayContext) -> dict[str, Any]:
    """Delete a folder; non-empty folders need a cascade mode."""
    folder_id = _query_param(ctx, "folder_id", "MISSING_FOLDER_ID")
    cascade = ctx.query.get("cascade") or None
    if cascade is not None and cascade not in CASCADE_MODES:
        raise ApiError("INVALID_CASCADE", "cascade must be 'move-to-parent' or 'move-to-uncategorized'", 400)

    folder = _owned_folder(ctx, folder_id)

    contents = folders_repository.get_folder_contents(folder.id)
    if not contents.is_empty and cascade is None:
        raise ApiError(
            "FOLDER_NOT_EMPTY",
            "Folder is not empty. Use cascade parameter to move contents before deleting.",
            409,
        )

    folders_repository.delete_folder(folder.id, cascade)
    logger.info("folder_deleted", request_id=ctx.request_id, folder_id=folder.id, cascade=cascade)
    return {"ok": True}


def folder_tree(data: dict[str, Any], ctx: GatewayContext) -> dict[str, Any]:
    """Nested folders of a class with note counts; optional ``depth`` limit."""
    class_id = _query_param(ctx, "class_id", "MISSING_CLASS_ID")

    max_depth = None
    depth = ctx.query.get("depth", "")
    if depth.isdigit() and int(depth) > 0:
        max_depth = int(depth)

    _owned_class(ctx, class_id)
    folders = _folders_with_counts(ctx.require_user(), class_id)

    tree = build_tree(folders, max_depth=max_depth)
    logger.info("folder_tree_built", request_id=ctx.request_id, class_id=class_id, folder_count=len(folders))
    return {"tree": tree}


def folder_flat(data: dict[str, Any], ctx: GatewayContext) -> dict[str, Any]:
    """Folders of a class in sort order; ``include_counts=true`` adds note counts."""
    class_id = _query_param(ctx, "class_id", "MISSING_CLASS_ID")
    _owned_class(ctx, class_id)

    user_id = ctx.require_user()
    if ctx.query.get("include_counts") == "true":
        folders = _folders_with_counts(user_id, class_id)
    else:
        folders = [f.to_dict() for f in folders_repository.list_folders(user_id, class_id)]

    return {"folders": folders}


def folder_notes(data: dict[str, Any], ctx: GatewayContext) -> dict[str, Any]:
    """Notes in a folder, newest first, cursor paginated."""
    folder_id = _query_param(ctx, "folder_id", "MISSING_FOLDER_ID")
    limit = _page_size(ctx.query.get("limit"))

    folder = _owned_folder(ctx, folder_id)
    page = notes_repository.list_folder_notes(folder.id, limit, ctx.query.get("cursor") or None)
    return _note_page(page)


def _fetch_link(folder_id: str) -> FolderLink | None:
    folder = folders_repository.get_folder(folder_id)
    if folder is None:
        return None
    return FolderLink(id=folder.id, name=folder.name, parent_id=folder.parent_id)


def folder_path(data: dict[str, Any], ctx: GatewayContext) -> dict[str, Any]:
    """Breadcrumbs from the owning class down to a folder."""
    folder_id = _query_param(ctx, "folder_id", "MISSING_FOLDER_ID")
    folder = _owned_folder(ctx, folder_id)

    class_record = notes_repository.get_class(folder.class_id)
    if class_record is None:
        raise ApiError("CLASS_NOT_FOUND", "Class not found", 404)

    chain = walk_folder_path(folder.id, _fetch_link)
    path = build_breadcrumbs(class_record.id, class_record.name, chain)
    return {"path": [segment.to_dict() for segment in path]}


# =============================================================================
# NOTE ACTIONS
# =============================================================================


def note_add_to_folder(data: dict[str, Any], ctx: GatewayContext) -> dict[str, Any]:
    """Move a note into a folder (replacing its folder in that class)."""
    params = parse_input(NoteAddToFolderInput, data)
    user_id = ctx.require_user()

    note = require_owned(
        notes_repository.get_note(params.note_id), ctx, "NOTE_NOT_FOUND", "Note not found or you don't have access"
    )
    folder = _owned_folder(ctx, params.folder_id)
    if note.class_id != folder.class_id:
        raise ApiError("CLASS_MISMATCH", "Note and folder must belong to the same class", 400)

    folders_repository.add_note_to_folder(note.id, folder.id, folder.class_id, user_id)
    logger.info("note_added_to_folder", request_id=ctx.request_id, note_id=note.id, folder_id=folder.id)
    return {"ok": True}


def note_remove_from_folder(data: dict[str, Any], ctx: GatewayContext) -> dict[str, Any]:
    """Drop a note's folder mapping; the note becomes uncategorized."""
    note_id = _query_param(ctx, "note_id", "MISSING_NOTE_ID")
    folder_id = _query_param(ctx, "folder_id", "MISSING_FOLDER_ID")

    removed = folders_repository.remove_note_from_folder(note_id, folder_id, ctx.require_user())
    if not removed:
        raise ApiError("MAPPING_NOT_FOUND", "Note-folder mapping not found or you don't have access", 404)

    logger.info("note_removed_from_folder", request_id=ctx.request_id, note_id=note_id, folder_id=folder_id)
    return {"ok": True}


def notes_uncategorized(data: dict[str, Any], ctx: GatewayContext) -> dict[str, Any]:
    """Notes of a class not mapped to any folder, newest first."""
    class_id = _query_param(ctx, "class_id", "MISSING_CLASS_ID")
    limit = _page_size(ctx.query.get("limit"))

    _owned_class(ctx, class_id)
    page = notes_repository.list_uncategorized_notes(
        ctx.require_user(), class_id, limit, ctx.query.get("cursor") or None
    )
    return _note_page(page)


gateway = Gateway(
    name="workspace",
    actions={
        "folder_create": folder_create,
        "folder_update": folder_update,
        "folder_delete": folder_delete,
        "folder_tree": folder_tree,
        "folder_flat": folder_flat,
        "folder_notes": folder_notes,
        "folder_path": folder_path,
        "note_add_to_folder": note_add_to_folder,
        "note_remove_from_folder": note_remove_from_folder,
        "notes_uncategorized": notes_uncategorized,
    },
    require_auth=True,
    max_body_size=100 * 1024,
)


@router.api_route("/api/v1/workspace", methods=["GET", "POST", "PATCH", "DELETE"])
async def workspace_gateway(request: Request) -> JSONResponse:
    """Dispatch ``?action=folder_*|note_*|notes_uncategorized``."""
    return await gateway.handle(request)

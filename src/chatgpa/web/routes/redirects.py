"""Legacy single-purpose paths, redirected (307) to their gateway action.

307 keeps the method and body, so old POST clients keep working.
"""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import RedirectResponse

router = APIRouter(tags=["legacy"])

# legacy path -> (gateway, action)
LEGACY_ROUTES: dict[str, tuple[str, str]] = {
    "/api/track": ("util", "track"),
    "/api/ping": ("util", "ping"),
    "/api/use-tokens": ("util", "use_tokens"),
    "/api/generate-quiz": ("ai", "generate_quiz"),
    "/api/grade": ("ai", "grade"),
    "/api/attempts/start": ("attempts", "start"),
    "/api/attempts/meta": ("attempts", "update_meta"),
    "/api/folders/tree": ("workspace", "folder_tree"),
    "/api/folders/flat": ("workspace", "folder_flat"),
    "/api/notes/add-to-folder": ("workspace", "note_add_to_folder"),
    "/api/notes/remove-from-folder": ("workspace", "note_remove_from_folder"),
    "/api/classes/notes-uncategorized": ("workspace", "notes_uncategorized"),
}


def legacy_target(path: str, query: str) -> str | None:
    """Gateway URL for a legacy path, carrying over the query string."""
    route = LEGACY_ROUTES.get(path)
    if route is None:
        return None
    gateway, action = route
    target = f"/api/v1/{gateway}?action={action}"
    return f"{target}&{query}" if query else target


async def _redirect(request: Request) -> RedirectResponse:
    target = legacy_target(request.url.path, request.url.query)
    assert target is not None
    return RedirectResponse(target, status_code=307)


for _path in LEGACY_ROUTES:
    router.add_api_route(
        _path,
        _redirect,
        methods=["GET", "POST", "PATCH", "DELETE"],
        include_in_schema=False,
    )

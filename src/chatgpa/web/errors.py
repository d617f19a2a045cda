"""API error types and their JSON envelope.

Gateway routes answer failures as ``{"code", "message"}`` (plus
``retryAfter`` when rate limited). ``/api/chat`` keeps the older
``{"error", "detail", "request_id"}`` envelope via ``ChatError``.
"""

from __future__ import annotations

from typing import Any


class ApiError(Exception):
    """Error raised by an action and returned to the client as-is."""

    def __init__(self, code: str, message: str, status: int = 400, **extra: Any):
        self.code = code
        self.message = message
        self.status = status
        self.extra = extra
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the response body."""
        return {"code": self.code, "message": self.message, **self.extra}


class ChatError(Exception):
    """Error of the legacy chat endpoint (``{error, detail}`` envelope)."""

    def __init__(self, status: int, error: str, detail: str | None = None):
        self.status = status
        self.error = error
        self.detail = detail
        super().__init__(detail or error)

    def to_dict(self, request_id: str | None = None) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.error}
        if self.detail:
            payload["detail"] = self.detail
        if request_id:
            payload["request_id"] = request_id
        return payload

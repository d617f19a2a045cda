"""Request models for the gateway actions.

Validation messages are part of the API: clients show the first one, so
custom messages are kept short and human readable.
"""

from __future__ import annotations

import uuid
from typing import Annotated, Any, Literal, Optional

from pydantic import AfterValidator, BaseModel, Field, StringConstraints, model_validator

from chatgpa.core.quiz_generator import QuizConfig


def _check_uuid(value: str) -> str:
    try:
        uuid.UUID(value)
    except ValueError as e:
        raise ValueError("Invalid uuid") from e
    return value


UUIDStr = Annotated[str, AfterValidator(_check_uuid)]

# =============================================================================
# ATTEMPTS
# =============================================================================


class StartInput(BaseModel):
    quiz_id: UUIDStr
    idempotency_key: Optional[UUIDStr] = None


class AutosaveInput(BaseModel):
    attempt_id: UUIDStr
    responses: dict[str, str]


class UpdateMetaInput(BaseModel):
    attempt_id: UUIDStr
    title: Optional[Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=100)]] = None
    subject: Optional[Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=50)]] = None

    @model_validator(mode="after")
    def _one_field(self) -> UpdateMetaInput:
        if self.title is None and self.subject is None:
            raise ValueError("At least one of title or subject must be provided")
        return self


# =============================================================================
# AI
# =============================================================================

MIN_NOTES_CHARS = 20
MAX_NOTES_CHARS = 50000


class GenerateQuizInput(BaseModel):
    class_id: Optional[UUIDStr] = None
    notes_text: str
    # Validated separately so config problems answer CONFIG_INVALID
    config: Optional[dict[str, Any]] = None

    @model_validator(mode="after")
    def _check_notes(self) -> GenerateQuizInput:
        self.notes_text = self.notes_text.strip()
        if len(self.notes_text) < MIN_NOTES_CHARS:
            raise ValueError("Notes text must be at least 20 characters")
        if len(self.notes_text) > MAX_NOTES_CHARS:
            raise ValueError("Notes text too long (max 50,000 characters)")
        return self


class GradeInput(BaseModel):
    quiz_id: Optional[UUIDStr] = None
    attempt_id: Optional[UUIDStr] = None
    responses: dict[str, str]

    @model_validator(mode="after")
    def _one_target(self) -> GradeInput:
        if not self.quiz_id and not self.attempt_id:
            raise ValueError("Must provide either quiz_id or attempt_id")
        return self


# =============================================================================
# WORKSPACE
# =============================================================================

FolderName = Annotated[str, StringConstraints(min_length=1, max_length=64)]


class FolderCreateInput(BaseModel):
    class_id: UUIDStr
    parent_id: Optional[UUIDStr] = None
    name: FolderName


class FolderUpdateInput(BaseModel):
    """Partial update; ``model_fields_set`` tells "move to root" from "unchanged"."""

    folder_id: UUIDStr
    name: Optional[FolderName] = None
    parent_id: Optional[UUIDStr] = None
    sort_index: Optional[int] = None

    def changes(self) -> dict[str, Any]:
        return {
            name: getattr(self, name)
            for name in ("name", "parent_id", "sort_index")
            if name in self.model_fields_set and (name == "parent_id" or getattr(self, name) is not None)
        }


class NoteAddToFolderInput(BaseModel):
    note_id: UUIDStr
    folder_id: UUIDStr


# =============================================================================
# UTIL
# =============================================================================


class TrackInput(BaseModel):
    event: Annotated[str, StringConstraints(min_length=1, max_length=64)]
    data: Optional[dict[str, Any]] = None


class UseTokensInput(BaseModel):
    userId: UUIDStr
    tokens: int = Field(gt=0, strict=True)


class ClientLogInput(BaseModel):
    level: Literal["info", "warn", "error"] = "info"
    message: Annotated[str, StringConstraints(min_length=1, max_length=200)]
    source: Optional[Annotated[str, StringConstraints(max_length=50)]] = None
    gen_request_id: Optional[str] = None
    data: Optional[dict[str, Any]] = None


def parse_quiz_config(raw: dict[str, Any] | None) -> QuizConfig:
    """Normalize an optional quiz config (missing fields take defaults)."""
    return QuizConfig.model_validate(raw or {})

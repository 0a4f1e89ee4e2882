"""Pydantic models for API request/response serialization.

These models mirror the diagram_forge dataclasses and provide proper JSON
serialization for the FastAPI endpoints.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Submission models
# ---------------------------------------------------------------------------


class SubmitContentRequest(BaseModel):
    """Content submitted for moderation."""

    content_id: str = Field(..., min_length=1)
    title: str = ""
    summary: Optional[str] = None
    source_text: str = ""
    format: str = Field("mermaid", pattern="^(mermaid|plantuml)$")


class SubmitContentResponse(BaseModel):
    """Outcome of one pipeline run as shown to the submitter.

    Flags, confidence and detector findings are only exposed to admins
    through the moderation log.
    """

    content_id: str
    status: str
    decision: Optional[str] = None


# ---------------------------------------------------------------------------
# Review models
# ---------------------------------------------------------------------------


class ModerationLogResponse(BaseModel):
    """Mirrors diagram_forge.content.moderation_log.ModerationLogEntry."""

    id: str
    content_id: str
    action: str
    new_status: str
    previous_status: Optional[str] = None
    reason: str = ""
    ai_confidence: Optional[float] = None
    ai_flags: list[str] = Field(default_factory=list)
    performed_by: Optional[str] = None
    inserted_at: str = ""


class ReviewQueueItemResponse(BaseModel):
    content_id: str
    status: str
    reason: str = ""
    moderated_by: Optional[str] = None
    moderated_at: str = ""
    submitted_at: str = ""


class AdminApproveRequest(BaseModel):
    reason: str = "Manually approved"


class AdminRejectRequest(BaseModel):
    reason: str = Field(..., min_length=1)


class ModerationStatsResponse(BaseModel):
    pending: int = 0
    approved: int = 0
    rejected: int = 0
    manual_review: int = 0


class QuotaResponse(BaseModel):
    """Remaining content-creation quota for the calling user."""

    user_id: str
    minute: int
    day: int

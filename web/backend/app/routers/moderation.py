"""Content moderation API router.

Prefix: ``/api/moderation``
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.concurrency import run_in_threadpool

from diagram_forge.config import load_config
from diagram_forge.content.moderation_log import InvalidModerationLog, ModerationLogEntry
from diagram_forge.content.models import CandidateContent
from diagram_forge.content.pipeline import ContentPipeline, OutcomeStatus, PipelineOutcome, build_pipeline
from web.backend.app.middleware.auth import CurrentUser, get_current_user, get_optional_user, require_admin
from web.backend.app.models.api import (
    AdminApproveRequest,
    AdminRejectRequest,
    ModerationLogResponse,
    ModerationStatsResponse,
    QuotaResponse,
    ReviewQueueItemResponse,
    SubmitContentRequest,
    SubmitContentResponse,
)

router = APIRouter(prefix="/api/moderation", tags=["moderation"])

# ---------------------------------------------------------------------------
# Shared pipeline instance (singleton for the running process)
# ---------------------------------------------------------------------------
_pipeline: Optional[ContentPipeline] = None


def get_pipeline() -> ContentPipeline:
    """Return the singleton pipeline, built from the loaded configuration."""
    global _pipeline
    if _pipeline is None:
        _pipeline = build_pipeline(load_config())
    return _pipeline


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _log_to_response(entry: ModerationLogEntry) -> ModerationLogResponse:
    return ModerationLogResponse(**entry.to_dict())


def _outcome_to_response(outcome: PipelineOutcome, pipeline: ContentPipeline) -> SubmitContentResponse:
    if outcome.moderation_status is not None:
        current = outcome.moderation_status
    else:
        current = pipeline.service.store.get_status(outcome.content.id)

    return SubmitContentResponse(
        content_id=outcome.content.id,
        status=current.value,
        decision=outcome.result.decision.value if outcome.result else None,
    )


# =========================================================================
# Submission
# =========================================================================


@router.post("/submit", response_model=SubmitContentResponse)
async def submit_content(
    req: SubmitContentRequest,
    request: Request,
    user: Optional[CurrentUser] = Depends(get_optional_user),
    pipeline: ContentPipeline = Depends(get_pipeline),
):
    """Sanitize, scan, rate-limit and moderate one piece of content."""
    content = CandidateContent(
        id=req.content_id,
        title=req.title,
        summary=req.summary,
        source_text=req.source_text,
        format=req.format,
    )
    ip_address = request.client.host if request.client else None

    # Runs to completion in a worker thread even if the client disconnects.
    outcome = await run_in_threadpool(
        pipeline.submit,
        content,
        user_id=user.id if user else None,
        ip_address=ip_address,
    )

    if outcome.status is OutcomeStatus.rate_limited:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Rate limit exceeded. Please try again later.",
        )
    if outcome.status is OutcomeStatus.error:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Content moderation is temporarily unavailable.",
        )
    return _outcome_to_response(outcome, pipeline)


@router.get("/quota", response_model=QuotaResponse)
async def get_quota(
    user: CurrentUser = Depends(get_current_user),
    pipeline: ContentPipeline = Depends(get_pipeline),
):
    """Return how many more items the caller may create right now."""
    quota = pipeline.rate_limiter.get_remaining_quota(user.id)
    return QuotaResponse(user_id=user.id, **quota)


# =========================================================================
# Review queue
# =========================================================================


@router.get("/queue", response_model=list[ReviewQueueItemResponse])
async def list_review_queue(
    limit: int = Query(50, ge=1, le=500),
    admin: CurrentUser = Depends(require_admin),
    pipeline: ContentPipeline = Depends(get_pipeline),
):
    """List content waiting for manual review, newest submission first."""
    items = pipeline.service.store.list_pending_review(limit=limit)
    return [ReviewQueueItemResponse(**item) for item in items]


@router.get("/stats", response_model=ModerationStatsResponse)
async def get_stats(
    admin: CurrentUser = Depends(require_admin),
    pipeline: ContentPipeline = Depends(get_pipeline),
):
    """Count tracked content per moderation status."""
    return ModerationStatsResponse(**pipeline.service.store.get_stats())


@router.get("/{content_id}/logs", response_model=list[ModerationLogResponse])
async def list_content_logs(
    content_id: str,
    admin: CurrentUser = Depends(require_admin),
    pipeline: ContentPipeline = Depends(get_pipeline),
):
    """Return the moderation history for one content item, newest first."""
    entries = pipeline.service.store.list_logs(content_id)
    if not entries:
        raise HTTPException(status_code=404, detail=f"No moderation history for '{content_id}'")
    return [_log_to_response(e) for e in entries]


@router.post("/{content_id}/approve", response_model=ModerationLogResponse)
async def approve_content(
    content_id: str,
    req: AdminApproveRequest,
    admin: CurrentUser = Depends(require_admin),
    pipeline: ContentPipeline = Depends(get_pipeline),
):
    """Approve content manually."""
    try:
        entry = pipeline.service.admin_approve(content_id, admin.id, req.reason)
    except InvalidModerationLog as e:
        raise HTTPException(status_code=422, detail=e.issues)
    return _log_to_response(entry)


@router.post("/{content_id}/reject", response_model=ModerationLogResponse)
async def reject_content(
    content_id: str,
    req: AdminRejectRequest,
    admin: CurrentUser = Depends(require_admin),
    pipeline: ContentPipeline = Depends(get_pipeline),
):
    """Reject content manually; a reason is required."""
    try:
        entry = pipeline.service.admin_reject(content_id, admin.id, req.reason)
    except InvalidModerationLog as e:
        raise HTTPException(status_code=422, detail=e.issues)
    return _log_to_response(entry)

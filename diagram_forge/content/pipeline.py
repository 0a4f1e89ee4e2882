"""Content-safety pipeline and moderation workflow.

``ContentPipeline.submit`` runs the stages for one content item strictly in
order:

1. sanitize (HTML, links, diagram directives)
2. detect prompt-injection patterns
3. rate-limit gate
4. moderate with the LLM (skipped when the detector policy short-circuits,
   or when the same text was already approved or rejected)
5. persist the status change and its audit entry in one unit of work

``ModerationService`` owns step 5 and the admin actions.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from diagram_forge.config import ContentSafetyConfig, InjectionAction
from diagram_forge.content.injection_detector import InjectionDetector
from diagram_forge.content.models import (
    CandidateContent,
    Decision,
    DetectionResult,
    ModerationError,
    ModerationResult,
    ModerationStatus,
)
from diagram_forge.content.moderation_log import LogAction, ModerationLogEntry
from diagram_forge.content.moderator import Moderator
from diagram_forge.content.rate_limiter import CounterStore, RateLimiter, RateLimitResult, build_counter_store
from diagram_forge.content.sanitizer import Sanitizer
from diagram_forge.content.store import ModerationStore
from diagram_forge.llm.client import ChatClient, LLMClient

logger = logging.getLogger(__name__)

PROMPT_INJECTION_FLAG = "prompt_injection"

SETTLED_STATUSES = (ModerationStatus.approved, ModerationStatus.rejected)


class OutcomeStatus(str, Enum):
    moderated = "moderated"
    rate_limited = "rate_limited"
    error = "error"
    skipped = "skipped"
    unchanged = "unchanged"


@dataclass
class PipelineOutcome:
    """Everything the pipeline learned about one submission."""

    status: OutcomeStatus
    content: CandidateContent
    detection: DetectionResult = field(default_factory=DetectionResult)
    result: Optional[ModerationResult] = None
    error: Optional[ModerationError] = None
    rate_limit: Optional[RateLimitResult] = None
    log_entry: Optional[ModerationLogEntry] = None

    @property
    def moderation_status(self) -> Optional[ModerationStatus]:
        """Status recorded for the content, if this submission changed it."""
        if self.log_entry is None:
            return None
        return ModerationStatus(self.log_entry.new_status)


# ---------------------------------------------------------------------------
# Moderation service (status changes + audit log)
# ---------------------------------------------------------------------------


class ModerationService:
    """Applies AI and admin decisions to stored content status.

    Parameters
    ----------
    store : ModerationStore
        Holds statuses and the audit log.
    auto_approve_threshold : float
        AI approvals below this confidence go to manual review instead.
    """

    def __init__(self, store: ModerationStore, auto_approve_threshold: float = 0.8) -> None:
        self.store = store
        self.auto_approve_threshold = auto_approve_threshold

    def _ai_transition(self, result: ModerationResult) -> tuple[ModerationStatus, LogAction]:
        if result.decision is Decision.approve:
            if result.confidence >= self.auto_approve_threshold:
                return ModerationStatus.approved, LogAction.ai_approve
            return ModerationStatus.manual_review, LogAction.ai_manual_review
        if result.decision is Decision.reject:
            return ModerationStatus.rejected, LogAction.ai_reject
        return ModerationStatus.manual_review, LogAction.ai_manual_review

    def settled_status(self, content_id: str, fingerprint: str) -> Optional[ModerationStatus]:
        """Return the final status of unchanged, already decided content.

        ``None`` means the content still needs moderation: it is new, not
        yet decided, or its text differs from what was decided on.
        """
        item = self.store.get_item(content_id)
        if item is None or item.get("fingerprint") != fingerprint:
            return None
        status = ModerationStatus(item["status"])
        return status if status in SETTLED_STATUSES else None

    def apply_result(
        self,
        content_id: str,
        result: ModerationResult,
        fingerprint: Optional[str] = None,
    ) -> Optional[ModerationLogEntry]:
        """Record an AI decision.

        Content that a decision has already settled (approved or rejected) is
        left alone and ``None`` is returned.  When *fingerprint* differs from
        the stored one the content has changed, so the item starts over from
        ``pending`` and the decision applies.
        """
        new_status, action = self._ai_transition(result)

        def build(current: ModerationStatus) -> Optional[ModerationLogEntry]:
            if current in SETTLED_STATUSES:
                logger.info("Content %s already moderated (%s), skipping", content_id, current.value)
                return None
            return ModerationLogEntry.for_ai(
                content_id=content_id,
                action=action,
                new_status=new_status,
                previous_status=current,
                reason=result.reason,
                ai_confidence=result.confidence,
                ai_flags=result.flags,
            )

        entry = self.store.transition(content_id, build, fingerprint=fingerprint)
        if entry is not None:
            logger.info(
                "Content moderation completed for %s: %s (confidence %.2f)",
                content_id,
                entry.new_status,
                result.confidence,
                extra={"content_id": content_id, "decision": result.decision.value, "confidence": result.confidence},
            )
        return entry

    def _admin(self, content_id: str, action: LogAction, new_status: ModerationStatus,
               admin_id: str, reason: str) -> ModerationLogEntry:
        entry = self.store.transition(
            content_id,
            lambda current: ModerationLogEntry.for_admin(
                content_id=content_id,
                action=action,
                new_status=new_status,
                performed_by=admin_id,
                reason=reason,
                previous_status=current,
            ),
        )
        logger.info("Admin %s set content %s to %s", admin_id, content_id, new_status.value)
        return entry

    def admin_approve(self, content_id: str, admin_id: str, reason: str = "Manually approved") -> ModerationLogEntry:
        """Approve content from any status, e.g. out of the review queue."""
        return self._admin(content_id, LogAction.admin_approve, ModerationStatus.approved, admin_id, reason)

    def admin_reject(self, content_id: str, admin_id: str, reason: str) -> ModerationLogEntry:
        """Reject content from any status; *reason* is mandatory."""
        return self._admin(content_id, LogAction.admin_reject, ModerationStatus.rejected, admin_id, reason)


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class ContentPipeline:
    """Runs sanitize -> detect -> rate-limit -> moderate -> persist."""

    def __init__(
        self,
        sanitizer: Sanitizer,
        detector: InjectionDetector,
        rate_limiter: RateLimiter,
        moderator: Moderator,
        service: ModerationService,
        moderation_enabled: bool = True,
    ) -> None:
        self.sanitizer = sanitizer
        self.detector = detector
        self.rate_limiter = rate_limiter
        self.moderator = moderator
        self.service = service
        self.moderation_enabled = moderation_enabled

    def _rate_limit(self, user_id: Optional[str], ip_address: Optional[str]) -> Optional[RateLimitResult]:
        """Return the first denying gate, or ``None`` when all allow."""
        if user_id:
            checks = [
                lambda: self.rate_limiter.check_content_creation(user_id),
                lambda: self.rate_limiter.check_moderation_submission(user_id),
            ]
        elif ip_address:
            checks = [lambda: self.rate_limiter.check_ip_limit(ip_address)]
        else:
            checks = []

        for check in checks:
            result = check()
            if result.denied:
                return result
        return None

    def _injection_verdict(self, detection: DetectionResult) -> Optional[ModerationResult]:
        """Short-circuit decision for suspicious content, per the detector policy."""
        if detection.clean or self.detector.action is InjectionAction.log_only:
            return None
        if self.detector.action is InjectionAction.reject:
            return ModerationResult(
                decision=Decision.reject,
                confidence=1.0,
                reason="Content contains prompt injection patterns",
                flags=[PROMPT_INJECTION_FLAG],
            )
        return ModerationResult(
            decision=Decision.manual_review,
            confidence=1.0,
            reason="Flagged by injection detector: " + "; ".join(detection.reasons),
            flags=[PROMPT_INJECTION_FLAG],
        )

    def submit(
        self,
        content: CandidateContent,
        user_id: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> PipelineOutcome:
        """Run the full pipeline for one submission."""
        sanitized = self.sanitizer.sanitize_content(content)
        detection = self.detector.scan_content(sanitized)

        denied = self._rate_limit(user_id, ip_address)
        if denied is not None:
            logger.info("Submission for content %s rate limited (%s)", content.id, denied.key)
            return PipelineOutcome(
                status=OutcomeStatus.rate_limited,
                content=sanitized,
                detection=detection,
                rate_limit=denied,
            )

        if not self.moderation_enabled:
            return PipelineOutcome(status=OutcomeStatus.skipped, content=sanitized, detection=detection)

        fingerprint = sanitized.fingerprint
        settled = self.service.settled_status(content.id, fingerprint)
        if settled is not None:
            logger.info("Content %s unchanged since it was %s, skipping moderation", content.id, settled.value)
            return PipelineOutcome(status=OutcomeStatus.unchanged, content=sanitized, detection=detection)

        result = self._injection_verdict(detection)
        if result is None:
            logger.info("Starting content moderation for %s", content.id)
            outcome = self.moderator.moderate(sanitized)
            if isinstance(outcome, ModerationError):
                logger.error(
                    "Content moderation failed for %s: %s",
                    content.id,
                    outcome.message,
                    extra={"content_id": content.id, "error_type": type(outcome).__name__},
                )
                return PipelineOutcome(
                    status=OutcomeStatus.error,
                    content=sanitized,
                    detection=detection,
                    error=outcome,
                )
            result = outcome

        entry = self.service.apply_result(content.id, result, fingerprint=fingerprint)
        if entry is None:
            return PipelineOutcome(status=OutcomeStatus.unchanged, content=sanitized, detection=detection)
        return PipelineOutcome(
            status=OutcomeStatus.moderated,
            content=sanitized,
            detection=detection,
            result=result,
            log_entry=entry,
        )


def build_pipeline(
    config: ContentSafetyConfig,
    client: Optional[ChatClient] = None,
    store: Optional[ModerationStore] = None,
    counter_store: Optional[CounterStore] = None,
) -> ContentPipeline:
    """Wire every component from one configuration tree."""
    if client is None:
        client = LLMClient(model=config.moderator.model, timeout=config.moderator.timeout)
    if store is None:
        store = ModerationStore(config.data_dir or None)
    if counter_store is None:
        counter_store = build_counter_store(config.rate_limits)

    return ContentPipeline(
        sanitizer=Sanitizer(config.sanitizer),
        detector=InjectionDetector(config.injection_detector),
        rate_limiter=RateLimiter(counter_store, config.rate_limits),
        moderator=Moderator(client, config.moderator),
        service=ModerationService(store, config.moderator.auto_approve_threshold),
        moderation_enabled=config.moderation_enabled,
    )

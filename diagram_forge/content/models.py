"""Data models for the content-safety pipeline."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union


class DiagramFormat(str, Enum):
    mermaid = "mermaid"
    plantuml = "plantuml"


class Decision(str, Enum):
    """Verdict produced by the moderator."""

    approve = "approve"
    reject = "reject"
    manual_review = "manual_review"


class ModerationStatus(str, Enum):
    """Visible moderation status of a content item."""

    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    manual_review = "manual_review"


@dataclass(frozen=True)
class CandidateContent:
    """Read-only view of a diagram submitted for publication."""

    id: str
    title: str
    source_text: str
    summary: Optional[str] = None
    format: DiagramFormat = DiagramFormat.mermaid

    def __post_init__(self) -> None:
        if isinstance(self.format, str) and not isinstance(self.format, DiagramFormat):
            object.__setattr__(self, "format", DiagramFormat(self.format))

    @property
    def fingerprint(self) -> str:
        """SHA-256 of the moderated fields, used to tie a verdict to this exact text."""
        payload = json.dumps([self.title, self.summary, self.source_text, self.format.value])
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()


@dataclass
class ModerationResult:
    """Outcome of a moderation pass."""

    decision: Decision
    confidence: float
    reason: str = ""
    flags: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if isinstance(self.decision, str) and not isinstance(self.decision, Decision):
            self.decision = Decision(self.decision)
        self.confidence = min(1.0, max(0.0, float(self.confidence)))

    @property
    def is_suspicious(self) -> bool:
        return "suspicious_output" in self.flags


# ---------------------------------------------------------------------------
# Moderation errors (closed set; returned, never raised)
# ---------------------------------------------------------------------------


@dataclass
class ModerationError:
    """Base for the moderation error variants."""

    message: str


@dataclass
class ProviderError(ModerationError):
    """The LLM call failed (network, auth, provider rate limit, timeout)."""


@dataclass
class ParseError(ModerationError):
    """The LLM replied with something that is not a valid decision."""


@dataclass
class Disabled(ModerationError):
    """No LLM provider is configured, so no decision can be made."""


ModerationOutcome = Union[ModerationResult, ModerationError]


# ---------------------------------------------------------------------------
# Signals
# ---------------------------------------------------------------------------


@dataclass
class DetectionResult:
    """Verdict of the prompt-injection detector."""

    suspicious: bool = False
    reasons: list[str] = field(default_factory=list)
    categories: list[str] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not self.suspicious


@dataclass
class ValidationResult:
    """Verdict of the moderator's self-check on an LLM result."""

    result: ModerationResult
    reasons: list[str] = field(default_factory=list)

    @property
    def suspicious(self) -> bool:
        return bool(self.reasons)

"""Heuristic prompt-injection detection for user content.

Scans sanitized text for phrasings that try to override the moderator's
instructions, dictate its output, change its role, or extract its prompt.
Detection never blocks content by itself; it produces a signal and the
caller applies the configured :class:`~diagram_forge.config.InjectionAction`.

The patterns live in one declarative table, so adding a phrasing or a
category is a data change.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from typing import NamedTuple, Optional

from diagram_forge.config import InjectionAction, InjectionDetectorConfig
from diagram_forge.content.models import CandidateContent, DetectionResult

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 100

INSTRUCTION_OVERRIDE = "instruction_override"
OUTPUT_MANIPULATION = "output_manipulation"
ROLE_MANIPULATION = "role_manipulation"
EXTRACTION = "extraction"


class InjectionPattern(NamedTuple):
    pattern: re.Pattern[str]
    label: str
    category: str


def _p(regex: str, label: str, category: str) -> InjectionPattern:
    return InjectionPattern(re.compile(regex, re.IGNORECASE), label, category)


INJECTION_PATTERNS: list[InjectionPattern] = [
    # -- instruction override ------------------------------------------------
    _p(r"ignore\s+(all\s+)?(the\s+)?(previous|prior|above)\s+instructions?",
       "instruction override attempt", INSTRUCTION_OVERRIDE),
    _p(r"disregard\s+(the\s+)?(above|previous)", "instruction override attempt", INSTRUCTION_OVERRIDE),
    _p(r"forget\s+(everything|all)\s+(above|previous|your\s+instructions|instructions)",
       "instruction override attempt", INSTRUCTION_OVERRIDE),
    _p(r"forget\s+your\s+instructions", "instruction override attempt", INSTRUCTION_OVERRIDE),
    _p(r"new\s+instructions?:", "new instructions injection", INSTRUCTION_OVERRIDE),
    _p(r"override\s+(the\s+)?system", "system override attempt", INSTRUCTION_OVERRIDE),
    _p(r"do\s+not\s+follow\s+(the\s+)?(above|previous|system)",
       "instruction override attempt", INSTRUCTION_OVERRIDE),
    # -- output manipulation -------------------------------------------------
    _p(r"output\s*:?\s+(only\s+)?json", "output format manipulation", OUTPUT_MANIPULATION),
    _p(r"respond\s+with\s+(only\s+)?[{\[]", "output format manipulation", OUTPUT_MANIPULATION),
    _p(r"return\s+(this\s+)?json\s*:", "output format manipulation", OUTPUT_MANIPULATION),
    _p(r"your\s+response\s+(should|must)\s+be\s*:", "response format manipulation", OUTPUT_MANIPULATION),
    _p(r"\{\s*\"decision\"\s*:\s*\"approve\"", "direct moderation response injection", OUTPUT_MANIPULATION),
    # -- role manipulation ---------------------------------------------------
    _p(r"you\s+are\s+now\s+(a|an|the)\b", "role manipulation attempt", ROLE_MANIPULATION),
    _p(r"\bact\s+as\s+(if\s+you\s+(are|were)|a|an)\b", "role manipulation attempt", ROLE_MANIPULATION),
    _p(r"pretend\s+(to\s+be|you\s+are)", "role manipulation attempt", ROLE_MANIPULATION),
    _p(r"from\s+now\s+on,?\s+you", "role manipulation attempt", ROLE_MANIPULATION),
    _p(r"assume\s+the\s+role\s+of", "role manipulation attempt", ROLE_MANIPULATION),
    # -- extraction ----------------------------------------------------------
    _p(r"reveal\s+your\s+(system\s+)?prompt", "prompt extraction attempt", EXTRACTION),
    _p(r"show\s+(me\s+)?(your\s+)?system\s+(message|prompt|instructions)",
       "prompt extraction attempt", EXTRACTION),
    _p(r"what\s+are\s+your\s+instructions", "prompt extraction attempt", EXTRACTION),
    _p(r"print\s+your\s+(initial\s+)?instructions", "prompt extraction attempt", EXTRACTION),
    _p(r"repeat\s+(the\s+)?(above|your)\s+(text|prompt|instructions)",
       "prompt extraction attempt", EXTRACTION),
]

# Fields of CandidateContent that are scanned, in report order
SCANNED_FIELDS = ("title", "summary", "source_text")


def pattern_categories() -> dict[str, int]:
    """Return the number of patterns in each category."""
    return dict(Counter(p.category for p in INJECTION_PATTERNS))


class InjectionDetector:
    """Table-driven scanner configured by :class:`InjectionDetectorConfig`."""

    def __init__(
        self,
        config: Optional[InjectionDetectorConfig] = None,
        patterns: Optional[list[InjectionPattern]] = None,
    ) -> None:
        self.config = config or InjectionDetectorConfig()
        self.patterns = INJECTION_PATTERNS if patterns is None else patterns

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    @property
    def action(self) -> InjectionAction:
        """Configured response: flag for review, reject, or log only."""
        return self.config.action

    def scan(self, text: Optional[str]) -> DetectionResult:
        """Scan *text* and return the de-duplicated labels that matched.

        >>> InjectionDetector().scan("A simple flowchart about databases").clean
        True
        """
        if not text or not self.config.enabled:
            return DetectionResult()

        reasons: list[str] = []
        categories: list[str] = []
        for entry in self.patterns:
            if entry.label in reasons or not entry.pattern.search(text):
                continue
            reasons.append(entry.label)
            if entry.category not in categories:
                categories.append(entry.category)

        if not reasons:
            return DetectionResult()

        logger.warning(
            "Prompt injection patterns detected: %s (preview: %r)",
            ", ".join(reasons),
            text[:PREVIEW_LENGTH],
            extra={"patterns": reasons, "text_preview": text[:PREVIEW_LENGTH]},
        )
        return DetectionResult(suspicious=True, reasons=reasons, categories=categories)

    def scan_content(self, content: CandidateContent) -> DetectionResult:
        """Scan title, summary and source independently.

        Reasons are annotated with the field they came from, e.g.
        ``"role manipulation attempt (in summary)"``.
        """
        reasons: list[str] = []
        categories: list[str] = []
        suspicious_fields: list[str] = []

        for field_name in SCANNED_FIELDS:
            result = self.scan(getattr(content, field_name))
            if result.clean:
                continue
            suspicious_fields.append(field_name)
            for reason in result.reasons:
                annotated = f"{reason} (in {field_name})"
                if annotated not in reasons:
                    reasons.append(annotated)
            categories.extend(c for c in result.categories if c not in categories)

        if not suspicious_fields:
            return DetectionResult()

        logger.warning(
            "Prompt injection detected in content %s (fields: %s)",
            content.id,
            ", ".join(suspicious_fields),
            extra={"content_id": content.id, "suspicious_fields": suspicious_fields},
        )
        return DetectionResult(suspicious=True, reasons=reasons, categories=categories)

"""AI-powered content moderation for diagrams.

Sends the candidate content to the LLM inside clearly delimited untrusted
blocks, parses the JSON verdict, and then checks the verdict itself for signs
that the model was manipulated by the content it was reading.  A result that
fails any check is downgraded to ``manual_review``, so a successful injection
can never turn into a silent approval.

Usage::

    outcome = Moderator(client, config).moderate(content)
    if isinstance(outcome, ModerationError):
        ...  # treat as not yet moderated
    elif outcome.decision is Decision.approve:
        ...
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional

from diagram_forge.config import ModeratorConfig
from diagram_forge.content.models import (
    CandidateContent,
    Decision,
    Disabled,
    ModerationError,
    ModerationOutcome,
    ModerationResult,
    ParseError,
    ProviderError,
    ValidationResult,
)
from diagram_forge.llm.client import PROVIDER_ERRORS, ChatClient
from diagram_forge.llm.prompts import MODERATION_PROMPT

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 0.5
SUSPICIOUS_OUTPUT_FLAG = "suspicious_output"

# Self-validation thresholds
_CERTAIN_APPROVAL = 0.99
_MIN_REASON_LENGTH = 10  # non-whitespace characters
_MIN_PARROT_LENGTH = 20

_FENCE_OPEN = re.compile(r"```(?:json)?\s*", re.IGNORECASE)
_FENCE_CLOSE = re.compile(r"```\s*$")

_INSTRUCTION_FOLLOWING_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"as\s+(you\s+)?instructed", re.IGNORECASE),
    re.compile(r"following\s+your\s+instructions", re.IGNORECASE),
    re.compile(r"as\s+requested", re.IGNORECASE),
    re.compile(r"per\s+your\s+(instructions|request)", re.IGNORECASE),
]

_OVERRIDE_LANGUAGE_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"ignoring\s+(the\s+)?(previous|above|system)", re.IGNORECASE),
    re.compile(r"overrid(e|ing)\s+(the\s+)?instructions", re.IGNORECASE),
    re.compile(r"disregard(ed|ing)\s+(the\s+)?", re.IGNORECASE),
]

REASON_OVERCONFIDENT = "suspiciously certain approval with minimal explanation"
REASON_PARROTING = "reason appears to parrot user input"
REASON_INSTRUCTION_FOLLOWING = "reason contains instruction-following language"
REASON_OVERRIDE = "reason mentions ignoring/overriding instructions"


# ---------------------------------------------------------------------------
# Prompt and response handling
# ---------------------------------------------------------------------------


def build_prompt(content: CandidateContent) -> str:
    """Render the moderation prompt for *content*."""
    return MODERATION_PROMPT.format_map(
        {
            "title": content.title or "",
            "summary": content.summary or "",
            "format": content.format.value,
            "source": content.source_text or "",
        }
    )


def parse_confidence(value: Any) -> float:
    """Coerce *value* into ``[0.0, 1.0]``; unusable input gives 0.5."""
    if isinstance(value, bool):
        return DEFAULT_CONFIDENCE
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        match = re.match(r"\s*[-+]?(\d+(\.\d*)?|\.\d+)", value)
        if not match:
            return DEFAULT_CONFIDENCE
        number = float(match.group(0))
    else:
        return DEFAULT_CONFIDENCE
    if number != number:  # NaN
        return DEFAULT_CONFIDENCE
    return min(1.0, max(0.0, number))


def _strip_code_fence(response: str) -> str:
    cleaned = response.strip()
    if cleaned.startswith("```"):
        cleaned = _FENCE_OPEN.sub("", cleaned, count=1)
        cleaned = _FENCE_CLOSE.sub("", cleaned)
    return cleaned.strip()


def parse_response(response: str) -> ModerationResult | ParseError:
    """Parse the model's raw reply into a :class:`ModerationResult`.

    Markdown code fences are tolerated.  Anything that is not a JSON object
    with a known ``decision`` value is a :class:`ParseError`; the raw reply
    is logged here and never included in the returned error.
    """
    try:
        data = json.loads(_strip_code_fence(response or ""))
    except json.JSONDecodeError as e:
        logger.warning(
            "Failed to parse moderation response: %s; raw response: %r",
            e,
            response,
            extra={"response": response},
        )
        return ParseError(f"Failed to parse moderation response: {e.msg}")

    if not isinstance(data, dict):
        logger.warning("Moderation response is not a JSON object: %r", response)
        return ParseError("Invalid moderation response format - expected an object")

    try:
        decision = Decision(data.get("decision"))
    except ValueError:
        logger.warning("Moderation response has unexpected decision: %r", response)
        return ParseError("Invalid moderation response format - unexpected decision value")

    reason = data.get("reason")
    flags = data.get("flags")
    return ModerationResult(
        decision=decision,
        confidence=parse_confidence(data.get("confidence")),
        reason=reason if isinstance(reason, str) else "",
        flags=[str(f) for f in flags] if isinstance(flags, list) else [],
    )


# ---------------------------------------------------------------------------
# Self-validation
# ---------------------------------------------------------------------------


def _visible_length(text: str) -> int:
    return sum(1 for ch in text if not ch.isspace())


def _parroting_detected(reason: str, content: CandidateContent) -> bool:
    return any(
        text and len(text) > _MIN_PARROT_LENGTH and text in reason
        for text in (content.title, content.summary)
    )


def validate_result(result: ModerationResult, content: CandidateContent) -> ValidationResult:
    """Check an LLM verdict for signs that the model followed injected text.

    Returns a :class:`ValidationResult` whose ``reasons`` lists every check
    that fired; the result itself is returned untouched.
    """
    reasons: list[str] = []

    if (
        result.decision is Decision.approve
        and result.confidence >= _CERTAIN_APPROVAL
        and _visible_length(result.reason) < _MIN_REASON_LENGTH
    ):
        reasons.append(REASON_OVERCONFIDENT)

    if _parroting_detected(result.reason, content):
        reasons.append(REASON_PARROTING)

    if any(p.search(result.reason) for p in _INSTRUCTION_FOLLOWING_PATTERNS):
        reasons.append(REASON_INSTRUCTION_FOLLOWING)

    if any(p.search(result.reason) for p in _OVERRIDE_LANGUAGE_PATTERNS):
        reasons.append(REASON_OVERRIDE)

    return ValidationResult(result=result, reasons=reasons)


# ---------------------------------------------------------------------------
# Moderator
# ---------------------------------------------------------------------------


class Moderator:
    """Runs the LLM policy check for one content item at a time.

    Parameters
    ----------
    client : ChatClient
        LLM provider, e.g. :class:`diagram_forge.llm.LLMClient`.
    config : ModeratorConfig | None
        Enabled flag and advisory auto-approve threshold.
    """

    def __init__(self, client: ChatClient, config: Optional[ModeratorConfig] = None) -> None:
        self.client = client
        self.config = config or ModeratorConfig()

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    @property
    def auto_approve_threshold(self) -> float:
        """Confidence at or above which callers may auto-approve.

        Advisory only; :meth:`moderate` never uses it.
        """
        return self.config.auto_approve_threshold

    def moderate(self, content: CandidateContent) -> ModerationOutcome:
        """Return a :class:`ModerationResult` or a :class:`ModerationError`."""
        if not self.config.enabled:
            return ModerationResult(
                decision=Decision.approve,
                confidence=1.0,
                reason="Moderation disabled",
                flags=[],
            )

        if not self.client.configured:
            logger.error("Content moderation unavailable: no LLM provider configured (content %s)", content.id)
            return Disabled("No LLM provider configured")

        messages = [{"role": "user", "content": build_prompt(content)}]
        try:
            response = self.client.chat(messages, max_tokens=self.config.max_tokens, temperature=0.0)
        except PROVIDER_ERRORS as e:
            logger.error(
                "Content moderation failed for content %s: %s",
                content.id,
                e,
                extra={"content_id": content.id, "error": str(e)},
            )
            return ProviderError(f"Moderation request failed: {e}")

        parsed = parse_response(response.content)
        if isinstance(parsed, ModerationError):
            logger.warning("Unparseable moderation response for content %s", content.id)
            return parsed

        validation = validate_result(parsed, content)
        if not validation.suspicious:
            return parsed

        logger.warning(
            "Suspicious moderation result detected for content %s: %s (model decision: %s)",
            content.id,
            "; ".join(validation.reasons),
            parsed.decision.value,
            extra={
                "content_id": content.id,
                "reasons": validation.reasons,
                "decision": parsed.decision.value,
            },
        )
        return ModerationResult(
            decision=Decision.manual_review,
            confidence=parsed.confidence,
            reason=parsed.reason,
            flags=parsed.flags + [SUSPICIOUS_OUTPUT_FLAG],
        )

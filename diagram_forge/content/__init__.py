"""Content-safety pipeline components."""

from diagram_forge.content.injection_detector import InjectionDetector
from diagram_forge.content.models import (
    CandidateContent,
    Decision,
    DetectionResult,
    DiagramFormat,
    Disabled,
    ModerationError,
    ModerationResult,
    ModerationStatus,
    ParseError,
    ProviderError,
)
from diagram_forge.content.moderation_log import InvalidModerationLog, LogAction, ModerationLogEntry
from diagram_forge.content.moderator import Moderator
from diagram_forge.content.pipeline import ContentPipeline, ModerationService, OutcomeStatus, PipelineOutcome, build_pipeline
from diagram_forge.content.rate_limiter import InMemoryCounterStore, RateLimiter, RateLimitResult, RedisCounterStore
from diagram_forge.content.sanitizer import Sanitizer
from diagram_forge.content.store import ModerationStore

__all__ = [
    "CandidateContent",
    "ContentPipeline",
    "Decision",
    "DetectionResult",
    "DiagramFormat",
    "Disabled",
    "InMemoryCounterStore",
    "InjectionDetector",
    "InvalidModerationLog",
    "LogAction",
    "ModerationError",
    "ModerationLogEntry",
    "ModerationResult",
    "ModerationService",
    "ModerationStatus",
    "ModerationStore",
    "Moderator",
    "OutcomeStatus",
    "ParseError",
    "PipelineOutcome",
    "ProviderError",
    "RateLimitResult",
    "RateLimiter",
    "RedisCounterStore",
    "Sanitizer",
    "build_pipeline",
]

"""Audit records for moderation actions.

Every status change applied to a content item, whether by the AI moderator
or by an admin, produces exactly one :class:`ModerationLogEntry`.  Entries
are created through :meth:`ModerationLogEntry.for_ai` or
:meth:`ModerationLogEntry.for_admin` and never modified afterwards.
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from diagram_forge.content.models import ModerationStatus


class LogAction(str, Enum):
    ai_approve = "ai_approve"
    ai_reject = "ai_reject"
    ai_manual_review = "ai_manual_review"
    admin_approve = "admin_approve"
    admin_reject = "admin_reject"

    @property
    def is_ai(self) -> bool:
        return self.value.startswith("ai_")

    @property
    def is_admin(self) -> bool:
        return self.value.startswith("admin_")


VALID_ACTIONS = {a.value for a in LogAction}
VALID_STATUSES = {s.value for s in ModerationStatus}


class InvalidModerationLog(ValueError):
    """Raised when a log entry fails validation."""

    def __init__(self, issues: list[str]) -> None:
        self.issues = issues
        super().__init__("; ".join(issues))


def _value(v: Any) -> Any:
    return v.value if isinstance(v, Enum) else v


@dataclass(frozen=True)
class ModerationLogEntry:
    """A single moderation decision applied to a content item."""

    content_id: str
    action: str
    new_status: str
    previous_status: Optional[str] = None
    reason: str = ""
    ai_confidence: Optional[float] = None
    ai_flags: tuple[str, ...] = ()
    performed_by: Optional[str] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    inserted_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    # -- validation ----------------------------------------------------------

    def validate(self) -> list[str]:
        """Return a list of issues shared by AI and admin entries."""
        issues: list[str] = []
        if not self.content_id:
            issues.append("content_id is required")
        if not self.action:
            issues.append("action is required")
        elif self.action not in VALID_ACTIONS:
            issues.append(f"action '{self.action}' is not one of {sorted(VALID_ACTIONS)}")
        if not self.new_status:
            issues.append("new_status is required")
        elif self.new_status not in VALID_STATUSES:
            issues.append(f"new_status '{self.new_status}' is not one of {sorted(VALID_STATUSES)}")
        if self.previous_status is not None and self.previous_status not in VALID_STATUSES:
            issues.append(f"previous_status '{self.previous_status}' is not one of {sorted(VALID_STATUSES)}")
        if self.ai_confidence is not None and not 0 <= self.ai_confidence <= 1:
            issues.append("ai_confidence must be between 0 and 1")
        return issues

    # -- constructors --------------------------------------------------------

    @classmethod
    def for_ai(
        cls,
        content_id: str,
        action: LogAction | str,
        new_status: ModerationStatus | str,
        ai_confidence: Optional[float],
        previous_status: ModerationStatus | str | None = None,
        reason: str = "",
        ai_flags: Optional[list[str]] = None,
    ) -> "ModerationLogEntry":
        """Build an entry for an ``ai_*`` action; ``ai_confidence`` is required."""
        entry = cls(
            content_id=content_id,
            action=_value(action),
            new_status=_value(new_status),
            previous_status=_value(previous_status),
            reason=reason or "",
            ai_confidence=ai_confidence,
            ai_flags=tuple(ai_flags or ()),
        )
        issues = entry.validate()
        if entry.ai_confidence is None:
            issues.append("ai_confidence is required for AI actions")
        if entry.action in VALID_ACTIONS and not LogAction(entry.action).is_ai:
            issues.append(f"action '{entry.action}' is not an AI action")
        if issues:
            raise InvalidModerationLog(issues)
        return entry

    @classmethod
    def for_admin(
        cls,
        content_id: str,
        action: LogAction | str,
        new_status: ModerationStatus | str,
        performed_by: Optional[str],
        reason: str,
        previous_status: ModerationStatus | str | None = None,
    ) -> "ModerationLogEntry":
        """Build an entry for an ``admin_*`` action; actor and reason are required."""
        entry = cls(
            content_id=content_id,
            action=_value(action),
            new_status=_value(new_status),
            previous_status=_value(previous_status),
            reason=reason or "",
            performed_by=performed_by,
        )
        issues = entry.validate()
        if not entry.performed_by:
            issues.append("performed_by is required for admin actions")
        if not entry.reason.strip():
            issues.append("reason is required for admin actions")
        if entry.action in VALID_ACTIONS and not LogAction(entry.action).is_admin:
            issues.append(f"action '{entry.action}' is not an admin action")
        if issues:
            raise InvalidModerationLog(issues)
        return entry

    # -- serialization -------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["ai_flags"] = list(self.ai_flags)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ModerationLogEntry":
        return cls(
            content_id=data["content_id"],
            action=data["action"],
            new_status=data["new_status"],
            previous_status=data.get("previous_status"),
            reason=data.get("reason", ""),
            ai_confidence=data.get("ai_confidence"),
            ai_flags=tuple(data.get("ai_flags", [])),
            performed_by=data.get("performed_by"),
            id=data["id"],
            inserted_at=data["inserted_at"],
        )

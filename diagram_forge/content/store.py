"""File-based JSON storage for moderation state.

Content statuses and the moderation log share one document,
``~/.diagram_forge/moderation/moderation.json``, which is rewritten atomically
(temp file + ``os.replace``) on every transition.  A status change and its
log entry are therefore persisted together or not at all.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Callable, Optional

from diagram_forge.content.models import ModerationStatus
from diagram_forge.content.moderation_log import ModerationLogEntry

logger = logging.getLogger(__name__)


class ModerationStore:
    """Storage for per-content moderation status plus the append-only log.

    Storage path: ``~/.diagram_forge/moderation/`` with:
    - ``moderation.json`` -- ``{"items": {content_id: {...}}, "logs": [...]}``
    """

    def __init__(self, base_dir: str | Path | None = None) -> None:
        self._base = Path(base_dir) if base_dir else Path.home() / ".diagram_forge" / "moderation"
        self._base.mkdir(parents=True, exist_ok=True)
        self._path = self._base / "moderation.json"
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _read(self) -> dict:
        if not self._path.exists():
            return {"items": {}, "logs": []}
        data = json.loads(self._path.read_text(encoding="utf-8"))
        data.setdefault("items", {})
        data.setdefault("logs", [])
        return data

    def _write(self, data: dict) -> None:
        fd, tmp_path = tempfile.mkstemp(dir=self._base, prefix=".moderation-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, indent=2)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_path, self._path)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def transition(
        self,
        content_id: str,
        build_entry: Callable[[ModerationStatus], Optional[ModerationLogEntry]],
        fingerprint: Optional[str] = None,
    ) -> Optional[ModerationLogEntry]:
        """Apply one status change as a single unit of work.

        *build_entry* receives the current status and returns the log entry
        to record, or ``None`` to leave the item untouched.  The item's new
        status is taken from the entry.  Exceptions raised by *build_entry*
        abort the transition without writing anything.

        *fingerprint* identifies the content the entry is about.  When it
        differs from the stored one the item is reset: *build_entry* sees
        ``pending`` and the submission time starts over.  Without a
        fingerprint the stored one is kept.
        """
        with self._lock:
            data = self._read()
            item = data["items"].get(content_id)
            if item and fingerprint is not None and item.get("fingerprint") != fingerprint:
                logger.info(
                    "Content %s changed since it was %s, resetting to pending",
                    content_id,
                    item["status"],
                )
                item = None
            current = ModerationStatus(item["status"]) if item else ModerationStatus.pending

            entry = build_entry(current)
            if entry is None:
                return None

            if fingerprint is None and content_id in data["items"]:
                fingerprint = data["items"][content_id].get("fingerprint")
            data["items"][content_id] = {
                "status": entry.new_status,
                "reason": entry.reason,
                "moderated_by": entry.performed_by,
                "moderated_at": entry.inserted_at,
                "submitted_at": item["submitted_at"] if item else entry.inserted_at,
                "fingerprint": fingerprint,
            }
            data["logs"].append(entry.to_dict())
            self._write(data)
            return entry

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_item(self, content_id: str) -> Optional[dict]:
        """Return the stored record for *content_id*, or ``None`` if never moderated."""
        with self._lock:
            item = self._read()["items"].get(content_id)
        return dict(item) if item else None

    def get_status(self, content_id: str) -> ModerationStatus:
        """Return the current status; content never moderated is ``pending``."""
        with self._lock:
            item = self._read()["items"].get(content_id)
        return ModerationStatus(item["status"]) if item else ModerationStatus.pending

    def list_logs(self, content_id: str) -> list[ModerationLogEntry]:
        """Return all log entries for *content_id*, newest first."""
        with self._lock:
            logs = self._read()["logs"]
        entries = [ModerationLogEntry.from_dict(d) for d in logs if d["content_id"] == content_id]
        entries.reverse()
        return entries

    def list_pending_review(self, limit: int = 50) -> list[dict]:
        """Return items awaiting human review, most recently submitted first."""
        with self._lock:
            items = self._read()["items"]
        pending = [
            {"content_id": cid, **item}
            for cid, item in items.items()
            if item["status"] == ModerationStatus.manual_review.value
        ]
        pending.sort(key=lambda i: i.get("submitted_at", ""), reverse=True)
        return pending[:limit]

    def get_stats(self) -> dict[str, int]:
        """Count tracked items per status."""
        with self._lock:
            items = self._read()["items"]
        stats = {s.value: 0 for s in ModerationStatus}
        for item in items.values():
            stats[item["status"]] = stats.get(item["status"], 0) + 1
        return stats

"""RepairEventTracker context manager -> one StageEvent per stage per subject.

All events of a run share one RunId. Events are kept in memory for the
reconciliation report and logged as they complete.

Usage:
    tracker = RepairEventTracker()
    with tracker.track("MAP", "value") as event:
        remap = build_remap(...)
        event.rows_processed = len(snapshot)
        event.rows_affected = len(remap)
"""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from observability.log_handler import RunLogHandler

logger = logging.getLogger(__name__)


def new_run_id() -> str:
    """Sortable run id: UTC timestamp + short random suffix."""
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    return f"{stamp}-{uuid.uuid4().hex[:8]}"


@dataclass
class StageEvent:
    """Mutable event object; engine code sets row counts inside the with block."""

    stage: str
    subject: str
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: float = 0.0
    status: str = "SUCCESS"
    error_message: str | None = None
    detail: str | None = None
    rows_processed: int = 0
    rows_affected: int = 0

    def to_dict(self) -> dict:
        return {
            "stage": self.stage,
            "subject": self.subject,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_ms": round(self.duration_ms, 1),
            "status": self.status,
            "error_message": self.error_message,
            "detail": self.detail,
            "rows_processed": self.rows_processed,
            "rows_affected": self.rows_affected,
        }


class RepairEventTracker:
    """Tracks repair stage events for one run."""

    def __init__(
        self,
        run_id: str | None = None,
        log_handler: RunLogHandler | None = None,
    ) -> None:
        self.run_id = run_id or new_run_id()
        self.events: list[StageEvent] = []
        self._log_handler = log_handler
        if log_handler is not None:
            log_handler.set_context(run_id=self.run_id)

    @contextmanager
    def track(self, stage: str, subject: str):
        """Context manager that yields a StageEvent for the caller to populate."""
        event = StageEvent(stage=stage, subject=subject)
        event.started_at = datetime.now(timezone.utc)
        if self._log_handler is not None:
            self._log_handler.set_context(stage=stage, subject=subject)
        try:
            yield event
            # OBS-3: Preserve explicitly-set statuses (SKIPPED, etc.)
            if event.status not in ("FAILED", "SKIPPED"):
                event.status = "SUCCESS"
        except Exception as e:
            event.status = "FAILED"
            event.error_message = str(e)[:4000]
            raise
        finally:
            event.completed_at = datetime.now(timezone.utc)
            event.duration_ms = (
                (event.completed_at - event.started_at).total_seconds() * 1000
            )
            self.events.append(event)
            logger.info(
                "%s %s: %s in %.0f ms (processed=%d, affected=%d)",
                stage, subject, event.status, event.duration_ms,
                event.rows_processed, event.rows_affected,
            )
            if self._log_handler is not None:
                self._log_handler.set_context()

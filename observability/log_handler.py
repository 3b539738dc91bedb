"""RunLogHandler: custom logging.Handler -> <RUN_LOG_DIR>/<run_id>.jsonl.

Every module uses standard logger = logging.getLogger(__name__) calls.
The handler holds RunId and Stage/Subject in thread-local context and writes
one JSON object per record, so a repair run leaves an auditable trail next to
the report.
"""

from __future__ import annotations

import json
import logging
import threading
import traceback
from datetime import datetime, timezone
from pathlib import Path


class RunLogHandler(logging.Handler):
    """Custom logging handler that appends log records to a JSON-lines file.

    Usage:
        handler = RunLogHandler(Path("repair_logs/20240101T000000Z-ab12cd34.jsonl"))
        handler.set_context(run_id="20240101T000000Z-ab12cd34", stage="MAP", subject="value")
        logging.getLogger().addHandler(handler)
    """

    def __init__(self, path: Path, level: int = logging.INFO) -> None:
        super().__init__(level)
        self.path = Path(path)
        self._context = threading.local()
        self._buffer: list[str] = []
        self._buffer_lock = threading.Lock()
        # OBS-4: small buffer narrows the crash-loss window
        self._buffer_size = 10

    def set_context(
        self,
        run_id: str | None = None,
        stage: str | None = None,
        subject: str | None = None,
    ) -> None:
        if run_id is not None:
            self._context.run_id = run_id
        self._context.stage = stage
        self._context.subject = subject

    def _get_context(self) -> tuple[str | None, str | None, str | None]:
        return (
            getattr(self._context, "run_id", None),
            getattr(self._context, "stage", None),
            getattr(self._context, "subject", None),
        )

    def emit(self, record: logging.LogRecord) -> None:
        try:
            run_id, stage, subject = self._get_context()
            if run_id is None:
                return

            error_type = None
            stack_trace = None
            if record.exc_info and record.exc_info[1]:
                error_type = type(record.exc_info[1]).__name__
                stack_trace = "".join(
                    traceback.format_exception(*record.exc_info)
                )[:4000]

            line = json.dumps({
                "run_id": run_id,
                "stage": stage,
                "subject": subject,
                "level": record.levelname,
                "module": record.name,
                "function": record.funcName,
                "message": self.format(record)[:4000],
                "error_type": error_type,
                "stack_trace": stack_trace,
                "created_at": datetime.now(timezone.utc).isoformat(),
            })

            with self._buffer_lock:
                self._buffer.append(line)
                # OBS-4: Flush immediately on WARNING+
                if len(self._buffer) >= self._buffer_size or record.levelno >= logging.WARNING:
                    self._flush_buffer()
        except Exception:
            self.handleError(record)

    def _flush_buffer(self) -> None:
        if not self._buffer:
            return
        lines = self._buffer[:]
        self._buffer.clear()

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as fh:
                fh.write("\n".join(lines) + "\n")
        except OSError as flush_err:
            # OBS-4: Surface flush failures to stderr
            import sys
            print(
                f"[RunLogHandler] FLUSH FAILED ({len(lines)} entries lost): {flush_err}",
                file=sys.stderr,
            )

    def flush(self) -> None:
        with self._buffer_lock:
            self._flush_buffer()

    def close(self) -> None:
        self.flush()
        super().close()

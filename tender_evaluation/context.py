"""
context.py — The per-run context object threaded through the pipeline.

The first version of this service had one process-wide logger object that
every stage wrote into and the diagnostics endpoint read from. That made
it impossible to test a stage on its own, and two concurrent HTTP jobs
interleaved their logs into the same buffer with no way to tell them apart.

Now every run gets an ``EvaluationContext``:
  - ``logger``: a LoggerAdapter that prefixes every line with the run id
  - ``diagnostics``: a bounded in-memory ring buffer (100 entries) of what
    happened, readable by GET /diagnostics
  - ``progress``: an optional callback receiving ``ProgressUpdate`` objects

It's passed explicitly. Nothing in the pipeline reaches for a global.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections import deque
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from tender_evaluation.schemas import ProgressUpdate

ProgressCallback = Callable[[ProgressUpdate], None]

_PIPELINE_LOGGER = "tender_evaluation.pipeline"


class DiagnosticsBuffer(logging.Handler):
    """
    logging.Handler that keeps the last ``capacity`` records in memory.

    The deque drops the oldest entry on overflow, so the buffer never grows
    past capacity no matter how long the process runs.
    """

    def __init__(self, capacity: int = 100, level: int = logging.DEBUG):
        super().__init__(level=level)
        self.capacity = capacity
        self._entries: deque = deque(maxlen=capacity)
        self._lock_entries = threading.Lock()

    def emit(self, record: logging.LogRecord) -> None:
        try:
            entry = {
                "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
                "level": record.levelname,
                "logger": record.name,
                "runId": getattr(record, "run_id", None),
                "message": record.getMessage(),
            }
        except Exception:
            self.handleError(record)
            return
        with self._lock_entries:
            self._entries.append(entry)

    def entries(self, level: Optional[str] = None) -> List[Dict[str, Any]]:
        """Snapshot of the buffer, oldest first. Optionally filtered by level name."""
        with self._lock_entries:
            snapshot = list(self._entries)
        if level:
            snapshot = [e for e in snapshot if e["level"] == level.upper()]
        return snapshot

    def clear(self) -> None:
        with self._lock_entries:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class _RunLoggerAdapter(logging.LoggerAdapter):
    """
    Prefixes every line with the run id and copies it into the run's buffer.

    The buffer is fed here rather than attached to the logger as a handler:
    all runs share one logger, and the buffer keeps DEBUG lines even when
    the console is at INFO.
    """

    def __init__(self, logger, extra, diagnostics: Optional[DiagnosticsBuffer]):
        super().__init__(logger, extra)
        self.diagnostics = diagnostics

    def process(self, msg, kwargs):
        extra = dict(self.extra)
        extra.update(kwargs.get("extra") or {})
        kwargs["extra"] = extra
        return f"[{self.extra['run_id']}] {msg}", kwargs

    def log(self, level, msg, *args, **kwargs):
        msg, kwargs = self.process(msg, kwargs)
        if self.logger.isEnabledFor(level):
            self.logger.log(level, msg, *args, **kwargs)
        buffer = self.diagnostics
        if buffer is not None and level >= buffer.level:
            record = self.logger.makeRecord(
                self.logger.name, level, "(run)", 0, msg, args,
                None, extra=kwargs["extra"],
            )
            buffer.handle(record)


class EvaluationContext:
    """
    Logging, diagnostics and progress for one evaluation run.

    Args:
        run_id:      Short id included in every log line. Random if omitted.
        diagnostics: Buffer to record into. The API shares one buffer across
                     runs so /diagnostics shows recent activity; tests pass
                     a fresh one.
        progress:    Callback for ProgressUpdate. Exceptions raised by the
                     callback are logged and ignored; progress is a side
                     channel and must never break an evaluation.
    """

    def __init__(
        self,
        run_id: Optional[str] = None,
        diagnostics: Optional[DiagnosticsBuffer] = None,
        progress: Optional[ProgressCallback] = None,
        diagnostics_capacity: int = 100,
    ):
        self.run_id = run_id or uuid.uuid4().hex[:8]
        self.diagnostics = diagnostics if diagnostics is not None else DiagnosticsBuffer(
            capacity=diagnostics_capacity
        )
        self._progress = progress

        self.logger = _RunLoggerAdapter(
            logging.getLogger(_PIPELINE_LOGGER), {"run_id": self.run_id}, self.diagnostics
        )

    def report(self, update: ProgressUpdate) -> None:
        """Forward a progress update to the callback, if there is one."""
        if self._progress is None:
            return
        try:
            self._progress(update)
        except Exception as exc:
            self.logger.warning("Progress callback raised %s; ignoring.", exc)

    def close(self) -> None:
        """Stop recording into the diagnostics buffer. Logging still works."""
        self.logger.diagnostics = None

    def __enter__(self) -> "EvaluationContext":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

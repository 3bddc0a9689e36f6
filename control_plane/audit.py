"""
Transition Audit Log

Append-only JSONL trail of every transition request an orchestrator handles.

- APPEND-ONLY: records are never modified or deleted
- FSYNC: every write is flushed and fsync'd
- SINGLE WRITER: callers enqueue entries, one background thread writes them
  in submission order

Entries are enqueued while the caller still holds its task lock, so each
task's entries land in the order its transitions happened. The file write
(and its fsync) happens on the writer thread, never under a task lock.

This is an audit log, not a state store. Nothing reads it back to rebuild
task state.
"""

import json
import logging
import os
import queue
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from .lifecycle import TransitionError, TransitionRecord
from .policy_evaluator import Decision

logger = logging.getLogger("audit")

AUDIT_FILE_NAME = "transitions.jsonl"


class TransitionAuditLog:
    """JSONL audit sink for accepted and rejected transitions."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.Lock()  # guards the file
        self._queue: "queue.Queue[Optional[Dict[str, Any]]]" = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self._start_lock = threading.Lock()

    @classmethod
    def in_directory(cls, audit_dir: Path) -> "TransitionAuditLog":
        return cls(Path(audit_dir) / AUDIT_FILE_NAME)

    # -------------------------------------------------------------------------
    # Entries
    # -------------------------------------------------------------------------

    def record_transition(
        self,
        task_id: str,
        record: TransitionRecord,
        decision: Optional[Decision] = None,
    ) -> None:
        entry = {
            "event": "transition_completed",
            "task_id": task_id,
            **record.to_dict(),
            "verdict": decision.verdict.value if decision else None,
        }
        self.submit(entry)

    def record_rejection(self, task_id: str, error: TransitionError, at: datetime) -> None:
        entry = {
            "event": "transition_rejected",
            "task_id": task_id,
            "at": at.isoformat(),
            "from_state": error.from_state.value,
            "to_state": error.to_state.value,
            "error_kind": error.kind.value,
            "reason": error.message,
        }
        self.submit(entry)

    # -------------------------------------------------------------------------
    # Writer Thread
    # -------------------------------------------------------------------------

    def submit(self, entry: Dict[str, Any]) -> None:
        """Queue one entry for the writer thread. Never blocks on file I/O."""
        self._start()
        self._queue.put(entry)

    def flush(self) -> None:
        """Block until every entry submitted so far has been written."""
        self._queue.join()

    def stop(self, timeout: float = 5.0) -> None:
        """Write out queued entries and stop the writer thread."""
        with self._start_lock:
            thread = self._thread
            if thread is not None and thread.is_alive():
                self._queue.put(None)  # Sentinel
                thread.join(timeout=timeout)
                if thread.is_alive():
                    logger.warning(f"Audit writer did not stop within {timeout}s")
                    return
            self._thread = None

            # Entries submitted after the sentinel
            while True:
                try:
                    entry = self._queue.get_nowait()
                except queue.Empty:
                    break
                if entry is not None:
                    self._write(entry)
                self._queue.task_done()

    def _start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        with self._start_lock:
            if self._thread is not None and self._thread.is_alive():
                return
            self._thread = threading.Thread(target=self._run, name="audit-writer", daemon=True)
            self._thread.start()
            logger.debug(f"Audit writer started for {self.path}")

    def _run(self) -> None:
        while True:
            entry = self._queue.get()
            try:
                if entry is None:
                    break
                self._write(entry)
            except Exception as e:
                logger.error(f"Audit writer failed on entry for {entry.get('task_id')}: {e}", exc_info=True)
            finally:
                self._queue.task_done()

    def _write(self, entry: Dict[str, Any]) -> None:
        """Append one entry. A failed write is logged, not raised."""
        try:
            with self._lock:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with open(self.path, "a") as f:
                    f.write(json.dumps(entry) + "\n")
                    f.flush()
                    os.fsync(f.fileno())
        except OSError as e:
            logger.warning(f"Failed to write audit log {self.path}: {e}")

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def read_entries(self, task_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Read entries in write order, optionally for a single task."""
        self.flush()
        if not self.path.exists():
            return []

        entries = []
        with self._lock, open(self.path, "r") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    entry = json.loads(line)
                except json.JSONDecodeError:
                    logger.warning(f"Skipping malformed audit line in {self.path}")
                    continue
                if task_id is None or entry.get("task_id") == task_id:
                    entries.append(entry)
        return entries

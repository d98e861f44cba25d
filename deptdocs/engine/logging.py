"""
deptdocs Audit Logging — JSONL audit trail written off the request path.

Layout: {log_dir}/{object_type}/{category}/{YYYY-MM-DD}.jsonl, one JSON
object per line. Files older than compress_after_days are gzipped in place
by LogRetentionManager and remain queryable.

Module-level diagnostics still go through stdlib loggers named
``deptdocs.<package>.<module>``; this module only carries the audit trail.
"""

from __future__ import annotations

import gzip
import json
import logging
import shutil
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from queue import Empty, Full, Queue
from typing import Any, Dict, Iterator, List, Optional

logger = logging.getLogger("deptdocs.engine.logging")

# Audit streams written by deptdocs
OBJECT_TYPE_CATEGORIES = {
    "folders": ["execution", "security"],
    "grants": ["execution", "security"],
    "documents": ["execution"],
    "system": ["execution", "security"],
}

# Days kept per category
DEFAULT_RETENTION = {
    "execution": 90,
    "security": 365,
}


def _file_date(path: Path) -> Optional[date]:
    """Date encoded in a log file name, or None for foreign files."""
    try:
        return date.fromisoformat(path.name.split(".", 1)[0])
    except ValueError:
        return None


@dataclass
class LogEntry:
    """One audit record and the stream it belongs to."""

    object_type: str
    category: str
    data: Dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> str:
        return json.dumps(self.data, default=str, separators=(",", ":"))


class FileLogger:
    """Appends entries to the daily file of their stream. Thread-safe."""

    def __init__(self, log_dir: str = "logs"):
        self._log_dir = Path(log_dir)
        self._lock = threading.Lock()
        for obj_type, categories in OBJECT_TYPE_CATEGORIES.items():
            for cat in categories:
                (self._log_dir / obj_type / cat).mkdir(parents=True, exist_ok=True)

    @property
    def log_dir(self) -> Path:
        return self._log_dir

    def write(self, entry: LogEntry) -> None:
        self.write_batch([entry])

    def write_batch(self, entries: List[LogEntry]) -> None:
        today = date.today().isoformat()
        by_file: Dict[Path, List[str]] = defaultdict(list)
        for entry in entries:
            by_file[self._log_dir / entry.object_type / entry.category / f"{today}.jsonl"].append(
                entry.to_json()
            )

        with self._lock:
            for path, lines in by_file.items():
                with open(path, "a", encoding="utf-8") as f:
                    f.write("\n".join(lines) + "\n")

    def query(
        self,
        object_type: str,
        category: str,
        *,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        filters: Optional[Dict[str, Any]] = None,
        limit: int = 500,
    ) -> List[Dict[str, Any]]:
        """
        Entries of one stream in chronological order, plain and gzipped files alike.

        Args:
            start_date: Earliest day to include (defaults to 7 days before end_date).
            end_date: Latest day to include (defaults to today).
            filters: Exact-equality filters on top-level entry keys.
        """
        end_date = end_date or date.today()
        start_date = start_date or end_date - timedelta(days=7)

        stream = self._log_dir / object_type / category
        if not stream.is_dir():
            return []

        files = []
        for path in stream.iterdir():
            day = _file_date(path)
            if day is not None and start_date <= day <= end_date:
                files.append((day, path))

        results: List[Dict[str, Any]] = []
        for _, path in sorted(files):
            for data in self._read(path):
                if filters and any(data.get(k) != v for k, v in filters.items()):
                    continue
                results.append(data)
                if len(results) >= limit:
                    return results
        return results

    @staticmethod
    def _read(path: Path) -> Iterator[Dict[str, Any]]:
        opener = gzip.open if path.suffix == ".gz" else open
        with opener(path, "rt", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    yield json.loads(line)
                except json.JSONDecodeError:
                    logger.warning(f"Skipping malformed audit line in {path}")


class AsyncLogQueue:
    """
    Bounded in-memory queue drained by a daemon thread.

    push() never blocks; a full queue drops the entry and counts it. The
    writer thread flushes up to flush_batch_size entries at a time and waits
    at most flush_interval_ms for the first one.
    """

    def __init__(
        self,
        file_logger: FileLogger,
        flush_interval_ms: int = 100,
        flush_batch_size: int = 50,
        max_queue_size: int = 10000,
    ):
        self._writer = file_logger
        self._interval = flush_interval_ms / 1000.0
        self._batch_size = flush_batch_size
        self._queue: Queue[LogEntry] = Queue(maxsize=max_queue_size)
        self._stopping = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._dropped = 0

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stopping.clear()
        self._thread = threading.Thread(target=self._run, name="deptdocs-audit", daemon=True)
        self._thread.start()
        logger.info("Audit log queue started")

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the writer thread and write whatever is still queued."""
        self._stopping.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        self._flush(self._take_all())
        logger.info(f"Audit log queue stopped (dropped: {self._dropped})")

    def push(self, entry: LogEntry) -> bool:
        """Queue entry; False when it was dropped."""
        try:
            self._queue.put_nowait(entry)
        except Full:
            self._dropped += 1
            return False
        return True

    @property
    def pending_count(self) -> int:
        return self._queue.qsize()

    @property
    def dropped_count(self) -> int:
        return self._dropped

    def _run(self) -> None:
        while not self._stopping.is_set():
            self._flush(self._take_batch())

    def _take_batch(self) -> List[LogEntry]:
        batch: List[LogEntry] = []
        try:
            batch.append(self._queue.get(timeout=self._interval))
            while len(batch) < self._batch_size:
                batch.append(self._queue.get_nowait())
        except Empty:
            pass
        return batch

    def _take_all(self) -> List[LogEntry]:
        batch: List[LogEntry] = []
        try:
            while True:
                batch.append(self._queue.get_nowait())
        except Empty:
            return batch

    def _flush(self, batch: List[LogEntry]) -> None:
        if not batch:
            return
        try:
            self._writer.write_batch(batch)
        except OSError as e:
            logger.error(f"Audit write failed, {len(batch)} entries lost: {e}")


# ---------------------------------------------------------------------------
# Entry builders
# ---------------------------------------------------------------------------

def _base_entry(
    event: str,
    level: str,
    object_ref: str,
    user_id: Optional[Any] = None,
    **extra: Any,
) -> Dict[str, Any]:
    entry: Dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "level": level,
        "event": event,
        "object_ref": object_ref,
    }
    if user_id is not None:
        entry["user_id"] = user_id
    entry.update(extra)
    return entry


def log_folder_operation(
    operation: str,
    folder_id: Any,
    user_id: Optional[Any] = None,
    fields_changed: Optional[List[str]] = None,
    affected_ids: Optional[List[Any]] = None,
    duration_ms: Optional[float] = None,
) -> LogEntry:
    """Build a folder create/update/delete log entry."""
    data = _base_entry(
        event=f"folder_{operation}",
        level="INFO",
        object_ref=f"folders.{folder_id}",
        user_id=user_id,
        operation=operation,
        folder_id=folder_id,
    )
    if fields_changed:
        data["fields_changed"] = fields_changed
    if affected_ids:
        data["affected_ids"] = affected_ids
    if duration_ms is not None:
        data["duration_ms"] = duration_ms
    return LogEntry("folders", "execution", data)


def log_grant_operation(
    operation: str,
    folder_id: Any,
    user_id: Optional[Any] = None,
    permission_type: Optional[str] = None,
    subject: Optional[Dict[str, Any]] = None,
    affected: Optional[int] = None,
) -> LogEntry:
    """Build a grant/revoke log entry. Grant changes are security-relevant."""
    data = _base_entry(
        event=f"permission_{operation}",
        level="INFO",
        object_ref=f"folders.{folder_id}",
        user_id=user_id,
        operation=operation,
        folder_id=folder_id,
    )
    if permission_type:
        data["permission_type"] = permission_type
    if subject:
        data["subject"] = subject
    if affected is not None:
        data["affected"] = affected
    return LogEntry("grants", "security", data)


def log_access_decision(
    folder_id: Any,
    permission_needed: str,
    user_id: Any,
    department_id: Optional[Any],
    allowed: bool,
    operation: Optional[str] = None,
) -> LogEntry:
    """Build an access decision entry (denials at WARNING)."""
    data = _base_entry(
        event="access_granted" if allowed else "access_denied",
        level="INFO" if allowed else "WARNING",
        object_ref=f"folders.{folder_id}",
        user_id=user_id,
        department_id=department_id,
        permission_needed=permission_needed,
        allowed=allowed,
    )
    if operation:
        data["operation"] = operation
    return LogEntry("folders", "security", data)


def log_system_event(
    event: str,
    level: str = "INFO",
    details: Optional[Dict[str, Any]] = None,
) -> LogEntry:
    data = _base_entry(event=event, level=level, object_ref="system")
    if details:
        data["details"] = details
    return LogEntry("system", "execution", data)


# ---------------------------------------------------------------------------
# Retention
# ---------------------------------------------------------------------------

class LogRetentionManager:
    """Deletes audit files past their category's retention and gzips older ones."""

    def __init__(
        self,
        log_dir: str = "logs",
        retention_days: Optional[Dict[str, int]] = None,
        compress_after_days: int = 7,
    ):
        self._log_dir = Path(log_dir)
        self._retention = {**DEFAULT_RETENTION, **(retention_days or {})}
        self._compress_after = compress_after_days

    def cleanup(self, today: Optional[date] = None) -> Dict[str, int]:
        """Returns {"deleted": N, "compressed": M}."""
        today = today or date.today()
        result = {"deleted": 0, "compressed": 0}

        for path in self._log_dir.glob("*/*/*"):
            category = path.parent.name
            day = _file_date(path)
            if category not in self._retention or day is None or not path.is_file():
                continue

            age = (today - day).days
            if age > self._retention[category]:
                path.unlink()
                result["deleted"] += 1
            elif age > self._compress_after and path.suffix == ".jsonl":
                if self._compress(path):
                    result["compressed"] += 1

        logger.info(f"Audit retention: {result}")
        return result

    @staticmethod
    def _compress(path: Path) -> bool:
        target = path.with_suffix(".jsonl.gz")
        try:
            with open(path, "rb") as src, gzip.open(target, "wb") as dst:
                shutil.copyfileobj(src, dst)
        except OSError as e:
            logger.error(f"Failed to compress {path}: {e}")
            target.unlink(missing_ok=True)
            return False
        path.unlink()
        return True


# ---------------------------------------------------------------------------
# Process-wide queue
# ---------------------------------------------------------------------------

_global_queue: Optional[AsyncLogQueue] = None


def init_logging(
    log_dir: str = "logs",
    level: str = "INFO",
    flush_interval_ms: int = 100,
    flush_batch_size: int = 50,
    max_queue_size: int = 10000,
) -> AsyncLogQueue:
    """Set the package logger level and start the audit queue."""
    global _global_queue
    logging.getLogger("deptdocs").setLevel(level.upper())
    if _global_queue is not None:
        _global_queue.stop()
    _global_queue = AsyncLogQueue(
        FileLogger(log_dir),
        flush_interval_ms=flush_interval_ms,
        flush_batch_size=flush_batch_size,
        max_queue_size=max_queue_size,
    )
    _global_queue.start()
    return _global_queue


def get_log_queue() -> Optional[AsyncLogQueue]:
    return _global_queue


def log(entry: LogEntry) -> bool:
    """Queue entry for the audit trail; dropped when logging is not initialised."""
    if _global_queue is None:
        logger.debug(f"Audit queue not initialised, dropping {entry.data.get('event')}")
        return False
    return _global_queue.push(entry)


def shutdown_logging() -> None:
    """Write pending entries and stop the audit queue."""
    global _global_queue
    if _global_queue is not None:
        _global_queue.stop()
        _global_queue = None

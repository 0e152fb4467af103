"""
DealerDocs Logging — Standard logger setup plus a structured JSONL activity log.

Implements:
- configure_logging(): level/format for the ``dealerdocs.*`` logger tree
- ActivityLog: per-object-type, per-category JSONL files (daily rotation)
- Log entry builders for each event type

Secrets (passwords, share tokens, request bodies) are never written.
"""

from __future__ import annotations

import json
import logging
import threading
from collections import defaultdict
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger("dealerdocs.engine.logging")

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

# Valid object types and their permitted categories
OBJECT_TYPE_CATEGORIES = {
    "http": ["execution"],
    "files": ["execution", "security"],
    "uploads": ["execution"],
    "versions": ["execution"],
    "shares": ["execution", "security"],
    "previews": ["execution"],
}

# Keys stripped from any entry before it reaches disk
REDACTED_KEYS = frozenset({"password", "token", "share_token", "otp", "authorization"})


def configure_logging(level: str = "INFO") -> None:
    """Attach a stream handler to the ``dealerdocs`` logger tree."""
    root = logging.getLogger("dealerdocs")
    root.setLevel(level.upper())
    if not any(getattr(h, "_dealerdocs", False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._dealerdocs = True
        root.addHandler(handler)


class LogEntry:
    """A structured log entry destined for a specific file."""

    __slots__ = ("object_type", "category", "data")

    def __init__(self, object_type: str, category: str, data: Dict[str, Any]):
        self.object_type = object_type
        self.category = category
        self.data = {k: v for k, v in data.items() if k.lower() not in REDACTED_KEYS}

    def to_json(self) -> str:
        return json.dumps(self.data, default=str, separators=(",", ":"))


class ActivityLog:
    """
    Writes structured JSON entries to per-object-type, per-category files.
    Files rotate daily: {log_dir}/{object_type}/{category}/{YYYY-MM-DD}.jsonl

    Thread-safe — uses a lock per file path.
    """

    def __init__(self, log_dir: str = ".dealerdocs/logs"):
        self._log_dir = Path(log_dir)
        self._file_locks: Dict[str, threading.Lock] = defaultdict(threading.Lock)

    def write(self, entry: LogEntry) -> None:
        """Append a single entry. Disk errors are logged, never raised."""
        if entry.category not in OBJECT_TYPE_CATEGORIES.get(entry.object_type, []):
            logger.warning(f"Dropping log entry with unknown target {entry.object_type}/{entry.category}")
            return

        file_path = self._resolve_path(entry.object_type, entry.category)
        key = str(file_path)
        try:
            with self._file_locks[key]:
                file_path.parent.mkdir(parents=True, exist_ok=True)
                with open(file_path, "a", encoding="utf-8") as f:
                    f.write(entry.to_json())
                    f.write("\n")
        except OSError as e:
            logger.error(f"Activity log write failed for {file_path}: {e}")

    def _resolve_path(self, object_type: str, category: str) -> Path:
        today = date.today().isoformat()
        return self._log_dir / object_type / category / f"{today}.jsonl"

    @property
    def log_dir(self) -> Path:
        return self._log_dir

    def query(
        self,
        object_type: str,
        category: str = "execution",
        *,
        days: int = 7,
        filters: Optional[Dict[str, Any]] = None,
        limit: int = 100,
    ) -> List[Dict[str, Any]]:
        """
        Read entries back, newest first.

        Args:
            object_type: Folder to read (e.g. "shares").
            category: Category folder (e.g. "execution").
            days: How many days back to look, including today.
            filters: Only entries whose top-level keys equal ALL these values.
            limit: Max number of entries to return.
        """
        base = self._log_dir / object_type / category
        if not base.exists():
            return []

        results: List[Dict[str, Any]] = []
        current = date.today()
        oldest = current - timedelta(days=max(days - 1, 0))
        while current >= oldest and len(results) < limit:
            file_path = base / f"{current.isoformat()}.jsonl"
            if file_path.exists():
                day_entries = self._read_jsonl(file_path, filters)
                day_entries.reverse()
                results.extend(day_entries[: limit - len(results)])
            current -= timedelta(days=1)
        return results

    @staticmethod
    def _read_jsonl(path: Path, filters: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
        entries: List[Dict[str, Any]] = []
        try:
            with open(path, "r", encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        data = json.loads(line)
                    except json.JSONDecodeError:
                        continue
                    if filters and not all(data.get(k) == v for k, v in filters.items()):
                        continue
                    entries.append(data)
        except OSError as exc:
            logger.warning("Could not read log file %s: %s", path, exc)
        return entries


# ---------------------------------------------------------------------------
# Log Entry Builders
# ---------------------------------------------------------------------------

def _base_entry(event: str, level: str, **extra: Any) -> Dict[str, Any]:
    entry: Dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "level": level,
        "event": event,
    }
    entry.update({k: v for k, v in extra.items() if v is not None})
    return entry


def log_http_call(
    method: str,
    path: str,
    status_code: int,
    duration_ms: float,
    error: Optional[str] = None,
) -> LogEntry:
    """One File Service request. Never includes bodies."""
    data = _base_entry(
        event="http_call",
        level="INFO" if error is None else "ERROR",
        method=method,
        path=path,
        status_code=status_code,
        duration_ms=round(duration_ms, 2),
        error=error,
    )
    return LogEntry("http", "execution", data)


def log_file_action(
    action: str,
    file_id: Optional[str],
    success: bool,
    context: Optional[str] = None,
    context_id: Optional[str] = None,
    error: Optional[str] = None,
) -> LogEntry:
    """Catalog action (delete, rename, download, ...). Deletes go to security/."""
    data = _base_entry(
        event=f"file_{action}",
        level="INFO" if success else "ERROR",
        file_id=file_id,
        success=success,
        context=context,
        context_id=context_id,
        error=error,
    )
    category = "security" if action == "delete" else "execution"
    return LogEntry("files", category, data)


def log_upload_event(
    event: str,
    task_id: str,
    file_count: int,
    total_bytes: int,
    error: Optional[str] = None,
) -> LogEntry:
    """Upload task lifecycle: submitted / completed / failed."""
    data = _base_entry(
        event=f"upload_{event}",
        level="ERROR" if error else "INFO",
        task_id=task_id,
        file_count=file_count,
        total_bytes=total_bytes,
        error=error,
    )
    return LogEntry("uploads", "execution", data)


def log_version_event(event: str, file_id: str, version_id: Optional[str] = None,
                      error: Optional[str] = None) -> LogEntry:
    data = _base_entry(
        event=f"version_{event}",
        level="ERROR" if error else "INFO",
        file_id=file_id,
        version_id=version_id,
        error=error,
    )
    return LogEntry("versions", "execution", data)


def log_share_event(
    event: str,
    file_id: str,
    grant_id: Optional[str] = None,
    kind: Optional[str] = None,
    recipient: Optional[str] = None,
    expires_at: Optional[str] = None,
    error: Optional[str] = None,
) -> LogEntry:
    """
    Grant creation/revocation. These are access-control changes, so they
    land in shares/security/ rather than execution/.
    """
    data = _base_entry(
        event=f"share_{event}",
        level="ERROR" if error else "INFO",
        file_id=file_id,
        grant_id=grant_id,
        kind=kind,
        recipient=recipient,
        expires_at=expires_at,
        error=error,
    )
    return LogEntry("shares", "security", data)


def log_preview_event(event: str, file_id: Optional[str], content_type: Optional[str] = None,
                      size: Optional[int] = None, error: Optional[str] = None) -> LogEntry:
    data = _base_entry(
        event=f"preview_{event}",
        level="ERROR" if error else "INFO",
        file_id=file_id,
        content_type=content_type,
        size=size,
        error=error,
    )
    return LogEntry("previews", "execution", data)

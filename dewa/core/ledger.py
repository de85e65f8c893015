"""
Job ledger: a JSON document holding every download record.
Every mutation reads the whole document, applies the change and rewrites
it; all access goes through one lock so concurrent jobs cannot lose updates.
"""

import json
import logging
import os
import tempfile
import threading
import time
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path

from dewa.core.constants import JobStatus, TERMINAL_STATUSES, DEFAULT_HISTORY_PATH
from dewa.core.error_codes import NotFoundError, StorageError
from dewa.core.models import JobRecord

logger = logging.getLogger(__name__)

_SORT_ALIASES = {
    'date': 'created_at',
    'name': 'title',
    'size': 'file_size',
}


def _sort_key(value):
    # None < numbers < strings, so mixed/missing values never raise
    if value is None:
        return (0, 0, "")
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return (1, value, "")
    return (2, 0, str(value))


def _parse_timestamp(value) -> datetime | None:
    if not value:
        return None
    try:
        ts = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


class JobLedger:
    """File-backed store of JobRecords. Thread-safe via a single RLock."""

    def __init__(self, path: Path | str | None = None):
        self.path = Path(path) if path else DEFAULT_HISTORY_PATH
        self._lock = threading.RLock()

    # ── Helpers ───────────────────────────────────────────────────────

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()

    @staticmethod
    def new_id() -> str:
        return f"dl_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"

    def _load(self, strict: bool = False) -> list[dict]:
        """
        Read the whole document. A missing file is an empty ledger.
        Unreadable or corrupt storage is an empty ledger with a warning,
        unless strict, in which case StorageError is raised.
        """
        if not self.path.exists():
            return []
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            if not isinstance(data, list):
                raise ValueError("ledger document is not a JSON array")
        except (OSError, ValueError) as e:
            if strict:
                raise StorageError(f"Failed to load ledger {self.path}: {e}") from e
            logger.warning("Failed to load download history, starting empty: %s", e)
            return []
        return [r for r in data if isinstance(r, dict) and r.get('id')]

    def _save(self, records: list[dict]):
        """Atomically replace the document with records."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=str(self.path.parent),
            )
            try:
                with os.fdopen(fd, 'w', encoding='utf-8') as f:
                    json.dump(records, f, indent=2, ensure_ascii=False)
                os.replace(tmp_name, self.path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as e:
            logger.error("Failed to save download history: %s", e)
            raise StorageError(f"Failed to save ledger {self.path}: {e}") from e

    # ── CRUD ──────────────────────────────────────────────────────────

    def create(self, record: dict | JobRecord) -> str:
        """Store a new record and return its freshly assigned id."""
        data = record.to_dict() if isinstance(record, JobRecord) else dict(record)
        now = self._now()
        data['id'] = self.new_id()
        data['created_at'] = now
        data.setdefault('status', JobStatus.PENDING)
        if not data.get('started_at'):
            data['started_at'] = now

        with self._lock:
            records = self._load()
            records.append(data)
            self._save(records)

        logger.info("Download record saved: id=%s title=%r", data['id'], data.get('title'))
        return data['id']

    def get(self, job_id: str) -> JobRecord | None:
        with self._lock:
            for data in self._load():
                if data['id'] == job_id:
                    return JobRecord.from_dict(data)
        return None

    def update(self, job_id: str, status: str | None = None, **fields) -> JobRecord:
        """
        Merge fields into an existing record and stamp updated_at.
        A completed/failed record ignores a later in_progress update.
        """
        fields.pop('id', None)
        if status is not None:
            fields['status'] = status

        with self._lock:
            records = self._load(strict=True)
            for data in records:
                if data['id'] == job_id:
                    break
            else:
                raise NotFoundError(f"Download record not found: {job_id}")

            if (fields.get('status') == JobStatus.IN_PROGRESS
                    and data.get('status') in TERMINAL_STATUSES):
                logger.debug("Ignoring in_progress update for terminal job %s", job_id)
                return JobRecord.from_dict(data)

            data.update(fields)
            data['updated_at'] = self._now()
            self._save(records)

        if 'status' in fields:
            logger.info("Download status updated: id=%s status=%s", job_id, fields['status'])
        return JobRecord.from_dict(data)

    def remove(self, job_id: str) -> bool:
        with self._lock:
            records = self._load(strict=True)
            remaining = [r for r in records if r['id'] != job_id]
            if len(remaining) == len(records):
                raise NotFoundError(f"Download record not found: {job_id}")
            self._save(remaining)

        logger.info("Download record deleted: %s", job_id)
        return True

    # ── Queries ───────────────────────────────────────────────────────

    # Defined before list() so the annotation still sees the builtin
    def list_active(self) -> list[JobRecord]:
        return self.list(status=JobStatus.IN_PROGRESS)

    def list(self, status: str | None = 'all', platform: str | None = 'all',
             sort_by: str | None = None, sort_order: str = 'desc',
             limit: int | None = None) -> list[JobRecord]:
        """Filter, sort and truncate the ledger. 'all' disables a filter."""
        with self._lock:
            records = self._load()

        if status and status != 'all':
            records = [r for r in records if r.get('status') == status]
        if platform and platform != 'all':
            records = [r for r in records if r.get('platform') == platform]

        if sort_by:
            key = _SORT_ALIASES.get(sort_by, sort_by)
            records.sort(key=lambda r: _sort_key(r.get(key)),
                         reverse=(sort_order != 'asc'))

        if limit is not None:
            records = records[:limit]

        return [JobRecord.from_dict(r) for r in records]

    def prune_older_than(self, days: int) -> int:
        """Delete records created more than `days` days ago. Returns count."""
        cutoff = datetime.now(timezone.utc) - timedelta(days=days)

        with self._lock:
            records = self._load()
            kept = []
            for data in records:
                created = _parse_timestamp(data.get('created_at') or data.get('started_at'))
                if created is not None and created <= cutoff:
                    continue
                kept.append(data)

            removed = len(records) - len(kept)
            if removed:
                self._save(kept)

        if removed:
            logger.info("Cleaned up %d old download records", removed)
        return removed

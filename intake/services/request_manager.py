from __future__ import annotations

import dataclasses
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from functools import lru_cache
from typing import Any
from uuid import uuid4

from opentelemetry import metrics

from intake.core.config import get_settings
from intake.core.locks import ReadWriteLock

DEFAULT_REQUEST_TTL = timedelta(minutes=15)

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class SourceType(str, Enum):
    URL = "url"
    TEXT = "text"


@dataclass(slots=True)
class JobEntry:
    id: str
    source_type: SourceType
    status: JobStatus
    progress: int
    created_at: datetime
    updated_at: datetime
    expires_at: datetime
    url: str | None = None
    text: str | None = None
    started_at: datetime | None = None
    result_request_id: str | None = None
    error_message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "source_type": self.source_type.value,
            "status": self.status.value,
            "progress": self.progress,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "expires_at": self.expires_at,
        }
        if self.source_type is SourceType.URL:
            payload["url"] = self.url
        else:
            payload["text"] = self.text
        if self.started_at is not None:
            payload["started_at"] = self.started_at
        if self.result_request_id is not None:
            payload["result_request_id"] = self.result_request_id
        if self.error_message is not None:
            payload["error_message"] = self.error_message
        return payload


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RequestManager:
    """In-memory tracker for in-flight submissions.

    Every access to the entry table and the URL index goes through one
    reader/writer lock: ``get``/``list`` share it, all mutations hold it
    exclusively. Callers only ever receive copies of entries.

    In-flight URL submissions are deduplicated on the literal URL string,
    not on the normalized form the result cache uses.
    """

    def __init__(
        self,
        *,
        ttl: timedelta = DEFAULT_REQUEST_TTL,
        clock: Callable[[], datetime] | None = None,
        meter: metrics.Meter | None = None,
    ) -> None:
        self.ttl = ttl
        self._clock = clock or _utcnow
        self._lock = ReadWriteLock()
        self._entries: dict[str, JobEntry] = {}
        self._url_index: dict[str, str] = {}
        meter = meter or metrics.get_meter(__name__)
        meter.create_observable_gauge(
            name="intake_requests_by_status",
            callbacks=[self._observe_statuses],
            description="Tracked submissions per job status",
            unit="1",
        )

    def create(self, url: str) -> tuple[JobEntry, bool]:
        with self._lock.write():
            existing_id = self._url_index.get(url)
            if existing_id is not None:
                existing = self._entries.get(existing_id)
                if existing is None:
                    del self._url_index[url]
                elif not existing.status.is_terminal:
                    return dataclasses.replace(existing), False

            entry = self._new_entry(SourceType.URL, url=url)
            self._entries[entry.id] = entry
            self._url_index[url] = entry.id
            return dataclasses.replace(entry), True

    def create_text(self, text: str) -> tuple[JobEntry, bool]:
        with self._lock.write():
            entry = self._new_entry(SourceType.TEXT, text=text)
            self._entries[entry.id] = entry
            return dataclasses.replace(entry), True

    def get(self, request_id: str) -> JobEntry | None:
        with self._lock.read():
            entry = self._entries.get(request_id)
            return dataclasses.replace(entry) if entry is not None else None

    def list(self) -> list[JobEntry]:
        with self._lock.read():
            entries = [dataclasses.replace(entry) for entry in self._entries.values()]
        entries.sort(key=lambda entry: entry.created_at, reverse=True)
        return entries

    def update_status(self, request_id: str, status: JobStatus, progress: int) -> bool:
        with self._lock.write():
            entry = self._entries.get(request_id)
            if entry is None:
                return False
            now = self._clock()
            entry.status = status
            entry.progress = max(0, min(100, progress))
            entry.updated_at = now
            if status is JobStatus.PROCESSING and entry.started_at is None:
                entry.started_at = now
            return True

    def set_completed(self, request_id: str, result_request_id: str) -> bool:
        with self._lock.write():
            entry = self._entries.get(request_id)
            if entry is None:
                return False
            entry.status = JobStatus.COMPLETED
            entry.progress = 100
            entry.result_request_id = result_request_id
            entry.updated_at = self._clock()
            return True

    def set_failed(self, request_id: str, error_message: str) -> bool:
        with self._lock.write():
            entry = self._entries.get(request_id)
            if entry is None:
                return False
            entry.status = JobStatus.FAILED
            entry.error_message = error_message
            entry.updated_at = self._clock()
            return True

    def retry(self, request_id: str) -> bool:
        """Move a failed entry back to pending; re-dispatching the work is the caller's job."""
        with self._lock.write():
            entry = self._entries.get(request_id)
            if entry is None or entry.status is not JobStatus.FAILED:
                return False
            entry.status = JobStatus.PENDING
            entry.progress = 0
            entry.error_message = None
            entry.updated_at = self._clock()
            return True

    def delete(self, request_id: str) -> bool:
        with self._lock.write():
            entry = self._entries.pop(request_id, None)
            if entry is None:
                return False
            self._drop_url_index(entry)
            return True

    def sweep_expired(self) -> int:
        with self._lock.write():
            now = self._clock()
            expired = [entry for entry in self._entries.values() if now > entry.expires_at]
            for entry in expired:
                del self._entries[entry.id]
                self._drop_url_index(entry)
        if expired:
            logger.info("swept expired requests count=%s", len(expired))
        return len(expired)

    def counts_by_status(self) -> dict[JobStatus, int]:
        counts = dict.fromkeys(JobStatus, 0)
        with self._lock.read():
            for entry in self._entries.values():
                counts[entry.status] += 1
        return counts

    def __len__(self) -> int:
        with self._lock.read():
            return len(self._entries)

    def _observe_statuses(self, options: metrics.CallbackOptions) -> Iterable[metrics.Observation]:
        return [
            metrics.Observation(count, {"status": status.value})
            for status, count in self.counts_by_status().items()
        ]

    def _new_entry(self, source_type: SourceType, *, url: str | None = None, text: str | None = None) -> JobEntry:
        now = self._clock()
        return JobEntry(
            id=str(uuid4()),
            source_type=source_type,
            url=url,
            text=text,
            status=JobStatus.PENDING,
            progress=0,
            created_at=now,
            updated_at=now,
            expires_at=now + self.ttl,
        )

    def _drop_url_index(self, entry: JobEntry) -> None:
        if entry.source_type is SourceType.URL and entry.url is not None:
            if self._url_index.get(entry.url) == entry.id:
                del self._url_index[entry.url]


@lru_cache
def get_request_manager() -> RequestManager:
    settings = get_settings()
    return RequestManager(ttl=timedelta(seconds=settings.request_ttl_seconds))

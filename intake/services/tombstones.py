from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from enum import Enum
from functools import lru_cache
from typing import TYPE_CHECKING, Any

from opentelemetry import metrics

from intake.core.config import get_settings

if TYPE_CHECKING:
    from intake.schemas.records import Record

TOMBSTONE_FIELD = "tombstone_datetime"

logger = logging.getLogger(__name__)


class TombstoneReason(str, Enum):
    LOW_SCORE = "low-score"
    MANUAL = "manual"


def format_tombstone_time(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def tombstone_time(metadata: dict[str, Any] | None) -> datetime | None:
    if not metadata:
        return None
    raw = metadata.get(TOMBSTONE_FIELD)
    if not isinstance(raw, str) or not raw.strip():
        return None
    try:
        parsed = datetime.fromisoformat(raw.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed


def is_tombstoned(metadata: dict[str, Any] | None) -> bool:
    return bool(metadata) and TOMBSTONE_FIELD in metadata


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TombstoneScheduler:
    """Writes the "delete after" marker into a record's metadata.

    Deletion itself is done by an external reaper; this only computes
    now + N days per reason. The audit event (counter plus log line) is a
    separate call so callers emit it only after the change is stored.
    """

    def __init__(
        self,
        *,
        low_score_days: int,
        manual_days: int,
        clock: Callable[[], datetime] | None = None,
        meter: metrics.Meter | None = None,
    ) -> None:
        self.periods = {
            TombstoneReason.LOW_SCORE: low_score_days,
            TombstoneReason.MANUAL: manual_days,
        }
        self._clock = clock or _utcnow
        meter = meter or metrics.get_meter(__name__)
        self._created_counter = meter.create_counter(
            name="intake_tombstones_created",
            description="Tombstones attached to records",
            unit="1",
        )
        self._cleared_counter = meter.create_counter(
            name="intake_tombstones_cleared",
            description="Tombstones removed from records",
            unit="1",
        )
        self._period_histogram = meter.create_histogram(
            name="intake_tombstone_period_days",
            description="Retention window applied when tombstoning",
            unit="d",
        )

    def deletion_time(self, reason: TombstoneReason) -> datetime:
        return self._clock() + timedelta(days=self.periods[reason])

    def schedule(self, record: Record, reason: TombstoneReason) -> datetime:
        """Stamp the deletion time into ``record.metadata``; call ``record_scheduled`` once it is persisted."""
        deletion_at = self.deletion_time(reason)
        record.metadata[TOMBSTONE_FIELD] = format_tombstone_time(deletion_at)
        return deletion_at

    def record_scheduled(self, record: Record, reason: TombstoneReason) -> None:
        period_days = self.periods[reason]
        self._created_counter.add(1, {"reason": reason.value})
        self._period_histogram.record(period_days, {"reason": reason.value})
        logger.info(
            "tombstone created reason=%s record_id=%s source_url=%s period_days=%s tombstone_at=%s",
            reason.value,
            record.id,
            record.source_url,
            period_days,
            record.metadata.get(TOMBSTONE_FIELD),
        )

    def clear(self, record: Record) -> bool:
        return record.metadata.pop(TOMBSTONE_FIELD, None) is not None

    def record_cleared(self, record: Record, had_tombstone: bool) -> None:
        self._cleared_counter.add(1, {"had_tombstone": had_tombstone})
        logger.info("tombstone cleared record_id=%s had_tombstone=%s", record.id, had_tombstone)


@lru_cache
def get_tombstone_scheduler() -> TombstoneScheduler:
    settings = get_settings()
    return TombstoneScheduler(
        low_score_days=settings.tombstone_period_low_score_days,
        manual_days=settings.tombstone_period_manual_days,
    )

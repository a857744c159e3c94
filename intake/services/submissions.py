from __future__ import annotations

from enum import Enum
from functools import lru_cache

from opentelemetry import metrics


class SubmissionOutcome(str, Enum):
    ACCEPTED = "accepted"
    IN_FLIGHT = "in_flight"
    CACHED = "cached"
    REJECTED = "rejected"


class SubmissionMetrics:
    """Counts what happened to each asynchronous submission at the API edge."""

    def __init__(self, *, meter: metrics.Meter | None = None) -> None:
        meter = meter or metrics.get_meter(__name__)
        self._counter = meter.create_counter(
            name="intake_submissions",
            description="Asynchronous submissions by source type and outcome",
            unit="1",
        )

    def record(self, source_type: str, outcome: SubmissionOutcome) -> None:
        self._counter.add(1, {"source_type": source_type, "outcome": outcome.value})


@lru_cache
def get_submission_metrics() -> SubmissionMetrics:
    return SubmissionMetrics()

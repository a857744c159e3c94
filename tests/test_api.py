from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any

import pytest
from fastapi.testclient import TestClient
from fakes import FakeAnalyzer, FakeRedis, FakeScraper, build_pipeline, metric_points
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import InMemoryMetricReader

from intake.main import app
from intake.schemas.scoring import ScoreResult
from intake.services.pipeline import IngestionPipeline, get_pipeline
from intake.services.record_store import RecordStoreUnavailableError, get_record_store
from intake.services.request_manager import RequestManager, get_request_manager
from intake.services.submissions import SubmissionMetrics, get_submission_metrics
from intake.services.tombstones import TOMBSTONE_FIELD, TombstoneScheduler, get_tombstone_scheduler

URL = "https://example.com/articles/one"


@dataclass(slots=True)
class Harness:
    client: TestClient
    pipeline: IngestionPipeline
    requests: RequestManager
    scraper: FakeScraper
    analyzer: FakeAnalyzer
    redis: FakeRedis
    metrics: InMemoryMetricReader


@pytest.fixture
def harness() -> Harness:
    reader = InMemoryMetricReader()
    meter = MeterProvider(metric_readers=[reader]).get_meter("test")
    requests = RequestManager(meter=meter)
    pipeline, scraper, analyzer, redis_client = build_pipeline(
        ScoreResult(score=0.9, categories=["news"]),
        requests=requests,
    )
    pipeline.tombstones = TombstoneScheduler(low_score_days=30, manual_days=90, meter=meter)
    submissions = SubmissionMetrics(meter=meter)
    app.dependency_overrides[get_submission_metrics] = lambda: submissions
    app.dependency_overrides[get_pipeline] = lambda: pipeline
    app.dependency_overrides[get_request_manager] = lambda: requests
    app.dependency_overrides[get_record_store] = lambda: pipeline.records
    app.dependency_overrides[get_tombstone_scheduler] = lambda: pipeline.tombstones

    with TestClient(app) as client:
        yield Harness(
            client=client,
            pipeline=pipeline,
            requests=requests,
            scraper=scraper,
            analyzer=analyzer,
            redis=redis_client,
            metrics=reader,
        )

    app.dependency_overrides.clear()


def _wait_for_job(client: TestClient, job_id: str, timeout: float = 5.0) -> dict[str, Any]:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        body = client.get(f"/jobs/{job_id}").json()
        if body["status"] in {"completed", "failed"}:
            return body
        time.sleep(0.02)
    raise AssertionError(f"job {job_id} did not finish")


def test_scrape_request_rejects_invalid_url(harness: Harness) -> None:
    response = harness.client.post("/scrape-requests", json={"url": "example.com/no-scheme"})
    assert response.status_code == 422
    assert len(harness.requests) == 0


def test_scrape_request_runs_job_then_serves_cached_result(harness: Harness) -> None:
    response = harness.client.post("/scrape-requests", json={"url": URL})
    assert response.status_code == 202
    job = response.json()
    assert job["source_type"] == "url"
    assert job["url"] == URL
    assert job["status"] == "pending"
    assert "text" not in job

    finished = _wait_for_job(harness.client, job["id"])
    assert finished["status"] == "completed"
    assert finished["progress"] == 100
    record_id = finished["result_request_id"]

    record = harness.client.get(f"/records/{record_id}")
    assert record.status_code == 200
    assert record.json()["source_url"] == URL

    cached = harness.client.post("/scrape-requests", json={"url": URL + "/?utm_source=feed"})
    assert cached.status_code == 200
    body = cached.json()
    assert body["id"] == record_id
    assert body["cached"] is True
    assert body["status"] == "completed"
    assert harness.scraper.scrape_calls == [URL]


def test_scrape_request_returns_existing_in_flight_job(harness: Harness) -> None:
    existing, _ = harness.requests.create(URL)

    response = harness.client.post("/scrape-requests", json={"url": URL})

    assert response.status_code == 202
    assert response.json()["id"] == existing.id
    assert len(harness.requests) == 1


def test_failed_job_reports_error_and_can_be_retried(harness: Harness) -> None:
    harness.scraper.fail_scrape = True
    job = harness.client.post("/scrape-requests", json={"url": URL}).json()

    failed = _wait_for_job(harness.client, job["id"])
    assert failed["status"] == "failed"
    assert "timeout" in failed["error_message"]

    harness.scraper.fail_scrape = False
    retried = harness.client.post(f"/jobs/{job['id']}/retry")
    assert retried.status_code == 200
    assert retried.json()["status"] == "pending"
    assert "error_message" not in retried.json()

    finished = _wait_for_job(harness.client, job["id"])
    assert finished["status"] == "completed"


def test_retry_rejects_non_failed_job(harness: Harness) -> None:
    entry, _ = harness.requests.create(URL)
    response = harness.client.post(f"/jobs/{entry.id}/retry")
    assert response.status_code == 409

    assert harness.client.post("/jobs/missing/retry").status_code == 404


def test_text_requests_are_never_deduplicated(harness: Harness) -> None:
    first = harness.client.post("/text-requests", json={"text": "same words"})
    second = harness.client.post("/text-requests", json={"text": "same words"})

    assert first.status_code == 202
    assert second.status_code == 202
    assert first.json()["id"] != second.json()["id"]
    assert first.json()["text"] == "same words"

    finished = _wait_for_job(harness.client, first.json()["id"])
    assert finished["status"] == "completed"
    record = harness.client.get(f"/records/{finished['result_request_id']}").json()
    assert record["source_type"] == "text"


def test_list_get_and_delete_jobs(harness: Harness) -> None:
    entry, _ = harness.requests.create(URL)
    harness.requests.create_text("text")

    listed = harness.client.get("/jobs", params={"limit": 1})
    assert listed.status_code == 200
    assert len(listed.json()) == 1

    assert harness.client.get(f"/jobs/{entry.id}").status_code == 200
    assert harness.client.delete(f"/jobs/{entry.id}").status_code == 200
    assert harness.client.get(f"/jobs/{entry.id}").status_code == 404
    assert harness.client.delete(f"/jobs/{entry.id}").status_code == 404


def test_score_endpoint_reports_threshold_decision(harness: Harness) -> None:
    response = harness.client.post("/score", json={"url": URL})
    assert response.status_code == 200
    body = response.json()
    assert body["meets_threshold"] is True
    assert body["threshold"] == 0.5
    assert body["score"]["score"] == 0.9

    assert harness.client.post("/score", json={"url": "nope"}).status_code == 422


def test_sync_scrape_maps_upstream_failure_to_bad_gateway(harness: Harness) -> None:
    harness.scraper.fail_score = True
    response = harness.client.post("/scrape", json={"url": URL})
    assert response.status_code == 502


def test_sync_analyze_creates_record_or_fails_fast(harness: Harness) -> None:
    created = harness.client.post("/analyze", json={"text": "hello analyzer"})
    assert created.status_code == 201
    assert created.json()["textanalyzer_uuid"] == "analysis-1"

    harness.analyzer.fail = True
    failed = harness.client.post("/analyze", json={"text": "hello analyzer"})
    assert failed.status_code == 502


def test_low_score_record_tombstone_lifecycle(harness: Harness) -> None:
    harness.scraper.score = ScoreResult(score=0.1, categories=["spam"])

    created = harness.client.post("/scrape", json={"url": URL})
    assert created.status_code == 201
    record = created.json()
    assert record["seo_enabled"] is False
    assert TOMBSTONE_FIELD in record["metadata"]

    tombstoned = harness.client.get("/records", params={"tombstoned": "true"}).json()
    assert [row["id"] for row in tombstoned] == [record["id"]]

    cleared = harness.client.delete(f"/records/{record['id']}/tombstone")
    assert cleared.status_code == 200
    assert TOMBSTONE_FIELD not in cleared.json()["metadata"]
    assert harness.client.get("/records", params={"tombstoned": "true"}).json() == []

    manual = harness.client.put(f"/records/{record['id']}/tombstone")
    assert manual.status_code == 200
    assert TOMBSTONE_FIELD in manual.json()["metadata"]

    assert harness.client.put("/records/missing/tombstone").status_code == 404


def test_records_filter_by_tag_and_delete(harness: Harness) -> None:
    created = harness.client.post("/scrape", json={"url": URL}).json()

    by_tag = harness.client.get("/records", params=[("tag", "news"), ("tag", "example.com")]).json()
    assert [row["id"] for row in by_tag] == [created["id"]]
    assert harness.client.get("/records", params={"tag": "sport"}).json() == []

    deleted = harness.client.delete(f"/records/{created['id']}")
    assert deleted.status_code == 200
    assert harness.scraper.deleted == ["scrape-1"]
    assert harness.analyzer.deleted == ["analysis-1"]
    assert harness.client.get(f"/records/{created['id']}").status_code == 404
    assert harness.client.delete(f"/records/{created['id']}").status_code == 404
    assert asyncio.run(harness.pipeline.lookup_cached(URL)) is None


def test_submission_outcomes_are_counted(harness: Harness) -> None:
    harness.client.post("/scrape-requests", json={"url": "example.com/no-scheme"})
    job = harness.client.post("/scrape-requests", json={"url": URL}).json()
    _wait_for_job(harness.client, job["id"])
    harness.client.post("/scrape-requests", json={"url": URL})
    harness.requests.create("https://example.com/other")
    harness.client.post("/scrape-requests", json={"url": "https://example.com/other"})
    text_job = harness.client.post("/text-requests", json={"text": "words"}).json()
    _wait_for_job(harness.client, text_job["id"])

    counted = metric_points(harness.metrics, "intake_submissions")
    assert counted == {
        (("outcome", "rejected"), ("source_type", "url")): 1,
        (("outcome", "accepted"), ("source_type", "url")): 1,
        (("outcome", "cached"), ("source_type", "url")): 1,
        (("outcome", "in_flight"), ("source_type", "url")): 1,
        (("outcome", "accepted"), ("source_type", "text")): 1,
    }

    statuses = metric_points(harness.metrics, "intake_requests_by_status")
    assert statuses == {
        (("status", "pending"),): 1,
        (("status", "processing"),): 0,
        (("status", "completed"),): 2,
        (("status", "failed"),): 0,
    }


def test_cached_record_outage_falls_through_to_new_job(harness: Harness, monkeypatch) -> None:
    job = harness.client.post("/scrape-requests", json={"url": URL}).json()
    assert _wait_for_job(harness.client, job["id"])["status"] == "completed"

    real_get = harness.pipeline.records.get
    calls = 0

    async def flaky_get(record_id: str):
        nonlocal calls
        calls += 1
        if calls == 1:
            raise RecordStoreUnavailableError("database unavailable")
        return await real_get(record_id)

    monkeypatch.setattr(harness.pipeline.records, "get", flaky_get)

    response = harness.client.post("/scrape-requests", json={"url": URL})
    assert response.status_code == 202
    assert response.json()["id"] != job["id"]
    assert response.json()["status"] == "pending"


def test_tombstone_audit_waits_for_persisted_metadata(harness: Harness, monkeypatch) -> None:
    record = harness.client.post("/scrape", json={"url": URL}).json()

    async def unavailable(record_id: str, metadata: dict[str, Any]) -> bool:
        raise RecordStoreUnavailableError("database unavailable")

    monkeypatch.setattr(harness.pipeline.records, "update_metadata", unavailable)
    assert harness.client.put(f"/records/{record['id']}/tombstone").status_code == 503
    assert metric_points(harness.metrics, "intake_tombstones_created") == {}
    stored = harness.client.get(f"/records/{record['id']}").json()
    assert TOMBSTONE_FIELD not in stored["metadata"]

    monkeypatch.undo()
    assert harness.client.put(f"/records/{record['id']}/tombstone").status_code == 200
    assert metric_points(harness.metrics, "intake_tombstones_created") == {(("reason", "manual"),): 1}

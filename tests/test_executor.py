from __future__ import annotations

import asyncio

from fakes import build_pipeline

from intake.jobs import executor
from intake.schemas.scoring import ScoreResult
from intake.services.record_store import PostgresRecordStore
from intake.services.request_manager import JobStatus, RequestManager

URL = "https://example.com/articles/one"


def test_url_job_completes_with_record_id() -> None:
    requests = RequestManager()
    pipeline, _, _, _ = build_pipeline(ScoreResult(score=0.9), requests=requests)
    entry, _ = requests.create(URL)

    record_id = asyncio.run(executor.execute_url_job(entry.id, URL, pipeline=pipeline, requests=requests))

    done = requests.get(entry.id)
    assert done is not None
    assert done.status is JobStatus.COMPLETED
    assert done.progress == 100
    assert done.result_request_id == record_id
    assert done.started_at is not None


def test_upstream_failure_marks_job_failed_without_retry() -> None:
    requests = RequestManager()
    pipeline, scraper, _, _ = build_pipeline(ScoreResult(score=0.9), requests=requests)
    scraper.fail_score = True
    entry, _ = requests.create(URL)

    assert asyncio.run(executor.execute_url_job(entry.id, URL, pipeline=pipeline, requests=requests)) is None

    failed = requests.get(entry.id)
    assert failed is not None
    assert failed.status is JobStatus.FAILED
    assert failed.error_message == "scraper service returned status 500"
    assert scraper.score_calls == [URL]


def test_analysis_failure_fails_url_job() -> None:
    requests = RequestManager()
    pipeline, _, analyzer, redis_client = build_pipeline(ScoreResult(score=0.9), requests=requests)
    analyzer.fail = True
    entry, _ = requests.create(URL)

    asyncio.run(executor.execute_url_job(entry.id, URL, pipeline=pipeline, requests=requests))

    failed = requests.get(entry.id)
    assert failed is not None
    assert failed.status is JobStatus.FAILED
    assert redis_client.values == {}


def test_text_job_completes() -> None:
    requests = RequestManager()
    pipeline, _, _, _ = build_pipeline(ScoreResult(score=0.9), requests=requests)
    entry, _ = requests.create_text("some text")

    record_id = asyncio.run(executor.execute_job(entry, pipeline=pipeline, requests=requests))

    done = requests.get(entry.id)
    assert done is not None
    assert done.status is JobStatus.COMPLETED
    assert done.result_request_id == record_id


def test_execute_job_dispatches_url_entries(monkeypatch) -> None:
    requests = RequestManager()
    pipeline, _, _, _ = build_pipeline(ScoreResult(score=0.9), requests=requests)
    entry, _ = requests.create(URL)
    captured: dict[str, str] = {}

    async def fake_execute_url_job(job_id: str, url: str, **_: object) -> str:
        captured["job_id"] = job_id
        captured["url"] = url
        return "record-1"

    monkeypatch.setattr(executor, "execute_url_job", fake_execute_url_job)

    assert asyncio.run(executor.execute_job(entry, pipeline=pipeline, requests=requests)) == "record-1"
    assert captured == {"job_id": entry.id, "url": URL}


class DroppedConnectionPool:
    async def execute(self, *args: object) -> str:
        raise ConnectionResetError("connection reset by peer")

    async def fetchrow(self, *args: object) -> None:
        raise ConnectionResetError("connection reset by peer")


def test_dropped_database_connection_fails_job() -> None:
    requests = RequestManager()
    pipeline, _, _, _ = build_pipeline(ScoreResult(score=0.9), requests=requests)
    store = PostgresRecordStore(database_url="postgresql://db/intake", min_pool_size=1, max_pool_size=1)
    store._pool = DroppedConnectionPool()  # type: ignore[assignment]
    pipeline.records = store
    entry, _ = requests.create(URL)

    assert asyncio.run(executor.execute_url_job(entry.id, URL, pipeline=pipeline, requests=requests)) is None

    failed = requests.get(entry.id)
    assert failed is not None
    assert failed.status is JobStatus.FAILED
    assert failed.error_message == "database unavailable"


def test_unexpected_error_fails_job_instead_of_leaving_it_processing(monkeypatch) -> None:
    requests = RequestManager()
    pipeline, _, _, _ = build_pipeline(ScoreResult(score=0.9), requests=requests)
    url_entry, _ = requests.create(URL)
    text_entry, _ = requests.create_text("some text")

    async def broken(*args: object, **kwargs: object) -> None:
        raise KeyError("scrape_id")

    monkeypatch.setattr(pipeline, "process_url", broken)
    monkeypatch.setattr(pipeline, "process_text", broken)

    assert asyncio.run(executor.execute_job(url_entry, pipeline=pipeline, requests=requests)) is None
    assert asyncio.run(executor.execute_job(text_entry, pipeline=pipeline, requests=requests)) is None

    for job_id in (url_entry.id, text_entry.id):
        failed = requests.get(job_id)
        assert failed is not None
        assert failed.status is JobStatus.FAILED
        assert failed.error_message == "'scrape_id'"

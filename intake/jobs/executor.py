from __future__ import annotations

import logging

from intake.core.urls import InvalidURLError
from intake.services.pipeline import IngestionPipeline
from intake.services.record_store import RecordStoreError
from intake.services.request_manager import JobEntry, JobStatus, RequestManager, SourceType
from intake.services.upstream import UpstreamUnavailableError

logger = logging.getLogger(__name__)

_EXPECTED_JOB_ERRORS = (UpstreamUnavailableError, RecordStoreError, InvalidURLError)


async def execute_url_job(job_id: str, url: str, *, pipeline: IngestionPipeline, requests: RequestManager) -> str | None:
    requests.update_status(job_id, JobStatus.PROCESSING, 0)
    try:
        record = await pipeline.process_url(url, job_id=job_id)
    except _EXPECTED_JOB_ERRORS as exc:
        logger.warning("url job failed job_id=%s url=%s error=%s", job_id, url, exc)
        requests.set_failed(job_id, str(exc))
        return None
    except Exception as exc:
        logger.exception("url job crashed job_id=%s url=%s", job_id, url)
        requests.set_failed(job_id, str(exc) or type(exc).__name__)
        return None

    requests.set_completed(job_id, record.id)
    logger.info("url job completed job_id=%s url=%s record_id=%s", job_id, url, record.id)
    return record.id


async def execute_text_job(job_id: str, text: str, *, pipeline: IngestionPipeline, requests: RequestManager) -> str | None:
    requests.update_status(job_id, JobStatus.PROCESSING, 0)
    try:
        record = await pipeline.process_text(text, job_id=job_id)
    except _EXPECTED_JOB_ERRORS as exc:
        logger.warning("text job failed job_id=%s error=%s", job_id, exc)
        requests.set_failed(job_id, str(exc))
        return None
    except Exception as exc:
        logger.exception("text job crashed job_id=%s", job_id)
        requests.set_failed(job_id, str(exc) or type(exc).__name__)
        return None

    requests.set_completed(job_id, record.id)
    logger.info("text job completed job_id=%s record_id=%s", job_id, record.id)
    return record.id


async def execute_job(entry: JobEntry, *, pipeline: IngestionPipeline, requests: RequestManager) -> str | None:
    if entry.source_type is SourceType.URL and entry.url is not None:
        return await execute_url_job(entry.id, entry.url, pipeline=pipeline, requests=requests)
    if entry.source_type is SourceType.TEXT and entry.text is not None:
        return await execute_text_job(entry.id, entry.text, pipeline=pipeline, requests=requests)

    requests.set_failed(entry.id, "job entry has no payload")
    return None

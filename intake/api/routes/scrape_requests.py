from fastapi import APIRouter, Depends, HTTPException, Response, status as http_status

from intake.core.urls import InvalidURLError, normalize_url
from intake.jobs.executor import execute_url_job
from intake.schemas.jobs import JobOut, ScrapeRequestIn
from intake.schemas.records import CachedResultOut
from intake.services.dispatcher import get_dispatcher
from intake.services.pipeline import get_pipeline
from intake.services.request_manager import get_request_manager
from intake.services.submissions import SubmissionOutcome, get_submission_metrics

router = APIRouter()


@router.post(
    "",
    response_model=JobOut | CachedResultOut,
    response_model_exclude_none=True,
    status_code=http_status.HTTP_202_ACCEPTED,
)
async def create_scrape_request(
    payload: ScrapeRequestIn,
    response: Response,
    pipeline=Depends(get_pipeline),
    requests=Depends(get_request_manager),
    dispatcher=Depends(get_dispatcher),
    submissions=Depends(get_submission_metrics),
) -> JobOut | CachedResultOut:
    try:
        normalize_url(payload.url)
    except InvalidURLError as exc:
        submissions.record("url", SubmissionOutcome.REJECTED)
        raise HTTPException(status_code=http_status.HTTP_422_UNPROCESSABLE_CONTENT, detail=str(exc)) from exc

    # Cache and record store trouble both come back as a miss.
    cached = await pipeline.lookup_cached(payload.url)
    if cached is not None:
        submissions.record("url", SubmissionOutcome.CACHED)
        response.status_code = http_status.HTTP_200_OK
        return CachedResultOut(
            id=cached.id,
            created_at=cached.created_at,
            url=cached.source_url,
            scraper_uuid=cached.scraper_uuid,
        )

    entry, is_new = requests.create(payload.url)
    if is_new:
        submissions.record("url", SubmissionOutcome.ACCEPTED)
        dispatcher.submit(
            entry.id,
            lambda: execute_url_job(entry.id, payload.url, pipeline=pipeline, requests=requests),
            on_timeout=requests.set_failed,
        )
    else:
        submissions.record("url", SubmissionOutcome.IN_FLIGHT)
    return JobOut(**entry.to_dict())

from fastapi import APIRouter, Depends, status as http_status

from intake.jobs.executor import execute_text_job
from intake.schemas.jobs import JobOut, TextRequestIn
from intake.services.dispatcher import get_dispatcher
from intake.services.pipeline import get_pipeline
from intake.services.request_manager import get_request_manager
from intake.services.submissions import SubmissionOutcome, get_submission_metrics

router = APIRouter()


@router.post(
    "",
    response_model=JobOut,
    response_model_exclude_none=True,
    status_code=http_status.HTTP_202_ACCEPTED,
)
async def create_text_request(
    payload: TextRequestIn,
    pipeline=Depends(get_pipeline),
    requests=Depends(get_request_manager),
    dispatcher=Depends(get_dispatcher),
    submissions=Depends(get_submission_metrics),
) -> JobOut:
    entry, _ = requests.create_text(payload.text)
    submissions.record("text", SubmissionOutcome.ACCEPTED)
    dispatcher.submit(
        entry.id,
        lambda: execute_text_job(entry.id, payload.text, pipeline=pipeline, requests=requests),
        on_timeout=requests.set_failed,
    )
    return JobOut(**entry.to_dict())

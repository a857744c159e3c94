from fastapi import APIRouter, Depends, HTTPException, Query, status as http_status

from intake.jobs.executor import execute_job
from intake.schemas.jobs import JobOut
from intake.schemas.records import MessageOut
from intake.services.dispatcher import get_dispatcher
from intake.services.pipeline import get_pipeline
from intake.services.request_manager import get_request_manager

router = APIRouter()


@router.get("", response_model=list[JobOut], response_model_exclude_none=True)
async def list_jobs(
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    requests=Depends(get_request_manager),
) -> list[JobOut]:
    entries = requests.list()
    return [JobOut(**entry.to_dict()) for entry in entries[offset : offset + limit]]


@router.get("/{job_id}", response_model=JobOut, response_model_exclude_none=True)
async def get_job(job_id: str, requests=Depends(get_request_manager)) -> JobOut:
    entry = requests.get(job_id)
    if entry is None:
        raise HTTPException(status_code=http_status.HTTP_404_NOT_FOUND, detail="job not found")
    return JobOut(**entry.to_dict())


@router.delete("/{job_id}", response_model=MessageOut)
async def delete_job(
    job_id: str,
    requests=Depends(get_request_manager),
    dispatcher=Depends(get_dispatcher),
) -> MessageOut:
    if not requests.delete(job_id):
        raise HTTPException(status_code=http_status.HTTP_404_NOT_FOUND, detail="job not found")
    dispatcher.cancel(job_id)
    return MessageOut(message="job deleted")


@router.post("/{job_id}/retry", response_model=JobOut, response_model_exclude_none=True)
async def retry_job(
    job_id: str,
    pipeline=Depends(get_pipeline),
    requests=Depends(get_request_manager),
    dispatcher=Depends(get_dispatcher),
) -> JobOut:
    if requests.get(job_id) is None:
        raise HTTPException(status_code=http_status.HTTP_404_NOT_FOUND, detail="job not found")
    if not requests.retry(job_id):
        raise HTTPException(status_code=http_status.HTTP_409_CONFLICT, detail="only failed jobs can be retried")

    entry = requests.get(job_id)
    if entry is None:
        raise HTTPException(status_code=http_status.HTTP_404_NOT_FOUND, detail="job not found")
    dispatcher.submit(
        entry.id,
        lambda: execute_job(entry, pipeline=pipeline, requests=requests),
        on_timeout=requests.set_failed,
    )
    return JobOut(**entry.to_dict())

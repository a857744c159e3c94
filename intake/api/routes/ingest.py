from fastapi import APIRouter, Depends, HTTPException, status as http_status

from intake.core.urls import InvalidURLError
from intake.schemas.jobs import ScrapeRequestIn, TextRequestIn
from intake.schemas.records import Record
from intake.schemas.scoring import ScoreOut, ScoreRequest
from intake.services.pipeline import get_pipeline
from intake.services.record_store import RecordStoreUnavailableError
from intake.services.score_gate import Route, route
from intake.services.upstream import UpstreamUnavailableError

router = APIRouter()


@router.post("/score", response_model=ScoreOut)
async def score_url(payload: ScoreRequest, pipeline=Depends(get_pipeline)) -> ScoreOut:
    try:
        result = await pipeline.score(payload.url)
    except InvalidURLError as exc:
        raise HTTPException(status_code=http_status.HTTP_422_UNPROCESSABLE_CONTENT, detail=str(exc)) from exc
    except UpstreamUnavailableError as exc:
        raise HTTPException(status_code=http_status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc

    return ScoreOut(
        url=payload.url,
        score=result,
        meets_threshold=route(result, pipeline.threshold) is Route.FULL_PIPELINE,
        threshold=pipeline.threshold,
    )


@router.post("/scrape", response_model=Record, status_code=http_status.HTTP_201_CREATED)
async def scrape_url(payload: ScrapeRequestIn, pipeline=Depends(get_pipeline)) -> Record:
    try:
        return await pipeline.process_url(payload.url)
    except InvalidURLError as exc:
        raise HTTPException(status_code=http_status.HTTP_422_UNPROCESSABLE_CONTENT, detail=str(exc)) from exc
    except UpstreamUnavailableError as exc:
        raise HTTPException(status_code=http_status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    except RecordStoreUnavailableError as exc:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc


@router.post("/analyze", response_model=Record, status_code=http_status.HTTP_201_CREATED)
async def analyze_text(payload: TextRequestIn, pipeline=Depends(get_pipeline)) -> Record:
    try:
        return await pipeline.process_text(payload.text)
    except UpstreamUnavailableError as exc:
        raise HTTPException(status_code=http_status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    except RecordStoreUnavailableError as exc:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

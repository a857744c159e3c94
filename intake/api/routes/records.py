from fastapi import APIRouter, Depends, HTTPException, Query, status as http_status

from intake.schemas.records import MessageOut, Record, RecordSourceType
from intake.services.pipeline import get_pipeline
from intake.services.record_store import RecordStoreUnavailableError, get_record_store
from intake.services.tombstones import TombstoneReason, get_tombstone_scheduler

router = APIRouter()


@router.get("", response_model=list[Record])
async def list_records(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    tag: list[str] | None = Query(default=None),
    source_type: RecordSourceType | None = Query(default=None),
    tombstoned: bool | None = Query(default=None),
    records=Depends(get_record_store),
) -> list[Record]:
    try:
        return await records.filter(
            tags=tag,
            source_type=source_type,
            tombstoned=tombstoned,
            limit=limit,
            offset=offset,
        )
    except RecordStoreUnavailableError as exc:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc


@router.get("/{record_id}", response_model=Record)
async def get_record(record_id: str, records=Depends(get_record_store)) -> Record:
    try:
        record = await records.get(record_id)
    except RecordStoreUnavailableError as exc:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    if record is None:
        raise HTTPException(status_code=http_status.HTTP_404_NOT_FOUND, detail="record not found")
    return record


@router.delete("/{record_id}", response_model=MessageOut)
async def delete_record(record_id: str, pipeline=Depends(get_pipeline)) -> MessageOut:
    try:
        deleted = await pipeline.delete_record(record_id)
    except RecordStoreUnavailableError as exc:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    if not deleted:
        raise HTTPException(status_code=http_status.HTTP_404_NOT_FOUND, detail="record not found")
    return MessageOut(message="record deleted")


@router.put("/{record_id}/tombstone", response_model=Record)
async def tombstone_record(
    record_id: str,
    records=Depends(get_record_store),
    tombstones=Depends(get_tombstone_scheduler),
) -> Record:
    try:
        record = await records.get(record_id)
        if record is None:
            raise HTTPException(status_code=http_status.HTTP_404_NOT_FOUND, detail="record not found")
        tombstones.schedule(record, TombstoneReason.MANUAL)
        if not await records.update_metadata(record.id, record.metadata):
            raise HTTPException(status_code=http_status.HTTP_404_NOT_FOUND, detail="record not found")
    except RecordStoreUnavailableError as exc:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    tombstones.record_scheduled(record, TombstoneReason.MANUAL)
    return record


@router.delete("/{record_id}/tombstone", response_model=Record)
async def untombstone_record(
    record_id: str,
    records=Depends(get_record_store),
    tombstones=Depends(get_tombstone_scheduler),
) -> Record:
    try:
        record = await records.get(record_id)
        if record is None:
            raise HTTPException(status_code=http_status.HTTP_404_NOT_FOUND, detail="record not found")
        removed = tombstones.clear(record)
        if removed and not await records.update_metadata(record.id, record.metadata):
            raise HTTPException(status_code=http_status.HTTP_404_NOT_FOUND, detail="record not found")
    except RecordStoreUnavailableError as exc:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    tombstones.record_cleared(record, removed)
    return record

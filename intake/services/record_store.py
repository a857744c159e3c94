from __future__ import annotations

import json
import threading
from datetime import datetime
from functools import lru_cache
from typing import Any, Protocol

import asyncpg  # type: ignore[import-untyped]
from asyncpg import exceptions as pg_exc

from intake.core.config import get_settings
from intake.schemas.records import Record
from intake.services.tombstones import TOMBSTONE_FIELD


class RecordStoreError(Exception):
    """Base record store error."""


class RecordStoreUnavailableError(RecordStoreError):
    """Raised when the database is unavailable or not configured."""


# Dropped sockets and closed connections surface as these rather than PostgresError.
_CONNECTION_ERRORS = (OSError, asyncpg.InterfaceError)


class RecordStore(Protocol):
    async def save(self, record: Record) -> None: ...

    async def get(self, record_id: str) -> Record | None: ...

    async def list(self, *, limit: int, offset: int) -> list[Record]: ...

    async def filter(
        self,
        *,
        tags: list[str] | None = None,
        source_type: str | None = None,
        tombstoned: bool | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Record]: ...

    async def update_metadata(self, record_id: str, metadata: dict[str, Any]) -> bool: ...

    async def delete(self, record_id: str) -> bool: ...

    async def close(self) -> None: ...


class InMemoryRecordStore:
    """Process-local store used when no database is configured."""

    def __init__(self) -> None:
        self._records: dict[str, Record] = {}
        self._lock = threading.Lock()

    async def save(self, record: Record) -> None:
        with self._lock:
            self._records[record.id] = record.model_copy(deep=True)

    async def get(self, record_id: str) -> Record | None:
        with self._lock:
            record = self._records.get(record_id)
            return record.model_copy(deep=True) if record is not None else None

    async def list(self, *, limit: int, offset: int) -> list[Record]:
        return await self.filter(limit=limit, offset=offset)

    async def filter(
        self,
        *,
        tags: list[str] | None = None,
        source_type: str | None = None,
        tombstoned: bool | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Record]:
        with self._lock:
            rows = sorted(self._records.values(), key=lambda record: record.created_at, reverse=True)
        if tags:
            wanted = set(tags)
            rows = [record for record in rows if wanted.issubset(record.tags)]
        if source_type:
            rows = [record for record in rows if record.source_type == source_type]
        if tombstoned is not None:
            rows = [record for record in rows if (TOMBSTONE_FIELD in record.metadata) is tombstoned]
        return [record.model_copy(deep=True) for record in rows[offset : offset + limit]]

    async def update_metadata(self, record_id: str, metadata: dict[str, Any]) -> bool:
        with self._lock:
            record = self._records.get(record_id)
            if record is None:
                return False
            self._records[record_id] = record.model_copy(update={"metadata": dict(metadata)}, deep=True)
            return True

    async def delete(self, record_id: str) -> bool:
        with self._lock:
            return self._records.pop(record_id, None) is not None

    async def close(self) -> None:
        return None


_RECORD_COLUMNS = """
  id::text as id,
  created_at,
  source_type,
  source_url,
  scraper_uuid,
  textanalyzer_uuid,
  tags,
  metadata,
  slug,
  seo_enabled
"""


class PostgresRecordStore:
    """asyncpg-backed store over the ``records`` table (schema managed outside this service)."""

    def __init__(self, database_url: str | None, min_pool_size: int, max_pool_size: int) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self._pool: asyncpg.Pool | None = None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def save(self, record: Record) -> None:
        pool = await self._get_pool()
        try:
            await self._insert(pool, record)
        except _CONNECTION_ERRORS as exc:
            raise RecordStoreUnavailableError("database unavailable") from exc
        except asyncpg.PostgresError as exc:
            raise RecordStoreError(f"failed to save record {record.id}: {exc}") from exc

    async def _insert(self, pool: asyncpg.Pool, record: Record) -> None:
        await pool.execute(
            """
            insert into records (
              id,
              created_at,
              source_type,
              source_url,
              scraper_uuid,
              textanalyzer_uuid,
              tags,
              metadata,
              slug,
              seo_enabled
            )
            values ($1::uuid, $2, $3, $4, $5, $6, $7::text[], $8::jsonb, $9, $10)
            on conflict (id) do update
            set
              source_url = excluded.source_url,
              scraper_uuid = excluded.scraper_uuid,
              textanalyzer_uuid = excluded.textanalyzer_uuid,
              tags = excluded.tags,
              metadata = excluded.metadata,
              slug = excluded.slug,
              seo_enabled = excluded.seo_enabled
            """,
            record.id,
            record.created_at,
            record.source_type,
            record.source_url,
            record.scraper_uuid,
            record.textanalyzer_uuid,
            record.tags,
            json.dumps(record.metadata, default=str),
            record.slug,
            record.seo_enabled,
        )

    async def get(self, record_id: str) -> Record | None:
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(
                f"select {_RECORD_COLUMNS} from records where id = $1::uuid",
                record_id,
            )
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError):
            return None
        except _CONNECTION_ERRORS as exc:
            raise RecordStoreUnavailableError("database unavailable") from exc
        return self._row_to_record(row) if row else None

    async def list(self, *, limit: int, offset: int) -> list[Record]:
        return await self.filter(limit=limit, offset=offset)

    async def filter(
        self,
        *,
        tags: list[str] | None = None,
        source_type: str | None = None,
        tombstoned: bool | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Record]:
        clauses: list[str] = []
        params: list[Any] = []

        def bind(value: Any) -> str:
            params.append(value)
            return f"${len(params)}"

        if tags:
            clauses.append(f"tags @> {bind(tags)}::text[]")
        if source_type:
            clauses.append(f"source_type = {bind(source_type)}")
        if tombstoned is True:
            clauses.append(f"metadata ? {bind(TOMBSTONE_FIELD)}")
        elif tombstoned is False:
            clauses.append(f"not (metadata ? {bind(TOMBSTONE_FIELD)})")

        where = f"where {' and '.join(clauses)}" if clauses else ""
        query = f"""
            select {_RECORD_COLUMNS}
            from records
            {where}
            order by created_at desc
            limit {bind(limit)} offset {bind(offset)}
        """
        pool = await self._get_pool()
        try:
            rows = await pool.fetch(query, *params)
        except _CONNECTION_ERRORS as exc:
            raise RecordStoreUnavailableError("database unavailable") from exc
        return [self._row_to_record(row) for row in rows]

    async def update_metadata(self, record_id: str, metadata: dict[str, Any]) -> bool:
        pool = await self._get_pool()
        try:
            result = await pool.execute(
                "update records set metadata = $2::jsonb where id = $1::uuid",
                record_id,
                json.dumps(metadata, default=str),
            )
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError):
            return False
        except _CONNECTION_ERRORS as exc:
            raise RecordStoreUnavailableError("database unavailable") from exc
        return result.endswith(" 1")

    async def delete(self, record_id: str) -> bool:
        pool = await self._get_pool()
        try:
            result = await pool.execute("delete from records where id = $1::uuid", record_id)
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError):
            return False
        except _CONNECTION_ERRORS as exc:
            raise RecordStoreUnavailableError("database unavailable") from exc
        return result.endswith(" 1")

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise RecordStoreUnavailableError("INTAKE_DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=15,
            )
            return self._pool
        except Exception as exc:  # pragma: no cover - depends on environment
            raise RecordStoreUnavailableError("database unavailable") from exc

    @staticmethod
    def _row_to_record(row: asyncpg.Record) -> Record:
        metadata = row["metadata"]
        if isinstance(metadata, str):
            try:
                metadata = json.loads(metadata)
            except json.JSONDecodeError:
                metadata = {}
        created_at = row["created_at"]
        if not isinstance(created_at, datetime):
            created_at = datetime.fromisoformat(str(created_at))
        return Record(
            id=row["id"],
            created_at=created_at,
            source_type=row["source_type"],
            source_url=row["source_url"],
            scraper_uuid=row["scraper_uuid"],
            textanalyzer_uuid=row["textanalyzer_uuid"],
            tags=list(row["tags"] or []),
            metadata=metadata or {},
            slug=row["slug"],
            seo_enabled=bool(row["seo_enabled"]),
        )


@lru_cache
def get_record_store() -> RecordStore:
    settings = get_settings()
    if not settings.database_url:
        return InMemoryRecordStore()
    return PostgresRecordStore(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
    )

from __future__ import annotations

import logging
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any
from uuid import uuid4

from opentelemetry import trace

from intake.core.config import get_settings
from intake.core.slugs import generate_slug_with_fallback
from intake.core.tags import build_scrape_tags, tags_from_metadata
from intake.core.urls import domain_tag, normalize_url
from intake.schemas.records import Record
from intake.schemas.scoring import ScoreResult
from intake.services.record_store import RecordStore, RecordStoreError, get_record_store
from intake.services.request_manager import JobStatus, RequestManager, get_request_manager
from intake.services.score_gate import Route, route
from intake.services.tombstones import TombstoneReason, TombstoneScheduler, get_tombstone_scheduler
from intake.services.upstream import (
    ScraperClient,
    TextAnalyzerClient,
    UpstreamUnavailableError,
    compress_raw_text,
    get_analyzer_client,
    get_scraper_client,
)
from intake.services.url_cache import CacheUnavailableError, URLCache, get_url_cache

SLUG_SOURCE_CHARS = 100

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class IngestionPipeline:
    """Decides whether a submission is worth full processing and produces its durable record."""

    def __init__(
        self,
        *,
        scraper: ScraperClient,
        analyzer: TextAnalyzerClient,
        records: RecordStore,
        url_cache: URLCache | None,
        requests: RequestManager,
        tombstones: TombstoneScheduler,
        threshold: float,
    ) -> None:
        self.scraper = scraper
        self.analyzer = analyzer
        self.records = records
        self.url_cache = url_cache
        self.requests = requests
        self.tombstones = tombstones
        self.threshold = threshold

    async def lookup_cached(self, url: str) -> Record | None:
        """Resolve a previously completed run for ``url``; any cache trouble degrades to a miss."""
        if self.url_cache is None:
            return None

        try:
            record_id = await self.url_cache.get(url)
        except CacheUnavailableError as exc:
            logger.warning("url cache lookup failed url=%s error=%s", url, exc)
            return None
        if not record_id:
            return None

        try:
            record = await self.records.get(record_id)
        except RecordStoreError as exc:
            logger.warning("cached record lookup failed url=%s record_id=%s error=%s", url, record_id, exc)
            return None
        if record is not None:
            logger.info("url cache hit url=%s record_id=%s", url, record_id)
            return record

        logger.warning("stale url cache entry url=%s record_id=%s", url, record_id)
        try:
            await self.url_cache.delete(url)
        except CacheUnavailableError as exc:
            logger.warning("failed to delete stale cache entry url=%s error=%s", url, exc)
        return None

    async def score(self, url: str) -> ScoreResult:
        normalize_url(url)
        return await self.scraper.score_link(url)

    async def process_url(self, url: str, *, job_id: str | None = None) -> Record:
        with tracer.start_as_current_span("pipeline.process_url") as span:
            span.set_attribute("intake.url", url)
            if job_id:
                span.set_attribute("job.id", job_id)

            self._progress(job_id, 10)
            score = await self.score(url)
            decision = route(score, self.threshold)
            span.set_attribute("intake.score", score.score)
            span.set_attribute("intake.route", decision.value)

            if decision is Route.METADATA_ONLY:
                return await self._save_metadata_only(url, score)

            self._progress(job_id, 30)
            record = await self._run_full_pipeline(url, score, job_id=job_id)
            await self._populate_cache(url, record.id)
            return record

    async def process_text(self, text: str, *, job_id: str | None = None) -> Record:
        with tracer.start_as_current_span("pipeline.process_text") as span:
            span.set_attribute("intake.text_length", len(text))

            self._progress(job_id, 30)
            ticket = await self.analyzer.enqueue_analysis(text)
            self._progress(job_id, 90)

            record_id = str(uuid4())
            analyzer_metadata: dict[str, Any] = dict(ticket.metadata)
            analyzer_metadata.setdefault("status", ticket.status)
            record = Record(
                id=record_id,
                created_at=datetime.now(timezone.utc),
                source_type="text",
                textanalyzer_uuid=ticket.job_id,
                tags=tags_from_metadata(ticket.metadata),
                metadata={
                    "analyzer_metadata": analyzer_metadata,
                    "original_text": text,
                },
                slug=self._text_slug(text, ticket.metadata, record_id),
                seo_enabled=True,
            )
            await self.records.save(record)
            return record

    async def delete_record(self, record_id: str) -> bool:
        """Remove a record and, best effort, everything upstream that belongs to it."""
        record = await self.records.get(record_id)
        if record is None:
            return False

        if record.scraper_uuid:
            try:
                await self.scraper.delete_scrape(record.scraper_uuid)
            except UpstreamUnavailableError as exc:
                logger.warning("failed to delete scrape scrape_id=%s error=%s", record.scraper_uuid, exc)

        if record.textanalyzer_uuid:
            try:
                await self.analyzer.delete_analysis(record.textanalyzer_uuid)
            except UpstreamUnavailableError as exc:
                logger.warning(
                    "failed to delete analysis analysis_id=%s error=%s",
                    record.textanalyzer_uuid,
                    exc,
                )

        if record.source_url and self.url_cache is not None:
            try:
                await self.url_cache.delete(record.source_url)
            except (CacheUnavailableError, ValueError) as exc:
                logger.warning("failed to invalidate url cache url=%s error=%s", record.source_url, exc)

        return await self.records.delete(record_id)

    async def _save_metadata_only(self, url: str, score: ScoreResult) -> Record:
        record = Record(
            id=str(uuid4()),
            created_at=datetime.now(timezone.utc),
            source_type="url",
            source_url=url,
            tags=build_scrape_tags(score.categories, domain_tag(url)),
            metadata={
                "link_score": score.as_metadata(),
                "below_threshold": True,
                "threshold": self.threshold,
            },
            seo_enabled=False,
        )
        self.tombstones.schedule(record, TombstoneReason.LOW_SCORE)
        await self.records.save(record)
        self.tombstones.record_scheduled(record, TombstoneReason.LOW_SCORE)
        logger.info(
            "below threshold url=%s score=%.2f threshold=%.2f record_id=%s",
            url,
            score.score,
            self.threshold,
            record.id,
        )
        return record

    async def _run_full_pipeline(self, url: str, score: ScoreResult, *, job_id: str | None) -> Record:
        scraped = await self.scraper.scrape(url)
        self._progress(job_id, 60)

        scraper_metadata: dict[str, Any] = {
            "title": scraped.title,
            "content": scraped.content,
            "raw_text": scraped.raw_text,
            "url": scraped.url,
        }
        scraper_metadata.update(scraped.metadata)

        effective_score = scraped.score or score
        metadata: dict[str, Any] = {
            "scraper_metadata": scraper_metadata,
            "link_score": effective_score.as_metadata(),
        }

        analysis_job_id: str | None = None
        if not score.is_image:
            ticket = await self.analyzer.enqueue_analysis(
                scraped.content,
                original_html=compress_raw_text(scraped.raw_text) or None,
                images=[image.url for image in scraped.images],
            )
            analysis_job_id = ticket.job_id
            metadata["textanalyzer_job_id"] = ticket.job_id
            metadata["textanalyzer_status"] = ticket.status
        self._progress(job_id, 90)

        record_id = str(uuid4())
        slug = scraped.slug or generate_slug_with_fallback(scraped.title or url, record_id)
        record = Record(
            id=record_id,
            created_at=datetime.now(timezone.utc),
            source_type="url",
            source_url=url,
            scraper_uuid=scraped.id,
            textanalyzer_uuid=analysis_job_id,
            tags=build_scrape_tags(effective_score.categories, domain_tag(url)),
            metadata=metadata,
            slug=slug,
            seo_enabled=True,
        )
        await self.records.save(record)
        return record

    async def _populate_cache(self, url: str, record_id: str) -> None:
        if self.url_cache is None:
            return
        try:
            await self.url_cache.set(url, record_id)
        except CacheUnavailableError as exc:
            logger.warning("failed to populate url cache url=%s record_id=%s error=%s", url, record_id, exc)
            return
        logger.info("url cached url=%s record_id=%s", url, record_id)

    def _progress(self, job_id: str | None, progress: int) -> None:
        if job_id:
            self.requests.update_status(job_id, JobStatus.PROCESSING, progress)

    @staticmethod
    def _text_slug(text: str, analyzer_metadata: dict[str, Any], fallback: str) -> str:
        cleaned = analyzer_metadata.get("cleaned_text")
        source = cleaned if isinstance(cleaned, str) and cleaned else text
        return generate_slug_with_fallback(source[:SLUG_SOURCE_CHARS], fallback)


@lru_cache
def get_pipeline() -> IngestionPipeline:
    settings = get_settings()
    return IngestionPipeline(
        scraper=get_scraper_client(),
        analyzer=get_analyzer_client(),
        records=get_record_store(),
        url_cache=get_url_cache(),
        requests=get_request_manager(),
        tombstones=get_tombstone_scheduler(),
        threshold=settings.link_score_threshold,
    )

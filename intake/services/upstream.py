from __future__ import annotations

import base64
import gzip
from functools import lru_cache
from typing import Any

import httpx
from pydantic import ValidationError

from intake.core.config import get_settings
from intake.schemas.scoring import AnalysisTicket, ScoreResult, ScrapeResult


class UpstreamUnavailableError(Exception):
    """Raised on network failures or non-success responses from an upstream service."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class _UpstreamClient:
    service_name = "upstream"

    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = 600.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._client = client

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        ok_statuses: frozenset[int] = frozenset({200, 201}),
    ) -> httpx.Response:
        url = f"{self.base_url}{path}"
        try:
            if self._client is not None:
                response = await self._client.request(method, url, json=json)
            else:
                async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                    response = await client.request(method, url, json=json)
        except httpx.HTTPError as exc:
            raise UpstreamUnavailableError(f"failed to send request to {self.service_name}: {exc}") from exc

        if response.status_code not in ok_statuses:
            raise UpstreamUnavailableError(
                f"{self.service_name} service returned status {response.status_code}: {response.text}",
                status_code=response.status_code,
            )
        return response

    def _decode(self, response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamUnavailableError(f"failed to decode {self.service_name} response: {exc}") from exc


class ScraperClient(_UpstreamClient):
    service_name = "scraper"

    async def score_link(self, url: str) -> ScoreResult:
        response = await self._request("POST", "/api/score", json={"url": url})
        payload = self._decode(response)
        raw_score = payload.get("score") if isinstance(payload, dict) else None
        try:
            return ScoreResult.model_validate(raw_score)
        except ValidationError as exc:
            raise UpstreamUnavailableError(f"invalid score response from scraper: {exc}") from exc

    async def scrape(self, url: str) -> ScrapeResult:
        response = await self._request("POST", "/api/scrape", json={"url": url})
        try:
            return ScrapeResult.model_validate(self._decode(response))
        except ValidationError as exc:
            raise UpstreamUnavailableError(f"invalid scrape response from scraper: {exc}") from exc

    async def delete_scrape(self, scrape_id: str) -> None:
        await self._request("DELETE", f"/api/scrapes/{scrape_id}", ok_statuses=frozenset({200, 204}))


class TextAnalyzerClient(_UpstreamClient):
    service_name = "text analyzer"

    async def enqueue_analysis(
        self,
        text: str,
        *,
        original_html: str | None = None,
        images: list[str] | None = None,
    ) -> AnalysisTicket:
        body: dict[str, Any] = {"text": text}
        if original_html:
            body["original_html"] = original_html
        if images:
            body["images"] = images

        response = await self._request("POST", "/api/analyze", json=body, ok_statuses=frozenset({200, 201, 202}))
        try:
            return AnalysisTicket.model_validate(self._decode(response))
        except ValidationError as exc:
            raise UpstreamUnavailableError(f"invalid response from text analyzer: {exc}") from exc

    async def delete_analysis(self, analysis_id: str) -> None:
        await self._request("DELETE", f"/api/analyses/{analysis_id}", ok_statuses=frozenset({200, 204}))


def compress_raw_text(raw_text: str) -> str:
    """gzip + base64 so the analyzer can receive the original page text in a JSON body."""
    if not raw_text:
        return ""
    return base64.b64encode(gzip.compress(raw_text.encode("utf-8"))).decode("ascii")


@lru_cache
def get_scraper_client() -> ScraperClient:
    settings = get_settings()
    return ScraperClient(settings.scraper_base_url, timeout_seconds=settings.upstream_timeout_seconds)


@lru_cache
def get_analyzer_client() -> TextAnalyzerClient:
    settings = get_settings()
    return TextAnalyzerClient(settings.textanalyzer_base_url, timeout_seconds=settings.upstream_timeout_seconds)

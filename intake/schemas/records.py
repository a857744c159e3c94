from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

RecordSourceType = Literal["url", "text"]


class Record(BaseModel):
    id: str
    created_at: datetime
    source_type: RecordSourceType
    source_url: str | None = None
    scraper_uuid: str | None = None
    textanalyzer_uuid: str | None = None
    tags: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    slug: str | None = None
    seo_enabled: bool = True


class CachedResultOut(BaseModel):
    id: str
    status: Literal["completed"] = "completed"
    cached: bool = True
    created_at: datetime
    url: str | None = None
    scraper_uuid: str | None = None


class MessageOut(BaseModel):
    message: str

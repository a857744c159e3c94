from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class ScrapeRequestIn(BaseModel):
    url: str = Field(min_length=1)


class TextRequestIn(BaseModel):
    text: str = Field(min_length=1)


class JobOut(BaseModel):
    id: str
    source_type: Literal["url", "text"]
    url: str | None = None
    text: str | None = None
    status: Literal["pending", "processing", "completed", "failed"]
    progress: int = Field(ge=0, le=100)
    created_at: datetime
    updated_at: datetime
    started_at: datetime | None = None
    result_request_id: str | None = None
    error_message: str | None = None
    expires_at: datetime

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

IMAGE_CATEGORY = "image"


class ScoreResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    score: float = Field(ge=0.0, le=1.0)
    reason: str = ""
    categories: list[str] = Field(default_factory=list)
    is_recommended: bool = False
    malicious_indicators: list[str] = Field(default_factory=list)

    @property
    def is_image(self) -> bool:
        return IMAGE_CATEGORY in self.categories

    def as_metadata(self) -> dict[str, Any]:
        return {
            "score": self.score,
            "reason": self.reason,
            "categories": list(self.categories),
            "is_recommended": self.is_recommended,
            "malicious_indicators": list(self.malicious_indicators),
        }


class ScrapedImage(BaseModel):
    url: str
    alt_text: str | None = None


class ScrapeResult(BaseModel):
    id: str
    url: str = ""
    title: str = ""
    content: str = ""
    raw_text: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
    images: list[ScrapedImage] = Field(default_factory=list)
    score: ScoreResult | None = None
    slug: str | None = None


class AnalysisTicket(BaseModel):
    job_id: str
    status: str = "queued"
    metadata: dict[str, Any] = Field(default_factory=dict)


class ScoreRequest(BaseModel):
    url: str


class ScoreOut(BaseModel):
    url: str
    score: ScoreResult
    meets_threshold: bool
    threshold: float

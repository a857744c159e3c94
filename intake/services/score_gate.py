from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from intake.schemas.scoring import ScoreResult


class Route(str, Enum):
    FULL_PIPELINE = "full_pipeline"
    METADATA_ONLY = "metadata_only"


def validate_threshold(value: float) -> float:
    if not 0.0 <= value <= 1.0:
        raise ValueError(f"link score threshold must be within [0, 1], got {value}")
    return value


def route(score_result: ScoreResult, threshold: float) -> Route:
    """Images bypass the threshold; everything else needs score >= threshold for full processing."""
    if score_result.is_image:
        return Route.FULL_PIPELINE
    if score_result.score >= threshold:
        return Route.FULL_PIPELINE
    return Route.METADATA_ONLY

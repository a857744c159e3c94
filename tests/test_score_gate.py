import pytest
from pydantic import ValidationError

from intake.core.config import Settings
from intake.schemas.scoring import ScoreResult
from intake.services.score_gate import Route, route, validate_threshold


def test_route_sends_scores_at_or_above_threshold_to_full_pipeline() -> None:
    assert route(ScoreResult(score=0.5), 0.5) is Route.FULL_PIPELINE
    assert route(ScoreResult(score=0.9), 0.5) is Route.FULL_PIPELINE


def test_route_sends_low_scores_to_metadata_only() -> None:
    assert route(ScoreResult(score=0.49, categories=["news"]), 0.5) is Route.METADATA_ONLY


def test_route_image_category_bypasses_threshold() -> None:
    result = ScoreResult(score=0.0, categories=["image", "art"])
    assert result.is_image
    assert route(result, 0.9) is Route.FULL_PIPELINE


def test_validate_threshold_rejects_out_of_range_values() -> None:
    assert validate_threshold(0.0) == 0.0
    assert validate_threshold(1.0) == 1.0
    with pytest.raises(ValueError):
        validate_threshold(1.5)
    with pytest.raises(ValueError):
        validate_threshold(-0.1)


def test_settings_reject_invalid_threshold(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("INTAKE_LINK_SCORE_THRESHOLD", "1.5")
    with pytest.raises(ValidationError):
        Settings()


def test_settings_read_prefixed_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("INTAKE_LINK_SCORE_THRESHOLD", "0.7")
    monkeypatch.setenv("INTAKE_TOMBSTONE_PERIOD_MANUAL_DAYS", "45")
    settings = Settings()
    assert settings.link_score_threshold == 0.7
    assert settings.tombstone_period_manual_days == 45
    assert settings.tombstone_period_low_score_days == 30
    assert settings.request_ttl_seconds == 900

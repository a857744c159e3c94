from __future__ import annotations

from typing import Any

SCRAPE_TAG = "scrape"


def normalize_tag(tag: str) -> str:
    """Keep tags at most double-barrelled: "machine-learning-model" -> "machine-learning"."""
    parts = tag.split("-")
    if len(parts) <= 2:
        return tag
    return "-".join(parts[:2])


def tags_from_metadata(metadata: dict[str, Any] | None) -> list[str]:
    if not isinstance(metadata, dict):
        return []
    raw_tags = metadata.get("tags")
    if not isinstance(raw_tags, list):
        return []
    return [normalize_tag(tag) for tag in raw_tags if isinstance(tag, str)]


def build_scrape_tags(categories: list[str], domain: str | None) -> list[str]:
    tags = [normalize_tag(category) for category in categories]
    if domain:
        tags.append(domain)
    tags.append(SCRAPE_TAG)
    return tags

import re
import unicodedata

MAX_SLUG_LENGTH = 100

_INVALID_CHARS_RE = re.compile(r"[^a-z0-9-]+")
_HYPHEN_RUN_RE = re.compile(r"-+")


def generate_slug(value: str) -> str:
    if not value:
        return ""

    lowered = value.lower()
    decomposed = unicodedata.normalize("NFD", lowered)
    stripped = "".join(char for char in decomposed if unicodedata.category(char) != "Mn")
    ascii_text = unicodedata.normalize("NFC", stripped)

    slug = ascii_text.replace(" ", "-").replace("_", "-")
    slug = _INVALID_CHARS_RE.sub("", slug)
    slug = _HYPHEN_RUN_RE.sub("-", slug).strip("-")

    if len(slug) > MAX_SLUG_LENGTH:
        slug = slug[:MAX_SLUG_LENGTH].rstrip("-")
    return slug


def generate_slug_with_fallback(value: str, fallback: str) -> str:
    slug = generate_slug(value)
    if not slug:
        return generate_slug(fallback)
    return slug

import hashlib
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

CACHE_KEY_PREFIX = "urlcache:"

# Analytics and affiliate parameters that never change the fetched content.
TRACKING_KEYS = {
    "fbclid",
    "gclid",
    "gclsrc",
    "ref",
    "source",
    "referrer",
    "campaign",
    "_ga",
    "mc_cid",
    "mc_eid",
    "msclkid",
    "yclid",
    "_openstat",
    "fb_action_ids",
    "fb_action_types",
    "fb_ref",
    "fb_source",
    "action_object_map",
    "action_type_map",
    "action_ref_map",
}


class InvalidURLError(ValueError):
    """Raised when a URL lacks a scheme or a host."""


def _is_tracking_param(key: str) -> bool:
    lowered = key.lower()
    return lowered.startswith("utm_") or lowered in TRACKING_KEYS


def normalize_url(raw_url: str) -> str:
    """Canonical form used for result dedupe: normalize(normalize(u)) == normalize(u)."""
    try:
        parsed = urlsplit(raw_url.strip())
    except ValueError as exc:
        raise InvalidURLError(f"invalid URL: {exc}") from exc

    scheme = parsed.scheme.lower()
    netloc = parsed.netloc.lower()
    if not scheme or not parsed.hostname:
        raise InvalidURLError("invalid URL: missing scheme or host")

    if ":" in netloc and not netloc.endswith("]"):
        host, port = netloc.rsplit(":", maxsplit=1)
        if (scheme == "http" and port == "80") or (scheme == "https" and port == "443"):
            netloc = host

    path = parsed.path.rstrip("/") or "/"

    filtered_query_pairs = [
        (key, value)
        for key, value in parse_qsl(parsed.query, keep_blank_values=True)
        if not _is_tracking_param(key)
    ]
    filtered_query_pairs.sort()
    query = urlencode(filtered_query_pairs)

    return urlunsplit((scheme, netloc, path, query, ""))


def canonical_hash(normalized_url: str) -> str:
    return hashlib.sha256(normalized_url.encode("utf-8")).hexdigest()


def cache_key(raw_url: str) -> str:
    return CACHE_KEY_PREFIX + canonical_hash(normalize_url(raw_url))


def domain_tag(raw_url: str) -> str | None:
    try:
        hostname = urlsplit(raw_url.strip()).hostname
    except ValueError:
        return None
    if not hostname:
        return None
    return hostname.removeprefix("www.")

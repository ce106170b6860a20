"""URL helpers shared by the proxy handler and the playlist rewriter.

Everything here is pure: no I/O, no logging.
"""
from urllib.parse import parse_qs, quote, unquote, urljoin, urlsplit

from .errors import InvalidURL, MissingParameter

PROXY_PATH = "/api/v1/streamingProxy"
FETCHABLE_SCHEMES = ("http", "https")


def is_playlist_url(url: str) -> bool:
    """A target is a playlist when its path (query excluded) ends in .m3u8."""
    return urlsplit(url).path.lower().endswith(".m3u8")


def validate_target_url(raw) -> str:
    """Return the target URL carried by the ``url`` query parameter or raise.

    aiohttp already percent-decodes query values once. A value that still
    starts with an encoded scheme (``https%3A...``) was encoded twice by the
    caller and gets one more decoding pass.
    """
    if raw is None or not raw.strip():
        raise MissingParameter(
            "URL parameter is required",
            usage=f"{PROXY_PATH}?url=YOUR_M3U8_URL",
        )

    url = raw.strip()
    if url.lower().startswith(("http%3a", "https%3a")):
        url = unquote(url)

    try:
        parts = urlsplit(url)
        # .port raises ValueError on a non-numeric or out of range port
        parts.port
    except ValueError:
        raise InvalidURL("Invalid URL format", url=url[:100]) from None

    if parts.scheme.lower() not in FETCHABLE_SCHEMES or not parts.hostname:
        raise InvalidURL("Invalid URL format", url=url[:100])
    if any(c.isspace() for c in url):
        raise InvalidURL("Invalid URL format", url=url[:100])
    return url


def proxy_url(target: str) -> str:
    return f"{PROXY_PATH}?url={quote(target, safe='')}"


def unwrap_proxy_url(reference: str):
    """Return the target inside a proxy-relative URL, or None if it is not one."""
    parts = urlsplit(reference)
    if parts.scheme or parts.netloc or parts.path != PROXY_PATH:
        return None
    targets = parse_qs(parts.query).get("url")
    return targets[0] if targets else None


def resolve_reference(reference: str, base_url: str):
    """Resolve a playlist reference to the absolute upstream URL it names.

    Proxy URLs are unwrapped first, as many times as they are nested, so the
    caller can re-wrap the result exactly once. Returns None when the result
    is not something the proxy can fetch (``data:``, ``skd://`` and similar).
    """
    ref = reference.strip()
    if not ref:
        return None
    inner = unwrap_proxy_url(ref)
    while inner is not None:
        ref = inner
        inner = unwrap_proxy_url(ref)

    absolute = urljoin(base_url, ref)
    if urlsplit(absolute).scheme.lower() not in FETCHABLE_SCHEMES:
        return None
    return absolute

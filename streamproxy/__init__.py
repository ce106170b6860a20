"""Fetch, rewrite and cache pipeline behind the HLS streaming proxy."""
from .cache import CACHE_TTL, ResponseCache
from .errors import (
    InternalError,
    InvalidInput,
    InvalidURL,
    MissingParameter,
    ProxyError,
    UpstreamError,
    UpstreamTimeout,
)
from .fetcher import UpstreamFetcher, UpstreamResponse
from .playlist import rewrite_playlist
from .urls import PROXY_PATH, is_playlist_url, proxy_url, resolve_reference, validate_target_url

__version__ = "1.0.0"

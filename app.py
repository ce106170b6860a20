import logging
import os
import sys
import time

from aiohttp import web
from dotenv import load_dotenv

from streamproxy import __version__
from streamproxy.cache import CACHE_TTL, ResponseCache
from streamproxy.errors import InternalError, ProxyError, utc_timestamp
from streamproxy.fetcher import DEFAULT_TIMEOUT, DEFAULT_USER_AGENT, UpstreamFetcher
from streamproxy.playlist import rewrite_playlist
from streamproxy.urls import PROXY_PATH, is_playlist_url, validate_target_url

load_dotenv()  # picks up a local .env file when present

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s - %(levelname)s - %(name)s - %(message)s'
)

logger = logging.getLogger(__name__)


# --- Configuration ---
def parse_list(env_var: str, default: str = "") -> list:
    """Parse a comma separated environment variable into a list."""
    value = os.environ.get(env_var, default).strip()
    if value:
        return [p.strip() for p in value.split(',') if p.strip()]
    return []


def parse_number(env_var: str, default, cast=int):
    value = os.environ.get(env_var)
    if value is None or not value.strip():
        return default
    try:
        return cast(value.strip())
    except ValueError:
        raise ValueError(f"Environment variable {env_var} must be a number, got {value!r}") from None


PORT = parse_number("PORT", 3000)
HOST = os.environ.get("HOST", "0.0.0.0")
REFERER_URL = os.environ.get("REFERER_URL", "https://aniwatch.to")
ALLOWED_ORIGINS = parse_list("ALLOWED_ORIGINS", "*")
UPSTREAM_USER_AGENT = os.environ.get("UPSTREAM_USER_AGENT", DEFAULT_USER_AGENT)
UPSTREAM_TIMEOUT = parse_number("UPSTREAM_TIMEOUT", DEFAULT_TIMEOUT, float)
UPSTREAM_PROXIES = parse_list("UPSTREAM_PROXY")

if UPSTREAM_PROXIES: logger.info(f"🌍 Loaded {len(UPSTREAM_PROXIES)} upstream proxies.")

PLAYLIST_CONTENT_TYPE = "application/vnd.apple.mpegurl"
SEGMENT_CONTENT_TYPE = "video/mp2t"
PLAYLIST_CACHE_CONTROL = f"public, max-age={CACHE_TTL}"
# Segment URLs are content-addressed by the origin.
SEGMENT_CACHE_CONTROL = "public, max-age=31536000, immutable"

AVAILABLE_ENDPOINTS = [
    '/',
    '/health',
    '/api/info',
    f'{PROXY_PATH}?url=YOUR_URL',
    '/api/v1/cache/stats',
    '/api/v1/cache/clear',
]


def _short(url: str) -> str:
    return url if len(url) <= 80 else f"{url[:80]}..."


class StreamingProxy:
    """Proxy HLS: fetches with a spoofed Referer, rewrites playlists, caches responses."""

    def __init__(self, cache: ResponseCache, fetcher: UpstreamFetcher, allowed_origins=None):
        self.cache = cache
        self.fetcher = fetcher
        self.allowed_origins = allowed_origins if allowed_origins is not None else ALLOWED_ORIGINS
        self.started_at = time.monotonic()

    async def handle_streaming_proxy(self, request):
        """Serve a playlist or segment from cache, or fetch, rewrite and store it."""
        url = validate_target_url(request.query.get('url'))

        cached = self.cache.get(url)
        if cached is not None:
            logger.info(f"✅ Cache HIT: {_short(url)}")
            return self._build_response(url, cached, 'HIT')

        logger.info(f"📡 Fetching: {_short(url)}")
        try:
            upstream = await self.fetcher.fetch(url)
        except ProxyError as e:
            logger.warning(f"❌ Fetch failed: {e.status} {e.reason} ({_short(url)})")
            raise

        if is_playlist_url(url):
            playlist_text = upstream.body.decode('utf-8-sig', errors='replace')
            payload = rewrite_playlist(playlist_text, upstream.url)
        else:
            payload = upstream.body

        self._store(url, payload)
        return self._build_response(url, payload, 'MISS')

    def _store(self, url, payload):
        kind = "M3U8" if isinstance(payload, str) else "TS segment"
        try:
            self.cache.set(url, payload)
        except Exception:
            # the response is still delivered, caching is only an optimization
            logger.exception(f"⚠️ Cache write failed for {_short(url)}")
            return
        logger.info(f"💾 Cached {kind}: {_short(url)}")

    def _build_response(self, url, payload, cache_status):
        playlist = is_playlist_url(url)
        body = payload.encode('utf-8') if isinstance(payload, str) else payload
        return web.Response(
            body=body,
            headers={
                'Content-Type': PLAYLIST_CONTENT_TYPE if playlist else SEGMENT_CONTENT_TYPE,
                'Cache-Control': PLAYLIST_CACHE_CONTROL if playlist else SEGMENT_CACHE_CONTROL,
                'X-Cache': cache_status,
            }
        )

    async def handle_cache_stats(self, request):
        stats = self.cache.stats()
        return web.json_response({"stats": stats, "keys": stats["keys"]})

    async def handle_cache_clear(self, request):
        self.cache.clear()
        logger.info("🧹 Cache cleared")
        return web.json_response({
            "success": True,
            "message": "Cache cleared",
            "timestamp": utc_timestamp(),
        })

    async def handle_health(self, request):
        return web.json_response({
            "status": "ok",
            "timestamp": utc_timestamp(),
            "uptime": round(time.monotonic() - self.started_at, 3),
            "cacheStats": self.cache.stats(),
        })

    def _read_template(self, filename: str) -> str:
        """Read a file from the templates directory."""
        template_path = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'templates', filename)
        with open(template_path, 'r', encoding='utf-8') as f:
            return f.read()

    async def handle_root(self, request):
        """Serve the informational landing page."""
        try:
            html_content = self._read_template('index.html')
        except OSError as e:
            logger.error(f"❌ Unable to load 'index.html': {e}")
            raise InternalError("Landing page unavailable") from e
        return web.Response(text=html_content, content_type='text/html')

    async def handle_api_info(self, request):
        """JSON description of the service and its effective configuration."""
        info = {
            "proxy": "HLS Streaming Proxy",
            "version": __version__,
            "status": "ok",
            "features": [
                "M3U8 playlist rewriting (segments, variants, keys, maps, renditions)",
                "Referer and User-Agent spoofing",
                f"In-memory response cache ({CACHE_TTL}s TTL)",
                "Outbound proxy support (SOCKS5, HTTP/S)",
                "CORS enabled",
            ],
            "config": {
                "referer": self.fetcher.referer,
                "allowed_origins": self.allowed_origins,
                "cache_ttl": self.cache.ttl,
                "upstream_timeout": self.fetcher.timeout,
                "upstream_proxies": f"{len(self.fetcher.proxies)} proxies loaded",
            },
            "endpoints": {
                PROXY_PATH: "Proxy HLS playlists and segments - ?url=<URL>",
                "/api/v1/cache/stats": "Cache hit/miss counters and key count",
                "/api/v1/cache/clear": "Drop every cached entry",
                "/health": "Status, uptime and cache stats",
                "/api/info": "This document",
            },
            "usage_examples": {
                "playlist": f"{PROXY_PATH}?url=https%3A%2F%2Fexample.com%2Fstream%2Findex.m3u8",
            },
        }
        return web.json_response(info)

    async def cleanup(self):
        """Release the upstream session and drop cached entries."""
        try:
            await self.fetcher.close()
        finally:
            self.cache.clear()


# --- Middlewares ---
@web.middleware
async def error_middleware(request, handler):
    """Turn every failure into a JSON body. No HTML error pages or tracebacks."""
    try:
        return await handler(request)
    except ProxyError as e:
        return web.json_response(e.to_dict(), status=e.status, reason=e.reason)
    except web.HTTPException as e:
        if e.status < 400:
            raise
        body = {"error": e.reason, "status": e.status, "path": request.path}
        if e.status == 404:
            body["error"] = "Endpoint not found"
            body["availableEndpoints"] = AVAILABLE_ENDPOINTS
        return web.json_response(body, status=e.status)
    except Exception as e:
        logger.exception(f"❌ Server error on {request.path}: {e}")
        error = InternalError("Something went wrong!")
        return web.json_response(error.to_dict(), status=error.status)


def make_headers_middleware(allowed_origins):
    """CORS and security headers on every response. Answers preflight requests for any path."""
    allow_any = not allowed_origins or '*' in allowed_origins

    @web.middleware
    async def headers_middleware(request, handler):
        if request.method == 'OPTIONS':
            response = web.Response(status=200)
        else:
            response = await handler(request)
        origin = request.headers.get('Origin')
        if allow_any:
            response.headers['Access-Control-Allow-Origin'] = '*'
        elif origin in allowed_origins:
            response.headers['Access-Control-Allow-Origin'] = origin
            response.headers['Vary'] = 'Origin'
        response.headers['Access-Control-Allow-Methods'] = 'GET, POST, OPTIONS, HEAD'
        response.headers['Access-Control-Allow-Headers'] = 'Content-Type, Range, Authorization, Accept, Origin, X-Requested-With'
        response.headers['Access-Control-Expose-Headers'] = 'Content-Length, Content-Range, Accept-Ranges, X-Cache'
        response.headers['Access-Control-Max-Age'] = '86400'
        response.headers['X-Content-Type-Options'] = 'nosniff'
        response.headers['X-Frame-Options'] = 'SAMEORIGIN'
        response.headers['Referrer-Policy'] = 'no-referrer'
        response.headers['Cross-Origin-Resource-Policy'] = 'cross-origin'
        return response

    return headers_middleware


# --- Startup ---
def create_app(cache=None, fetcher=None, referer=None, allowed_origins=None):
    """Create and configure the aiohttp application."""
    if cache is None:
        cache = ResponseCache()
    if fetcher is None:
        fetcher = UpstreamFetcher(
            referer or REFERER_URL,
            user_agent=UPSTREAM_USER_AGENT,
            timeout=UPSTREAM_TIMEOUT,
            proxies=UPSTREAM_PROXIES,
        )
    if allowed_origins is None:
        allowed_origins = ALLOWED_ORIGINS

    proxy = StreamingProxy(cache, fetcher, allowed_origins)

    app = web.Application(middlewares=[make_headers_middleware(allowed_origins), error_middleware])

    app.router.add_get('/', proxy.handle_root)
    app.router.add_get('/health', proxy.handle_health)
    app.router.add_get('/api/info', proxy.handle_api_info)
    app.router.add_get(PROXY_PATH, proxy.handle_streaming_proxy)
    app.router.add_get('/api/v1/cache/stats', proxy.handle_cache_stats)
    app.router.add_get('/api/v1/cache/clear', proxy.handle_cache_clear)

    async def cleanup_handler(app):
        await proxy.cleanup()
    app.on_cleanup.append(cleanup_handler)

    return app


def main():
    """Start the server."""
    if sys.platform == 'win32':
        logging.getLogger('asyncio').setLevel(logging.CRITICAL)

    app = create_app()

    print("=" * 42)
    print("🚀 HLS Streaming Proxy")
    print(f"📡 Running on: http://{HOST}:{PORT}")
    print(f"🌐 Allowed origins: {', '.join(ALLOWED_ORIGINS) or '*'}")
    print(f"🔗 Proxy endpoint: {PROXY_PATH}?url=YOUR_URL")
    print("=" * 42)

    web.run_app(app, host=HOST, port=PORT)


if __name__ == '__main__':
    main()

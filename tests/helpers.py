import asyncio

from aiohttp import web

REFERER = "https://referer.example"

MEDIA_PLAYLIST = (
    "#EXTM3U\n"
    "#EXT-X-VERSION:3\n"
    "#EXT-X-TARGETDURATION:10\n"
    '#EXT-X-KEY:METHOD=AES-128,URI="key.bin",IV=0x1234\n'
    "#EXTINF:9.009,\n"
    "seg1.ts\n"
    "#EXTINF:9.009,\n"
    "../other/seg2.ts\n"
    "#EXT-X-ENDLIST\n"
)

SEGMENT = bytes(range(256)) * 16


class FakeClock:
    """Callable monotonic clock that only moves when told to."""

    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def make_origin_app(referer=REFERER, slow_delay=2.0):
    """Origin that refuses any request without the expected Referer.

    Returns the app and the list of (path, headers) it received.
    """
    seen = []

    def check_referer(request):
        seen.append((request.path, dict(request.headers)))
        if request.headers.get("Referer") != referer:
            raise web.HTTPForbidden(reason="Referer Denied")

    async def media_playlist(request):
        check_referer(request)
        return web.Response(text=MEDIA_PLAYLIST, content_type="application/vnd.apple.mpegurl")

    async def segment(request):
        check_referer(request)
        return web.Response(body=SEGMENT, content_type="video/mp2t")

    async def forbidden(request):
        seen.append((request.path, dict(request.headers)))
        return web.Response(status=403, reason="Referer Denied", text="nope")

    async def slow(request):
        check_referer(request)
        await asyncio.sleep(slow_delay)
        return web.Response(body=SEGMENT)

    async def moved(request):
        check_referer(request)
        raise web.HTTPFound("/a/b/index.m3u8")

    app = web.Application()
    app.router.add_get("/a/b/index.m3u8", media_playlist)
    app.router.add_get("/a/b/seg1.ts", segment)
    app.router.add_get("/a/other/seg2.ts", segment)
    app.router.add_get("/locked/index.m3u8", forbidden)
    app.router.add_get("/locked/seg.ts", forbidden)
    app.router.add_get("/slow/seg.ts", slow)
    app.router.add_get("/moved/live.m3u8", moved)
    return app, seen

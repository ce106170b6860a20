import asyncio
import logging
import random
from collections import namedtuple
from http import HTTPStatus

from aiohttp import ClientError, ClientSession, ClientTimeout, TCPConnector
from aiohttp_proxy import ProxyConnector

from .errors import UpstreamError, UpstreamTimeout
from .urls import validate_target_url

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)
DEFAULT_TIMEOUT = 30
CONNECT_TIMEOUT = 15

UpstreamResponse = namedtuple("UpstreamResponse", ["url", "status", "reason", "headers", "body"])


def _reason_for(status, reason):
    if reason:
        return reason
    try:
        return HTTPStatus(status).phrase
    except ValueError:
        return "Upstream Error"


class UpstreamFetcher:
    """GETs upstream resources with a spoofed Referer and User-Agent.

    One shared ClientSession is opened lazily and reused. When outbound
    proxies are configured, one of them is picked at random each time the
    session is (re)created.
    """

    def __init__(self, referer, user_agent=DEFAULT_USER_AGENT, timeout=DEFAULT_TIMEOUT,
                 proxies=None, extra_headers=None):
        self.referer = referer
        self.user_agent = user_agent
        self.timeout = timeout
        self.proxies = proxies or []
        self.extra_headers = dict(extra_headers or {})
        self.session = None

    def _get_random_proxy(self):
        return random.choice(self.proxies) if self.proxies else None

    async def _get_session(self):
        if self.session is None or self.session.closed:
            proxy = self._get_random_proxy()
            if proxy:
                logger.info(f"Using outbound proxy {proxy} for upstream requests.")
                connector = ProxyConnector.from_url(proxy)
            else:
                connector = TCPConnector(limit=100, limit_per_host=20, keepalive_timeout=60)

            timeout = ClientTimeout(total=self.timeout, connect=min(CONNECT_TIMEOUT, self.timeout))
            self.session = ClientSession(timeout=timeout, connector=connector)
        return self.session

    def build_headers(self, referer=None) -> dict:
        headers = {
            "User-Agent": self.user_agent,
            "Accept": "*/*",
        }
        headers.update(self.extra_headers)
        headers["Referer"] = referer or self.referer
        return headers

    async def fetch(self, url: str, referer=None) -> UpstreamResponse:
        """Fetch ``url`` once and return the full response.

        Raises InvalidURL before any network activity for a malformed URL,
        UpstreamError for a non-2xx answer or a connection failure, and
        UpstreamTimeout when the origin is too slow. Nothing is retried.
        """
        url = validate_target_url(url)
        session = await self._get_session()
        try:
            async with session.get(url, headers=self.build_headers(referer)) as resp:
                reason = _reason_for(resp.status, resp.reason)
                if not 200 <= resp.status < 300:
                    raise UpstreamError(reason, status=resp.status, reason=reason, url=url[:100])
                body = await resp.read()
                # after a redirect relative references resolve against the final location
                final_url = str(resp.url) if resp.history else url
                return UpstreamResponse(final_url, resp.status, reason, resp.headers.copy(), body)
        except asyncio.TimeoutError as e:
            raise UpstreamTimeout(
                f"Upstream did not respond within {self.timeout}s", url=url[:100]
            ) from e
        except ClientError as e:
            raise UpstreamError(f"Upstream connection failed: {e}", url=url[:100]) from e

    async def close(self):
        if self.session and not self.session.closed:
            await self.session.close()

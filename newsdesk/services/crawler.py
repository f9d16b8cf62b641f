"""
Polite HTTP fetching for sitemaps and article pages.

Each request waits out a per-domain delay (random jitter, never shorter than
the minimum interval since the previous request to that domain), rotates the
User-Agent round-robin and sends browser-like headers.
"""

from __future__ import annotations

import asyncio
import itertools
import random
import time
from collections.abc import Awaitable, Callable

import httpx

from newsdesk.core.config import Settings
from newsdesk.core.errors import FetchError
from newsdesk.core.logging import get_logger

logger = get_logger(__name__)

USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_2 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) CriOS/120.0.6099.119 Mobile/15E148 Safari/604.1",
    "Mozilla/5.0 (Linux; Android 10; K) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Mobile Safari/537.36",
]

BROWSER_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
    "Accept-Encoding": "gzip, deflate",
    "DNT": "1",
    "Sec-Fetch-Dest": "document",
    "Sec-Fetch-Mode": "navigate",
    "Sec-Fetch-Site": "none",
    "Sec-Fetch-User": "?1",
    "Upgrade-Insecure-Requests": "1",
}


class PoliteFetcher:
    def __init__(
        self,
        settings: Settings,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._settings = settings
        self._client = client or httpx.AsyncClient(
            timeout=settings.crawler_timeout_seconds, follow_redirects=True
        )
        self._sleep = sleep
        self._user_agents = itertools.cycle(USER_AGENTS)
        self._last_request: dict[str, float] = {}
        self._domain_locks: dict[str, asyncio.Lock] = {}

    def build_headers(self) -> dict[str, str]:
        return {"User-Agent": next(self._user_agents), **BROWSER_HEADERS}

    def _delay_for(self, domain: str) -> float:
        s = self._settings
        if not s.crawler_use_random_delay:
            return 0.0
        jitter = random.uniform(s.crawler_min_delay_ms, s.crawler_max_delay_ms) / 1000
        last = self._last_request.get(domain)
        if last is None:
            return jitter
        required = s.crawler_min_request_interval_seconds - (time.monotonic() - last)
        return max(jitter, required)

    async def fetch(self, url: str, domain: str) -> str:
        lock = self._domain_locks.setdefault(domain, asyncio.Lock())
        async with lock:
            delay = self._delay_for(domain)
            if delay > 0:
                await self._sleep(delay)
            try:
                resp = await self._client.get(url, headers=self.build_headers())
                resp.raise_for_status()
            except httpx.HTTPError as e:
                raise FetchError(f"GET {url} failed: {e}") from e
            finally:
                self._last_request[domain] = time.monotonic()

        logger.debug("page_fetched", url=url, status=resp.status_code, size=len(resp.text))
        return resp.text

    async def aclose(self) -> None:
        await self._client.aclose()

"""
fetcher.py — Retrieves a source page and strips it down to crawlable HTML.
"""

import asyncio
import random
from typing import Optional

import httpx
from bs4 import BeautifulSoup

from config import FETCH_TIMEOUT, MAX_REDIRECTS
from errors import FetchTimeout, HttpStatusError, NetworkError, UnsupportedContentType
from monitoring import get_logger

logger = get_logger("fetcher")

USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/121.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/121.0.0.0 Safari/537.36 Edg/120.0.0.0",
]

BROWSER_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "Cache-Control": "no-cache",
    "DNT": "1",
    "Upgrade-Insecure-Requests": "1",
}

HTML_CONTENT_TYPES = ("text/html", "application/xhtml+xml")
STRIPPED_TAGS = ["script", "style", "noscript"]


def sanitize_html(html: str) -> str:
    """Remove script/style/noscript elements and return the remaining markup."""
    if not html or not html.strip():
        return ""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(STRIPPED_TAGS):
        tag.decompose()
    return str(soup).strip()


class Fetcher:
    """
    Single GET per call, no retries: every failure surfaces as a distinct
    FetchError subclass so callers can decide what to do with it.
    """

    def __init__(
        self,
        timeout: float = FETCH_TIMEOUT,
        max_redirects: int = MAX_REDIRECTS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout
        self.max_redirects = max_redirects
        self.transport = transport

    def _headers(self) -> dict:
        return {"User-Agent": random.choice(USER_AGENTS), **BROWSER_HEADERS}

    async def fetch_page_content(self, url: str) -> str:
        logger.info(f"Fetching {url}")
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                max_redirects=self.max_redirects,
                headers=self._headers(),
                transport=self.transport,
            ) as client:
                response = await client.get(url)
        except httpx.TimeoutException:
            raise FetchTimeout(url, self.timeout) from None
        except httpx.TooManyRedirects:
            raise NetworkError(url, f"more than {self.max_redirects} redirects") from None
        except httpx.RequestError as e:
            raise NetworkError(url, f"{type(e).__name__}: {e}") from None

        if not 200 <= response.status_code < 400:
            raise HttpStatusError(url, response.status_code)

        content_type = response.headers.get("content-type")
        if not content_type or not any(t in content_type.lower() for t in HTML_CONTENT_TYPES):
            raise UnsupportedContentType(url, content_type)

        html = await asyncio.to_thread(sanitize_html, response.text)
        logger.info(f"Fetched {url}: {len(response.text)} bytes → {len(html)} after sanitizing")
        return html

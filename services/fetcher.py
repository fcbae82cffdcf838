"""Network fetch collaborator for tracked pages."""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional
from urllib.parse import urlparse

import aiohttp
from bs4 import BeautifulSoup, UnicodeDammit

from config import settings
from models import Page

logger = logging.getLogger(__name__)


class FetchError(Exception):
    """Raised when a page cannot be downloaded."""


def decode_body(body: bytes, encoding: str | None = None, charset: str | None = None) -> str:
    """Decode a response body.

    A page-level encoding wins over the response charset; when neither is
    known the encoding is sniffed from the document.
    """
    for candidate in (encoding, charset):
        if not candidate:
            continue
        try:
            return body.decode(candidate, errors="replace")
        except LookupError:
            logger.warning("Unknown encoding %s, falling back to detection", candidate)

    dammit = UnicodeDammit(body, is_html=True)
    if dammit.unicode_markup is not None:
        return dammit.unicode_markup
    return body.decode("utf-8", errors="replace")


def extract_title(html: str) -> str | None:
    soup = BeautifulSoup(html, "html.parser")
    if soup.title is None:
        return None
    title = soup.title.get_text(strip=True)
    return title or None


class Fetcher:
    """Downloads page content, one request at a time per domain."""

    def __init__(self, session: Optional[aiohttp.ClientSession] = None) -> None:
        self.headers = settings.HEADERS
        self.session = session
        self._owns_session = session is None
        self._last_request_time: dict[str, float] = {}
        self._rate_limit_lock = asyncio.Lock()

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self.session is None:
            timeout = aiohttp.ClientTimeout(total=settings.REQUEST_TIMEOUT)
            connector = aiohttp.TCPConnector(limit_per_host=2, limit=10)
            self.session = aiohttp.ClientSession(
                headers=self.headers,
                timeout=timeout,
                connector=connector,
            )
        return self.session

    async def close(self) -> None:
        """Close the session if we own it."""
        if self._owns_session and self.session is not None:
            await self.session.close()
            self.session = None

    async def _apply_rate_limit(self, url: str) -> None:
        """Apply rate limiting based on domain."""
        async with self._rate_limit_lock:
            domain = urlparse(url).netloc
            delay = settings.REQUEST_DELAY_SECONDS

            if domain in self._last_request_time:
                elapsed = time.monotonic() - self._last_request_time[domain]
                if elapsed < delay:
                    sleep_time = delay - elapsed
                    logger.debug("Rate limiting: sleeping %.2fs for %s", sleep_time, domain)
                    await asyncio.sleep(sleep_time)

            self._last_request_time[domain] = time.monotonic()

    async def fetch(self, page: Page) -> str:
        """Download the page and return its decoded text.

        Raises:
            FetchError: on a non-2xx status, a transport error or a timeout.
        """
        if not page.url:
            raise FetchError("Page has no URL")

        await self._apply_rate_limit(page.url)
        session = await self._get_session()

        method = "POST" if page.do_post else "GET"
        headers = dict(self.headers)
        data = None
        if page.do_post:
            data = page.post_params or ""
            headers["Content-Type"] = "application/x-www-form-urlencoded"

        try:
            async with session.request(method, page.url, data=data, headers=headers) as response:
                if not 200 <= response.status < 300:
                    raise FetchError(f"[{response.status}] {response.reason or ''}".strip())
                body = await response.read()
                return decode_body(body, page.encoding, response.charset)
        except asyncio.TimeoutError as exc:
            logger.warning("Timeout fetching page %s", page.url)
            raise FetchError(f"Timed out after {settings.REQUEST_TIMEOUT:g}s") from exc
        except aiohttp.ClientConnectionError as exc:
            logger.warning("Connection error fetching page %s: %s", page.url, exc)
            logger.debug("Connection error details", exc_info=True)
            raise FetchError(f"Connection error: {exc}") from exc
        except aiohttp.ClientError as exc:
            logger.error("Error fetching page %s: %s", page.url, exc)
            logger.debug("Unhandled request exception", exc_info=True)
            raise FetchError(str(exc) or exc.__class__.__name__) from exc


__all__ = ["FetchError", "Fetcher", "decode_body", "extract_title"]

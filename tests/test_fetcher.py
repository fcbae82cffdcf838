from __future__ import annotations

import asyncio

import aiohttp
import pytest

from models import Page
from services.fetcher import FetchError, Fetcher, decode_body, extract_title


class FakeResponse:
    def __init__(self, status: int = 200, body: bytes = b"", reason: str = "OK", charset: str | None = "utf-8") -> None:
        self.status = status
        self.reason = reason
        self.charset = charset
        self._body = body

    async def read(self) -> bytes:
        return self._body

    async def __aenter__(self) -> "FakeResponse":
        return self

    async def __aexit__(self, *exc_info) -> None:
        return None


class FakeSession:
    def __init__(self, response: FakeResponse | None = None, error: Exception | None = None) -> None:
        self.response = response
        self.error = error
        self.calls: list[dict] = []

    def request(self, method: str, url: str, data=None, headers=None):
        self.calls.append({"method": method, "url": url, "data": data, "headers": headers})
        if self.error is not None:
            raise self.error
        return self.response


@pytest.mark.asyncio
async def test_fetch_returns_decoded_body():
    session = FakeSession(FakeResponse(body="Привет".encode("utf-8")))
    fetcher = Fetcher(session=session)

    text = await fetcher.fetch(Page(id="1", url="https://example.com"))

    assert text == "Привет"
    assert session.calls[0]["method"] == "GET"
    assert session.calls[0]["data"] is None


@pytest.mark.asyncio
async def test_fetch_uses_post_when_configured():
    session = FakeSession(FakeResponse(body=b"ok"))
    fetcher = Fetcher(session=session)
    page = Page(id="1", url="https://example.com/search", do_post=True, post_params="q=lots&page=2")

    await fetcher.fetch(page)

    call = session.calls[0]
    assert call["method"] == "POST"
    assert call["data"] == "q=lots&page=2"
    assert call["headers"]["Content-Type"] == "application/x-www-form-urlencoded"


@pytest.mark.asyncio
async def test_fetch_rejects_non_success_status():
    session = FakeSession(FakeResponse(status=404, reason="Not Found"))
    fetcher = Fetcher(session=session)

    with pytest.raises(FetchError, match=r"\[404\] Not Found"):
        await fetcher.fetch(Page(id="1", url="https://example.com/missing"))


@pytest.mark.asyncio
async def test_fetch_wraps_transport_errors():
    session = FakeSession(error=aiohttp.ClientConnectionError("DNS failure"))
    fetcher = Fetcher(session=session)

    with pytest.raises(FetchError, match="DNS failure"):
        await fetcher.fetch(Page(id="1", url="https://example.com"))


@pytest.mark.asyncio
async def test_fetch_wraps_timeouts():
    session = FakeSession(error=asyncio.TimeoutError())
    fetcher = Fetcher(session=session)

    with pytest.raises(FetchError, match="Timed out"):
        await fetcher.fetch(Page(id="1", url="https://example.com"))


@pytest.mark.asyncio
async def test_fetch_requires_url():
    fetcher = Fetcher(session=FakeSession(FakeResponse()))
    with pytest.raises(FetchError):
        await fetcher.fetch(Page(id="1"))


def test_decode_body_prefers_page_encoding():
    body = "Цена".encode("cp1251")
    assert decode_body(body, encoding="cp1251", charset="utf-8") == "Цена"


def test_decode_body_falls_back_on_unknown_encoding():
    assert decode_body(b"plain text", encoding="no-such-codec") == "plain text"


def test_decode_body_detects_declared_charset():
    body = '<html><head><meta charset="windows-1251"></head><body>Лот</body></html>'.encode("cp1251")
    assert "Лот" in decode_body(body)


def test_extract_title(sample_html):
    assert extract_title(sample_html) == "Release notes"
    assert extract_title("<p>No title</p>") is None

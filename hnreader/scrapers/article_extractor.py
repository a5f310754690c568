"""
Reader-mode article extraction.

Fetches a story URL with a hard timeout and a hard body-size ceiling, then
runs readability over the HTML in a worker thread (lxml parsing is CPU
bound and would otherwise block the event loop).
"""
import asyncio
from dataclasses import dataclass
from typing import Optional

import httpx
import lxml.html
from readability import Document

from hnreader.config.settings import settings
from hnreader.utils.logger import get_logger

logger = get_logger(__name__)

EXCERPT_LENGTH = 200


class ExtractionError(Exception):
    """The article could not be fetched or no readable content was found."""


@dataclass
class ExtractedArticle:
    title: str
    byline: str
    content: str   # cleaned HTML
    excerpt: str


class ArticleExtractor:

    def __init__(
        self,
        timeout: float = settings.article_timeout_seconds,
        max_bytes: int = settings.article_max_bytes,
        user_agent: str = settings.article_user_agent,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.timeout = timeout
        self.max_bytes = max_bytes
        self._http = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=10.0),
            follow_redirects=True,
            headers={"User-Agent": user_agent},
            limits=httpx.Limits(max_connections=20, max_keepalive_connections=5),
        )

    async def close(self) -> None:
        await self._http.aclose()

    async def extract(self, url: str) -> ExtractedArticle:
        """
        Fetch `url` and extract readable content.

        Raises:
            ExtractionError: on timeout, non-200 status, oversized body,
                parse failure, or empty content
        """
        try:
            body = await asyncio.wait_for(self._fetch(url), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise ExtractionError(f"fetch timed out after {self.timeout}s") from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise ExtractionError(f"fetch: {e}") from e

        return await asyncio.to_thread(self._parse, body, url)

    async def _fetch(self, url: str) -> bytes:
        async with self._http.stream("GET", url) as response:
            if response.status_code != 200:
                raise ExtractionError(f"fetch returned status {response.status_code}")

            chunks: list[bytes] = []
            size = 0
            async for chunk in response.aiter_bytes():
                chunks.append(chunk)
                size += len(chunk)
                if size > self.max_bytes:
                    raise ExtractionError(f"response exceeds {self.max_bytes} bytes")
            return b"".join(chunks)

    @staticmethod
    def _parse(body: bytes, url: str) -> ExtractedArticle:
        try:
            doc = Document(body, url=url)
            content = doc.summary(html_partial=True)
            title = doc.short_title() or doc.title() or ""
            page = lxml.html.fromstring(body, base_url=url)
            text = lxml.html.fromstring(content).text_content().strip() if content else ""
        except Exception as e:
            raise ExtractionError(f"readability extract: {e}") from e

        if not text:
            raise ExtractionError("no content extracted")

        return ExtractedArticle(
            title=title.strip(),
            byline=_meta_content(page, "author", "article:author"),
            content=content,
            excerpt=_meta_content(page, "description", "og:description") or _excerpt(text),
        )


def _meta_content(page, *names: str) -> str:
    for name in names:
        values = page.xpath(
            "//meta[@name=$name or @property=$name]/@content", name=name
        )
        for value in values:
            if value.strip():
                return value.strip()
    return ""


def _excerpt(text: str) -> str:
    collapsed = " ".join(text.split())
    if len(collapsed) <= EXCERPT_LENGTH:
        return collapsed
    return collapsed[:EXCERPT_LENGTH].rsplit(" ", 1)[0] + "…"

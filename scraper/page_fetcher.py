"""
Single-page HTML fetching over httpx.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol

import httpx

from errors import PageFetchError
from settings import PAGE_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)

PAGE_MAX_BYTES = 2 * 1024 * 1024

PAGE_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "Connection": "keep-alive",
}


class PageFetcher(Protocol):
    async def fetch(self, url: str) -> Optional[str]:
        """HTML of a 200 response, None for any other status.

        Raises PageFetchError on transport failure.
        """
        ...


class HttpxPageFetcher:
    """
    PageFetcher over a shared httpx.AsyncClient.

    Use as an async context manager. A client passed in is borrowed, not closed.
    """

    def __init__(
        self,
        timeout_seconds: float = PAGE_TIMEOUT_SECONDS,
        max_bytes: int = PAGE_MAX_BYTES,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.timeout_seconds = timeout_seconds
        self.max_bytes = max_bytes
        self._client = client
        self._owns_client = client is None

    async def __aenter__(self) -> "HttpxPageFetcher":
        if self._client is None:
            timeout = httpx.Timeout(
                self.timeout_seconds,
                connect=self.timeout_seconds,
                read=self.timeout_seconds,
                write=self.timeout_seconds,
            )
            self._client = httpx.AsyncClient(
                headers=PAGE_HEADERS,
                timeout=timeout,
                follow_redirects=True,
            )
            self._owns_client = True
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def fetch(self, url: str) -> Optional[str]:
        if self._client is None:
            raise RuntimeError("HttpxPageFetcher must be entered before fetching")

        logger.info("Attempting to scrape: %s", url)
        try:
            async with self._client.stream("GET", url, headers=PAGE_HEADERS, follow_redirects=True) as response:
                if response.status_code != 200:
                    logger.warning("Scraping %s failed with status: %s", url, response.status_code)
                    return None
                chunks: list[bytes] = []
                total = 0
                async for chunk in response.aiter_bytes():
                    if not chunk:
                        continue
                    remaining = self.max_bytes - total
                    if remaining <= 0:
                        break
                    chunks.append(chunk[:remaining])
                    total += min(len(chunk), remaining)
                    if total >= self.max_bytes:
                        break
                raw = b"".join(chunks)
                encoding = response.encoding or "utf-8"
                return raw.decode(encoding, errors="replace")
        except httpx.TimeoutException as exc:
            raise PageFetchError(f"Timed out fetching {url}") from exc
        except httpx.HTTPError as exc:
            raise PageFetchError(f"Error fetching {url}: {type(exc).__name__}: {exc}") from exc

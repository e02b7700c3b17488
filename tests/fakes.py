"""In-memory stand-ins for the cache, page fetcher and summarizer."""

from datetime import datetime, timezone
from typing import Optional

from errors import CacheQueryError, CacheWriteError, PageFetchError, SummarizeError
from models import CacheRecord, SummaryResult

LONG_COPY = (
    "Acme Industrial builds precision valves and flow controllers for water utilities "
    "and chemical plants across Europe. "
) * 12


def html_page(body_text: str, tag: str = "p") -> str:
    return f"<html><head><title>t</title><script>var x = 1;</script></head><body><{tag}>{body_text}</{tag}></body></html>"


class FakeCache:
    def __init__(self, records=None, failing_reads=(), failing_writes=()):
        self.records: dict[str, CacheRecord] = dict(records or {})
        self.failing_reads = set(failing_reads)
        self.failing_writes = set(failing_writes)
        self.queries: list[str] = []
        self.upserts: list[tuple[str, dict]] = []

    async def find_by_website(self, website: str) -> Optional[CacheRecord]:
        self.queries.append(website)
        if website in self.failing_reads:
            raise CacheQueryError(f"store unavailable for {website}")
        return self.records.get(website)

    async def upsert(self, website: str, fields: dict) -> bool:
        self.upserts.append((website, dict(fields)))
        if website in self.failing_writes:
            raise CacheWriteError(f"write rejected for {website}")
        created = website not in self.records
        self.records[website] = CacheRecord(
            website=website,
            last_updated_at=datetime.now(tz=timezone.utc),
            **fields,
        )
        return created


class FakeFetcher:
    """Serves canned HTML per URL. URLs in `errors` raise PageFetchError."""

    def __init__(self, pages=None, errors=()):
        self.pages: dict[str, Optional[str]] = dict(pages or {})
        self.errors = set(errors)
        self.calls: list[str] = []

    async def fetch(self, url: str) -> Optional[str]:
        self.calls.append(url)
        if url in self.errors:
            raise PageFetchError(f"connect failed: {url}")
        return self.pages.get(url)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return None


class FakeSummarizer:
    def __init__(self, result: Optional[SummaryResult] = None, error: Optional[Exception] = None, failing_texts=()):
        self.result = result or SummaryResult(
            summary="Acme Industrial manufactures valves for utilities.",
            independence_flag=False,
            insufficient_info_flag=False,
        )
        self.error = error
        self.failing_texts = set(failing_texts)
        self.calls: list[str] = []

    async def summarize(self, text: str) -> SummaryResult:
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        if any(marker in text for marker in self.failing_texts):
            raise SummarizeError("model returned malformed output")
        return self.result

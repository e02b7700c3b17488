"""
Enrichment orchestration: scrape -> summarize -> save for every row that the
freshness gate marked as needing work.

Rows run concurrently under a semaphore; within a row the stages are strictly
sequential and a failure at any stage ends that row without touching others.
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Callable, Optional

from ai_flows import Summarizer
from company_cache import CacheStore
from errors import CacheWriteError, SummarizeError
from models import (
    ProcessedRow,
    RowUpdate,
    SavePayload,
    SaveResult,
    ScrapeResult,
    ScrapingStatus,
    SummaryResult,
)
from scraper.page_fetcher import PageFetcher
from scraper.strategy import scrape_website
from settings import MAX_TEXT_LENGTH, MIN_TEXT_LENGTH, ROW_CONCURRENCY

logger = logging.getLogger(__name__)

UpdateCallback = Callable[[RowUpdate], None]

_STREAM_DONE = object()


class EnrichmentOrchestrator:
    def __init__(
        self,
        cache: CacheStore,
        fetcher: PageFetcher,
        summarizer: Optional[Summarizer],
        concurrency: int = ROW_CONCURRENCY,
        min_text_length: int = MIN_TEXT_LENGTH,
        max_text_length: int = MAX_TEXT_LENGTH,
    ):
        self.cache = cache
        self.fetcher = fetcher
        self.summarizer = summarizer
        self.concurrency = max(1, int(concurrency or 1))
        self.min_text_length = min_text_length
        self.max_text_length = max_text_length

    # -- stage boundaries ----------------------------------------------------

    async def scrape(self, website: str, company_name: Optional[str] = None) -> ScrapeResult:
        logger.info("Scraping %s (%s)", website, company_name or "unknown company")
        try:
            return await scrape_website(
                website,
                self.fetcher,
                min_text_length=self.min_text_length,
                max_text_length=self.max_text_length,
            )
        except Exception as exc:
            logger.exception("Unexpected scrape failure for %s", website)
            return ScrapeResult(
                text=None,
                status=ScrapingStatus.FAILED_ERROR,
                error=f"Failed to process scraping request: {exc}",
            )

    async def summarize(self, scraped_text: str) -> SummaryResult:
        """
        Raises:
            SummarizeError: empty input, no summarizer configured, or the summarizer failed.
        """
        if not isinstance(scraped_text, str) or not scraped_text.strip():
            raise SummarizeError("Missing or invalid 'scrapedText' in request body.")
        if self.summarizer is None:
            raise SummarizeError("Summarizer is not configured (missing OPENAI_API_KEY).")
        try:
            result = await self.summarizer.summarize(scraped_text)
        except SummarizeError:
            raise
        except Exception as exc:
            raise SummarizeError(f"Failed to summarize content: {exc}") from exc
        if not isinstance(result, SummaryResult) or not result.summary:
            raise SummarizeError("Failed to summarize content: summarizer returned no summary.")
        return result

    async def save(self, payload: SavePayload) -> SaveResult:
        website = payload.normalized_data.website
        if not website:
            message = "Invalid input: Normalized website is required to save data."
            logger.error(message)
            return SaveResult(success=False, message=message, error=message)

        fields = {
            "summary": payload.summary,
            "independence_flag": bool(payload.independence_flag),
            "insufficient_info_flag": bool(payload.insufficient_info_flag),
            "original_company_name": payload.original_data.company_name,
            "original_country": payload.original_data.country,
            "original_website": payload.original_data.website,
            "normalized_company_name": payload.normalized_data.company_name,
            "normalized_country": payload.normalized_data.country,
        }
        try:
            created = await self.cache.upsert(website, fields)
        except CacheWriteError as exc:
            logger.error("Error saving company data for %s: %s", website, exc)
            return SaveResult(success=False, message=f"Failed to save data: {exc}", error=str(exc))

        if created:
            logger.info("Added new company data for website: %s", website)
            return SaveResult(success=True, message=f"Data saved for new company {website}.")
        logger.info("Updated company data for website: %s", website)
        return SaveResult(success=True, message=f"Data updated for {website}.")

    # -- per-row state machine -----------------------------------------------

    async def process_row(self, row: ProcessedRow, emit: Optional[UpdateCallback] = None) -> ProcessedRow:
        def _emit(stage: str) -> None:
            if emit is not None:
                emit(RowUpdate(row.original_index, stage, row.snapshot(), terminal=row.is_terminal()))

        if not row.is_enrichable():
            _emit("done")
            return row

        website = row.normalized_data.website or ""

        row.begin_scraping()
        _emit("scrape")
        scraped = await self.scrape(website, row.original_data.company_name)
        row.finish_scraping(scraped)
        _emit("scrape")
        if row.is_terminal():
            logger.warning("Row %d: scrape failed for %s: %s", row.original_index, website, row.scraping_error_message)
            return row

        row.begin_summarizing()
        _emit("summarize")
        try:
            summary = await self.summarize(row.scraped_text or "")
        except Exception as exc:
            logger.error("Row %d: summarization failed for %s: %s", row.original_index, website, exc)
            row.fail_summarizing(str(exc))
            _emit("summarize")
            return row
        row.finish_summarizing(summary)
        _emit("summarize")

        row.begin_saving()
        _emit("save")
        try:
            saved = await self.save(row.save_payload())
        except Exception as exc:
            logger.exception("Row %d: unexpected save failure for %s", row.original_index, website)
            saved = SaveResult(success=False, message=f"Failed to save data: {exc}", error=str(exc))
        row.finish_saving(saved)
        _emit("save")
        return row

    # -- batch -----------------------------------------------------------------

    async def process_batch(
        self,
        rows: list[ProcessedRow],
        on_update: Optional[UpdateCallback] = None,
    ) -> list[ProcessedRow]:
        """Run every row; results keep input order."""
        if not rows:
            return []

        sem = asyncio.Semaphore(self.concurrency)

        async def _bounded(row: ProcessedRow) -> ProcessedRow:
            async with sem:
                return await self.process_row(row, emit=on_update)

        enrichable = sum(1 for row in rows if row.is_enrichable())
        logger.info("Enriching %d of %d rows (concurrency=%d)", enrichable, len(rows), self.concurrency)
        return list(await asyncio.gather(*[_bounded(row) for row in rows]))

    async def stream_batch(self, rows: list[ProcessedRow]) -> AsyncIterator[RowUpdate]:
        """Yield RowUpdates as they happen; ends once every row is terminal."""
        queue: asyncio.Queue = asyncio.Queue()

        async def _run() -> None:
            try:
                await self.process_batch(rows, on_update=queue.put_nowait)
            finally:
                queue.put_nowait(_STREAM_DONE)

        task = asyncio.create_task(_run())
        try:
            while True:
                item = await queue.get()
                if item is _STREAM_DONE:
                    break
                yield item
            await task
        finally:
            if not task.done():
                task.cancel()

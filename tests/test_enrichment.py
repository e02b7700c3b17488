import asyncio

import pytest

from enrichment import EnrichmentOrchestrator
from errors import SummarizeError
from fakes import LONG_COPY, FakeCache, FakeFetcher, FakeSummarizer, html_page
from models import (
    CompanyFields,
    ProcessedRow,
    RowStatus,
    SavePayload,
    SaveStatus,
    ScrapingStatus,
    SummarizationStatus,
)


def _pending(index: int, website: str, name: str = "Acme") -> ProcessedRow:
    return ProcessedRow(
        original_index=index,
        original_data=CompanyFields(name, "Germany", f"https://www.{website}/"),
        normalized_data=CompanyFields(name.lower(), "germany", website),
        status=RowStatus.TO_PROCESS,
        scraping_status=ScrapingStatus.PENDING,
        summarization_status=SummarizationStatus.PENDING,
        save_status=SaveStatus.PENDING,
    )


def _site(website: str) -> dict:
    return {f"https://{website}": html_page(LONG_COPY)}


def _orchestrator(pages=None, errors=(), cache=None, summarizer=None, concurrency=4):
    return EnrichmentOrchestrator(
        cache=cache if cache is not None else FakeCache(),
        fetcher=FakeFetcher(pages=pages, errors=errors),
        summarizer=summarizer if summarizer is not None else FakeSummarizer(),
        concurrency=concurrency,
    )


def test_row_runs_all_three_stages():
    cache = FakeCache()
    orchestrator = _orchestrator(pages=_site("acme.com"), cache=cache)
    row = asyncio.run(orchestrator.process_row(_pending(0, "acme.com")))

    assert row.scraping_status == ScrapingStatus.SUCCESS
    assert row.summarization_status == SummarizationStatus.SUCCESS
    assert row.save_status == SaveStatus.SAVED
    assert row.summary == "Acme Industrial manufactures valves for utilities."
    assert row.is_terminal()

    [(website, fields)] = cache.upserts
    assert website == "acme.com"
    assert fields["original_website"] == "https://www.acme.com/"
    assert fields["normalized_company_name"] == "acme"
    assert fields["summary"] == row.summary


def test_scrape_failure_cascades():
    summarizer = FakeSummarizer()
    cache = FakeCache()
    orchestrator = _orchestrator(pages={"https://acme.com": html_page("Hi")}, cache=cache, summarizer=summarizer)
    row = asyncio.run(orchestrator.process_row(_pending(0, "acme.com")))

    assert row.scraping_status == ScrapingStatus.FAILED_SCRAPE
    assert row.summarization_status == SummarizationStatus.FAILED
    assert row.save_status == SaveStatus.FAILED
    assert "no significant content" in row.scraping_error_message
    assert summarizer.calls == []
    assert cache.upserts == []


def test_summarize_failure_skips_save():
    cache = FakeCache()
    summarizer = FakeSummarizer(error=SummarizeError("model returned malformed output"))
    orchestrator = _orchestrator(pages=_site("acme.com"), cache=cache, summarizer=summarizer)
    row = asyncio.run(orchestrator.process_row(_pending(0, "acme.com")))

    assert row.scraping_status == ScrapingStatus.SUCCESS
    assert row.summarization_status == SummarizationStatus.FAILED
    assert row.save_status == SaveStatus.FAILED
    assert row.summarization_error_message == "model returned malformed output"
    assert cache.upserts == []


def test_unexpected_summarizer_exception_is_wrapped():
    summarizer = FakeSummarizer(error=RuntimeError("socket closed"))
    orchestrator = _orchestrator(pages=_site("acme.com"), summarizer=summarizer)
    row = asyncio.run(orchestrator.process_row(_pending(0, "acme.com")))
    assert row.summarization_status == SummarizationStatus.FAILED
    assert row.summarization_error_message == "Failed to summarize content: socket closed"


def test_save_failure_marks_only_save():
    cache = FakeCache(failing_writes={"acme.com"})
    orchestrator = _orchestrator(pages=_site("acme.com"), cache=cache)
    row = asyncio.run(orchestrator.process_row(_pending(0, "acme.com")))

    assert row.scraping_status == ScrapingStatus.SUCCESS
    assert row.summarization_status == SummarizationStatus.SUCCESS
    assert row.save_status == SaveStatus.FAILED
    assert row.save_error_message == "write rejected for acme.com"


def test_non_enrichable_rows_pass_through():
    fetched = ProcessedRow(
        original_index=0,
        original_data=CompanyFields("Acme", "DE", "acme.com"),
        normalized_data=CompanyFields("acme", "de", "acme.com"),
        status=RowStatus.FETCHED,
        save_status=SaveStatus.SAVED,
        summary="cached",
    )
    no_website = ProcessedRow(
        original_index=1,
        original_data=CompanyFields("Nowhere", "DE", None),
        normalized_data=CompanyFields("nowhere", "de", None),
        status=RowStatus.TO_PROCESS,
    )
    orchestrator = _orchestrator()
    updates = []
    rows = asyncio.run(orchestrator.process_batch([fetched, no_website], on_update=updates.append))

    assert rows[0].summary == "cached"
    assert rows[1].scraping_status is None
    assert [update.stage for update in updates] == ["done", "done"]
    assert all(update.terminal for update in updates)
    assert orchestrator.fetcher.calls == []


def test_failures_are_isolated_and_order_is_kept():
    pages = {}
    for website in ("one.com", "three.com", "four.com"):
        pages.update(_site(website))
    cache = FakeCache(failing_writes={"four.com"})
    two = ["https://two.com"] + [f"https://two.com{path}" for path in ("/about", "/contact", "/services")]
    orchestrator = _orchestrator(pages=pages, errors=set(two), cache=cache, concurrency=2)
    rows = [_pending(i, site) for i, site in enumerate(["one.com", "two.com", "three.com", "four.com"])]

    results = asyncio.run(orchestrator.process_batch(rows))

    assert [row.original_index for row in results] == [0, 1, 2, 3]
    assert results[0].save_status == SaveStatus.SAVED
    assert results[1].scraping_status == ScrapingStatus.FAILED_ERROR
    assert results[2].save_status == SaveStatus.SAVED
    assert results[3].save_status == SaveStatus.FAILED
    assert all(row.is_terminal() for row in results)


def test_updates_follow_stage_order():
    orchestrator = _orchestrator(pages=_site("acme.com"))
    updates = []
    asyncio.run(orchestrator.process_batch([_pending(0, "acme.com")], on_update=updates.append))

    assert [update.stage for update in updates] == ["scrape", "scrape", "summarize", "summarize", "save", "save"]
    assert [update.terminal for update in updates] == [False] * 5 + [True]
    assert updates[0].row.scraping_status == ScrapingStatus.SCRAPING
    assert updates[-1].row.save_status == SaveStatus.SAVED


def test_update_snapshots_are_not_live():
    orchestrator = _orchestrator(pages=_site("acme.com"))
    updates = []
    asyncio.run(orchestrator.process_batch([_pending(0, "acme.com")], on_update=updates.append))
    assert updates[0].row.summary is None
    assert updates[0].row is not updates[-1].row


def test_stream_batch_ends_after_last_terminal_update():
    pages = {**_site("one.com"), **_site("two.com")}
    orchestrator = _orchestrator(pages=pages, concurrency=2)

    async def _collect():
        return [update async for update in orchestrator.stream_batch([_pending(0, "one.com"), _pending(1, "two.com")])]

    updates = asyncio.run(_collect())
    terminal = [update for update in updates if update.terminal]
    assert sorted(update.original_index for update in terminal) == [0, 1]
    assert updates[-1].terminal


def test_empty_batch():
    assert asyncio.run(_orchestrator().process_batch([])) == []


# -- stage boundaries -----------------------------------------------------------


@pytest.mark.parametrize("text", ["", "   ", None])
def test_summarize_rejects_empty_text(text):
    with pytest.raises(SummarizeError, match="scrapedText"):
        asyncio.run(_orchestrator().summarize(text))


def test_summarize_without_summarizer():
    orchestrator = EnrichmentOrchestrator(cache=FakeCache(), fetcher=FakeFetcher(), summarizer=None)
    with pytest.raises(SummarizeError, match="not configured"):
        asyncio.run(orchestrator.summarize("Acme builds valves."))


def test_save_reports_insert_then_update():
    orchestrator = _orchestrator()
    payload = SavePayload(
        original_data=CompanyFields("Acme", "DE", "acme.com"),
        normalized_data=CompanyFields("acme", "de", "acme.com"),
        summary="Valves.",
    )

    async def _run():
        return await orchestrator.save(payload), await orchestrator.save(payload)

    first, second = asyncio.run(_run())
    assert first.success and first.message == "Data saved for new company acme.com."
    assert second.success and second.message == "Data updated for acme.com."


def test_save_requires_normalized_website():
    payload = SavePayload(original_data=CompanyFields("Acme"), normalized_data=CompanyFields("acme"))
    result = asyncio.run(_orchestrator().save(payload))
    assert result.success is False
    assert "Normalized website is required" in result.message


def test_scrape_never_raises():
    class BrokenFetcher:
        async def fetch(self, url):
            raise RuntimeError("boom")

    orchestrator = EnrichmentOrchestrator(cache=FakeCache(), fetcher=BrokenFetcher(), summarizer=FakeSummarizer())
    result = asyncio.run(orchestrator.scrape("acme.com"))
    assert result.status == ScrapingStatus.FAILED_ERROR
    assert result.text is None

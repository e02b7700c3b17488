import pytest

from errors import IllegalTransitionError
from models import (
    CompanyFields,
    ProcessedRow,
    RowStatus,
    SaveResult,
    SaveStatus,
    ScrapeResult,
    ScrapingStatus,
    SummarizationStatus,
    SummaryResult,
    coerce_flag,
)


def _pending_row(website="acme.com"):
    return ProcessedRow(
        original_index=0,
        original_data=CompanyFields("Acme", "Germany", website),
        normalized_data=CompanyFields("acme", "germany", website),
        status=RowStatus.TO_PROCESS,
        scraping_status=ScrapingStatus.PENDING,
        summarization_status=SummarizationStatus.PENDING,
        save_status=SaveStatus.PENDING,
    )


def test_happy_path_transitions():
    row = _pending_row()
    assert row.is_enrichable()

    row.begin_scraping()
    row.finish_scraping(ScrapeResult(text="x" * 100, status=ScrapingStatus.SUCCESS))
    row.begin_summarizing()
    row.finish_summarizing(SummaryResult("Makes valves.", True, False))
    row.begin_saving()
    row.finish_saving(SaveResult(success=True, message="Data saved for new company acme.com."))

    assert row.scraping_status == ScrapingStatus.SUCCESS
    assert row.summarization_status == SummarizationStatus.SUCCESS
    assert row.save_status == SaveStatus.SAVED
    assert row.independence_flag is True
    assert row.is_terminal()


@pytest.mark.parametrize("status", [ScrapingStatus.FAILED_SCRAPE, ScrapingStatus.FAILED_ERROR])
def test_scrape_failure_cascades(status):
    row = _pending_row()
    row.begin_scraping()
    row.finish_scraping(ScrapeResult(text=None, status=status, error="nothing there"))

    assert row.scraping_status == status
    assert row.summarization_status == SummarizationStatus.FAILED
    assert row.save_status == SaveStatus.FAILED
    assert row.scraping_error_message == "nothing there"
    assert row.is_terminal()


def test_unsuccessful_scrape_without_failure_status_defaults_to_failed_error():
    row = _pending_row()
    row.begin_scraping()
    row.finish_scraping(ScrapeResult(text=None, status=ScrapingStatus.SUCCESS))
    assert row.scraping_status == ScrapingStatus.FAILED_ERROR


def test_summarize_before_scrape_is_illegal():
    row = _pending_row()
    with pytest.raises(IllegalTransitionError):
        row.begin_summarizing()


def test_save_after_failed_summary_is_illegal():
    row = _pending_row()
    row.begin_scraping()
    row.finish_scraping(ScrapeResult(text="y" * 100, status=ScrapingStatus.SUCCESS))
    row.begin_summarizing()
    row.fail_summarizing("model down")
    assert row.save_status == SaveStatus.FAILED
    with pytest.raises(IllegalTransitionError):
        row.begin_saving()


def test_constructor_rejects_broken_cascade():
    with pytest.raises(IllegalTransitionError):
        ProcessedRow(
            original_index=3,
            original_data=CompanyFields(),
            normalized_data=CompanyFields(),
            status=RowStatus.TO_PROCESS,
            scraping_status=ScrapingStatus.FAILED_SCRAPE,
            summarization_status=SummarizationStatus.SUCCESS,
        )


def test_fetched_row_may_be_saved_without_stages():
    row = ProcessedRow(
        original_index=1,
        original_data=CompanyFields(website="acme.com"),
        normalized_data=CompanyFields(website="acme.com"),
        status=RowStatus.FETCHED,
        save_status=SaveStatus.SAVED,
    )
    assert row.is_terminal()
    assert not row.is_enrichable()


def test_to_dict_uses_wire_names_and_omits_empty_optionals():
    payload = _pending_row().to_dict()
    assert payload["status"] == "To Process"
    assert payload["summarizationStatus"] == "Pending_Summary"
    assert payload["saveStatus"] == "Pending_Save"
    assert payload["normalizedData"] == {"companyName": "acme", "country": "germany", "website": "acme.com"}
    assert "errorMessage" not in payload
    assert "fetchedData" not in payload


def test_snapshot_is_detached_from_row():
    row = _pending_row()
    snap = row.snapshot()
    row.begin_scraping()
    assert snap.scraping_status == ScrapingStatus.PENDING


@pytest.mark.parametrize(
    "value, expected",
    [("Yes", True), ("yes ", True), ("", False), (None, False), ("No", False), (True, True), (False, False)],
)
def test_coerce_flag(value, expected):
    assert coerce_flag(value) is expected

"""
Data model for the row processing pipeline.

A ProcessedRow is owned by the run that created it. Its stage statuses only
move through the transition methods below, so a row can never claim to be
summarizing before it was scraped, or saved before it was summarized.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional, Union

from errors import IllegalTransitionError

Cell = Union[str, int, float, bool, datetime, date, None]
RawRow = tuple[Cell, ...]


class RowStatus(str, Enum):
    FETCHED = "Fetched"
    TO_PROCESS = "To Process"
    ERROR = "Error"


class ScrapingStatus(str, Enum):
    PENDING = "Pending"
    SCRAPING = "Scraping"
    SUCCESS = "Success"
    FAILED_SCRAPE = "Failed_Scrape"
    FAILED_ERROR = "Failed_Error"


class SummarizationStatus(str, Enum):
    PENDING = "Pending_Summary"
    SUMMARIZING = "Summarizing"
    SUCCESS = "Success_Summary"
    FAILED = "Failed_Summary"


class SaveStatus(str, Enum):
    PENDING = "Pending_Save"
    SAVING = "Saving"
    SAVED = "Saved"
    FAILED = "Failed_Save"


SCRAPE_FAILURES = {ScrapingStatus.FAILED_SCRAPE, ScrapingStatus.FAILED_ERROR}


def coerce_flag(value: Any) -> bool:
    """Flags arrive as bools or as the `"Yes"` / `""` strings the summarizer emits."""
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() == "yes"


@dataclass(frozen=True)
class HeaderMapping:
    name: Optional[str] = None
    country: Optional[str] = None
    website: Optional[str] = None

    def is_empty(self) -> bool:
        return not (self.name or self.country or self.website)

    def to_dict(self) -> dict:
        return {
            "companyNameHeader": self.name,
            "countryHeader": self.country,
            "websiteHeader": self.website,
        }


@dataclass(frozen=True)
class ResolvedIndices:
    name: int = -1
    country: int = -1
    website: int = -1


@dataclass(frozen=True)
class CompanyFields:
    company_name: Optional[str] = None
    country: Optional[str] = None
    website: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "companyName": self.company_name,
            "country": self.country,
            "website": self.website,
        }

    @classmethod
    def from_dict(cls, payload: Optional[dict]) -> "CompanyFields":
        payload = payload or {}
        return cls(
            company_name=payload.get("companyName"),
            country=payload.get("country"),
            website=payload.get("website"),
        )


@dataclass(frozen=True)
class CacheRecord:
    website: str
    summary: Optional[str] = None
    independence_flag: bool = False
    insufficient_info_flag: bool = False
    last_updated_at: Optional[datetime] = None
    original_company_name: Optional[str] = None
    original_country: Optional[str] = None
    original_website: Optional[str] = None
    normalized_company_name: Optional[str] = None
    normalized_country: Optional[str] = None


@dataclass(frozen=True)
class ScrapeResult:
    text: Optional[str]
    status: ScrapingStatus
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == ScrapingStatus.SUCCESS and bool(self.text)

    def to_dict(self) -> dict:
        payload = {
            "scrapedText": self.text if self.ok else None,
            "status": self.status.value,
        }
        if self.error and not self.ok:
            payload["error"] = self.error
        return payload


@dataclass(frozen=True)
class SummaryResult:
    summary: str
    independence_flag: bool = False
    insufficient_info_flag: bool = False

    def to_dict(self) -> dict:
        return {
            "summary": self.summary,
            "independenceFlag": self.independence_flag,
            "insufficientInfoFlag": self.insufficient_info_flag,
        }


@dataclass(frozen=True)
class SavePayload:
    original_data: CompanyFields
    normalized_data: CompanyFields
    summary: Optional[str] = None
    independence_flag: bool = False
    insufficient_info_flag: bool = False


@dataclass(frozen=True)
class SaveResult:
    success: bool
    message: str
    error: Optional[str] = None

    def to_dict(self) -> dict:
        payload: dict[str, Any] = {"success": self.success, "message": self.message}
        if self.error:
            payload["error"] = self.error
        return payload


def _value(status: Optional[Enum]) -> Optional[str]:
    return status.value if status is not None else None


@dataclass
class ProcessedRow:
    original_index: int
    original_data: CompanyFields
    normalized_data: CompanyFields
    status: RowStatus
    scraping_status: Optional[ScrapingStatus] = None
    summarization_status: Optional[SummarizationStatus] = None
    save_status: Optional[SaveStatus] = None
    scraped_text: Optional[str] = None
    summary: Optional[str] = None
    independence_flag: bool = False
    insufficient_info_flag: bool = False
    fetched_data: Optional[dict] = None
    error_message: Optional[str] = None
    scraping_error_message: Optional[str] = None
    summarization_error_message: Optional[str] = None
    save_error_message: Optional[str] = None

    def __post_init__(self) -> None:
        self._check_invariants()

    def _check_invariants(self) -> None:
        if self.summarization_status in {SummarizationStatus.SUMMARIZING, SummarizationStatus.SUCCESS}:
            if self.scraping_status != ScrapingStatus.SUCCESS:
                raise IllegalTransitionError(
                    f"row {self.original_index}: summarization {self.summarization_status.value} "
                    f"requires a successful scrape (scraping={_value(self.scraping_status)})"
                )
        if self.save_status in {SaveStatus.SAVING, SaveStatus.SAVED} and self.status != RowStatus.FETCHED:
            if self.summarization_status != SummarizationStatus.SUCCESS:
                raise IllegalTransitionError(
                    f"row {self.original_index}: save {self.save_status.value} "
                    f"requires a successful summary (summarization={_value(self.summarization_status)})"
                )

    def _require(self, condition: bool, action: str) -> None:
        if not condition:
            raise IllegalTransitionError(
                f"row {self.original_index}: cannot {action} "
                f"(scraping={_value(self.scraping_status)}, "
                f"summarization={_value(self.summarization_status)}, "
                f"save={_value(self.save_status)})"
            )

    def is_enrichable(self) -> bool:
        return (
            self.status == RowStatus.TO_PROCESS
            and self.scraping_status == ScrapingStatus.PENDING
            and bool(self.normalized_data.website)
        )

    def is_terminal(self) -> bool:
        if self.status != RowStatus.TO_PROCESS:
            return True
        if self.scraping_status is None:
            return True
        return self.save_status in {SaveStatus.SAVED, SaveStatus.FAILED}

    # -- scrape ------------------------------------------------------------

    def begin_scraping(self) -> None:
        self._require(self.is_enrichable(), "begin scraping")
        self.scraping_status = ScrapingStatus.SCRAPING

    def finish_scraping(self, result: ScrapeResult) -> None:
        self._require(self.scraping_status == ScrapingStatus.SCRAPING, "finish scraping")
        if result.ok:
            self.scraping_status = ScrapingStatus.SUCCESS
            self.scraped_text = result.text
            return
        status = result.status if result.status in SCRAPE_FAILURES else ScrapingStatus.FAILED_ERROR
        self.scraping_status = status
        self.scraped_text = None
        self.scraping_error_message = result.error or "Scraping returned no content."
        self.summarization_status = SummarizationStatus.FAILED
        self.save_status = SaveStatus.FAILED

    # -- summarize ---------------------------------------------------------

    def begin_summarizing(self) -> None:
        self._require(
            self.scraping_status == ScrapingStatus.SUCCESS
            and self.summarization_status == SummarizationStatus.PENDING,
            "begin summarizing",
        )
        self.summarization_status = SummarizationStatus.SUMMARIZING

    def finish_summarizing(self, result: SummaryResult) -> None:
        self._require(self.summarization_status == SummarizationStatus.SUMMARIZING, "finish summarizing")
        self.summarization_status = SummarizationStatus.SUCCESS
        self.summary = result.summary
        self.independence_flag = result.independence_flag
        self.insufficient_info_flag = result.insufficient_info_flag

    def fail_summarizing(self, message: str) -> None:
        self._require(self.summarization_status == SummarizationStatus.SUMMARIZING, "fail summarizing")
        self.summarization_status = SummarizationStatus.FAILED
        self.summarization_error_message = message
        self.save_status = SaveStatus.FAILED

    # -- save --------------------------------------------------------------

    def begin_saving(self) -> None:
        self._require(
            self.summarization_status == SummarizationStatus.SUCCESS
            and self.save_status == SaveStatus.PENDING,
            "begin saving",
        )
        self.save_status = SaveStatus.SAVING

    def finish_saving(self, result: SaveResult) -> None:
        self._require(self.save_status == SaveStatus.SAVING, "finish saving")
        if result.success:
            self.save_status = SaveStatus.SAVED
            return
        self.save_status = SaveStatus.FAILED
        self.save_error_message = result.error or result.message

    def save_payload(self) -> SavePayload:
        return SavePayload(
            original_data=self.original_data,
            normalized_data=self.normalized_data,
            summary=self.summary,
            independence_flag=self.independence_flag,
            insufficient_info_flag=self.insufficient_info_flag,
        )

    def snapshot(self) -> "ProcessedRow":
        return replace(self, fetched_data=dict(self.fetched_data) if self.fetched_data else None)

    def to_dict(self) -> dict:
        payload: dict[str, Any] = {
            "originalIndex": self.original_index,
            "originalData": self.original_data.to_dict(),
            "normalizedData": self.normalized_data.to_dict(),
            "status": self.status.value,
            "scrapingStatus": _value(self.scraping_status),
            "summarizationStatus": _value(self.summarization_status),
            "saveStatus": _value(self.save_status),
            "scrapedText": self.scraped_text,
            "summary": self.summary,
            "independenceFlag": self.independence_flag,
            "insufficientInfoFlag": self.insufficient_info_flag,
        }
        optional = {
            "fetchedData": self.fetched_data,
            "errorMessage": self.error_message,
            "scrapingErrorMessage": self.scraping_error_message,
            "summarizationErrorMessage": self.summarization_error_message,
            "saveErrorMessage": self.save_error_message,
        }
        payload.update({key: value for key, value in optional.items() if value is not None})
        return payload


@dataclass(frozen=True)
class RowUpdate:
    original_index: int
    stage: str
    row: ProcessedRow
    terminal: bool = False

    def to_dict(self) -> dict:
        return {
            "type": "row",
            "stage": self.stage,
            "terminal": self.terminal,
            "row": self.row.to_dict(),
        }


@dataclass(frozen=True)
class NormalizedRow:
    original: CompanyFields
    normalized: CompanyFields
    invalid_website: bool = False

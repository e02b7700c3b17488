"""
Freshness gate: decide per row whether cached company data can be reused or the
row has to go through enrichment again.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional, Sequence

from company_cache import CacheStore
from errors import NormalizationError, ValidationError
from header_resolver import resolve_header_mapping, resolve_indices
from models import (
    CacheRecord,
    CompanyFields,
    HeaderMapping,
    NormalizedRow,
    ProcessedRow,
    ResolvedIndices,
    RowStatus,
    SaveStatus,
    ScrapingStatus,
    SummarizationStatus,
)
from row_normalizer import extract_original, normalize_row
from settings import FRESHNESS_WINDOW_DAYS, ROW_CONCURRENCY

logger = logging.getLogger(__name__)

DEFAULT_FRESHNESS_WINDOW = timedelta(days=FRESHNESS_WINDOW_DAYS)


class Verdict(str, Enum):
    FRESH = "fresh"
    STALE = "stale"
    MISSING = "missing"
    NO_WEBSITE = "no_website"
    INVALID_WEBSITE = "invalid_website"
    CACHE_ERROR = "cache_error"


@dataclass(frozen=True)
class FreshnessDecision:
    verdict: Verdict
    record: Optional[CacheRecord] = None
    error_message: Optional[str] = None


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # Naive timestamps are taken as UTC, matching how the cache stores them.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_fresh(record: CacheRecord, freshness_window: timedelta, now: Optional[datetime] = None) -> bool:
    """A record is fresh while strictly younger than the window."""
    if not isinstance(record.last_updated_at, datetime):
        return False
    return _as_utc(record.last_updated_at) > _as_utc(now or _utcnow()) - freshness_window


async def check_freshness(
    normalized_row: NormalizedRow,
    cache: CacheStore,
    freshness_window: timedelta = DEFAULT_FRESHNESS_WINDOW,
    now: Optional[datetime] = None,
) -> FreshnessDecision:
    if normalized_row.invalid_website:
        return FreshnessDecision(
            Verdict.INVALID_WEBSITE,
            error_message=f"Invalid website format: {normalized_row.original.website}",
        )

    website = normalized_row.normalized.website
    if not website:
        return FreshnessDecision(Verdict.NO_WEBSITE)

    try:
        record = await cache.find_by_website(website)
    except Exception as exc:
        logger.error("Cache lookup failed for %s: %s", website, exc)
        return FreshnessDecision(
            Verdict.CACHE_ERROR,
            error_message=f"Cache error checking website: {website}",
        )

    if record is None:
        return FreshnessDecision(Verdict.MISSING)
    if not isinstance(record.last_updated_at, datetime):
        logger.warning("Cached record for %s has no usable last_updated_at; reprocessing", website)
        return FreshnessDecision(Verdict.MISSING, record=record)
    if is_fresh(record, freshness_window, now=now):
        return FreshnessDecision(Verdict.FRESH, record=record)
    return FreshnessDecision(Verdict.STALE, record=record)


def _error_row(index: int, original: CompanyFields, normalized: CompanyFields, message: str) -> ProcessedRow:
    return ProcessedRow(
        original_index=index,
        original_data=original,
        normalized_data=normalized,
        status=RowStatus.ERROR,
        scraping_status=ScrapingStatus.FAILED_ERROR,
        summarization_status=SummarizationStatus.FAILED,
        save_status=SaveStatus.FAILED,
        error_message=message,
    )


def _fetched_data(record: CacheRecord) -> dict:
    return {
        "summary": record.summary,
        "independenceFlag": record.independence_flag,
        "insufficientInfoFlag": record.insufficient_info_flag,
        "lastUpdatedAt": record.last_updated_at.isoformat() if record.last_updated_at else None,
    }


def build_processed_row(index: int, normalized_row: NormalizedRow, decision: FreshnessDecision) -> ProcessedRow:
    original = normalized_row.original
    normalized = normalized_row.normalized

    if decision.verdict in (Verdict.INVALID_WEBSITE, Verdict.CACHE_ERROR):
        return _error_row(index, original, normalized, decision.error_message or "")

    if decision.verdict == Verdict.NO_WEBSITE:
        return ProcessedRow(
            original_index=index,
            original_data=original,
            normalized_data=normalized,
            status=RowStatus.TO_PROCESS,
        )

    if decision.verdict == Verdict.FRESH and decision.record is not None:
        record = decision.record
        return ProcessedRow(
            original_index=index,
            original_data=original,
            normalized_data=normalized,
            status=RowStatus.FETCHED,
            save_status=SaveStatus.SAVED,
            summary=record.summary,
            independence_flag=record.independence_flag,
            insufficient_info_flag=record.insufficient_info_flag,
            fetched_data=_fetched_data(record),
        )

    return ProcessedRow(
        original_index=index,
        original_data=original,
        normalized_data=normalized,
        status=RowStatus.TO_PROCESS,
        scraping_status=ScrapingStatus.PENDING,
        summarization_status=SummarizationStatus.PENDING,
        save_status=SaveStatus.PENDING,
    )


async def _gate_row(
    index: int,
    row: Sequence,
    indices: ResolvedIndices,
    cache: CacheStore,
    freshness_window: timedelta,
    now: Optional[datetime],
) -> ProcessedRow:
    if row is None:
        row = ()
    if not isinstance(row, (list, tuple)):
        logger.error("Row %d is not an array of cells: %r", index, row)
        return _error_row(index, CompanyFields(), CompanyFields(), f"Invalid row at index {index}: expected an array of cells.")

    raw_row = tuple(row)
    try:
        normalized_row = normalize_row(raw_row, indices)
    except NormalizationError as exc:
        logger.error("Row %d: %s", index, exc)
        return _error_row(index, extract_original(raw_row, indices), CompanyFields(), str(exc))

    try:
        decision = await check_freshness(normalized_row, cache, freshness_window, now=now)
        return build_processed_row(index, normalized_row, decision)
    except Exception as exc:
        logger.exception("Row %d: unexpected failure checking freshness", index)
        return _error_row(
            index,
            normalized_row.original,
            normalized_row.normalized,
            f"Error checking website: {normalized_row.original.website}: {exc}",
        )


def _validate_batch(rows, headers) -> None:
    if not isinstance(rows, (list, tuple)):
        raise ValidationError("Invalid input: rows must be an array.")
    if not headers or not isinstance(headers, (list, tuple)):
        raise ValidationError("Invalid input: headers are required.")


async def normalize_and_check(
    rows: Sequence[Sequence],
    confirmed_mapping: Optional[HeaderMapping],
    headers: Sequence[str],
    cache: CacheStore,
    freshness_window: timedelta = DEFAULT_FRESHNESS_WINDOW,
    suggestion: Optional[HeaderMapping] = None,
    concurrency: int = ROW_CONCURRENCY,
    now: Optional[datetime] = None,
) -> list[ProcessedRow]:
    """
    Normalize every row and classify it against the cache.

    Returns one ProcessedRow per input row, in input order. Per-row failures
    (bad website, normalization error, cache error) become `Error` rows.

    Raises:
        ValidationError: malformed batch input; no row is touched.
    """
    _validate_batch(rows, headers)
    header_list = [str(header) for header in headers]
    mapping = resolve_header_mapping(header_list, suggestion, confirmed_mapping)
    indices = resolve_indices(header_list, mapping)

    if not rows:
        return []

    sem = asyncio.Semaphore(max(1, int(concurrency or 1)))

    async def _bounded(index: int, row: Sequence) -> ProcessedRow:
        async with sem:
            return await _gate_row(index, row, indices, cache, freshness_window, now)

    processed = await asyncio.gather(*[_bounded(i, row) for i, row in enumerate(rows)])

    counts = {status: 0 for status in RowStatus}
    for row in processed:
        counts[row.status] += 1
    logger.info(
        "Freshness check: %d rows (%d fetched, %d to process, %d errors)",
        len(processed),
        counts[RowStatus.FETCHED],
        counts[RowStatus.TO_PROCESS],
        counts[RowStatus.ERROR],
    )
    return list(processed)

from __future__ import annotations

import argparse
import asyncio
from contextlib import asynccontextmanager
from datetime import timedelta
from pathlib import Path
from typing import Optional

import polars as pl
from tqdm import tqdm

import settings
from ai_flows import OpenAISummarizer, Summarizer, build_openai_client
from company_cache import CacheStore, CompanyCache
from enrichment import EnrichmentOrchestrator
from errors import ValidationError
from freshness_gate import normalize_and_check
from header_resolver import suggest_header_mapping
from logging_setup import setup_logging
from models import HeaderMapping, ProcessedRow, RowUpdate
from scraper.page_fetcher import HttpxPageFetcher, PageFetcher
from sheet_reader import parse_sheet_bytes

OUTPUT_SCHEMA = {
    "row": pl.Int64,
    "company_name": pl.Utf8,
    "country": pl.Utf8,
    "website": pl.Utf8,
    "normalized_website": pl.Utf8,
    "status": pl.Utf8,
    "scraping_status": pl.Utf8,
    "summarization_status": pl.Utf8,
    "save_status": pl.Utf8,
    "summary": pl.Utf8,
    "independence_flag": pl.Boolean,
    "insufficient_info_flag": pl.Boolean,
    "error": pl.Utf8,
}


def _enum_value(value) -> Optional[str]:
    return value.value if value is not None else None


def _row_error(row: ProcessedRow) -> Optional[str]:
    for message in (
        row.error_message,
        row.scraping_error_message,
        row.summarization_error_message,
        row.save_error_message,
    ):
        if message:
            return message
    return None


def rows_to_frame(rows: list[ProcessedRow]) -> pl.DataFrame:
    records = [
        {
            "row": row.original_index,
            "company_name": row.original_data.company_name,
            "country": row.original_data.country,
            "website": row.original_data.website,
            "normalized_website": row.normalized_data.website,
            "status": row.status.value,
            "scraping_status": _enum_value(row.scraping_status),
            "summarization_status": _enum_value(row.summarization_status),
            "save_status": _enum_value(row.save_status),
            "summary": row.summary,
            "independence_flag": row.independence_flag,
            "insufficient_info_flag": row.insufficient_info_flag,
            "error": _row_error(row),
        }
        for row in rows
    ]
    return pl.DataFrame(records, schema=OUTPUT_SCHEMA)


def resolve_cli_mapping(headers: list[str], args) -> tuple[Optional[HeaderMapping], HeaderMapping]:
    """(confirmed, suggestion). Any --*-column flag confirms the whole mapping."""
    suggestion = suggest_header_mapping(headers)
    explicit = [args.name_column, args.country_column, args.website_column]
    if not any(explicit):
        return None, suggestion
    confirmed = HeaderMapping(
        name=args.name_column or suggestion.name,
        country=args.country_column or suggestion.country,
        website=args.website_column or suggestion.website,
    )
    return confirmed, suggestion


@asynccontextmanager
async def _default_fetcher():
    async with HttpxPageFetcher(timeout_seconds=settings.PAGE_TIMEOUT_SECONDS) as fetcher:
        yield fetcher


@asynccontextmanager
async def _borrowed(fetcher: PageFetcher):
    yield fetcher


def _default_summarizer() -> Optional[Summarizer]:
    client = build_openai_client(settings.OPENAI_API_KEY)
    return OpenAISummarizer(client, model=settings.OPENAI_MODEL) if client else None


async def run_sheet_async(
    args,
    cache: Optional[CacheStore] = None,
    fetcher: Optional[PageFetcher] = None,
    summarizer: Optional[Summarizer] = None,
) -> list[ProcessedRow]:
    input_path = Path(args.input).expanduser().resolve()
    output_path = Path(args.output).expanduser().resolve()

    print(f"Loading sheet from {input_path}")
    sheet = parse_sheet_bytes(input_path.read_bytes(), input_path.name)
    print(f"Rows loaded: {len(sheet.rows):,}")

    confirmed, suggestion = resolve_cli_mapping(sheet.headers, args)
    chosen = confirmed or suggestion
    print(f"Header mapping: name={chosen.name!r} country={chosen.country!r} website={chosen.website!r}")

    if cache is None:
        cache = CompanyCache(settings.cache_db_path())
    rows = await normalize_and_check(
        sheet.rows,
        confirmed,
        sheet.headers,
        cache,
        freshness_window=timedelta(days=args.freshness_days),
        suggestion=suggestion,
        concurrency=args.concurrency,
    )

    pending = sum(1 for row in rows if row.is_enrichable())
    print(f"Fresh in cache: {sum(1 for row in rows if row.fetched_data):,}; to enrich: {pending:,}")

    if pending and not args.no_enrich:
        if summarizer is None:
            summarizer = _default_summarizer()
        if summarizer is None:
            print("OPENAI_API_KEY is not set; rows will fail at the summarize stage.")
        progress = tqdm(total=pending, desc="Enrich", unit="company")

        def _on_update(update: RowUpdate) -> None:
            if update.terminal and update.stage != "done":
                progress.update(1)

        try:
            async with (_borrowed(fetcher) if fetcher is not None else _default_fetcher()) as page_fetcher:
                orchestrator = EnrichmentOrchestrator(
                    cache=cache,
                    fetcher=page_fetcher,
                    summarizer=summarizer,
                    concurrency=args.concurrency,
                )
                rows = await orchestrator.process_batch(rows, on_update=_on_update)
        finally:
            progress.close()

    output_path.parent.mkdir(parents=True, exist_ok=True)
    rows_to_frame(rows).write_csv(str(output_path))
    print(f"Done. CSV output: {output_path}")
    return rows


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Enrich a company spreadsheet with website summaries, reusing fresh cached results.",
    )
    parser.add_argument("command", choices=["run"], help="Command.")
    parser.add_argument("--input", required=True, help="Input .xlsx/.csv with company rows.")
    parser.add_argument("--output", required=True, help="Output CSV path.")
    parser.add_argument("--name-column", default="", help="Header holding the company name.")
    parser.add_argument("--country-column", default="", help="Header holding the country.")
    parser.add_argument("--website-column", default="", help="Header holding the website.")
    parser.add_argument("--concurrency", type=int, default=settings.ROW_CONCURRENCY)
    parser.add_argument("--freshness-days", type=int, default=settings.FRESHNESS_WINDOW_DAYS)
    parser.add_argument("--no-enrich", action="store_true", help="Only check the cache; skip scraping.")
    parser.add_argument("--log-level", default="warning", help="log level")
    return parser


def main():
    args = build_parser().parse_args()
    setup_logging(args.log_level)
    try:
        asyncio.run(run_sheet_async(args))
    except ValidationError as exc:
        raise SystemExit(f"Error: {exc}")


if __name__ == "__main__":
    main()

"""
Company Profiler backend.

FastAPI app exposing the pipeline stages one by one (parse, detect headers,
normalize-and-check, scrape, summarize, save) plus a streaming /api/process
that runs the whole enrichment for a batch.
"""

import argparse
import json
import logging
import os
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, AsyncIterator, Callable, Optional

from fastapi import FastAPI, File, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

import settings
from ai_flows import OpenAIHeaderSuggester, OpenAISummarizer, Summarizer, build_openai_client
from company_cache import CompanyCache
from enrichment import EnrichmentOrchestrator
from errors import SummarizeError, ValidationError
from freshness_gate import normalize_and_check
from header_resolver import HeaderSuggester, HeuristicHeaderSuggester, suggest_header_mapping
from logging_setup import setup_logging
from models import CompanyFields, HeaderMapping, SavePayload, coerce_flag
from row_normalizer import normalize_website
from scraper.page_fetcher import HttpxPageFetcher
from sheet_reader import parse_sheet_bytes

logger = logging.getLogger(__name__)

app = FastAPI(title="Company Profiler")

APP_BOOT_TS = time.time()
UPLOAD_CHUNK_SIZE = 1024 * 1024


@dataclass
class Services:
    cache: CompanyCache
    summarizer: Optional[Summarizer]
    header_suggester: HeaderSuggester
    fetcher_factory: Callable[[], Any]
    freshness_window: timedelta
    concurrency: int


def build_services() -> Services:
    client = build_openai_client(settings.OPENAI_API_KEY)
    return Services(
        cache=CompanyCache(settings.cache_db_path()),
        summarizer=OpenAISummarizer(client, model=settings.OPENAI_MODEL) if client else None,
        header_suggester=(
            OpenAIHeaderSuggester(client, model=settings.OPENAI_MODEL) if client else HeuristicHeaderSuggester()
        ),
        fetcher_factory=lambda: HttpxPageFetcher(timeout_seconds=settings.PAGE_TIMEOUT_SECONDS),
        freshness_window=timedelta(days=settings.FRESHNESS_WINDOW_DAYS),
        concurrency=settings.ROW_CONCURRENCY,
    )


def _services() -> Services:
    services = getattr(app.state, "services", None)
    if services is None:
        services = build_services()
        app.state.services = services
    return services


@app.get("/api/health")
async def health():
    """Lightweight readiness probe."""
    return {
        "ok": True,
        "app": "company-profiler",
        "uptimeSeconds": round(max(0.0, time.time() - APP_BOOT_TS), 3),
        "dataDir": str(settings.resolve_data_dir()),
    }


@app.on_event("startup")
async def startup_event():
    """Initialize the company cache on server startup."""
    await _services().cache.init_cache()


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------


class ConfirmedHeaders(BaseModel):
    companyNameHeader: Optional[str] = None
    countryHeader: Optional[str] = None
    websiteHeader: Optional[str] = None

    def to_mapping(self) -> HeaderMapping:
        return HeaderMapping(
            name=self.companyNameHeader or None,
            country=self.countryHeader or None,
            website=self.websiteHeader or None,
        )


class DetectHeadersRequest(BaseModel):
    headers: Optional[list[str]] = None


class RowsRequest(BaseModel):
    # Loosely typed so malformed batches surface as 400s from the gate, not 422s.
    rows: Any = None
    confirmedHeaders: Optional[ConfirmedHeaders] = None
    headers: Any = None


class ScrapeRequest(BaseModel):
    websiteUrl: Optional[str] = None
    companyName: Optional[str] = None


class SummarizeRequest(BaseModel):
    scrapedText: Optional[str] = None


class CompanyFieldsBody(BaseModel):
    companyName: Optional[str] = None
    country: Optional[str] = None
    website: Optional[str] = None

    def to_fields(self) -> CompanyFields:
        return CompanyFields(company_name=self.companyName, country=self.country, website=self.website)


class SaveRequest(BaseModel):
    originalData: Optional[CompanyFieldsBody] = None
    normalizedData: Optional[CompanyFieldsBody] = None
    summary: Optional[str] = None
    independenceFlag: Any = False
    insufficientInfoFlag: Any = False

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def read_upload_bytes(file: UploadFile, max_bytes: Optional[int] = None) -> bytes:
    """Read uploaded file in chunks with explicit size guard."""
    limit = max_bytes or settings.MAX_UPLOAD_BYTES
    chunks: list[bytes] = []
    total = 0
    while True:
        chunk = await file.read(UPLOAD_CHUNK_SIZE)
        if not chunk:
            break
        total += len(chunk)
        if total > limit:
            raise HTTPException(
                status_code=413,
                detail=f"Upload exceeds {max(1, limit // (1024 * 1024))}MB limit.",
            )
        chunks.append(chunk)
    raw = b"".join(chunks)
    if not raw:
        raise HTTPException(status_code=400, detail="Uploaded file is empty.")
    return raw


async def _gate_rows(body: RowsRequest, services: Services):
    mapping = body.confirmedHeaders.to_mapping() if body.confirmedHeaders else None
    try:
        return await normalize_and_check(
            body.rows,
            mapping,
            body.headers,
            services.cache,
            freshness_window=services.freshness_window,
            concurrency=services.concurrency,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


def _orchestrator(services: Services, fetcher) -> EnrichmentOrchestrator:
    return EnrichmentOrchestrator(
        cache=services.cache,
        fetcher=fetcher,
        summarizer=services.summarizer,
        concurrency=services.concurrency,
        min_text_length=settings.MIN_TEXT_LENGTH,
        max_text_length=settings.MAX_TEXT_LENGTH,
    )

# ---------------------------------------------------------------------------
# Pipeline endpoints
# ---------------------------------------------------------------------------


@app.post("/api/parse-sheet")
async def parse_sheet(file: UploadFile = File(...)):
    """Decode an uploaded spreadsheet into headers + rows (first sheet only)."""
    raw = await read_upload_bytes(file)
    try:
        sheet = parse_sheet_bytes(raw, file.filename)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return sheet.to_dict()


@app.post("/api/detect-headers")
async def detect_headers(body: DetectHeadersRequest):
    """Suggest which headers hold company name, country and website."""
    headers = [str(header) for header in (body.headers or [])]
    if not headers:
        raise HTTPException(
            status_code=400,
            detail="Invalid input: 'headers' array is required and must not be empty.",
        )
    suggester = _services().header_suggester
    try:
        mapping = await suggester.suggest(headers)
    except Exception as exc:
        logger.warning("Header suggester failed (%s); using heuristic match", exc)
        mapping = suggest_header_mapping(headers)
    return mapping.to_dict()


@app.post("/api/normalize-and-check")
async def normalize_and_check_endpoint(body: RowsRequest):
    """Normalize rows and split them into fetched-from-cache vs. to-process."""
    rows = await _gate_rows(body, _services())
    return [row.to_dict() for row in rows]


@app.post("/api/scrape")
async def scrape(body: ScrapeRequest):
    website_url = str(body.websiteUrl or "").strip()
    if not website_url:
        raise HTTPException(status_code=400, detail="Missing or invalid 'websiteUrl' in request body.")
    services = _services()
    website = normalize_website(website_url) or website_url
    async with services.fetcher_factory() as fetcher:
        result = await _orchestrator(services, fetcher).scrape(website, body.companyName)
    return result.to_dict()


@app.post("/api/summarize")
async def summarize(body: SummarizeRequest):
    text = body.scrapedText
    if not isinstance(text, str) or not text.strip():
        raise HTTPException(status_code=400, detail="Missing or invalid 'scrapedText' in request body.")
    services = _services()
    try:
        result = await _orchestrator(services, None).summarize(text)
    except SummarizeError as exc:
        logger.error("Summarization failed: %s", exc)
        raise HTTPException(status_code=500, detail=str(exc))
    return result.to_dict()


@app.post("/api/save")
async def save(body: SaveRequest):
    normalized = body.normalizedData.to_fields() if body.normalizedData else CompanyFields()
    if not normalized.website:
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": "Invalid input: Normalized website is required to save data."},
        )
    if body.originalData is None:
        logger.warning("Save request for %s is missing originalData", normalized.website)

    payload = SavePayload(
        original_data=body.originalData.to_fields() if body.originalData else CompanyFields(),
        normalized_data=normalized,
        summary=body.summary,
        independence_flag=coerce_flag(body.independenceFlag),
        insufficient_info_flag=coerce_flag(body.insufficientInfoFlag),
    )
    result = await _orchestrator(_services(), None).save(payload)
    if not result.success:
        return JSONResponse(status_code=500, content={"success": False, "error": result.error or result.message})
    return result.to_dict()


@app.post("/api/process")
async def process(body: RowsRequest):
    """
    Gate the batch, then stream NDJSON row updates while enrichment runs.
    The last line is `{"type": "complete", ...}`.
    """
    services = _services()
    rows = await _gate_rows(body, services)

    async def _stream() -> AsyncIterator[str]:
        async with services.fetcher_factory() as fetcher:
            async for update in _orchestrator(services, fetcher).stream_batch(rows):
                yield json.dumps(update.to_dict()) + "\n"
        yield json.dumps({"type": "complete", "rows": [row.to_dict() for row in rows]}) + "\n"

    return StreamingResponse(_stream(), media_type="application/x-ndjson")

# ---------------------------------------------------------------------------
# Cache management
# ---------------------------------------------------------------------------


@app.get("/api/cache/stats")
async def get_company_cache_stats():
    """Get statistics about the company cache."""
    services = _services()
    return await services.cache.get_cache_stats(services.freshness_window)


@app.post("/api/cache/clear")
async def clear_company_cache():
    """Clear all cached company summaries."""
    await _services().cache.clear_all_cache()
    return {"status": "success", "message": "Company cache cleared"}


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the Company Profiler API server.")
    parser.add_argument("--host", default=settings.SERVER_HOST, help="Bind host")
    parser.add_argument("--port", type=int, default=settings.SERVER_PORT, help="Bind port")
    parser.add_argument("--data-dir", default=str(settings.resolve_data_dir()), help="Writable data directory")
    parser.add_argument("--log-level", default=settings.LOG_LEVEL, help="log level")
    return parser


def main() -> None:
    args = _build_arg_parser().parse_args()
    os.environ["PROFILER_DATA_DIR"] = str(args.data_dir)
    setup_logging(args.log_level)
    import uvicorn

    uvicorn.run(
        app,
        host=str(args.host),
        port=int(args.port),
        log_level=str(args.log_level).lower(),
        reload=False,
        access_log=False,
    )


if __name__ == "__main__":
    main()

"""
Runtime configuration for the company profiler.
All values come from PROFILER_* environment variables with safe defaults.
"""

import os
from pathlib import Path


APP_BASE_DIR = Path(__file__).resolve().parent


def resolve_data_dir() -> Path:
    raw = str(os.getenv("PROFILER_DATA_DIR") or "").strip()
    if raw:
        return Path(raw).expanduser()
    return APP_BASE_DIR


def cache_db_path() -> str:
    data_dir = resolve_data_dir()
    data_dir.mkdir(parents=True, exist_ok=True)
    return str(data_dir / "company_cache.db")


# Cached summaries younger than this are reused instead of re-scraped (~6 months).
FRESHNESS_WINDOW_DAYS = int(os.getenv("PROFILER_FRESHNESS_DAYS", "183"))

ROW_CONCURRENCY = int(os.getenv("PROFILER_ROW_CONCURRENCY", "8"))
PAGE_TIMEOUT_SECONDS = float(os.getenv("PROFILER_PAGE_TIMEOUT", "15.0"))
MIN_TEXT_LENGTH = int(os.getenv("PROFILER_MIN_TEXT_LENGTH", "1000"))
MAX_TEXT_LENGTH = int(os.getenv("PROFILER_MAX_TEXT_LENGTH", "15000"))

OPENAI_MODEL = os.getenv("PROFILER_OPENAI_MODEL", "gpt-4o-mini")
OPENAI_API_KEY = str(os.getenv("OPENAI_API_KEY") or "").strip()

SERVER_HOST = os.getenv("PROFILER_HOST", "127.0.0.1")
SERVER_PORT = int(os.getenv("PROFILER_PORT", "8000"))
LOG_LEVEL = os.getenv("PROFILER_LOG_LEVEL", "info")
MAX_UPLOAD_BYTES = int(os.getenv("PROFILER_MAX_UPLOAD_MB", "50")) * 1024 * 1024

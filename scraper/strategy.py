"""
Multi-page scrape: the home page first, then well-known subpages until there is
enough text to summarize.
"""

from __future__ import annotations

import logging
from typing import Optional

from errors import PageFetchError
from models import ScrapeResult, ScrapingStatus
from scraper.page_fetcher import PageFetcher
from scraper.page_text import PAGE_MIN_CHARS, extract_page_text
from settings import MAX_TEXT_LENGTH, MIN_TEXT_LENGTH

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "... [truncated]"

SUBPAGES = [
    ("/about", "About Page"),
    ("/contact", "Contact Page"),
    ("/services", "Services Page"),
]


def _no_content_message(website: str) -> str:
    paths = ", ".join(path for path, _label in SUBPAGES)
    return f"Scraping yielded no significant content from {website} or common subpages ({paths})."


async def _scrape_page(fetcher: PageFetcher, url: str) -> tuple[Optional[str], bool]:
    """(text, answered). `answered` is False only for transport failures."""
    try:
        html = await fetcher.fetch(url)
    except PageFetchError as exc:
        logger.error("Error scraping %s: %s", url, exc)
        return None, False
    text = extract_page_text(html)
    if text:
        logger.info("Successfully scraped %s (%d chars)", url, len(text))
    return text, True


async def scrape_website(
    website: str,
    fetcher: PageFetcher,
    min_text_length: int = MIN_TEXT_LENGTH,
    max_text_length: int = MAX_TEXT_LENGTH,
) -> ScrapeResult:
    """
    Scrape `https://<website>` and, while the text is short, /about, /contact
    and /services. Never raises.
    """
    clean = str(website or "").strip()
    if not clean:
        return ScrapeResult(text=None, status=ScrapingStatus.FAILED_ERROR, error="Missing website.")

    base_url = f"https://{clean}"
    try:
        combined, answered = await _scrape_page(fetcher, base_url)
        combined = combined or ""
        any_answered = answered

        for path, label in SUBPAGES:
            if len(combined) >= min_text_length:
                break
            logger.info("Text from %s is short (%d), trying %s", base_url, len(combined), path)
            text, answered = await _scrape_page(fetcher, f"{base_url}{path}")
            any_answered = any_answered or answered
            if text:
                separator = f"\n\n--- {label} ---\n\n" if combined else ""
                combined += separator + text
    except Exception as exc:
        logger.exception("Error scraping %s", clean)
        return ScrapeResult(text=None, status=ScrapingStatus.FAILED_ERROR, error=f"Failed to scrape {clean}: {exc}")

    if len(combined) > PAGE_MIN_CHARS:
        if len(combined) > max_text_length:
            combined = combined[:max_text_length] + TRUNCATION_MARKER
            logger.info("Truncated scraped text for %s to %d characters", clean, max_text_length)
        return ScrapeResult(text=combined, status=ScrapingStatus.SUCCESS)

    if not any_answered:
        message = f"Could not reach {clean}: every page request failed."
        logger.warning(message)
        return ScrapeResult(text=None, status=ScrapingStatus.FAILED_ERROR, error=message)

    message = _no_content_message(clean)
    logger.warning(message)
    return ScrapeResult(text=None, status=ScrapingStatus.FAILED_SCRAPE, error=message)

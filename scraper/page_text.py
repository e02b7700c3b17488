"""
Visible-text extraction from a single HTML page.
"""

from __future__ import annotations

import re
from typing import Optional

from bs4 import BeautifulSoup

CONTENT_MIN_CHARS = 500
PAGE_MIN_CHARS = 50

_WHITESPACE_RUN_RE = re.compile(r"\s\s+")


def _normalize_text(text: str) -> str:
    return _WHITESPACE_RUN_RE.sub(" ", text or "").strip()


def extract_page_text(html: Optional[str]) -> Optional[str]:
    """
    Prefer <article> text, add <main> when that is short, and fall back to all
    <p> text when both are short. Returns None for pages with 50 chars or less.
    """
    if not html:
        return None
    soup = BeautifulSoup(html, "lxml")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()

    text = "".join(node.get_text() + "\n\n" for node in soup.find_all("article"))
    if len(text.strip()) < CONTENT_MIN_CHARS:
        text += "".join(node.get_text() + "\n\n" for node in soup.find_all("main"))
    if len(text.strip()) < CONTENT_MIN_CHARS:
        text = "\n\n".join(node.get_text() for node in soup.find_all("p"))

    clean = _normalize_text(text)
    return clean if len(clean) > PAGE_MIN_CHARS else None

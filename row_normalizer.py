"""
Row normalization: pull company name, country and website out of a raw
spreadsheet row and canonicalize them for cache lookups.
"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime
from typing import Optional

from errors import NormalizationError
from models import Cell, CompanyFields, NormalizedRow, RawRow, ResolvedIndices

logger = logging.getLogger(__name__)

_SCHEME_RE = re.compile(r"^https?://")
_WWW_RE = re.compile(r"^www\.")
_TRAILING_SLASH_RE = re.compile(r"/$")
_WHITESPACE_RE = re.compile(r"\s")


def cell_to_text(value: Cell) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def _cell_at(row: RawRow, index: int) -> Optional[str]:
    if index < 0 or index >= len(row):
        return None
    return cell_to_text(row[index])


def _normalize_text(value: Optional[str]) -> Optional[str]:
    clean = str(value or "").strip().lower()
    return clean or None


def normalize_website(value: Optional[str]) -> Optional[str]:
    """
    Canonical cache key for a website: lowercase, no scheme, no `www.`, no trailing slash.
    Returns None when the result has no dot or contains whitespace.
    """
    raw = str(value or "").strip().lower()
    if not raw:
        return None
    raw = _SCHEME_RE.sub("", raw)
    raw = _WWW_RE.sub("", raw)
    raw = _TRAILING_SLASH_RE.sub("", raw)
    if "." not in raw or _WHITESPACE_RE.search(raw):
        return None
    return raw


def extract_original(row: RawRow, indices: ResolvedIndices) -> CompanyFields:
    return CompanyFields(
        company_name=_cell_at(row, indices.name),
        country=_cell_at(row, indices.country),
        website=_cell_at(row, indices.website),
    )


def normalize_row(row: RawRow, indices: ResolvedIndices) -> NormalizedRow:
    """
    Normalize one row. Malformed cells produce None fields, never an exception.

    Raises:
        NormalizationError: an unexpected failure while canonicalizing the website.
    """
    original = extract_original(row, indices)

    website: Optional[str] = None
    invalid_website = False
    if str(original.website or "").strip():
        try:
            website = normalize_website(original.website)
        except Exception as exc:
            raise NormalizationError(f"Error normalizing website: {original.website}") from exc
        if website is None:
            invalid_website = True
            logger.warning("Invalid website format skipped: %s", original.website)

    normalized = CompanyFields(
        company_name=_normalize_text(original.company_name),
        country=_normalize_text(original.country),
        website=website,
    )
    return NormalizedRow(original=original, normalized=normalized, invalid_website=invalid_website)

"""
Header resolution: turn spreadsheet header labels into the three semantic roles
(company name, country, website) the pipeline needs.

Suggestions come from a heuristic (rapidfuzz) or an LLM suggester; the user's
confirmed mapping always wins. Resolution only validates.
"""

from __future__ import annotations

import logging
import re
from typing import Optional, Protocol

from rapidfuzz import fuzz

from errors import ValidationError
from models import HeaderMapping, ResolvedIndices

logger = logging.getLogger(__name__)

SUGGESTION_THRESHOLD = 85.0

HEADER_TOKEN_ALIASES = {
    "website": "website",
    "web": "website",
    "site": "website",
    "url": "website",
    "urls": "website",
    "homepage": "website",
    "domain": "website",
    "domains": "website",
    "websiteurl": "website",
    "webaddress": "website",
    "weburl": "website",
    "organisation": "company",
    "organization": "company",
    "org": "company",
    "account": "company",
    "business": "company",
    "companyname": "company",
    "orgname": "company",
    "firm": "company",
    "nation": "country",
    "countries": "country",
    "hq": "headquarters",
}

# Order matters: earlier aliases win ties.
ROLE_CANONICAL_NAMES = {
    "name": ["company name", "company", "name"],
    "country": ["country", "location", "region", "based in", "headquarters"],
    "website": ["website", "website address"],
}

ROLE_HEAD_TOKENS = {
    "name": {"company"},
    "country": {"country", "location", "region", "headquarters"},
    "website": {"website", "address"},
}

GENERIC_HEADER_TOKENS = {"name", "type", "value", "id", "status", "date", "description"}
NON_VALUE_TOKENS = {"id", "code", "number", "no", "type", "status", "count", "size"}


class HeaderSuggester(Protocol):
    async def suggest(self, headers: list[str]) -> HeaderMapping:
        ...


def _tokenize_header_name(value: str) -> list[str]:
    raw = str(value or "").strip().lower()
    if not raw:
        return []
    collapsed = re.sub(r"[^a-z0-9]+", " ", raw).strip()
    if not collapsed:
        return []
    return [HEADER_TOKEN_ALIASES.get(token, token) for token in collapsed.split()]


def _normalize_header_name(value: str) -> str:
    return " ".join(_tokenize_header_name(value))


def _head_token(tokens: list[str]) -> str:
    for token in reversed(tokens):
        if token not in GENERIC_HEADER_TOKENS and token not in NON_VALUE_TOKENS:
            return token
    return tokens[-1] if tokens else ""


def _header_match_score(source_name: str, canonical_name: str, role: str) -> float:
    source_norm = _normalize_header_name(source_name)
    canonical_norm = _normalize_header_name(canonical_name)
    if not source_norm or not canonical_norm:
        return 0.0
    if source_norm == canonical_norm:
        return 100.0

    source_tokens = source_norm.split()
    canonical_tokens = canonical_norm.split()
    score = float(fuzz.token_set_ratio(source_norm, canonical_norm))

    if (
        len(source_tokens) == 1
        and len(canonical_tokens) > 1
        and source_tokens[0] in GENERIC_HEADER_TOKENS
    ):
        score -= 16
    if (
        len(canonical_tokens) == 1
        and len(source_tokens) > 1
        and canonical_tokens[0] in GENERIC_HEADER_TOKENS
    ):
        score -= 16
    # "Company ID" names a key column, not the company.
    if NON_VALUE_TOKENS.intersection(source_tokens):
        score -= 20
    # "Company Website" is a website column: the head noun decides the role.
    head = _head_token(source_tokens)
    other_heads = set().union(*(tokens for other, tokens in ROLE_HEAD_TOKENS.items() if other != role))
    if head in other_heads and head not in ROLE_HEAD_TOKENS.get(role, set()):
        score -= 30

    return max(0.0, min(100.0, score))


def suggest_header_mapping(headers: list[str], threshold: float = SUGGESTION_THRESHOLD) -> HeaderMapping:
    """
    Best-guess mapping of headers to roles. Each header is used for at most one role.
    """
    candidates: list[tuple[float, int, str, str]] = []
    for header in headers or []:
        if not str(header or "").strip():
            continue
        for role, canonical_names in ROLE_CANONICAL_NAMES.items():
            best_score = 0.0
            best_rank = len(canonical_names)
            for rank, canonical in enumerate(canonical_names):
                score = _header_match_score(header, canonical, role)
                if score > best_score:
                    best_score, best_rank = score, rank
            if best_score >= threshold:
                candidates.append((best_score, -best_rank, role, header))

    assigned: dict[str, str] = {}
    used_headers: set[str] = set()
    for score, _rank, role, header in sorted(candidates, key=lambda item: (item[0], item[1]), reverse=True):
        if role in assigned or header in used_headers:
            continue
        assigned[role] = header
        used_headers.add(header)

    return HeaderMapping(
        name=assigned.get("name"),
        country=assigned.get("country"),
        website=assigned.get("website"),
    )


class HeuristicHeaderSuggester:
    """HeaderSuggester backed by suggest_header_mapping."""

    def __init__(self, threshold: float = SUGGESTION_THRESHOLD):
        self.threshold = threshold

    async def suggest(self, headers: list[str]) -> HeaderMapping:
        return suggest_header_mapping(headers, threshold=self.threshold)


def _known_or_none(headers: list[str], role: str, label: Optional[str]) -> Optional[str]:
    if label is None:
        return None
    if label in headers:
        return label
    logger.warning("Header %r for %s not found in provided headers: %s", label, role, headers)
    return None


def resolve_header_mapping(
    headers: list[str],
    suggestion: Optional[HeaderMapping],
    confirmed: Optional[HeaderMapping],
) -> HeaderMapping:
    """
    Validate the confirmed mapping (or the suggestion when nothing was confirmed).

    Raises:
        ValidationError: no mapping at all, or every role is unmapped.
    """
    chosen = confirmed if confirmed is not None else suggestion
    if chosen is None:
        raise ValidationError("Invalid input: a confirmed header mapping is required.")
    if chosen.is_empty():
        raise ValidationError(
            "Invalid input: At least one confirmed header (name, country, website) is required."
        )
    if confirmed is not None and suggestion is not None and confirmed != suggestion:
        logger.info("Confirmed header mapping overrides suggestion: %s -> %s", suggestion, confirmed)

    return HeaderMapping(
        name=_known_or_none(headers, "name", chosen.name),
        country=_known_or_none(headers, "country", chosen.country),
        website=_known_or_none(headers, "website", chosen.website),
    )


def resolve_indices(headers: list[str], mapping: HeaderMapping) -> ResolvedIndices:
    def _index(label: Optional[str]) -> int:
        if label is None:
            return -1
        try:
            return headers.index(label)
        except ValueError:
            return -1

    return ResolvedIndices(
        name=_index(mapping.name),
        country=_index(mapping.country),
        website=_index(mapping.website),
    )

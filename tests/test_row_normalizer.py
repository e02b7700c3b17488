from datetime import date

import pytest

import row_normalizer
from errors import NormalizationError
from models import ResolvedIndices
from row_normalizer import cell_to_text, normalize_row, normalize_website

INDICES = ResolvedIndices(name=0, country=1, website=2)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("https://www.Acme.com/", "acme.com"),
        ("http://acme.co.uk", "acme.co.uk"),
        ("  WWW.acme.io  ", "acme.io"),
        ("acme.com/about/", "acme.com/about"),
        ("acme.com//", "acme.com/"),
        ("acme", None),
        ("acme .com", None),
        ("", None),
        (None, None),
    ],
)
def test_normalize_website(raw, expected):
    assert normalize_website(raw) == expected


@pytest.mark.parametrize("canonical", ["acme.com", "shop.acme.de", "acme.com/en"])
def test_normalize_website_is_idempotent(canonical):
    once = normalize_website(canonical)
    assert once == canonical
    assert normalize_website(once) == once


def test_cell_to_text_coercions():
    assert cell_to_text(None) == ""
    assert cell_to_text(True) == "true"
    assert cell_to_text(42.0) == "42"
    assert cell_to_text(4.5) == "4.5"
    assert cell_to_text(date(2024, 1, 31)) == "2024-01-31"


def test_normalize_row_lowercases_and_trims():
    result = normalize_row(("  Acme GmbH ", " Germany", "https://www.acme.de/"), INDICES)
    assert result.original.company_name == "  Acme GmbH "
    assert result.normalized.company_name == "acme gmbh"
    assert result.normalized.country == "germany"
    assert result.normalized.website == "acme.de"
    assert result.invalid_website is False


def test_empty_cells_normalize_to_none():
    result = normalize_row(("   ", None, None), INDICES)
    assert result.normalized.company_name is None
    assert result.normalized.country is None
    assert result.normalized.website is None
    assert result.invalid_website is False


def test_whitespace_only_website_is_absent_not_invalid():
    result = normalize_row(("Acme", "DE", "   "), INDICES)
    assert result.invalid_website is False
    assert result.normalized.website is None


def test_invalid_website_keeps_original():
    result = normalize_row(("Acme", "DE", "not a site"), INDICES)
    assert result.invalid_website is True
    assert result.original.website == "not a site"
    assert result.normalized.website is None


def test_unmapped_and_out_of_range_indices():
    result = normalize_row(("Acme",), ResolvedIndices(name=0, country=-1, website=7))
    assert result.original.country is None
    assert result.original.website is None
    assert result.normalized.company_name == "acme"


def test_numeric_website_cell_is_coerced_to_text():
    result = normalize_row(("Acme", "DE", 3.0), INDICES)
    assert result.original.website == "3"
    assert result.invalid_website is True


def test_unexpected_failure_raises_normalization_error(monkeypatch):
    def _boom(value):
        raise RuntimeError("regex engine exploded")

    monkeypatch.setattr(row_normalizer, "normalize_website", _boom)
    with pytest.raises(NormalizationError, match="Error normalizing website: acme.com"):
        normalize_row(("Acme", "DE", "acme.com"), INDICES)

"""
Spreadsheet decoding: uploaded bytes -> header labels + positional rows.
CSV/TSV goes through polars, XLSX through openpyxl (first sheet only).
"""

from __future__ import annotations

import io
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Optional

import polars as pl
from openpyxl import load_workbook

from errors import ValidationError
from models import Cell

logger = logging.getLogger(__name__)

CSV_EXTENSIONS = (".csv", ".tsv", ".txt")
EXCEL_EXTENSIONS = (".xlsx", ".xlsm")
CSV_SEPARATORS = [",", ";", "\t", "|"]


@dataclass
class ParsedSheet:
    headers: list[str] = field(default_factory=list)
    rows: list[list[Cell]] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "headers": self.headers,
            "rows": [[_json_cell(cell) for cell in row] for row in self.rows],
        }


def _json_cell(value: Cell) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def detect_csv_separator(raw: bytes) -> str:
    """
    Pick the separator that splits the header line the most times and then
    stays consistent on the next few rows. Defaults to a comma.
    """
    head = raw[:8192].decode("utf-8-sig", errors="replace")
    lines = [line for line in head.splitlines() if line.strip()][:5]
    if not lines:
        return ","

    def _score(sep: str) -> tuple[int, int]:
        header_splits = lines[0].count(sep)
        consistent = sum(1 for line in lines[1:] if line.count(sep) == header_splits)
        return header_splits, consistent

    ranked = sorted(CSV_SEPARATORS, key=_score, reverse=True)
    return ranked[0] if _score(ranked[0])[0] > 0 else ","


def sanitize_column_names(columns: list[str]) -> list[str]:
    """Blank headers become `column_<n>`; repeats (case-insensitive) get `_2`, `_3`, ..."""
    counts: Counter = Counter()
    cleaned = []
    for position, name in enumerate(columns, start=1):
        label = str(name or "").strip() or f"column_{position}"
        counts[label.lower()] += 1
        occurrence = counts[label.lower()]
        cleaned.append(label if occurrence == 1 else f"{label}_{occurrence}")
    return cleaned


def read_csv_bytes(raw: bytes) -> pl.DataFrame:
    """Read CSV bytes as all-text columns, trying the detected separator first."""
    separator_hint = detect_csv_separator(raw)
    separators = [separator_hint] + [sep for sep in CSV_SEPARATORS if sep != separator_hint]
    read_errors = []
    parsed_candidates: list[pl.DataFrame] = []

    for sep in separators:
        try:
            df = pl.read_csv(
                io.BytesIO(raw),
                separator=sep,
                infer_schema_length=0,
                truncate_ragged_lines=True,
                encoding="utf8-lossy",
            )
            if df.width > 0:
                parsed_candidates.append(df)
        except Exception as exc:
            read_errors.append(str(exc))

    if not parsed_candidates:
        raise ValidationError(f"Unable to parse CSV. {read_errors[:1]}")

    # Prefer parses with more than one column; among those pick the widest schema.
    multi_col = [df for df in parsed_candidates if df.width > 1]
    chosen = max(multi_col or parsed_candidates, key=lambda df: df.width)
    cleaned_names = sanitize_column_names(chosen.columns)
    if cleaned_names != chosen.columns:
        chosen = chosen.rename(dict(zip(chosen.columns, cleaned_names)))
    return chosen


def _excel_cell(value: Any) -> Cell:
    if value is None or isinstance(value, (str, bool, int, float, datetime, date)):
        return value
    return str(value)


def read_xlsx_bytes(raw: bytes) -> ParsedSheet:
    try:
        workbook = load_workbook(io.BytesIO(raw), read_only=True, data_only=True)
    except Exception as exc:
        raise ValidationError(f"Failed to parse Excel file: {exc}") from exc

    try:
        if not workbook.worksheets:
            return ParsedSheet()
        sheet = workbook.worksheets[0]
        values = [
            [_excel_cell(cell) for cell in row]
            for row in sheet.iter_rows(values_only=True)
        ]
    finally:
        workbook.close()

    values = [row for row in values if any(cell is not None and cell != "" for cell in row)]
    if not values:
        return ParsedSheet()
    headers = [str(header) if header is not None else "" for header in values[0]]
    return ParsedSheet(headers=headers, rows=values[1:])


def parse_sheet_bytes(raw: bytes, filename: Optional[str]) -> ParsedSheet:
    """
    Decode an uploaded spreadsheet.

    Raises:
        ValidationError: empty upload, unsupported extension, or unreadable content.
    """
    if not raw:
        raise ValidationError("Uploaded file is empty.")
    lower = str(filename or "").strip().lower()

    if lower.endswith(EXCEL_EXTENSIONS):
        sheet = read_xlsx_bytes(raw)
    elif lower.endswith(CSV_EXTENSIONS) or not lower:
        df = read_csv_bytes(raw)
        sheet = ParsedSheet(headers=list(df.columns), rows=[list(row) for row in df.iter_rows()])
    elif lower.endswith(".xls"):
        raise ValidationError("Legacy .xls workbooks are not supported; save the file as .xlsx or .csv.")
    else:
        raise ValidationError("Only .xlsx, .csv, .tsv and .txt uploads are supported.")

    logger.info("Parsed %d headers and %d rows from %s", len(sheet.headers), len(sheet.rows), filename or "upload")
    return sheet

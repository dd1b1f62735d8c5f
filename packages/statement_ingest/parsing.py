"""File content → sheets of raw rows.

CSV parsing follows RFC 4180 via the stdlib :mod:`csv` module (UTF-8 with an
optional BOM, quoted fields with embedded commas and newlines). Spreadsheets
are read with ``openpyxl`` in read-only mode; every non-empty worksheet becomes
a :class:`~statement_ingest.models.Sheet` whose first non-blank row is the
header.
"""

from __future__ import annotations

import csv
from io import BytesIO, StringIO
from pathlib import PurePath
from typing import Any

from openpyxl import load_workbook

from .errors import FileParseError
from .models import RawRow, Sheet

_CSV_SUFFIXES = {".csv", ".txt"}
_XLSX_SUFFIXES = {".xlsx", ".xlsm"}


def parse_file(filename: str, content: bytes) -> list[Sheet]:
    """Parse ``content`` into sheets, choosing the reader by file extension.

    Raises
    ------
    FileParseError
        For empty content, unsupported extensions, or unreadable files.
    """

    if not content:
        raise FileParseError(f"file is empty: {filename!r}")
    suffix = PurePath(filename).suffix.lower()
    if suffix in _CSV_SUFFIXES:
        return [Sheet(name=PurePath(filename).stem or "csv", rows=_read_csv_rows(_decode(content)))]
    if suffix in _XLSX_SUFFIXES:
        return _read_workbook(content)
    raise FileParseError(f"unsupported file type {suffix or '(none)'!r} for {filename!r}")


def _decode(content: bytes) -> str:
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError:
        # Bank exports outside the US are frequently cp1252/latin-1.
        return content.decode("latin-1")


def _read_csv_rows(csv_text: str) -> list[RawRow]:
    with StringIO(csv_text, newline="") as f:
        reader = csv.DictReader(f)
        if reader.fieldnames is None:
            return []
        rows: list[RawRow] = []
        for row in reader:
            # DictReader collects overflow cells under a None key; drop them.
            normalized = {
                k.strip(): (v if v is not None else "") for k, v in row.items() if k is not None
            }
            if all(not str(v).strip() for v in normalized.values()):
                continue
            rows.append(normalized)
        return rows


def _read_workbook(content: bytes) -> list[Sheet]:
    try:
        wb = load_workbook(BytesIO(content), read_only=True, data_only=True)
    except Exception as exc:  # noqa: BLE001 - openpyxl raises a wide range of types
        raise FileParseError(f"could not read workbook: {exc}") from exc
    try:
        sheets: list[Sheet] = []
        for name in wb.sheetnames:
            rows = _sheet_rows(wb[name].iter_rows(values_only=True))
            if rows:
                sheets.append(Sheet(name=name, rows=rows))
        return sheets
    finally:
        wb.close()


def _sheet_rows(values: Any) -> list[RawRow]:
    header: list[str] | None = None
    rows: list[RawRow] = []
    for raw in values:
        cells = list(raw)
        if all(_is_blank(c) for c in cells):
            continue
        if header is None:
            header = [str(c).strip() if c is not None else "" for c in cells]
            continue
        row = {h: (cells[i] if i < len(cells) else None) for i, h in enumerate(header) if h}
        rows.append(row)
    return rows


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


__all__ = ["parse_file"]

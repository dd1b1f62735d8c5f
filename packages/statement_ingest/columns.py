"""Header-based column detection with a value-based fallback."""

from __future__ import annotations

import re
from collections.abc import Callable, Sequence
from datetime import date
from decimal import Decimal
from typing import Any

from .errors import ColumnDetectionError
from .models import ColumnMapping, RawRow

# (pattern, score); the highest-scoring header wins, ties go to the leftmost.
type _Patterns = Sequence[tuple[re.Pattern[str], int]]


def _p(*specs: tuple[str, int]) -> list[tuple[re.Pattern[str], int]]:
    return [(re.compile(rx, re.IGNORECASE), score) for rx, score in specs]


_DATE_PATTERNS = _p(
    (r"^date$", 3),
    (r"transaction.*date", 2),
    (r"trans.*date", 2),
    (r"posted.*date", 2),
    (r"post.*date", 2),
    (r"date", 1),
)
_MERCHANT_PATTERNS = _p(
    (r"^merchant$", 3),
    (r"^description$", 3),
    (r"merchant.*name", 2),
    (r"transaction.*description", 2),
    (r"payee", 2),
    (r"description", 1),
    (r"merchant", 1),
    (r"^vendor$", 1),
    (r"^name$", 1),
)
_AMOUNT_PATTERNS = _p(
    (r"^amount$", 3),
    (r"transaction.*amount", 2),
    (r"amount", 2),
    (r"^debit$", 1),
    (r"^credit$", 1),
    (r"^total$", 1),
)
_TYPE_PATTERNS = _p((r"^type$", 2), (r"transaction.*type", 1))

# Running balances look numeric but are never the transaction amount.
_AMOUNT_EXCLUDE = re.compile(r"balance", re.IGNORECASE)

_DATE_VALUE = re.compile(r"^\s*(\d{4}[-/]\d{1,2}[-/]\d{1,2}|\d{1,2}[-/]\d{1,2}[-/]\d{2,4})")
_NUMERIC_VALUE = re.compile(r"^\(?[-+]?\(?[$€£¥]?\s*\d+(\.\d*)?\)?$")


def _score(header: str, patterns: _Patterns) -> int:
    return max((score for rx, score in patterns if rx.search(header)), default=0)


def _best_header(headers: Sequence[str], patterns: _Patterns, taken: set[str]) -> str | None:
    best: tuple[int, str] | None = None
    for h in headers:
        if h in taken:
            continue
        s = _score(h, patterns)
        if s > 0 and (best is None or s > best[0]):
            best = (s, h)
    return best[1] if best else None


def _looks_like_date(value: Any) -> bool:
    if isinstance(value, date):
        return True
    return isinstance(value, str) and bool(_DATE_VALUE.match(value))


def _looks_like_amount(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float, Decimal)):
        return True
    return isinstance(value, str) and bool(_NUMERIC_VALUE.match(value.replace(",", "").strip()))


def _looks_like_text(value: Any) -> bool:
    return (
        isinstance(value, str)
        and len(value.strip()) > 5
        and not _looks_like_date(value)
        and not _looks_like_amount(value)
    )


def _first_by_value(
    headers: Sequence[str], sample: RawRow, predicate: Callable[[Any], bool], taken: set[str]
) -> str | None:
    for h in headers:
        if h not in taken and predicate(sample.get(h)):
            return h
    return None


def detect_columns(rows: Sequence[RawRow]) -> ColumnMapping:
    """Resolve the date, merchant, and amount columns for one sheet.

    Header names are scored against per-role patterns. A role with no matching
    header falls back to inspecting the first row's values. A column claimed by
    one role is not reused by another.

    Raises
    ------
    ColumnDetectionError
        When the sheet is empty or any role cannot be resolved.
    """

    if not rows:
        raise ColumnDetectionError("sheet has no rows", missing=("date", "merchant", "amount"))
    headers = [h for h in rows[0].keys() if h]
    sample = rows[0]
    taken: set[str] = set()

    date_col = _best_header(headers, _DATE_PATTERNS, taken) or _first_by_value(
        headers, sample, _looks_like_date, taken
    )
    if date_col:
        taken.add(date_col)

    merchant_col = _best_header(headers, _MERCHANT_PATTERNS, taken) or _first_by_value(
        headers, sample, _looks_like_text, taken
    )
    if merchant_col:
        taken.add(merchant_col)

    amount_headers = [h for h in headers if not _AMOUNT_EXCLUDE.search(h)]
    amount_col = _best_header(amount_headers, _AMOUNT_PATTERNS, taken) or _first_by_value(
        amount_headers, sample, _looks_like_amount, taken
    )
    if amount_col:
        taken.add(amount_col)

    missing = tuple(
        role
        for role, col in (("date", date_col), ("merchant", merchant_col), ("amount", amount_col))
        if col is None
    )
    if missing:
        raise ColumnDetectionError(
            f"could not detect {', '.join(missing)} column(s) among headers {headers!r}",
            missing=missing,
        )
    assert date_col and merchant_col and amount_col

    return ColumnMapping(
        date_column=date_col,
        merchant_column=merchant_col,
        amount_column=amount_col,
        type_column=_best_header(headers, _TYPE_PATTERNS, taken),
    )


__all__ = ["detect_columns"]

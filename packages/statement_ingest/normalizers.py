"""Row normalization: raw cells → ``NormalizedTransaction`` or ``NormalizationError``.

Every row gets exactly one outcome. Checks run in a fixed order (date,
amount, merchant presence, payment type, card-payment pattern, zero amount)
and the first failing check decides the reason. Amounts keep the sign found
in the source; the batch convention is applied later, at persistence time.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from .logging_setup import get_logger
from .models import (
    ColumnMapping,
    NormalizationError,
    NormalizationResult,
    NormalizedTransaction,
    RawRow,
)
from .settings import IngestSettings

_logger = get_logger("statement_ingest.normalizers")

# ---------------------------------------------------------------------------
# Helpers (amount/date parsing)
# ---------------------------------------------------------------------------

_CURRENCY_SYMBOLS = "$€£¥"
_CENT = Decimal("0.01")

# Tried in order; month-first precedes day-first for ambiguous values.
_DATE_FORMATS = (
    "%Y-%m-%d",
    "%m/%d/%Y",
    "%m/%d/%y",
    "%d/%m/%Y",
    "%Y/%m/%d",
    "%m-%d-%Y",
    "%d-%m-%Y",
)


def parse_amount(raw: Any) -> Decimal:
    """Parse a cell into a signed ``Decimal``.

    Handles leading ``+``/``-`` signs, currency symbols, surrounding
    parentheses (negative), whitespace, and thousands separators in any order,
    e.g. ``"-($1,234.56)"``. Numeric cells are converted via ``str`` so float
    cells keep their shortest decimal form.

    Raises
    ------
    ValueError
        When the value is missing, empty, or not a number.
    """

    if raw is None:
        raise ValueError("amount is required")
    if isinstance(raw, bool):
        raise ValueError(f"invalid amount: {raw!r}")
    if isinstance(raw, Decimal):
        d = raw
    elif isinstance(raw, (int, float)):
        d = Decimal(str(raw))
    else:
        d = _parse_amount_text(str(raw))
    if not d.is_finite():
        raise ValueError(f"invalid amount: {raw!r}")
    return d


def _parse_amount_text(raw: str) -> Decimal:
    s = raw.strip()
    if not s:
        raise ValueError("amount is empty")
    negative = False

    # Strip leading sign, currency symbol, and surrounding parentheses until stable.
    while True:
        changed = False
        if s.startswith("+"):
            s = s[1:].lstrip()
            changed = True
        elif s.startswith("-"):
            negative = True
            s = s[1:].lstrip()
            changed = True
        if s[:1] and s[0] in _CURRENCY_SYMBOLS:
            s = s[1:].lstrip()
            changed = True
        if s.startswith("(") and s.endswith(")") and len(s) >= 2:
            negative = True
            s = s[1:-1].strip()
            changed = True
        if not changed:
            break

    # Trailing currency symbol ("12.50 €") and thousands separators.
    s = s.rstrip(_CURRENCY_SYMBOLS + " ").replace(",", "").replace(" ", "")

    try:
        d = Decimal(s)
    except InvalidOperation as exc:
        raise ValueError(f"invalid amount: {raw!r}") from exc
    return -abs(d) if negative else d


def parse_date(raw: Any) -> date:
    """Parse a cell into a ``date``.

    Accepts ``date``/``datetime`` cells and strings in the supported formats;
    a trailing time component (``"01/15/2024 10:30"`` or ISO ``T``) is ignored.
    """

    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    if raw is None:
        raise ValueError("date is required")
    s = str(raw).strip()
    if not s:
        raise ValueError("date is empty")
    first = s.split()[0].split("T", 1)[0]
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(first, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"unrecognized date: {raw!r}")


def _cell_text(row: RawRow, column: str | None) -> str:
    if column is None:
        return ""
    value = row.get(column)
    return "" if value is None else str(value).strip()


# ---------------------------------------------------------------------------
# Row normalization
# ---------------------------------------------------------------------------


class RowNormalizer:
    """Classify raw rows against a resolved :class:`ColumnMapping`.

    Usage
    -----
    normalizer = RowNormalizer(mapping, settings)
    result = normalizer.normalize_rows(sheet.rows)
    """

    def __init__(self, mapping: ColumnMapping, settings: IngestSettings | None = None) -> None:
        self.mapping = mapping
        self.settings = settings or IngestSettings()
        self._card_payment = [
            re.compile(p, re.IGNORECASE) for p in self.settings.credit_card_payment_patterns
        ]

    def normalize_row(
        self, row: RawRow, row_number: int
    ) -> NormalizedTransaction | NormalizationError:
        try:
            return self._classify(row, row_number)
        except Exception as exc:  # noqa: BLE001 - any surprise becomes a fixable row
            _logger.warning(
                "normalize_row:unexpected row=%d error=%s", row_number, exc.__class__.__name__
            )
            return NormalizationError(row_number, "other", f"unexpected error: {exc}", row)

    def normalize_rows(self, rows: Sequence[RawRow]) -> NormalizationResult:
        transactions: list[NormalizedTransaction] = []
        errors: list[NormalizationError] = []
        # Row numbers are 1-based data rows (header excluded).
        for i, row in enumerate(rows, start=1):
            outcome = self.normalize_row(row, i)
            if isinstance(outcome, NormalizationError):
                errors.append(outcome)
            else:
                transactions.append(outcome)
        return NormalizationResult(transactions=transactions, errors=errors)

    def _classify(self, row: RawRow, row_number: int) -> NormalizedTransaction | NormalizationError:
        m = self.mapping
        try:
            tx_date = parse_date(row.get(m.date_column))
        except ValueError as exc:
            return NormalizationError(row_number, "date_parse", str(exc), row)

        try:
            amount = parse_amount(row.get(m.amount_column))
        except ValueError as exc:
            return NormalizationError(row_number, "amount_parse", str(exc), row)

        merchant = _cell_text(row, m.merchant_column)
        if not merchant:
            return NormalizationError(row_number, "other", "merchant is empty", row)

        if _cell_text(row, m.type_column).casefold() == "payment":
            return NormalizationError(row_number, "payment", "payment row", row)

        if any(rx.search(merchant) for rx in self._card_payment):
            return NormalizationError(
                row_number, "credit_card_payment", f"card payment: {merchant}", row
            )

        # Amounts are stored to the cent; a sub-cent value that rounds to zero is zero.
        cents = amount.quantize(_CENT, rounding=ROUND_HALF_UP)
        if cents == 0:
            return NormalizationError(row_number, "other", "zero amount", row)

        return NormalizedTransaction(
            row_number=row_number, date=tx_date, merchant=merchant, amount_raw=cents, raw=row
        )


def normalize_row(
    row: RawRow,
    mapping: ColumnMapping,
    row_number: int,
    *,
    settings: IngestSettings | None = None,
) -> NormalizedTransaction | NormalizationError:
    return RowNormalizer(mapping, settings).normalize_row(row, row_number)


def normalize_rows(
    rows: Sequence[RawRow], mapping: ColumnMapping, *, settings: IngestSettings | None = None
) -> NormalizationResult:
    return RowNormalizer(mapping, settings).normalize_rows(rows)


__all__ = [
    "RowNormalizer",
    "normalize_row",
    "normalize_rows",
    "parse_amount",
    "parse_date",
]

"""Per-file amount sign convention: detection, override, and spending derivation.

A convention is resolved once per batch and attached to every record written
for it. :func:`spending_amount` is the single place that turns a signed raw
amount into a non-negative spending value.
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal

from .models import AmountConvention, ColumnMapping, ConventionDecision, ConventionSource, RawRow
from .normalizers import parse_amount
from .settings import IngestSettings

_ZERO = Decimal("0")

# A sign must outnumber the other by this factor to decide on counts alone.
_COUNT_FACTOR = Decimal("1.5")
# Fallback when counts are close: compare absolute totals.
_TOTAL_FACTOR = Decimal("1.2")


def detect_amount_convention(
    rows: Sequence[RawRow],
    mapping: ColumnMapping,
    filename: str,
    settings: IngestSettings | None = None,
) -> ConventionDecision:
    """Suggest a convention from the filename and the sheet's amount distribution.

    Steps, first match wins:

    1. A configured issuer keyword in the filename (``chase`` by default)
       means negative-for-spend.
    2. Over parseable, non-zero amounts: whichever sign outnumbers the other
       by more than 1.5x wins; when counts are close, whichever absolute total
       exceeds the other by more than 1.2x wins.
    3. Otherwise ``negative``, the common credit-card export shape.
    """

    settings = settings or IngestSettings()
    lowered = filename.casefold()
    if any(k in lowered for k in settings.negative_issuer_keywords):
        return _decided(AmountConvention.NEGATIVE, "filename")

    amounts: list[Decimal] = []
    for row in rows:
        try:
            value = parse_amount(row.get(mapping.amount_column))
        except ValueError:
            continue
        if value != 0:
            amounts.append(value)
    if not amounts:
        return _decided(AmountConvention.NEGATIVE, "default")

    positives = [a for a in amounts if a > 0]
    negatives = [a for a in amounts if a < 0]
    if len(negatives) > len(positives) * _COUNT_FACTOR:
        return _decided(AmountConvention.NEGATIVE, "statistics")
    if len(positives) > len(negatives) * _COUNT_FACTOR:
        return _decided(AmountConvention.POSITIVE, "statistics")

    positive_total = sum(positives, _ZERO)
    negative_total = -sum(negatives, _ZERO)
    if negative_total > positive_total * _TOTAL_FACTOR:
        return _decided(AmountConvention.NEGATIVE, "statistics")
    if positive_total > negative_total * _TOTAL_FACTOR:
        return _decided(AmountConvention.POSITIVE, "statistics")
    return _decided(AmountConvention.NEGATIVE, "default")


def _decided(convention: AmountConvention, source: ConventionSource) -> ConventionDecision:
    return ConventionDecision(convention=convention, source=source, suggested=convention)


def resolve_convention(
    suggestion: ConventionDecision, override: AmountConvention | str | None
) -> ConventionDecision:
    """Apply an explicit per-file override, keeping the heuristic suggestion visible."""

    if override is None:
        return suggestion
    return ConventionDecision(
        convention=AmountConvention(override),
        source="override",
        suggested=suggestion.suggested,
    )


def spending_amount(
    amount_raw: Decimal, convention: AmountConvention, *, is_payment: bool = False
) -> Decimal:
    """Derive the non-negative spending value for a signed raw amount.

    ``negative``: ``-x`` when ``x < 0`` else 0. ``positive``: ``x`` when
    ``x > 0`` else 0. Payments never count as spending.
    """

    if is_payment:
        return _ZERO
    if AmountConvention(convention) is AmountConvention.NEGATIVE:
        return -amount_raw if amount_raw < 0 else _ZERO
    return amount_raw if amount_raw > 0 else _ZERO


def is_spending(amount_raw: Decimal, convention: AmountConvention) -> bool:
    return spending_amount(amount_raw, convention) > 0


__all__ = [
    "detect_amount_convention",
    "is_spending",
    "resolve_convention",
    "spending_amount",
]

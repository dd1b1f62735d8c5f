from decimal import Decimal

from statement_ingest.conventions import (
    detect_amount_convention,
    is_spending,
    resolve_convention,
    spending_amount,
)
from statement_ingest.models import AmountConvention, ColumnMapping

MAPPING = ColumnMapping(date_column="Date", merchant_column="Description", amount_column="Amount")


def _rows(*amounts: str) -> list[dict[str, str]]:
    return [{"Date": "2024-01-01", "Description": "x", "Amount": a} for a in amounts]


def test_negative_convention_spending_and_credit():
    assert spending_amount(Decimal("-45.99"), AmountConvention.NEGATIVE) == Decimal("45.99")
    assert spending_amount(Decimal("25.00"), AmountConvention.NEGATIVE) == 0
    assert not is_spending(Decimal("25.00"), AmountConvention.NEGATIVE)


def test_positive_convention_and_plain_string_convention():
    assert spending_amount(Decimal("12.30"), AmountConvention.POSITIVE) == Decimal("12.30")
    assert spending_amount(Decimal("-12.30"), "positive") == 0


def test_payment_is_never_spending():
    assert spending_amount(Decimal("-500.00"), AmountConvention.NEGATIVE, is_payment=True) == 0


def test_filename_keyword_decides_before_statistics():
    decision = detect_amount_convention(_rows("10", "20", "30"), MAPPING, "Chase_Jan_2024.csv")
    assert decision.convention is AmountConvention.NEGATIVE
    assert decision.source == "filename"


def test_statistics_by_count():
    decision = detect_amount_convention(_rows("10", "20", "30", "-5"), MAPPING, "export.csv")
    assert decision.convention is AmountConvention.POSITIVE
    assert decision.source == "statistics"


def test_statistics_by_total_when_counts_are_close():
    decision = detect_amount_convention(_rows("-100", "-80", "5", "7"), MAPPING, "export.csv")
    assert decision.convention is AmountConvention.NEGATIVE
    assert decision.source == "statistics"


def test_default_when_undecidable_or_no_amounts():
    assert detect_amount_convention(_rows("10", "-10"), MAPPING, "x.csv").source == "default"
    assert detect_amount_convention(_rows("abc", ""), MAPPING, "x.csv").source == "default"


def test_override_keeps_suggestion_visible():
    suggestion = detect_amount_convention(_rows("1"), MAPPING, "chase.csv")
    decision = resolve_convention(suggestion, "positive")
    assert decision.convention is AmountConvention.POSITIVE
    assert decision.source == "override"
    assert decision.suggested is AmountConvention.NEGATIVE
    assert resolve_convention(suggestion, None) is suggestion

import pytest

from statement_ingest.columns import detect_columns
from statement_ingest.errors import ColumnDetectionError


def test_exact_headers_win_over_partial_matches():
    rows = [
        {
            "Transaction Date": "01/15/2024",
            "Post Date": "01/16/2024",
            "Description": "STARBUCKS",
            "Category": "Food",
            "Type": "Sale",
            "Amount": "-4.50",
            "Memo": "",
        }
    ]
    mapping = detect_columns(rows)
    assert mapping.date_column == "Transaction Date"
    assert mapping.merchant_column == "Description"
    assert mapping.amount_column == "Amount"
    assert mapping.type_column == "Type"


def test_balance_column_is_never_the_amount():
    rows = [
        {"Date": "2024-01-02", "Payee": "Corner Shop", "Running Balance": "900.00", "Debit": "12"}
    ]
    mapping = detect_columns(rows)
    assert mapping.amount_column == "Debit"
    assert mapping.merchant_column == "Payee"


def test_value_fallback_when_headers_are_opaque():
    rows = [{"c1": "03/04/2024", "c2": "WHOLE FOODS MARKET", "c3": "-23.10"}]
    mapping = detect_columns(rows)
    assert (mapping.date_column, mapping.merchant_column, mapping.amount_column) == (
        "c1",
        "c2",
        "c3",
    )
    assert mapping.type_column is None


def test_missing_amount_is_fatal_for_the_sheet():
    rows = [{"Date": "2024-01-02", "Description": "Something long enough", "Notes": "n/a"}]
    with pytest.raises(ColumnDetectionError) as ei:
        detect_columns(rows)
    assert ei.value.missing == ("amount",)


def test_empty_sheet_raises():
    with pytest.raises(ColumnDetectionError):
        detect_columns([])

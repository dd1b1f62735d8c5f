from datetime import UTC, datetime, timedelta
from decimal import Decimal
from io import BytesIO

from ledger_db.client import session_scope
from ledger_db.models.ledger import IngestSourceFile
from openpyxl import Workbook
from sqlalchemy import func, select

import statement_ingest.persistence as persistence
import statement_ingest.upload as upload_mod
from statement_ingest import UploadFile, summarize_source_file, upload_statements
from statement_ingest.persistence import ExpectedAggregate
from statement_ingest.settings import IngestSettings
from tests.helpers.db import fetch_transactions, seed_categories

T0 = datetime(2024, 2, 1, 12, 0, tzinfo=UTC)

STATEMENT = (
    "Date,Description,Amount\n"
    "01/05/2024,STARBUCKS STORE 123,-45.99\n"
    "01/06/2024,Corner Cafe,-5.50\n"
    "01/07/2024,REFUND AMAZON,25.00\n"
    "01/08/2024,AUTOMATIC PAYMENT THANK YOU,-500.00\n"
    "01/09/2024,Whole Foods Market,-89.32\n"
).encode()


def _upload(db_url, *files, user_id="u1", uploaded_at=T0, settings=None):
    return upload_statements(
        list(files),
        user_id=user_id,
        database_url=db_url,
        settings=settings,
        uploaded_at=uploaded_at,
    )


def test_end_to_end_negative_convention(db_url):
    seed_categories(db_url)
    result = _upload(db_url, UploadFile("statement.csv", STATEMENT, convention="negative"))

    assert result.success
    fr = result.file_results[0]
    assert fr.outcome == "succeeded"
    assert fr.transaction_count == 5
    assert fr.spending_count == 3
    assert fr.total_spending == Decimal("140.81")
    assert fr.credit_count == 1
    assert fr.payment_count == 1
    assert fr.amount_convention == "negative"
    assert fr.convention_source == "override"
    assert result.total_transactions == 5
    assert result.total_spending == Decimal("140.81")

    rows = fetch_transactions(db_url, user_id="u1")
    assert len(rows) == 5
    by_merchant = {r.merchant: r for r in rows}
    assert by_merchant["starbucks store 123"].notes == "original merchant: STARBUCKS STORE 123"
    assert by_merchant["starbucks store 123"].category == "Dining"
    assert by_merchant["starbucks store 123"].status == "approved"
    payment = by_merchant["automatic payment thank you"]
    assert payment.is_payment and not payment.is_credit
    assert Decimal(str(payment.amount_spending)) == 0
    assert by_merchant["refund amazon"].is_credit
    assert all(r.amount_convention == "negative" for r in rows)
    assert all(r.source_file_hash == fr.source_file_hash for r in rows)

    summary = summarize_source_file(
        user_id="u1", fingerprint=fr.source_file_hash, database_url=db_url
    )
    assert summary is not None
    assert summary.transaction_count == 5
    assert summary.total_spending == Decimal("140.81")
    assert (summary.credit_count, summary.payment_count) == (1, 1)


def test_reupload_in_same_window_is_duplicate(db_url):
    seed_categories(db_url)
    first = _upload(db_url, UploadFile("statement.csv", STATEMENT, convention="negative"))
    again = _upload(
        db_url,
        UploadFile("statement.csv", STATEMENT, convention="negative"),
        uploaded_at=T0 + timedelta(minutes=20),
    )

    assert first.success
    assert not again.success
    assert again.file_results[0].outcome == "duplicate"
    assert again.total_transactions == 0
    assert len(fetch_transactions(db_url, user_id="u1")) == 5


def test_filename_keyword_suggests_negative_without_override(db_url):
    result = _upload(db_url, UploadFile("Chase_Activity.csv", STATEMENT))
    fr = result.file_results[0]
    assert fr.amount_convention == "negative"
    assert fr.convention_source == "filename"
    assert fr.total_spending == Decimal("140.81")


def test_override_wins_over_suggestion(db_url):
    content = (
        "Date,Description,Amount\n"
        "01/05/2024,HARDWARE STORE,30.00\n"
        "01/06/2024,CASHBACK,-2.00\n"
    ).encode()
    result = _upload(db_url, UploadFile("chase_business.csv", content, convention="positive"))
    fr = result.file_results[0]
    assert fr.amount_convention == "positive"
    assert fr.suggested_convention == "negative"
    assert fr.convention_source == "override"
    assert fr.total_spending == Decimal("30.00")
    assert fr.credit_count == 1


def test_unknown_convention_fails_the_file_only(db_url):
    result = _upload(
        db_url,
        UploadFile("a.csv", STATEMENT, convention="sideways"),
        UploadFile("b.csv", STATEMENT, convention="negative"),
    )
    assert [fr.outcome for fr in result.file_results] == ["failed", "succeeded"]
    assert result.total_transactions == 5


def test_unparseable_amount_becomes_placeholder(db_url):
    content = (
        "Date,Description,Amount\n"
        "01/05/2024,BOOKSHOP,-12.00\n"
        "01/06/2024,MYSTERY CHARGE,twelve dollars\n"
    ).encode()
    result = _upload(db_url, UploadFile("statement.csv", content, convention="negative"))
    fr = result.file_results[0]

    assert fr.success
    assert fr.transaction_count == 2
    assert fr.flagged_count == 1
    assert [(e.row_number, e.reason) for e in fr.errors] == [(2, "amount_parse")]

    (placeholder,) = fetch_transactions(db_url, import_error_reason="amount_parse")
    assert placeholder.status == "pending_review"
    assert placeholder.amount_raw is None
    assert placeholder.merchant == "mystery charge"
    assert placeholder.transaction_date is not None
    assert placeholder.raw_record["Amount"] == "twelve dollars"


def test_benign_rows_are_excluded_and_counted(db_url):
    content = (
        "Date,Description,Amount,Type\n"
        "01/05/2024,BOOKSHOP,-12.00,Sale\n"
        "01/06/2024,PAYMENT RECEIVED,300.00,Payment\n"
        "01/07/2024,ONLINE PAYMENT - THANK YOU,150.00,Adjustment\n"
    ).encode()
    result = _upload(db_url, UploadFile("statement.csv", content, convention="negative"))
    fr = result.file_results[0]
    assert fr.transaction_count == 1
    assert fr.excluded_count == 2
    assert fr.errors == []
    assert fr.sheets[0].excluded_count == 2


def test_failures_are_isolated_per_file(db_url):
    no_amount = b"Date,Description,Memo\n01/05/2024,Something here,n/a\n"
    result = _upload(
        db_url,
        UploadFile("good.csv", STATEMENT, convention="negative"),
        UploadFile("scan.pdf", b"%PDF-1.4"),
        UploadFile("weird.csv", no_amount),
        UploadFile("empty.csv", b""),
    )

    outcomes = [fr.outcome for fr in result.file_results]
    assert outcomes == ["succeeded", "parse_failed", "no_usable_sheets", "parse_failed"]
    assert not result.success
    assert result.total_transactions == 5
    assert result.total_spending == Decimal("140.81")


def test_oversize_file_is_rejected(db_url):
    result = _upload(
        db_url,
        UploadFile("statement.csv", STATEMENT),
        settings=IngestSettings(max_file_bytes=16),
    )
    assert result.file_results[0].outcome == "parse_failed"
    assert fetch_transactions(db_url) == []


def test_insert_failure_persists_nothing(db_url, monkeypatch):
    real_build = upload_mod.build_transaction_record

    def corrupt(ctx, tx, assignment, **kwargs):
        record = real_build(ctx, tx, assignment, **kwargs)
        if tx.row_number == 5:
            record["amount_spending"] = Decimal("-1.00")
        return record

    monkeypatch.setattr(upload_mod, "build_transaction_record", corrupt)
    result = _upload(
        db_url,
        UploadFile("statement.csv", STATEMENT, convention="negative"),
        settings=IngestSettings(insert_chunk_size=2),
    )

    fr = result.file_results[0]
    assert fr.outcome == "insert_failed"
    assert not fr.success
    assert fetch_transactions(db_url) == []
    with session_scope(database_url=db_url) as s:
        assert s.execute(select(func.count(IngestSourceFile.id))).scalar_one() == 0


def test_integrity_mismatch_is_reported_without_rollback(db_url, monkeypatch):
    monkeypatch.setattr(
        persistence,
        "stored_aggregate",
        lambda session, fingerprint: ExpectedAggregate(count=4, total_spending=Decimal("1.00")),
    )
    result = _upload(db_url, UploadFile("statement.csv", STATEMENT, convention="negative"))

    fr = result.file_results[0]
    assert fr.outcome == "integrity_mismatch"
    assert fr.integrity_mismatch
    assert not fr.success
    assert len(fetch_transactions(db_url)) == 5


def test_file_with_only_excluded_rows_writes_nothing(db_url):
    content = b"Date,Description,Amount,Type\n01/06/2024,PAYMENT,300.00,Payment\n"
    fr = _upload(db_url, UploadFile("statement.csv", content)).file_results[0]
    assert fr.success
    assert fr.transaction_count == 0
    with session_scope(database_url=db_url) as s:
        assert s.execute(select(func.count(IngestSourceFile.id))).scalar_one() == 0


def test_unique_fingerprint_index_rejects_a_racing_duplicate(db_url, monkeypatch):
    first = _upload(db_url, UploadFile("statement.csv", STATEMENT, convention="negative"))
    # A concurrent upload that passed the pre-check before the first one committed.
    monkeypatch.setattr(upload_mod, "find_source_file", lambda session, fingerprint: None)
    again = _upload(
        db_url,
        UploadFile("statement.csv", STATEMENT, convention="negative"),
        uploaded_at=T0 + timedelta(minutes=5),
    )

    assert first.success
    fr = again.file_results[0]
    assert fr.outcome == "duplicate"
    assert fr.source_file_hash == first.file_results[0].source_file_hash
    assert len(fetch_transactions(db_url)) == 5
    with session_scope(database_url=db_url) as s:
        assert s.execute(select(func.count(IngestSourceFile.id))).scalar_one() == 1


def test_sheet_without_columns_is_skipped_and_others_import(db_url):
    wb = Workbook()
    wb.remove(wb.active)
    notes = wb.create_sheet("Notes")
    notes.append(["Comment", "Owner"])
    notes.append(["call the bank", "sam"])
    activity = wb.create_sheet("Activity")
    activity.append(["Date", "Description", "Amount"])
    activity.append(["01/05/2024", "BOOKSHOP", -12.00])
    activity.append(["01/06/2024", "REFUND", 3.00])
    buf = BytesIO()
    wb.save(buf)

    result = _upload(db_url, UploadFile("book.xlsx", buf.getvalue(), convention="negative"))

    fr = result.file_results[0]
    assert fr.outcome == "succeeded"
    assert fr.transaction_count == 2
    assert fr.total_spending == Decimal("12.00")
    stats = {s.name: s for s in fr.sheets}
    assert stats["Notes"].skipped
    assert stats["Notes"].error
    assert not stats["Activity"].skipped
    assert stats["Activity"].valid_count == 2
    assert {r.sheet_name for r in fetch_transactions(db_url)} == {"Activity"}

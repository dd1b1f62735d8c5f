from decimal import Decimal

from statement_ingest import apply_category_preview, preview_cross_institution_categories
from statement_ingest.cross_institution import TrainingSample, predict_category
from tests.helpers.db import add_transaction, fetch_transactions, seed_categories


def _seed(db_url):
    ids = seed_categories(db_url)
    for merchant, cat in [
        ("starbucks", "Dining"),
        ("starbucks coffee #12", "Dining"),
        ("shell oil 5521", "Transportation"),
        ("shell gas station", "Transportation"),
    ]:
        add_transaction(
            db_url,
            user_id="u1",
            filename="Chase_2024.csv",
            merchant=merchant,
            amount_raw="-10.00",
            category_id=ids[cat],
            category=cat,
        )
    # Another user's history never trains this user's predictions.
    add_transaction(
        db_url,
        user_id="u2",
        filename="chase.csv",
        merchant="kpq zyx",
        amount_raw="-1.00",
        category_id=ids["Health"],
        category="Health",
    )
    coffee = add_transaction(
        db_url, user_id="u1", filename="amex_jan.csv", merchant="starbucks 0042", amount_raw="-6.10"
    )
    unknown = add_transaction(
        db_url, user_id="u1", filename="amex_jan.csv", merchant="kpq zyx", amount_raw="-3.00"
    )
    # Credits are not spending and are never targets.
    add_transaction(
        db_url, user_id="u1", filename="amex_jan.csv", merchant="refund", amount_raw="4.00"
    )
    return ids, coffee, unknown


def test_predict_category_votes_by_inverse_distance():
    training = [
        TrainingSample("starbucks", 1, "Dining"),
        TrainingSample("starbucks coffee", 1, "Dining"),
        TrainingSample("shell oil", 2, "Transportation"),
    ]
    sample, confidence = predict_category("STARBUCKS #42", training, k=5)
    assert sample.category_id == 1
    assert confidence > 0.99
    assert predict_category("anything", []) is None


def test_preview_does_not_write(db_url):
    ids, coffee, unknown = _seed(db_url)
    preview = preview_cross_institution_categories(
        user_id="u1", train_issuer="chase", target_issuer="amex", database_url=db_url
    )

    assert preview.training_samples == 4
    assert preview.uncategorized == 2
    by_id = {p.transaction_id: p for p in preview.predictions}
    assert by_id[coffee].category_id == ids["Dining"]
    assert not by_id[coffee].low_confidence
    assert by_id[unknown].low_confidence
    assert [p.transaction_id for p in preview.high_confidence] == [coffee]

    amex = fetch_transactions(db_url, source_filename="amex_jan.csv")
    assert all(r.category_id is None for r in amex)


def test_apply_skips_low_confidence_unless_asked(db_url):
    ids, coffee, unknown = _seed(db_url)
    preview = preview_cross_institution_categories(
        user_id="u1", train_issuer="chase", target_issuer="amex", database_url=db_url
    )

    assert apply_category_preview(preview, user_id="u1", database_url=db_url) == 1
    (row,) = fetch_transactions(db_url, id=coffee)
    assert row.category == "Dining"
    assert row.status == "approved"
    assert Decimal(str(row.amount_spending)) == Decimal("6.10")
    assert fetch_transactions(db_url, id=unknown)[0].category_id is None

    applied = apply_category_preview(
        preview, user_id="u1", include_low_confidence=True, database_url=db_url
    )
    # The high-confidence row is already categorized and is left alone.
    assert applied == 1
    (row,) = fetch_transactions(db_url, id=unknown)
    assert row.category_id is not None
    assert row.status == "pending_review"

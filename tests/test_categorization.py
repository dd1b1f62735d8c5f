from statement_ingest.categorize import (
    CategorizationEngine,
    MerchantRule,
    RuleBook,
    categorize_merchants,
)
from statement_ingest.settings import IngestSettings
from tests.helpers.db import add_merchant_rule, seed_categories

from ledger_db.client import session_scope


def _engine(*rules: MerchantRule) -> CategorizationEngine:
    return CategorizationEngine(
        RuleBook(rules=rules, category_ids={"dining": 1, "shopping": 2, "groceries": 3})
    )


def test_exact_rule_match_applies_boost_and_caps_at_one():
    engine = _engine(MerchantRule("blue bottle", 1, "Dining", confidence_boost=0.2))
    a = engine.categorize_one("Blue Bottle")
    assert (a.category_id, a.method, a.confidence_score, a.status) == (
        1,
        "rule_exact",
        1.0,
        "approved",
    )


def test_partial_rule_prefers_longest_merchant():
    engine = _engine(
        MerchantRule("amazon", 2, "Shopping"),
        MerchantRule("amazon fresh", 3, "Groceries"),
    )
    a = engine.categorize_one("amazon fresh order 123")
    assert a.method == "rule_partial"
    assert a.category_name == "Groceries"
    assert a.confidence_score == 0.85
    assert a.status == "approved"


def test_lexicon_whole_word_hit_is_approved():
    a = _engine().categorize_one("starbucks store 123")
    assert a.category_name == "Dining"
    assert a.category_id == 1
    assert a.method == "similarity"
    assert a.confidence_score == 0.8
    assert a.status == "approved"


def test_below_threshold_stays_pending():
    settings = IngestSettings(approval_threshold=0.9)
    engine = CategorizationEngine(RuleBook(category_ids={"dining": 1}), settings)
    a = engine.categorize_one("starbucks")
    assert a.category_id == 1
    assert a.status == "pending_review"


def test_unknown_merchant_has_no_category():
    a = _engine().categorize_one("kpq zyx")
    assert a.category_id is None
    assert a.confidence_score == 0.0
    assert a.status == "pending_review"


def test_lexicon_category_missing_from_db_is_never_approved():
    # "Travel" is in the default lexicon but not in this rule book's categories.
    a = _engine().categorize_one("marriott downtown")
    assert a.category_name == "Travel"
    assert a.category_id is None
    assert a.status == "pending_review"


def test_one_failing_merchant_does_not_fail_the_batch(monkeypatch):
    engine = _engine()
    original = engine.categorize_one

    def flaky(merchant: str):
        if merchant == "boom":
            raise RuntimeError("scoring failed")
        return original(merchant)

    monkeypatch.setattr(engine, "categorize_one", flaky)
    out = engine.categorize(["starbucks", "boom", "kpq zyx"])
    assert len(out) == 3
    assert out[0].status == "approved"
    assert out[1].category_id is None and out[1].status == "pending_review"


def test_rules_are_loaded_per_user(db_url):
    ids = seed_categories(db_url)
    add_merchant_rule(db_url, user_id="u1", merchant="joe's diner", category_id=ids["Dining"])
    with session_scope(database_url=db_url) as session:
        mine = categorize_merchants(session, ["joe's diner"], user_id="u1")
        theirs = categorize_merchants(session, ["joe's diner"], user_id="u2")
    assert mine[0].method == "rule_exact"
    assert mine[0].category_id == ids["Dining"]
    assert theirs[0].method != "rule_exact"

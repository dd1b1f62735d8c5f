from statement_ingest.merchants import is_payment_merchant, normalize_merchant


def test_normalize_collapses_and_casefolds():
    name = normalize_merchant("  STARBUCKS   Store\t#123 ")
    assert name.normalized == "starbucks store #123"
    assert name.original == "  STARBUCKS   Store\t#123 "


def test_unchanged_merchant_has_no_original():
    assert normalize_merchant("whole foods").original is None


def test_truncation():
    assert normalize_merchant("a" * 300, max_length=255).normalized == "a" * 255


def test_payment_merchants():
    assert is_payment_merchant("automatic payment - thank you")
    assert is_payment_merchant("payment thank you-mobile")
    assert is_payment_merchant("autopay 123")
    assert not is_payment_merchant("thank you for shopping")
    assert not is_payment_merchant("starbucks")

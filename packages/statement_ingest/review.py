"""Manual review of ``pending_review`` transactions.

A reviewer's decision sets the category on the transaction, approves it, and
teaches a merchant rule so later uploads of the same merchant categorize with
high confidence. Import placeholders (rows whose amount or date could not be
read) are repaired through :func:`resolve_placeholder`, which fills in the
missing values and derives spending under the row's stored convention.

The caller owns the transaction boundary (commit/rollback).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from ledger_db.models.ledger import IngestCategory, IngestMerchantRule, IngestTransaction
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from .conventions import spending_amount
from .logging_setup import get_logger, log_event
from .merchants import is_payment_merchant, normalize_merchant
from .models import AmountConvention
from .normalizers import parse_amount
from .persistence import UNKNOWN_MERCHANT
from .settings import IngestSettings

_logger = get_logger("statement_ingest.review")

# Boost granted to rules learned from a manual decision.
MANUAL_RULE_BOOST = Decimal("0.20")
# Bulk corrections cover every row of a merchant, so they are trusted more.
BULK_RULE_BOOST = Decimal("0.30")

_CENT = Decimal("0.01")
_CERTAIN = Decimal("1.000")


@dataclass(frozen=True, slots=True)
class PendingTransaction:
    transaction_id: int
    source_filename: str
    transaction_date: date | None
    merchant: str
    amount_spending: Decimal
    category: str | None
    confidence_score: float | None
    import_error_reason: str | None


def list_pending_review(
    session: Session, user_id: str, *, limit: int | None = None
) -> list[PendingTransaction]:
    """Return the user's ``pending_review`` rows, oldest upload first."""

    stmt = (
        select(
            IngestTransaction.id,
            IngestTransaction.source_filename,
            IngestTransaction.transaction_date,
            IngestTransaction.merchant,
            IngestTransaction.amount_spending,
            IngestTransaction.category,
            IngestTransaction.confidence_score,
            IngestTransaction.import_error_reason,
        )
        .where(IngestTransaction.user_id == user_id, IngestTransaction.status == "pending_review")
        .order_by(IngestTransaction.uploaded_at, IngestTransaction.id)
    )
    if limit is not None:
        stmt = stmt.limit(limit)
    return [
        PendingTransaction(
            transaction_id=tx_id,
            source_filename=filename,
            transaction_date=tx_date,
            merchant=merchant,
            amount_spending=Decimal(str(spending)),
            category=category,
            confidence_score=None if confidence is None else float(confidence),
            import_error_reason=reason,
        )
        for tx_id, filename, tx_date, merchant, spending, category, confidence, reason in (
            session.execute(stmt).all()
        )
    ]


def upsert_merchant_rule(
    session: Session,
    *,
    user_id: str,
    merchant: str,
    category_id: int,
    confidence_boost: Decimal = MANUAL_RULE_BOOST,
    manual: bool = True,
) -> None:
    """Create or retarget the ``(user_id, merchant)`` rule."""

    key = normalize_merchant(merchant).normalized
    existing = session.execute(
        select(IngestMerchantRule.id).where(
            IngestMerchantRule.user_id == user_id,
            IngestMerchantRule.merchant_normalized == key,
        )
    ).scalar_one_or_none()
    if existing is None:
        session.add(
            IngestMerchantRule(
                user_id=user_id,
                merchant_normalized=key,
                category_id=category_id,
                confidence_boost=confidence_boost,
                created_from_manual_override=manual,
            )
        )
    else:
        session.execute(
            update(IngestMerchantRule)
            .where(IngestMerchantRule.id == existing)
            .values(
                category_id=category_id,
                confidence_boost=confidence_boost,
                created_from_manual_override=manual,
                updated_at=func.now(),
            )
        )
    session.flush()


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class _Row:
    merchant: str
    category_id: int | None
    amount_convention: str
    import_error_reason: str | None


def _owned_row(session: Session, user_id: str, transaction_id: int) -> _Row:
    found = session.execute(
        select(
            IngestTransaction.merchant,
            IngestTransaction.category_id,
            IngestTransaction.amount_convention,
            IngestTransaction.import_error_reason,
        ).where(IngestTransaction.id == transaction_id, IngestTransaction.user_id == user_id)
    ).one_or_none()
    if found is None:
        raise LookupError(f"transaction {transaction_id} not found for user {user_id!r}")
    return _Row(*found)


def _category(session: Session, category_id: int) -> IngestCategory:
    category = session.get(IngestCategory, category_id)
    if category is None:
        raise LookupError(f"category {category_id} does not exist")
    return category


# ---------------------------------------------------------------------------
# Decisions on single rows
# ---------------------------------------------------------------------------


def record_review_decision(
    session: Session, *, user_id: str, transaction_id: int, category_id: int
) -> None:
    """Approve a transaction under ``category_id`` and learn a merchant rule.

    Raises
    ------
    LookupError
        When the transaction does not belong to ``user_id`` or the category
        does not exist.
    ValueError
        When the transaction is an import placeholder; those carry no amount
        yet and go through :func:`resolve_placeholder`.
    """

    row = _owned_row(session, user_id, transaction_id)
    if row.import_error_reason is not None:
        raise ValueError(
            f"transaction {transaction_id} is an import placeholder "
            f"({row.import_error_reason}); resolve it with its amount and date"
        )
    category = _category(session, category_id)

    session.execute(
        update(IngestTransaction)
        .where(IngestTransaction.id == transaction_id)
        .values(
            category_id=category_id,
            category=category.name,
            confidence_score=_CERTAIN,
            status="approved",
            updated_at=func.now(),
        )
    )
    upsert_merchant_rule(session, user_id=user_id, merchant=row.merchant, category_id=category_id)
    log_event(
        _logger,
        "review:decision",
        transaction_id=transaction_id,
        category=category.name,
        merchant=row.merchant,
    )


def accept_suggestion(session: Session, *, user_id: str, transaction_id: int) -> None:
    """Approve the category the engine already suggested and learn a rule for it.

    The suggested confidence score is kept.

    Raises
    ------
    LookupError
        When the transaction does not belong to ``user_id``.
    ValueError
        When the transaction has no suggested category or is a placeholder.
    """

    row = _owned_row(session, user_id, transaction_id)
    if row.import_error_reason is not None or row.category_id is None:
        raise ValueError(f"transaction {transaction_id} has no suggested category to accept")

    session.execute(
        update(IngestTransaction)
        .where(IngestTransaction.id == transaction_id)
        .values(status="approved", updated_at=func.now())
    )
    upsert_merchant_rule(
        session, user_id=user_id, merchant=row.merchant, category_id=row.category_id
    )
    log_event(_logger, "review:accepted", transaction_id=transaction_id, merchant=row.merchant)


def resolve_placeholder(
    session: Session,
    *,
    user_id: str,
    transaction_id: int,
    amount_raw: Decimal | str,
    transaction_date: date,
    category_id: int,
    settings: IngestSettings | None = None,
) -> Decimal:
    """Repair an import placeholder and approve it; return its spending amount.

    ``amount_raw`` is the signed amount as it appears on the statement. Spending,
    credit, and payment flags are derived under the convention the row was
    imported with, exactly as at upload time. The import error is cleared and a
    merchant rule is learned.

    Raises
    ------
    LookupError
        When the transaction does not belong to ``user_id`` or the category
        does not exist.
    ValueError
        When the transaction is not a placeholder, or the amount is unreadable
        or zero.
    """

    settings = settings or IngestSettings()
    row = _owned_row(session, user_id, transaction_id)
    if row.import_error_reason is None:
        raise ValueError(f"transaction {transaction_id} is not an import placeholder")
    amount = parse_amount(amount_raw).quantize(_CENT, rounding=ROUND_HALF_UP)
    if amount == 0:
        raise ValueError("a resolved amount must be non-zero")
    category = _category(session, category_id)

    convention = AmountConvention(row.amount_convention)
    is_payment = is_payment_merchant(row.merchant, settings)
    spending = spending_amount(amount, convention, is_payment=is_payment)
    values: dict[str, Any] = {
        "amount_raw": amount,
        "transaction_date": transaction_date,
        "amount_spending": spending,
        "is_payment": is_payment,
        "is_credit": not is_payment and spending_amount(amount, convention) == 0,
        "category_id": category_id,
        "category": category.name,
        "confidence_score": _CERTAIN,
        "status": "approved",
        "import_error_reason": None,
        "import_error_message": None,
        "updated_at": func.now(),
    }
    session.execute(
        update(IngestTransaction).where(IngestTransaction.id == transaction_id).values(**values)
    )
    if row.merchant != UNKNOWN_MERCHANT:
        upsert_merchant_rule(
            session, user_id=user_id, merchant=row.merchant, category_id=category_id
        )
    log_event(
        _logger,
        "review:placeholder_resolved",
        transaction_id=transaction_id,
        reason=row.import_error_reason,
        convention=convention.value,
        amount_spending=spending,
    )
    return spending


# ---------------------------------------------------------------------------
# Bulk decisions
# ---------------------------------------------------------------------------


def accept_all_pending(session: Session, *, user_id: str) -> int:
    """Approve every pending row that carries a suggested category.

    Placeholders and uncategorized rows stay pending. One rule is learned per
    merchant; when a merchant has several suggestions, the latest row wins.
    Returns the number of approved rows.
    """

    pending = session.execute(
        select(IngestTransaction.id, IngestTransaction.merchant, IngestTransaction.category_id)
        .where(
            IngestTransaction.user_id == user_id,
            IngestTransaction.status == "pending_review",
            IngestTransaction.category_id.is_not(None),
            IngestTransaction.import_error_reason.is_(None),
        )
        .order_by(IngestTransaction.id)
    ).all()
    if not pending:
        return 0

    session.execute(
        update(IngestTransaction)
        .where(IngestTransaction.id.in_([tx_id for tx_id, _m, _c in pending]))
        .values(status="approved", updated_at=func.now())
    )
    rules = {merchant: category_id for _id, merchant, category_id in pending}
    for merchant, category_id in rules.items():
        upsert_merchant_rule(session, user_id=user_id, merchant=merchant, category_id=category_id)
    log_event(_logger, "review:accepted_all", approved=len(pending), rules=len(rules))
    return len(pending)


def bulk_apply_category(
    session: Session, *, user_id: str, merchant: str, category_id: int
) -> int:
    """Categorize and approve every uncategorized row of ``merchant``.

    Placeholders are left alone. A rule is learned only when at least one row
    changed. Returns the number of updated rows.

    Raises
    ------
    LookupError
        When the category does not exist.
    """

    category = _category(session, category_id)
    key = normalize_merchant(merchant).normalized
    updated = session.execute(
        update(IngestTransaction)
        .where(
            IngestTransaction.user_id == user_id,
            IngestTransaction.merchant == key,
            IngestTransaction.category_id.is_(None),
            IngestTransaction.import_error_reason.is_(None),
        )
        .values(
            category_id=category_id,
            category=category.name,
            confidence_score=_CERTAIN,
            status="approved",
            updated_at=func.now(),
        )
    ).rowcount
    if updated:
        upsert_merchant_rule(
            session,
            user_id=user_id,
            merchant=key,
            category_id=category_id,
            confidence_boost=BULK_RULE_BOOST,
        )
    log_event(
        _logger, "review:bulk_applied", merchant=key, category=category.name, updated=updated
    )
    return updated


__all__ = [
    "BULK_RULE_BOOST",
    "MANUAL_RULE_BOOST",
    "PendingTransaction",
    "accept_all_pending",
    "accept_suggestion",
    "bulk_apply_category",
    "list_pending_review",
    "record_review_decision",
    "resolve_placeholder",
    "upsert_merchant_rule",
]

"""Public API for the ``statement_ingest`` package.

Upload entry points are re-exported from :mod:`statement_ingest.upload`. The
database-backed helpers here open their own ``session_scope`` so callers only
pass a ``database_url`` (or rely on ``DATABASE_URL``).
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from ledger_db.client import session_scope

from .cross_institution import CategoryPreview
from .cross_institution import apply_category_preview as _apply_preview
from .cross_institution import preview_cross_institution_categories as _preview
from .persistence import SourceFileSummary
from .persistence import cleanup_orphaned_source_files as _cleanup_orphans
from .persistence import summarize_source_file as _summarize
from .review import PendingTransaction
from .review import accept_all_pending as _accept_all
from .review import accept_suggestion as _accept
from .review import bulk_apply_category as _bulk_apply
from .review import list_pending_review as _list_pending
from .review import record_review_decision as _record_decision
from .review import resolve_placeholder as _resolve_placeholder
from .settings import IngestSettings
from .upload import suggest_convention, upload_file, upload_statements  # noqa: F401  (re-export)


def preview_cross_institution_categories(
    *,
    user_id: str,
    train_issuer: str,
    target_issuer: str,
    database_url: str | None = None,
    settings: IngestSettings | None = None,
) -> CategoryPreview:
    """Propose categories for ``target_issuer`` rows from ``train_issuer`` history (read-only)."""

    with session_scope(database_url=database_url) as session:
        return _preview(
            session,
            user_id=user_id,
            train_issuer=train_issuer,
            target_issuer=target_issuer,
            settings=settings,
        )


def apply_category_preview(
    preview: CategoryPreview,
    *,
    user_id: str,
    include_low_confidence: bool = False,
    database_url: str | None = None,
    settings: IngestSettings | None = None,
) -> int:
    """Persist a reviewed preview; returns the number of transactions updated."""

    with session_scope(database_url=database_url) as session:
        return _apply_preview(
            session,
            preview,
            user_id=user_id,
            include_low_confidence=include_low_confidence,
            settings=settings,
        )


def cleanup_orphaned_source_files(*, user_id: str, database_url: str | None = None) -> int:
    with session_scope(database_url=database_url) as session:
        return _cleanup_orphans(session, user_id)


def summarize_source_file(
    *, user_id: str, fingerprint: str, database_url: str | None = None
) -> SourceFileSummary | None:
    with session_scope(database_url=database_url) as session:
        return _summarize(session, user_id, fingerprint)


def list_pending_review(
    *, user_id: str, limit: int | None = None, database_url: str | None = None
) -> list[PendingTransaction]:
    with session_scope(database_url=database_url) as session:
        return _list_pending(session, user_id, limit=limit)


def record_review_decision(
    *, user_id: str, transaction_id: int, category_id: int, database_url: str | None = None
) -> None:
    """Approve one transaction under ``category_id`` and remember the merchant."""

    with session_scope(database_url=database_url) as session:
        _record_decision(
            session, user_id=user_id, transaction_id=transaction_id, category_id=category_id
        )


def accept_suggestion(
    *, user_id: str, transaction_id: int, database_url: str | None = None
) -> None:
    with session_scope(database_url=database_url) as session:
        _accept(session, user_id=user_id, transaction_id=transaction_id)


def accept_all_pending(*, user_id: str, database_url: str | None = None) -> int:
    with session_scope(database_url=database_url) as session:
        return _accept_all(session, user_id=user_id)


def bulk_apply_category(
    *, user_id: str, merchant: str, category_id: int, database_url: str | None = None
) -> int:
    with session_scope(database_url=database_url) as session:
        return _bulk_apply(session, user_id=user_id, merchant=merchant, category_id=category_id)


def resolve_placeholder(
    *,
    user_id: str,
    transaction_id: int,
    amount_raw: Decimal | str,
    transaction_date: date,
    category_id: int,
    database_url: str | None = None,
    settings: IngestSettings | None = None,
) -> Decimal:
    """Fill in a placeholder's amount and date, approve it, and return its spending."""

    with session_scope(database_url=database_url) as session:
        return _resolve_placeholder(
            session,
            user_id=user_id,
            transaction_id=transaction_id,
            amount_raw=amount_raw,
            transaction_date=transaction_date,
            category_id=category_id,
            settings=settings,
        )


__all__ = [
    "accept_all_pending",
    "accept_suggestion",
    "apply_category_preview",
    "bulk_apply_category",
    "cleanup_orphaned_source_files",
    "list_pending_review",
    "preview_cross_institution_categories",
    "record_review_decision",
    "resolve_placeholder",
    "suggest_convention",
    "summarize_source_file",
    "upload_file",
    "upload_statements",
]

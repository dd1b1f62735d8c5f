"""DB helpers for tests: bootstrap a temporary SQLite DB and seed categories/rules."""

from __future__ import annotations

import hashlib
import os
from collections.abc import Iterable
from datetime import UTC, date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any

from ledger_db import Base
from ledger_db.client import get_engine, session_scope
from ledger_db.models.ledger import (
    IngestCategory,
    IngestMerchantRule,
    IngestSourceFile,
    IngestTransaction,
)
from sqlalchemy import event, select

DEFAULT_CATEGORIES = (
    "Housing",
    "Utilities",
    "Groceries",
    "Dining",
    "Transportation",
    "Travel",
    "Shopping",
    "Health",
    "Entertainment",
    "Subscriptions",
)


def bootstrap_sqlite_db(db_file: Path, *, set_default_env: bool = False) -> str:
    """Create a SQLite database file, initialize schema, and return the URL.

    Using a file-backed SQLite DB ensures multiple SQLAlchemy connections share
    the same state (in-memory DBs are per-connection by default).
    """

    url = f"sqlite+pysqlite:///{db_file}"
    db_file.parent.mkdir(parents=True, exist_ok=True)
    engine = get_engine(database_url=url)

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_conn, _):  # pragma: no cover - tiny bridge
        dbapi_conn.execute("PRAGMA foreign_keys = ON")

    Base.metadata.create_all(bind=engine)

    if set_default_env:
        os.environ.setdefault("DATABASE_URL", url)
    return url


def seed_categories(
    database_url: str, names: Iterable[str] = DEFAULT_CATEGORIES
) -> dict[str, int]:
    """Insert categories and return ``{name: id}``."""

    with session_scope(database_url=database_url) as session:
        rows = [IngestCategory(name=n) for n in names]
        session.add_all(rows)
        session.flush()
        return {r.name: r.id for r in rows}


def add_merchant_rule(
    database_url: str,
    *,
    user_id: str,
    merchant: str,
    category_id: int,
    boost: str = "0.00",
    manual: bool = False,
) -> None:
    with session_scope(database_url=database_url) as session:
        session.add(
            IngestMerchantRule(
                user_id=user_id,
                merchant_normalized=merchant,
                category_id=category_id,
                confidence_boost=Decimal(boost),
                created_from_manual_override=manual,
            )
        )


def fetch_transactions(database_url: str, **filters: Any) -> list[IngestTransaction]:
    """Return transactions matching ``column=value`` filters, ordered by id."""

    with session_scope(database_url=database_url) as session:
        stmt = select(IngestTransaction).order_by(IngestTransaction.id)
        for column, value in filters.items():
            stmt = stmt.where(getattr(IngestTransaction, column) == value)
        return list(session.execute(stmt).scalars())


def add_transaction(
    database_url: str,
    *,
    user_id: str,
    filename: str,
    merchant: str,
    amount_raw: str,
    category_id: int | None = None,
    category: str | None = None,
    status: str | None = None,
    confidence: str | None = None,
) -> int:
    """Insert one negative-convention spending row (creating its source file on demand).

    Rows with a category default to approved at full confidence; pass
    ``status="pending_review"`` and a ``confidence`` for a suggested category.
    """

    fingerprint = hashlib.sha256(f"{user_id}|{filename}".encode()).hexdigest()
    uploaded_at = datetime(2024, 1, 1, tzinfo=UTC)
    raw = Decimal(amount_raw)
    with session_scope(database_url=database_url) as session:
        source = session.execute(
            select(IngestSourceFile).where(IngestSourceFile.fingerprint_sha256 == fingerprint)
        ).scalar_one_or_none()
        if source is None:
            source = IngestSourceFile(
                user_id=user_id,
                filename=filename,
                fingerprint_sha256=fingerprint,
                uploaded_at=uploaded_at,
                amount_convention="negative",
                convention_source="override",
            )
            session.add(source)
            session.flush()
        tx = IngestTransaction(
            user_id=user_id,
            source_file_id=source.id,
            source_filename=filename,
            source_file_hash=fingerprint,
            uploaded_at=uploaded_at,
            transaction_date=date(2024, 1, 2),
            merchant=merchant,
            amount_raw=raw,
            amount_spending=-raw if raw < 0 else Decimal("0"),
            amount_convention="negative",
            is_credit=raw > 0,
            is_payment=False,
            category_id=category_id,
            category=category,
            confidence_score=(
                Decimal(confidence) if confidence else Decimal("1.000") if category_id else None
            ),
            status=status or ("approved" if category_id else "pending_review"),
            raw_record={"merchant": merchant, "amount": amount_raw},
        )
        session.add(tx)
        session.flush()
        return tx.id


def add_source_file(database_url: str, *, user_id: str, filename: str) -> int:
    """Insert a source file row with no transactions."""

    with session_scope(database_url=database_url) as session:
        source = IngestSourceFile(
            user_id=user_id,
            filename=filename,
            fingerprint_sha256=hashlib.sha256(f"orphan|{user_id}|{filename}".encode()).hexdigest(),
            uploaded_at=datetime(2024, 1, 1, tzinfo=UTC),
            amount_convention="negative",
            convention_source="default",
        )
        session.add(source)
        session.flush()
        return source.id

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    CHAR,
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    false,
    func,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# SQLite only autoincrements INTEGER PRIMARY KEY (rowid) columns.
_PK = BigInteger().with_variant(Integer(), "sqlite")


class Base(DeclarativeBase):
    pass


# ---------------------------
# Reference: ingest_categories
# ---------------------------


class IngestCategory(Base):
    __tablename__ = "ingest_categories"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    # Seeded and owned outside the ingestion pipeline; read here as an id<->name lookup.
    name: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


# ---------------------------
# Learned: ingest_merchant_rules
# ---------------------------


class IngestMerchantRule(Base):
    __tablename__ = "ingest_merchant_rules"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    # Stored in the merchant normalizer's canonical form (trimmed, collapsed, casefolded).
    merchant_normalized: Mapped[str] = mapped_column(Text, nullable=False)
    category_id: Mapped[int] = mapped_column(
        _PK, ForeignKey("ingest_categories.id"), nullable=False
    )
    confidence_boost: Mapped[Decimal] = mapped_column(
        Numeric(3, 2), nullable=False, server_default=text("0")
    )
    created_from_manual_override: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=false()
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        UniqueConstraint("user_id", "merchant_normalized", name="uq_ingest_rule_user_merchant"),
        CheckConstraint(
            "confidence_boost >= 0 AND confidence_boost <= 1",
            name="ck_ingest_rule_confidence_boost",
        ),
    )


# ---------------------------
# Batch arena: ingest_source_files
# ---------------------------


class IngestSourceFile(Base):
    __tablename__ = "ingest_source_files"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    filename: Mapped[str] = mapped_column(Text, nullable=False)
    # Upload fingerprint. The unique index is the duplicate-upload guard; the
    # orchestrator's pre-check only short-circuits the common case.
    fingerprint_sha256: Mapped[str] = mapped_column(CHAR(64), nullable=False, unique=True)
    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    amount_convention: Mapped[str] = mapped_column(String, nullable=False)
    convention_source: Mapped[str] = mapped_column(String, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint(
            "amount_convention in ('negative','positive')",
            name="ck_ingest_sf_amount_convention",
        ),
        CheckConstraint(
            "convention_source in ('override','filename','statistics','default')",
            name="ck_ingest_sf_convention_source",
        ),
        Index("ix_ingest_sf_user", "user_id"),
    )


# ---------------------------
# Core: ingest_transactions
# ---------------------------


class IngestTransaction(Base):
    __tablename__ = "ingest_transactions"

    id: Mapped[int] = mapped_column(_PK, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    source_file_id: Mapped[int] = mapped_column(
        _PK, ForeignKey("ingest_source_files.id", ondelete="CASCADE"), nullable=False
    )
    source_filename: Mapped[str] = mapped_column(Text, nullable=False)
    source_file_hash: Mapped[str] = mapped_column(CHAR(64), nullable=False)
    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    sheet_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    row_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    # NULL only on import-error placeholders.
    transaction_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    merchant: Mapped[str] = mapped_column(Text, nullable=False)
    # Exact source value with its original sign; NULL only on placeholders.
    amount_raw: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    # Derived once at write time from amount_raw + the batch convention.
    amount_spending: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    amount_convention: Mapped[str] = mapped_column(String, nullable=False)
    is_credit: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=false())
    is_payment: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=false())
    category_id: Mapped[int | None] = mapped_column(
        _PK, ForeignKey("ingest_categories.id"), nullable=True
    )
    category: Mapped[str | None] = mapped_column(String, nullable=True)
    confidence_score: Mapped[Decimal | None] = mapped_column(Numeric(4, 3), nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False)
    import_error_reason: Mapped[str | None] = mapped_column(String, nullable=True)
    import_error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Original merchant text when normalization changed it.
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    raw_record: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint("amount_spending >= 0", name="ck_ingest_tx_spending_non_negative"),
        CheckConstraint(
            (
                "(import_error_reason IS NOT NULL AND amount_spending = 0) OR "
                "(amount_spending > 0 AND NOT is_credit AND NOT is_payment) OR "
                "(amount_spending = 0 AND (is_credit OR is_payment))"
            ),
            name="ck_ingest_tx_spending_flags",
        ),
        CheckConstraint(
            "NOT is_payment OR amount_spending = 0",
            name="ck_ingest_tx_payment_not_spending",
        ),
        # Round trip: amount_raw + convention (+ is_payment) recomputes amount_spending.
        CheckConstraint(
            (
                "import_error_reason IS NOT NULL OR is_payment OR "
                "(amount_convention = 'negative' AND amount_spending = "
                "CASE WHEN amount_raw < 0 THEN -amount_raw ELSE 0 END) OR "
                "(amount_convention = 'positive' AND amount_spending = "
                "CASE WHEN amount_raw > 0 THEN amount_raw ELSE 0 END)"
            ),
            name="ck_ingest_tx_spending_derivation",
        ),
        CheckConstraint("length(trim(merchant)) > 0", name="ck_ingest_tx_merchant_not_empty"),
        CheckConstraint(
            "amount_convention in ('negative','positive')",
            name="ck_ingest_tx_amount_convention",
        ),
        CheckConstraint(
            "status in ('approved','pending_review')",
            name="ck_ingest_tx_status",
        ),
        CheckConstraint(
            (
                "import_error_reason IS NULL OR "
                "import_error_reason in ('date_parse','amount_parse','other')"
            ),
            name="ck_ingest_tx_import_error_reason",
        ),
        CheckConstraint(
            (
                "import_error_reason IS NULL OR "
                "(status = 'pending_review' AND amount_raw IS NULL)"
            ),
            name="ck_ingest_tx_placeholder_shape",
        ),
        CheckConstraint(
            (
                "import_error_reason IS NOT NULL OR "
                "(amount_raw IS NOT NULL AND transaction_date IS NOT NULL)"
            ),
            name="ck_ingest_tx_valid_row_shape",
        ),
        CheckConstraint(
            "status <> 'approved' OR category_id IS NOT NULL",
            name="ck_ingest_tx_approved_has_category",
        ),
        CheckConstraint(
            "confidence_score IS NULL OR (confidence_score >= 0 AND confidence_score <= 1)",
            name="ck_ingest_tx_confidence_score",
        ),
        Index("ix_ingest_tx_source_file_hash", "source_file_hash"),
        Index("ix_ingest_tx_user_status", "user_id", "status"),
    )


__all__ = [
    "Base",
    "IngestCategory",
    "IngestMerchantRule",
    "IngestSourceFile",
    "IngestTransaction",
]

# ruff: noqa: I001
"""Statement-ingestion core tables (write-time spending model).

Revision ID: 0001_ingest_core
Revises: None
Create Date: 2026-10-19
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "0001_ingest_core"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


_PK = sa.BigInteger().with_variant(sa.Integer(), "sqlite")
_JSON = sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql")


def _timestamps(*, with_updated: bool = True) -> list[sa.Column]:
    cols = [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        )
    ]
    if with_updated:
        cols.append(
            sa.Column(
                "updated_at",
                sa.DateTime(timezone=True),
                nullable=False,
                server_default=sa.func.now(),
            )
        )
    return cols


def upgrade() -> None:
    # ingest_categories (seeded elsewhere)
    op.create_table(
        "ingest_categories",
        sa.Column("id", _PK, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(), nullable=False, unique=True),
        *_timestamps(with_updated=False),
    )

    # ingest_merchant_rules
    op.create_table(
        "ingest_merchant_rules",
        sa.Column("id", _PK, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("merchant_normalized", sa.Text(), nullable=False),
        sa.Column("category_id", _PK, nullable=False),
        sa.Column(
            "confidence_boost", sa.Numeric(3, 2), nullable=False, server_default=sa.text("0")
        ),
        sa.Column(
            "created_from_manual_override",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ["category_id"], ["ingest_categories.id"], name="fk_ingest_rule_category"
        ),
        sa.UniqueConstraint(
            "user_id", "merchant_normalized", name="uq_ingest_rule_user_merchant"
        ),
        sa.CheckConstraint(
            "confidence_boost >= 0 AND confidence_boost <= 1",
            name="ck_ingest_rule_confidence_boost",
        ),
    )

    # ingest_source_files
    op.create_table(
        "ingest_source_files",
        sa.Column("id", _PK, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("filename", sa.Text(), nullable=False),
        sa.Column("fingerprint_sha256", sa.CHAR(64), nullable=False),
        sa.Column("uploaded_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("amount_convention", sa.String(), nullable=False),
        sa.Column("convention_source", sa.String(), nullable=False),
        *_timestamps(with_updated=False),
        sa.CheckConstraint(
            "amount_convention in ('negative','positive')",
            name="ck_ingest_sf_amount_convention",
        ),
        sa.CheckConstraint(
            "convention_source in ('override','filename','statistics','default')",
            name="ck_ingest_sf_convention_source",
        ),
    )
    op.create_index(
        "uq_ingest_sf_fingerprint",
        "ingest_source_files",
        ["fingerprint_sha256"],
        unique=True,
    )
    op.create_index("ix_ingest_sf_user", "ingest_source_files", ["user_id"])

    # ingest_transactions
    op.create_table(
        "ingest_transactions",
        sa.Column("id", _PK, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("source_file_id", _PK, nullable=False),
        sa.Column("source_filename", sa.Text(), nullable=False),
        sa.Column("source_file_hash", sa.CHAR(64), nullable=False),
        sa.Column("uploaded_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("sheet_name", sa.Text(), nullable=True),
        sa.Column("row_number", sa.Integer(), nullable=True),
        sa.Column("transaction_date", sa.Date(), nullable=True),
        sa.Column("merchant", sa.Text(), nullable=False),
        sa.Column("amount_raw", sa.Numeric(12, 2), nullable=True),
        sa.Column("amount_spending", sa.Numeric(12, 2), nullable=False),
        sa.Column("amount_convention", sa.String(), nullable=False),
        sa.Column("is_credit", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_payment", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("category_id", _PK, nullable=True),
        sa.Column("category", sa.String(), nullable=True),
        sa.Column("confidence_score", sa.Numeric(4, 3), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("import_error_reason", sa.String(), nullable=True),
        sa.Column("import_error_message", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("raw_record", _JSON, nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ["source_file_id"],
            ["ingest_source_files.id"],
            name="fk_ingest_tx_source_file",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["category_id"], ["ingest_categories.id"], name="fk_ingest_tx_category"
        ),
        sa.CheckConstraint("amount_spending >= 0", name="ck_ingest_tx_spending_non_negative"),
        sa.CheckConstraint(
            (
                "(import_error_reason IS NOT NULL AND amount_spending = 0) OR "
                "(amount_spending > 0 AND NOT is_credit AND NOT is_payment) OR "
                "(amount_spending = 0 AND (is_credit OR is_payment))"
            ),
            name="ck_ingest_tx_spending_flags",
        ),
        sa.CheckConstraint(
            "NOT is_payment OR amount_spending = 0",
            name="ck_ingest_tx_payment_not_spending",
        ),
        sa.CheckConstraint(
            (
                "import_error_reason IS NOT NULL OR is_payment OR "
                "(amount_convention = 'negative' AND amount_spending = "
                "CASE WHEN amount_raw < 0 THEN -amount_raw ELSE 0 END) OR "
                "(amount_convention = 'positive' AND amount_spending = "
                "CASE WHEN amount_raw > 0 THEN amount_raw ELSE 0 END)"
            ),
            name="ck_ingest_tx_spending_derivation",
        ),
        sa.CheckConstraint(
            "length(trim(merchant)) > 0", name="ck_ingest_tx_merchant_not_empty"
        ),
        sa.CheckConstraint(
            "amount_convention in ('negative','positive')",
            name="ck_ingest_tx_amount_convention",
        ),
        sa.CheckConstraint("status in ('approved','pending_review')", name="ck_ingest_tx_status"),
        sa.CheckConstraint(
            (
                "import_error_reason IS NULL OR "
                "import_error_reason in ('date_parse','amount_parse','other')"
            ),
            name="ck_ingest_tx_import_error_reason",
        ),
        sa.CheckConstraint(
            "import_error_reason IS NULL OR (status = 'pending_review' AND amount_raw IS NULL)",
            name="ck_ingest_tx_placeholder_shape",
        ),
        sa.CheckConstraint(
            (
                "import_error_reason IS NOT NULL OR "
                "(amount_raw IS NOT NULL AND transaction_date IS NOT NULL)"
            ),
            name="ck_ingest_tx_valid_row_shape",
        ),
        sa.CheckConstraint(
            "status <> 'approved' OR category_id IS NOT NULL",
            name="ck_ingest_tx_approved_has_category",
        ),
        sa.CheckConstraint(
            "confidence_score IS NULL OR (confidence_score >= 0 AND confidence_score <= 1)",
            name="ck_ingest_tx_confidence_score",
        ),
    )
    op.create_index(
        "ix_ingest_tx_source_file_hash", "ingest_transactions", ["source_file_hash"]
    )
    op.create_index("ix_ingest_tx_user_status", "ingest_transactions", ["user_id", "status"])


def downgrade() -> None:
    op.drop_index("ix_ingest_tx_user_status", table_name="ingest_transactions")
    op.drop_index("ix_ingest_tx_source_file_hash", table_name="ingest_transactions")
    op.drop_table("ingest_transactions")
    op.drop_index("ix_ingest_sf_user", table_name="ingest_source_files")
    op.drop_index("uq_ingest_sf_fingerprint", table_name="ingest_source_files")
    op.drop_table("ingest_source_files")
    op.drop_table("ingest_merchant_rules")
    op.drop_table("ingest_categories")

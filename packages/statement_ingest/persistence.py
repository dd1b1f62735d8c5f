# ruff: noqa: I001
"""Persistence integration for statement uploads.

Functions here write upload batches to the shared database owned by
``libs/db``. They rely on SQLAlchemy ORM models defined in
``ledger_db.models.ledger``; sessions come from ``ledger_db.client``.

Scope:
- Compute the upload fingerprint (duplicate-upload key).
- Build transaction records (valid rows and import-error placeholders) with
  write-time spending derivation.
- Insert a batch (source file row + transactions) inside the caller's
  transaction, in bounded chunks.
- Verify stored count/sum against the expected aggregate after commit.
- Summaries and orphan cleanup for source files.
"""

from __future__ import annotations

import hashlib
import re
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from sqlalchemy import delete, exists, func, insert, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ledger_db.models.ledger import IngestSourceFile, IngestTransaction
from .conventions import spending_amount
from .errors import DuplicateFileError, InsertFailure, IntegrityMismatch
from .logging_setup import get_logger
from .merchants import is_payment_merchant, normalize_merchant
from .models import (
    CategoryAssignment,
    ColumnMapping,
    ConventionDecision,
    NormalizationError,
    NormalizedTransaction,
    RawRow,
)
from .normalizers import parse_date
from .settings import IngestSettings

_logger = get_logger("statement_ingest.persistence")

_CENT = Decimal("0.01")
_ZERO = Decimal("0")
UNKNOWN_MERCHANT = "unknown merchant"
_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def _to_decimal_2(d: Decimal) -> Decimal:
    return d.quantize(_CENT, rounding=ROUND_HALF_UP)


def _as_decimal(raw: Any) -> Decimal:
    # SQLite hands back floats for NUMERIC aggregates; go through str to keep cents exact.
    if raw is None:
        return _ZERO
    return _to_decimal_2(raw if isinstance(raw, Decimal) else Decimal(str(raw)))


def _jsonable(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


def raw_record_json(row: RawRow) -> dict[str, Any]:
    """Copy a raw row into a JSON-safe mapping (dates as ISO strings, decimals as text)."""

    return {str(k): _jsonable(v) for k, v in row.items()}


def sanitize_filename(filename: str) -> str:
    """Reduce a client-supplied filename to ``[A-Za-z0-9._-]`` for storage."""

    base = filename.replace("\\", "/").rsplit("/", 1)[-1]
    cleaned = _UNSAFE_FILENAME_CHARS.sub("_", base).strip("._")
    return cleaned or "upload"


# ---------------------------------------------------------------------------
# Fingerprint
# ---------------------------------------------------------------------------


def compute_fingerprint(
    *,
    filename: str,
    user_id: str,
    uploaded_at: datetime,
    bucket_seconds: int = 3600,
) -> str:
    """SHA-256 over ``filename|user_id|bucket`` of the upload time.

    Uploads of the same filename by the same user within one bucket (an hour
    by default) share a fingerprint and are treated as duplicates; naive
    timestamps are taken as UTC.
    """

    ts = uploaded_at if uploaded_at.tzinfo else uploaded_at.replace(tzinfo=UTC)
    bucket = int(ts.timestamp()) // bucket_seconds
    data = f"{filename}|{user_id}|{bucket}"
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# Record building
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class BatchContext:
    """Per-file values copied onto every record of a batch."""

    user_id: str
    filename: str
    fingerprint: str
    uploaded_at: datetime
    decision: ConventionDecision


@dataclass(frozen=True, slots=True)
class ExpectedAggregate:
    count: int
    total_spending: Decimal


def build_transaction_record(
    ctx: BatchContext,
    tx: NormalizedTransaction,
    assignment: CategoryAssignment,
    *,
    sheet_name: str | None = None,
    settings: IngestSettings | None = None,
) -> dict[str, Any]:
    """Column values for one valid row, with spending derived at write time.

    ``is_credit`` marks rows that are neither payments nor spending under
    the batch convention.
    """

    settings = settings or IngestSettings()
    name = normalize_merchant(tx.merchant, max_length=settings.merchant_max_length)
    amount_raw = _to_decimal_2(tx.amount_raw)
    convention = ctx.decision.convention
    is_payment = is_payment_merchant(name.normalized, settings)
    spending = spending_amount(amount_raw, convention, is_payment=is_payment)
    is_credit = not is_payment and spending_amount(amount_raw, convention) == 0
    return {
        **_batch_columns(ctx),
        "sheet_name": sheet_name,
        "row_number": tx.row_number,
        "transaction_date": tx.date,
        "merchant": name.normalized,
        "notes": f"original merchant: {name.original}" if name.original else None,
        "amount_raw": amount_raw,
        "amount_spending": spending,
        "is_credit": is_credit,
        "is_payment": is_payment,
        "category_id": assignment.category_id,
        "category": assignment.category_name,
        "confidence_score": Decimal(str(assignment.confidence_score)).quantize(Decimal("0.001")),
        "status": assignment.status,
        "import_error_reason": None,
        "import_error_message": None,
        "raw_record": raw_record_json(tx.raw),
    }


def build_placeholder_record(
    ctx: BatchContext,
    err: NormalizationError,
    mapping: ColumnMapping,
    *,
    sheet_name: str | None = None,
    settings: IngestSettings | None = None,
) -> dict[str, Any]:
    """A flagged ``pending_review`` record for a fixable row error.

    Date and merchant are extracted best-effort so the record is findable in
    review; the amount stays NULL and spending 0 until a person fixes it.
    """

    settings = settings or IngestSettings()
    merchant_raw = err.raw.get(mapping.merchant_column)
    merchant_text = "" if merchant_raw is None else str(merchant_raw)
    name = normalize_merchant(merchant_text, max_length=settings.merchant_max_length)
    try:
        tx_date: date | None = parse_date(err.raw.get(mapping.date_column))
    except ValueError:
        tx_date = None
    return {
        **_batch_columns(ctx),
        "sheet_name": sheet_name,
        "row_number": err.row_number,
        "transaction_date": tx_date,
        "merchant": name.normalized or UNKNOWN_MERCHANT,
        "notes": (
            f"original merchant: {name.original}" if name.original and name.normalized else None
        ),
        "amount_raw": None,
        "amount_spending": _ZERO,
        "is_credit": False,
        "is_payment": False,
        "category_id": None,
        "category": None,
        "confidence_score": None,
        "status": "pending_review",
        "import_error_reason": err.reason,
        "import_error_message": err.message,
        "raw_record": raw_record_json(err.raw),
    }


def _batch_columns(ctx: BatchContext) -> dict[str, Any]:
    return {
        "user_id": ctx.user_id,
        "source_filename": ctx.filename,
        "source_file_hash": ctx.fingerprint,
        "uploaded_at": ctx.uploaded_at,
        "amount_convention": ctx.decision.convention.value,
    }


def expected_aggregate(records: Sequence[Mapping[str, Any]]) -> ExpectedAggregate:
    total = sum((r["amount_spending"] for r in records), _ZERO)
    return ExpectedAggregate(count=len(records), total_spending=_to_decimal_2(total))


# ---------------------------------------------------------------------------
# Batch insert and verification
# ---------------------------------------------------------------------------


def find_source_file(session: Session, fingerprint: str) -> IngestSourceFile | None:
    return session.execute(
        select(IngestSourceFile).where(IngestSourceFile.fingerprint_sha256 == fingerprint)
    ).scalar_one_or_none()


def _chunks(records: Sequence[dict[str, Any]], size: int) -> Iterator[Sequence[dict[str, Any]]]:
    for start in range(0, len(records), size):
        yield records[start : start + size]


def insert_batch(
    session: Session,
    ctx: BatchContext,
    records: Sequence[dict[str, Any]],
    *,
    chunk_size: int = 500,
) -> int:
    """Insert the source file row and its transactions; return the source file id.

    Runs inside the caller's transaction; the caller commits. The source file
    row is flushed first so the fingerprint's unique index rejects a racing
    duplicate before any transaction row is written.

    Raises
    ------
    DuplicateFileError
        When the fingerprint already exists.
    InsertFailure
        When any transaction chunk fails; the caller's rollback discards the
        whole file.
    """

    source = IngestSourceFile(
        user_id=ctx.user_id,
        filename=ctx.filename,
        fingerprint_sha256=ctx.fingerprint,
        uploaded_at=ctx.uploaded_at,
        amount_convention=ctx.decision.convention.value,
        convention_source=ctx.decision.source,
    )
    session.add(source)
    try:
        session.flush()
    except IntegrityError as exc:
        raise DuplicateFileError(ctx.fingerprint, ctx.filename) from exc

    try:
        for n, chunk in enumerate(_chunks(records, chunk_size)):
            session.execute(
                insert(IngestTransaction),
                [{**r, "source_file_id": source.id} for r in chunk],
            )
            _logger.debug(
                "insert_batch:chunk file=%s chunk=%d rows=%d", ctx.filename, n, len(chunk)
            )
    except SQLAlchemyError as exc:
        raise InsertFailure(f"batch insert failed for {ctx.filename!r}: {exc}") from exc
    return source.id


def stored_aggregate(session: Session, fingerprint: str) -> ExpectedAggregate:
    count, total = session.execute(
        select(func.count(IngestTransaction.id), func.sum(IngestTransaction.amount_spending)).where(
            IngestTransaction.source_file_hash == fingerprint
        )
    ).one()
    return ExpectedAggregate(count=int(count or 0), total_spending=_as_decimal(total))


def verify_batch(
    session: Session,
    fingerprint: str,
    expected: ExpectedAggregate,
    *,
    epsilon: Decimal = _CENT,
) -> ExpectedAggregate:
    """Re-read the stored aggregate for ``fingerprint`` and compare it to ``expected``.

    Count must match exactly; the spending sum may differ by at most
    ``epsilon``.

    Raises
    ------
    IntegrityMismatch
        On any disagreement. Committed data is left in place.
    """

    actual = stored_aggregate(session, fingerprint)
    if (
        actual.count != expected.count
        or abs(actual.total_spending - expected.total_spending) > epsilon
    ):
        raise IntegrityMismatch(
            expected_count=expected.count,
            actual_count=actual.count,
            expected_sum=expected.total_spending,
            actual_sum=actual.total_spending,
        )
    return actual


# ---------------------------------------------------------------------------
# Summaries and cleanup
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SourceFileSummary:
    fingerprint: str
    filename: str
    transaction_count: int
    total_spending: Decimal
    credit_count: int
    payment_count: int
    pending_review_count: int


def summarize_source_file(
    session: Session, user_id: str, fingerprint: str
) -> SourceFileSummary | None:
    source = session.execute(
        select(IngestSourceFile).where(
            IngestSourceFile.fingerprint_sha256 == fingerprint,
            IngestSourceFile.user_id == user_id,
        )
    ).scalar_one_or_none()
    if source is None:
        return None
    tx = IngestTransaction
    count, total, credits, payments, pending = session.execute(
        select(
            func.count(tx.id),
            func.sum(tx.amount_spending),
            func.count(tx.id).filter(tx.is_credit.is_(True)),
            func.count(tx.id).filter(tx.is_payment.is_(True)),
            func.count(tx.id).filter(tx.status == "pending_review"),
        ).where(tx.source_file_id == source.id, tx.user_id == user_id)
    ).one()
    return SourceFileSummary(
        fingerprint=fingerprint,
        filename=source.filename,
        transaction_count=int(count or 0),
        total_spending=_as_decimal(total),
        credit_count=int(credits or 0),
        payment_count=int(payments or 0),
        pending_review_count=int(pending or 0),
    )


def cleanup_orphaned_source_files(session: Session, user_id: str) -> int:
    """Delete the user's source file rows that have no transactions; return how many.

    Batches written by :func:`insert_batch` never leave orphans, but rows
    created by other writers (or interrupted imports) can.
    """

    has_tx = exists().where(IngestTransaction.source_file_id == IngestSourceFile.id)
    orphan_ids = list(
        session.execute(
            select(IngestSourceFile.id).where(IngestSourceFile.user_id == user_id, ~has_tx)
        ).scalars()
    )
    if not orphan_ids:
        return 0
    session.execute(delete(IngestSourceFile).where(IngestSourceFile.id.in_(orphan_ids)))
    _logger.info("cleanup_orphans user=%s deleted=%d", user_id, len(orphan_ids))
    return len(orphan_ids)


__all__ = [
    "BatchContext",
    "ExpectedAggregate",
    "SourceFileSummary",
    "UNKNOWN_MERCHANT",
    "build_placeholder_record",
    "build_transaction_record",
    "cleanup_orphaned_source_files",
    "compute_fingerprint",
    "expected_aggregate",
    "find_source_file",
    "insert_batch",
    "raw_record_json",
    "sanitize_filename",
    "stored_aggregate",
    "summarize_source_file",
    "verify_batch",
]

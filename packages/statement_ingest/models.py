"""Data models and type aliases for ``statement_ingest``.

In-memory pipeline types are frozen dataclasses. Upload results are pydantic
models so callers can ``model_dump(mode="json")`` them directly.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict

# ---------------------------------------------------------------------------
# Raw input
# ---------------------------------------------------------------------------

# Header -> cell value for one source row. CSV cells are strings; spreadsheet
# cells may be numbers, dates, or None.
type RawRow = Mapping[str, Any]


@dataclass(frozen=True, slots=True)
class Sheet:
    """One sheet of a parsed file (CSV files yield a single sheet)."""

    name: str
    rows: list[RawRow]


@dataclass(frozen=True, slots=True)
class UploadFile:
    filename: str
    content: bytes
    # Explicit sign convention for this file; ``None`` applies the detected suggestion.
    convention: str | None = None


# ---------------------------------------------------------------------------
# Detection
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ColumnMapping:
    date_column: str
    merchant_column: str
    amount_column: str
    # Issuer "Type" column, used to classify payment rows when present.
    type_column: str | None = None


class AmountConvention(StrEnum):
    """How a signed raw amount maps to spending for one file."""

    NEGATIVE = "negative"  # negative raw amount is spending
    POSITIVE = "positive"  # positive raw amount is spending


type ConventionSource = Literal["override", "filename", "statistics", "default"]


@dataclass(frozen=True, slots=True)
class ConventionDecision:
    """The convention applied to a batch plus the heuristic suggestion behind it."""

    convention: AmountConvention
    source: ConventionSource
    suggested: AmountConvention


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------

type ErrorReason = Literal["date_parse", "amount_parse", "payment", "credit_card_payment", "other"]

BENIGN_REASONS: frozenset[str] = frozenset({"payment", "credit_card_payment"})


@dataclass(frozen=True, slots=True)
class NormalizedTransaction:
    """A valid row; ``amount_raw`` keeps the exact source sign (no convention applied)."""

    row_number: int
    date: date
    merchant: str
    amount_raw: Decimal
    raw: RawRow = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class NormalizationError:
    row_number: int
    reason: ErrorReason
    message: str
    raw: RawRow = field(default_factory=dict)

    @property
    def is_benign(self) -> bool:
        return self.reason in BENIGN_REASONS


@dataclass(frozen=True, slots=True)
class NormalizationResult:
    transactions: list[NormalizedTransaction]
    errors: list[NormalizationError]

    @property
    def benign_errors(self) -> list[NormalizationError]:
        return [e for e in self.errors if e.is_benign]

    @property
    def fixable_errors(self) -> list[NormalizationError]:
        return [e for e in self.errors if not e.is_benign]


@dataclass(frozen=True, slots=True)
class MerchantName:
    normalized: str
    # Set only when normalization changed the text.
    original: str | None = None


# ---------------------------------------------------------------------------
# Categorization
# ---------------------------------------------------------------------------

type CategoryStatus = Literal["approved", "pending_review"]
type CategoryMethod = Literal["rule_exact", "rule_partial", "similarity", "llm", "none"]


@dataclass(frozen=True, slots=True)
class CategoryAssignment:
    category_id: int | None
    category_name: str | None
    confidence_score: float
    status: CategoryStatus
    method: CategoryMethod = "none"


# ---------------------------------------------------------------------------
# Upload results (JSON-serializable)
# ---------------------------------------------------------------------------

type UploadOutcome = Literal[
    "succeeded",
    "duplicate",
    "parse_failed",
    "no_usable_sheets",
    "insert_failed",
    "integrity_mismatch",
    "failed",
]


class SheetStats(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str
    row_count: int = 0
    valid_count: int = 0
    excluded_count: int = 0
    flagged_count: int = 0
    skipped: bool = False
    error: str | None = None


class RowErrorReport(BaseModel):
    model_config = ConfigDict(extra="forbid")

    sheet: str
    row_number: int
    reason: str
    message: str


class FileUploadResult(BaseModel):
    """Per-file outcome of :func:`statement_ingest.upload.upload_statements`."""

    model_config = ConfigDict(extra="forbid")

    filename: str
    success: bool
    outcome: UploadOutcome
    message: str
    transaction_count: int = 0
    total_spending: Decimal = Decimal("0")
    spending_count: int = 0
    credit_count: int = 0
    payment_count: int = 0
    flagged_count: int = 0
    excluded_count: int = 0
    approved_count: int = 0
    pending_review_count: int = 0
    amount_convention: AmountConvention | None = None
    convention_source: str | None = None
    integrity_mismatch: bool = False
    suggested_convention: AmountConvention | None = None
    source_file_hash: str | None = None
    sheets: list[SheetStats] = []
    errors: list[RowErrorReport] = []


class UploadResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    success: bool
    message: str
    total_transactions: int
    total_spending: Decimal
    file_results: list[FileUploadResult]


__all__ = [
    "AmountConvention",
    "BENIGN_REASONS",
    "CategoryAssignment",
    "ColumnMapping",
    "ConventionDecision",
    "FileUploadResult",
    "MerchantName",
    "NormalizationError",
    "NormalizationResult",
    "NormalizedTransaction",
    "RawRow",
    "RowErrorReport",
    "Sheet",
    "SheetStats",
    "UploadFile",
    "UploadResult",
]

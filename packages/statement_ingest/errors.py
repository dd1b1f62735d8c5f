"""Exception taxonomy for the ingestion pipeline.

Row-level problems are data (``NormalizationError``), not exceptions. The
classes here cover sheet- and file-level failures. The upload orchestrator
catches them per file and reports them in a ``FileUploadResult``; none of them
escape :func:`statement_ingest.upload.upload_statements`.
"""

from __future__ import annotations

from decimal import Decimal


class IngestError(Exception):
    """Base class for ingestion failures."""


class FileParseError(IngestError):
    """The file content could not be read into sheets (empty, oversize, unsupported format)."""


class ColumnDetectionError(IngestError):
    """A sheet lacks a resolvable date, merchant, or amount column.

    Fatal for the sheet only; the orchestrator skips the sheet.
    """

    def __init__(self, message: str, *, missing: tuple[str, ...] = (), sheet: str | None = None):
        super().__init__(message)
        self.missing = missing
        self.sheet = sheet


class DuplicateFileError(IngestError):
    """An upload with the same fingerprint already exists."""

    def __init__(self, fingerprint: str, filename: str):
        super().__init__(f"file already uploaded: {filename!r} (fingerprint {fingerprint[:12]}…)")
        self.fingerprint = fingerprint
        self.filename = filename


class CategoryScoringError(IngestError):
    """An external category scorer could not produce a result for a merchant.

    Handled inside the categorization engine, which keeps its own best guess.
    """


class InsertFailure(IngestError):
    """The batch insert failed; nothing from the file was persisted."""


class IntegrityMismatch(IngestError):
    """Post-commit verification disagreed with the expected aggregate.

    Raised after the data is committed; nothing is rolled back.
    """

    def __init__(
        self,
        *,
        expected_count: int,
        actual_count: int,
        expected_sum: Decimal,
        actual_sum: Decimal,
    ):
        super().__init__(
            "integrity mismatch: "
            f"expected count={expected_count} sum={expected_sum}, "
            f"stored count={actual_count} sum={actual_sum}"
        )
        self.expected_count = expected_count
        self.actual_count = actual_count
        self.expected_sum = expected_sum
        self.actual_sum = actual_sum


__all__ = [
    "CategoryScoringError",
    "ColumnDetectionError",
    "DuplicateFileError",
    "FileParseError",
    "IngestError",
    "InsertFailure",
    "IntegrityMismatch",
]

"""Public interface for the ``statement_ingest`` package.

Symbol re-exports only; the upload pipeline lives in
``statement_ingest.upload`` and the database-backed helpers in
``statement_ingest.api``.
"""

from .api import (
    accept_all_pending,
    accept_suggestion,
    apply_category_preview,
    bulk_apply_category,
    cleanup_orphaned_source_files,
    list_pending_review,
    preview_cross_institution_categories,
    record_review_decision,
    resolve_placeholder,
    suggest_convention,
    summarize_source_file,
    upload_file,
    upload_statements,
)
from .columns import detect_columns
from .conventions import detect_amount_convention, spending_amount
from .errors import (
    ColumnDetectionError,
    DuplicateFileError,
    FileParseError,
    IngestError,
    InsertFailure,
    IntegrityMismatch,
)
from .merchants import normalize_merchant
from .models import (
    AmountConvention,
    CategoryAssignment,
    ColumnMapping,
    ConventionDecision,
    FileUploadResult,
    NormalizationError,
    NormalizedTransaction,
    UploadFile,
    UploadResult,
)
from .normalizers import normalize_row, normalize_rows
from .parsing import parse_file
from .settings import IngestSettings

__all__ = [
    # API
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
    # Pipeline steps
    "detect_amount_convention",
    "detect_columns",
    "normalize_merchant",
    "normalize_row",
    "normalize_rows",
    "parse_file",
    "spending_amount",
    # Models
    "AmountConvention",
    "CategoryAssignment",
    "ColumnMapping",
    "ConventionDecision",
    "FileUploadResult",
    "IngestSettings",
    "NormalizationError",
    "NormalizedTransaction",
    "UploadFile",
    "UploadResult",
    # Errors
    "ColumnDetectionError",
    "DuplicateFileError",
    "FileParseError",
    "IngestError",
    "InsertFailure",
    "IntegrityMismatch",
]

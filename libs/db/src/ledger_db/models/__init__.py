"""Shared SQLAlchemy models registry for the workspace database.

Currently includes the statement-ingestion models used by ``statement_ingest``.
"""

from .ledger import (
    Base,
    IngestCategory,
    IngestMerchantRule,
    IngestSourceFile,
    IngestTransaction,
)

__all__ = [
    "Base",
    "IngestCategory",
    "IngestMerchantRule",
    "IngestSourceFile",
    "IngestTransaction",
]

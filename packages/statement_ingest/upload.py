# ruff: noqa: I001
"""Upload orchestration: one state machine run per file.

States advance ``received → fingerprint_checked → parsed → normalized →
categorized → committed → verified → succeeded``; any failure moves the file
to ``failed`` with an outcome describing why. Each transition is logged as an
``upload:state`` event.

Guarantees per file:

- A duplicate fingerprint stops the run before parsing.
- Rows never abort a file: benign rows are excluded and counted, fixable rows
  become ``pending_review`` placeholders.
- The source file row and all transactions commit in one database
  transaction, so an insert failure leaves nothing behind for that file.
- After commit, stored count/sum are re-read and compared; a mismatch is
  reported as ``integrity_mismatch`` without rolling back.

Nothing raised while processing a file escapes :func:`upload_statements`; each
file gets a :class:`~statement_ingest.models.FileUploadResult` and sibling
files are unaffected by each other's failures.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from enum import StrEnum
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from ledger_db.client import session_scope
from .categorize import CategorizationEngine, load_rule_book
from .columns import detect_columns
from .conventions import detect_amount_convention, resolve_convention
from .errors import (
    ColumnDetectionError,
    DuplicateFileError,
    FileParseError,
    InsertFailure,
    IntegrityMismatch,
)
from .llm_categorize import LlmCategoryScorer
from .logging_setup import get_logger, log_event
from .merchants import normalize_merchant
from .models import (
    AmountConvention,
    ColumnMapping,
    ConventionDecision,
    FileUploadResult,
    NormalizationError,
    NormalizedTransaction,
    RowErrorReport,
    Sheet,
    SheetStats,
    UploadFile,
    UploadOutcome,
    UploadResult,
)
from .normalizers import RowNormalizer
from .parsing import parse_file
from .persistence import (
    BatchContext,
    ExpectedAggregate,
    build_placeholder_record,
    build_transaction_record,
    compute_fingerprint,
    expected_aggregate,
    find_source_file,
    insert_batch,
    sanitize_filename,
    verify_batch,
)
from .settings import IngestSettings

_logger = get_logger("statement_ingest.upload")

_ZERO = Decimal("0")


class UploadState(StrEnum):
    RECEIVED = "received"
    FINGERPRINT_CHECKED = "fingerprint_checked"
    PARSED = "parsed"
    NORMALIZED = "normalized"
    CATEGORIZED = "categorized"
    COMMITTED = "committed"
    VERIFIED = "verified"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(slots=True)
class _UsableSheet:
    sheet: Sheet
    mapping: ColumnMapping
    stats: SheetStats


@dataclass(slots=True)
class _Batch:
    valid: list[tuple[str, NormalizedTransaction]] = field(default_factory=list)
    flagged: list[tuple[str, NormalizationError, ColumnMapping]] = field(default_factory=list)
    excluded_count: int = 0


def _usable_sheets(
    sheets: Sequence[Sheet], filename: str
) -> tuple[list[_UsableSheet], list[SheetStats]]:
    usable: list[_UsableSheet] = []
    all_stats: list[SheetStats] = []
    for sheet in sheets:
        stats = SheetStats(name=sheet.name, row_count=len(sheet.rows))
        all_stats.append(stats)
        try:
            mapping = detect_columns(sheet.rows)
        except ColumnDetectionError as exc:
            stats.skipped = True
            stats.error = str(exc)
            log_event(
                _logger,
                "upload:sheet_skipped",
                level=logging.WARNING,
                file=filename,
                sheet=sheet.name,
            )
            continue
        usable.append(_UsableSheet(sheet=sheet, mapping=mapping, stats=stats))
    return usable, all_stats


def suggest_convention(
    filename: str, content: bytes, *, settings: IngestSettings | None = None
) -> ConventionDecision:
    """Detect the convention a file would be uploaded with, without writing anything.

    Raises
    ------
    FileParseError
        When the content cannot be parsed.
    ColumnDetectionError
        When no sheet has resolvable columns.
    """

    settings = settings or IngestSettings()
    usable, _stats = _usable_sheets(parse_file(filename, content), filename)
    if not usable:
        raise ColumnDetectionError(f"no sheet with detectable columns in {filename!r}")
    first = usable[0]
    return detect_amount_convention(first.sheet.rows, first.mapping, filename, settings)


class FileUpload:
    """One file's run through the upload state machine."""

    def __init__(
        self,
        file: UploadFile,
        *,
        user_id: str,
        uploaded_at: datetime,
        database_url: str | None = None,
        settings: IngestSettings | None = None,
    ) -> None:
        self.file = file
        self.user_id = user_id
        self.uploaded_at = uploaded_at
        self.database_url = database_url
        self.settings = settings or IngestSettings()
        self.filename = sanitize_filename(file.filename)
        self.state = UploadState.RECEIVED
        self.result = FileUploadResult(
            filename=file.filename, success=False, outcome="failed", message=""
        )

    # -- transitions --------------------------------------------------------

    def _advance(self, state: UploadState, **fields: Any) -> None:
        self.state = state
        log_event(_logger, "upload:state", file=self.filename, state=state.value, **fields)

    def _fail(
        self, outcome: UploadOutcome, message: str, *, level: int = logging.WARNING
    ) -> FileUploadResult:
        self.result.success = False
        self.result.outcome = outcome
        self.result.message = message
        self._advance(UploadState.FAILED, outcome=outcome)
        _logger.log(
            level, "upload:failed file=%s outcome=%s message=%s", self.filename, outcome, message
        )
        return self.result

    # -- entry point --------------------------------------------------------

    def run(self) -> FileUploadResult:
        try:
            return self._run()
        except DuplicateFileError as exc:
            return self._fail("duplicate", str(exc))
        except FileParseError as exc:
            return self._fail("parse_failed", str(exc))
        except ColumnDetectionError as exc:
            return self._fail("no_usable_sheets", str(exc))
        except InsertFailure as exc:
            return self._fail("insert_failed", str(exc), level=logging.ERROR)
        except IntegrityMismatch as exc:
            self.result.integrity_mismatch = True
            return self._fail("integrity_mismatch", str(exc), level=logging.ERROR)
        except SQLAlchemyError as exc:
            return self._fail("failed", f"database error: {exc}", level=logging.ERROR)
        except Exception as exc:  # noqa: BLE001 - the upload boundary reports, never raises
            _logger.exception("upload:unexpected file=%s", self.filename)
            return self._fail("failed", f"unexpected error: {exc}", level=logging.ERROR)

    def _run(self) -> FileUploadResult:
        try:
            override = AmountConvention(self.file.convention) if self.file.convention else None
        except ValueError:
            return self._fail("failed", f"unknown amount convention {self.file.convention!r}")
        content = self.file.content
        if len(content) > self.settings.max_file_bytes:
            raise FileParseError(
                f"file exceeds {self.settings.max_file_bytes} bytes: {self.file.filename!r}"
            )

        # 1. fingerprint + fast duplicate check (the unique index is the real guard)
        fingerprint = compute_fingerprint(
            filename=self.filename,
            user_id=self.user_id,
            uploaded_at=self.uploaded_at,
            bucket_seconds=self.settings.fingerprint_bucket_seconds,
        )
        self.result.source_file_hash = fingerprint
        with session_scope(database_url=self.database_url) as session:
            if find_source_file(session, fingerprint) is not None:
                raise DuplicateFileError(fingerprint, self.filename)
        self._advance(UploadState.FINGERPRINT_CHECKED)

        # 2. parse, detect columns per sheet, resolve the batch convention
        usable, all_stats = _usable_sheets(parse_file(self.file.filename, content), self.filename)
        self.result.sheets = all_stats
        if not usable:
            raise ColumnDetectionError(
                f"no sheet with detectable columns in {self.file.filename!r}"
            )
        first = usable[0]
        suggestion = detect_amount_convention(
            first.sheet.rows, first.mapping, self.file.filename, self.settings
        )
        decision = resolve_convention(suggestion, override)
        self.result.amount_convention = decision.convention
        self.result.convention_source = decision.source
        self.result.suggested_convention = decision.suggested
        self._advance(
            UploadState.PARSED,
            sheets=len(usable),
            convention=decision.convention.value,
            source=decision.source,
        )

        # 3. normalize
        batch = self._normalize(usable)
        self._advance(
            UploadState.NORMALIZED,
            valid=len(batch.valid),
            flagged=len(batch.flagged),
            excluded=batch.excluded_count,
        )

        # 4. categorize
        names = [
            normalize_merchant(tx.merchant, max_length=self.settings.merchant_max_length).normalized
            for _sheet, tx in batch.valid
        ]
        with session_scope(database_url=self.database_url) as session:
            rule_book = load_rule_book(session, self.user_id)
        llm_scorer = (
            LlmCategoryScorer(rule_book.category_names, model=self.settings.llm_model)
            if self.settings.llm_categorization and rule_book.category_names
            else None
        )
        engine = CategorizationEngine(rule_book, self.settings, llm_scorer=llm_scorer)
        assignments = engine.categorize(names)
        self._advance(UploadState.CATEGORIZED, categorized=len(assignments))

        # 5. build records and the expected aggregate
        ctx = BatchContext(
            user_id=self.user_id,
            filename=self.filename,
            fingerprint=fingerprint,
            uploaded_at=self.uploaded_at,
            decision=decision,
        )
        records = [
            build_transaction_record(ctx, tx, assignment, sheet_name=sheet, settings=self.settings)
            for (sheet, tx), assignment in zip(batch.valid, assignments, strict=True)
        ]
        records.extend(
            build_placeholder_record(ctx, err, mapping, sheet_name=sheet, settings=self.settings)
            for sheet, err, mapping in batch.flagged
        )
        expected = expected_aggregate(records)
        self._tally(records, expected, batch)

        if not records:
            self.result.success = True
            self.result.outcome = "succeeded"
            self.result.message = "no transactions to import"
            self._advance(UploadState.SUCCEEDED, transactions=0)
            return self.result

        # 6. commit atomically
        try:
            with session_scope(database_url=self.database_url) as session:
                insert_batch(session, ctx, records, chunk_size=self.settings.insert_chunk_size)
        except SQLAlchemyError as exc:
            # Commit-time failures; insert_batch wraps its own statement errors.
            raise InsertFailure(f"commit failed for {self.filename!r}: {exc}") from exc
        self._advance(UploadState.COMMITTED, transactions=expected.count)

        # 7. verify
        with session_scope(database_url=self.database_url) as session:
            verify_batch(session, fingerprint, expected, epsilon=self.settings.integrity_epsilon)
        self._advance(UploadState.VERIFIED)

        self.result.success = True
        self.result.outcome = "succeeded"
        self.result.message = (
            f"imported {expected.count} transactions "
            f"({self.result.flagged_count} flagged for review)"
        )
        self._advance(
            UploadState.SUCCEEDED,
            transactions=expected.count,
            total_spending=expected.total_spending,
        )
        return self.result

    def _normalize(self, usable: Sequence[_UsableSheet]) -> _Batch:
        batch = _Batch()
        for u in usable:
            outcome = RowNormalizer(u.mapping, self.settings).normalize_rows(u.sheet.rows)
            name = u.sheet.name
            batch.valid.extend((name, tx) for tx in outcome.transactions)
            benign = outcome.benign_errors
            fixable = outcome.fixable_errors
            batch.excluded_count += len(benign)
            batch.flagged.extend((name, err, u.mapping) for err in fixable)
            u.stats.valid_count = len(outcome.transactions)
            u.stats.excluded_count = len(benign)
            u.stats.flagged_count = len(fixable)
            self.result.errors.extend(
                RowErrorReport(
                    sheet=name, row_number=err.row_number, reason=err.reason, message=err.message
                )
                for err in fixable
            )
            if fixable:
                log_event(
                    _logger,
                    "upload:sheet_flagged",
                    level=logging.WARNING,
                    file=self.filename,
                    sheet=name,
                    flagged=len(fixable),
                )
        return batch

    def _tally(
        self, records: Sequence[dict[str, Any]], expected: ExpectedAggregate, batch: _Batch
    ) -> None:
        r = self.result
        r.transaction_count = expected.count
        r.total_spending = expected.total_spending
        r.spending_count = sum(1 for rec in records if rec["amount_spending"] > 0)
        r.credit_count = sum(1 for rec in records if rec["is_credit"])
        r.payment_count = sum(1 for rec in records if rec["is_payment"])
        r.flagged_count = len(batch.flagged)
        r.excluded_count = batch.excluded_count
        r.approved_count = sum(1 for rec in records if rec["status"] == "approved")
        r.pending_review_count = sum(1 for rec in records if rec["status"] == "pending_review")


def upload_file(
    file: UploadFile,
    *,
    user_id: str,
    database_url: str | None = None,
    settings: IngestSettings | None = None,
    uploaded_at: datetime | None = None,
) -> FileUploadResult:
    """Run a single file through the upload state machine."""

    return FileUpload(
        file,
        user_id=user_id,
        uploaded_at=uploaded_at or datetime.now(UTC),
        database_url=database_url,
        settings=settings,
    ).run()


def upload_statements(
    files: Sequence[UploadFile],
    *,
    user_id: str,
    database_url: str | None = None,
    settings: IngestSettings | None = None,
    uploaded_at: datetime | None = None,
) -> UploadResult:
    """Upload statement files for ``user_id`` and return per-file results.

    Files are processed sequentially and independently; a failure in one file
    never affects another. All files share one upload timestamp, which feeds
    the duplicate fingerprint.

    Parameters
    ----------
    files:
        Files to ingest. ``UploadFile.convention`` overrides the detected
        sign convention for that file.
    user_id:
        Owning user; recorded on every row and part of the fingerprint.
    database_url:
        Optional override for ``DATABASE_URL``.
    settings:
        Policy settings; defaults to :class:`IngestSettings` defaults.
    uploaded_at:
        Upload timestamp (defaults to now, UTC).
    """

    settings = settings or IngestSettings()
    ts = uploaded_at or datetime.now(UTC)
    results = [
        upload_file(
            f, user_id=user_id, database_url=database_url, settings=settings, uploaded_at=ts
        )
        for f in files
    ]
    succeeded = [r for r in results if r.success]
    total_tx = sum(r.transaction_count for r in succeeded)
    total_spending = sum((r.total_spending for r in succeeded), _ZERO)
    log_event(
        _logger,
        "upload:summary",
        files=len(results),
        succeeded=len(succeeded),
        transactions=total_tx,
        total_spending=total_spending,
    )
    return UploadResult(
        success=bool(results) and len(succeeded) == len(results),
        message=f"uploaded {len(succeeded)} of {len(results)} file(s)",
        total_transactions=total_tx,
        total_spending=total_spending,
        file_results=results,
    )


__all__ = [
    "FileUpload",
    "UploadState",
    "suggest_convention",
    "upload_file",
    "upload_statements",
]

"""Cross-institution category suggestions (preview, then explicit apply).

Categorized spending from one issuer (for example Chase exports) trains a
k-nearest-neighbour vote that proposes categories for uncategorized spending
from another issuer. Similarity between merchants is ``rapidfuzz``'s
token-set ratio; neighbours vote with weight ``1 / (distance + 0.001)`` and
the winning share of the vote is the confidence.

:func:`preview_cross_institution_categories` never writes.
:func:`apply_category_preview` is the separate, explicit write step.
"""

from __future__ import annotations

import re
from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal

from ledger_db.models.ledger import IngestCategory, IngestTransaction
from rapidfuzz import fuzz
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from .logging_setup import get_logger
from .settings import IngestSettings

_logger = get_logger("statement_ingest.cross_institution")

_DISTANCE_EPSILON = 0.001
_DIGITS = re.compile(r"\d+")
_NON_WORD = re.compile(r"[^\w\s]")
_WS = re.compile(r"\s+")


@dataclass(frozen=True, slots=True)
class TrainingSample:
    merchant: str
    category_id: int
    category_name: str


@dataclass(frozen=True, slots=True)
class CategoryPrediction:
    transaction_id: int
    merchant: str
    category_id: int
    category_name: str
    confidence: float
    low_confidence: bool


@dataclass(frozen=True, slots=True)
class CategoryPreview:
    train_issuer: str
    target_issuer: str
    threshold: float
    training_samples: int
    uncategorized: int
    predictions: tuple[CategoryPrediction, ...]

    @property
    def high_confidence(self) -> tuple[CategoryPrediction, ...]:
        return tuple(p for p in self.predictions if not p.low_confidence)

    @property
    def low_confidence(self) -> tuple[CategoryPrediction, ...]:
        return tuple(p for p in self.predictions if p.low_confidence)


def _features(merchant: str) -> str:
    # Store numbers and punctuation vary across issuers; compare words only.
    s = _DIGITS.sub("", merchant.casefold())
    s = _NON_WORD.sub(" ", s)
    return _WS.sub(" ", s).strip()


def _issuer_filter(issuer: str):
    return func.lower(IngestTransaction.source_filename).like(f"%{issuer.casefold()}%")


def _load_training(session: Session, user_id: str, issuer: str) -> list[TrainingSample]:
    rows = session.execute(
        select(IngestTransaction.merchant, IngestTransaction.category_id, IngestCategory.name)
        .join(IngestCategory, IngestCategory.id == IngestTransaction.category_id)
        .where(
            IngestTransaction.user_id == user_id,
            _issuer_filter(issuer),
            IngestTransaction.amount_spending > 0,
        )
    ).all()
    return [TrainingSample(_features(m), cid, name) for m, cid, name in rows if _features(m)]


def predict_category(
    merchant: str, training: list[TrainingSample], *, k: int = 5
) -> tuple[TrainingSample, float] | None:
    """Vote among the ``k`` most similar training merchants.

    Returns an exemplar of the winning category and the confidence, or
    ``None`` when there is no training data.
    """

    if not training:
        return None
    target = _features(merchant)
    scored = sorted(
        ((1.0 - fuzz.token_set_ratio(target, s.merchant) / 100.0, s) for s in training),
        key=lambda pair: pair[0],
    )[:k]
    votes: dict[int, float] = defaultdict(float)
    exemplar: dict[int, TrainingSample] = {}
    for distance, sample in scored:
        votes[sample.category_id] += 1.0 / (distance + _DISTANCE_EPSILON)
        exemplar.setdefault(sample.category_id, sample)
    total = sum(votes.values())
    winner = max(votes, key=lambda cid: votes[cid])
    confidence = min(1.0, votes[winner] / total) if total > 0 else 0.0
    return exemplar[winner], confidence


def preview_cross_institution_categories(
    session: Session,
    *,
    user_id: str,
    train_issuer: str,
    target_issuer: str,
    settings: IngestSettings | None = None,
) -> CategoryPreview:
    """Propose categories for ``target_issuer``'s uncategorized spending without writing."""

    settings = settings or IngestSettings()
    training = _load_training(session, user_id, train_issuer)
    targets = session.execute(
        select(IngestTransaction.id, IngestTransaction.merchant).where(
            IngestTransaction.user_id == user_id,
            _issuer_filter(target_issuer),
            IngestTransaction.category_id.is_(None),
            IngestTransaction.amount_spending > 0,
        )
    ).all()

    predictions: list[CategoryPrediction] = []
    for tx_id, merchant in targets:
        predicted = predict_category(merchant, training, k=settings.preview_neighbors)
        if predicted is None:
            continue
        sample, confidence = predicted
        predictions.append(
            CategoryPrediction(
                transaction_id=tx_id,
                merchant=merchant,
                category_id=sample.category_id,
                category_name=sample.category_name,
                confidence=round(confidence, 3),
                low_confidence=confidence < settings.preview_threshold,
            )
        )

    preview = CategoryPreview(
        train_issuer=train_issuer,
        target_issuer=target_issuer,
        threshold=settings.preview_threshold,
        training_samples=len(training),
        uncategorized=len(targets),
        predictions=tuple(predictions),
    )
    _logger.info(
        "cross_institution:preview train=%s target=%s samples=%d uncategorized=%d "
        "predicted=%d low_confidence=%d",
        train_issuer,
        target_issuer,
        preview.training_samples,
        preview.uncategorized,
        len(preview.predictions),
        len(preview.low_confidence),
    )
    return preview


def apply_category_preview(
    session: Session,
    preview: CategoryPreview,
    *,
    user_id: str,
    include_low_confidence: bool = False,
    settings: IngestSettings | None = None,
) -> int:
    """Write a preview's predictions; return the number of rows updated.

    Only ``category_id``, ``category``, ``confidence_score`` and ``status``
    change, and only on rows that are still uncategorized. Low-confidence
    predictions are skipped unless ``include_low_confidence`` is set.
    """

    settings = settings or IngestSettings()
    chosen = preview.predictions if include_low_confidence else preview.high_confidence
    updated = 0
    for p in chosen:
        status = "approved" if p.confidence >= settings.approval_threshold else "pending_review"
        result = session.execute(
            update(IngestTransaction)
            .where(
                IngestTransaction.id == p.transaction_id,
                IngestTransaction.user_id == user_id,
                IngestTransaction.category_id.is_(None),
            )
            .values(
                category_id=p.category_id,
                category=p.category_name,
                confidence_score=Decimal(str(p.confidence)),
                status=status,
            )
        )
        updated += result.rowcount or 0
    _logger.info("cross_institution:apply updated=%d requested=%d", updated, len(chosen))
    return updated


__all__ = [
    "CategoryPrediction",
    "CategoryPreview",
    "TrainingSample",
    "apply_category_preview",
    "predict_category",
    "preview_cross_institution_categories",
]

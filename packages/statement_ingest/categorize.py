"""Confidence-scored categorization for normalized merchants.

Scoring order per merchant (first hit wins):

1. Exact match against a user merchant rule: ``min(1, 0.95 + boost)``.
2. Substring match against a rule (either direction): ``min(1, 0.85 + boost)``.
3. Similarity scoring with ``rapidfuzz`` against the user's rule merchants
   (token-set ratio, weighted 0.9) and the category keyword lexicon (whole
   word hit, or partial ratio for longer keywords, weighted 0.8). Scores
   under ``similarity_cutoff`` yield no category.
4. When an LLM scorer is configured and steps 1-3 did not approve the
   merchant, the model's best category probability replaces the similarity
   result if it is higher. A scorer failure keeps the similarity result.

A result is ``approved`` only when its confidence reaches
``approval_threshold`` and it carries a category id; everything else is
``pending_review``.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from ledger_db.models.ledger import IngestCategory, IngestMerchantRule
from rapidfuzz import fuzz
from sqlalchemy import select
from sqlalchemy.orm import Session

from .errors import CategoryScoringError
from .llm_categorize import LlmCategoryScorer
from .logging_setup import get_logger
from .models import CategoryAssignment, CategoryMethod
from .settings import IngestSettings

_logger = get_logger("statement_ingest.categorize")

_EXACT_BASE = 0.95
_PARTIAL_BASE = 0.85
_RULE_SIMILARITY_WEIGHT = 0.9
_LEXICON_WEIGHT = 0.8
# Short keywords ("hoa", "cvs") only count as whole words; fuzzy matching them is noise.
_MIN_FUZZY_KEYWORD_LEN = 5


@dataclass(frozen=True, slots=True)
class MerchantRule:
    merchant: str
    category_id: int
    category_name: str
    confidence_boost: float = 0.0


@dataclass(frozen=True, slots=True)
class RuleBook:
    """A user's merchant rules plus the category name → id lookup."""

    rules: tuple[MerchantRule, ...] = ()
    category_ids: dict[str, int] = field(default_factory=dict)
    category_names: tuple[str, ...] = ()

    def category_id_for(self, name: str) -> int | None:
        return self.category_ids.get(name.casefold())


def load_rule_book(session: Session, user_id: str) -> RuleBook:
    """Load the user's merchant rules and the shared category lookup."""

    categories = session.execute(select(IngestCategory.id, IngestCategory.name)).all()
    rows = session.execute(
        select(
            IngestMerchantRule.merchant_normalized,
            IngestMerchantRule.category_id,
            IngestCategory.name,
            IngestMerchantRule.confidence_boost,
        )
        .join(IngestCategory, IngestCategory.id == IngestMerchantRule.category_id)
        .where(IngestMerchantRule.user_id == user_id)
    ).all()
    rules = tuple(
        MerchantRule(
            merchant=merchant.casefold(),
            category_id=category_id,
            category_name=name,
            confidence_boost=float(boost or 0),
        )
        for merchant, category_id, name, boost in rows
    )
    return RuleBook(
        rules=rules,
        category_ids={name.casefold(): cid for cid, name in categories},
        category_names=tuple(name for _cid, name in categories),
    )


class CategorizationEngine:
    """Assign categories to normalized merchant strings.

    Results line up one-to-one with the input. A failure while scoring a
    single merchant yields an uncategorized ``pending_review`` result for that
    merchant and never aborts the batch.
    """

    def __init__(
        self,
        rule_book: RuleBook,
        settings: IngestSettings | None = None,
        *,
        llm_scorer: LlmCategoryScorer | None = None,
    ) -> None:
        self.rule_book = rule_book
        self.settings = settings or IngestSettings()
        self.llm_scorer = llm_scorer
        self._lexicon = [
            (category, kw.casefold(), re.compile(rf"\b{re.escape(kw.casefold())}\b"))
            for category, keywords in self.settings.category_keywords.items()
            for kw in keywords
        ]

    def categorize(self, merchants: Iterable[str]) -> list[CategoryAssignment]:
        out: list[CategoryAssignment] = []
        for merchant in merchants:
            try:
                out.append(self.categorize_one(merchant))
            except Exception as exc:  # noqa: BLE001 - one bad merchant must not fail the file
                _logger.warning(
                    "categorize:item_failed merchant=%r error=%s", merchant, exc.__class__.__name__
                )
                out.append(self._assignment(None, None, 0.0, "none"))
        return out

    def categorize_one(self, merchant: str) -> CategoryAssignment:
        text = merchant.casefold().strip()
        if not text:
            return self._assignment(None, None, 0.0, "none")

        for rule in self.rule_book.rules:
            if rule.merchant == text:
                return self._assignment(
                    rule.category_id,
                    rule.category_name,
                    min(1.0, _EXACT_BASE + rule.confidence_boost),
                    "rule_exact",
                )

        partial = [
            r
            for r in self.rule_book.rules
            if r.merchant and (r.merchant in text or text in r.merchant)
        ]
        if partial:
            # Prefer the most specific (longest) rule merchant.
            rule = max(partial, key=lambda r: len(r.merchant))
            return self._assignment(
                rule.category_id,
                rule.category_name,
                min(1.0, _PARTIAL_BASE + rule.confidence_boost),
                "rule_partial",
            )

        assignment = self._similarity(text)
        if self.llm_scorer is None or assignment.status == "approved":
            return assignment
        return self._llm_fallback(text, assignment, self.llm_scorer)

    def _llm_fallback(
        self, text: str, fallback: CategoryAssignment, scorer: LlmCategoryScorer
    ) -> CategoryAssignment:
        try:
            name, probability = scorer.best(text)
        except CategoryScoringError as exc:
            _logger.warning("categorize:llm_unavailable merchant=%r error=%s", text, exc)
            return fallback
        if probability <= fallback.confidence_score:
            return fallback
        return self._assignment(
            self.rule_book.category_id_for(name), name, round(probability, 3), "llm"
        )

    def _similarity(self, text: str) -> CategoryAssignment:
        cutoff = self.settings.similarity_cutoff
        best: tuple[float, int | None, str] | None = None

        for rule in self.rule_book.rules:
            score = fuzz.token_set_ratio(text, rule.merchant)
            if score >= cutoff:
                conf = score / 100.0 * _RULE_SIMILARITY_WEIGHT
                if best is None or conf > best[0]:
                    best = (conf, rule.category_id, rule.category_name)

        for category, keyword, word_rx in self._lexicon:
            if word_rx.search(text):
                score = 100.0
            elif len(keyword) >= _MIN_FUZZY_KEYWORD_LEN:
                score = fuzz.partial_ratio(keyword, text)
            else:
                continue
            if score >= cutoff:
                conf = score / 100.0 * _LEXICON_WEIGHT
                if best is None or conf > best[0]:
                    best = (conf, self.rule_book.category_id_for(category), category)

        if best is None:
            return self._assignment(None, None, 0.0, "none")
        conf, category_id, name = best
        return self._assignment(category_id, name, round(conf, 3), "similarity")

    def _assignment(
        self,
        category_id: int | None,
        category_name: str | None,
        confidence: float,
        method: CategoryMethod,
    ) -> CategoryAssignment:
        approved = category_id is not None and confidence >= self.settings.approval_threshold
        return CategoryAssignment(
            category_id=category_id,
            category_name=category_name,
            confidence_score=confidence,
            status="approved" if approved else "pending_review",
            method=method,
        )


def categorize_merchants(
    session: Session,
    merchants: Sequence[str],
    *,
    user_id: str,
    settings: IngestSettings | None = None,
    llm_scorer: LlmCategoryScorer | None = None,
) -> list[CategoryAssignment]:
    """Load ``user_id``'s rules and categorize ``merchants`` in order."""

    engine = CategorizationEngine(
        load_rule_book(session, user_id), settings, llm_scorer=llm_scorer
    )
    return engine.categorize(merchants)


__all__ = [
    "CategorizationEngine",
    "MerchantRule",
    "RuleBook",
    "categorize_merchants",
    "load_rule_book",
]

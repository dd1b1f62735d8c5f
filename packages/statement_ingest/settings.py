"""Tunable ingestion policy.

Thresholds and keyword lists are product-policy knobs rather than structure,
so they live in one frozen settings object that every component receives.
Defaults mirror the values the system has been running with.

Environment overrides (see :meth:`IngestSettings.from_env`) use the
``STATEMENT_INGEST_`` prefix; list-valued settings are comma-separated, and
the category lexicon uses ``Category:kw1|kw2;Other:kw3``.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from decimal import Decimal, InvalidOperation
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator

_ENV_PREFIX = "STATEMENT_INGEST_"

DEFAULT_CATEGORY_KEYWORDS: dict[str, tuple[str, ...]] = {
    "Housing": ("rent", "mortgage", "hoa", "property management", "apartments"),
    "Utilities": ("electric", "water", "gas company", "internet", "comcast", "verizon", "at&t"),
    "Groceries": ("grocery", "market", "whole foods", "trader joe", "safeway", "kroger"),
    "Dining": ("restaurant", "cafe", "coffee", "starbucks", "pizza", "grill", "doordash"),
    "Transportation": ("uber", "lyft", "shell", "chevron", "parking", "transit", "fuel"),
    "Travel": ("airline", "airlines", "hotel", "airbnb", "marriott", "delta", "expedia"),
    "Shopping": ("amazon", "target", "walmart", "costco", "best buy", "etsy"),
    "Health": ("pharmacy", "cvs", "walgreens", "clinic", "dental", "medical"),
    "Entertainment": ("cinema", "theater", "ticketmaster", "steam", "concert"),
    "Subscriptions": ("netflix", "spotify", "hulu", "subscription", "icloud", "prime video"),
}


class IngestSettings(BaseModel):
    """Policy knobs for detection, categorization, and persistence."""

    model_config = ConfigDict(strict=True, extra="forbid", frozen=True)

    # Categorization
    approval_threshold: float = 0.75
    preview_threshold: float = 0.6
    # rapidfuzz scores are 0..100; matches scoring below this yield no category.
    similarity_cutoff: float = 60.0
    preview_neighbors: int = 5
    category_keywords: dict[str, tuple[str, ...]] = DEFAULT_CATEGORY_KEYWORDS
    # OpenAI fallback for merchants the rules and lexicon cannot approve; needs OPENAI_API_KEY.
    llm_categorization: bool = False
    llm_model: str = "gpt-4o-mini"

    # Convention detection
    negative_issuer_keywords: tuple[str, ...] = ("chase",)

    # Row classification
    payment_keywords: tuple[str, ...] = (
        "automatic payment",
        "payment thank you",
        "autopay",
        "credit card payment",
    )
    credit_card_payment_patterns: tuple[str, ...] = (
        r"credit.*card.*payment",
        r"statement.*payment",
        r"online.*payment",
        r"mobile payment",
    )
    merchant_max_length: int = 255

    # Persistence
    fingerprint_bucket_seconds: int = 3600
    insert_chunk_size: int = 500
    integrity_epsilon: Decimal = Decimal("0.01")
    max_file_bytes: int = 10 * 1024 * 1024

    @field_validator("approval_threshold", "preview_threshold")
    @classmethod
    def _unit_interval(cls, v: float) -> float:
        if 0.0 <= v <= 1.0:
            return v
        raise ValueError("threshold must be within [0,1]")

    @field_validator("similarity_cutoff")
    @classmethod
    def _percent(cls, v: float) -> float:
        if 0.0 <= v <= 100.0:
            return v
        raise ValueError("similarity_cutoff must be within [0,100]")

    @field_validator(
        "preview_neighbors",
        "merchant_max_length",
        "fingerprint_bucket_seconds",
        "insert_chunk_size",
        "max_file_bytes",
    )
    @classmethod
    def _positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be a positive integer")
        return v

    @field_validator("integrity_epsilon")
    @classmethod
    def _non_negative_epsilon(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("integrity_epsilon must be non-negative")
        return v

    @field_validator("negative_issuer_keywords", "payment_keywords")
    @classmethod
    def _casefold_keywords(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        return tuple(k.strip().casefold() for k in v if k.strip())

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> IngestSettings:
        """Build settings from ``STATEMENT_INGEST_*`` variables, keeping defaults for unset ones."""

        env = os.environ if environ is None else environ
        overrides: dict[str, Any] = {}
        for name, field in cls.model_fields.items():
            raw = env.get(_ENV_PREFIX + name.upper())
            if raw is None or not raw.strip():
                continue
            overrides[name] = _coerce_env_value(name, field.annotation, raw)
        return cls(**overrides)


def _coerce_env_value(name: str, annotation: Any, raw: str) -> Any:
    s = raw.strip()
    try:
        if annotation is bool:
            return _parse_flag(s)
        if annotation is str:
            return s
        if annotation is float:
            return float(s)
        if annotation is int:
            return int(s)
        if annotation is Decimal:
            return Decimal(s)
    except (ValueError, InvalidOperation) as exc:
        raise ValueError(f"invalid value for {_ENV_PREFIX}{name.upper()}: {raw!r}") from exc
    if name == "category_keywords":
        return _parse_lexicon(s)
    # Remaining fields are keyword tuples.
    return tuple(part.strip() for part in s.split(",") if part.strip())


def _parse_flag(s: str) -> bool:
    lowered = s.casefold()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"not a boolean: {s!r}")


def _parse_lexicon(s: str) -> dict[str, tuple[str, ...]]:
    lexicon: dict[str, tuple[str, ...]] = {}
    for entry in s.split(";"):
        if not entry.strip():
            continue
        category, sep, words = entry.partition(":")
        if not sep or not category.strip():
            raise ValueError(f"invalid category lexicon entry: {entry!r}")
        keywords = (w.strip().casefold() for w in words.split("|"))
        lexicon[category.strip()] = tuple(w for w in keywords if w)
    return lexicon


__all__ = ["DEFAULT_CATEGORY_KEYWORDS", "IngestSettings"]

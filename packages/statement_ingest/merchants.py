"""Merchant text cleanup and payment-merchant detection."""

from __future__ import annotations

import re

from .models import MerchantName
from .settings import IngestSettings

_WS = re.compile(r"\s+")


def normalize_merchant(raw: str, *, max_length: int = 255) -> MerchantName:
    """Trim, collapse whitespace, casefold, and truncate merchant text.

    The original text is kept on the result whenever normalization changed it
    so it can be persisted alongside the cleaned value.
    """

    normalized = _WS.sub(" ", raw).strip().casefold()[:max_length].rstrip()
    return MerchantName(normalized=normalized, original=None if normalized == raw else raw)


def is_payment_merchant(normalized: str, settings: IngestSettings | None = None) -> bool:
    """True when the merchant names a card/loan payment rather than a purchase."""

    keywords = (settings or IngestSettings()).payment_keywords
    text = normalized.casefold()
    return any(k in text for k in keywords)


__all__ = ["is_payment_merchant", "normalize_merchant"]

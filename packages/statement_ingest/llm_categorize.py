"""Optional LLM scorer for merchants that rules and the keyword lexicon cannot place.

The model returns a probability for every allowed category. Probabilities are
clamped to ``[0, 1]``, restricted to known category names, and renormalized to
sum to 1; the best category's probability becomes the confidence. Results are
cached per ``(model, categories, merchant)`` so a merchant repeated across
rows or files costs one request.

No client is created at import time; the first request creates it.
"""

from __future__ import annotations

import json
import math
import random
import time
from collections import OrderedDict
from collections.abc import Mapping, Sequence
from typing import Any

from openai import OpenAI, OpenAIError
from openai.types.responses import ResponseTextConfigParam

from .errors import CategoryScoringError
from .logging_setup import get_logger

_logger = get_logger("statement_ingest.llm_categorize")

# ---- Tunables (private) ------------------------------------------------------

_MAX_ATTEMPTS: int = 3
_BACKOFF_SCHEDULE_SEC: tuple[float, ...] = (0.5, 2.0)
_JITTER_PCT: float = 0.20
_CACHE_SIZE: int = 1000

_INSTRUCTIONS = (
    "You categorize credit card transactions by merchant. For the merchant given, "
    "return a probability between 0 and 1 for each allowed category. The "
    "probabilities must sum to 1. Use only the allowed category names."
)

type _CacheKey = tuple[str, tuple[str, ...], str]

_CACHE: OrderedDict[_CacheKey, dict[str, float]] = OrderedDict()


def clear_cache() -> None:
    _CACHE.clear()


# ---- Internal helpers --------------------------------------------------------


def _create_client() -> OpenAI:
    return OpenAI()


def _is_retryable(exc: BaseException) -> bool:
    """Return True only for HTTP 429 and 5xx errors."""

    sc = getattr(exc, "status_code", None)
    return isinstance(sc, int) and (sc == 429 or 500 <= sc < 600)


def _sleep_backoff(attempt_no: int) -> None:
    base = _BACKOFF_SCHEDULE_SEC[min(attempt_no - 1, len(_BACKOFF_SCHEDULE_SEC) - 1)]
    jitter = base * _JITTER_PCT
    time.sleep(max(0.0, base + random.uniform(-jitter, jitter)))


def _text_config(categories: Sequence[str]) -> ResponseTextConfigParam:
    return {
        "format": {
            "type": "json_schema",
            "name": "category_probabilities",
            "strict": True,
            "schema": {
                "type": "object",
                "additionalProperties": False,
                "properties": {
                    "probabilities": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "additionalProperties": False,
                            "properties": {
                                "category": {"type": "string", "enum": list(categories)},
                                "probability": {"type": "number"},
                            },
                            "required": ["category", "probability"],
                        },
                    }
                },
                "required": ["probabilities"],
            },
        }
    }


def _response_json(resp: Any) -> Mapping[str, Any]:
    text = getattr(resp, "output_text", None)
    if not isinstance(text, str) or not text:
        raise ValueError("Unexpected Responses API shape; unable to locate text output")
    try:
        decoded = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValueError("Model output was not valid JSON per the requested schema") from e
    if not isinstance(decoded, Mapping):
        raise ValueError("Model output was not a JSON object")
    return decoded


def parse_probabilities(
    payload: Mapping[str, Any], categories: Sequence[str]
) -> dict[str, float]:
    """Clamp, filter, and renormalize the model's per-category probabilities.

    Category names match case-insensitively and unknown names are dropped.
    When nothing usable remains every category gets an equal share.

    Raises
    ------
    ValueError
        When the payload has no ``probabilities`` list.
    """

    items = payload.get("probabilities")
    if not isinstance(items, list):
        raise ValueError("model output lacks a 'probabilities' list")
    by_key = {c.casefold(): c for c in categories}
    out: dict[str, float] = {}
    for item in items:
        if not isinstance(item, Mapping):
            continue
        name = by_key.get(str(item.get("category") or "").strip().casefold())
        raw_p = item.get("probability")
        if name is None or isinstance(raw_p, bool) or not isinstance(raw_p, (int, float)):
            continue
        p = float(raw_p)
        if math.isnan(p):
            continue
        out[name] = out.get(name, 0.0) + min(1.0, max(0.0, p))

    total = sum(out.values())
    if total <= 0:
        return {c: 1.0 / len(categories) for c in categories}
    return {name: p / total for name, p in out.items()}


# ---- Public scorer -----------------------------------------------------------


class LlmCategoryScorer:
    """Score merchants against a fixed list of category names with an OpenAI model."""

    def __init__(self, categories: Sequence[str], *, model: str = "gpt-4o-mini") -> None:
        names = tuple(dict.fromkeys(c.strip() for c in categories if c.strip()))
        if not names:
            raise ValueError("LlmCategoryScorer needs at least one category")
        self.categories = names
        self.model = model
        self._text_cfg = _text_config(names)
        self._client: OpenAI | None = None

    def probabilities(self, merchant: str) -> dict[str, float]:
        key = merchant.strip().casefold()
        cache_key = (self.model, self.categories, key)
        cached = _CACHE.get(cache_key)
        if cached is not None:
            _logger.debug("llm_categorize:cache_hit merchant=%r", key)
            return cached
        result = self._request(key)
        if len(_CACHE) >= _CACHE_SIZE:
            _CACHE.popitem(last=False)
        _CACHE[cache_key] = result
        return result

    def best(self, merchant: str) -> tuple[str, float]:
        """Return ``(category_name, probability)``; ties go to the earlier category."""

        probs = self.probabilities(merchant)
        name = max(self.categories, key=lambda c: probs.get(c, 0.0))
        return name, probs.get(name, 0.0)

    def _request(self, merchant: str) -> dict[str, float]:
        if self._client is None:
            try:
                self._client = _create_client()
            except OpenAIError as e:
                raise CategoryScoringError(f"OpenAI client unavailable: {e}") from e
        attempt = 1
        while True:
            t0 = time.perf_counter()
            try:
                resp = self._client.responses.create(
                    model=self.model,
                    instructions=_INSTRUCTIONS,
                    input=f"Merchant: {merchant}",
                    text=self._text_cfg,
                )
                probs = parse_probabilities(_response_json(resp), self.categories)
            except (OpenAIError, ValueError) as e:
                dt_ms = (time.perf_counter() - t0) * 1000.0
                if attempt >= _MAX_ATTEMPTS or not _is_retryable(e):
                    _logger.error(
                        "llm_categorize:failed merchant=%r attempts=%d latency_ms=%.2f error=%s",
                        merchant,
                        attempt,
                        dt_ms,
                        e.__class__.__name__,
                    )
                    raise CategoryScoringError(
                        f"LLM categorization failed for {merchant!r}: {e}"
                    ) from e
                _logger.warning(
                    "llm_categorize:retry merchant=%r attempt=%d latency_ms=%.2f error=%s",
                    merchant,
                    attempt,
                    dt_ms,
                    e.__class__.__name__,
                )
                _sleep_backoff(attempt)
                attempt += 1
                continue
            _logger.info(
                "llm_categorize:done merchant=%r latency_ms=%.2f",
                merchant,
                (time.perf_counter() - t0) * 1000.0,
            )
            return probs


__all__ = ["LlmCategoryScorer", "clear_cache", "parse_probabilities"]

"""Base scorer implementing the Template Method pattern.

All providers share the same scoring algorithm:
    score() → _call_with_retry() → _call_api()   ← only this differs per provider
                                  → _parse()
            → fallback_scores() when every attempt failed

Subclasses implement two things only:
  - __init__: validate and store the SDK client
  - _call_api: make one raw API call and return the text response,
    reporting token usage through _record_usage

When a response cache is attached, score() answers repeated prompts from it
and only stores validated, non-fallback results.
"""

from __future__ import annotations

import json
import logging
import re
import time
from abc import ABC, abstractmethod

from prgrade_core.metrics import LLM_CACHE, observe_call, record_llm_usage
from prgrade_core.models import CATEGORIES, LLMScores
from prgrade_core.prompt import SYSTEM_PROMPT
from prgrade_core.providers.cache import BaseResponseCache, prompt_key

logger = logging.getLogger(__name__)

_MAX_RETRIES = 3
_MAX_TOKENS = 2048
_BACKOFF_CAP = 5.0

FALLBACK_SUMMARY = "AI review unavailable. Scores are neutral defaults and will not reflect code quality."
FALLBACK_SUGGESTIONS = [
    "Request a re-review once the AI service is available.",
    "Check the static analysis and CI results below for concrete findings.",
]

_CAMEL_ALIASES = {
    "codeQuality": "code_quality",
    "problemSolving": "problem_solving",
    "bugRisk": "bug_risk",
    "devopsExecution": "devops_execution",
    "gitMaturity": "git_maturity",
    "deliverySpeed": "delivery_speed",
}


class LLMResponseError(ValueError):
    """The model answered, but not with a usable score object."""


def fallback_scores(reason: str = "") -> LLMScores:
    return LLMScores(
        scores={c: 5.0 for c in CATEGORIES},
        summary=FALLBACK_SUMMARY,
        suggestions=list(FALLBACK_SUGGESTIONS),
        fallback=True,
        raw=reason,
    )


class BaseScorer(ABC):
    MAX_TOKENS: int = _MAX_TOKENS
    BACKOFF_CAP: float = _BACKOFF_CAP
    service: str = "llm"

    def __init__(
        self,
        max_retries: int = _MAX_RETRIES,
        timeout: float = 30,
        cache: BaseResponseCache | None = None,
        cache_ttl: float = 3600,
    ):
        self.max_retries = max(1, max_retries)
        self.timeout = timeout
        self.cache = cache
        self.cache_ttl = cache_ttl

    @property
    def model_name(self) -> str:
        return getattr(self, "model", None) or self.service

    # ------------------------------------------------------------------ #
    # Public interface                                                     #
    # ------------------------------------------------------------------ #

    def score(self, user_prompt: str, system_prompt: str = SYSTEM_PROMPT) -> LLMScores:
        """Return validated scores, or the neutral fallback once retries run out. Never raises."""
        key = None
        if self.cache is not None and self.cache_ttl > 0:
            key = prompt_key(self.model_name, system_prompt, user_prompt)
            cached = self._from_cache(key)
            if cached is not None:
                return cached

        result = self._call_with_retry(system_prompt, user_prompt)
        if result is None:
            return fallback_scores("llm retries exhausted")
        if key is not None:
            self._to_cache(key, result)
        return result

    # ------------------------------------------------------------------ #
    # Abstract: implement in each provider                                #
    # ------------------------------------------------------------------ #

    @abstractmethod
    def _call_api(self, system_prompt: str, user_prompt: str) -> str:
        """Make a single API call and return the raw text response.

        Should raise on failure; _call_with_retry handles retries and logging.
        """

    # ------------------------------------------------------------------ #
    # Shared implementations                                               #
    # ------------------------------------------------------------------ #

    def _call_with_retry(self, system_prompt: str, user_prompt: str) -> LLMScores | None:
        """Call and parse up to max_retries times; an unparseable answer counts as a failed attempt."""
        for attempt in range(1, self.max_retries + 1):
            try:
                with observe_call(self.service, "score"):
                    raw = self._call_api(system_prompt, user_prompt)
                return self._parse(raw)
            except Exception as e:
                if attempt == self.max_retries:
                    logger.error(
                        "%s failed after %d attempts: %s",
                        self.__class__.__name__,
                        self.max_retries,
                        e,
                    )
                    return None
                delay = min(2 ** (attempt - 1), self.BACKOFF_CAP)
                logger.warning(
                    "%s error (attempt %d/%d): %s. Retrying in %ss...",
                    self.__class__.__name__,
                    attempt,
                    self.max_retries,
                    e,
                    delay,
                )
                time.sleep(delay)
        return None

    def _record_usage(self, input_tokens, output_tokens) -> None:
        # Providers omit usage on some responses.
        input_tokens = input_tokens if isinstance(input_tokens, int) else 0
        output_tokens = output_tokens if isinstance(output_tokens, int) else 0
        cost = record_llm_usage(self.model_name, input_tokens, output_tokens)
        logger.debug(
            "%s usage: %d input / %d output tokens (~$%.5f)", self.model_name, input_tokens, output_tokens, cost
        )

    def _from_cache(self, key: str) -> LLMScores | None:
        try:
            data = self.cache.get(key)
        except Exception as e:
            logger.warning("LLM cache lookup failed: %s", e)
            return None
        if data is None:
            LLM_CACHE.labels(result="miss").inc()
            return None
        try:
            scores = scores_from_dict(data, raw=str(data.get("raw") or ""))
        except LLMResponseError as e:
            logger.warning("Ignoring unusable cached LLM response: %s", e)
            LLM_CACHE.labels(result="miss").inc()
            return None
        LLM_CACHE.labels(result="hit").inc()
        logger.info("LLM cache hit for %s prompt %s", self.model_name, key[:12])
        return scores

    def _to_cache(self, key: str, result: LLMScores) -> None:
        try:
            self.cache.set(key, {**result.to_dict(), "raw": result.raw}, self.cache_ttl)
        except Exception as e:
            logger.warning("Could not cache LLM response: %s", e)

    def _parse(self, raw: str) -> LLMScores:
        """Extract and validate the JSON score object from the model's text."""
        if not raw:
            raise LLMResponseError("empty response")
        cleaned = re.sub(r"^```(?:json)?\s*", "", raw.strip())
        cleaned = re.sub(r"\s*```$", "", cleaned.strip())
        match = re.search(r"\{.*\}", cleaned, re.DOTALL)
        if not match:
            raise LLMResponseError(f"no JSON object in response: {raw[:200]!r}")
        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError as e:
            raise LLMResponseError(f"invalid JSON: {e}") from e
        return scores_from_dict(data, raw=raw)


def scores_from_dict(data: dict, raw: str = "") -> LLMScores:
    """Validate an already-decoded score object: all ten categories, numeric, within 0-10."""
    if not isinstance(data, dict):
        raise LLMResponseError("response is not a JSON object")
    data = dict(data)
    for camel, snake in _CAMEL_ALIASES.items():
        if camel in data and snake not in data:
            data[snake] = data[camel]

    scores: dict[str, float] = {}
    for category in CATEGORIES:
        value = data.get(category)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise LLMResponseError(f"missing or non-numeric score for {category!r}")
        if not 0 <= value <= 10:
            raise LLMResponseError(f"score for {category!r} out of range: {value}")
        scores[category] = float(value)

    suggestions = data.get("suggestions") or []
    if not isinstance(suggestions, list):
        suggestions = [str(suggestions)]
    return LLMScores(
        scores=scores,
        summary=str(data.get("summary") or ""),
        suggestions=[str(s) for s in suggestions],
        raw=raw,
    )

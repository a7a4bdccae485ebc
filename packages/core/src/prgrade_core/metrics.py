"""Prometheus metrics shared by the API process and the stage workers."""

from __future__ import annotations

import time
from contextlib import contextmanager

from prometheus_client import Counter, Histogram

JOB_DURATION = Histogram(
    "prgrade_job_duration_seconds",
    "Time spent processing one queue job",
    ["stage", "outcome"],
    buckets=(0.1, 0.5, 1, 2, 5, 10, 30, 60, 120, 300),
)

EXTERNAL_CALL_LATENCY = Histogram(
    "prgrade_external_call_seconds",
    "Latency of calls to GitHub, the LLM provider and the mailer",
    ["service", "operation"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30),
)

WEBHOOKS_RECEIVED = Counter(
    "prgrade_webhooks_received_total",
    "Webhook deliveries accepted after signature verification",
    ["event"],
)

DEAD_LETTERS = Counter(
    "prgrade_dead_letters_total",
    "Records appended to the dead-letter store",
    ["queue"],
)

LLM_TOKENS = Counter(
    "prgrade_llm_tokens_total",
    "Tokens reported by the LLM provider",
    ["model", "direction"],
)

LLM_COST = Counter(
    "prgrade_llm_cost_usd_total",
    "Estimated LLM spend in US dollars, for models with known pricing",
    ["model"],
)

LLM_CACHE = Counter(
    "prgrade_llm_cache_requests_total",
    "Prompt response cache lookups",
    ["result"],
)

# USD per one million (input, output) tokens.
MODEL_PRICING = {
    "llama-3.3-70b-versatile": (0.59, 0.79),
    "llama-3.1-8b-instant": (0.05, 0.08),
    "gpt-4o-mini": (0.15, 0.60),
    "gpt-4o": (2.50, 10.00),
    "claude-sonnet-4-20250514": (3.00, 15.00),
}


def record_llm_usage(model: str, input_tokens: int, output_tokens: int) -> float:
    """Count tokens for ``model`` and return the estimated cost (0.0 when pricing is unknown)."""
    LLM_TOKENS.labels(model=model, direction="input").inc(input_tokens)
    LLM_TOKENS.labels(model=model, direction="output").inc(output_tokens)
    pricing = MODEL_PRICING.get(model)
    if pricing is None:
        return 0.0
    cost = (input_tokens * pricing[0] + output_tokens * pricing[1]) / 1_000_000
    LLM_COST.labels(model=model).inc(cost)
    return cost


@contextmanager
def observe_call(service: str, operation: str):
    """Time the wrapped block into EXTERNAL_CALL_LATENCY, success or not."""
    start = time.monotonic()
    try:
        yield
    finally:
        EXTERNAL_CALL_LATENCY.labels(service=service, operation=operation).observe(time.monotonic() - start)

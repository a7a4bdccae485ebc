"""Core PR review orchestration: GitHub data → static analysis → LLM → fused score."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from prgrade_core.analyzers.runner import run_static_analysis
from prgrade_core.errors import FatalJobError, MissingCredentialsError, ReviewStageError
from prgrade_core.gh.auth import github_client
from prgrade_core.gh.pull_request import (
    fetch_bounded_diff,
    fetch_ci_status,
    fetch_pr_metadata,
    fetch_run_report,
    get_repo,
)
from prgrade_core.models import CATEGORIES, CIReport, DiffFile, FusedScore, LLMScores, PRMetadata, StaticReport
from prgrade_core.prompt import build_scoring_prompt
from prgrade_core.providers.anthropic import AnthropicScorer
from prgrade_core.providers.base import BaseScorer
from prgrade_core.providers.cache import BaseResponseCache
from prgrade_core.providers.openai import GroqScorer, OpenAIScorer
from prgrade_core.scoring.fusion import generate_score

logger = logging.getLogger(__name__)

_BADGE_EMOJI = {"GREEN": "🟢", "YELLOW": "🟡", "RED": "🔴"}

# workflow_run conclusions → CI status, used when the API has no run data yet.
_CONCLUSION_STATUS = {
    "success": "success",
    "failure": "failure",
    "timed_out": "failure",
    "cancelled": "cancelled",
}


@dataclass
class ReviewOutcome:
    """Everything the worker needs to persist a review and score."""

    metadata: PRMetadata
    files: list[DiffFile]
    static_report: StaticReport
    ci_report: CIReport
    llm: LLMScores
    score: FusedScore
    pull: Any = field(default=None, repr=False)
    elapsed_seconds: float = 0.0


_PROVIDERS = {
    "groq": (GroqScorer, "groq_api_key", "GROQ_API_KEY"),
    "openai": (OpenAIScorer, "openai_api_key", "OPENAI_API_KEY"),
    "anthropic": (AnthropicScorer, "anthropic_api_key", "ANTHROPIC_API_KEY"),
}


def build_scorer(config: dict, cache: BaseResponseCache | None = None) -> BaseScorer:
    """Instantiate the configured provider. Missing credentials are fatal for the job."""
    provider = config.get("llm_provider", "groq")
    if provider not in _PROVIDERS:
        raise FatalJobError(f"Unknown LLM provider: {provider!r}. Choose one of {', '.join(sorted(_PROVIDERS))}.")
    scorer_cls, key_name, env_name = _PROVIDERS[provider]
    api_key = config.get(key_name)
    if not api_key:
        raise MissingCredentialsError(f"{env_name} must be set to use the {provider!r} provider.")
    scorer = scorer_cls(
        api_key=api_key,
        model=config.get("llm_model"),
        timeout=config.get("llm_timeout", 30),
        max_retries=config.get("llm_max_retries", 3),
    )
    scorer.cache = cache
    scorer.cache_ttl = config.get("llm_cache_ttl", 3600)
    return scorer


class ReviewPipeline:
    """Runs steps 1–8 of a PR review. Persistence and chaining belong to the caller.

    Steps 1–4 (credentials, metadata, diff, static analysis) raise their own
    errors, as does a missing LLM provider key. Anything failing after static
    analysis is re-raised as a ReviewStageError carrying the static report.
    """

    def __init__(
        self,
        config: dict,
        scorer: BaseScorer | None = None,
        client_factory: Callable = github_client,
        analyzers: list | None = None,
        cache: BaseResponseCache | None = None,
    ):
        self.config = config
        self._scorer = scorer
        self._client_factory = client_factory
        self._analyzers = analyzers
        self._cache = cache

    @property
    def scorer(self) -> BaseScorer:
        if self._scorer is None:
            self._scorer = build_scorer(self.config, self._cache)
        return self._scorer

    def run(
        self,
        repo_full_name: str,
        pr_number: int,
        installation_id: str | int | None = None,
        conclusion: str | None = None,
        logs_url: str | None = None,
    ) -> ReviewOutcome:
        start = time.monotonic()
        # Resolved first: a missing LLM key must fail the job before any GitHub call.
        scorer = self.scorer

        gh = self._client_factory(self.config, installation_id)
        repo = get_repo(gh, repo_full_name)
        metadata, pull = fetch_pr_metadata(repo, pr_number)
        files = fetch_bounded_diff(
            repo,
            pull,
            metadata.head_sha,
            max_files=self.config.get("max_diff_files", 5),
            max_lines=self.config.get("max_lines_per_file", 1000),
        )
        static_report = run_static_analysis(files, metadata, self._analyzers)

        try:
            ci_report = fetch_ci_status(repo, metadata.head_sha)
            if ci_report.status in ("unknown", "no_workflows") and logs_url:
                ci_report = fetch_run_report(repo, logs_url) or ci_report
            if ci_report.status in ("unknown", "no_workflows") and conclusion in _CONCLUSION_STATUS:
                ci_report = CIReport(status=_CONCLUSION_STATUS[conclusion], conclusion=conclusion)

            prompt = build_scoring_prompt(metadata, files, static_report, ci_report)
            llm = scorer.score(prompt)
            score = generate_score(llm, static_report, ci_report, metadata)
        except Exception as e:
            raise ReviewStageError(f"Review of {repo_full_name}#{pr_number} failed: {e}", static_report, e) from e

        elapsed = time.monotonic() - start
        logger.info(
            "Reviewed %s#%d: total=%.1f badge=%s fallback=%s rules=%d (%.1fs)",
            repo_full_name,
            pr_number,
            score.total,
            score.badge,
            llm.fallback,
            len(score.rules_applied),
            elapsed,
        )
        return ReviewOutcome(
            metadata=metadata,
            files=files,
            static_report=static_report,
            ci_report=ci_report,
            llm=llm,
            score=score,
            pull=pull,
            elapsed_seconds=elapsed,
        )


def _label(category: str) -> str:
    return category.replace("_", " ").title()


def build_comment_body(score: FusedScore, frontend_url: str | None = None, submission_id: str | None = None) -> str:
    """Markdown summary posted back on the pull request."""
    emoji = _BADGE_EMOJI.get(score.badge, "")
    lines = [
        "## prgrade review",
        "",
        f"**Score: {score.total:g}/100** {emoji} `{score.badge}`",
        "",
    ]
    if score.fallback:
        lines += ["> AI review was unavailable; category scores are neutral defaults.", ""]
    if score.summary:
        lines += [score.summary, ""]

    lines += ["| Category | Score |", "|----------|------:|"]
    for category in CATEGORIES:
        lines.append(f"| {_label(category)} | {score.breakdown[category]:g} |")

    if score.rules_applied:
        lines += ["", "**Adjustments**", ""]
        lines += [f"- `{r.rule}`: {_label(r.category)} {r.action} ({r.reason})" for r in score.rules_applied]

    if score.suggestions:
        lines += ["", "**Suggestions**", ""]
        lines += [f"- {s}" for s in score.suggestions[:5]]

    if frontend_url and submission_id:
        lines += ["", f"[View full report]({frontend_url.rstrip('/')}/submissions/{submission_id})"]

    return "\n".join(lines)

"""Review stage: run the PR review pipeline, persist results, chain the Score stage."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from prgrade_core.errors import ReviewStageError, SubmissionNotFoundError
from prgrade_core.gh.pull_request import upsert_review_comment
from prgrade_core.reviewer import build_comment_body
from prgrade_store.models import PRReviewRecord, ScoreRecord
from prgrade_worker.jobs import ScoreJob

if TYPE_CHECKING:
    from prgrade_core.models import FusedScore
    from prgrade_core.reviewer import ReviewOutcome, ReviewPipeline
    from prgrade_store.base import BaseStore
    from prgrade_store.models import Job
    from prgrade_worker.enqueue import Enqueuer
    from prgrade_worker.jobs import ReviewJob

logger = logging.getLogger(__name__)


def score_record(submission_id: str, fused: FusedScore) -> ScoreRecord:
    return ScoreRecord(
        submission_id=submission_id,
        scores=dict(fused.breakdown),
        reliability=fused.reliability,
        total_score=fused.total,
        badge=fused.badge,
        details=fused.details(),
    )


class ReviewStage:
    def __init__(self, store: BaseStore, enqueuer: Enqueuer, pipeline: ReviewPipeline, config: dict):
        self.store = store
        self.enqueuer = enqueuer
        self.pipeline = pipeline
        self.config = config

    def __call__(self, job: ReviewJob, row: Job | None = None) -> dict:
        if self.store.get_submission(job.submission_id) is None:
            raise SubmissionNotFoundError(job.submission_id)

        try:
            outcome = self.pipeline.run(
                job.repo_full_name,
                job.pr_number,
                installation_id=job.installation_id,
                conclusion=job.conclusion,
                logs_url=job.logs_url,
            )
        except ReviewStageError as e:
            self._save_partial(job, e)
            raise

        review = self.store.add_review(
            PRReviewRecord(
                submission_id=job.submission_id,
                pr_number=job.pr_number,
                review_json=self._review_json(job, outcome),
                static_report=outcome.static_report.to_dict(),
                suggestions=list(outcome.llm.suggestions),
            )
        )
        score = self.store.upsert_score(score_record(job.submission_id, outcome.score))
        # A redelivered queue job keeps its id, so the Score job it chains collapses onto the first one.
        revision = row.id if row is not None else str(review.id)
        self.enqueuer.enqueue(
            ScoreJob(submission_id=job.submission_id, revision=revision),
            job_id=f"score:{job.submission_id}:{revision}",
        )

        if self.config.get("post_pr_comment", True):
            self._post_comment(job, outcome)

        return {
            "review_id": review.id,
            "score_id": score.id,
            "total_score": score.total_score,
            "badge": score.badge,
            "fallback": outcome.llm.fallback,
        }

    @staticmethod
    def _review_json(job: ReviewJob, outcome: ReviewOutcome) -> dict:
        return {
            "llm": outcome.llm.to_dict(),
            "ci": outcome.ci_report.to_dict(),
            "metadata": outcome.metadata.to_dict(),
            "files": [f.filename for f in outcome.files],
            "event": job.event,
            "action": job.action,
            "logs_url": job.logs_url,
        }

    def _save_partial(self, job: ReviewJob, error: ReviewStageError) -> None:
        try:
            self.store.add_review(
                PRReviewRecord(
                    submission_id=job.submission_id,
                    pr_number=job.pr_number,
                    review_json={"error": str(error.cause or error), "event": job.event},
                    static_report=error.static_report.to_dict(),
                    partial=True,
                )
            )
            logger.info("Saved partial review for submission %s", job.submission_id)
        except Exception:
            logger.exception("Could not save partial review for submission %s", job.submission_id)

    def _post_comment(self, job: ReviewJob, outcome: ReviewOutcome) -> None:
        body = build_comment_body(outcome.score, self.config.get("frontend_url"), job.submission_id)
        try:
            upsert_review_comment(outcome.pull, job.submission_id, body)
        except Exception as e:
            logger.warning("Could not post review comment on %s#%d: %s", job.repo_full_name, job.pr_number, e)

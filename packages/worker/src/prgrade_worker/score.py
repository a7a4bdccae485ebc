from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from prgrade_core.errors import PrgradeError, SubmissionNotFoundError
from prgrade_core.events import EventType
from prgrade_store.models import SubmissionStatus
from prgrade_worker.jobs import PortfolioJob

if TYPE_CHECKING:
    from prgrade_core.events import EventBus
    from prgrade_store.base import BaseStore
    from prgrade_store.models import Job
    from prgrade_worker.enqueue import Enqueuer
    from prgrade_worker.jobs import ScoreJob

logger = logging.getLogger(__name__)


class ScoreStage:
    """Mark the submission reviewed, chain the Portfolio stage and raise ScoreReady."""

    def __init__(self, store: BaseStore, enqueuer: Enqueuer, bus: EventBus):
        self.store = store
        self.enqueuer = enqueuer
        self.bus = bus

    def __call__(self, job: ScoreJob, row: Job | None = None) -> dict:
        submission = self.store.get_submission(job.submission_id)
        if submission is None:
            raise SubmissionNotFoundError(job.submission_id)
        score = self.store.get_score(submission.id)
        if score is None:
            raise PrgradeError(f"No score stored yet for submission {submission.id}")

        self.store.update_submission_status(submission.id, SubmissionStatus.REVIEWED)
        revision = job.revision or score.updated_at
        self.enqueuer.enqueue(
            PortfolioJob(submission_id=submission.id, user_id=submission.user_id, score_id=score.id, revision=revision),
            job_id=f"portfolio:{submission.id}:{revision}",
        )
        self.bus.publish(
            EventType.SCORE_READY,
            {
                "event_id": f"{EventType.SCORE_READY.value}:{submission.id}:{revision}",
                "user_id": submission.user_id,
                "submission_id": submission.id,
                "score_id": score.id,
                "total_score": score.total_score,
                "badge": score.badge,
            },
        )
        logger.info("Submission %s reviewed: %.1f (%s)", submission.id, score.total_score, score.badge)
        return {"score_id": score.id, "status": SubmissionStatus.REVIEWED}

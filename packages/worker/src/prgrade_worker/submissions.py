"""Submit-for-review and manual PR fetch, both built on cascading discovery."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Callable

from prgrade_core.discovery import (
    AUTOMATIC_BUDGET,
    MANUAL_BUDGET,
    DiscoveryBudget,
    DiscoveryResult,
    DiscoveryState,
    PRDiscovery,
)
from prgrade_core.errors import NotSubmissionOwnerError, PRNotFoundError, SubmissionNotFoundError
from prgrade_core.gh.auth import github_client
from prgrade_core.gh.pull_request import get_repo, list_open_pulls, parse_repo_url
from prgrade_store.models import SubmissionStatus
from prgrade_worker.jobs import ReviewJob

if TYPE_CHECKING:
    from prgrade_store.base import BaseStore
    from prgrade_store.models import Submission
    from prgrade_worker.enqueue import Enqueuer

logger = logging.getLogger(__name__)


class SubmissionService:
    def __init__(
        self,
        store: BaseStore,
        enqueuer: Enqueuer,
        config: dict,
        client_factory: Callable = github_client,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.enqueuer = enqueuer
        self.config = config
        self._client_factory = client_factory
        self._sleep = sleep
        discovery = config.get("discovery") or {}
        self.automatic_budget = (
            DiscoveryBudget.from_config(discovery["automatic"]) if "automatic" in discovery else AUTOMATIC_BUDGET
        )
        self.manual_budget = DiscoveryBudget.from_config(discovery["manual"]) if "manual" in discovery else MANUAL_BUDGET

    def submit_for_review(self, submission_id: str, user_id: str) -> DiscoveryResult:
        """Find the submission's PR (automatic budgets) and queue a review.

        An exhausted search is not an error: the submission stays unattached
        and the next pull_request webhook can still pick it up.
        """
        submission = self._load(submission_id, user_id)
        if submission.pr_number is not None:
            self.store.update_submission_status(submission.id, SubmissionStatus.SUBMITTED)
            self._enqueue_review(submission, submission.pr_number)
            return DiscoveryResult(DiscoveryState.FOUND, submission.pr_number)
        return self._discover(submission, self.automatic_budget)

    def fetch_pr(self, submission_id: str, user_id: str) -> int:
        """Manual retry with short budgets. Raises PRNotFoundError when nothing turns up."""
        submission = self._load(submission_id, user_id)
        if submission.pr_number is not None:
            self._enqueue_review(submission, submission.pr_number)
            return submission.pr_number
        result = self._discover(submission, self.manual_budget)
        if not result.found:
            raise PRNotFoundError(self._repo_full_name(submission), result.attempts, result.elapsed)
        return result.pr_number

    def _load(self, submission_id: str, user_id: str) -> Submission:
        submission = self.store.get_submission(submission_id)
        if submission is None:
            raise SubmissionNotFoundError(submission_id)
        if submission.user_id != user_id:
            raise NotSubmissionOwnerError(submission_id, user_id)
        return submission

    @staticmethod
    def _repo_full_name(submission: Submission) -> str:
        return parse_repo_url(submission.repo_url) or submission.repo_key

    def _installation_id(self, submission: Submission) -> str | None:
        user = self.store.get_user(submission.user_id)
        return user.github_install_id if user else None

    def _discover(self, submission: Submission, budget: DiscoveryBudget) -> DiscoveryResult:
        repo_full_name = self._repo_full_name(submission)
        gh = self._client_factory(self.config, self._installation_id(submission))
        repo = get_repo(gh, repo_full_name)

        result = PRDiscovery(lambda: list_open_pulls(repo), budget, sleep=self._sleep).run(repo_full_name)
        if not result.found:
            return result

        if not self.store.attach_pr(submission.id, result.pr_number):
            # Attached concurrently (e.g. by a webhook); the first attachment stands.
            current = self.store.get_submission(submission.id)
            if current is not None and current.pr_number != result.pr_number:
                logger.warning(
                    "Submission %s already tracks PR #%s; ignoring discovered PR #%d",
                    submission.id,
                    current.pr_number,
                    result.pr_number,
                )
                result.pr_number = current.pr_number
        submission.pr_number = result.pr_number
        self._enqueue_review(submission, result.pr_number)
        return result

    def _enqueue_review(self, submission: Submission, pr_number: int) -> str:
        return self.enqueuer.enqueue(
            ReviewJob(
                submission_id=submission.id,
                repo_full_name=self._repo_full_name(submission),
                pr_number=pr_number,
                installation_id=self._installation_id(submission),
                event="manual",
            )
        )

"""Exception hierarchy shared by every prgrade package.

Workers decide retry behaviour from the exception class alone:

    FatalJobError      → never retried; exhausted review jobs go to the dead-letter store
    any other error    → retried by the queue with exponential backoff
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from prgrade_core.models import StaticReport


class PrgradeError(Exception):
    """Base class for all errors raised by prgrade."""


class FatalJobError(PrgradeError):
    """The job can never succeed; retrying would only repeat the failure."""


class MissingCredentialsError(FatalJobError):
    """A required credential is missing: a GitHub installation or token, or the LLM provider key."""


class SubmissionNotFoundError(FatalJobError):
    def __init__(self, submission_id: str):
        super().__init__(f"Submission not found: {submission_id}")
        self.submission_id = submission_id


class InvalidJobPayloadError(FatalJobError):
    """A job payload failed validation against its stage schema."""


class GatewayError(PrgradeError):
    """A transient failure talking to GitHub, the LLM provider or the mailer."""

    def __init__(self, service: str, operation: str, cause: Exception | str):
        super().__init__(f"{service} {operation} failed: {cause}")
        self.service = service
        self.operation = operation
        self.cause = cause


class ReviewStageError(PrgradeError):
    """Raised when the review pipeline fails after static analysis completed.

    Carries the static report so the worker can persist a partial review
    before the queue retries the job.
    """

    def __init__(self, message: str, static_report: StaticReport, cause: Exception | None = None):
        super().__init__(message)
        self.static_report = static_report
        self.cause = cause


class NotSubmissionOwnerError(PrgradeError):
    def __init__(self, submission_id: str, user_id: str):
        super().__init__(f"User {user_id} does not own submission {submission_id}")
        self.submission_id = submission_id
        self.user_id = user_id


class PRNotFoundError(PrgradeError):
    """Cascading discovery exhausted every phase without finding an open PR."""

    def __init__(self, repo_full_name: str, attempts: int, elapsed: float):
        super().__init__(f"No open pull request found for {repo_full_name} after {attempts} attempts ({elapsed:.1f}s)")
        self.repo_full_name = repo_full_name
        self.attempts = attempts
        self.elapsed = elapsed

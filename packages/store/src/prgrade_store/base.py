"""Abstract store interfaces.

Workers and the API depend on these ABCs, not on a concrete backend. Every
write keyed by submission id is an upsert or a conditional update, so a
redelivered job can run again without duplicating rows.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from prgrade_store.models import (
        Company,
        DeadLetterRecord,
        InterviewRequest,
        NotificationPreferences,
        NotificationRecord,
        PortfolioRecord,
        PRReviewRecord,
        Project,
        ScoreRecord,
        Submission,
        User,
    )


class BaseStore(ABC):
    """Domain records the pipeline reads and writes."""

    # -- users ---------------------------------------------------------- #

    @abstractmethod
    def create_user(self, user: User) -> User: ...

    @abstractmethod
    def get_user(self, user_id: str) -> User | None: ...

    @abstractmethod
    def find_user_by_github_id(self, github_id: int) -> User | None: ...

    @abstractmethod
    def find_user_by_github_username(self, username: str) -> User | None: ...

    @abstractmethod
    def set_installation(self, user_id: str, installation_id: str) -> None:
        """Link a GitHub App installation to a user."""

    @abstractmethod
    def clear_installation(self, installation_id: str) -> int:
        """Unlink an installation from every user holding it. Returns the number of users updated."""

    # -- projects / submissions ----------------------------------------- #

    @abstractmethod
    def create_project(self, project: Project) -> Project: ...

    @abstractmethod
    def get_project(self, project_id: str) -> Project | None: ...

    @abstractmethod
    def create_submission(self, submission: Submission) -> Submission: ...

    @abstractmethod
    def get_submission(self, submission_id: str) -> Submission | None: ...

    @abstractmethod
    def find_submissions_by_repo(self, repo_key: str) -> list[Submission]:
        """All submissions whose repository matches ``repo_key`` (lower-case ``owner/name``), newest first."""

    @abstractmethod
    def find_submission_by_pr(self, repo_key: str, pr_number: int) -> Submission | None: ...

    @abstractmethod
    def attach_pr(self, submission_id: str, pr_number: int) -> bool:
        """Attach a PR number if none is attached yet. Returns False when one already was."""

    @abstractmethod
    def update_submission_status(self, submission_id: str, status: str) -> None: ...

    # -- reviews / scores / portfolios ---------------------------------- #

    @abstractmethod
    def add_review(self, record: PRReviewRecord) -> PRReviewRecord: ...

    @abstractmethod
    def list_reviews(self, submission_id: str) -> list[PRReviewRecord]:
        """Oldest first. Returns an empty list if none exist."""

    @abstractmethod
    def upsert_score(self, record: ScoreRecord) -> ScoreRecord:
        """Insert or replace the submission's score; the row id never changes once created."""

    @abstractmethod
    def get_score(self, submission_id: str) -> ScoreRecord | None: ...

    @abstractmethod
    def upsert_portfolio(self, record: PortfolioRecord) -> PortfolioRecord: ...

    @abstractmethod
    def get_portfolio(self, submission_id: str) -> PortfolioRecord | None: ...

    # -- notifications -------------------------------------------------- #

    @abstractmethod
    def upsert_notification(self, record: NotificationRecord) -> tuple[NotificationRecord, bool]:
        """Insert unless (user_id, type, dedupe_key) exists. Returns the stored record and whether it was new."""

    @abstractmethod
    def mark_email_sent(self, notification_id: str) -> None: ...

    @abstractmethod
    def list_notifications(self, user_id: str, unread_only: bool = False) -> list[NotificationRecord]: ...

    @abstractmethod
    def get_preferences(self, user_id: str) -> NotificationPreferences | None: ...

    @abstractmethod
    def save_preferences(self, prefs: NotificationPreferences) -> None: ...

    # -- companies / interviews ----------------------------------------- #

    @abstractmethod
    def create_company(self, company: Company) -> Company: ...

    @abstractmethod
    def get_company(self, company_id: str) -> Company | None: ...

    @abstractmethod
    def create_interview_request(self, request: InterviewRequest) -> InterviewRequest: ...

    @abstractmethod
    def get_interview_request(self, request_id: str) -> InterviewRequest | None: ...

    def ping(self) -> bool:
        return True

    def close(self) -> None:
        """Release any resources held by the store. Default is a no-op."""


class BaseDeadLetterStore(ABC):
    """Append-only record of jobs that exhausted their retries.

    Records have no delete operation.
    """

    @abstractmethod
    def append(self, record: DeadLetterRecord) -> DeadLetterRecord: ...

    @abstractmethod
    def get(self, record_id: int) -> DeadLetterRecord | None: ...

    @abstractmethod
    def list(
        self,
        submission_id: str | None = None,
        queue: str | None = None,
        limit: int = 100,
    ) -> list[DeadLetterRecord]:
        """Newest first."""

    @abstractmethod
    def count(self) -> int: ...

    def close(self) -> None:
        pass

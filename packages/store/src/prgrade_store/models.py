"""Persistent record models.

Decoupled from prgrade_core so the store layer can be used independently;
the worker layer maps core results onto these records.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


class SubmissionStatus:
    IN_PROGRESS = "IN_PROGRESS"
    SUBMITTED = "SUBMITTED"
    REVIEWED = "REVIEWED"


class JobStatus:
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class User:
    email: str
    name: str = ""
    github_id: int | None = None
    github_username: str = ""
    github_install_id: str | None = None
    avatar_url: str = ""
    developer_type: str = ""
    id: str = field(default_factory=new_id)


@dataclass
class Project:
    title: str
    description: str = ""
    id: str = field(default_factory=new_id)


@dataclass
class Submission:
    user_id: str
    repo_url: str
    project_id: str | None = None
    repo_key: str = ""
    pr_number: int | None = None
    status: str = SubmissionStatus.IN_PROGRESS
    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=utcnow)
    updated_at: str = field(default_factory=utcnow)


@dataclass
class PRReviewRecord:
    """One review execution. Append-only: a redelivered job adds a new row."""

    submission_id: str
    pr_number: int
    review_json: dict = field(default_factory=dict)
    static_report: dict = field(default_factory=dict)
    suggestions: list[str] = field(default_factory=list)
    partial: bool = False
    id: int | None = None
    created_at: str = field(default_factory=utcnow)


@dataclass
class ScoreRecord:
    """The current score of a submission; one row per submission."""

    submission_id: str
    scores: dict[str, float]
    reliability: float
    total_score: float
    badge: str
    details: dict = field(default_factory=dict)
    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=utcnow)
    updated_at: str = field(default_factory=utcnow)


@dataclass
class PortfolioRecord:
    submission_id: str
    user_id: str
    slug: str
    score_id: str
    portfolio: dict = field(default_factory=dict)
    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=utcnow)
    updated_at: str = field(default_factory=utcnow)


@dataclass
class NotificationRecord:
    user_id: str
    type: str
    title: str
    message: str
    data: dict = field(default_factory=dict)
    dedupe_key: str = ""
    read: bool = False
    email_sent: bool = False
    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=utcnow)


@dataclass
class NotificationPreferences:
    user_id: str
    email_enabled: bool = True
    email_score_ready: bool = True
    email_portfolio_ready: bool = True
    email_interview_request: bool = True
    email_interview_update: bool = True


@dataclass
class Company:
    name: str
    user_id: str
    email: str = ""
    id: str = field(default_factory=new_id)


@dataclass
class InterviewRequest:
    company_id: str
    user_id: str
    submission_id: str | None = None
    status: str = "PENDING"
    message: str = ""
    id: str = field(default_factory=new_id)


@dataclass
class Job:
    id: str
    queue: str
    payload: dict
    status: str
    attempts_made: int
    max_attempts: int
    run_at: float
    locked_until: float | None = None
    worker_id: str | None = None
    last_error: str | None = None
    last_stack: str | None = None
    created_at: float = 0.0
    finished_at: float | None = None


@dataclass
class DeadLetterRecord:
    original_queue: str
    payload: dict
    failure_reason: str
    failure_stack: str = ""
    failure_count: int = 1
    original_job_id: str | None = None
    submission_id: str | None = None
    pr_number: int | None = None
    repo_full_name: str | None = None
    id: int | None = None
    failed_at: str = field(default_factory=utcnow)

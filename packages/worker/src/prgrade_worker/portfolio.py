"""Portfolio stage: turn a scored submission into a shareable artifact."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from prgrade_core.errors import PrgradeError, SubmissionNotFoundError
from prgrade_core.events import EventType
from prgrade_core.gh.pull_request import parse_repo_url
from prgrade_core.models import CATEGORIES
from prgrade_store.models import PortfolioRecord, utcnow

if TYPE_CHECKING:
    from prgrade_core.events import EventBus
    from prgrade_store.base import BaseStore
    from prgrade_store.models import Job, PRReviewRecord, Project, ScoreRecord, Submission, User
    from prgrade_worker.jobs import PortfolioJob

logger = logging.getLogger(__name__)

STRENGTH_THRESHOLD = 8.0
WEAKNESS_THRESHOLD = 5.0

_BADGE_SUMMARY = {
    "GREEN": "Production-ready",
    "YELLOW": "Needs mentorship",
    "RED": "Requires significant improvement",
}

_CATEGORY_FOCUS = {
    "code_quality": "readability, structure and lint hygiene",
    "problem_solving": "how well the change solves the stated problem",
    "bug_risk": "likelihood of defects (higher is safer)",
    "devops_execution": "CI, containers and pipeline configuration",
    "optimization": "efficiency of code and build artifacts",
    "documentation": "PR description and inline documentation",
    "git_maturity": "commit and PR hygiene",
    "collaboration": "how reviewable and well-communicated the change is",
    "delivery_speed": "shipping in small, passing increments",
    "security": "absence of exposed secrets and unsafe practices",
}


def _label(category: str) -> str:
    return category.replace("_", " ").title()


def _tier(score: float) -> str:
    if score >= STRENGTH_THRESHOLD:
        return "Strong"
    if score > WEAKNESS_THRESHOLD:
        return "Adequate"
    return "Needs work"


def portfolio_slug(github_username: str, submission_id: str) -> str:
    return f"{(github_username or 'developer').lower()}-{submission_id[:8]}"


def pr_url(repo_url: str, pr_number: int | None) -> str | None:
    full_name = parse_repo_url(repo_url)
    if not full_name or not pr_number:
        return None
    return f"https://github.com/{full_name}/pull/{pr_number}"


def build_portfolio(
    user: User,
    submission: Submission,
    score: ScoreRecord,
    review: PRReviewRecord | None = None,
    project: Project | None = None,
) -> dict:
    details = score.details or {}
    review_json = review.review_json if review else {}
    static = review.static_report if review else {}
    ci = review_json.get("ci") or {}

    category_details = [
        {
            "category": c,
            "label": _label(c),
            "score": score.scores.get(c, 0.0),
            "explanation": f"{_tier(score.scores.get(c, 0.0))} {_CATEGORY_FOCUS[c]}.",
        }
        for c in CATEGORIES
    ]
    strengths = [d["label"] for d in category_details if d["score"] >= STRENGTH_THRESHOLD]
    weaknesses = [d["label"] for d in category_details if d["score"] <= WEAKNESS_THRESHOLD]

    return {
        "header": {
            "name": user.name,
            "github_username": user.github_username,
            "avatar_url": user.avatar_url,
            "developer_type": user.developer_type,
        },
        "score": {
            "total_score": score.total_score,
            "badge": score.badge,
            "summary": _BADGE_SUMMARY.get(score.badge, ""),
            "breakdown": dict(score.scores),
            "category_details": category_details,
            "strengths": strengths,
            "weaknesses": weaknesses,
        },
        "project": {
            "title": project.title if project else "",
            "description": project.description if project else "",
            "repo_url": submission.repo_url,
            "pr_number": submission.pr_number,
            "pr_url": pr_url(submission.repo_url, submission.pr_number),
            "ci_status": ci.get("status", "unknown"),
        },
        "review": {
            "summary": details.get("summary", ""),
            "suggestions": details.get("suggestions", []),
            "fallback": details.get("fallback", False),
            "static_analysis": {
                "lint_errors": static.get("lint_errors", 0),
                "lint_warnings": static.get("lint_warnings", 0),
                "docker_issues": static.get("docker_issue_count", 0),
                "yaml_issues": static.get("yaml_issue_count", 0),
                "security_alerts": static.get("security_alert_count", 0),
            },
        },
        "evidence": details.get("evidence", []),
        "timeline": {
            "submitted_at": submission.created_at,
            "reviewed_at": review.created_at if review else None,
            "scored_at": score.updated_at,
            "published_at": utcnow(),
        },
    }


class PortfolioStage:
    def __init__(self, store: BaseStore, bus: EventBus):
        self.store = store
        self.bus = bus

    def __call__(self, job: PortfolioJob, row: Job | None = None) -> dict:
        submission = self.store.get_submission(job.submission_id)
        if submission is None:
            raise SubmissionNotFoundError(job.submission_id)
        user = self.store.get_user(job.user_id)
        if user is None:
            raise PrgradeError(f"User {job.user_id} not found for submission {submission.id}")
        score = self.store.get_score(submission.id)
        if score is None:
            raise PrgradeError(f"No score stored for submission {submission.id}")

        reviews = [r for r in self.store.list_reviews(submission.id) if not r.partial]
        project = self.store.get_project(submission.project_id) if submission.project_id else None

        record = self.store.upsert_portfolio(
            PortfolioRecord(
                submission_id=submission.id,
                user_id=user.id,
                slug=portfolio_slug(user.github_username, submission.id),
                score_id=score.id,
                portfolio=build_portfolio(user, submission, score, reviews[-1] if reviews else None, project),
            )
        )
        revision = job.revision or score.updated_at
        self.bus.publish(
            EventType.PORTFOLIO_READY,
            {
                "event_id": f"{EventType.PORTFOLIO_READY.value}:{submission.id}:{revision}",
                "user_id": user.id,
                "submission_id": submission.id,
                "portfolio_id": record.id,
                "slug": record.slug,
            },
        )
        logger.info("Portfolio %s ready for submission %s", record.slug, submission.id)
        return {"portfolio_id": record.id, "slug": record.slug}

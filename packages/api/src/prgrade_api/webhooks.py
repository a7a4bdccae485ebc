"""GitHub webhook ingress: signature verification, correlation and dispatch.

Once a delivery passes signature verification it is always acknowledged;
correlation misses, unsupported events and enqueue errors are logged, not
reported to GitHub.
"""

from __future__ import annotations

import enum
import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from prgrade_core.events import EventType
from prgrade_core.gh.pull_request import parse_repo_url, repo_key
from prgrade_store.models import User
from prgrade_worker.jobs import ReviewJob

if TYPE_CHECKING:
    from prgrade_core.events import EventBus
    from prgrade_store.base import BaseStore
    from prgrade_store.models import Submission
    from prgrade_worker.enqueue import EnqueueSupervisor

logger = logging.getLogger(__name__)

PULL_REQUEST_ACTIONS = {"opened", "reopened", "synchronize"}


class SignatureCheck(str, enum.Enum):
    OK = "ok"
    MISSING = "WEBHOOK_SIGNATURE_MISSING"
    INVALID = "WEBHOOK_SIGNATURE_INVALID"


def sign(raw_body: bytes, secret: str) -> str:
    return "sha256=" + hmac.new(secret.encode(), raw_body, hashlib.sha256).hexdigest()


def verify_signature(raw_body: bytes, signature: str | None, secret: str | None) -> SignatureCheck:
    """Check ``X-Hub-Signature-256`` against the exact raw request bytes in constant time."""
    if not signature:
        return SignatureCheck.MISSING
    if not secret:
        logger.error("GITHUB_WEBHOOK_SECRET is not configured; rejecting webhook")
        return SignatureCheck.INVALID
    if hmac.compare_digest(sign(raw_body, secret).encode(), signature.strip().encode()):
        return SignatureCheck.OK
    return SignatureCheck.INVALID


@dataclass
class IngressResult:
    event: str
    action: str | None = None
    processed: bool = False
    reason: str = ""
    submission_id: str | None = None


class WebhookIngress:
    def __init__(self, store: BaseStore, supervisor: EnqueueSupervisor, bus: EventBus):
        self.store = store
        self.supervisor = supervisor
        self.bus = bus

    def handle(self, event: str, payload: dict) -> IngressResult:
        action = payload.get("action")
        try:
            if event == "pull_request":
                return self._pull_request(payload)
            if event == "workflow_run":
                return self._workflow_run(payload)
            if event == "installation":
                return self._installation(payload)
            if event == "installation_repositories":
                logger.info(
                    "Installation %s repositories %s", (payload.get("installation") or {}).get("id"), action
                )
                return IngressResult(event, action, reason="logged")
            if event == "ping":
                return IngressResult(event, reason="pong")
        except Exception:
            logger.exception("Webhook %s/%s processing failed", event, action)
            return IngressResult(event, action, reason="error")
        logger.debug("Ignoring unsupported webhook event %r", event)
        return IngressResult(event, action, reason="unsupported event")

    # -- correlation ---------------------------------------------------- #

    def resolve_submission(
        self, repo_full_name: str, author_id: int | None, pr_number: int | None = None
    ) -> Submission | None:
        """Match a repository event to a submission, cross-checking the PR author against the owner.

        Among the author's submissions for the repository, the one already tracking
        ``pr_number`` wins, then the newest one with no PR attached, then the newest.
        """
        candidates = self.store.find_submissions_by_repo(repo_key(repo_full_name))
        if not candidates:
            return None

        owned = []
        for submission in candidates:
            owner = self.store.get_user(submission.user_id)
            if owner is not None and author_id is not None and owner.github_id == author_id:
                owned.append(submission)

        if len({s.user_id for s in candidates}) > 1:
            logger.warning(
                "Repository %s is linked to submissions of %d different users", repo_full_name, len(candidates)
            )
        if not owned:
            logger.warning(
                "PR author %s does not own any submission for %s; not processing", author_id, repo_full_name
            )
            return None
        # Candidates are newest first.
        for submission in owned:
            if pr_number is not None and submission.pr_number == pr_number:
                return submission
        for submission in owned:
            if submission.pr_number is None:
                return submission
        return owned[0]

    # -- events --------------------------------------------------------- #

    def _pull_request(self, payload: dict) -> IngressResult:
        action = payload.get("action")
        if action not in PULL_REQUEST_ACTIONS:
            return IngressResult("pull_request", action, reason="action ignored")

        pr = payload.get("pull_request") or {}
        repo = payload.get("repository") or {}
        repo_full_name = repo.get("full_name") or parse_repo_url(repo.get("html_url", "")) or ""
        pr_number = pr.get("number") or payload.get("number")
        author_id = (pr.get("user") or {}).get("id")
        if not repo_full_name or not pr_number:
            return IngressResult("pull_request", action, reason="missing repository or PR number")

        submission = self.resolve_submission(repo_full_name, author_id, pr_number)
        if submission is None:
            logger.info("No submission for %s#%s; acknowledged", repo_full_name, pr_number)
            return IngressResult("pull_request", action, reason="no matching submission")

        if submission.pr_number is None:
            if self.store.attach_pr(submission.id, pr_number):
                logger.info("Attached PR #%d to submission %s", pr_number, submission.id)
            else:
                submission = self.store.get_submission(submission.id)
        if submission.pr_number is not None and submission.pr_number != pr_number:
            logger.info(
                "Submission %s tracks PR #%d; ignoring PR #%d", submission.id, submission.pr_number, pr_number
            )
            return IngressResult("pull_request", action, reason="different PR attached", submission_id=submission.id)

        self.supervisor.submit(
            ReviewJob(
                submission_id=submission.id,
                repo_full_name=repo_full_name,
                pr_number=pr_number,
                installation_id=_installation_id(payload),
                event="pull_request",
                action=action,
            )
        )
        return IngressResult("pull_request", action, processed=True, submission_id=submission.id)

    def _workflow_run(self, payload: dict) -> IngressResult:
        action = payload.get("action")
        if action != "completed":
            return IngressResult("workflow_run", action, reason="action ignored")

        run = payload.get("workflow_run") or {}
        pulls = run.get("pull_requests") or []
        if not pulls:
            return IngressResult("workflow_run", action, reason="run not associated with a PR")

        repo = payload.get("repository") or {}
        repo_full_name = repo.get("full_name", "")
        pr_number = pulls[0].get("number")
        if not repo_full_name or not pr_number:
            return IngressResult("workflow_run", action, reason="missing repository or PR number")
        submission = self.store.find_submission_by_pr(repo_key(repo_full_name), pr_number)
        if submission is None:
            logger.info("No submission tracks %s#%s; acknowledged", repo_full_name, pr_number)
            return IngressResult("workflow_run", action, reason="no matching submission")

        self.supervisor.submit(
            ReviewJob(
                submission_id=submission.id,
                repo_full_name=repo_full_name,
                pr_number=pr_number,
                installation_id=_installation_id(payload),
                event="workflow_run",
                action=action,
                conclusion=run.get("conclusion"),
                logs_url=run.get("logs_url"),
            )
        )
        return IngressResult("workflow_run", action, processed=True, submission_id=submission.id)

    def _installation(self, payload: dict) -> IngressResult:
        action = payload.get("action")
        installation_id = _installation_id(payload)
        if installation_id is None:
            return IngressResult("installation", action, reason="missing installation id")

        if action == "deleted":
            cleared = self.store.clear_installation(installation_id)
            logger.info("Installation %s removed; unlinked %d user(s)", installation_id, cleared)
            return IngressResult("installation", action, processed=True)

        if action != "created":
            return IngressResult("installation", action, reason="action ignored")

        sender = payload.get("sender") or (payload.get("installation") or {}).get("account") or {}
        github_id, login = sender.get("id"), sender.get("login", "")
        user = None
        if github_id is not None:
            user = self.store.find_user_by_github_id(github_id)
        if user is None and login:
            user = self.store.find_user_by_github_username(login)
        if user is None:
            user = self.store.create_user(
                User(
                    email=f"{login or github_id}@users.noreply.github.com",
                    name=login,
                    github_id=github_id,
                    github_username=login,
                    avatar_url=sender.get("avatar_url", ""),
                )
            )
            logger.info("Created user %s for GitHub account %s", user.id, login)

        self.store.set_installation(user.id, installation_id)
        self.bus.publish(
            EventType.GITHUB_APP_INSTALLED,
            {
                "event_id": f"{EventType.GITHUB_APP_INSTALLED.value}:{user.id}:{installation_id}",
                "user_id": user.id,
                "installation_id": installation_id,
            },
        )
        logger.info("Linked installation %s to user %s", installation_id, user.id)
        return IngressResult("installation", action, processed=True)


def _installation_id(payload: dict) -> str | None:
    installation = payload.get("installation") or {}
    return str(installation["id"]) if installation.get("id") is not None else None

"""Notification fan-out: domain events → durable Notification jobs → notifications and emails."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from prgrade_core.errors import PrgradeError
from prgrade_core.events import EventType
from prgrade_store.models import NotificationRecord
from prgrade_worker.jobs import NotificationJob

if TYPE_CHECKING:
    from prgrade_core.events import EventBus
    from prgrade_core.mailer import BaseMailer
    from prgrade_store.base import BaseStore
    from prgrade_store.models import Job, User
    from prgrade_worker.enqueue import Enqueuer

logger = logging.getLogger(__name__)

# Preference flag that gates email for each event type. Types absent here are in-app only.
EMAIL_PREFERENCE = {
    EventType.SCORE_READY: "email_score_ready",
    EventType.PORTFOLIO_READY: "email_portfolio_ready",
    EventType.INTERVIEW_REQUESTED: "email_interview_request",
    EventType.INTERVIEW_ACCEPTED: "email_interview_update",
    EventType.INTERVIEW_REJECTED: "email_interview_update",
}


class NotificationListener:
    """Event bus subscriber that moves every domain event onto the notification queue."""

    def __init__(self, enqueuer: Enqueuer):
        self.enqueuer = enqueuer

    def attach(self, bus: EventBus) -> None:
        bus.subscribe_all(self)

    def __call__(self, event_type: EventType, data: dict) -> None:
        data = dict(data)
        event_id = data.pop("event_id", None)
        if event_id:
            # Publishers that can re-run name the occurrence; the same name maps to the same job.
            job = NotificationJob(event_type=event_type, data=data, event_id=event_id)
            job_id = self.enqueuer.enqueue(job, job_id=f"notification:{event_id}")
        else:
            job_id = self.enqueuer.enqueue(NotificationJob(event_type=event_type, data=data))
        logger.debug("Queued notification job %s for %s", job_id, event_type.value)


class NotificationStage:
    def __init__(self, store: BaseStore, mailer: BaseMailer, config: dict):
        self.store = store
        self.mailer = mailer
        self.config = config
        self._handlers = {
            EventType.SCORE_READY: self._score_ready,
            EventType.PORTFOLIO_READY: self._portfolio_ready,
            EventType.INTERVIEW_REQUESTED: self._interview_requested,
            EventType.INTERVIEW_ACCEPTED: self._interview_answered,
            EventType.INTERVIEW_REJECTED: self._interview_answered,
            EventType.GITHUB_APP_INSTALLED: self._github_app_installed,
            EventType.COMPANY_SIGNUP: self._company_signup,
        }

    def __call__(self, job: NotificationJob, row: Job | None = None) -> dict:
        handler = self._handlers[job.event_type]
        notification = handler(job)
        if notification is None:
            return {"notified": False}
        return {"notified": True, "notification_id": notification.id, "email_sent": notification.email_sent}

    # -- per-event handlers --------------------------------------------- #

    def _score_ready(self, job: NotificationJob) -> NotificationRecord:
        user = self._require_user(job.data["user_id"])
        score = self.store.get_score(job.data["submission_id"])
        if score is None:
            raise PrgradeError(f"Score for submission {job.data['submission_id']} not found")
        return self._notify(
            user,
            job,
            title="Your code review is ready",
            message=f"Your submission scored {score.total_score:g}/100 ({score.badge}).",
            link=f"/submissions/{score.submission_id}",
        )

    def _portfolio_ready(self, job: NotificationJob) -> NotificationRecord:
        user = self._require_user(job.data["user_id"])
        slug = job.data.get("slug", "")
        return self._notify(
            user,
            job,
            title="Your portfolio is live",
            message="Your project portfolio has been published and can be shared with companies.",
            link=f"/portfolio/{slug}",
        )

    def _interview_requested(self, job: NotificationJob) -> NotificationRecord:
        request = self.store.get_interview_request(job.data["interview_request_id"])
        if request is None:
            raise PrgradeError(f"Interview request {job.data['interview_request_id']} not found")
        company = self.store.get_company(request.company_id)
        if company is None:
            raise PrgradeError(f"Company {request.company_id} not found")
        candidate = self._require_user(request.user_id)
        return self._notify(
            candidate,
            job,
            title="New interview request",
            message=f"{company.name} would like to interview you.",
            link=f"/interviews/{request.id}",
        )

    def _interview_answered(self, job: NotificationJob) -> NotificationRecord:
        request = self.store.get_interview_request(job.data["interview_request_id"])
        if request is None:
            raise PrgradeError(f"Interview request {job.data['interview_request_id']} not found")
        company = self.store.get_company(request.company_id)
        if company is None:
            raise PrgradeError(f"Company {request.company_id} not found")
        company_user = self._require_user(company.user_id)
        candidate = self.store.get_user(request.user_id)
        name = candidate.name if candidate and candidate.name else "A candidate"
        verb = "accepted" if job.event_type is EventType.INTERVIEW_ACCEPTED else "declined"
        return self._notify(
            company_user,
            job,
            title=f"Interview request {verb}",
            message=f"{name} {verb} your interview request.",
            link=f"/interviews/{request.id}",
        )

    def _github_app_installed(self, job: NotificationJob) -> NotificationRecord:
        user = self._require_user(job.data["user_id"])
        return self._notify(
            user,
            job,
            title="GitHub App connected",
            message="Pull requests on your repositories will now be reviewed automatically.",
            link="/settings",
        )

    def _company_signup(self, job: NotificationJob) -> None:
        logger.info("Company signed up: %s", job.data.get("company_id") or job.data.get("name"))
        return None

    # -- shared --------------------------------------------------------- #

    def _require_user(self, user_id: str) -> User:
        user = self.store.get_user(user_id)
        if user is None:
            raise PrgradeError(f"User {user_id} not found")
        return user

    def should_send_email(self, user: User, event_type: EventType) -> bool:
        flag = EMAIL_PREFERENCE.get(event_type)
        if flag is None or not self.config.get("email_enabled", True) or not user.email:
            return False
        prefs = self.store.get_preferences(user.id)
        if prefs is None:
            return True
        return prefs.email_enabled and getattr(prefs, flag)

    def _notify(self, user: User, job: NotificationJob, title: str, message: str, link: str) -> NotificationRecord:
        record, created = self.store.upsert_notification(
            NotificationRecord(
                user_id=user.id,
                type=job.event_type.name,
                title=title,
                message=message,
                data={**job.data, "link": link},
                dedupe_key=job.event_id,
            )
        )
        if not created:
            logger.debug("Notification %s already exists for event %s", record.id, job.event_id)
        if record.email_sent or not self.should_send_email(user, job.event_type):
            return record

        url = f"{self.config.get('frontend_url', '').rstrip('/')}{link}"
        try:
            self.mailer.send(user.email, title, f"{message}\n\n{url}")
        except Exception as e:
            logger.warning("Email for notification %s to user %s failed: %s", record.id, user.id, e)
            return record
        self.store.mark_email_sent(record.id)
        record.email_sent = True
        return record

"""In-process domain event bus.

Publishing is synchronous and never fails the publisher: a handler that
raises is logged and the remaining handlers still run. The notification
listener is the only production subscriber and moves each event onto the
durable notification queue straight away.
"""

from __future__ import annotations

import enum
import logging
import threading
from collections import defaultdict
from typing import Callable

logger = logging.getLogger(__name__)


class EventType(str, enum.Enum):
    SCORE_READY = "ScoreReady"
    PORTFOLIO_READY = "PortfolioReady"
    INTERVIEW_REQUESTED = "InterviewRequested"
    INTERVIEW_ACCEPTED = "InterviewAccepted"
    INTERVIEW_REJECTED = "InterviewRejected"
    GITHUB_APP_INSTALLED = "GithubAppInstalled"
    COMPANY_SIGNUP = "CompanySignup"


Handler = Callable[[EventType, dict], None]


class EventBus:
    def __init__(self):
        self._handlers: dict[EventType, list[Handler]] = defaultdict(list)
        self._catch_all: list[Handler] = []
        self._lock = threading.Lock()

    def subscribe(self, event_type: EventType, handler: Handler) -> None:
        with self._lock:
            self._handlers[EventType(event_type)].append(handler)

    def subscribe_all(self, handler: Handler) -> None:
        with self._lock:
            self._catch_all.append(handler)

    def publish(self, event_type: EventType | str, data: dict) -> int:
        """Deliver ``data`` to every matching handler. Returns how many handlers succeeded."""
        event_type = EventType(event_type)
        with self._lock:
            handlers = list(self._handlers.get(event_type, [])) + list(self._catch_all)

        delivered = 0
        for handler in handlers:
            try:
                handler(event_type, data)
                delivered += 1
            except Exception:
                logger.exception("Event handler %r failed for %s", handler, event_type.value)
        logger.debug("Published %s to %d/%d handlers", event_type.value, delivered, len(handlers))
        return delivered

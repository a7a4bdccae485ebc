"""Job payload schemas, one per pipeline stage.

Payloads form a tagged union discriminated by ``stage``; the queue name is
always the stage name.
"""

from __future__ import annotations

import uuid
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from prgrade_core.errors import InvalidJobPayloadError
from prgrade_core.events import EventType


class _Payload(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class ReviewJob(_Payload):
    stage: Literal["review"] = "review"
    submission_id: str
    repo_full_name: str
    pr_number: int = Field(gt=0)
    installation_id: str | None = None
    event: Literal["pull_request", "workflow_run", "manual"]
    action: str | None = None
    conclusion: str | None = None
    logs_url: str | None = None


class ScoreJob(_Payload):
    stage: Literal["score"] = "score"
    submission_id: str
    # Names the review run this job belongs to; downstream job and event ids derive from it.
    revision: str | None = None


class PortfolioJob(_Payload):
    stage: Literal["portfolio"] = "portfolio"
    submission_id: str
    user_id: str
    score_id: str | None = None
    revision: str | None = None


class NotificationJob(_Payload):
    stage: Literal["notification"] = "notification"
    event_type: EventType
    data: dict = Field(default_factory=dict)
    # Identifies one event occurrence; redelivery reuses it so notifications are not duplicated.
    event_id: str = Field(default_factory=lambda: uuid.uuid4().hex)


JobPayload = Annotated[
    Union[ReviewJob, ScoreJob, PortfolioJob, NotificationJob],
    Field(discriminator="stage"),
]

_adapter: TypeAdapter = TypeAdapter(JobPayload)


def parse_job(payload: dict) -> ReviewJob | ScoreJob | PortfolioJob | NotificationJob:
    try:
        return _adapter.validate_python(payload)
    except ValidationError as e:
        raise InvalidJobPayloadError(f"Invalid job payload: {e}") from e

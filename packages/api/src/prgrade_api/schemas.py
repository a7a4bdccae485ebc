from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from prgrade_core.events import EventType


class WebhookAck(BaseModel):
    success: bool = True
    message: str = "Webhook received"


class ErrorOut(BaseModel):
    code: str
    message: str = ""


class FetchPROut(BaseModel):
    submission_id: str
    pr_number: int


class SubmitOut(BaseModel):
    submission_id: str
    status: str = "SEARCHING"


class ScoreComputeIn(BaseModel):
    llm_output: dict[str, Any]
    static_report: dict[str, Any] | None = None
    ci_report: dict[str, Any] | None = None
    pr_metadata: dict[str, Any] | None = None
    submission_id: str | None = None


class AppliedRuleOut(BaseModel):
    rule: str
    category: str
    action: str
    reason: str


class ScoreComputeOut(BaseModel):
    breakdown: dict[str, float]
    deterministic: dict[str, float]
    total_score: float
    badge: str
    rules_applied: list[AppliedRuleOut] = Field(default_factory=list)
    evidence: list[str] = Field(default_factory=list)
    summary: str = ""
    suggestions: list[str] = Field(default_factory=list)
    legacy: dict[str, Any] | None = None
    score_id: str | None = None


class EventIn(BaseModel):
    event_type: EventType
    data: dict[str, Any] = Field(default_factory=dict)


class EventOut(BaseModel):
    event_type: EventType
    delivered: int


class DeadLetterOut(BaseModel):
    id: int
    original_queue: str
    original_job_id: str | None = None
    payload: dict[str, Any]
    failure_reason: str
    failure_stack: str = ""
    failure_count: int
    submission_id: str | None = None
    pr_number: int | None = None
    repo_full_name: str | None = None
    failed_at: str


class HealthOut(BaseModel):
    status: str
    broker: bool
    store: bool
    queues: dict[str, dict[str, int]] = Field(default_factory=dict)
    dead_letters: int = 0

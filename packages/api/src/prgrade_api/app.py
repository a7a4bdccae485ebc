"""FastAPI application: webhook ingress, submission actions and internal endpoints."""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager

from fastapi import BackgroundTasks, Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from prgrade_api.schemas import (
    AppliedRuleOut,
    DeadLetterOut,
    EventIn,
    EventOut,
    FetchPROut,
    HealthOut,
    ScoreComputeIn,
    ScoreComputeOut,
    SubmitOut,
    WebhookAck,
)
from prgrade_api.webhooks import SignatureCheck, WebhookIngress, verify_signature
from prgrade_core.errors import GatewayError, NotSubmissionOwnerError, PRNotFoundError, SubmissionNotFoundError
from prgrade_core.metrics import WEBHOOKS_RECEIVED
from prgrade_core.models import CIReport, PRMetadata, StaticReport
from prgrade_core.providers.base import LLMResponseError, scores_from_dict
from prgrade_core.scoring.fusion import generate_score
from prgrade_worker.review import score_record
from prgrade_worker.runtime import Runtime

logger = logging.getLogger(__name__)


def _error(status: int, code: str, message: str = "") -> JSONResponse:
    return JSONResponse(status_code=status, content={"code": code, "message": message})


def create_app(runtime: Runtime, start_workers: bool = False) -> FastAPI:
    """Build the API around a runtime. With ``start_workers`` the stage workers run in-process."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if start_workers:
            runtime.start_workers()
        yield
        runtime.close()

    app = FastAPI(
        title="prgrade",
        description="Webhook-driven pull request review, scoring and portfolio pipeline.",
        lifespan=lifespan,
    )
    app.state.runtime = runtime
    ingress = WebhookIngress(runtime.store, runtime.supervisor, runtime.bus)

    # ---------------------------------------------------------------------------
    # Dependencies
    # ---------------------------------------------------------------------------

    def current_user(x_user_id: str | None = Header(default=None)) -> str:
        if not x_user_id:
            raise HTTPException(401, "X-User-Id header required")
        return x_user_id

    def internal_token(x_internal_token: str | None = Header(default=None)) -> None:
        expected = runtime.config.get("internal_token")
        if expected and x_internal_token != expected:
            raise HTTPException(401, "Invalid internal token")

    # ---------------------------------------------------------------------------
    # Webhooks
    # ---------------------------------------------------------------------------

    @app.post("/api/webhooks/github", response_model=WebhookAck, tags=["Webhooks"])
    async def github_webhook(
        request: Request,
        x_github_event: str = Header(default=""),
        x_hub_signature_256: str | None = Header(default=None),
        x_github_delivery: str | None = Header(default=None),
    ):
        raw = await request.body()
        check = verify_signature(raw, x_hub_signature_256, runtime.config.get("github_webhook_secret"))
        if check is not SignatureCheck.OK:
            logger.warning("Rejected webhook delivery %s: %s", x_github_delivery, check.value)
            return _error(401, check.value, "Webhook signature verification failed")
        try:
            payload = json.loads(raw or b"{}")
        except ValueError:
            return _error(400, "WEBHOOK_PAYLOAD_INVALID", "Body is not valid JSON")
        if not isinstance(payload, dict):
            return _error(400, "WEBHOOK_PAYLOAD_INVALID", "Body is not a JSON object")

        WEBHOOKS_RECEIVED.labels(event=x_github_event or "unknown").inc()
        result = ingress.handle(x_github_event, payload)
        logger.info(
            "Webhook %s %s/%s: %s",
            x_github_delivery,
            result.event,
            result.action,
            "processed" if result.processed else result.reason,
        )
        return WebhookAck()

    # ---------------------------------------------------------------------------
    # Submissions
    # ---------------------------------------------------------------------------

    def _submit_in_background(submission_id: str, user_id: str) -> None:
        try:
            result = runtime.submissions.submit_for_review(submission_id, user_id)
        except Exception:
            logger.exception("Discovery for submission %s failed", submission_id)
            return
        logger.info("Discovery for submission %s finished: %s", submission_id, result.state.value)

    @app.post("/api/submissions/{submission_id}/submit", status_code=202, response_model=SubmitOut, tags=["Submissions"])
    def submit_submission(
        submission_id: str, background_tasks: BackgroundTasks, user_id: str = Depends(current_user)
    ):
        submission = runtime.store.get_submission(submission_id)
        if submission is None:
            return _error(404, "SUBMISSION_NOT_FOUND", f"Submission {submission_id} not found")
        if submission.user_id != user_id:
            return _error(403, "FORBIDDEN", "Not the owner of this submission")
        background_tasks.add_task(_submit_in_background, submission_id, user_id)
        return SubmitOut(submission_id=submission_id)

    @app.post("/api/submissions/{submission_id}/fetch-pr", response_model=FetchPROut, tags=["Submissions"])
    def fetch_pr(submission_id: str, user_id: str = Depends(current_user)):
        try:
            pr_number = runtime.submissions.fetch_pr(submission_id, user_id)
        except SubmissionNotFoundError as e:
            return _error(404, "SUBMISSION_NOT_FOUND", str(e))
        except NotSubmissionOwnerError as e:
            return _error(403, "FORBIDDEN", str(e))
        except PRNotFoundError as e:
            return _error(404, "PR_NOT_FOUND", str(e))
        except GatewayError as e:
            return _error(502, "GITHUB_UNAVAILABLE", str(e))
        return FetchPROut(submission_id=submission_id, pr_number=pr_number)

    # ---------------------------------------------------------------------------
    # Internal
    # ---------------------------------------------------------------------------

    @app.post(
        "/internal/score/compute",
        response_model=ScoreComputeOut,
        dependencies=[Depends(internal_token)],
        tags=["Internal"],
    )
    def compute_score(body: ScoreComputeIn):
        try:
            llm = scores_from_dict(body.llm_output)
        except LLMResponseError as e:
            return _error(422, "INVALID_LLM_OUTPUT", str(e))
        if body.submission_id and runtime.store.get_submission(body.submission_id) is None:
            return _error(404, "SUBMISSION_NOT_FOUND", f"Submission {body.submission_id} not found")

        fused = generate_score(
            llm,
            StaticReport.from_dict(body.static_report),
            CIReport.from_dict(body.ci_report) if body.ci_report else None,
            PRMetadata.from_dict(body.pr_metadata) if body.pr_metadata else None,
        )
        score_id = None
        if body.submission_id:
            score_id = runtime.store.upsert_score(score_record(body.submission_id, fused)).id
        return ScoreComputeOut(
            breakdown=fused.breakdown,
            deterministic=fused.deterministic,
            total_score=fused.total,
            badge=fused.badge,
            rules_applied=[AppliedRuleOut(**r.to_dict()) for r in fused.rules_applied],
            evidence=fused.evidence,
            summary=fused.summary,
            suggestions=fused.suggestions,
            legacy=fused.legacy.to_dict() if fused.legacy else None,
            score_id=score_id,
        )

    @app.get(
        "/internal/dead-letters",
        response_model=list[DeadLetterOut],
        dependencies=[Depends(internal_token)],
        tags=["Internal"],
    )
    def list_dead_letters(submission_id: str | None = None, queue: str | None = None, limit: int = 100):
        records = runtime.dead_letters.list(submission_id=submission_id, queue=queue, limit=limit)
        return [DeadLetterOut(**vars(r)) for r in records]

    @app.get(
        "/internal/dead-letters/{record_id}",
        response_model=DeadLetterOut,
        dependencies=[Depends(internal_token)],
        tags=["Internal"],
    )
    def get_dead_letter(record_id: int):
        record = runtime.dead_letters.get(record_id)
        if record is None:
            raise HTTPException(404, f"Dead letter {record_id} not found")
        return DeadLetterOut(**vars(record))

    @app.post("/internal/events", response_model=EventOut, dependencies=[Depends(internal_token)], tags=["Internal"])
    def publish_event(body: EventIn):
        delivered = runtime.bus.publish(body.event_type, body.data)
        return EventOut(event_type=body.event_type, delivered=delivered)

    # ---------------------------------------------------------------------------
    # Operations
    # ---------------------------------------------------------------------------

    @app.get("/health", response_model=HealthOut, tags=["Operations"])
    def health():
        broker = runtime.queue.ping()
        store = runtime.store.ping()
        body = HealthOut(
            status="ok" if broker and store else "degraded",
            broker=broker,
            store=store,
            queues=runtime.queue_counts() if broker else {},
            dead_letters=runtime.dead_letters.count() if store else 0,
        )
        if not broker:
            return JSONResponse(status_code=503, content=body.model_dump())
        return body

    @app.get("/metrics", tags=["Operations"])
    def metrics():
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app

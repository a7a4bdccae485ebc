"""Tests for the review, score and portfolio stage handlers."""

from unittest.mock import MagicMock

import pytest

from prgrade_core.config import DEFAULT_CONFIG, queue_policies
from prgrade_core.errors import PrgradeError, ReviewStageError, SubmissionNotFoundError
from prgrade_core.events import EventType
from prgrade_core.models import CATEGORIES, CIReport, LLMScores, PRMetadata, StaticReport
from prgrade_core.providers.base import fallback_scores
from prgrade_core.reviewer import ReviewOutcome
from prgrade_core.scoring.fusion import generate_score
from prgrade_store.models import Job, PRReviewRecord, ScoreRecord, Submission, SubmissionStatus, User
from prgrade_store.queue import SQLiteJobQueue
from prgrade_store.sqlite import SQLiteStore
from prgrade_worker.enqueue import Enqueuer
from prgrade_worker.jobs import PortfolioJob, ReviewJob, ScoreJob
from prgrade_worker.portfolio import PortfolioStage, build_portfolio, portfolio_slug, pr_url
from prgrade_worker.review import ReviewStage
from prgrade_worker.score import ScoreStage


@pytest.fixture
def store(tmp_path):
    s = SQLiteStore(db_path=str(tmp_path / "prgrade.db"))
    yield s
    s.close()


@pytest.fixture
def queue(tmp_path):
    q = SQLiteJobQueue(db_path=str(tmp_path / "prgrade.db"))
    yield q
    q.close()


@pytest.fixture
def enqueuer(queue):
    return Enqueuer(queue, queue_policies(DEFAULT_CONFIG))


@pytest.fixture
def user(store):
    return store.create_user(User(email="alice@example.com", name="Alice", github_id=42, github_username="alice"))


@pytest.fixture
def submission(store, user):
    submission = store.create_submission(Submission(user_id=user.id, repo_url="https://github.com/alice/app"))
    store.attach_pr(submission.id, 7)
    return store.get_submission(submission.id)


def _outcome(llm=None, static=None, ci=None):
    llm = llm or LLMScores(scores={c: 8.0 for c in CATEGORIES}, summary="Solid work", suggestions=["Add tests"])
    static = static or StaticReport()
    ci = ci or CIReport(status="success")
    return ReviewOutcome(
        metadata=PRMetadata(repo_full_name="alice/app", number=7, title="Add login"),
        files=[],
        static_report=static,
        ci_report=ci,
        llm=llm,
        score=generate_score(llm, static, ci),
        pull=MagicMock(),
    )


def _review_job(submission):
    return ReviewJob(
        submission_id=submission.id,
        repo_full_name="alice/app",
        pr_number=7,
        installation_id="99",
        event="pull_request",
        action="opened",
    )


# ---------------------------------------------------------------------------
# Review stage
# ---------------------------------------------------------------------------


@pytest.fixture
def comment(mocker):
    return mocker.patch("prgrade_worker.review.upsert_review_comment")


class TestReviewStage:
    def _stage(self, store, enqueuer, outcome=None, **config):
        pipeline = MagicMock()
        pipeline.run.return_value = outcome or _outcome()
        return ReviewStage(store, enqueuer, pipeline, {"frontend_url": "https://prgrade.dev", **config})

    def test_persists_review_and_score(self, store, enqueuer, queue, submission, comment):
        stage = self._stage(store, enqueuer)

        result = stage(_review_job(submission))

        [review] = store.list_reviews(submission.id)
        assert review.partial is False
        assert review.review_json["event"] == "pull_request"
        assert review.suggestions == ["Add tests"]
        score = store.get_score(submission.id)
        assert result["score_id"] == score.id
        assert result["total_score"] == score.total_score
        assert queue.counts("score")["waiting"] == 1

    def test_passes_job_fields_to_pipeline(self, store, enqueuer, submission, comment):
        stage = self._stage(store, enqueuer)
        stage(_review_job(submission))
        stage.pipeline.run.assert_called_once_with(
            "alice/app", 7, installation_id="99", conclusion=None, logs_url=None
        )

    def test_posts_pr_comment(self, store, enqueuer, submission, comment):
        outcome = _outcome()
        self._stage(store, enqueuer, outcome)(_review_job(submission))

        pull, submission_id, body = comment.call_args.args
        assert pull is outcome.pull
        assert submission_id == submission.id
        assert f"https://prgrade.dev/submissions/{submission.id}" in body

    def test_comment_disabled(self, store, enqueuer, submission, comment):
        self._stage(store, enqueuer, post_pr_comment=False)(_review_job(submission))
        comment.assert_not_called()

    def test_comment_failure_does_not_fail_job(self, store, enqueuer, submission, comment):
        comment.side_effect = RuntimeError("403")
        result = self._stage(store, enqueuer)(_review_job(submission))
        assert result["score_id"]

    def test_redelivery_keeps_single_score(self, store, enqueuer, submission, comment):
        stage = self._stage(store, enqueuer)
        first = stage(_review_job(submission))
        second = stage(_review_job(submission))

        assert first["score_id"] == second["score_id"]
        assert store._fetchone("SELECT COUNT(*) AS n FROM scores")["n"] == 1

    def test_redelivered_job_chains_one_score_job(self, store, enqueuer, queue, submission, comment):
        stage = self._stage(store, enqueuer)
        row = Job(id="job-1", queue="review", payload={}, status="active", attempts_made=1, max_attempts=3, run_at=0.0)

        stage(_review_job(submission), row)
        stage(_review_job(submission), row)

        assert queue.counts("score")["waiting"] == 1
        job = queue.reserve("score", "w1", 30)
        assert job.id == f"score:{submission.id}:job-1"
        assert job.payload["revision"] == "job-1"

    def test_llm_fallback_still_chains_score(self, store, enqueuer, queue, submission, comment):
        outcome = _outcome(llm=fallback_scores("provider down"))
        result = self._stage(store, enqueuer, outcome)(_review_job(submission))

        assert result["fallback"] is True
        assert store.get_score(submission.id).details["fallback"] is True
        assert queue.counts("score")["waiting"] == 1

    def test_missing_submission(self, store, enqueuer, comment):
        job = ReviewJob(submission_id="gone", repo_full_name="alice/app", pr_number=7, event="manual")
        with pytest.raises(SubmissionNotFoundError):
            self._stage(store, enqueuer)(job)

    def test_stage_error_saves_partial_review(self, store, enqueuer, queue, submission, comment):
        stage = self._stage(store, enqueuer)
        stage.pipeline.run.side_effect = ReviewStageError(
            "LLM failed", StaticReport(lint_errors=3), cause=RuntimeError("timeout")
        )

        with pytest.raises(ReviewStageError):
            stage(_review_job(submission))

        [review] = store.list_reviews(submission.id)
        assert review.partial is True
        assert review.static_report["lint_errors"] == 3
        assert review.review_json["error"] == "timeout"
        assert queue.counts("score")["waiting"] == 0


# ---------------------------------------------------------------------------
# Score stage
# ---------------------------------------------------------------------------


def _store_score(store, submission_id, total=82.0, badge="GREEN", scores=None):
    return store.upsert_score(
        ScoreRecord(
            submission_id=submission_id,
            scores=scores or {c: 8.2 for c in CATEGORIES},
            reliability=1.8,
            total_score=total,
            badge=badge,
            details={"summary": "Clean change", "suggestions": ["Split the PR"], "fallback": False},
        )
    )


class TestScoreStage:
    def test_marks_reviewed_and_chains_portfolio(self, store, enqueuer, queue, user, submission):
        score = _store_score(store, submission.id)
        bus = MagicMock()

        result = ScoreStage(store, enqueuer, bus)(ScoreJob(submission_id=submission.id))

        assert result == {"score_id": score.id, "status": SubmissionStatus.REVIEWED}
        assert store.get_submission(submission.id).status == SubmissionStatus.REVIEWED
        job = queue.reserve("portfolio", "w1", 30)
        assert job.payload["user_id"] == user.id
        assert job.payload["score_id"] == score.id

        event_type, data = bus.publish.call_args.args
        assert event_type is EventType.SCORE_READY
        assert data["total_score"] == 82.0
        assert data["badge"] == "GREEN"

    def test_rerun_reuses_job_and_event_ids(self, store, enqueuer, queue, user, submission):
        _store_score(store, submission.id)
        bus = MagicMock()
        stage = ScoreStage(store, enqueuer, bus)

        stage(ScoreJob(submission_id=submission.id, revision="job-1"))
        stage(ScoreJob(submission_id=submission.id, revision="job-1"))

        assert queue.counts("portfolio")["waiting"] == 1
        first, second = (c.args[1]["event_id"] for c in bus.publish.call_args_list)
        assert first == second == f"ScoreReady:{submission.id}:job-1"

    def test_missing_score(self, store, enqueuer, submission):
        with pytest.raises(PrgradeError):
            ScoreStage(store, enqueuer, MagicMock())(ScoreJob(submission_id=submission.id))

    def test_missing_submission(self, store, enqueuer):
        with pytest.raises(SubmissionNotFoundError):
            ScoreStage(store, enqueuer, MagicMock())(ScoreJob(submission_id="gone"))


# ---------------------------------------------------------------------------
# Portfolio stage
# ---------------------------------------------------------------------------


class TestPortfolioStage:
    def _job(self, submission, user):
        return PortfolioJob(submission_id=submission.id, user_id=user.id)

    def test_builds_and_publishes(self, store, user, submission):
        _store_score(store, submission.id)
        store.add_review(
            PRReviewRecord(submission_id=submission.id, pr_number=7, review_json={"ci": {"status": "success"}})
        )
        bus = MagicMock()

        result = PortfolioStage(store, bus)(self._job(submission, user))

        record = store.get_portfolio(submission.id)
        assert result["slug"] == record.slug == portfolio_slug("alice", submission.id)
        assert record.portfolio["project"]["pr_url"] == "https://github.com/alice/app/pull/7"
        assert record.portfolio["project"]["ci_status"] == "success"
        assert record.portfolio["score"]["badge"] == "GREEN"
        assert bus.publish.call_args.args[0] is EventType.PORTFOLIO_READY

    def test_rerun_updates_existing_portfolio(self, store, user, submission):
        _store_score(store, submission.id)
        stage = PortfolioStage(store, MagicMock())
        first = stage(self._job(submission, user))
        second = stage(self._job(submission, user))
        assert first["portfolio_id"] == second["portfolio_id"]

    def test_partial_reviews_ignored(self, store, user, submission):
        _store_score(store, submission.id)
        store.add_review(PRReviewRecord(submission_id=submission.id, pr_number=7, review_json={"ci": {"status": "success"}}))
        store.add_review(PRReviewRecord(submission_id=submission.id, pr_number=7, review_json={"error": "x"}, partial=True))

        PortfolioStage(store, MagicMock())(self._job(submission, user))

        assert store.get_portfolio(submission.id).portfolio["project"]["ci_status"] == "success"

    def test_missing_score(self, store, user, submission):
        with pytest.raises(PrgradeError):
            PortfolioStage(store, MagicMock())(self._job(submission, user))


class TestBuildPortfolio:
    def test_strengths_and_weaknesses(self):
        scores = {c: 6.0 for c in CATEGORIES}
        scores["security"] = 9.0
        scores["documentation"] = 4.0
        score = ScoreRecord(submission_id="s1", scores=scores, reliability=4.0, total_score=60.0, badge="YELLOW")
        user = User(email="a@b.c", name="Alice", github_username="alice")
        submission = Submission(user_id=user.id, repo_url="https://github.com/alice/app")

        portfolio = build_portfolio(user, submission, score)

        assert portfolio["score"]["strengths"] == ["Security"]
        assert portfolio["score"]["weaknesses"] == ["Documentation"]
        assert portfolio["score"]["summary"] == "Needs mentorship"
        assert portfolio["project"]["pr_url"] is None
        assert portfolio["timeline"]["reviewed_at"] is None

    def test_pr_url(self):
        assert pr_url("https://github.com/alice/app.git", 3) == "https://github.com/alice/app/pull/3"
        assert pr_url("https://gitlab.com/alice/app", 3) is None

    def test_slug_defaults(self):
        assert portfolio_slug("", "abcdef123456") == "developer-abcdef12"

"""Tests for the review pipeline orchestration."""

from unittest.mock import MagicMock

import pytest

from prgrade_core.errors import FatalJobError, MissingCredentialsError, ReviewStageError
from prgrade_core.models import CATEGORIES, CIReport, DiffFile, LLMScores, PRMetadata
from prgrade_core.providers.base import fallback_scores
from prgrade_core.providers.openai import GroqScorer
from prgrade_core.reviewer import ReviewPipeline, build_comment_body, build_scorer
from prgrade_core.scoring.fusion import generate_score

SHA = "c" * 40


def _metadata():
    return PRMetadata(
        repo_full_name="alice/app",
        number=7,
        title="Add login",
        description="Implements the login form with validation and tests.",
        additions=40,
        deletions=5,
        changed_files=2,
        head_sha=SHA,
    )


def _files():
    return [
        DiffFile("src/login.py", "added", 40, 0, patch="+x = 1", content="x = 1\n", content_complete=True),
        DiffFile("Dockerfile", "modified", 2, 5, patch="+USER root", content="FROM python:3.12\nUSER root\n"),
    ]


@pytest.fixture
def github(mocker):
    """Patch the GitHub helpers the pipeline calls; returns the CI status mock."""
    mocker.patch("prgrade_core.reviewer.get_repo", return_value=MagicMock())
    mocker.patch("prgrade_core.reviewer.fetch_pr_metadata", return_value=(_metadata(), MagicMock()))
    mocker.patch("prgrade_core.reviewer.fetch_bounded_diff", return_value=_files())
    return mocker.patch("prgrade_core.reviewer.fetch_ci_status", return_value=CIReport(status="success"))


def _scorer(result=None):
    scorer = MagicMock()
    scorer.score.return_value = result or LLMScores(scores={c: 8.0 for c in CATEGORIES}, summary="Good")
    return scorer


def _pipeline(scorer, client_factory=None):
    return ReviewPipeline({"max_diff_files": 5}, scorer=scorer, client_factory=client_factory or MagicMock())


class TestReviewPipeline:
    def test_runs_every_step(self, github):
        scorer = _scorer()
        outcome = _pipeline(scorer).run("alice/app", 7, installation_id="99")

        assert outcome.metadata.number == 7
        assert outcome.static_report.docker_issue_count == 1
        assert outcome.ci_report.status == "success"
        assert outcome.score.breakdown["devops_execution"] <= 5.0
        assert "alice/app" in scorer.score.call_args.args[0]

    def test_installation_id_passed_to_client_factory(self, github):
        factory = MagicMock()
        _pipeline(_scorer(), factory).run("alice/app", 7, installation_id="99")
        assert factory.call_args.args[1] == "99"

    def test_llm_fallback_still_produces_score(self, github):
        outcome = _pipeline(_scorer(fallback_scores("down"))).run("alice/app", 7)
        assert outcome.score.fallback is True
        assert set(outcome.score.breakdown) == set(CATEGORIES)

    def test_failure_after_static_analysis_carries_report(self, github):
        scorer = MagicMock()
        scorer.score.side_effect = RuntimeError("scorer crashed")
        with pytest.raises(ReviewStageError) as exc:
            _pipeline(scorer).run("alice/app", 7)
        assert exc.value.static_report.docker_issue_count == 1
        assert isinstance(exc.value.cause, RuntimeError)

    def test_job_conclusion_used_when_ci_unknown(self, github):
        github.return_value = CIReport(status="unknown")
        outcome = _pipeline(_scorer()).run("alice/app", 7, conclusion="failure")
        assert outcome.ci_report.status == "failure"
        assert outcome.score.breakdown["bug_risk"] <= 3.0

    def test_job_conclusion_ignored_when_ci_known(self, github):
        outcome = _pipeline(_scorer()).run("alice/app", 7, conclusion="failure")
        assert outcome.ci_report.status == "success"

    def test_run_report_used_when_ci_unknown(self, github, mocker):
        github.return_value = CIReport(status="unknown")
        run_report = CIReport(status="failure", conclusion="failure", workflow_count=1, failures=["CI: test"])
        fetch = mocker.patch("prgrade_core.reviewer.fetch_run_report", return_value=run_report)

        outcome = _pipeline(_scorer()).run(
            "alice/app", 7, conclusion="success", logs_url="https://api.github.com/repos/alice/app/actions/runs/5/logs"
        )

        assert fetch.call_args.args[1].endswith("/actions/runs/5/logs")
        assert outcome.ci_report.failures == ["CI: test"]

    def test_unreadable_run_report_falls_back_to_conclusion(self, github, mocker):
        github.return_value = CIReport(status="unknown")
        mocker.patch("prgrade_core.reviewer.fetch_run_report", return_value=None)
        outcome = _pipeline(_scorer()).run("alice/app", 7, conclusion="failure", logs_url="https://example.test/x")
        assert outcome.ci_report.status == "failure"

    def test_missing_llm_key_is_fatal_before_github(self, github, monkeypatch):
        monkeypatch.delenv("GROQ_API_KEY", raising=False)
        factory = MagicMock()
        pipeline = ReviewPipeline({"llm_provider": "groq", "groq_api_key": None}, client_factory=factory)

        with pytest.raises(MissingCredentialsError) as exc:
            pipeline.run("alice/app", 7)

        assert isinstance(exc.value, FatalJobError)
        assert not isinstance(exc.value, ReviewStageError)
        factory.assert_not_called()



class TestBuildScorer:
    def test_unknown_provider(self):
        with pytest.raises(FatalJobError, match="Unknown LLM provider"):
            build_scorer({"llm_provider": "bard"})

    def test_missing_key(self):
        with pytest.raises(MissingCredentialsError, match="GROQ_API_KEY"):
            build_scorer({"llm_provider": "groq", "groq_api_key": None})

    def test_groq_default(self):
        assert isinstance(build_scorer({"groq_api_key": "gsk"}), GroqScorer)


class TestCommentBody:
    def test_lists_categories_and_link(self):
        score = generate_score(LLMScores(scores={c: 8.0 for c in CATEGORIES}, summary="Nice"), None)
        body = build_comment_body(score, frontend_url="https://prgrade.dev/", submission_id="s1")
        assert f"**Score: {score.total:g}/100**" in body
        assert "| Code Quality |" in body
        assert "https://prgrade.dev/submissions/s1" in body

    def test_fallback_notice(self):
        body = build_comment_body(generate_score(fallback_scores(), None))
        assert "AI review was unavailable" in body

"""Tests for GitHub pull request helper functions."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from github import GithubException

from prgrade_core.errors import GatewayError, MissingCredentialsError
from prgrade_core.gh.auth import github_client
from prgrade_core.gh.pull_request import (
    fetch_bounded_diff,
    fetch_ci_status,
    fetch_pr_metadata,
    fetch_run_report,
    list_open_pulls,
    parse_repo_url,
    repo_key,
    run_id_from_logs_url,
    upsert_review_comment,
)

SHA = "a" * 40
T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _gh_file(filename, additions, deletions=0, status="modified", patch="@@ -1 +1 @@\n+x = 1"):
    f = MagicMock()
    f.filename = filename
    f.additions = additions
    f.deletions = deletions
    f.status = status
    f.patch = patch
    return f


def _run(conclusion, status="completed", name="ci", minutes=2):
    run = MagicMock()
    run.status = status
    run.conclusion = conclusion
    run.name = name
    run.id = 1
    run.html_url = "https://github.com/alice/app/actions/runs/1"
    run.created_at = T0
    run.updated_at = T0 + timedelta(minutes=minutes)
    return run


class TestRepoNames:
    def test_parse_https_url(self):
        assert parse_repo_url("https://github.com/Alice/App") == "Alice/App"

    def test_parse_url_with_git_suffix_and_slash(self):
        assert parse_repo_url("https://github.com/alice/app.git") == "alice/app"
        assert parse_repo_url("https://github.com/alice/app/") == "alice/app"

    def test_parse_ssh_url(self):
        assert parse_repo_url("git@github.com:alice/app.git") == "alice/app"

    def test_parse_non_github_url(self):
        assert parse_repo_url("https://gitlab.com/alice/app") is None

    def test_repo_key_is_case_insensitive(self):
        assert repo_key("Alice/App") == repo_key("https://github.com/alice/app.git") == "alice/app"

    def test_repo_key_accepts_www_host(self):
        assert repo_key("https://www.github.com/Alice/App") == "alice/app"


class TestFetchPRMetadata:
    def test_maps_pull_fields(self):
        pr = MagicMock()
        pr.number = 7
        pr.title = "Add login"
        pr.body = None
        pr.user.login = "alice"
        pr.user.id = 42
        pr.additions, pr.deletions, pr.changed_files = 30, 5, 2
        pr.head.sha = SHA
        pr.created_at = T0
        repo = MagicMock(full_name="alice/app")
        repo.get_pull.return_value = pr

        metadata, pull = fetch_pr_metadata(repo, 7)

        assert pull is pr
        assert metadata.description == ""
        assert metadata.author_id == 42
        assert metadata.size == 35
        assert metadata.head_sha == SHA
        assert metadata.created_at == T0.isoformat()

    def test_github_error_becomes_gateway_error(self):
        repo = MagicMock()
        repo.get_pull.side_effect = GithubException(502, {"message": "Bad Gateway"}, None)
        with pytest.raises(GatewayError) as exc:
            fetch_pr_metadata(repo, 7)
        assert exc.value.service == "github"
        assert exc.value.operation == "get_pull"


class TestFetchBoundedDiff:
    def test_keeps_most_changed_files(self):
        pr = MagicMock()
        pr.get_files.return_value = [_gh_file(f"f{n}.py", n) for n in range(8)]
        repo = MagicMock()
        repo.get_contents.return_value = MagicMock(decoded_content=b"x = 1\n")

        files = fetch_bounded_diff(repo, pr, SHA, max_files=3)

        assert [f.filename for f in files] == ["f7.py", "f6.py", "f5.py"]
        assert all(f.content_complete for f in files)

    def test_long_file_truncated(self):
        pr = MagicMock()
        pr.get_files.return_value = [_gh_file("big.py", 10)]
        repo = MagicMock()
        repo.get_contents.return_value = MagicMock(decoded_content=("x = 1\n" * 20).encode())

        files = fetch_bounded_diff(repo, pr, SHA, max_lines=5)

        assert files[0].content.endswith("... (truncated)")
        assert files[0].content_complete is False

    def test_falls_back_to_patch_when_content_unavailable(self):
        pr = MagicMock()
        pr.get_files.return_value = [_gh_file("new.py", 1, status="added", patch="@@ -0,0 +1 @@\n+print('hi')")]
        repo = MagicMock()
        repo.get_contents.side_effect = GithubException(404, {"message": "Not Found"}, None)

        files = fetch_bounded_diff(repo, pr, SHA)

        assert files[0].content == "print('hi')"
        assert files[0].content_complete is True

    def test_removed_files_have_no_content(self):
        pr = MagicMock()
        pr.get_files.return_value = [_gh_file("gone.py", 0, deletions=10, status="removed", patch=None)]
        repo = MagicMock()

        files = fetch_bounded_diff(repo, pr, SHA)

        repo.get_contents.assert_not_called()
        assert files[0].content == ""


class TestFetchCIStatus:
    def test_no_runs(self):
        repo = MagicMock()
        repo.get_workflow_runs.return_value = []
        assert fetch_ci_status(repo, SHA).status == "no_workflows"

    def test_latest_success(self):
        repo = MagicMock()
        repo.get_workflow_runs.return_value = [_run("success"), _run("failure", name="lint")]
        report = fetch_ci_status(repo, SHA)
        assert report.status == "success"
        assert report.results.total == 2
        assert report.results.passed == 1
        assert report.results.failed == 1
        assert report.failures == ["lint"]
        assert report.duration_seconds == 240.0
        assert report.fail_rate == 0.5

    def test_latest_failure(self):
        repo = MagicMock()
        repo.get_workflow_runs.return_value = [_run("timed_out")]
        assert fetch_ci_status(repo, SHA).status == "failure"

    def test_running(self):
        repo = MagicMock()
        repo.get_workflow_runs.return_value = [_run(None, status="in_progress")]
        assert fetch_ci_status(repo, SHA).status == "running"

    def test_api_error_reports_unknown(self):
        repo = MagicMock(full_name="alice/app")
        repo.get_workflow_runs.side_effect = GithubException(500, {"message": "boom"}, None)
        assert fetch_ci_status(repo, SHA).status == "unknown"


LOGS_URL = "https://api.github.com/repos/alice/app/actions/runs/123/logs"


def _job(name, conclusion):
    job = MagicMock()
    job.name = name
    job.conclusion = conclusion
    return job


class TestFetchRunReport:
    def test_run_id_from_logs_url(self):
        assert run_id_from_logs_url(LOGS_URL) == 123
        assert run_id_from_logs_url("https://example.test/logs") is None
        assert run_id_from_logs_url(None) is None

    def test_counts_jobs(self):
        repo = MagicMock()
        run = _run("failure", name="CI")
        run.jobs.return_value = [_job("lint", "success"), _job("test", "failure"), _job("deploy", "cancelled")]
        repo.get_workflow_run.return_value = run

        report = fetch_run_report(repo, LOGS_URL)

        repo.get_workflow_run.assert_called_once_with(123)
        assert report.status == "failure"
        assert report.workflow_count == 1
        assert report.failures == ["CI: test"]
        assert (report.results.total, report.results.passed, report.results.failed) == (3, 1, 1)
        assert report.results.cancelled == 1
        assert report.duration_seconds == 120.0

    def test_unparseable_url(self):
        repo = MagicMock()
        assert fetch_run_report(repo, "https://example.test/logs") is None
        repo.get_workflow_run.assert_not_called()

    def test_api_error_returns_none(self):
        repo = MagicMock(full_name="alice/app")
        repo.get_workflow_run.side_effect = GithubException(404, {"message": "Not Found"}, None)
        assert fetch_run_report(repo, LOGS_URL) is None


class TestListOpenPulls:
    def test_returns_number_and_created_at(self):
        repo = MagicMock()
        repo.get_pulls.return_value = [MagicMock(number=3, created_at=T0)]
        assert list_open_pulls(repo) == [(3, T0)]
        repo.get_pulls.assert_called_once_with(state="open", sort="created", direction="desc")


class TestUpsertReviewComment:
    def test_creates_comment_with_marker(self):
        pr = MagicMock()
        pr.get_issue_comments.return_value = [MagicMock(body="Nice!")]
        upsert_review_comment(pr, "sub-1", "## Score")
        body = pr.create_issue_comment.call_args.args[0]
        assert body.startswith("## Score")
        assert "<!-- prgrade-review: sub-1 -->" in body

    def test_edits_existing_comment(self):
        existing = MagicMock(body="old\n\n<!-- prgrade-review: sub-1 -->")
        pr = MagicMock()
        pr.get_issue_comments.return_value = [existing]
        upsert_review_comment(pr, "sub-1", "## New score")
        existing.edit.assert_called_once()
        pr.create_issue_comment.assert_not_called()


class TestGithubClient:
    def test_falls_back_to_token(self, mocker):
        gh = mocker.patch("prgrade_core.gh.auth.Github")
        github_client({"github_token": "ghp_x"})
        gh.assert_called_once()

    def test_uses_installation_token(self, mocker):
        mocker.patch("prgrade_core.gh.auth.get_installation_token", return_value="ghs_inst")
        auth_token = mocker.patch("prgrade_core.gh.auth.Auth.Token")
        mocker.patch("prgrade_core.gh.auth.Github")
        github_client({"github_app_id": "1", "github_private_key": "pem"}, installation_id="99")
        auth_token.assert_called_once_with("ghs_inst")

    def test_missing_credentials(self):
        with pytest.raises(MissingCredentialsError):
            github_client({})

from __future__ import annotations

import logging
import re
from contextlib import contextmanager
from datetime import datetime

from github import GithubException

from prgrade_core.errors import GatewayError
from prgrade_core.metrics import observe_call
from prgrade_core.models import CIReport, DiffFile, PRMetadata, RunResults
from prgrade_core.utils.code import patch_new_side, truncate_lines

logger = logging.getLogger(__name__)

_REPO_URL_RE = re.compile(r"github\.com[/:]([^/]+)/([^/]+?)(?:\.git)?/?$", re.IGNORECASE)

COMMENT_MARKER = "<!-- prgrade-review: {submission_id} -->"

_FAILURE_CONCLUSIONS = {"failure", "timed_out", "startup_failure"}
_RUNNING_STATUSES = {"in_progress", "queued", "waiting", "requested", "pending"}
_RUN_ID_RE = re.compile(r"/actions/runs/(\d+)")


@contextmanager
def _github_call(operation: str):
    with observe_call("github", operation):
        try:
            yield
        except GithubException as e:
            raise GatewayError("github", operation, e) from e


def parse_repo_url(url: str) -> str | None:
    """Return ``owner/name`` for a GitHub https or ssh URL, or None."""
    match = _REPO_URL_RE.search((url or "").strip())
    if not match:
        return None
    return f"{match.group(1)}/{match.group(2)}"


def repo_key(full_name_or_url: str) -> str:
    """Case-insensitive comparison key for a repository."""
    parsed = parse_repo_url(full_name_or_url) if "github.com" in full_name_or_url.lower() else full_name_or_url
    return (parsed or full_name_or_url).strip().strip("/").lower()


def get_repo(gh, repo_full_name: str):
    with _github_call("get_repo"):
        return gh.get_repo(repo_full_name)


def fetch_pr_metadata(repo, pr_number: int):
    """Return ``(PRMetadata, pull)``; the PyGithub pull object is reused by later steps."""
    with _github_call("get_pull"):
        pr = repo.get_pull(pr_number)
        metadata = PRMetadata(
            repo_full_name=repo.full_name,
            number=pr.number,
            title=pr.title or "",
            description=pr.body or "",
            author=pr.user.login if pr.user else "",
            author_id=pr.user.id if pr.user else None,
            state=pr.state,
            additions=pr.additions or 0,
            deletions=pr.deletions or 0,
            changed_files=pr.changed_files or 0,
            head_sha=pr.head.sha,
            head_ref=pr.head.ref,
            base_ref=pr.base.ref,
            html_url=pr.html_url or "",
            created_at=pr.created_at.isoformat() if pr.created_at else None,
        )
    return metadata, pr


def fetch_bounded_diff(repo, pr, head_sha: str, max_files: int = 5, max_lines: int = 1000) -> list[DiffFile]:
    """The ``max_files`` most-changed files, each patch and body capped at ``max_lines`` lines."""
    with _github_call("list_files"):
        files = list(pr.get_files())

    files.sort(key=lambda f: (f.additions or 0) + (f.deletions or 0), reverse=True)
    bounded = []
    for f in files[:max_files]:
        patch, truncated = truncate_lines(f.patch or "", max_lines)
        diff_file = DiffFile(
            filename=f.filename,
            status=f.status,
            additions=f.additions or 0,
            deletions=f.deletions or 0,
            patch=patch,
            truncated=truncated,
        )
        if f.status != "removed":
            _attach_content(repo, diff_file, head_sha, max_lines)
        bounded.append(diff_file)
    return bounded


def _attach_content(repo, diff_file: DiffFile, head_sha: str, max_lines: int) -> None:
    try:
        with observe_call("github", "get_contents"):
            contents = repo.get_contents(diff_file.filename, ref=head_sha)
        if isinstance(contents, list):
            raise ValueError("path is a directory")
        text = contents.decoded_content.decode("utf-8", errors="replace")
        diff_file.content, truncated = truncate_lines(text, max_lines)
        diff_file.content_complete = not truncated
    except Exception as e:
        # Fall back to the new side of the patch; for an added file that is the whole file.
        logger.debug("Could not fetch %s@%s: %s", diff_file.filename, head_sha[:7], e)
        diff_file.content = patch_new_side(diff_file.patch)
        diff_file.content_complete = diff_file.status == "added" and not diff_file.truncated


def fetch_ci_status(repo, head_sha: str, max_runs: int = 10) -> CIReport:
    """Summarize workflow runs for ``head_sha``. Never raises; failures report ``unknown``."""
    try:
        with observe_call("github", "workflow_runs"):
            runs = list(repo.get_workflow_runs(head_sha=head_sha)[:max_runs])
    except Exception as e:
        logger.warning("CI status unavailable for %s@%s: %s", repo.full_name, head_sha[:7], e)
        return CIReport(status="unknown")

    if not runs:
        return CIReport(status="no_workflows")

    latest = runs[0]
    status = _run_status(latest)

    results = RunResults(total=len(runs))
    failures = []
    duration = 0.0
    for run in runs:
        if run.conclusion == "success":
            results.passed += 1
        elif run.conclusion in _FAILURE_CONCLUSIONS:
            results.failed += 1
            failures.append(run.name or str(run.id))
        elif run.conclusion == "cancelled":
            results.cancelled += 1
        duration += _run_duration(run)

    return CIReport(
        status=status,
        conclusion=latest.conclusion,
        workflow_count=len(runs),
        failures=failures,
        duration_seconds=duration,
        results=results,
        latest_run=_run_summary(latest),
    )


def run_id_from_logs_url(logs_url: str | None) -> int | None:
    match = _RUN_ID_RE.search(logs_url or "")
    return int(match.group(1)) if match else None


def fetch_run_report(repo, logs_url: str | None) -> CIReport | None:
    """CI report for the single run behind a workflow_run ``logs_url``, counted per job.

    Used when the head-commit listing has nothing yet. Returns None when the
    run cannot be read.
    """
    run_id = run_id_from_logs_url(logs_url)
    if run_id is None:
        return None
    try:
        with observe_call("github", "workflow_run"):
            run = repo.get_workflow_run(run_id)
            jobs = list(run.jobs())
    except Exception as e:
        logger.warning("Workflow run %s unavailable for %s: %s", run_id, repo.full_name, e)
        return None

    results = RunResults(total=len(jobs))
    failures = []
    for job in jobs:
        if job.conclusion == "success":
            results.passed += 1
        elif job.conclusion in _FAILURE_CONCLUSIONS:
            results.failed += 1
            failures.append(f"{run.name}: {job.name}")
        elif job.conclusion == "cancelled":
            results.cancelled += 1

    return CIReport(
        status=_run_status(run),
        conclusion=run.conclusion,
        workflow_count=1,
        failures=failures,
        duration_seconds=_run_duration(run),
        results=results,
        latest_run=_run_summary(run),
    )


def _run_status(run) -> str:
    if run.status == "completed":
        if run.conclusion == "success":
            return "success"
        if run.conclusion in _FAILURE_CONCLUSIONS:
            return "failure"
        if run.conclusion == "cancelled":
            return "cancelled"
        return "unknown"
    if run.status in _RUNNING_STATUSES:
        return "running"
    return "unknown"


def _run_duration(run) -> float:
    if run.status == "completed" and isinstance(run.created_at, datetime) and isinstance(run.updated_at, datetime):
        return max(0.0, (run.updated_at - run.created_at).total_seconds())
    return 0.0


def _run_summary(run) -> dict:
    return {
        "id": run.id,
        "name": run.name,
        "status": run.status,
        "conclusion": run.conclusion,
        "html_url": run.html_url,
    }


def list_open_pulls(repo) -> list[tuple[int, datetime | None]]:
    with _github_call("list_pulls"):
        return [(pr.number, pr.created_at) for pr in repo.get_pulls(state="open", sort="created", direction="desc")]


def upsert_review_comment(pr, submission_id: str, body: str):
    """Create the review comment, or edit the existing one carrying the same marker."""
    marker = COMMENT_MARKER.format(submission_id=submission_id)
    full_body = f"{body}\n\n{marker}"
    with _github_call("comment"):
        for comment in pr.get_issue_comments():
            if marker in (comment.body or ""):
                comment.edit(full_body)
                return comment
        return pr.create_issue_comment(full_body)

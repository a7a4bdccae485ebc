"""Tests for submit-for-review and manual PR fetch."""

import copy
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from prgrade_core.config import DEFAULT_CONFIG, queue_policies
from prgrade_core.discovery import DiscoveryState
from prgrade_core.errors import NotSubmissionOwnerError, PRNotFoundError, SubmissionNotFoundError
from prgrade_store.models import Submission, SubmissionStatus, User
from prgrade_store.queue import SQLiteJobQueue
from prgrade_store.sqlite import SQLiteStore
from prgrade_worker.enqueue import Enqueuer
from prgrade_worker.submissions import SubmissionService

OLDER = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
NEWER = datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)


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
def user(store):
    user = store.create_user(User(email="alice@example.com", github_username="alice"))
    store.set_installation(user.id, "99")
    return user


@pytest.fixture
def submission(store, user):
    return store.create_submission(Submission(user_id=user.id, repo_url="https://github.com/Alice/App"))


@pytest.fixture
def pulls(mocker):
    mocker.patch("prgrade_worker.submissions.get_repo", return_value=MagicMock())
    return mocker.patch("prgrade_worker.submissions.list_open_pulls", return_value=[])


@pytest.fixture
def service(store, queue):
    config = copy.deepcopy(DEFAULT_CONFIG)
    sleeps = []
    svc = SubmissionService(
        store,
        Enqueuer(queue, queue_policies(config)),
        config,
        client_factory=MagicMock(),
        sleep=sleeps.append,
    )
    svc.sleeps = sleeps
    return svc


class TestSubmitForReview:
    def test_attaches_newest_pr_and_queues_review(self, service, store, queue, user, submission, pulls):
        pulls.return_value = [(3, OLDER), (5, NEWER)]

        result = service.submit_for_review(submission.id, user.id)

        assert result.state is DiscoveryState.FOUND
        assert result.pr_number == 5
        assert result.attempts == 1
        stored = store.get_submission(submission.id)
        assert stored.pr_number == 5
        assert stored.status == SubmissionStatus.SUBMITTED

        job = queue.reserve("review", "w1", 30)
        assert job.payload["pr_number"] == 5
        assert job.payload["repo_full_name"] == "Alice/App"
        assert job.payload["installation_id"] == "99"
        assert job.payload["event"] == "manual"

    def test_uses_installation_for_client(self, service, user, submission, pulls):
        pulls.return_value = [(5, NEWER)]
        service.submit_for_review(submission.id, user.id)
        assert service._client_factory.call_args.args[1] == "99"

    def test_pr_found_on_later_poll(self, service, user, submission, pulls):
        pulls.side_effect = [[], [], [(8, NEWER)]]

        result = service.submit_for_review(submission.id, user.id)

        assert result.pr_number == 8
        assert result.attempts == 3
        assert service.sleeps == [5.0, 5.0]

    def test_exhausted_search_leaves_submission_unattached(self, service, store, queue, user, submission, pulls):
        result = service.submit_for_review(submission.id, user.id)

        assert result.state is DiscoveryState.EXHAUSTED
        assert result.attempts == 26
        assert store.get_submission(submission.id).pr_number is None
        assert queue.counts("review")["waiting"] == 0

    def test_already_attached_skips_discovery(self, service, store, queue, user, submission, pulls):
        store.attach_pr(submission.id, 4)

        result = service.submit_for_review(submission.id, user.id)

        assert result.pr_number == 4
        pulls.assert_not_called()
        assert queue.reserve("review", "w1", 30).payload["pr_number"] == 4

    def test_unknown_submission(self, service, user):
        with pytest.raises(SubmissionNotFoundError):
            service.submit_for_review("missing", user.id)

    def test_other_users_submission(self, service, submission):
        with pytest.raises(NotSubmissionOwnerError):
            service.submit_for_review(submission.id, "someone-else")


class TestFetchPR:
    def test_returns_pr_number(self, service, user, submission, pulls):
        pulls.return_value = [(12, NEWER)]
        assert service.fetch_pr(submission.id, user.id) == 12

    def test_not_found_raises(self, service, user, submission, pulls):
        with pytest.raises(PRNotFoundError) as exc:
            service.fetch_pr(submission.id, user.id)
        assert exc.value.attempts == 11
        assert exc.value.repo_full_name == "Alice/App"

    def test_listing_errors_count_as_empty_polls(self, service, user, submission, pulls):
        pulls.side_effect = [RuntimeError("502"), [(2, NEWER)]]
        assert service.fetch_pr(submission.id, user.id) == 2

"""Tests for the SQLite domain store."""

from __future__ import annotations

import pytest

from prgrade_store.models import (
    Company,
    InterviewRequest,
    NotificationPreferences,
    NotificationRecord,
    PortfolioRecord,
    PRReviewRecord,
    ScoreRecord,
    Submission,
    SubmissionStatus,
    User,
)
from prgrade_store.sqlite import SQLiteStore


@pytest.fixture
def store(tmp_path):
    s = SQLiteStore(db_path=str(tmp_path / "prgrade.db"))
    yield s
    s.close()


def _user(store, github_id=42, username="alice"):
    return store.create_user(User(email=f"{username}@example.com", name=username, github_id=github_id, github_username=username))


def _submission(store, user, repo_url="https://github.com/Alice/App", created_at="2026-01-01T00:00:00+00:00"):
    return store.create_submission(Submission(user_id=user.id, repo_url=repo_url, created_at=created_at))


def _score(submission_id, total=72.5):
    return ScoreRecord(
        submission_id=submission_id,
        scores={"code_quality": 7.0},
        reliability=8.0,
        total_score=total,
        badge="YELLOW",
        details={"summary": "ok"},
    )


# ---------------------------------------------------------------------------
# Users and installations
# ---------------------------------------------------------------------------


class TestUsers:
    def test_create_and_find(self, store):
        user = _user(store)
        assert store.get_user(user.id).email == "alice@example.com"
        assert store.find_user_by_github_id(42).id == user.id
        assert store.find_user_by_github_username("ALICE").id == user.id

    def test_installation_link_and_clear(self, store):
        user = _user(store)
        store.set_installation(user.id, 99)
        assert store.get_user(user.id).github_install_id == "99"

        assert store.clear_installation("99") == 1
        assert store.get_user(user.id).github_install_id is None


# ---------------------------------------------------------------------------
# Submissions
# ---------------------------------------------------------------------------


class TestSubmissions:
    def test_repo_key_normalized(self, store):
        submission = _submission(store, _user(store), repo_url="https://github.com/Alice/App.git/")
        assert submission.repo_key == "alice/app"
        assert [s.id for s in store.find_submissions_by_repo("ALICE/app")] == [submission.id]

    def test_www_url_matches_full_name(self, store):
        submission = _submission(store, _user(store), repo_url="https://www.github.com/alice/app")
        assert submission.repo_key == "alice/app"
        assert store.find_submission_by_pr("alice/app", 7) is None
        assert [s.id for s in store.find_submissions_by_repo("alice/app")] == [submission.id]

    def test_find_by_repo_newest_first(self, store):
        user = _user(store)
        older = _submission(store, user, created_at="2026-01-01T00:00:00+00:00")
        newer = _submission(store, user, created_at="2026-02-01T00:00:00+00:00")
        assert [s.id for s in store.find_submissions_by_repo("alice/app")] == [newer.id, older.id]

    def test_attach_pr_once(self, store):
        submission = _submission(store, _user(store))

        assert store.attach_pr(submission.id, 7) is True
        assert store.attach_pr(submission.id, 8) is False

        stored = store.get_submission(submission.id)
        assert stored.pr_number == 7
        assert stored.status == SubmissionStatus.SUBMITTED

    def test_attach_pr_keeps_reviewed_status(self, store):
        submission = _submission(store, _user(store))
        store.update_submission_status(submission.id, SubmissionStatus.REVIEWED)
        store.attach_pr(submission.id, 7)
        assert store.get_submission(submission.id).status == SubmissionStatus.REVIEWED

    def test_find_by_pr(self, store):
        submission = _submission(store, _user(store))
        store.attach_pr(submission.id, 7)
        assert store.find_submission_by_pr("Alice/App", 7).id == submission.id
        assert store.find_submission_by_pr("alice/app", 8) is None

    def test_missing_submission(self, store):
        assert store.get_submission("nope") is None


# ---------------------------------------------------------------------------
# Reviews, scores and portfolios
# ---------------------------------------------------------------------------


class TestResults:
    def test_reviews_are_append_only(self, store):
        store.add_review(PRReviewRecord(submission_id="s1", pr_number=7, review_json={"total": 70}))
        store.add_review(PRReviewRecord(submission_id="s1", pr_number=7, partial=True))
        reviews = store.list_reviews("s1")
        assert len(reviews) == 2
        assert reviews[0].review_json == {"total": 70}
        assert reviews[1].partial is True

    def test_score_upsert_keeps_one_row(self, store):
        first = store.upsert_score(_score("s1", total=60.0))
        second = store.upsert_score(_score("s1", total=80.0))

        assert second.id == first.id
        assert store.get_score("s1").total_score == 80.0
        assert store._fetchone("SELECT COUNT(*) AS n FROM scores")["n"] == 1

    def test_portfolio_upsert(self, store):
        store.upsert_portfolio(PortfolioRecord(submission_id="s1", user_id="u1", slug="a-b", score_id="x", portfolio={"v": 1}))
        store.upsert_portfolio(PortfolioRecord(submission_id="s1", user_id="u1", slug="a-b", score_id="y", portfolio={"v": 2}))
        portfolio = store.get_portfolio("s1")
        assert portfolio.score_id == "y"
        assert portfolio.portfolio == {"v": 2}


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


class TestNotifications:
    def _record(self, **kwargs):
        defaults = dict(user_id="u1", type="SCORE_READY", title="t", message="m", dedupe_key="evt-1")
        defaults.update(kwargs)
        return NotificationRecord(**defaults)

    def test_dedupe_on_key(self, store):
        first, created = store.upsert_notification(self._record())
        again, created_again = store.upsert_notification(self._record(title="other"))

        assert created is True
        assert created_again is False
        assert again.id == first.id
        assert len(store.list_notifications("u1")) == 1

    def test_different_keys_are_separate(self, store):
        store.upsert_notification(self._record(dedupe_key="evt-1"))
        store.upsert_notification(self._record(dedupe_key="evt-2"))
        assert len(store.list_notifications("u1")) == 2

    def test_mark_email_sent(self, store):
        record, _ = store.upsert_notification(self._record())
        store.mark_email_sent(record.id)
        again, _ = store.upsert_notification(self._record())
        assert again.email_sent is True

    def test_preferences_round_trip(self, store):
        assert store.get_preferences("u1") is None
        store.save_preferences(NotificationPreferences(user_id="u1", email_score_ready=False))
        prefs = store.get_preferences("u1")
        assert prefs.email_score_ready is False
        assert prefs.email_enabled is True


class TestCompanies:
    def test_company_and_interview(self, store):
        company = store.create_company(Company(name="Acme", user_id="u2"))
        request = store.create_interview_request(InterviewRequest(company_id=company.id, user_id="u1"))
        assert store.get_company(company.id).name == "Acme"
        assert store.get_interview_request(request.id).status == "PENDING"


def test_ping(store):
    assert store.ping() is True

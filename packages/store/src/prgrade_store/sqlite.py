"""SQLiteStore: file-based domain store.

Schema:
  users, projects, submissions   read mostly; only installation linkage,
                                 PR attachment and status are written here
  pr_reviews                     one row per review execution (append-only)
  scores                         one row per submission (UNIQUE submission_id, upserted)
  portfolios                     one row per submission (UNIQUE submission_id, upserted)
  notifications                  UNIQUE (user_id, type, dedupe_key)
"""

from __future__ import annotations

import json
import logging
import sqlite3

from prgrade_core.gh.pull_request import repo_key as _repo_key
from prgrade_store.base import BaseStore
from prgrade_store.db import SQLiteBacked
from prgrade_store.models import (
    Company,
    InterviewRequest,
    NotificationPreferences,
    NotificationRecord,
    PortfolioRecord,
    PRReviewRecord,
    Project,
    ScoreRecord,
    Submission,
    SubmissionStatus,
    User,
    utcnow,
)

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id                  TEXT PRIMARY KEY,
    email               TEXT NOT NULL,
    name                TEXT DEFAULT '',
    github_id           INTEGER,
    github_username     TEXT DEFAULT '',
    github_install_id   TEXT,
    avatar_url          TEXT DEFAULT '',
    developer_type      TEXT DEFAULT ''
);
CREATE INDEX IF NOT EXISTS idx_users_github_id ON users (github_id);
CREATE INDEX IF NOT EXISTS idx_users_install   ON users (github_install_id);

CREATE TABLE IF NOT EXISTS projects (
    id           TEXT PRIMARY KEY,
    title        TEXT NOT NULL,
    description  TEXT DEFAULT ''
);

CREATE TABLE IF NOT EXISTS submissions (
    id          TEXT PRIMARY KEY,
    user_id     TEXT NOT NULL,
    project_id  TEXT,
    repo_url    TEXT NOT NULL,
    repo_key    TEXT NOT NULL,
    pr_number   INTEGER,
    status      TEXT NOT NULL,
    created_at  TEXT,
    updated_at  TEXT
);
CREATE INDEX IF NOT EXISTS idx_submissions_repo ON submissions (repo_key);
CREATE INDEX IF NOT EXISTS idx_submissions_pr   ON submissions (repo_key, pr_number);

CREATE TABLE IF NOT EXISTS pr_reviews (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    submission_id   TEXT NOT NULL,
    pr_number       INTEGER NOT NULL,
    review_json     TEXT DEFAULT '{}',
    static_report   TEXT DEFAULT '{}',
    suggestions     TEXT DEFAULT '[]',
    partial         INTEGER DEFAULT 0,
    created_at      TEXT
);
CREATE INDEX IF NOT EXISTS idx_reviews_submission ON pr_reviews (submission_id);

CREATE TABLE IF NOT EXISTS scores (
    id              TEXT PRIMARY KEY,
    submission_id   TEXT NOT NULL UNIQUE,
    scores_json     TEXT NOT NULL,
    reliability     REAL,
    total_score     REAL NOT NULL,
    badge           TEXT NOT NULL,
    details_json    TEXT DEFAULT '{}',
    created_at      TEXT,
    updated_at      TEXT
);

CREATE TABLE IF NOT EXISTS portfolios (
    id              TEXT PRIMARY KEY,
    submission_id   TEXT NOT NULL UNIQUE,
    user_id         TEXT NOT NULL,
    slug            TEXT NOT NULL,
    score_id        TEXT,
    portfolio_json  TEXT DEFAULT '{}',
    created_at      TEXT,
    updated_at      TEXT
);

CREATE TABLE IF NOT EXISTS notifications (
    id          TEXT PRIMARY KEY,
    user_id     TEXT NOT NULL,
    type        TEXT NOT NULL,
    title       TEXT,
    message     TEXT,
    data_json   TEXT DEFAULT '{}',
    dedupe_key  TEXT NOT NULL DEFAULT '',
    read        INTEGER DEFAULT 0,
    email_sent  INTEGER DEFAULT 0,
    created_at  TEXT,
    UNIQUE (user_id, type, dedupe_key)
);

CREATE TABLE IF NOT EXISTS notification_preferences (
    user_id                  TEXT PRIMARY KEY,
    email_enabled            INTEGER DEFAULT 1,
    email_score_ready        INTEGER DEFAULT 1,
    email_portfolio_ready    INTEGER DEFAULT 1,
    email_interview_request  INTEGER DEFAULT 1,
    email_interview_update   INTEGER DEFAULT 1
);

CREATE TABLE IF NOT EXISTS companies (
    id       TEXT PRIMARY KEY,
    name     TEXT NOT NULL,
    user_id  TEXT NOT NULL,
    email    TEXT DEFAULT ''
);

CREATE TABLE IF NOT EXISTS interview_requests (
    id             TEXT PRIMARY KEY,
    company_id     TEXT NOT NULL,
    user_id        TEXT NOT NULL,
    submission_id  TEXT,
    status         TEXT DEFAULT 'PENDING',
    message        TEXT DEFAULT ''
);
"""


class SQLiteStore(SQLiteBacked, BaseStore):
    """Stores domain records in a local SQLite database file.

    Defaults to `.prgrade.db` in the current working directory. Configure via
    .prgrade.yml: `database_path: /path/to/prgrade.db`.
    """

    def __init__(self, db_path: str = ".prgrade.db"):
        super().__init__(db_path, _SCHEMA)

    def ping(self) -> bool:
        try:
            self._fetchone("SELECT 1")
        except sqlite3.Error:
            return False
        return True

    # -- users ---------------------------------------------------------- #

    def create_user(self, user: User) -> User:
        self._execute(
            """
            INSERT INTO users
              (id, email, name, github_id, github_username, github_install_id, avatar_url, developer_type)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                user.id,
                user.email,
                user.name,
                user.github_id,
                user.github_username,
                user.github_install_id,
                user.avatar_url,
                user.developer_type,
            ),
        )
        return user

    def get_user(self, user_id: str) -> User | None:
        return self._user(self._fetchone("SELECT * FROM users WHERE id=?", (user_id,)))

    def find_user_by_github_id(self, github_id: int) -> User | None:
        return self._user(self._fetchone("SELECT * FROM users WHERE github_id=?", (github_id,)))

    def find_user_by_github_username(self, username: str) -> User | None:
        return self._user(
            self._fetchone("SELECT * FROM users WHERE lower(github_username)=lower(?)", (username,))
        )

    def set_installation(self, user_id: str, installation_id: str) -> None:
        self._execute("UPDATE users SET github_install_id=? WHERE id=?", (str(installation_id), user_id))

    def clear_installation(self, installation_id: str) -> int:
        cursor = self._execute(
            "UPDATE users SET github_install_id=NULL WHERE github_install_id=?", (str(installation_id),)
        )
        return cursor.rowcount

    # -- projects / submissions ----------------------------------------- #

    def create_project(self, project: Project) -> Project:
        self._execute(
            "INSERT INTO projects (id, title, description) VALUES (?, ?, ?)",
            (project.id, project.title, project.description),
        )
        return project

    def get_project(self, project_id: str) -> Project | None:
        row = self._fetchone("SELECT * FROM projects WHERE id=?", (project_id,))
        if row is None:
            return None
        return Project(id=row["id"], title=row["title"], description=row["description"] or "")

    def create_submission(self, submission: Submission) -> Submission:
        submission.repo_key = submission.repo_key or _repo_key(submission.repo_url)
        self._execute(
            """
            INSERT INTO submissions
              (id, user_id, project_id, repo_url, repo_key, pr_number, status, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                submission.id,
                submission.user_id,
                submission.project_id,
                submission.repo_url,
                submission.repo_key,
                submission.pr_number,
                submission.status,
                submission.created_at,
                submission.updated_at,
            ),
        )
        return submission

    def get_submission(self, submission_id: str) -> Submission | None:
        return self._submission(self._fetchone("SELECT * FROM submissions WHERE id=?", (submission_id,)))

    def find_submissions_by_repo(self, repo_key: str) -> list[Submission]:
        rows = self._fetchall(
            "SELECT * FROM submissions WHERE repo_key=? ORDER BY created_at DESC", (_repo_key(repo_key),)
        )
        return [self._submission(r) for r in rows]

    def find_submission_by_pr(self, repo_key: str, pr_number: int) -> Submission | None:
        row = self._fetchone(
            "SELECT * FROM submissions WHERE repo_key=? AND pr_number=? ORDER BY created_at DESC",
            (_repo_key(repo_key), pr_number),
        )
        return self._submission(row)

    def attach_pr(self, submission_id: str, pr_number: int) -> bool:
        cursor = self._execute(
            """
            UPDATE submissions
               SET pr_number=?,
                   status=CASE WHEN status=? THEN ? ELSE status END,
                   updated_at=?
             WHERE id=? AND pr_number IS NULL
            """,
            (pr_number, SubmissionStatus.IN_PROGRESS, SubmissionStatus.SUBMITTED, utcnow(), submission_id),
        )
        return cursor.rowcount == 1

    def update_submission_status(self, submission_id: str, status: str) -> None:
        self._execute("UPDATE submissions SET status=?, updated_at=? WHERE id=?", (status, utcnow(), submission_id))

    # -- reviews / scores / portfolios ---------------------------------- #

    def add_review(self, record: PRReviewRecord) -> PRReviewRecord:
        cursor = self._execute(
            """
            INSERT INTO pr_reviews
              (submission_id, pr_number, review_json, static_report, suggestions, partial, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.submission_id,
                record.pr_number,
                json.dumps(record.review_json),
                json.dumps(record.static_report),
                json.dumps(record.suggestions),
                int(record.partial),
                record.created_at,
            ),
        )
        record.id = cursor.lastrowid
        return record

    def list_reviews(self, submission_id: str) -> list[PRReviewRecord]:
        rows = self._fetchall("SELECT * FROM pr_reviews WHERE submission_id=? ORDER BY id", (submission_id,))
        return [
            PRReviewRecord(
                id=r["id"],
                submission_id=r["submission_id"],
                pr_number=r["pr_number"],
                review_json=json.loads(r["review_json"] or "{}"),
                static_report=json.loads(r["static_report"] or "{}"),
                suggestions=json.loads(r["suggestions"] or "[]"),
                partial=bool(r["partial"]),
                created_at=r["created_at"] or "",
            )
            for r in rows
        ]

    def upsert_score(self, record: ScoreRecord) -> ScoreRecord:
        now = utcnow()
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO scores
                  (id, submission_id, scores_json, reliability, total_score, badge, details_json,
                   created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (submission_id) DO UPDATE SET
                  scores_json=excluded.scores_json,
                  reliability=excluded.reliability,
                  total_score=excluded.total_score,
                  badge=excluded.badge,
                  details_json=excluded.details_json,
                  updated_at=excluded.updated_at
                """,
                (
                    record.id,
                    record.submission_id,
                    json.dumps(record.scores),
                    record.reliability,
                    record.total_score,
                    record.badge,
                    json.dumps(record.details),
                    record.created_at,
                    now,
                ),
            )
            row = conn.execute("SELECT * FROM scores WHERE submission_id=?", (record.submission_id,)).fetchone()
        return self._score(row)

    def get_score(self, submission_id: str) -> ScoreRecord | None:
        row = self._fetchone("SELECT * FROM scores WHERE submission_id=?", (submission_id,))
        return self._score(row) if row else None

    def upsert_portfolio(self, record: PortfolioRecord) -> PortfolioRecord:
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO portfolios
                  (id, submission_id, user_id, slug, score_id, portfolio_json, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (submission_id) DO UPDATE SET
                  slug=excluded.slug,
                  score_id=excluded.score_id,
                  portfolio_json=excluded.portfolio_json,
                  updated_at=excluded.updated_at
                """,
                (
                    record.id,
                    record.submission_id,
                    record.user_id,
                    record.slug,
                    record.score_id,
                    json.dumps(record.portfolio),
                    record.created_at,
                    utcnow(),
                ),
            )
            row = conn.execute("SELECT * FROM portfolios WHERE submission_id=?", (record.submission_id,)).fetchone()
        return self._portfolio(row)

    def get_portfolio(self, submission_id: str) -> PortfolioRecord | None:
        row = self._fetchone("SELECT * FROM portfolios WHERE submission_id=?", (submission_id,))
        return self._portfolio(row) if row else None

    # -- notifications -------------------------------------------------- #

    def upsert_notification(self, record: NotificationRecord) -> tuple[NotificationRecord, bool]:
        with self.transaction() as conn:
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO notifications
                  (id, user_id, type, title, message, data_json, dedupe_key, read, email_sent, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.id,
                    record.user_id,
                    record.type,
                    record.title,
                    record.message,
                    json.dumps(record.data),
                    record.dedupe_key,
                    int(record.read),
                    int(record.email_sent),
                    record.created_at,
                ),
            )
            created = cursor.rowcount == 1
            row = conn.execute(
                "SELECT * FROM notifications WHERE user_id=? AND type=? AND dedupe_key=?",
                (record.user_id, record.type, record.dedupe_key),
            ).fetchone()
        return self._notification(row), created

    def mark_email_sent(self, notification_id: str) -> None:
        self._execute("UPDATE notifications SET email_sent=1 WHERE id=?", (notification_id,))

    def list_notifications(self, user_id: str, unread_only: bool = False) -> list[NotificationRecord]:
        sql = "SELECT * FROM notifications WHERE user_id=?"
        if unread_only:
            sql += " AND read=0"
        rows = self._fetchall(sql + " ORDER BY created_at DESC", (user_id,))
        return [self._notification(r) for r in rows]

    def get_preferences(self, user_id: str) -> NotificationPreferences | None:
        row = self._fetchone("SELECT * FROM notification_preferences WHERE user_id=?", (user_id,))
        if row is None:
            return None
        return NotificationPreferences(
            user_id=row["user_id"],
            email_enabled=bool(row["email_enabled"]),
            email_score_ready=bool(row["email_score_ready"]),
            email_portfolio_ready=bool(row["email_portfolio_ready"]),
            email_interview_request=bool(row["email_interview_request"]),
            email_interview_update=bool(row["email_interview_update"]),
        )

    def save_preferences(self, prefs: NotificationPreferences) -> None:
        self._execute(
            """
            INSERT OR REPLACE INTO notification_preferences
              (user_id, email_enabled, email_score_ready, email_portfolio_ready,
               email_interview_request, email_interview_update)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                prefs.user_id,
                int(prefs.email_enabled),
                int(prefs.email_score_ready),
                int(prefs.email_portfolio_ready),
                int(prefs.email_interview_request),
                int(prefs.email_interview_update),
            ),
        )

    # -- companies / interviews ----------------------------------------- #

    def create_company(self, company: Company) -> Company:
        self._execute(
            "INSERT INTO companies (id, name, user_id, email) VALUES (?, ?, ?, ?)",
            (company.id, company.name, company.user_id, company.email),
        )
        return company

    def get_company(self, company_id: str) -> Company | None:
        row = self._fetchone("SELECT * FROM companies WHERE id=?", (company_id,))
        if row is None:
            return None
        return Company(id=row["id"], name=row["name"], user_id=row["user_id"], email=row["email"] or "")

    def create_interview_request(self, request: InterviewRequest) -> InterviewRequest:
        self._execute(
            """
            INSERT INTO interview_requests (id, company_id, user_id, submission_id, status, message)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (request.id, request.company_id, request.user_id, request.submission_id, request.status, request.message),
        )
        return request

    def get_interview_request(self, request_id: str) -> InterviewRequest | None:
        row = self._fetchone("SELECT * FROM interview_requests WHERE id=?", (request_id,))
        if row is None:
            return None
        return InterviewRequest(
            id=row["id"],
            company_id=row["company_id"],
            user_id=row["user_id"],
            submission_id=row["submission_id"],
            status=row["status"],
            message=row["message"] or "",
        )

    # -- row mapping ---------------------------------------------------- #

    @staticmethod
    def _user(row: sqlite3.Row | None) -> User | None:
        if row is None:
            return None
        return User(
            id=row["id"],
            email=row["email"],
            name=row["name"] or "",
            github_id=row["github_id"],
            github_username=row["github_username"] or "",
            github_install_id=row["github_install_id"],
            avatar_url=row["avatar_url"] or "",
            developer_type=row["developer_type"] or "",
        )

    @staticmethod
    def _submission(row: sqlite3.Row | None) -> Submission | None:
        if row is None:
            return None
        return Submission(
            id=row["id"],
            user_id=row["user_id"],
            project_id=row["project_id"],
            repo_url=row["repo_url"],
            repo_key=row["repo_key"],
            pr_number=row["pr_number"],
            status=row["status"],
            created_at=row["created_at"] or "",
            updated_at=row["updated_at"] or "",
        )

    @staticmethod
    def _score(row: sqlite3.Row) -> ScoreRecord:
        return ScoreRecord(
            id=row["id"],
            submission_id=row["submission_id"],
            scores=json.loads(row["scores_json"]),
            reliability=row["reliability"],
            total_score=row["total_score"],
            badge=row["badge"],
            details=json.loads(row["details_json"] or "{}"),
            created_at=row["created_at"] or "",
            updated_at=row["updated_at"] or "",
        )

    @staticmethod
    def _portfolio(row: sqlite3.Row) -> PortfolioRecord:
        return PortfolioRecord(
            id=row["id"],
            submission_id=row["submission_id"],
            user_id=row["user_id"],
            slug=row["slug"],
            score_id=row["score_id"],
            portfolio=json.loads(row["portfolio_json"] or "{}"),
            created_at=row["created_at"] or "",
            updated_at=row["updated_at"] or "",
        )

    @staticmethod
    def _notification(row: sqlite3.Row) -> NotificationRecord:
        return NotificationRecord(
            id=row["id"],
            user_id=row["user_id"],
            type=row["type"],
            title=row["title"] or "",
            message=row["message"] or "",
            data=json.loads(row["data_json"] or "{}"),
            dedupe_key=row["dedupe_key"],
            read=bool(row["read"]),
            email_sent=bool(row["email_sent"]),
            created_at=row["created_at"] or "",
        )

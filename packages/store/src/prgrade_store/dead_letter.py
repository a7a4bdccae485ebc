"""SQLite dead-letter store. Rows are inserted and read, never updated or deleted."""

from __future__ import annotations

import json
import logging
import sqlite3

from prgrade_store.base import BaseDeadLetterStore
from prgrade_store.db import SQLiteBacked
from prgrade_store.models import DeadLetterRecord

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS dead_letters (
    id               INTEGER PRIMARY KEY AUTOINCREMENT,
    original_queue   TEXT NOT NULL,
    original_job_id  TEXT,
    payload_json     TEXT NOT NULL,
    failure_reason   TEXT NOT NULL,
    failure_stack    TEXT DEFAULT '',
    failure_count    INTEGER DEFAULT 1,
    submission_id    TEXT,
    pr_number        INTEGER,
    repo_full_name   TEXT,
    failed_at        TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_dead_letters_submission ON dead_letters (submission_id);
"""


class SQLiteDeadLetterStore(SQLiteBacked, BaseDeadLetterStore):
    def __init__(self, db_path: str = ".prgrade.db"):
        super().__init__(db_path, _SCHEMA)

    def append(self, record: DeadLetterRecord) -> DeadLetterRecord:
        cursor = self._execute(
            """
            INSERT INTO dead_letters
              (original_queue, original_job_id, payload_json, failure_reason, failure_stack,
               failure_count, submission_id, pr_number, repo_full_name, failed_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.original_queue,
                record.original_job_id,
                json.dumps(record.payload),
                record.failure_reason,
                record.failure_stack,
                record.failure_count,
                record.submission_id,
                record.pr_number,
                record.repo_full_name,
                record.failed_at,
            ),
        )
        record.id = cursor.lastrowid
        logger.error(
            "Dead-lettered %s job %s (submission=%s, attempts=%d): %s",
            record.original_queue,
            record.original_job_id,
            record.submission_id,
            record.failure_count,
            record.failure_reason,
        )
        return record

    def get(self, record_id: int) -> DeadLetterRecord | None:
        row = self._fetchone("SELECT * FROM dead_letters WHERE id=?", (record_id,))
        return self._row_to_record(row) if row else None

    def list(
        self,
        submission_id: str | None = None,
        queue: str | None = None,
        limit: int = 100,
    ) -> list[DeadLetterRecord]:
        clauses, params = [], []
        if submission_id is not None:
            clauses.append("submission_id=?")
            params.append(submission_id)
        if queue is not None:
            clauses.append("original_queue=?")
            params.append(queue)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._fetchall(f"SELECT * FROM dead_letters {where} ORDER BY id DESC LIMIT ?", (*params, limit))
        return [self._row_to_record(r) for r in rows]

    def count(self) -> int:
        return self._fetchone("SELECT COUNT(*) AS n FROM dead_letters")["n"]

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> DeadLetterRecord:
        return DeadLetterRecord(
            id=row["id"],
            original_queue=row["original_queue"],
            original_job_id=row["original_job_id"],
            payload=json.loads(row["payload_json"]),
            failure_reason=row["failure_reason"],
            failure_stack=row["failure_stack"] or "",
            failure_count=row["failure_count"],
            submission_id=row["submission_id"],
            pr_number=row["pr_number"],
            repo_full_name=row["repo_full_name"],
            failed_at=row["failed_at"],
        )

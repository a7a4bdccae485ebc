"""Durable job queue.

Delivery is at-least-once. A reserved job holds a lock that its worker keeps
alive with ``heartbeat()``; once the lock expires the job is treated as
stalled and handed to the next ``reserve()`` call.

Job lifecycle:

    waiting ──reserve──▶ active ──complete──▶ completed
       ▲                   │
       └──fail (retry)─────┤
                           └──fail (exhausted / fatal)──▶ failed
"""

from __future__ import annotations

import json
import logging
import sqlite3
import time
import uuid
from abc import ABC, abstractmethod
from typing import Callable

from prgrade_store.db import SQLiteBacked
from prgrade_store.models import Job, JobStatus

logger = logging.getLogger(__name__)

RETRY = "retry"
EXHAUSTED = "exhausted"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS jobs (
    id             TEXT PRIMARY KEY,
    queue          TEXT NOT NULL,
    payload_json   TEXT NOT NULL,
    status         TEXT NOT NULL,
    attempts_made  INTEGER NOT NULL DEFAULT 0,
    max_attempts   INTEGER NOT NULL DEFAULT 1,
    run_at         REAL NOT NULL,
    locked_until   REAL,
    worker_id      TEXT,
    last_error     TEXT,
    last_stack     TEXT,
    result_json    TEXT,
    created_at     REAL NOT NULL,
    finished_at    REAL
);
CREATE INDEX IF NOT EXISTS idx_jobs_ready ON jobs (queue, status, run_at);
"""


class BaseJobQueue(ABC):
    """Broker contract for the pipeline stages."""

    @abstractmethod
    def add(self, queue: str, payload: dict, job_id: str | None = None, max_attempts: int = 1) -> str:
        """Enqueue a job. Adding an id that already exists is a no-op. Returns the job id."""

    @abstractmethod
    def reserve(self, queue: str, worker_id: str, lock_seconds: float) -> Job | None:
        """Claim the next due job (or a stalled one) and count an attempt against it."""

    @abstractmethod
    def heartbeat(self, job_id: str, worker_id: str, lock_seconds: float) -> bool:
        """Extend the lock. Returns False if the job is no longer held by ``worker_id``."""

    @abstractmethod
    def complete(self, job_id: str, result: dict | None = None) -> None: ...

    @abstractmethod
    def fail(self, job_id: str, error: str, stack: str = "", retry_delay: float | None = None) -> str:
        """Record a failed attempt.

        ``retry_delay`` None means the failure is fatal. Returns RETRY when the
        job was rescheduled, EXHAUSTED when it moved to ``failed``.
        """

    @abstractmethod
    def prune(self, queue: str, keep_completed_age: float, keep_completed_count: int, keep_failed_age: float) -> int:
        """Apply retention. Returns the number of jobs removed."""

    @abstractmethod
    def counts(self, queue: str) -> dict[str, int]: ...

    @abstractmethod
    def get(self, job_id: str) -> Job | None: ...

    def ping(self) -> bool:
        return True

    def close(self) -> None:
        pass


class SQLiteJobQueue(SQLiteBacked, BaseJobQueue):
    """Job queue persisted in a SQLite file; survives process restarts."""

    def __init__(self, db_path: str = ".prgrade.db", clock: Callable[[], float] = time.time):
        super().__init__(db_path, _SCHEMA)
        self._clock = clock

    def ping(self) -> bool:
        try:
            self._fetchone("SELECT 1")
        except sqlite3.Error:
            return False
        return True

    def add(self, queue: str, payload: dict, job_id: str | None = None, max_attempts: int = 1) -> str:
        job_id = job_id or uuid.uuid4().hex
        now = self._clock()
        cursor = self._execute(
            """
            INSERT OR IGNORE INTO jobs
              (id, queue, payload_json, status, attempts_made, max_attempts, run_at, created_at)
            VALUES (?, ?, ?, ?, 0, ?, ?, ?)
            """,
            (job_id, queue, json.dumps(payload), JobStatus.WAITING, max(1, max_attempts), now, now),
        )
        if cursor.rowcount == 0:
            logger.debug("Job %s already queued on %s", job_id, queue)
        return job_id

    def reserve(self, queue: str, worker_id: str, lock_seconds: float) -> Job | None:
        now = self._clock()
        with self.transaction() as conn:
            row = conn.execute(
                """
                SELECT * FROM jobs
                 WHERE queue=?
                   AND ((status=? AND run_at<=?) OR (status=? AND locked_until<?))
                 ORDER BY run_at, created_at
                 LIMIT 1
                """,
                (queue, JobStatus.WAITING, now, JobStatus.ACTIVE, now),
            ).fetchone()
            if row is None:
                return None
            if row["status"] == JobStatus.ACTIVE:
                logger.warning(
                    "Job %s on %s stalled (worker %s); re-delivering", row["id"], queue, row["worker_id"]
                )
            conn.execute(
                """
                UPDATE jobs
                   SET status=?, attempts_made=attempts_made+1, locked_until=?, worker_id=?
                 WHERE id=?
                """,
                (JobStatus.ACTIVE, now + lock_seconds, worker_id, row["id"]),
            )
            row = conn.execute("SELECT * FROM jobs WHERE id=?", (row["id"],)).fetchone()
        return self._row_to_job(row)

    def heartbeat(self, job_id: str, worker_id: str, lock_seconds: float) -> bool:
        cursor = self._execute(
            "UPDATE jobs SET locked_until=? WHERE id=? AND worker_id=? AND status=?",
            (self._clock() + lock_seconds, job_id, worker_id, JobStatus.ACTIVE),
        )
        return cursor.rowcount == 1

    def complete(self, job_id: str, result: dict | None = None) -> None:
        self._execute(
            """
            UPDATE jobs
               SET status=?, finished_at=?, locked_until=NULL, result_json=?, last_error=NULL
             WHERE id=?
            """,
            (JobStatus.COMPLETED, self._clock(), json.dumps(result) if result is not None else None, job_id),
        )

    def fail(self, job_id: str, error: str, stack: str = "", retry_delay: float | None = None) -> str:
        now = self._clock()
        with self.transaction() as conn:
            row = conn.execute("SELECT attempts_made, max_attempts FROM jobs WHERE id=?", (job_id,)).fetchone()
            if row is None:
                raise KeyError(f"Unknown job: {job_id}")
            if retry_delay is not None and row["attempts_made"] < row["max_attempts"]:
                conn.execute(
                    """
                    UPDATE jobs
                       SET status=?, run_at=?, locked_until=NULL, worker_id=NULL, last_error=?, last_stack=?
                     WHERE id=?
                    """,
                    (JobStatus.WAITING, now + retry_delay, error, stack, job_id),
                )
                return RETRY
            conn.execute(
                """
                UPDATE jobs
                   SET status=?, finished_at=?, locked_until=NULL, last_error=?, last_stack=?
                 WHERE id=?
                """,
                (JobStatus.FAILED, now, error, stack, job_id),
            )
            return EXHAUSTED

    def prune(self, queue: str, keep_completed_age: float, keep_completed_count: int, keep_failed_age: float) -> int:
        now = self._clock()
        removed = 0
        with self.transaction() as conn:
            removed += conn.execute(
                "DELETE FROM jobs WHERE queue=? AND status=? AND finished_at<?",
                (queue, JobStatus.COMPLETED, now - keep_completed_age),
            ).rowcount
            removed += conn.execute(
                """
                DELETE FROM jobs
                 WHERE queue=? AND status=?
                   AND id NOT IN (
                     SELECT id FROM jobs WHERE queue=? AND status=? ORDER BY finished_at DESC LIMIT ?
                   )
                """,
                (queue, JobStatus.COMPLETED, queue, JobStatus.COMPLETED, keep_completed_count),
            ).rowcount
            removed += conn.execute(
                "DELETE FROM jobs WHERE queue=? AND status=? AND finished_at<?",
                (queue, JobStatus.FAILED, now - keep_failed_age),
            ).rowcount
        if removed:
            logger.debug("Pruned %d jobs from %s", removed, queue)
        return removed

    def counts(self, queue: str) -> dict[str, int]:
        now = self._clock()
        counts = {JobStatus.WAITING: 0, JobStatus.ACTIVE: 0, JobStatus.COMPLETED: 0, JobStatus.FAILED: 0, "delayed": 0}
        rows = self._fetchall(
            """
            SELECT CASE WHEN status=? AND run_at>? THEN 'delayed' ELSE status END AS bucket, COUNT(*) AS n
              FROM jobs WHERE queue=? GROUP BY bucket
            """,
            (JobStatus.WAITING, now, queue),
        )
        for row in rows:
            counts[row["bucket"]] = row["n"]
        return counts

    def get(self, job_id: str) -> Job | None:
        row = self._fetchone("SELECT * FROM jobs WHERE id=?", (job_id,))
        return self._row_to_job(row) if row else None

    @staticmethod
    def _row_to_job(row: sqlite3.Row) -> Job:
        return Job(
            id=row["id"],
            queue=row["queue"],
            payload=json.loads(row["payload_json"]),
            status=row["status"],
            attempts_made=row["attempts_made"],
            max_attempts=row["max_attempts"],
            run_at=row["run_at"],
            locked_until=row["locked_until"],
            worker_id=row["worker_id"],
            last_error=row["last_error"],
            last_stack=row["last_stack"],
            created_at=row["created_at"],
            finished_at=row["finished_at"],
        )

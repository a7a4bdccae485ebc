"""Stage workers: thread pools that pull jobs from one queue and run a handler."""

from __future__ import annotations

import logging
import threading
import time
import uuid
from typing import TYPE_CHECKING, Callable

from prgrade_core.errors import FatalJobError, InvalidJobPayloadError
from prgrade_core.metrics import DEAD_LETTERS, JOB_DURATION
from prgrade_store.queue import RETRY
from prgrade_worker.enqueue import dead_letter_record, format_stack
from prgrade_worker.jobs import parse_job

if TYPE_CHECKING:
    from prgrade_core.config import QueuePolicy
    from prgrade_store.base import BaseDeadLetterStore
    from prgrade_store.models import Job
    from prgrade_store.queue import BaseJobQueue

logger = logging.getLogger(__name__)

JobHandler = Callable[..., "dict | None"]


class _Heartbeat:
    """Keeps a reserved job's lock alive while its handler runs."""

    def __init__(self, queue: BaseJobQueue, job_id: str, worker_id: str, lock_seconds: float):
        self._queue = queue
        self._job_id = job_id
        self._worker_id = worker_id
        self._lock_seconds = lock_seconds
        self._stopped = threading.Event()
        self._thread = threading.Thread(target=self._run, name=f"heartbeat-{job_id[:8]}", daemon=True)

    def __enter__(self):
        self._thread.start()
        return self

    def __exit__(self, *exc):
        self._stopped.set()
        self._thread.join(timeout=5)

    def _run(self) -> None:
        while not self._stopped.wait(self._lock_seconds / 3):
            try:
                if not self._queue.heartbeat(self._job_id, self._worker_id, self._lock_seconds):
                    logger.warning("Lost lock on job %s", self._job_id)
                    return
            except Exception:
                logger.exception("Heartbeat for job %s failed", self._job_id)


class StageWorker:
    """Runs ``policy.concurrency`` threads, each processing one job at a time.

    The handler receives the validated payload and the Job row. Returning
    completes the job; raising fails it. FatalJobError is never retried.
    When retries run out and the policy says so, the job is copied into the
    dead-letter store.
    """

    def __init__(
        self,
        policy: QueuePolicy,
        queue: BaseJobQueue,
        handler: JobHandler,
        dead_letters: BaseDeadLetterStore,
        lock_seconds: float = 60.0,
        poll_interval: float = 1.0,
        prune_interval: float = 300.0,
    ):
        self.policy = policy
        self.queue = queue
        self.handler = handler
        self.dead_letters = dead_letters
        self.lock_seconds = lock_seconds
        self.poll_interval = poll_interval
        self.prune_interval = prune_interval
        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []
        self._last_prune = 0.0
        self._prune_lock = threading.Lock()

    @property
    def stage(self) -> str:
        return self.policy.name

    def start(self) -> None:
        self._stop.clear()
        for i in range(self.policy.concurrency):
            worker_id = f"{self.stage}-{i}-{uuid.uuid4().hex[:6]}"
            thread = threading.Thread(target=self._loop, args=(worker_id,), name=f"prgrade-{self.stage}-{i}", daemon=True)
            thread.start()
            self._threads.append(thread)
        logger.info("Started %s worker with concurrency %d", self.stage, self.policy.concurrency)

    def stop(self, timeout: float | None = 30.0) -> None:
        self._stop.set()
        for thread in self._threads:
            thread.join(timeout=timeout)
        self._threads = []
        logger.info("Stopped %s worker", self.stage)

    def _loop(self, worker_id: str) -> None:
        while not self._stop.is_set():
            try:
                self._maybe_prune()
                processed = self.run_once(worker_id)
            except Exception:
                logger.exception("%s worker loop error", self.stage)
                processed = False
            if not processed:
                self._stop.wait(self.poll_interval)

    def run_once(self, worker_id: str = "inline") -> bool:
        """Reserve and process at most one job. Returns True if a job was processed."""
        job = self.queue.reserve(self.stage, worker_id, self.lock_seconds)
        if job is None:
            return False
        self.process(job, worker_id)
        return True

    def process(self, job: Job, worker_id: str) -> str:
        start = time.monotonic()
        with _Heartbeat(self.queue, job.id, worker_id, self.lock_seconds):
            try:
                payload = parse_job(job.payload)
                if payload.stage != self.stage:
                    raise InvalidJobPayloadError(f"{payload.stage!r} payload on the {self.stage!r} queue")
                result = self.handler(payload, job)
            except Exception as e:
                outcome = self._handle_failure(job, e)
            else:
                self.queue.complete(job.id, result)
                outcome = "completed"
                logger.info("%s job %s completed (attempt %d)", self.stage, job.id, job.attempts_made)
        JOB_DURATION.labels(stage=self.stage, outcome=outcome).observe(time.monotonic() - start)
        return outcome

    def _handle_failure(self, job: Job, error: Exception) -> str:
        fatal = isinstance(error, FatalJobError)
        retry_delay = None if fatal else self.policy.backoff(job.attempts_made)
        reason = str(error) or error.__class__.__name__
        status = self.queue.fail(job.id, reason, format_stack(error), retry_delay)

        if status == RETRY:
            logger.warning(
                "%s job %s failed (attempt %d/%d): %s. Retrying in %ss",
                self.stage,
                job.id,
                job.attempts_made,
                job.max_attempts,
                reason,
                retry_delay,
            )
            return "retried"

        logger.error(
            "%s job %s failed permanently after %d attempt(s)%s: %s",
            self.stage,
            job.id,
            job.attempts_made,
            " (fatal)" if fatal else "",
            reason,
        )
        if self.policy.dead_letter:
            try:
                self.dead_letters.append(dead_letter_record(job.payload, self.stage, error, job.attempts_made, job.id))
                DEAD_LETTERS.labels(queue=self.stage).inc()
            except Exception:
                logger.exception("Could not dead-letter %s job %s; it stays in the failed set", self.stage, job.id)
        return "failed"

    def _maybe_prune(self) -> None:
        now = time.monotonic()
        with self._prune_lock:
            if now - self._last_prune < self.prune_interval:
                return
            self._last_prune = now
        self.prune()

    def prune(self) -> int:
        return self.queue.prune(
            self.stage,
            keep_completed_age=self.policy.keep_completed_age,
            keep_completed_count=self.policy.keep_completed_count,
            keep_failed_age=self.policy.keep_failed_age,
        )

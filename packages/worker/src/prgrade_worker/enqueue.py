"""Validated enqueueing and the supervised hand-off used by webhook ingress.

The webhook handler must answer quickly, so it passes jobs to
EnqueueSupervisor, which enqueues on a background thread, retries with
exponential backoff and finally writes the payload to the dead-letter store.
Every terminal outcome is logged.
"""

from __future__ import annotations

import logging
import time
import traceback
from concurrent.futures import Future, ThreadPoolExecutor
from typing import TYPE_CHECKING, Callable

from pydantic import BaseModel

from prgrade_core.errors import InvalidJobPayloadError
from prgrade_core.metrics import DEAD_LETTERS
from prgrade_store.models import DeadLetterRecord
from prgrade_worker.jobs import parse_job

if TYPE_CHECKING:
    from prgrade_core.config import QueuePolicy
    from prgrade_store.base import BaseDeadLetterStore
    from prgrade_store.queue import BaseJobQueue

logger = logging.getLogger(__name__)


def format_stack(error: BaseException) -> str:
    return "".join(traceback.format_exception(type(error), error, error.__traceback__))


def dead_letter_record(payload: dict, queue: str, error: BaseException | str, attempts: int, job_id: str | None = None):
    stack = format_stack(error) if isinstance(error, BaseException) else ""
    return DeadLetterRecord(
        original_queue=queue,
        original_job_id=job_id,
        payload=payload,
        failure_reason=str(error),
        failure_stack=stack,
        failure_count=attempts,
        submission_id=payload.get("submission_id"),
        pr_number=payload.get("pr_number"),
        repo_full_name=payload.get("repo_full_name"),
    )


class Enqueuer:
    """Validate a payload against its stage schema and add it to that stage's queue."""

    def __init__(self, queue: BaseJobQueue, policies: dict[str, QueuePolicy]):
        self.queue = queue
        self.policies = policies

    def enqueue(self, job: BaseModel | dict, job_id: str | None = None) -> str:
        model = parse_job(job.model_dump(mode="json") if isinstance(job, BaseModel) else job)
        policy = self.policies[model.stage]
        job_id = self.queue.add(model.stage, model.model_dump(mode="json"), job_id=job_id, max_attempts=policy.attempts)
        logger.debug("Enqueued %s job %s", model.stage, job_id)
        return job_id


class EnqueueSupervisor:
    def __init__(
        self,
        enqueuer: Enqueuer,
        dead_letters: BaseDeadLetterStore,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        max_workers: int = 2,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.enqueuer = enqueuer
        self.dead_letters = dead_letters
        self.max_retries = max(1, max_retries)
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._sleep = sleep
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="prgrade-enqueue")

    def submit(self, job: BaseModel) -> Future:
        """Enqueue in the background. The future resolves to the job id, or None if dead-lettered."""
        return self._executor.submit(self.enqueue_with_retry, job)

    def enqueue_with_retry(self, job: BaseModel) -> str | None:
        payload = job.model_dump(mode="json")
        stage = payload.get("stage", "unknown")
        last_error: Exception | None = None
        attempts = 0

        for attempts in range(1, self.max_retries + 1):
            try:
                job_id = self.enqueuer.enqueue(job)
            except InvalidJobPayloadError as e:
                last_error = e
                break
            except Exception as e:
                last_error = e
                if attempts == self.max_retries:
                    break
                delay = min(self.base_delay * 2 ** (attempts - 1), self.max_delay)
                logger.warning(
                    "Enqueue of %s job for submission %s failed (attempt %d/%d): %s. Retrying in %ss...",
                    stage,
                    payload.get("submission_id"),
                    attempts,
                    self.max_retries,
                    e,
                    delay,
                )
                self._sleep(delay)
            else:
                logger.info("Enqueued %s job %s for submission %s", stage, job_id, payload.get("submission_id"))
                return job_id

        self._dead_letter(payload, stage, last_error, attempts)
        return None

    def _dead_letter(self, payload: dict, stage: str, error: Exception | None, attempts: int) -> None:
        record = dead_letter_record(payload, stage, error or "enqueue failed", attempts)
        record.failure_reason = f"Enqueue failed: {record.failure_reason}"
        try:
            self.dead_letters.append(record)
        except Exception:
            logger.critical("Could not enqueue or dead-letter %s job; payload lost: %r", stage, payload, exc_info=True)
            return
        DEAD_LETTERS.labels(queue=stage).inc()

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

"""Wire stores, queue, event bus and stage handlers from a loaded config.

Both the API process and the standalone worker process build a Runtime; the
queue and stores are shared through the SQLite file at ``database_path``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from prgrade_core.config import STAGES, QueuePolicy, queue_policies
from prgrade_core.events import EventBus
from prgrade_core.mailer import BaseMailer, build_mailer
from prgrade_core.reviewer import ReviewPipeline
from prgrade_store.base import BaseDeadLetterStore, BaseStore
from prgrade_store.dead_letter import SQLiteDeadLetterStore
from prgrade_store.llm_cache import SQLiteResponseCache
from prgrade_store.queue import BaseJobQueue, SQLiteJobQueue
from prgrade_store.sqlite import SQLiteStore
from prgrade_worker.enqueue import Enqueuer, EnqueueSupervisor
from prgrade_worker.notifications import NotificationListener, NotificationStage
from prgrade_worker.portfolio import PortfolioStage
from prgrade_worker.review import ReviewStage
from prgrade_worker.runner import StageWorker
from prgrade_worker.score import ScoreStage
from prgrade_worker.submissions import SubmissionService

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    config: dict
    policies: dict[str, QueuePolicy]
    store: BaseStore
    queue: BaseJobQueue
    dead_letters: BaseDeadLetterStore
    bus: EventBus
    enqueuer: Enqueuer
    supervisor: EnqueueSupervisor
    submissions: SubmissionService
    pipeline: ReviewPipeline
    mailer: BaseMailer
    response_cache: SQLiteResponseCache | None = None
    workers: list[StageWorker] = field(default_factory=list)

    def handlers(self) -> dict:
        return {
            "review": ReviewStage(self.store, self.enqueuer, self.pipeline, self.config),
            "score": ScoreStage(self.store, self.enqueuer, self.bus),
            "portfolio": PortfolioStage(self.store, self.bus),
            "notification": NotificationStage(self.store, self.mailer, self.config),
        }

    def build_workers(self, stages: tuple[str, ...] | list[str] | None = None) -> list[StageWorker]:
        handlers = self.handlers()
        return [
            StageWorker(
                self.policies[stage],
                self.queue,
                handlers[stage],
                self.dead_letters,
                lock_seconds=self.config.get("stall_timeout", 60),
                poll_interval=self.config.get("poll_interval", 1.0),
            )
            for stage in (stages or STAGES)
        ]

    def start_workers(self, stages: tuple[str, ...] | list[str] | None = None) -> list[StageWorker]:
        self.workers = self.build_workers(stages)
        for worker in self.workers:
            worker.start()
        return self.workers

    def queue_counts(self) -> dict[str, dict[str, int]]:
        return {stage: self.queue.counts(stage) for stage in STAGES}

    def close(self) -> None:
        for worker in self.workers:
            worker.stop()
        self.workers = []
        self.supervisor.shutdown(wait=True)
        self.queue.close()
        self.dead_letters.close()
        if self.response_cache is not None:
            self.response_cache.close()
        self.store.close()


def build_runtime(
    config: dict,
    store: BaseStore | None = None,
    queue: BaseJobQueue | None = None,
    dead_letters: BaseDeadLetterStore | None = None,
    pipeline: ReviewPipeline | None = None,
    mailer: BaseMailer | None = None,
    submissions: SubmissionService | None = None,
    response_cache: SQLiteResponseCache | None = None,
) -> Runtime:
    db_path = config.get("database_path", ".prgrade.db")
    store = store or SQLiteStore(db_path)
    queue = queue or SQLiteJobQueue(db_path)
    dead_letters = dead_letters or SQLiteDeadLetterStore(db_path)
    policies = queue_policies(config)
    if response_cache is None and config.get("llm_cache_ttl", 0) > 0:
        response_cache = SQLiteResponseCache(db_path)

    bus = EventBus()
    enqueuer = Enqueuer(queue, policies)
    NotificationListener(enqueuer).attach(bus)

    retry = config.get("enqueue", {})
    supervisor = EnqueueSupervisor(
        enqueuer,
        dead_letters,
        max_retries=retry.get("max_retries", 3),
        base_delay=retry.get("base_delay", 1.0),
        max_delay=retry.get("max_delay", 30.0),
    )

    runtime = Runtime(
        config=config,
        policies=policies,
        store=store,
        queue=queue,
        dead_letters=dead_letters,
        bus=bus,
        enqueuer=enqueuer,
        supervisor=supervisor,
        submissions=submissions or SubmissionService(store, enqueuer, config),
        pipeline=pipeline or ReviewPipeline(config, cache=response_cache),
        mailer=mailer or build_mailer(config),
        response_cache=response_cache,
    )
    logger.debug("Runtime ready (database=%s, provider=%s)", db_path, config.get("llm_provider"))
    return runtime

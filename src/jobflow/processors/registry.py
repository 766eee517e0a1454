"""Wire processors and pools for each queue from settings."""

from __future__ import annotations

from dataclasses import dataclass

from jobflow.accounts.repository import AccountRepository
from jobflow.audit.repository import AuditRepository
from jobflow.collaborators.analysis import HeuristicAnalysisClient
from jobflow.collaborators.base import AnalysisClient, ContextRetriever, NotificationDelivery
from jobflow.collaborators.delivery import build_delivery
from jobflow.collaborators.retrieval import PastWorkRetriever
from jobflow.config import Settings
from jobflow.lifecycle.repository import JobRepository
from jobflow.lifecycle.service import JobService
from jobflow.notifications.store import NotificationStore
from jobflow.processors.analysis import JobAnalysisProcessor
from jobflow.processors.auto_assign import AutoAssignProcessor
from jobflow.processors.notifications import NotificationProcessor
from jobflow.processors.webhooks import WebhookProcessor
from jobflow.queue.models import QueueName
from jobflow.queue.pool import TaskProcessor, WorkerPool, WorkerRuntime
from jobflow.queue.rate_limit import RateLimiter
from jobflow.queue.repository import QueueRepository


@dataclass(slots=True)
class Repositories:
    """Storage facades sharing one database file."""

    queue: QueueRepository
    jobs: JobRepository
    accounts: AccountRepository
    notifications: NotificationStore
    audit: AuditRepository

    @classmethod
    def open(cls, settings: Settings) -> Repositories:
        return cls(
            queue=QueueRepository(settings.db_path, settings=settings),
            jobs=JobRepository(settings.db_path, settings=settings),
            accounts=AccountRepository(settings.db_path, settings=settings),
            notifications=NotificationStore(settings.db_path, settings=settings),
            audit=AuditRepository(settings.db_path, settings=settings),
        )

    def close(self) -> None:
        self.queue.close()
        self.jobs.close()
        self.accounts.close()
        self.notifications.close()
        self.audit.close()


def build_processors(
    repositories: Repositories,
    *,
    analyzer: AnalysisClient,
    retriever: ContextRetriever | None,
    delivery: NotificationDelivery,
) -> dict[QueueName, TaskProcessor]:
    service = JobService(jobs=repositories.jobs, accounts=repositories.accounts)
    return {
        QueueName.JOB_ANALYSIS: JobAnalysisProcessor(
            jobs=repositories.jobs,
            analyzer=analyzer,
            retriever=retriever,
        ),
        QueueName.AUTO_ASSIGN: AutoAssignProcessor(
            jobs=repositories.jobs,
            accounts=repositories.accounts,
            service=service,
        ),
        QueueName.NOTIFICATIONS: NotificationProcessor(
            store=repositories.notifications,
            delivery=delivery,
        ),
        QueueName.WEBHOOK_EVENTS: WebhookProcessor(accounts=repositories.accounts),
    }


def build_runtime(
    settings: Settings,
    repositories: Repositories,
    *,
    queue_names: list[QueueName] | None = None,
    processors: dict[QueueName, TaskProcessor] | None = None,
) -> WorkerRuntime:
    """One pool per queue with its configured concurrency and rate limit."""

    if processors is None:
        processors = build_processors(
            repositories,
            analyzer=HeuristicAnalysisClient(),
            retriever=PastWorkRetriever(repositories.jobs),
            delivery=build_delivery(settings.delivery),
        )
    pools: list[WorkerPool] = []
    for queue_name in queue_names or list(QueueName):
        queue_settings = settings.queue(queue_name)
        pools.append(
            WorkerPool(
                queue_name=queue_name,
                repository=repositories.queue,
                processor=processors[queue_name],
                concurrency=queue_settings.concurrency,
                rate_limiter=RateLimiter(
                    max_calls=queue_settings.rate_max,
                    period_seconds=queue_settings.rate_period_seconds,
                ),
                lease_seconds=settings.worker.stall_interval_seconds,
                max_stalled_count=settings.worker.max_stalled_count,
                poll_interval_seconds=settings.worker.poll_interval_seconds,
            ),
        )
    return WorkerRuntime(pools)

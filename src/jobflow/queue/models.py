"""Domain models for the durable task queue."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from jobflow.errors import UnknownQueue


class QueueName(str, Enum):
    """Independently configured task queues."""

    JOB_ANALYSIS = "job-analysis"
    AUTO_ASSIGN = "auto-assign"
    NOTIFICATIONS = "notifications"
    WEBHOOK_EVENTS = "webhook-events"

    @classmethod
    def parse(cls, value: str) -> QueueName:
        try:
            return cls(value)
        except ValueError as error:
            known = ", ".join(item.value for item in cls)
            raise UnknownQueue(f"Unknown queue {value!r}. Known queues: {known}") from error


class TaskStatus(str, Enum):
    """Durable task lifecycle states."""

    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    DEAD_LETTERED = "dead_lettered"


class FailureClass(str, Enum):
    """Normalized failure classes used by retry policy."""

    TRANSIENT = "transient"
    NON_RETRYABLE = "non_retryable"
    STALLED = "stalled"


class NackOutcome(str, Enum):
    """What a negative acknowledgement did to the task."""

    RETRY_SCHEDULED = "retry_scheduled"
    DEAD_LETTERED = "dead_lettered"
    LEASE_LOST = "lease_lost"


@dataclass(slots=True)
class TaskView:
    """Readable task view for pools, processors, and CLI."""

    task_id: str
    queue_name: QueueName
    raw_payload: str
    priority: int
    status: TaskStatus
    attempts_made: int
    max_attempts: int
    backoff_base_seconds: float
    run_after: datetime
    stalled_count: int
    lease_token: str | None
    locked_until: datetime | None
    worker_id: str | None
    failure_class: FailureClass | None
    failed_reason: str | None
    enqueued_at: datetime
    started_at: datetime | None
    finished_at: datetime | None
    updated_at: datetime


@dataclass(slots=True)
class TaskEventView:
    """Task event entry for audit trail."""

    event_id: int
    task_id: str
    event_type: str
    status_from: TaskStatus | None
    status_to: TaskStatus | None
    created_at: datetime
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class QueueStats:
    """Per-queue counters."""

    queue_name: QueueName
    waiting: int = 0
    delayed: int = 0
    active: int = 0
    completed: int = 0
    dead_lettered: int = 0

    @property
    def total(self) -> int:
        return self.waiting + self.delayed + self.active + self.completed + self.dead_lettered


@dataclass(slots=True)
class StallRecovery:
    """Result of one stalled-task sweep."""

    requeued: int = 0
    failed: int = 0


@dataclass(slots=True)
class DeadLetterEntry:
    """Dead-lettered task as shown to remediation tooling."""

    queue_name: QueueName
    task_id: str
    payload: dict[str, Any]
    failed_reason: str
    attempts_made: int
    enqueued_at: datetime
    failed_at: datetime

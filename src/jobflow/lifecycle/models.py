"""Domain models for jobs and their lifecycle."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class JobStatus(str, Enum):
    """Job lifecycle states."""

    PENDING = "pending"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    REVIEW = "review"
    REVISION = "revision"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


OPEN_JOB_STATUSES: frozenset[JobStatus] = frozenset(
    {JobStatus.ASSIGNED, JobStatus.IN_PROGRESS, JobStatus.REVISION},
)
FLAGGABLE_JOB_STATUSES: frozenset[JobStatus] = frozenset(
    {JobStatus.ASSIGNED, JobStatus.IN_PROGRESS},
)


class Role(str, Enum):
    """Actor roles; also the parties a side effect can notify."""

    CLIENT = "client"
    WORKER = "worker"
    ADMIN = "admin"


@dataclass(slots=True)
class JobCreate:
    """Client request to open a new job."""

    client_id: str
    title: str
    description: str
    category: str
    priority: str = "standard"


@dataclass(slots=True)
class JobView:
    """Readable job view for services, processors, and CLI."""

    job_id: str
    client_id: str
    worker_id: str | None
    title: str
    description: str
    category: str
    priority: str
    status: JobStatus
    credits_charged: int
    worker_earnings: float | None
    worker_paid_at: datetime | None
    ai_analysis: dict[str, Any] | None
    context_from_past_work: list[dict[str, Any]] | None
    analyzed_at: datetime | None
    flagged: bool
    flag_reason: str | None
    flagged_at: datetime | None
    flag_resolved_at: datetime | None
    flag_resolved_by: str | None
    progress_percent: int
    progress_message: str | None
    progress_updated_at: datetime | None
    created_at: datetime
    assigned_at: datetime | None
    started_at: datetime | None
    completed_at: datetime | None
    updated_at: datetime


@dataclass(slots=True)
class TransitionResult:
    """Outcome of an applied status change."""

    job: JobView
    previous_status: JobStatus
    changed: bool
    notification_task_ids: list[str] = field(default_factory=list)


@dataclass(slots=True)
class JobCreated:
    """New job together with the debit and the analysis task it produced."""

    job: JobView
    analysis_task_id: str
    rollover_debit: int
    standard_debit: int

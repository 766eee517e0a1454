"""SQLModel ORM tables for jobs, balances, queue tasks, notifications, and the audit log."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Text
from sqlmodel import Field, SQLModel


class AppUser(SQLModel, table=True):
    __tablename__ = "users"  # type: ignore[bad-override]

    user_id: str = Field(primary_key=True, index=True)
    display_name: str = Field(index=True)
    email: str
    role: str = Field(index=True)
    is_active: bool = Field(default=True)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class CreditBalance(SQLModel, table=True):
    __tablename__ = "credit_balances"  # type: ignore[bad-override]

    client_id: str = Field(
        sa_column=Column(
            ForeignKey("users.user_id", ondelete="CASCADE"),
            primary_key=True,
        ),
    )
    standard_credits: int = Field(default=0)
    rollover_credits: int = Field(default=0)
    total_jobs: int = Field(default=0)
    total_spent: int = Field(default=0)
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class WorkerProfile(SQLModel, table=True):
    __tablename__ = "worker_profiles"  # type: ignore[bad-override]

    user_id: str = Field(
        sa_column=Column(
            ForeignKey("users.user_id", ondelete="CASCADE"),
            primary_key=True,
        ),
    )
    skills_json: str = Field(default="[]", sa_column=Column(Text, nullable=False))
    is_available: bool = Field(default=True, index=True)
    pending_earnings: float = Field(default=0.0)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class Job(SQLModel, table=True):
    __tablename__ = "jobs"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_jobs_client_status", "client_id", "status"),
        Index("idx_jobs_worker_status", "worker_id", "status"),
    )

    job_id: str = Field(primary_key=True)
    client_id: str = Field(
        sa_column=Column(
            ForeignKey("users.user_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    worker_id: str | None = Field(
        default=None,
        sa_column=Column(ForeignKey("users.user_id", ondelete="SET NULL"), nullable=True),
    )
    title: str
    description: str = Field(sa_column=Column(Text, nullable=False))
    category: str = Field(index=True)
    priority: str
    status: str = Field(index=True)
    credits_charged: int
    worker_earnings: float | None = None
    worker_paid_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True)),
    )
    ai_analysis_json: str | None = Field(default=None, sa_column=Column(Text))
    context_json: str | None = Field(default=None, sa_column=Column(Text))
    analyzed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    flagged: bool = Field(default=False)
    flag_reason: str | None = Field(default=None, sa_column=Column(Text))
    flagged_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    flag_resolved_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True)),
    )
    flag_resolved_by: str | None = None
    progress_percent: int = Field(default=0)
    progress_message: str | None = Field(default=None, sa_column=Column(Text))
    progress_updated_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True)),
    )
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    assigned_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    started_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    completed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class QueueTask(SQLModel, table=True):
    __tablename__ = "queue_tasks"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_queue_tasks_claim", "queue_name", "status", "priority", "run_after"),
        Index("idx_queue_tasks_lease", "queue_name", "status", "locked_until"),
    )

    id: int | None = Field(default=None, primary_key=True)
    task_id: str = Field(unique=True, index=True)
    queue_name: str = Field(index=True)
    payload_json: str = Field(sa_column=Column(Text, nullable=False))
    priority: int = Field(default=0)
    status: str = Field(index=True)
    attempts_made: int = Field(default=0)
    max_attempts: int = Field(default=3)
    backoff_base_seconds: float = Field(default=1.0)
    run_after: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    stalled_count: int = Field(default=0)
    lease_token: str | None = None
    locked_until: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    worker_id: str | None = None
    failure_class: str | None = Field(default=None, index=True)
    failed_reason: str | None = Field(default=None, sa_column=Column(Text))
    enqueued_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    started_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    finished_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class QueueTaskEvent(SQLModel, table=True):
    __tablename__ = "queue_task_events"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_queue_task_events_task_time", "task_id", "created_at"),)

    id: int | None = Field(default=None, primary_key=True)
    task_id: str = Field(
        sa_column=Column(
            ForeignKey("queue_tasks.task_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    event_type: str = Field(index=True)
    status_from: str | None = None
    status_to: str | None = None
    details_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class Notification(SQLModel, table=True):
    __tablename__ = "notifications"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_notifications_user_time", "user_id", "created_at"),)

    notification_id: str = Field(primary_key=True)
    user_id: str = Field(
        sa_column=Column(
            ForeignKey("users.user_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    event_type: str = Field(index=True)
    subject: str
    body: str = Field(sa_column=Column(Text, nullable=False))
    data_json: str | None = Field(default=None, sa_column=Column(Text))
    read: bool = Field(default=False)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    expires_at: datetime = Field(
        sa_column=Column(DateTime(timezone=True), nullable=False, index=True),
    )


class ProcessedWebhook(SQLModel, table=True):
    __tablename__ = "processed_webhooks"  # type: ignore[bad-override]

    event_id: str = Field(primary_key=True)
    event_type: str
    processed_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class AuditEntry(SQLModel, table=True):
    __tablename__ = "audit_log"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_audit_log_target_time", "target_type", "target_id", "created_at"),)

    id: int | None = Field(default=None, primary_key=True)
    action: str = Field(index=True)
    severity: str = Field(default="info")
    actor_id: str | None = Field(default=None, index=True)
    target_type: str
    target_id: str | None = None
    description: str = Field(sa_column=Column(Text, nullable=False))
    metadata_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))

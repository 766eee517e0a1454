"""SQLModel-backed job storage with atomic status changes and side effects."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any
from uuid import uuid4

from sqlalchemy import func
from sqlalchemy import update as sa_update
from sqlmodel import Session, col, select

from jobflow.accounts.repository import first_active_admin_id
from jobflow.audit.models import AuditAction, AuditSeverity, AuditTarget
from jobflow.audit.repository import add_audit_entry
from jobflow.billing.credits import plan_debit, task_priority, worker_earnings
from jobflow.config import Settings
from jobflow.errors import ConcurrentModification, JobNotFound, UserNotFound
from jobflow.lifecycle.models import (
    OPEN_JOB_STATUSES,
    JobCreate,
    JobCreated,
    JobStatus,
    JobView,
    Role,
    TransitionResult,
)
from jobflow.lifecycle.transitions import TransitionEffects
from jobflow.notifications.fanout import job_notification_data, stage_notification
from jobflow.queue.models import QueueName
from jobflow.queue.payloads import AutoAssignPayload, JobAnalysisPayload
from jobflow.queue.repository import add_task
from jobflow.storage.common import (
    build_sqlite_engine,
    page_limit,
    to_db_datetime,
    to_utc_aware,
    to_utc_aware_or_none,
    utc_now,
)
from jobflow.storage.sqlmodel_models import CreditBalance, Job, WorkerProfile

logger = logging.getLogger(__name__)


class JobRepository:
    """Job persistence facade backed by SQLModel + SQLite.

    Every write that owes queue side effects stages those tasks in its own
    transaction, so a committed status change always has its notifications
    and a rolled-back one never does.
    """

    def __init__(self, db_path: Path, *, settings: Settings | None = None) -> None:
        self.db_path = db_path
        self.settings = settings or Settings(db_path=db_path)
        self.engine = build_sqlite_engine(
            db_path=db_path,
            busy_timeout_ms=self.settings.busy_timeout_ms,
        )

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def create_job(self, payload: JobCreate, *, cost: int) -> JobCreated:
        """Debit the client's balance, insert the job, and enqueue its analysis.

        The balance update is guarded by the balance values it was planned
        against. A concurrent debit makes the guard miss; the plan is then
        recomputed from the fresh balance, so two creations can never both
        spend the same credits.
        """

        while True:
            now = utc_now()
            with Session(self.engine) as session:
                balance = session.get(CreditBalance, payload.client_id)
                if balance is None:
                    raise UserNotFound(f"No credit balance for client: {payload.client_id}")
                seen_standard = balance.standard_credits
                seen_rollover = balance.rollover_credits
                plan = plan_debit(rollover=seen_rollover, standard=seen_standard, total=cost)

                result = session.exec(
                    sa_update(CreditBalance)
                    .where(
                        col(CreditBalance.client_id) == payload.client_id,
                        col(CreditBalance.standard_credits) == seen_standard,
                        col(CreditBalance.rollover_credits) == seen_rollover,
                    )
                    .values(
                        standard_credits=seen_standard - plan.standard_debit,
                        rollover_credits=seen_rollover - plan.rollover_debit,
                        total_jobs=CreditBalance.total_jobs + 1,
                        total_spent=CreditBalance.total_spent + cost,
                        updated_at=to_db_datetime(now),
                    ),
                )
                if result.rowcount != 1:
                    session.rollback()
                    logger.debug("Balance for %s changed during debit, retrying", payload.client_id)
                    continue

                row = Job(
                    job_id=str(uuid4()),
                    client_id=payload.client_id,
                    title=payload.title,
                    description=payload.description,
                    category=payload.category,
                    priority=payload.priority,
                    status=JobStatus.PENDING.value,
                    credits_charged=cost,
                    created_at=to_db_datetime(now),
                    updated_at=to_db_datetime(now),
                )
                session.add(row)
                session.flush()
                analysis_task = add_task(
                    session,
                    JobAnalysisPayload(
                        job_id=row.job_id,
                        title=row.title,
                        description=row.description,
                        category=row.category,
                        client_id=row.client_id,
                    ),
                    settings=self.settings.queue(QueueName.JOB_ANALYSIS),
                    now=now,
                    priority=task_priority(
                        row.priority,
                        self.settings.queue(QueueName.JOB_ANALYSIS).default_priority,
                    ),
                )
                add_audit_entry(
                    session,
                    action=AuditAction.JOB_CREATED,
                    target_type=AuditTarget.JOB,
                    target_id=row.job_id,
                    actor_id=row.client_id,
                    description=f"Job created and charged {cost} credits",
                    metadata={
                        "category": row.category,
                        "priority": row.priority,
                        "credits_charged": cost,
                        "rollover_debit": plan.rollover_debit,
                        "standard_debit": plan.standard_debit,
                    },
                    now=now,
                )
                session.commit()
                session.refresh(row)
                logger.info(
                    "Created job %s for %s (%d credits: rollover=%d standard=%d)",
                    row.job_id,
                    row.client_id,
                    cost,
                    plan.rollover_debit,
                    plan.standard_debit,
                )
                return JobCreated(
                    job=_to_job_view(row),
                    analysis_task_id=analysis_task.task_id,
                    rollover_debit=plan.rollover_debit,
                    standard_debit=plan.standard_debit,
                )

    def get_job(self, job_id: str) -> JobView | None:
        with Session(self.engine) as session:
            row = session.get(Job, job_id)
            return _to_job_view(row) if row is not None else None

    def require_job(self, job_id: str) -> JobView:
        job = self.get_job(job_id)
        if job is None:
            raise JobNotFound(f"Job not found: {job_id}")
        return job

    def list_jobs(
        self,
        *,
        client_id: str | None = None,
        worker_id: str | None = None,
        status: JobStatus | None = None,
        limit: int = 50,
    ) -> list[JobView]:
        """List jobs newest first."""

        with Session(self.engine) as session:
            statement = select(Job)
            if client_id is not None:
                statement = statement.where(Job.client_id == client_id)
            if worker_id is not None:
                statement = statement.where(Job.worker_id == worker_id)
            if status is not None:
                statement = statement.where(Job.status == status.value)
            rows = session.exec(
                statement.order_by(col(Job.created_at).desc(), col(Job.job_id).asc()).limit(
                    page_limit(limit),
                ),
            ).all()
            return [_to_job_view(row) for row in rows]

    def apply_transition(  # noqa: PLR0913
        self,
        job_id: str,
        *,
        expected: JobStatus,
        requested: JobStatus,
        effects: TransitionEffects,
        worker_id: str | None = None,
        actor_id: str | None = None,
        now: datetime | None = None,
    ) -> TransitionResult:
        """Write an authorized status change and its side effects in one transaction.

        Raises:
            JobNotFound: No such job.
            ConcurrentModification: The job left ``expected`` before the write.
        """

        changed_at = now or utc_now()
        with Session(self.engine) as session:
            row = session.get(Job, job_id)
            if row is None:
                raise JobNotFound(f"Job not found: {job_id}")
            if row.status != expected.value:
                raise ConcurrentModification(
                    f"Job {job_id} is {row.status}, expected {expected.value}",
                )

            assignee = worker_id or row.worker_id
            values: dict[str, Any] = {
                "status": requested.value,
                "updated_at": to_db_datetime(changed_at),
            }
            if worker_id is not None:
                values["worker_id"] = worker_id
            if effects.stamp is not None:
                values[effects.stamp] = to_db_datetime(changed_at)
            earnings: float | None = None
            if effects.compute_earnings:
                earnings = worker_earnings(row.credits_charged)
                values["worker_earnings"] = earnings
                values["worker_paid_at"] = to_db_datetime(changed_at)

            result = session.exec(
                sa_update(Job)
                .where(col(Job.job_id) == job_id, col(Job.status) == expected.value)
                .values(**values),
            )
            if result.rowcount != 1:
                session.rollback()
                raise ConcurrentModification(f"Job {job_id} changed status concurrently")

            if earnings is not None and assignee is not None:
                session.exec(
                    sa_update(WorkerProfile)
                    .where(col(WorkerProfile.user_id) == assignee)
                    .values(pending_earnings=WorkerProfile.pending_earnings + earnings),
                )

            row = session.exec(
                select(Job).where(Job.job_id == job_id).execution_options(populate_existing=True),
            ).one()
            task_ids = self._stage_transition_notifications(
                session,
                row=row,
                effects=effects,
                previous_status=expected,
                earnings=earnings,
                now=changed_at,
            )
            _audit_status_change(
                session,
                row=row,
                previous_status=expected,
                actor_id=actor_id,
                earnings=earnings,
                now=changed_at,
            )
            session.commit()
            session.refresh(row)
            logger.info(
                "Job %s: %s -> %s (notifications=%d)",
                job_id,
                expected.value,
                requested.value,
                len(task_ids),
            )
            return TransitionResult(
                job=_to_job_view(row),
                previous_status=expected,
                changed=True,
                notification_task_ids=task_ids,
            )

    def record_progress(  # noqa: PLR0913
        self,
        job_id: str,
        *,
        expected: JobStatus,
        worker_id: str,
        message: str,
        percent: int | None,
        start_effects: TransitionEffects | None = None,
        now: datetime | None = None,
    ) -> TransitionResult:
        """Store the worker's latest progress and tell the client about it.

        With ``start_effects`` the job also moves from ``assigned`` to
        ``in_progress``. The progress fields, the status change, the client's
        ``job_status_change`` notification and the audit rows commit together.

        Raises:
            JobNotFound: No such job.
            ConcurrentModification: The job left ``expected`` or changed hands.
        """

        updated_at = now or utc_now()
        with Session(self.engine) as session:
            row = session.get(Job, job_id)
            if row is None:
                raise JobNotFound(f"Job not found: {job_id}")

            values: dict[str, Any] = {
                "progress_message": message,
                "progress_updated_at": to_db_datetime(updated_at),
                "updated_at": to_db_datetime(updated_at),
            }
            if percent is not None:
                values["progress_percent"] = percent
            if start_effects is not None:
                values["status"] = JobStatus.IN_PROGRESS.value
                if start_effects.stamp is not None:
                    values[start_effects.stamp] = to_db_datetime(updated_at)

            result = session.exec(
                sa_update(Job)
                .where(
                    col(Job.job_id) == job_id,
                    col(Job.status) == expected.value,
                    col(Job.worker_id) == worker_id,
                )
                .values(**values),
            )
            if result.rowcount != 1:
                session.rollback()
                raise ConcurrentModification(
                    f"Job {job_id} is no longer {expected.value} for {worker_id}",
                )

            row = session.exec(
                select(Job).where(Job.job_id == job_id).execution_options(populate_existing=True),
            ).one()
            if start_effects is not None:
                _audit_status_change(
                    session,
                    row=row,
                    previous_status=expected,
                    actor_id=worker_id,
                    earnings=None,
                    now=updated_at,
                )
            add_audit_entry(
                session,
                action=AuditAction.JOB_PROGRESS,
                target_type=AuditTarget.JOB,
                target_id=job_id,
                actor_id=worker_id,
                description=f"Progress {row.progress_percent}%: {message}",
                metadata={"percent": row.progress_percent, "message": message},
                now=updated_at,
            )
            data = job_notification_data(session, row)
            data["progress_percent"] = row.progress_percent
            data["progress_message"] = message
            task_id = stage_notification(
                session,
                user_id=row.client_id,
                event_type="job_status_change",
                data=data,
                settings=self.settings,
                now=updated_at,
            )
            session.commit()
            session.refresh(row)
            logger.info(
                "Job %s progress %d%% from %s (status %s)",
                job_id,
                row.progress_percent,
                worker_id,
                row.status,
            )
            return TransitionResult(
                job=_to_job_view(row),
                previous_status=expected,
                changed=start_effects is not None,
                notification_task_ids=[task_id] if task_id is not None else [],
            )

    def record_analysis(
        self,
        job_id: str,
        *,
        analysis: dict[str, Any],
        context: list[dict[str, Any]],
    ) -> str | None:
        """Store analysis output and chain auto-assignment for a still-pending job.

        Returns the auto-assign task id, or None when the job is past ``pending``.
        Re-running with the same inputs leaves the stored JSON unchanged.
        """

        now = utc_now()
        analysis_json = json.dumps(analysis, ensure_ascii=False, sort_keys=True)
        context_json = json.dumps(context, ensure_ascii=False, sort_keys=True)
        with Session(self.engine) as session:
            row = session.get(Job, job_id)
            if row is None:
                raise JobNotFound(f"Job not found: {job_id}")
            if row.ai_analysis_json != analysis_json or row.context_json != context_json:
                row.ai_analysis_json = analysis_json
                row.context_json = context_json
                row.updated_at = to_db_datetime(now)
            if row.analyzed_at is None:
                row.analyzed_at = to_db_datetime(now)
            session.add(row)

            task_id: str | None = None
            if row.status == JobStatus.PENDING.value:
                task = add_task(
                    session,
                    AutoAssignPayload(
                        job_id=row.job_id,
                        title=row.title,
                        description=row.description,
                        category=row.category,
                    ),
                    settings=self.settings.queue(QueueName.AUTO_ASSIGN),
                    now=now,
                    priority=task_priority(
                        row.priority,
                        self.settings.queue(QueueName.AUTO_ASSIGN).default_priority,
                    ),
                )
                task_id = task.task_id
            session.commit()
            return task_id

    def set_flag(self, job_id: str, *, reason: str, worker_id: str) -> tuple[JobView, str | None]:
        """Raise the confidence flag and notify the first active admin."""

        now = utc_now()
        with Session(self.engine) as session:
            row = session.get(Job, job_id)
            if row is None:
                raise JobNotFound(f"Job not found: {job_id}")
            row.flagged = True
            row.flag_reason = reason
            row.flagged_at = to_db_datetime(now)
            row.flag_resolved_at = None
            row.flag_resolved_by = None
            row.updated_at = to_db_datetime(now)
            session.add(row)
            session.flush()

            task_id: str | None = None
            admin_id = first_active_admin_id(session)
            if admin_id is None:
                logger.warning("Job %s flagged by %s but no active admin to notify", job_id, worker_id)
            else:
                data = job_notification_data(session, row)
                data["flag_reason"] = reason
                task_id = stage_notification(
                    session,
                    user_id=admin_id,
                    event_type="job_flagged",
                    data=data,
                    settings=self.settings,
                    now=now,
                )
            session.commit()
            session.refresh(row)
            return _to_job_view(row), task_id

    def resolve_flag(self, job_id: str, *, admin_id: str) -> JobView:
        now = utc_now()
        with Session(self.engine) as session:
            row = session.get(Job, job_id)
            if row is None:
                raise JobNotFound(f"Job not found: {job_id}")
            row.flagged = False
            row.flag_resolved_at = to_db_datetime(now)
            row.flag_resolved_by = admin_id
            row.updated_at = to_db_datetime(now)
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_job_view(row)

    def open_job_counts(self, worker_ids: list[str]) -> dict[str, int]:
        """Jobs each worker currently holds (assigned, in progress, or in revision)."""

        if not worker_ids:
            return {}
        with Session(self.engine) as session:
            rows = session.exec(
                select(Job.worker_id, func.count())
                .where(
                    col(Job.worker_id).in_(worker_ids),
                    col(Job.status).in_([status.value for status in OPEN_JOB_STATUSES]),
                )
                .group_by(Job.worker_id),
            ).all()
        counts = dict.fromkeys(worker_ids, 0)
        for worker_id, count in rows:
            if worker_id is not None:
                counts[worker_id] = int(count)
        return counts

    def completed_jobs_for_client(
        self,
        client_id: str,
        *,
        exclude_job_id: str | None = None,
        limit: int = 200,
    ) -> list[JobView]:
        with Session(self.engine) as session:
            statement = select(Job).where(
                Job.client_id == client_id,
                Job.status == JobStatus.COMPLETED.value,
            )
            if exclude_job_id is not None:
                statement = statement.where(Job.job_id != exclude_job_id)
            rows = session.exec(
                statement.order_by(col(Job.completed_at).desc(), col(Job.job_id).asc()).limit(
                    page_limit(limit),
                ),
            ).all()
            return [_to_job_view(row) for row in rows]

    def _stage_transition_notifications(  # noqa: PLR0913
        self,
        session: Session,
        *,
        row: Job,
        effects: TransitionEffects,
        previous_status: JobStatus,
        earnings: float | None,
        now: datetime,
    ) -> list[str]:
        if not effects.notify or effects.event_type is None:
            return []

        data = job_notification_data(session, row, previous_status=previous_status.value)
        if earnings is not None:
            data["earnings"] = earnings

        recipients: list[str] = []
        for party in sorted(effects.notify, key=lambda item: item.value):
            if party is Role.CLIENT:
                recipient = row.client_id
            elif party is Role.WORKER:
                recipient = row.worker_id
            else:
                recipient = first_active_admin_id(session)
            if recipient is None:
                logger.warning(
                    "Job %s: no %s to notify about %s",
                    row.job_id,
                    party.value,
                    effects.event_type,
                )
                continue
            if recipient not in recipients:
                recipients.append(recipient)

        task_ids: list[str] = []
        for recipient in recipients:
            task_id = stage_notification(
                session,
                user_id=recipient,
                event_type=effects.event_type,
                data=data,
                settings=self.settings,
                now=now,
            )
            if task_id is not None:
                task_ids.append(task_id)
        return task_ids


def _audit_status_change(  # noqa: PLR0913
    session: Session,
    *,
    row: Job,
    previous_status: JobStatus,
    actor_id: str | None,
    earnings: float | None,
    now: datetime,
) -> None:
    metadata: dict[str, Any] = {"from": previous_status.value, "to": row.status}
    if row.worker_id is not None:
        metadata["worker_id"] = row.worker_id
    if earnings is not None:
        metadata["worker_earnings"] = earnings
    add_audit_entry(
        session,
        action=AuditAction.JOB_STATUS_CHANGED,
        target_type=AuditTarget.JOB,
        target_id=row.job_id,
        actor_id=actor_id,
        description=f"Status {previous_status.value} -> {row.status}",
        metadata=metadata,
        severity=AuditSeverity.WARNING
        if row.status == JobStatus.CANCELLED.value
        else AuditSeverity.INFO,
        now=now,
    )


def _to_job_view(row: Job) -> JobView:
    return JobView(
        job_id=row.job_id,
        client_id=row.client_id,
        worker_id=row.worker_id,
        title=row.title,
        description=row.description,
        category=row.category,
        priority=row.priority,
        status=JobStatus(row.status),
        credits_charged=row.credits_charged,
        worker_earnings=row.worker_earnings,
        worker_paid_at=to_utc_aware_or_none(row.worker_paid_at),
        ai_analysis=json.loads(row.ai_analysis_json) if row.ai_analysis_json else None,
        context_from_past_work=json.loads(row.context_json) if row.context_json else None,
        analyzed_at=to_utc_aware_or_none(row.analyzed_at),
        flagged=row.flagged,
        flag_reason=row.flag_reason,
        flagged_at=to_utc_aware_or_none(row.flagged_at),
        flag_resolved_at=to_utc_aware_or_none(row.flag_resolved_at),
        flag_resolved_by=row.flag_resolved_by,
        progress_percent=row.progress_percent,
        progress_message=row.progress_message,
        progress_updated_at=to_utc_aware_or_none(row.progress_updated_at),
        created_at=to_utc_aware(row.created_at),
        assigned_at=to_utc_aware_or_none(row.assigned_at),
        started_at=to_utc_aware_or_none(row.started_at),
        completed_at=to_utc_aware_or_none(row.completed_at),
        updated_at=to_utc_aware(row.updated_at),
    )

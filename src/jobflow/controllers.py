"""Controllers for jobflow CLI commands."""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

from jobflow.accounts.models import UserCreate
from jobflow.audit.models import AuditAction, AuditTarget
from jobflow.collaborators.base import QaVerdict
from jobflow.config import Settings
from jobflow.lifecycle.models import JobCreate, JobStatus, JobView, Role, TransitionResult
from jobflow.lifecycle.service import JobService
from jobflow.processors.registry import Repositories, build_runtime
from jobflow.processors.webhooks import CREDITS_PURCHASED
from jobflow.queue.dead_letter import DeadLetterAdmin, DeadLetterResult
from jobflow.queue.models import QueueName
from jobflow.queue.payloads import WebhookPayload
from jobflow.queue.pool import PoolRunSummary
from jobflow.storage.alembic_runner import upgrade_head
from jobflow.storage.common import utc_now


@dataclass(slots=True)
class InitDbCommand:
    db_path: Path | None


@dataclass(slots=True)
class UserAddCommand:
    """CLI input for user registration."""

    db_path: Path | None
    user_id: str
    display_name: str
    email: str
    role: str
    skills: tuple[str, ...] = ()
    unavailable: bool = False


@dataclass(slots=True)
class CreditsTopupCommand:
    db_path: Path | None
    client_id: str
    standard: int
    rollover: int = 0
    actor_id: str | None = None


@dataclass(slots=True)
class CreditsShowCommand:
    db_path: Path | None
    client_id: str


@dataclass(slots=True)
class JobCreateCommand:
    """CLI input for job creation."""

    db_path: Path | None
    client_id: str
    title: str
    description: str
    category: str
    priority: str = "standard"


@dataclass(slots=True)
class JobShowCommand:
    db_path: Path | None
    job_id: str


@dataclass(slots=True)
class JobListCommand:
    db_path: Path | None
    client_id: str | None = None
    worker_id: str | None = None
    status: str | None = None
    limit: int = 50


@dataclass(slots=True)
class JobTransitionCommand:
    """CLI input for a status change requested by an actor."""

    db_path: Path | None
    job_id: str
    status: str
    actor_id: str
    role: str
    worker_id: str | None = None
    qa_passed: bool | None = None
    qa_score: float = 1.0


@dataclass(slots=True)
class JobProgressCommand:
    db_path: Path | None
    job_id: str
    worker_id: str
    message: str
    percent: int | None = None


@dataclass(slots=True)
class JobFlagCommand:
    db_path: Path | None
    job_id: str
    worker_id: str
    reason: str


@dataclass(slots=True)
class JobResolveFlagCommand:
    db_path: Path | None
    job_id: str
    admin_id: str


@dataclass(slots=True)
class QueueEnqueueWelcomeCommand:
    db_path: Path | None
    user_id: str


@dataclass(slots=True)
class QueueEnqueueWebhookCommand:
    """CLI input for a simulated payment-provider webhook."""

    db_path: Path | None
    event_id: str
    client_id: str
    credits: int
    rollover: int = 0
    event_type: str = CREDITS_PURCHASED
    source: str = "cli"


@dataclass(slots=True)
class QueueStatsCommand:
    db_path: Path | None
    queue_name: str | None = None


@dataclass(slots=True)
class QueueCleanCommand:
    db_path: Path | None
    older_than_hours: int
    queue_name: str | None = None


@dataclass(slots=True)
class WorkerRunCommand:
    """CLI input for worker execution."""

    db_path: Path | None
    queue_names: tuple[str, ...] = ()
    once: bool = True
    max_idle_polls: int | None = 1


@dataclass(slots=True)
class DlqListCommand:
    db_path: Path | None
    queue_name: str | None = None
    limit: int = 50


@dataclass(slots=True)
class DlqMutateCommand:
    """CLI input for dead-letter retry or removal."""

    db_path: Path | None
    queue_name: str | None
    task_ids: tuple[str, ...] = ()
    select_all: bool = False


@dataclass(slots=True)
class NotificationsListCommand:
    db_path: Path | None
    user_id: str
    unread_only: bool = False
    limit: int = 50


@dataclass(slots=True)
class NotificationsPurgeCommand:
    db_path: Path | None


@dataclass(slots=True)
class AuditListCommand:
    """CLI input for audit log queries."""

    db_path: Path | None
    target_type: str | None = None
    target_id: str | None = None
    actor_id: str | None = None
    action: str | None = None
    limit: int = 50


class MarketplaceCliController:
    """Users, credits, jobs, and in-app notifications."""

    def init_db(self, command: InitDbCommand) -> list[str]:
        settings = _settings(command.db_path)
        upgrade_head(settings.db_path)
        return [f"Database ready: {settings.db_path}"]

    def add_user(self, command: UserAddCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repositories(settings) as repositories:
            user = repositories.accounts.add_user(
                UserCreate(
                    user_id=command.user_id,
                    display_name=command.display_name,
                    email=command.email,
                    role=Role(command.role),
                    skills=list(command.skills),
                    is_available=not command.unavailable,
                ),
            )
        return [f"User added: {user.user_id} role={user.role.value} email={user.email}"]

    def topup_credits(self, command: CreditsTopupCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repositories(settings) as repositories:
            repositories.accounts.require_user(command.client_id, role=Role.CLIENT)
            balance = repositories.accounts.credit(
                command.client_id,
                standard=command.standard,
                rollover=command.rollover,
                actor_id=command.actor_id,
            )
        return [
            f"Balance for {balance.client_id}: standard={balance.standard_credits} "
            f"rollover={balance.rollover_credits} available={balance.available}",
        ]

    def show_credits(self, command: CreditsShowCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repositories(settings) as repositories:
            balance = repositories.accounts.get_balance(command.client_id)
        return [
            f"Client: {balance.client_id}",
            f"Standard credits: {balance.standard_credits}",
            f"Rollover credits: {balance.rollover_credits}",
            f"Available: {balance.available}",
            f"Jobs created: {balance.total_jobs}",
            f"Credits spent: {balance.total_spent}",
        ]

    def create_job(self, command: JobCreateCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repositories(settings) as repositories:
            created = _service(repositories).create_job(
                JobCreate(
                    client_id=command.client_id,
                    title=command.title,
                    description=command.description,
                    category=command.category,
                    priority=command.priority,
                ),
            )
        job = created.job
        return [
            f"Job created: {job.job_id}",
            f"Credits charged: {job.credits_charged} "
            f"(rollover={created.rollover_debit} standard={created.standard_debit})",
            f"Analysis task: {created.analysis_task_id}",
        ]

    def show_job(self, command: JobShowCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repositories(settings) as repositories:
            job = repositories.jobs.require_job(command.job_id)
        return _job_lines(job)

    def list_jobs(self, command: JobListCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repositories(settings) as repositories:
            jobs = repositories.jobs.list_jobs(
                client_id=command.client_id,
                worker_id=command.worker_id,
                status=JobStatus(command.status) if command.status else None,
                limit=command.limit,
            )
        if not jobs:
            return ["No jobs found."]
        lines = [f"Jobs: {len(jobs)}"]
        for job in jobs:
            lines.append(
                f"  {job.job_id} status={job.status.value} client={job.client_id} "
                f"worker={job.worker_id or '-'} credits={job.credits_charged} "
                f"flagged={'yes' if job.flagged else 'no'} title={job.title}",
            )
        return lines

    def transition_job(self, command: JobTransitionCommand) -> list[str]:
        settings = _settings(command.db_path)
        verdict = (
            QaVerdict(passed=command.qa_passed, score=command.qa_score)
            if command.qa_passed is not None
            else None
        )
        with _repositories(settings) as repositories:
            result = _service(repositories).transition(
                command.job_id,
                JobStatus(command.status),
                actor_id=command.actor_id,
                role=Role(command.role),
                worker_id=command.worker_id,
                qa_verdict=verdict,
            )
        return _transition_lines(result)

    def post_progress(self, command: JobProgressCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repositories(settings) as repositories:
            result = _service(repositories).add_progress(
                command.job_id,
                worker_id=command.worker_id,
                message=command.message,
                percent=command.percent,
            )
        job = result.job
        lines = [f"Progress on {job.job_id}: {job.progress_percent}% {job.progress_message}"]
        if result.changed:
            lines.append(f"Job {job.job_id}: {result.previous_status.value} -> {job.status.value}")
        lines.extend(f"  notification task: {task_id}" for task_id in result.notification_task_ids)
        return lines

    def flag_job(self, command: JobFlagCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repositories(settings) as repositories:
            job, task_id = _service(repositories).flag(
                command.job_id,
                worker_id=command.worker_id,
                reason=command.reason,
            )
        lines = [f"Job flagged: {job.job_id} reason={job.flag_reason}"]
        lines.append(f"Admin notification task: {task_id}" if task_id else "No active admin to notify.")
        return lines

    def resolve_flag(self, command: JobResolveFlagCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repositories(settings) as repositories:
            job = _service(repositories).resolve_flag(command.job_id, admin_id=command.admin_id)
        return [f"Flag resolved: {job.job_id} by={job.flag_resolved_by}"]

    def list_notifications(self, command: NotificationsListCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repositories(settings) as repositories:
            store = repositories.notifications
            notifications = store.list_for_user(
                command.user_id,
                unread_only=command.unread_only,
                limit=command.limit,
            )
            unread = store.unread_count(command.user_id)
        lines = [f"Notifications for {command.user_id}: {len(notifications)} (unread={unread})"]
        for item in notifications:
            marker = " " if item.read else "*"
            lines.append(
                f" {marker} {item.notification_id} {item.created_at.isoformat()} "
                f"{item.event_type}: {item.subject}",
            )
        return lines

    def purge_notifications(self, command: NotificationsPurgeCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repositories(settings) as repositories:
            purged = repositories.notifications.purge_expired()
        return [f"Expired notifications purged: {purged}"]

    def list_audit(self, command: AuditListCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repositories(settings) as repositories:
            entries = repositories.audit.list_entries(
                target_type=AuditTarget(command.target_type) if command.target_type else None,
                target_id=command.target_id,
                actor_id=command.actor_id,
                action=AuditAction(command.action) if command.action else None,
                limit=command.limit,
            )
        if not entries:
            return ["No audit entries."]
        lines = [f"Audit entries: {len(entries)}"]
        for entry in entries:
            lines.append(
                f"  {entry.created_at.isoformat()} {entry.severity.value} {entry.action.value} "
                f"{entry.target_type.value}={entry.target_id or '-'} actor={entry.actor_id or '-'}: "
                f"{entry.description}",
            )
        return lines


class QueueCliController:
    """Queue producers, worker runtime, and dead-letter remediation."""

    def enqueue_welcome(self, command: QueueEnqueueWelcomeCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repositories(settings) as repositories:
            task_id = repositories.accounts.enqueue_welcome(command.user_id)
        return [f"Welcome notification queued: {task_id}"]

    def enqueue_webhook(self, command: QueueEnqueueWebhookCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repositories(settings) as repositories:
            task = repositories.queue.enqueue(
                WebhookPayload(
                    event_id=command.event_id,
                    event_type=command.event_type,
                    source=command.source,
                    body={
                        "client_id": command.client_id,
                        "credits": command.credits,
                        "rollover": command.rollover,
                    },
                ),
            )
        return [f"Webhook event queued: {task.task_id} event_id={command.event_id}"]

    def stats(self, command: QueueStatsCommand) -> list[str]:
        settings = _settings(command.db_path)
        queue_names = _queue_names((command.queue_name,) if command.queue_name else ())
        lines: list[str] = []
        with _repositories(settings) as repositories:
            for queue_name in queue_names:
                stats = repositories.queue.stats(queue_name)
                lines.append(
                    f"{queue_name.value}: waiting={stats.waiting} delayed={stats.delayed} "
                    f"active={stats.active} completed={stats.completed} "
                    f"dead_lettered={stats.dead_lettered} total={stats.total}",
                )
        return lines

    def clean(self, command: QueueCleanCommand) -> list[str]:
        settings = _settings(command.db_path)
        cutoff = utc_now() - timedelta(hours=command.older_than_hours)
        queue_name = QueueName.parse(command.queue_name) if command.queue_name else None
        with _repositories(settings) as repositories:
            removed = repositories.queue.clean_completed(older_than=cutoff, queue_name=queue_name)
        return [f"Completed tasks removed: {removed}"]

    def run_worker(self, command: WorkerRunCommand) -> list[str]:
        settings = _settings(command.db_path)
        queue_names = _queue_names(command.queue_names)
        with _repositories(settings) as repositories:
            runtime = build_runtime(settings, repositories, queue_names=queue_names)
            if command.once:
                summaries = runtime.run_once()
            else:
                summaries = runtime.run(max_idle_polls=command.max_idle_polls)
        total = PoolRunSummary()
        lines: list[str] = []
        for queue_name in queue_names:
            summary = summaries[queue_name]
            total.add(summary)
            lines.append(f"  {queue_name.value}: {_summary_text(summary)}")
        return [f"Worker summary: {_summary_text(total)}", *lines]

    def list_dead_letters(self, command: DlqListCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repositories(settings) as repositories:
            entries = DeadLetterAdmin(repositories.queue).list_failed(
                queue_name=command.queue_name,
                limit=command.limit,
            )
        if not entries:
            return ["No dead-lettered tasks."]
        lines = [f"Dead-lettered tasks: {len(entries)}"]
        for entry in entries:
            lines.append(
                f"  {entry.task_id} queue={entry.queue_name.value} attempts={entry.attempts_made} "
                f"failed_at={entry.failed_at.isoformat()} reason={entry.failed_reason}",
            )
            lines.append(f"    payload={json.dumps(entry.payload, ensure_ascii=False, sort_keys=True)}")
        return lines

    def retry_dead_letters(self, command: DlqMutateCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repositories(settings) as repositories:
            result = DeadLetterAdmin(repositories.queue).retry_failed(
                queue_name=command.queue_name,
                task_ids=list(command.task_ids),
                retry_all=command.select_all,
            )
        return _dead_letter_lines("Retried", result)

    def remove_dead_letters(self, command: DlqMutateCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repositories(settings) as repositories:
            result = DeadLetterAdmin(repositories.queue).remove_failed(
                queue_name=command.queue_name,
                task_ids=list(command.task_ids),
                remove_all=command.select_all,
            )
        return _dead_letter_lines("Removed", result)


def _settings(db_path: Path | None) -> Settings:
    settings = Settings.from_env(db_path=db_path)
    settings.validate()
    return settings


@contextmanager
def _repositories(settings: Settings) -> Iterator[Repositories]:
    upgrade_head(settings.db_path)
    repositories = Repositories.open(settings)
    try:
        yield repositories
    finally:
        repositories.close()


def _service(repositories: Repositories) -> JobService:
    return JobService(jobs=repositories.jobs, accounts=repositories.accounts)


def _queue_names(values: tuple[str, ...]) -> list[QueueName]:
    if not values:
        return list(QueueName)
    return [QueueName.parse(value) for value in values]


def _summary_text(summary: PoolRunSummary) -> str:
    return (
        f"processed={summary.processed} succeeded={summary.succeeded} "
        f"retried={summary.retried} dead_lettered={summary.dead_lettered} "
        f"lease_lost={summary.lease_lost} released={summary.released} "
        f"poll_errors={summary.poll_errors}"
    )


def _transition_lines(result: TransitionResult) -> list[str]:
    job = result.job
    if not result.changed:
        return [f"Job {job.job_id} already {job.status.value}; nothing changed."]
    lines = [f"Job {job.job_id}: {result.previous_status.value} -> {job.status.value}"]
    if job.status is JobStatus.COMPLETED and job.worker_earnings is not None:
        lines.append(f"Worker earnings: ${job.worker_earnings:.2f}")
    for task_id in result.notification_task_ids:
        lines.append(f"  notification task: {task_id}")
    return lines


def _dead_letter_lines(verb: str, result: DeadLetterResult) -> list[str]:
    lines = [f"{verb} {result.count} task(s) in {result.queue_name.value}"]
    lines.extend(f"  {task_id}" for task_id in result.task_ids)
    return lines


def _job_lines(job: JobView) -> list[str]:
    lines = [
        f"Job: {job.job_id}",
        f"Title: {job.title}",
        f"Category: {job.category} priority={job.priority}",
        f"Status: {job.status.value}",
        f"Client: {job.client_id}",
        f"Worker: {job.worker_id or '-'}",
        f"Credits charged: {job.credits_charged}",
        f"Created: {job.created_at.isoformat()}",
    ]
    if job.worker_earnings is not None:
        lines.append(f"Worker earnings: ${job.worker_earnings:.2f}")
    if job.progress_updated_at is not None:
        lines.append(
            f"Progress: {job.progress_percent}% {job.progress_message} "
            f"(updated {job.progress_updated_at.isoformat()})",
        )
    if job.flagged:
        lines.append(f"Flagged: {job.flag_reason}")
    elif job.flag_resolved_at is not None:
        lines.append(f"Flag resolved by {job.flag_resolved_by} at {job.flag_resolved_at.isoformat()}")
    if job.ai_analysis is not None:
        lines.append(f"Analysis: {json.dumps(job.ai_analysis, sort_keys=True)}")
        lines.append(f"Related past jobs: {len(job.context_from_past_work or [])}")
    else:
        lines.append("Analysis: pending")
    return lines

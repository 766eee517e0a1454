"""CLI entrypoint for jobflow."""

import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any

import rich_click as click

from jobflow import __version__
from jobflow.audit.models import AuditAction, AuditTarget
from jobflow.billing.credits import PRIORITY_MULTIPLIERS
from jobflow.controllers import (
    AuditListCommand,
    CreditsShowCommand,
    CreditsTopupCommand,
    DlqListCommand,
    DlqMutateCommand,
    InitDbCommand,
    JobCreateCommand,
    JobFlagCommand,
    JobListCommand,
    JobProgressCommand,
    JobResolveFlagCommand,
    JobShowCommand,
    JobTransitionCommand,
    MarketplaceCliController,
    NotificationsListCommand,
    NotificationsPurgeCommand,
    QueueCleanCommand,
    QueueCliController,
    QueueEnqueueWebhookCommand,
    QueueEnqueueWelcomeCommand,
    QueueStatsCommand,
    UserAddCommand,
    WorkerRunCommand,
)
from jobflow.errors import JobflowError
from jobflow.lifecycle.models import JobStatus, Role
from jobflow.queue.models import QueueName

click.rich_click.USE_MARKDOWN = True
MARKETPLACE_CONTROLLER = MarketplaceCliController()
QUEUE_CONTROLLER = QueueCliController()

DB_PATH_HELP = "SQLite DB path (defaults to JOBFLOW_DB_PATH or .jobflow.db)."
STATUS_CHOICES = [status.value for status in JobStatus]
ROLE_CHOICES = [role.value for role in Role]
QUEUE_CHOICES = [queue.value for queue in QueueName]
AUDIT_TARGET_CHOICES = [target.value for target in AuditTarget]
AUDIT_ACTION_CHOICES = [action.value for action in AuditAction]


@click.group()
@click.version_option(version=__version__, prog_name="jobflow")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Logging level for jobflow modules.",
)
def jobflow(log_level: str) -> None:
    """Job marketplace backend: lifecycle, credits, and durable task queues."""

    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@jobflow.command("init-db")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help=DB_PATH_HELP)
def init_db(db_path: Path | None) -> None:
    """Create or upgrade the database schema."""

    _run(MARKETPLACE_CONTROLLER.init_db, InitDbCommand(db_path=db_path))


@jobflow.group()
def users() -> None:
    """User accounts."""


@users.command("add")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help=DB_PATH_HELP)
@click.option("--user-id", required=True, help="Unique user id.")
@click.option("--name", "display_name", required=True, help="Display name used in notifications.")
@click.option("--email", required=True, help="Notification address.")
@click.option(
    "--role",
    type=click.Choice(ROLE_CHOICES, case_sensitive=False),
    required=True,
    help="Account role.",
)
@click.option("--skill", "skills", multiple=True, help="Worker skill. Can be repeated.")
@click.option(
    "--unavailable",
    is_flag=True,
    default=False,
    help="Register a worker as not available for auto-assignment.",
)
def users_add(  # noqa: PLR0913
    db_path: Path | None,
    user_id: str,
    display_name: str,
    email: str,
    role: str,
    skills: tuple[str, ...],
    unavailable: bool,
) -> None:
    """Register a client, worker, or admin."""

    _run(
        MARKETPLACE_CONTROLLER.add_user,
        UserAddCommand(
            db_path=db_path,
            user_id=user_id,
            display_name=display_name,
            email=email,
            role=role.lower(),
            skills=skills,
            unavailable=unavailable,
        ),
    )


@jobflow.group()
def credits() -> None:
    """Client credit balances."""


@credits.command("topup")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help=DB_PATH_HELP)
@click.option("--client-id", required=True, help="Client user id.")
@click.option("--standard", type=click.IntRange(min=0), default=0, show_default=True)
@click.option("--rollover", type=click.IntRange(min=0), default=0, show_default=True)
@click.option("--actor-id", default=None, help="Admin recorded in the audit log.")
def credits_topup(
    db_path: Path | None,
    client_id: str,
    standard: int,
    rollover: int,
    actor_id: str | None,
) -> None:
    """Add standard and/or rollover credits to a client balance."""

    _run(
        MARKETPLACE_CONTROLLER.topup_credits,
        CreditsTopupCommand(
            db_path=db_path,
            client_id=client_id,
            standard=standard,
            rollover=rollover,
            actor_id=actor_id,
        ),
    )


@credits.command("show")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help=DB_PATH_HELP)
@click.option("--client-id", required=True, help="Client user id.")
def credits_show(db_path: Path | None, client_id: str) -> None:
    """Show a client balance."""

    _run(
        MARKETPLACE_CONTROLLER.show_credits,
        CreditsShowCommand(db_path=db_path, client_id=client_id),
    )


@jobflow.group()
def jobs() -> None:
    """Job lifecycle commands."""


@jobs.command("create")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help=DB_PATH_HELP)
@click.option("--client-id", required=True, help="Client user id.")
@click.option("--title", required=True, help="Job title.")
@click.option("--description", required=True, help="Job brief.")
@click.option("--category", required=True, help="Job category, for example design or video.")
@click.option(
    "--priority",
    type=click.Choice(list(PRIORITY_MULTIPLIERS), case_sensitive=False),
    default="standard",
    show_default=True,
)
def jobs_create(  # noqa: PLR0913
    db_path: Path | None,
    client_id: str,
    title: str,
    description: str,
    category: str,
    priority: str,
) -> None:
    """Create a pending job, charge credits, and queue its analysis."""

    _run(
        MARKETPLACE_CONTROLLER.create_job,
        JobCreateCommand(
            db_path=db_path,
            client_id=client_id,
            title=title,
            description=description,
            category=category.lower(),
            priority=priority.lower(),
        ),
    )


@jobs.command("show")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help=DB_PATH_HELP)
@click.option("--job-id", required=True, help="Job id.")
def jobs_show(db_path: Path | None, job_id: str) -> None:
    """Show one job with its analysis."""

    _run(MARKETPLACE_CONTROLLER.show_job, JobShowCommand(db_path=db_path, job_id=job_id))


@jobs.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help=DB_PATH_HELP)
@click.option("--client-id", default=None, help="Only jobs of this client.")
@click.option("--worker-id", default=None, help="Only jobs held by this worker.")
@click.option(
    "--status",
    type=click.Choice(STATUS_CHOICES, case_sensitive=False),
    default=None,
    help="Optional status filter.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=50,
    show_default=True,
    help="Max jobs to print.",
)
def jobs_list(
    db_path: Path | None,
    client_id: str | None,
    worker_id: str | None,
    status: str | None,
    limit: int,
) -> None:
    """List jobs newest first."""

    _run(
        MARKETPLACE_CONTROLLER.list_jobs,
        JobListCommand(
            db_path=db_path,
            client_id=client_id,
            worker_id=worker_id,
            status=status.lower() if status else None,
            limit=limit,
        ),
    )


@jobs.command("transition")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help=DB_PATH_HELP)
@click.option("--job-id", required=True, help="Job id.")
@click.option(
    "--to",
    "status",
    type=click.Choice(STATUS_CHOICES, case_sensitive=False),
    required=True,
    help="Requested status.",
)
@click.option("--actor-id", required=True, help="User performing the change.")
@click.option(
    "--role",
    type=click.Choice(ROLE_CHOICES, case_sensitive=False),
    required=True,
    help="Role the actor acts in.",
)
@click.option("--worker-id", default=None, help="Worker to assign (only with --to assigned).")
@click.option(
    "--qa/--no-qa",
    "qa_passed",
    default=None,
    help="QA verdict for deliverables when submitting for review.",
)
@click.option(
    "--qa-score",
    type=click.FloatRange(min=0.0, max=1.0),
    default=1.0,
    show_default=True,
)
def jobs_transition(  # noqa: PLR0913
    db_path: Path | None,
    job_id: str,
    status: str,
    actor_id: str,
    role: str,
    worker_id: str | None,
    qa_passed: bool | None,
    qa_score: float,
) -> None:
    """Move a job to another status.

    Valid moves:

    - `pending` -> `assigned` | `cancelled`
    - `assigned` -> `in_progress` | `cancelled`
    - `in_progress` -> `review` | `cancelled`
    - `review` -> `completed` | `revision`
    - `revision` -> `in_progress` | `cancelled`
    """

    _run(
        MARKETPLACE_CONTROLLER.transition_job,
        JobTransitionCommand(
            db_path=db_path,
            job_id=job_id,
            status=status.lower(),
            actor_id=actor_id,
            role=role.lower(),
            worker_id=worker_id,
            qa_passed=qa_passed,
            qa_score=qa_score,
        ),
    )


@jobs.command("progress")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help=DB_PATH_HELP)
@click.option("--job-id", required=True, help="Job id.")
@click.option("--worker-id", required=True, help="Worker holding the job.")
@click.option("--message", required=True, help="What was done since the last update.")
@click.option(
    "--percent",
    type=click.IntRange(min=0, max=100),
    default=None,
    help="Completion estimate; keeps the previous value when omitted.",
)
def jobs_progress(
    db_path: Path | None,
    job_id: str,
    worker_id: str,
    message: str,
    percent: int | None,
) -> None:
    """Post a progress update and notify the client.

    The first update on an `assigned` job moves it to `in_progress`.
    """

    _run(
        MARKETPLACE_CONTROLLER.post_progress,
        JobProgressCommand(
            db_path=db_path,
            job_id=job_id,
            worker_id=worker_id,
            message=message,
            percent=percent,
        ),
    )


@jobs.command("flag")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help=DB_PATH_HELP)
@click.option("--job-id", required=True, help="Job id.")
@click.option("--worker-id", required=True, help="Worker holding the job.")
@click.option("--reason", required=True, help="Why the job needs attention.")
def jobs_flag(db_path: Path | None, job_id: str, worker_id: str, reason: str) -> None:
    """Raise a confidence flag and notify the admin."""

    _run(
        MARKETPLACE_CONTROLLER.flag_job,
        JobFlagCommand(db_path=db_path, job_id=job_id, worker_id=worker_id, reason=reason),
    )


@jobs.command("resolve-flag")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help=DB_PATH_HELP)
@click.option("--job-id", required=True, help="Job id.")
@click.option("--admin-id", required=True, help="Admin resolving the flag.")
def jobs_resolve_flag(db_path: Path | None, job_id: str, admin_id: str) -> None:
    """Clear a job flag."""

    _run(
        MARKETPLACE_CONTROLLER.resolve_flag,
        JobResolveFlagCommand(db_path=db_path, job_id=job_id, admin_id=admin_id),
    )


@jobflow.group()
def queue() -> None:
    """Task queue producers and maintenance."""


@queue.command("enqueue-welcome")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help=DB_PATH_HELP)
@click.option("--user-id", required=True, help="Worker to welcome.")
def queue_enqueue_welcome(db_path: Path | None, user_id: str) -> None:
    """Queue the welcome notification for a worker."""

    _run(
        QUEUE_CONTROLLER.enqueue_welcome,
        QueueEnqueueWelcomeCommand(db_path=db_path, user_id=user_id),
    )


@queue.command("enqueue-webhook")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help=DB_PATH_HELP)
@click.option("--event-id", required=True, help="Provider event id; processed once.")
@click.option("--client-id", required=True, help="Client receiving the credits.")
@click.option("--credits", "credit_count", type=click.IntRange(min=0), required=True)
@click.option("--rollover", type=click.IntRange(min=0), default=0, show_default=True)
def queue_enqueue_webhook(
    db_path: Path | None,
    event_id: str,
    client_id: str,
    credit_count: int,
    rollover: int,
) -> None:
    """Queue a `credits_purchased` payment webhook."""

    _run(
        QUEUE_CONTROLLER.enqueue_webhook,
        QueueEnqueueWebhookCommand(
            db_path=db_path,
            event_id=event_id,
            client_id=client_id,
            credits=credit_count,
            rollover=rollover,
        ),
    )


@queue.command("stats")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help=DB_PATH_HELP)
@click.option(
    "--queue",
    "queue_name",
    type=click.Choice(QUEUE_CHOICES),
    default=None,
    help="Only this queue.",
)
def queue_stats(db_path: Path | None, queue_name: str | None) -> None:
    """Show per-queue task counts."""

    _run(QUEUE_CONTROLLER.stats, QueueStatsCommand(db_path=db_path, queue_name=queue_name))


@queue.command("clean")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help=DB_PATH_HELP)
@click.option(
    "--older-than-hours",
    type=click.IntRange(min=0),
    default=24,
    show_default=True,
    help="Remove completed tasks finished before this many hours ago.",
)
@click.option(
    "--queue",
    "queue_name",
    type=click.Choice(QUEUE_CHOICES),
    default=None,
    help="Only this queue.",
)
def queue_clean(db_path: Path | None, older_than_hours: int, queue_name: str | None) -> None:
    """Delete old completed tasks."""

    _run(
        QUEUE_CONTROLLER.clean,
        QueueCleanCommand(
            db_path=db_path,
            older_than_hours=older_than_hours,
            queue_name=queue_name,
        ),
    )


@jobflow.group()
def worker() -> None:
    """Queue worker runtime."""


@worker.command("run")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help=DB_PATH_HELP)
@click.option(
    "--queue",
    "queue_names",
    type=click.Choice(QUEUE_CHOICES),
    multiple=True,
    help="Queue to consume. Can be repeated; defaults to all queues.",
)
@click.option(
    "--once/--loop",
    default=False,
    show_default=True,
    help="Process at most one task per queue, or run pools until stopped.",
)
@click.option(
    "--max-idle-polls",
    type=click.IntRange(min=1),
    default=None,
    help="In loop mode, exit a pool slot after this many empty polls.",
)
def worker_run(
    db_path: Path | None,
    queue_names: tuple[str, ...],
    once: bool,
    max_idle_polls: int | None,
) -> None:
    """Run worker pools. Stops cleanly on SIGINT/SIGTERM."""

    _run(
        QUEUE_CONTROLLER.run_worker,
        WorkerRunCommand(
            db_path=db_path,
            queue_names=queue_names,
            once=once,
            max_idle_polls=max_idle_polls,
        ),
    )


@jobflow.group()
def dlq() -> None:
    """Dead-letter remediation."""


@dlq.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help=DB_PATH_HELP)
@click.option(
    "--queue",
    "queue_name",
    type=click.Choice(QUEUE_CHOICES),
    default=None,
    help="Only this queue; defaults to all queues.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=100),
    default=50,
    show_default=True,
)
def dlq_list(db_path: Path | None, queue_name: str | None, limit: int) -> None:
    """List dead-lettered tasks, most recently failed first."""

    _run(
        QUEUE_CONTROLLER.list_dead_letters,
        DlqListCommand(db_path=db_path, queue_name=queue_name, limit=limit),
    )


@dlq.command("retry")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help=DB_PATH_HELP)
@click.option("--queue", "queue_name", type=click.Choice(QUEUE_CHOICES), required=True)
@click.option("--task-id", "task_ids", multiple=True, help="Task id. Can be repeated.")
@click.option("--all", "select_all", is_flag=True, default=False, help="Every task in the queue.")
def dlq_retry(
    db_path: Path | None,
    queue_name: str,
    task_ids: tuple[str, ...],
    select_all: bool,
) -> None:
    """Re-queue dead-lettered tasks with a fresh attempt budget."""

    _run(
        QUEUE_CONTROLLER.retry_dead_letters,
        DlqMutateCommand(
            db_path=db_path,
            queue_name=queue_name,
            task_ids=task_ids,
            select_all=select_all,
        ),
    )


@dlq.command("remove")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help=DB_PATH_HELP)
@click.option("--queue", "queue_name", type=click.Choice(QUEUE_CHOICES), required=True)
@click.option("--task-id", "task_ids", multiple=True, help="Task id. Can be repeated.")
@click.option("--all", "select_all", is_flag=True, default=False, help="Every task in the queue.")
def dlq_remove(
    db_path: Path | None,
    queue_name: str,
    task_ids: tuple[str, ...],
    select_all: bool,
) -> None:
    """Permanently delete dead-lettered tasks."""

    _run(
        QUEUE_CONTROLLER.remove_dead_letters,
        DlqMutateCommand(
            db_path=db_path,
            queue_name=queue_name,
            task_ids=task_ids,
            select_all=select_all,
        ),
    )


@jobflow.group()
def notifications() -> None:
    """In-app notifications."""


@notifications.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help=DB_PATH_HELP)
@click.option("--user-id", required=True, help="Recipient.")
@click.option("--unread", "unread_only", is_flag=True, default=False, help="Only unread.")
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=50,
    show_default=True,
)
def notifications_list(db_path: Path | None, user_id: str, unread_only: bool, limit: int) -> None:
    """List unexpired notifications for a user."""

    _run(
        MARKETPLACE_CONTROLLER.list_notifications,
        NotificationsListCommand(
            db_path=db_path,
            user_id=user_id,
            unread_only=unread_only,
            limit=limit,
        ),
    )


@notifications.command("purge")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help=DB_PATH_HELP)
def notifications_purge(db_path: Path | None) -> None:
    """Delete notifications past their expiry."""

    _run(MARKETPLACE_CONTROLLER.purge_notifications, NotificationsPurgeCommand(db_path=db_path))


@jobflow.group()
def audit() -> None:
    """Audit trail of job and payment changes."""


@audit.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help=DB_PATH_HELP)
@click.option(
    "--target-type",
    type=click.Choice(AUDIT_TARGET_CHOICES),
    default=None,
    help="Only entries about this kind of record.",
)
@click.option("--target-id", default=None, help="Only entries about this job or client.")
@click.option("--actor-id", default=None, help="Only entries caused by this user.")
@click.option(
    "--action",
    type=click.Choice(AUDIT_ACTION_CHOICES),
    default=None,
    help="Only this action.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=50,
    show_default=True,
)
def audit_list(  # noqa: PLR0913
    db_path: Path | None,
    target_type: str | None,
    target_id: str | None,
    actor_id: str | None,
    action: str | None,
    limit: int,
) -> None:
    """List audit entries newest first."""

    _run(
        MARKETPLACE_CONTROLLER.list_audit,
        AuditListCommand(
            db_path=db_path,
            target_type=target_type,
            target_id=target_id,
            actor_id=actor_id,
            action=action,
            limit=limit,
        ),
    )


def _run(handler: Callable[[Any], list[str]], command: Any) -> None:
    try:
        lines = handler(command)
    except (JobflowError, ValueError) as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    jobflow()

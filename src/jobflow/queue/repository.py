"""Persistent queue repository backed by SQLModel + SQLite."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from pathlib import Path
from uuid import uuid4

from sqlalchemy import func
from sqlalchemy import update as sa_update
from sqlmodel import Session, col, delete, select

from jobflow.config import QueueSettings, Settings
from jobflow.queue.models import (
    DeadLetterEntry,
    FailureClass,
    NackOutcome,
    QueueName,
    QueueStats,
    StallRecovery,
    TaskEventView,
    TaskStatus,
    TaskView,
)
from jobflow.queue.payloads import TaskPayload, encode_payload, payload_queue
from jobflow.storage.common import (
    build_sqlite_engine,
    page_limit,
    to_db_datetime,
    to_utc_aware,
    to_utc_aware_or_none,
    utc_now,
)
from jobflow.storage.sqlmodel_models import QueueTask, QueueTaskEvent

logger = logging.getLogger(__name__)


def retry_delay_seconds(*, base_seconds: float, attempts_made: int) -> float:
    """Exponential backoff: base for the first retry, doubling after each failure."""

    return base_seconds * (2 ** max(attempts_made - 1, 0))


def add_task(  # noqa: PLR0913
    session: Session,
    payload: TaskPayload,
    *,
    settings: QueueSettings,
    now: datetime,
    priority: int | None = None,
    delay_seconds: float = 0.0,
) -> QueueTask:
    """Stage a task insert in the caller's transaction.

    Used directly by repositories whose writes must commit together with the
    enqueue (status change plus notifications, analysis plus chained assignment).
    """

    queue_name = payload_queue(payload)
    task_id = str(uuid4())
    effective_priority = settings.default_priority if priority is None else priority
    row = QueueTask(
        task_id=task_id,
        queue_name=queue_name.value,
        payload_json=encode_payload(payload),
        priority=effective_priority,
        status=TaskStatus.WAITING.value,
        attempts_made=0,
        max_attempts=settings.attempts,
        backoff_base_seconds=settings.backoff_base_seconds,
        run_after=to_db_datetime(now + timedelta(seconds=max(0.0, delay_seconds))),
        enqueued_at=to_db_datetime(now),
        updated_at=to_db_datetime(now),
    )
    session.add(row)
    session.flush()
    add_task_event(
        session,
        task_id=task_id,
        event_type="enqueued",
        status_from=None,
        status_to=TaskStatus.WAITING,
        details={"queue": queue_name.value, "priority": effective_priority},
        now=now,
    )
    return row


def add_task_event(  # noqa: PLR0913
    session: Session,
    *,
    task_id: str,
    event_type: str,
    status_from: TaskStatus | None,
    status_to: TaskStatus | None,
    details: dict[str, object],
    now: datetime | None = None,
) -> None:
    session.add(
        QueueTaskEvent(
            task_id=task_id,
            event_type=event_type,
            status_from=status_from.value if status_from is not None else None,
            status_to=status_to.value if status_to is not None else None,
            details_json=json.dumps(details, ensure_ascii=False, sort_keys=True)
            if details
            else None,
            created_at=to_db_datetime(now or utc_now()),
        ),
    )


class QueueRepository:
    """Queue persistence facade: enqueue, lease-based claim, ack/nack, dead letters."""

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

    def enqueue(
        self,
        payload: TaskPayload,
        *,
        priority: int | None = None,
        delay_seconds: float = 0.0,
    ) -> TaskView:
        """Durably insert a task into the queue its payload belongs to."""

        queue_name = payload_queue(payload)
        with Session(self.engine) as session:
            row = add_task(
                session,
                payload,
                settings=self.settings.queue(queue_name),
                now=utc_now(),
                priority=priority,
                delay_seconds=delay_seconds,
            )
            session.commit()
            session.refresh(row)
            return _to_task_view(row)

    def claim(
        self,
        queue_name: QueueName,
        *,
        worker_id: str,
        lease_seconds: float,
        now: datetime | None = None,
    ) -> TaskView | None:
        """Atomically lease the next runnable task.

        Highest priority first, then enqueue order. The status guard on the
        update makes the claim exclusive when several workers race for the
        same row; the loser simply looks for the next candidate.
        """

        while True:
            claimed_at = now or utc_now()
            with Session(self.engine) as session:
                candidate = session.exec(
                    select(QueueTask)
                    .where(
                        QueueTask.queue_name == queue_name.value,
                        QueueTask.status == TaskStatus.WAITING.value,
                        col(QueueTask.run_after) <= to_db_datetime(claimed_at),
                    )
                    .order_by(col(QueueTask.priority).desc(), col(QueueTask.id).asc())
                    .limit(1),
                ).one_or_none()
                if candidate is None:
                    return None

                lease_token = uuid4().hex
                result = session.exec(
                    sa_update(QueueTask)
                    .where(
                        col(QueueTask.id) == candidate.id,
                        col(QueueTask.status) == TaskStatus.WAITING.value,
                    )
                    .values(
                        status=TaskStatus.ACTIVE.value,
                        lease_token=lease_token,
                        locked_until=to_db_datetime(
                            claimed_at + timedelta(seconds=lease_seconds),
                        ),
                        worker_id=worker_id,
                        started_at=to_db_datetime(claimed_at),
                        updated_at=to_db_datetime(claimed_at),
                    ),
                )
                if result.rowcount != 1:
                    session.rollback()
                    continue

                claimed = session.exec(
                    select(QueueTask)
                    .where(QueueTask.id == candidate.id)
                    .execution_options(populate_existing=True),
                ).one()
                add_task_event(
                    session,
                    task_id=claimed.task_id,
                    event_type="claimed",
                    status_from=TaskStatus.WAITING,
                    status_to=TaskStatus.ACTIVE,
                    details={"worker_id": worker_id, "attempts_made": claimed.attempts_made},
                    now=claimed_at,
                )
                session.commit()
                return _to_task_view(claimed)

    def ack(self, task: TaskView) -> bool:
        """Mark a leased task completed; False when the lease is no longer held."""

        now = utc_now()
        retention = self.settings.queue(task.queue_name).completed_retention
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(QueueTask)
                .where(
                    col(QueueTask.task_id) == task.task_id,
                    col(QueueTask.status) == TaskStatus.ACTIVE.value,
                    col(QueueTask.lease_token) == task.lease_token,
                )
                .values(
                    status=TaskStatus.COMPLETED.value,
                    lease_token=None,
                    locked_until=None,
                    failure_class=None,
                    failed_reason=None,
                    finished_at=to_db_datetime(now),
                    updated_at=to_db_datetime(now),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                logger.warning("Ack ignored for task %s: lease no longer held", task.task_id)
                return False

            add_task_event(
                session,
                task_id=task.task_id,
                event_type="completed",
                status_from=TaskStatus.ACTIVE,
                status_to=TaskStatus.COMPLETED,
                details={"worker_id": task.worker_id},
                now=now,
            )
            self._prune_completed(session, queue_name=task.queue_name, retention=retention)
            session.commit()
            return True

    def nack(
        self,
        task: TaskView,
        *,
        error: str,
        failure_class: FailureClass,
    ) -> NackOutcome:
        """Record a failed attempt: schedule a backoff retry or dead-letter the task."""

        now = utc_now()
        with Session(self.engine) as session:
            row = session.exec(
                select(QueueTask).where(QueueTask.task_id == task.task_id),
            ).one_or_none()
            if (
                row is None
                or row.status != TaskStatus.ACTIVE.value
                or row.lease_token != task.lease_token
            ):
                logger.warning("Nack ignored for task %s: lease no longer held", task.task_id)
                return NackOutcome.LEASE_LOST

            outcome = self._record_failure(
                session,
                row=row,
                error=error,
                failure_class=failure_class,
                now=now,
            )
            if outcome is NackOutcome.LEASE_LOST:
                session.rollback()
                return outcome
            session.commit()
            return outcome

    def release(self, task: TaskView) -> bool:
        """Hand a leased task back unprocessed, without consuming an attempt."""

        now = utc_now()
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(QueueTask)
                .where(
                    col(QueueTask.task_id) == task.task_id,
                    col(QueueTask.status) == TaskStatus.ACTIVE.value,
                    col(QueueTask.lease_token) == task.lease_token,
                )
                .values(
                    status=TaskStatus.WAITING.value,
                    lease_token=None,
                    locked_until=None,
                    worker_id=None,
                    updated_at=to_db_datetime(now),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            add_task_event(
                session,
                task_id=task.task_id,
                event_type="released",
                status_from=TaskStatus.ACTIVE,
                status_to=TaskStatus.WAITING,
                details={"worker_id": task.worker_id},
                now=now,
            )
            session.commit()
            return True

    def recover_stalled(
        self,
        queue_name: QueueName,
        *,
        max_stalled_count: int,
        now: datetime | None = None,
    ) -> StallRecovery:
        """Return expired leases to the queue.

        A task is re-queued without consuming an attempt while its stall count
        is under the limit; beyond that the stall counts as a failed attempt.
        """

        swept_at = now or utc_now()
        recovery = StallRecovery()
        with Session(self.engine) as session:
            expired = session.exec(
                select(QueueTask)
                .where(
                    QueueTask.queue_name == queue_name.value,
                    QueueTask.status == TaskStatus.ACTIVE.value,
                    col(QueueTask.locked_until) < to_db_datetime(swept_at),
                )
                .order_by(col(QueueTask.id).asc()),
            ).all()
            for row in expired:
                stalled_count = row.stalled_count
                stalled_worker = row.worker_id
                if stalled_count < max_stalled_count:
                    result = session.exec(
                        sa_update(QueueTask)
                        .where(
                            col(QueueTask.id) == row.id,
                            col(QueueTask.status) == TaskStatus.ACTIVE.value,
                            col(QueueTask.lease_token) == row.lease_token,
                        )
                        .values(
                            status=TaskStatus.WAITING.value,
                            stalled_count=stalled_count + 1,
                            lease_token=None,
                            locked_until=None,
                            worker_id=None,
                            run_after=to_db_datetime(swept_at),
                            updated_at=to_db_datetime(swept_at),
                        ),
                    )
                    if result.rowcount != 1:
                        continue
                    add_task_event(
                        session,
                        task_id=row.task_id,
                        event_type="stalled_requeued",
                        status_from=TaskStatus.ACTIVE,
                        status_to=TaskStatus.WAITING,
                        details={
                            "worker_id": stalled_worker,
                            "stalled_count": stalled_count + 1,
                        },
                        now=swept_at,
                    )
                    recovery.requeued += 1
                    continue

                outcome = self._record_failure(
                    session,
                    row=row,
                    error=(
                        f"Lease expired after {stalled_count + 1} stalls "
                        f"(limit {max_stalled_count})"
                    ),
                    failure_class=FailureClass.STALLED,
                    now=swept_at,
                )
                if outcome is not NackOutcome.LEASE_LOST:
                    recovery.failed += 1
            session.commit()

        if recovery.requeued or recovery.failed:
            logger.warning(
                "Recovered stalled tasks in %s: requeued=%d failed=%d",
                queue_name.value,
                recovery.requeued,
                recovery.failed,
            )
        return recovery

    def get_task(self, task_id: str) -> TaskView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(QueueTask).where(QueueTask.task_id == task_id),
            ).one_or_none()
            return _to_task_view(row) if row is not None else None

    def list_tasks(
        self,
        *,
        queue_name: QueueName | None = None,
        status: TaskStatus | None = None,
        limit: int = 50,
    ) -> list[TaskView]:
        """List tasks newest first."""

        with Session(self.engine) as session:
            statement = select(QueueTask)
            if queue_name is not None:
                statement = statement.where(QueueTask.queue_name == queue_name.value)
            if status is not None:
                statement = statement.where(QueueTask.status == status.value)
            rows = session.exec(
                statement.order_by(col(QueueTask.id).desc()).limit(page_limit(limit)),
            ).all()
            return [_to_task_view(row) for row in rows]

    def task_events(self, task_id: str) -> list[TaskEventView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(QueueTaskEvent)
                .where(QueueTaskEvent.task_id == task_id)
                .order_by(col(QueueTaskEvent.id).asc()),
            ).all()
            return [
                TaskEventView(
                    event_id=row.id or 0,
                    task_id=row.task_id,
                    event_type=row.event_type,
                    status_from=TaskStatus(row.status_from) if row.status_from else None,
                    status_to=TaskStatus(row.status_to) if row.status_to else None,
                    created_at=to_utc_aware(row.created_at),
                    details=json.loads(row.details_json) if row.details_json else {},
                )
                for row in rows
            ]

    def stats(self, queue_name: QueueName, *, now: datetime | None = None) -> QueueStats:
        """Count tasks per state; waiting tasks with a future run_after are delayed."""

        now_db = to_db_datetime(now or utc_now())
        stats = QueueStats(queue_name=queue_name)
        with Session(self.engine) as session:
            rows = session.exec(
                select(QueueTask.status, func.count())
                .where(QueueTask.queue_name == queue_name.value)
                .group_by(QueueTask.status),
            ).all()
            delayed = int(
                session.exec(
                    select(func.count())
                    .select_from(QueueTask)
                    .where(
                        col(QueueTask.queue_name) == queue_name.value,
                        col(QueueTask.status) == TaskStatus.WAITING.value,
                        col(QueueTask.run_after) > now_db,
                    ),
                ).one(),
            )
        counts = {status: int(count) for status, count in rows}
        stats.delayed = delayed
        stats.waiting = counts.get(TaskStatus.WAITING.value, 0) - delayed
        stats.active = counts.get(TaskStatus.ACTIVE.value, 0)
        stats.completed = counts.get(TaskStatus.COMPLETED.value, 0)
        stats.dead_lettered = counts.get(TaskStatus.DEAD_LETTERED.value, 0)
        return stats

    def clean_completed(
        self,
        *,
        older_than: datetime,
        queue_name: QueueName | None = None,
    ) -> int:
        """Delete completed tasks that finished before the cutoff."""

        with Session(self.engine) as session:
            statement = select(QueueTask.id).where(
                QueueTask.status == TaskStatus.COMPLETED.value,
                col(QueueTask.finished_at) < to_db_datetime(older_than),
            )
            if queue_name is not None:
                statement = statement.where(QueueTask.queue_name == queue_name.value)
            task_ids = list(session.exec(statement).all())
            if not task_ids:
                return 0
            session.exec(delete(QueueTask).where(col(QueueTask.id).in_(task_ids)))
            session.commit()
        logger.info("Removed %d completed tasks older than %s", len(task_ids), older_than)
        return len(task_ids)

    def list_dead_letters(
        self,
        *,
        queue_name: QueueName | None,
        limit: int,
    ) -> list[DeadLetterEntry]:
        """Dead-lettered tasks, most recently failed first."""

        limit = page_limit(limit)
        if queue_name is not None:
            limit = min(limit, self.settings.queue(queue_name).failed_retention)
        with Session(self.engine) as session:
            statement = select(QueueTask).where(
                QueueTask.status == TaskStatus.DEAD_LETTERED.value,
            )
            if queue_name is not None:
                statement = statement.where(QueueTask.queue_name == queue_name.value)
            rows = session.exec(
                statement.order_by(
                    col(QueueTask.finished_at).desc(),
                    col(QueueTask.id).desc(),
                ).limit(limit),
            ).all()
            return [_to_dead_letter_entry(row) for row in rows]

    def retry_dead_letters(
        self,
        *,
        queue_name: QueueName,
        task_ids: list[str] | None,
    ) -> list[str]:
        """Make dead-lettered tasks claimable again with a fresh attempt budget."""

        now = utc_now()
        retried: list[str] = []
        with Session(self.engine) as session:
            for row in self._dead_letter_rows(session, queue_name=queue_name, task_ids=task_ids):
                previous: dict[str, object] = {
                    "previous_attempts": row.attempts_made,
                    "previous_reason": row.failed_reason,
                }
                result = session.exec(
                    sa_update(QueueTask)
                    .where(
                        col(QueueTask.id) == row.id,
                        col(QueueTask.status) == TaskStatus.DEAD_LETTERED.value,
                    )
                    .values(
                        status=TaskStatus.WAITING.value,
                        attempts_made=0,
                        stalled_count=0,
                        run_after=to_db_datetime(now),
                        lease_token=None,
                        locked_until=None,
                        worker_id=None,
                        failure_class=None,
                        failed_reason=None,
                        finished_at=None,
                        updated_at=to_db_datetime(now),
                    ),
                )
                if result.rowcount != 1:
                    continue
                add_task_event(
                    session,
                    task_id=row.task_id,
                    event_type="manual_retry",
                    status_from=TaskStatus.DEAD_LETTERED,
                    status_to=TaskStatus.WAITING,
                    details=previous,
                    now=now,
                )
                retried.append(row.task_id)
            session.commit()
        return retried

    def remove_dead_letters(
        self,
        *,
        queue_name: QueueName,
        task_ids: list[str] | None,
    ) -> list[str]:
        """Permanently delete dead-lettered tasks."""

        with Session(self.engine) as session:
            removed = [
                row.task_id
                for row in self._dead_letter_rows(session, queue_name=queue_name, task_ids=task_ids)
            ]
            if not removed:
                return []
            session.exec(
                delete(QueueTask).where(
                    col(QueueTask.task_id).in_(removed),
                    col(QueueTask.status) == TaskStatus.DEAD_LETTERED.value,
                ),
            )
            session.commit()
        return removed

    def _dead_letter_rows(
        self,
        session: Session,
        *,
        queue_name: QueueName,
        task_ids: list[str] | None,
    ) -> list[QueueTask]:
        statement = select(QueueTask).where(
            QueueTask.queue_name == queue_name.value,
            QueueTask.status == TaskStatus.DEAD_LETTERED.value,
        )
        if task_ids is not None:
            statement = statement.where(col(QueueTask.task_id).in_(task_ids))
        return list(session.exec(statement.order_by(col(QueueTask.id).asc())).all())

    def _record_failure(
        self,
        session: Session,
        *,
        row: QueueTask,
        error: str,
        failure_class: FailureClass,
        now: datetime,
    ) -> NackOutcome:
        attempts_made = row.attempts_made + 1
        retryable = (
            failure_class is not FailureClass.NON_RETRYABLE and attempts_made < row.max_attempts
        )
        values: dict[str, object] = {
            "attempts_made": attempts_made,
            "lease_token": None,
            "locked_until": None,
            "failure_class": failure_class.value,
            "failed_reason": error,
            "updated_at": to_db_datetime(now),
        }
        if retryable:
            delay = retry_delay_seconds(
                base_seconds=row.backoff_base_seconds,
                attempts_made=attempts_made,
            )
            values.update(
                status=TaskStatus.WAITING.value,
                run_after=to_db_datetime(now + timedelta(seconds=delay)),
                stalled_count=0,
                worker_id=None,
            )
            status_to = TaskStatus.WAITING
            outcome = NackOutcome.RETRY_SCHEDULED
            details: dict[str, object] = {"delay_seconds": delay}
        else:
            values.update(
                status=TaskStatus.DEAD_LETTERED.value,
                finished_at=to_db_datetime(now),
            )
            status_to = TaskStatus.DEAD_LETTERED
            outcome = NackOutcome.DEAD_LETTERED
            details = {}

        result = session.exec(
            sa_update(QueueTask)
            .where(
                col(QueueTask.id) == row.id,
                col(QueueTask.status) == TaskStatus.ACTIVE.value,
                col(QueueTask.lease_token) == row.lease_token,
            )
            .values(**values),
        )
        if result.rowcount != 1:
            return NackOutcome.LEASE_LOST

        details.update(
            {
                "attempts_made": attempts_made,
                "max_attempts": row.max_attempts,
                "failure_class": failure_class.value,
                "error": error,
            },
        )
        add_task_event(
            session,
            task_id=row.task_id,
            event_type=outcome.value,
            status_from=TaskStatus.ACTIVE,
            status_to=status_to,
            details=details,
            now=now,
        )
        if outcome is NackOutcome.DEAD_LETTERED:
            logger.error(
                "Task %s in %s dead-lettered after %d attempts: %s",
                row.task_id,
                row.queue_name,
                attempts_made,
                error,
            )
        else:
            logger.warning(
                "Task %s in %s failed (attempt %d/%d), retrying: %s",
                row.task_id,
                row.queue_name,
                attempts_made,
                row.max_attempts,
                error,
            )
        return outcome

    def _prune_completed(self, session: Session, *, queue_name: QueueName, retention: int) -> None:
        stale_ids = list(
            session.exec(
                select(QueueTask.id)
                .where(
                    QueueTask.queue_name == queue_name.value,
                    QueueTask.status == TaskStatus.COMPLETED.value,
                )
                .order_by(col(QueueTask.finished_at).desc(), col(QueueTask.id).desc())
                .offset(retention),
            ).all(),
        )
        if stale_ids:
            session.exec(delete(QueueTask).where(col(QueueTask.id).in_(stale_ids)))


def _to_task_view(row: QueueTask) -> TaskView:
    return TaskView(
        task_id=row.task_id,
        queue_name=QueueName(row.queue_name),
        raw_payload=row.payload_json,
        priority=row.priority,
        status=TaskStatus(row.status),
        attempts_made=row.attempts_made,
        max_attempts=row.max_attempts,
        backoff_base_seconds=row.backoff_base_seconds,
        run_after=to_utc_aware(row.run_after),
        stalled_count=row.stalled_count,
        lease_token=row.lease_token,
        locked_until=to_utc_aware_or_none(row.locked_until),
        worker_id=row.worker_id,
        failure_class=FailureClass(row.failure_class) if row.failure_class is not None else None,
        failed_reason=row.failed_reason,
        enqueued_at=to_utc_aware(row.enqueued_at),
        started_at=to_utc_aware_or_none(row.started_at),
        finished_at=to_utc_aware_or_none(row.finished_at),
        updated_at=to_utc_aware(row.updated_at),
    )


def _to_dead_letter_entry(row: QueueTask) -> DeadLetterEntry:
    try:
        payload = json.loads(row.payload_json)
    except json.JSONDecodeError:
        payload = {"raw": row.payload_json}
    if not isinstance(payload, dict):
        payload = {"raw": payload}
    return DeadLetterEntry(
        queue_name=QueueName(row.queue_name),
        task_id=row.task_id,
        payload=payload,
        failed_reason=row.failed_reason or "",
        attempts_made=row.attempts_made,
        enqueued_at=to_utc_aware(row.enqueued_at),
        failed_at=to_utc_aware(row.finished_at or row.updated_at),
    )

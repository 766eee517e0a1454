"""Stage notification tasks inside the transaction that causes them."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlmodel import Session

from jobflow.config import Settings
from jobflow.queue.models import QueueName
from jobflow.queue.payloads import NotificationPayload
from jobflow.queue.repository import add_task
from jobflow.storage.sqlmodel_models import AppUser, Job

logger = logging.getLogger(__name__)

UNASSIGNED = "unassigned"


def stage_notification(  # noqa: PLR0913
    session: Session,
    *,
    user_id: str,
    event_type: str,
    data: dict[str, Any],
    settings: Settings,
    now: datetime,
) -> str | None:
    """Add a notification task for ``user_id`` to the open transaction.

    Returns the task id, or None when the recipient is unknown or inactive.
    """

    user = session.get(AppUser, user_id)
    if user is None or not user.is_active:
        logger.warning("Skipping %s notification: no active user %s", event_type, user_id)
        return None
    payload = NotificationPayload(
        user_id=user.user_id,
        address=user.email,
        event_type=event_type,
        data={**data, "recipient_name": user.display_name},
    )
    row = add_task(
        session,
        payload,
        settings=settings.queue(QueueName.NOTIFICATIONS),
        now=now,
    )
    return row.task_id


def job_notification_data(
    session: Session,
    job: Job,
    *,
    previous_status: str | None = None,
) -> dict[str, Any]:
    """Template fields describing a job and the people on it."""

    client = session.get(AppUser, job.client_id)
    worker = session.get(AppUser, job.worker_id) if job.worker_id else None
    data: dict[str, Any] = {
        "job_id": job.job_id,
        "job_title": job.title,
        "category": job.category,
        "priority": job.priority,
        "status": job.status,
        "client_name": client.display_name if client is not None else job.client_id,
        "worker_name": worker.display_name if worker is not None else UNASSIGNED,
    }
    if previous_status is not None:
        data["previous_status"] = previous_status
    return data

"""Notification processor: render, deliver, and record in-app."""

from __future__ import annotations

import logging

from jobflow.collaborators.base import NotificationDelivery, OutgoingMessage
from jobflow.notifications.store import NotificationStore
from jobflow.notifications.templates import render_notification
from jobflow.queue.models import TaskView
from jobflow.queue.payloads import NotificationPayload

logger = logging.getLogger(__name__)


class NotificationProcessor:
    def __init__(self, *, store: NotificationStore, delivery: NotificationDelivery) -> None:
        self.store = store
        self.delivery = delivery

    def __call__(self, task: TaskView, payload: NotificationPayload) -> dict[str, object]:
        rendered = render_notification(payload.event_type, payload.data)
        self.delivery.send(
            OutgoingMessage(
                user_id=payload.user_id,
                address=payload.address,
                event_type=payload.event_type,
                subject=rendered.subject,
                body=rendered.body,
            ),
        )
        notification = self.store.record(
            user_id=payload.user_id,
            event_type=payload.event_type,
            subject=rendered.subject,
            body=rendered.body,
            data=payload.data,
            notification_id=task.task_id,
        )
        logger.info(
            "Sent %s notification to %s",
            payload.event_type,
            payload.user_id,
        )
        return {
            "notification_id": notification.notification_id,
            "event_type": payload.event_type,
            "user_id": payload.user_id,
        }

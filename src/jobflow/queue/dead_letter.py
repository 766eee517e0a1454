"""Admin remediation surface for dead-lettered tasks."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from jobflow.errors import ValidationError
from jobflow.queue.models import DeadLetterEntry, QueueName
from jobflow.queue.repository import QueueRepository

logger = logging.getLogger(__name__)

MAX_LIST_LIMIT = 100
DEFAULT_LIST_LIMIT = 50


@dataclass(slots=True)
class DeadLetterResult:
    """Outcome of a bulk retry or removal."""

    queue_name: QueueName
    task_ids: list[str]

    @property
    def count(self) -> int:
        return len(self.task_ids)


class DeadLetterAdmin:
    """Inspect, retry, and permanently remove dead-lettered tasks."""

    def __init__(self, repository: QueueRepository) -> None:
        self.repository = repository

    def list_failed(
        self,
        *,
        queue_name: str | None = None,
        limit: int = DEFAULT_LIST_LIMIT,
    ) -> list[DeadLetterEntry]:
        """List dead letters for one queue, or across all queues when none is given."""

        if limit <= 0:
            raise ValidationError("limit must be > 0")
        queue = QueueName.parse(queue_name) if queue_name else None
        return self.repository.list_dead_letters(
            queue_name=queue,
            limit=min(limit, MAX_LIST_LIMIT),
        )

    def retry_failed(
        self,
        *,
        queue_name: str | None,
        task_ids: list[str] | None = None,
        retry_all: bool = False,
    ) -> DeadLetterResult:
        queue, selected = _resolve_scope(queue_name, task_ids=task_ids, select_all=retry_all)
        retried = self.repository.retry_dead_letters(queue_name=queue, task_ids=selected)
        logger.info("Retried %d dead-lettered tasks in %s", len(retried), queue.value)
        return DeadLetterResult(queue_name=queue, task_ids=retried)

    def remove_failed(
        self,
        *,
        queue_name: str | None,
        task_ids: list[str] | None = None,
        remove_all: bool = False,
    ) -> DeadLetterResult:
        queue, selected = _resolve_scope(queue_name, task_ids=task_ids, select_all=remove_all)
        removed = self.repository.remove_dead_letters(queue_name=queue, task_ids=selected)
        logger.info("Removed %d dead-lettered tasks from %s", len(removed), queue.value)
        return DeadLetterResult(queue_name=queue, task_ids=removed)


def _resolve_scope(
    queue_name: str | None,
    *,
    task_ids: list[str] | None,
    select_all: bool,
) -> tuple[QueueName, list[str] | None]:
    if not queue_name:
        raise ValidationError("Queue name is required")
    queue = QueueName.parse(queue_name)
    ids = [task_id for task_id in (task_ids or []) if task_id.strip()]
    if select_all and ids:
        raise ValidationError("Pass either task ids or the all flag, not both")
    if not select_all and not ids:
        raise ValidationError("Either task ids or the all flag is required")
    return queue, None if select_all else ids

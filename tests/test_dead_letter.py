from __future__ import annotations

from pathlib import Path

import allure
import pytest

from jobflow.errors import UnknownQueue, ValidationError
from jobflow.queue.dead_letter import DeadLetterAdmin
from jobflow.queue.models import FailureClass, QueueName, TaskStatus
from jobflow.queue.payloads import AutoAssignPayload, NotificationPayload
from jobflow.queue.repository import QueueRepository

pytestmark = [
    allure.epic("Task Queue"),
    allure.feature("Dead-Letter Remediation"),
]


def _dead_letter(repository: QueueRepository, payload: object, reason: str) -> str:
    task = repository.enqueue(payload)  # type: ignore[arg-type]
    claimed = repository.claim(task.queue_name, worker_id="w", lease_seconds=30)
    assert claimed is not None
    repository.nack(claimed, error=reason, failure_class=FailureClass.NON_RETRYABLE)
    return task.task_id


def _notification(user_id: str) -> NotificationPayload:
    return NotificationPayload(
        user_id=user_id,
        address=f"{user_id}@example.com",
        event_type="nope",
    )


def _auto_assign(job_id: str) -> AutoAssignPayload:
    return AutoAssignPayload(job_id=job_id, title="Logo", description="A logo", category="design")


def test_list_failed_shows_newest_first_with_details(db_path: Path) -> None:
    repository = QueueRepository(db_path)
    first = _dead_letter(repository, _notification("a"), "TemplateRenderError: first")
    second = _dead_letter(repository, _notification("b"), "TemplateRenderError: second")
    admin = DeadLetterAdmin(repository)

    entries = admin.list_failed(queue_name="notifications")

    assert [entry.task_id for entry in entries] == [second, first]
    entry = entries[0]
    assert entry.queue_name is QueueName.NOTIFICATIONS
    assert entry.failed_reason == "TemplateRenderError: second"
    assert entry.attempts_made == 1
    assert entry.payload["user_id"] == "b"
    assert entry.failed_at >= entry.enqueued_at
    repository.close()


def test_list_failed_across_queues_and_limit(db_path: Path) -> None:
    repository = QueueRepository(db_path)
    _dead_letter(repository, _notification("a"), "boom")
    _dead_letter(repository, _auto_assign("job-1"), "boom")
    _dead_letter(repository, _auto_assign("job-2"), "boom")
    admin = DeadLetterAdmin(repository)

    assert len(admin.list_failed()) == 3
    assert len(admin.list_failed(queue_name="auto-assign")) == 2
    assert len(admin.list_failed(limit=1)) == 1
    with pytest.raises(ValidationError, match="limit must be > 0"):
        admin.list_failed(limit=0)
    with pytest.raises(UnknownQueue, match="Unknown queue 'emails'"):
        admin.list_failed(queue_name="emails")
    repository.close()


def test_retry_failed_resets_attempts_and_makes_claimable(db_path: Path) -> None:
    repository = QueueRepository(db_path)
    task_id = _dead_letter(repository, _notification("a"), "boom")
    other = _dead_letter(repository, _notification("b"), "boom")
    admin = DeadLetterAdmin(repository)

    result = admin.retry_failed(queue_name="notifications", task_ids=[task_id])

    assert result.task_ids == [task_id]
    assert result.count == 1
    task = repository.get_task(task_id)
    assert task is not None
    assert task.status is TaskStatus.WAITING
    assert task.attempts_made == 0
    assert task.failed_reason is None
    untouched = repository.get_task(other)
    assert untouched is not None
    assert untouched.status is TaskStatus.DEAD_LETTERED

    claimed = repository.claim(QueueName.NOTIFICATIONS, worker_id="w", lease_seconds=30)
    assert claimed is not None
    assert claimed.task_id == task_id
    events = repository.task_events(task_id)
    manual = [event for event in events if event.event_type == "manual_retry"]
    assert manual[0].details == {"previous_attempts": 1, "previous_reason": "boom"}
    repository.close()


def test_retry_all_only_touches_named_queue(db_path: Path) -> None:
    repository = QueueRepository(db_path)
    notification = _dead_letter(repository, _notification("a"), "boom")
    first = _dead_letter(repository, _auto_assign("job-1"), "boom")
    second = _dead_letter(repository, _auto_assign("job-2"), "boom")
    admin = DeadLetterAdmin(repository)

    result = admin.retry_failed(queue_name="auto-assign", retry_all=True)

    assert sorted(result.task_ids) == sorted([first, second])
    assert admin.list_failed(queue_name="auto-assign") == []
    assert [entry.task_id for entry in admin.list_failed()] == [notification]
    repository.close()


def test_remove_failed_deletes_permanently(db_path: Path) -> None:
    repository = QueueRepository(db_path)
    task_id = _dead_letter(repository, _notification("a"), "boom")
    admin = DeadLetterAdmin(repository)

    result = admin.remove_failed(queue_name="notifications", remove_all=True)

    assert result.task_ids == [task_id]
    assert repository.get_task(task_id) is None
    assert repository.task_events(task_id) == []
    repository.close()


def test_write_operations_require_queue_and_exactly_one_selector(db_path: Path) -> None:
    repository = QueueRepository(db_path)
    admin = DeadLetterAdmin(repository)

    with pytest.raises(ValidationError, match="Queue name is required"):
        admin.retry_failed(queue_name=None, retry_all=True)
    with pytest.raises(ValidationError, match="Either task ids or the all flag is required"):
        admin.remove_failed(queue_name="notifications")
    with pytest.raises(ValidationError, match="not both"):
        admin.retry_failed(queue_name="notifications", task_ids=["x"], retry_all=True)
    repository.close()


def test_retry_ignores_tasks_that_are_not_dead_lettered(db_path: Path) -> None:
    repository = QueueRepository(db_path)
    waiting = repository.enqueue(_notification("a"))
    admin = DeadLetterAdmin(repository)

    result = admin.retry_failed(queue_name="notifications", task_ids=[waiting.task_id])

    assert result.count == 0
    repository.close()

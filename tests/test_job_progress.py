from __future__ import annotations

import allure
import pytest

from jobflow.errors import ConcurrentModification, Forbidden, ValidationError
from jobflow.lifecycle.models import JobCreate, JobStatus, Role
from jobflow.lifecycle.service import JobService
from jobflow.processors.registry import Repositories
from jobflow.queue.models import QueueName
from jobflow.queue.payloads import decode_payload

pytestmark = [
    allure.epic("Job Lifecycle"),
    allure.feature("Progress Updates"),
]


def _assigned_job(service: JobService) -> str:
    job_id = service.create_job(
        JobCreate(
            client_id="client-1",
            title="Poster design",
            description="A poster for the spring sale.",
            category="design",
        ),
    ).job.job_id
    service.assign(job_id, "worker-1", actor_id="admin-1")
    return job_id


def test_first_update_starts_assigned_job_and_notifies_client(
    marketplace: Repositories,
    service: JobService,
) -> None:
    job_id = _assigned_job(service)

    result = service.add_progress(job_id, worker_id="worker-1", message=" Sketches done ", percent=40)

    assert result.changed is True
    assert result.previous_status is JobStatus.ASSIGNED
    job = result.job
    assert job.status is JobStatus.IN_PROGRESS
    assert job.started_at is not None
    assert job.progress_percent == 40
    assert job.progress_message == "Sketches done"
    assert job.progress_updated_at is not None
    (task_id,) = result.notification_task_ids
    task = marketplace.queue.get_task(task_id)
    assert task is not None
    payload = decode_payload(QueueName.NOTIFICATIONS, task.raw_payload)
    assert payload.user_id == "client-1"
    assert payload.event_type == "job_status_change"
    assert payload.data["progress_percent"] == 40
    assert payload.data["progress_message"] == "Sketches done"
    assert payload.data["status"] == "in_progress"
    assert payload.data["worker_name"] == "Wes"


def test_later_update_keeps_status_and_previous_percent(
    marketplace: Repositories,
    service: JobService,
) -> None:
    job_id = _assigned_job(service)
    service.add_progress(job_id, worker_id="worker-1", message="Sketches done", percent=40)

    result = service.add_progress(job_id, worker_id="worker-1", message="Colour pass underway")

    assert result.changed is False
    assert result.previous_status is JobStatus.IN_PROGRESS
    assert result.job.status is JobStatus.IN_PROGRESS
    assert result.job.progress_percent == 40
    assert result.job.progress_message == "Colour pass underway"
    assert len(result.notification_task_ids) == 1


def test_progress_is_validated_before_anything_is_written(
    marketplace: Repositories,
    service: JobService,
) -> None:
    job_id = _assigned_job(service)

    with pytest.raises(ValidationError, match="between 0 and 100"):
        service.add_progress(job_id, worker_id="worker-1", message="Too far", percent=101)
    with pytest.raises(ValidationError, match="message is required"):
        service.add_progress(job_id, worker_id="worker-1", message="  ", percent=10)
    with pytest.raises(Forbidden, match="not assigned"):
        service.add_progress(job_id, worker_id="worker-2", message="Not mine", percent=10)

    job = marketplace.jobs.require_job(job_id)
    assert job.status is JobStatus.ASSIGNED
    assert job.progress_updated_at is None


def test_progress_needs_an_open_job(marketplace: Repositories, service: JobService) -> None:
    job_id = _assigned_job(service)
    service.transition(job_id, JobStatus.IN_PROGRESS, actor_id="worker-1", role=Role.WORKER)
    service.transition(job_id, JobStatus.REVIEW, actor_id="worker-1", role=Role.WORKER)

    with pytest.raises(ValidationError, match="assigned or in-progress"):
        service.add_progress(job_id, worker_id="worker-1", message="One more tweak", percent=95)


def test_stale_expected_status_rolls_back_progress(
    marketplace: Repositories,
    service: JobService,
) -> None:
    job_id = _assigned_job(service)
    service.transition(job_id, JobStatus.IN_PROGRESS, actor_id="worker-1", role=Role.WORKER)
    before = marketplace.queue.stats(QueueName.NOTIFICATIONS).total

    with pytest.raises(ConcurrentModification):
        marketplace.jobs.record_progress(
            job_id,
            expected=JobStatus.ASSIGNED,
            worker_id="worker-1",
            message="Racing update",
            percent=10,
        )

    job = marketplace.jobs.require_job(job_id)
    assert job.progress_message is None
    assert marketplace.queue.stats(QueueName.NOTIFICATIONS).total == before

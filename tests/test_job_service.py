from __future__ import annotations

import threading

import allure
import pytest

from jobflow.accounts.models import UserCreate
from jobflow.collaborators.base import QaVerdict
from jobflow.errors import (
    ConcurrentModification,
    Forbidden,
    InsufficientCredits,
    InvalidTransition,
    JobNotFound,
    QaRejected,
    UserNotFound,
    ValidationError,
)
from jobflow.lifecycle.models import JobCreate, JobStatus, Role
from jobflow.lifecycle.service import SYSTEM_ACTOR_ID, JobService
from jobflow.lifecycle.transitions import side_effects
from jobflow.processors.registry import Repositories
from jobflow.queue.models import QueueName, TaskStatus
from jobflow.queue.payloads import decode_payload

pytestmark = [
    allure.epic("Job Lifecycle"),
    allure.feature("Job Service"),
]


def _job(client_id: str = "client-1", category: str = "design", priority: str = "standard"):
    return JobCreate(
        client_id=client_id,
        title="Poster design",
        description="A poster for the spring sale.",
        category=category,
        priority=priority,
    )


def _notification_payloads(repositories: Repositories, task_ids: list[str]) -> list[tuple[str, str]]:
    payloads = []
    for task_id in task_ids:
        task = repositories.queue.get_task(task_id)
        assert task is not None
        payload = decode_payload(QueueName.NOTIFICATIONS, task.raw_payload)
        payloads.append((payload.user_id, payload.event_type))
    return sorted(payloads)


def _start(service: JobService, job_id: str) -> None:
    service.assign(job_id, "worker-1", actor_id="admin-1")
    service.transition(job_id, JobStatus.IN_PROGRESS, actor_id="worker-1", role=Role.WORKER)


def test_create_job_debits_rollover_first_and_queues_analysis(
    marketplace: Repositories,
    service: JobService,
) -> None:
    marketplace.accounts.add_user(
        UserCreate(user_id="client-2", display_name="Rae", email="rae@example.com", role=Role.CLIENT),
    )
    marketplace.accounts.credit("client-2", standard=5, rollover=1)

    created = service.create_job(_job("client-2"))

    assert created.rollover_debit == 1
    assert created.standard_debit == 1
    assert created.job.status is JobStatus.PENDING
    assert created.job.credits_charged == 2
    balance = marketplace.accounts.get_balance("client-2")
    assert balance.rollover_credits == 0
    assert balance.standard_credits == 4
    assert balance.total_jobs == 1
    assert balance.total_spent == 2
    task = marketplace.queue.get_task(created.analysis_task_id)
    assert task is not None
    assert task.queue_name is QueueName.JOB_ANALYSIS
    assert task.priority == 10
    payload = decode_payload(QueueName.JOB_ANALYSIS, task.raw_payload)
    assert payload.job_id == created.job.job_id
    assert payload.client_id == "client-2"


def test_create_job_with_insufficient_credits_changes_nothing(
    marketplace: Repositories,
    service: JobService,
) -> None:
    marketplace.accounts.add_user(
        UserCreate(user_id="client-2", display_name="Rae", email="rae@example.com", role=Role.CLIENT),
    )
    marketplace.accounts.credit("client-2", standard=2)

    with pytest.raises(InsufficientCredits) as raised:
        service.create_job(_job("client-2", category="video", priority="rush"))

    assert raised.value.required == 6
    assert raised.value.shortfall == 4
    assert marketplace.jobs.list_jobs(client_id="client-2") == []
    assert marketplace.accounts.get_balance("client-2").standard_credits == 2
    assert marketplace.queue.stats(QueueName.JOB_ANALYSIS).total == 0


def test_create_job_validates_request(marketplace: Repositories, service: JobService) -> None:
    with pytest.raises(ValidationError, match="title"):
        service.create_job(
            JobCreate(client_id="client-1", title=" ", description="x", category="design"),
        )
    with pytest.raises(UserNotFound):
        service.create_job(_job("worker-1"))


def test_concurrent_creations_never_overspend(marketplace: Repositories) -> None:
    marketplace.accounts.add_user(
        UserCreate(user_id="client-2", display_name="Rae", email="rae@example.com", role=Role.CLIENT),
    )
    marketplace.accounts.credit("client-2", standard=6)
    outcomes: list[str] = []
    lock = threading.Lock()

    def _create() -> None:
        repositories = Repositories.open(marketplace.jobs.settings)
        try:
            JobService(jobs=repositories.jobs, accounts=repositories.accounts).create_job(
                _job("client-2"),
            )
            outcome = "created"
        except InsufficientCredits:
            outcome = "refused"
        finally:
            repositories.close()
        with lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=_create) for _ in range(5)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert sorted(outcomes) == ["created", "created", "created", "refused", "refused"]
    balance = marketplace.accounts.get_balance("client-2")
    assert balance.standard_credits == 0
    assert balance.total_spent == 6
    assert len(marketplace.jobs.list_jobs(client_id="client-2")) == 3


def test_full_lifecycle_pays_worker_and_notifies_parties(
    marketplace: Repositories,
    service: JobService,
) -> None:
    job_id = service.create_job(_job()).job.job_id

    assigned = service.assign(job_id, "worker-1", actor_id="admin-1")
    assert _notification_payloads(marketplace, assigned.notification_task_ids) == [
        ("worker-1", "job_assigned"),
    ]
    started = service.transition(
        job_id,
        JobStatus.IN_PROGRESS,
        actor_id="worker-1",
        role=Role.WORKER,
    )
    assert started.job.started_at is not None
    assert _notification_payloads(marketplace, started.notification_task_ids) == [
        ("client-1", "job_started"),
    ]
    service.transition(job_id, JobStatus.REVIEW, actor_id="worker-1", role=Role.WORKER)
    service.transition(job_id, JobStatus.REVISION, actor_id="client-1", role=Role.CLIENT)
    service.transition(job_id, JobStatus.IN_PROGRESS, actor_id="worker-1", role=Role.WORKER)
    service.transition(job_id, JobStatus.REVIEW, actor_id="worker-1", role=Role.WORKER)
    completed = service.transition(
        job_id,
        JobStatus.COMPLETED,
        actor_id="client-1",
        role=Role.CLIENT,
    )

    job = completed.job
    assert completed.previous_status is JobStatus.REVIEW
    assert job.status is JobStatus.COMPLETED
    assert job.completed_at is not None
    assert job.worker_earnings == 14.0
    assert job.worker_paid_at is not None
    worker = marketplace.accounts.get_worker("worker-1")
    assert worker is not None
    assert worker.pending_earnings == 14.0
    (task_id,) = completed.notification_task_ids
    task = marketplace.queue.get_task(task_id)
    assert task is not None
    payload = decode_payload(QueueName.NOTIFICATIONS, task.raw_payload)
    assert payload.event_type == "job_completed"
    assert payload.data["earnings"] == 14.0
    assert payload.data["recipient_name"] == "Wes"

    with pytest.raises(InvalidTransition, match="terminal status"):
        service.transition(job_id, JobStatus.CANCELLED, actor_id="admin-1", role=Role.ADMIN)


def test_same_status_request_changes_nothing(
    marketplace: Repositories,
    service: JobService,
) -> None:
    job_id = service.create_job(_job()).job.job_id
    before = marketplace.queue.stats(QueueName.NOTIFICATIONS).total

    result = service.transition(job_id, JobStatus.PENDING, actor_id="client-1", role=Role.CLIENT)

    assert result.changed is False
    assert result.notification_task_ids == []
    assert marketplace.queue.stats(QueueName.NOTIFICATIONS).total == before


def test_cancelling_in_progress_notifies_worker_and_client(
    marketplace: Repositories,
    service: JobService,
) -> None:
    job_id = service.create_job(_job()).job.job_id
    _start(service, job_id)

    result = service.transition(job_id, JobStatus.CANCELLED, actor_id="admin-1", role=Role.ADMIN)

    assert _notification_payloads(marketplace, result.notification_task_ids) == [
        ("client-1", "job_cancelled"),
        ("worker-1", "job_cancelled"),
    ]


def test_ownership_is_enforced(marketplace: Repositories, service: JobService) -> None:
    marketplace.accounts.add_user(
        UserCreate(user_id="client-2", display_name="Rae", email="rae@example.com", role=Role.CLIENT),
    )
    job_id = service.create_job(_job()).job.job_id

    with pytest.raises(Forbidden, match="does not belong"):
        service.transition(job_id, JobStatus.CANCELLED, actor_id="client-2", role=Role.CLIENT)

    service.assign(job_id, "worker-1", actor_id="admin-1")
    with pytest.raises(Forbidden, match="not assigned"):
        service.transition(job_id, JobStatus.IN_PROGRESS, actor_id="worker-2", role=Role.WORKER)
    with pytest.raises(UserNotFound):
        service.transition(job_id, JobStatus.IN_PROGRESS, actor_id="client-1", role=Role.WORKER)


def test_worker_cannot_assign_and_assignment_needs_worker(
    marketplace: Repositories,
    service: JobService,
) -> None:
    job_id = service.create_job(_job()).job.job_id

    with pytest.raises(Forbidden):
        service.transition(job_id, JobStatus.ASSIGNED, actor_id="worker-1", role=Role.WORKER)
    with pytest.raises(ValidationError, match="worker is required"):
        service.transition(job_id, JobStatus.ASSIGNED, actor_id="admin-1", role=Role.ADMIN)
    with pytest.raises(UserNotFound):
        service.assign(job_id, "client-1", actor_id="admin-1")

    result = service.assign(job_id, "worker-2", actor_id=SYSTEM_ACTOR_ID)
    assert result.job.worker_id == "worker-2"


def test_failing_qa_verdict_blocks_submission(
    marketplace: Repositories,
    service: JobService,
) -> None:
    job_id = service.create_job(_job()).job.job_id
    _start(service, job_id)

    with pytest.raises(QaRejected):
        service.transition(
            job_id,
            JobStatus.REVIEW,
            actor_id="worker-1",
            role=Role.WORKER,
            qa_verdict=QaVerdict(passed=False, score=0.4, issues=["low resolution"]),
        )
    assert marketplace.jobs.require_job(job_id).status is JobStatus.IN_PROGRESS

    result = service.transition(
        job_id,
        JobStatus.REVIEW,
        actor_id="worker-1",
        role=Role.WORKER,
        qa_verdict=QaVerdict(passed=True, score=0.9),
    )
    assert result.job.status is JobStatus.REVIEW


def test_stale_expected_status_is_a_concurrent_modification(
    marketplace: Repositories,
    service: JobService,
) -> None:
    job_id = service.create_job(_job()).job.job_id
    service.assign(job_id, "worker-1", actor_id="admin-1")

    with pytest.raises(ConcurrentModification):
        marketplace.jobs.apply_transition(
            job_id,
            expected=JobStatus.PENDING,
            requested=JobStatus.CANCELLED,
            effects=side_effects(JobStatus.PENDING, JobStatus.CANCELLED),
        )
    assert marketplace.jobs.require_job(job_id).status is JobStatus.ASSIGNED


def test_racing_transitions_apply_exactly_once(
    marketplace: Repositories,
    service: JobService,
) -> None:
    job_id = service.create_job(_job()).job.job_id
    _start(service, job_id)
    service.transition(job_id, JobStatus.REVIEW, actor_id="worker-1", role=Role.WORKER)
    outcomes: list[str] = []
    lock = threading.Lock()
    barrier = threading.Barrier(4)

    def _accept() -> None:
        repositories = Repositories.open(marketplace.jobs.settings)
        racing = JobService(jobs=repositories.jobs, accounts=repositories.accounts)
        barrier.wait(timeout=10)
        try:
            racing.transition(job_id, JobStatus.COMPLETED, actor_id="client-1", role=Role.CLIENT)
            outcome = "completed"
        except (ConcurrentModification, InvalidTransition):
            outcome = "lost"
        finally:
            repositories.close()
        with lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=_accept) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert outcomes.count("completed") + outcomes.count("lost") == 4
    worker = marketplace.accounts.get_worker("worker-1")
    assert worker is not None
    assert worker.pending_earnings == 14.0
    completions = [
        task
        for task in marketplace.queue.list_tasks(
            queue_name=QueueName.NOTIFICATIONS,
            status=TaskStatus.WAITING,
            limit=100,
        )
        if decode_payload(QueueName.NOTIFICATIONS, task.raw_payload).event_type == "job_completed"
    ]
    assert len(completions) == 1


def test_flag_notifies_admin_and_is_independent_of_status(
    marketplace: Repositories,
    service: JobService,
) -> None:
    job_id = service.create_job(_job()).job.job_id
    with pytest.raises(Forbidden):
        service.flag(job_id, worker_id="worker-1", reason="Brief unclear")
    _start(service, job_id)

    flagged, task_id = service.flag(job_id, worker_id="worker-1", reason="Brief unclear")

    assert flagged.flagged is True
    assert flagged.flag_reason == "Brief unclear"
    assert flagged.status is JobStatus.IN_PROGRESS
    assert task_id is not None
    assert _notification_payloads(marketplace, [task_id]) == [("admin-1", "job_flagged")]

    resolved = service.resolve_flag(job_id, admin_id="admin-1")
    assert resolved.flagged is False
    assert resolved.flag_resolved_by == "admin-1"
    assert resolved.status is JobStatus.IN_PROGRESS
    with pytest.raises(ValidationError, match="not flagged"):
        service.resolve_flag(job_id, admin_id="admin-1")


def test_flag_requires_reason_and_flaggable_status(
    marketplace: Repositories,
    service: JobService,
) -> None:
    job_id = service.create_job(_job()).job.job_id
    _start(service, job_id)
    service.transition(job_id, JobStatus.REVIEW, actor_id="worker-1", role=Role.WORKER)

    with pytest.raises(ValidationError, match="reason"):
        service.flag(job_id, worker_id="worker-1", reason="  ")
    with pytest.raises(ValidationError, match="Only assigned or in-progress"):
        service.flag(job_id, worker_id="worker-1", reason="Client unresponsive")


def test_unknown_job_is_reported(marketplace: Repositories, service: JobService) -> None:
    with pytest.raises(JobNotFound):
        service.transition("missing", JobStatus.CANCELLED, actor_id="admin-1", role=Role.ADMIN)


def test_inactive_users_receive_no_notifications(
    marketplace: Repositories,
    service: JobService,
) -> None:
    marketplace.accounts.deactivate_user("admin-1")
    marketplace.accounts.deactivate_user("worker-2")
    job_id = service.create_job(_job()).job.job_id
    service.assign(job_id, "worker-1", actor_id=SYSTEM_ACTOR_ID)

    flagged, task_id = service.flag(job_id, worker_id="worker-1", reason="Brief unclear")

    assert flagged.flagged is True
    assert task_id is None
    with pytest.raises(UserNotFound, match="not active"):
        marketplace.accounts.enqueue_welcome("worker-2")
    with pytest.raises(UserNotFound):
        marketplace.accounts.deactivate_user("missing")


def test_list_jobs_rejects_non_positive_limit(marketplace: Repositories, service: JobService) -> None:
    service.create_job(_job())

    with pytest.raises(ValidationError, match="limit must be > 0"):
        marketplace.jobs.list_jobs(limit=0)
    assert len(marketplace.jobs.list_jobs(limit=1)) == 1


def test_rush_job_is_analysed_before_earlier_standard_job(
    marketplace: Repositories,
    service: JobService,
) -> None:
    standard = service.create_job(_job(category="social"))
    rush = service.create_job(_job(category="social", priority="rush"))

    rush_task = marketplace.queue.get_task(rush.analysis_task_id)
    assert rush_task is not None
    assert rush_task.priority == 12
    claimed = marketplace.queue.claim(
        QueueName.JOB_ANALYSIS,
        worker_id="analysis-worker",
        lease_seconds=30,
    )
    assert claimed is not None
    assert claimed.task_id == rush.analysis_task_id
    assert claimed.task_id != standard.analysis_task_id

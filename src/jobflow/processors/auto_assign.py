"""Auto-assign processor: pick the best available worker for a pending job."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from jobflow.accounts.models import WorkerView
from jobflow.accounts.repository import AccountRepository
from jobflow.errors import ConcurrentModification, NoEligibleWorker
from jobflow.lifecycle.models import JobStatus
from jobflow.lifecycle.repository import JobRepository
from jobflow.lifecycle.service import SYSTEM_ACTOR_ID, JobService
from jobflow.queue.models import TaskView
from jobflow.queue.payloads import AutoAssignPayload

logger = logging.getLogger(__name__)


def select_worker(
    workers: Sequence[WorkerView],
    *,
    required_skills: Sequence[str],
    open_jobs: dict[str, int],
) -> WorkerView | None:
    """Choose among active, available workers.

    Ranking: most required skills matched, then fewest open jobs, then the
    longest-standing profile, then user id.
    """

    required = {skill.strip().lower() for skill in required_skills if skill.strip()}
    candidates = [worker for worker in workers if worker.is_active and worker.is_available]
    if not candidates:
        return None
    return min(
        candidates,
        key=lambda worker: (
            -len(required.intersection(worker.skills)),
            open_jobs.get(worker.user_id, 0),
            worker.created_at,
            worker.user_id,
        ),
    )


class AutoAssignProcessor:
    """Assign a pending job through the status authority, acting as the system admin."""

    def __init__(
        self,
        *,
        jobs: JobRepository,
        accounts: AccountRepository,
        service: JobService,
    ) -> None:
        self.jobs = jobs
        self.accounts = accounts
        self.service = service

    def __call__(self, task: TaskView, payload: AutoAssignPayload) -> dict[str, object]:
        job = self.jobs.require_job(payload.job_id)
        if job.status is not JobStatus.PENDING:
            logger.info("Job %s is %s, skipping auto-assign", job.job_id, job.status.value)
            return {"job_id": job.job_id, "assigned": False, "status": job.status.value}

        required_skills = list((job.ai_analysis or {}).get("required_skills", []))
        workers = self.accounts.list_workers(eligible_only=True)
        open_jobs = self.jobs.open_job_counts([worker.user_id for worker in workers])
        worker = select_worker(workers, required_skills=required_skills, open_jobs=open_jobs)
        if worker is None:
            raise NoEligibleWorker(f"No available worker for job {job.job_id}")

        try:
            result = self.service.assign(job.job_id, worker.user_id, actor_id=SYSTEM_ACTOR_ID)
        except ConcurrentModification:
            current = self.jobs.require_job(job.job_id)
            if current.status is JobStatus.PENDING:
                raise
            logger.info("Job %s left pending during auto-assign", job.job_id)
            return {"job_id": job.job_id, "assigned": False, "status": current.status.value}

        logger.info(
            "Auto-assigned job %s to %s (task %s)",
            job.job_id,
            worker.user_id,
            task.task_id,
        )
        return {
            "job_id": job.job_id,
            "assigned": True,
            "worker_id": worker.user_id,
            "notification_task_ids": result.notification_task_ids,
        }

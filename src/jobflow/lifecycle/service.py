"""Request-path job operations: creation, authorized transitions, progress, and flags."""

from __future__ import annotations

import logging

from jobflow.accounts.repository import AccountRepository
from jobflow.billing.credits import quote
from jobflow.collaborators.base import QaVerdict
from jobflow.errors import Forbidden, QaRejected, ValidationError
from jobflow.lifecycle.models import (
    FLAGGABLE_JOB_STATUSES,
    JobCreate,
    JobCreated,
    JobStatus,
    JobView,
    Role,
    TransitionResult,
)
from jobflow.lifecycle.repository import JobRepository
from jobflow.lifecycle.transitions import ensure_allowed

logger = logging.getLogger(__name__)

SYSTEM_ACTOR_ID = "system"


class JobService:
    """Validate requests against the transition authority, then persist atomically."""

    def __init__(self, *, jobs: JobRepository, accounts: AccountRepository) -> None:
        self.jobs = jobs
        self.accounts = accounts

    def create_job(self, payload: JobCreate) -> JobCreated:
        """Open a pending job, charging its credit cost.

        Raises:
            ValidationError: Empty title or description, or unknown client.
            InsufficientCredits: Balance does not cover the quoted cost.
        """

        if not payload.title.strip():
            raise ValidationError("Job title must not be empty")
        if not payload.description.strip():
            raise ValidationError("Job description must not be empty")
        self.accounts.require_user(payload.client_id, role=Role.CLIENT)
        ensure_allowed(JobStatus.PENDING, JobStatus.PENDING, Role.CLIENT)

        cost = quote(payload.category, payload.priority)
        logger.debug("Quoted job for %s: %s", payload.client_id, cost.breakdown)
        return self.jobs.create_job(payload, cost=cost.total)

    def transition(  # noqa: PLR0913
        self,
        job_id: str,
        requested: JobStatus,
        *,
        actor_id: str,
        role: Role,
        worker_id: str | None = None,
        qa_verdict: QaVerdict | None = None,
    ) -> TransitionResult:
        """Move a job to ``requested`` on behalf of an actor.

        A same-status request is an allowed no-op. Submitting for review with a
        failing QA verdict is refused before anything is written.

        Raises:
            InvalidTransition: No such edge from the current status.
            Forbidden: Role or ownership does not permit the change.
            QaRejected: Supplied QA verdict failed.
            ConcurrentModification: Job changed status while the request was in flight.
        """

        job = self.jobs.require_job(job_id)
        decision = ensure_allowed(job.status, requested, role)
        if job.status is requested:
            return TransitionResult(job=job, previous_status=job.status, changed=False)

        self._check_actor(job, actor_id=actor_id, role=role)
        if requested is JobStatus.ASSIGNED:
            if worker_id is None:
                raise ValidationError("A worker is required to assign a job")
            self.accounts.require_user(worker_id, role=Role.WORKER)
        elif worker_id is not None:
            raise ValidationError("A worker can only be set when assigning a job")

        if (
            job.status is JobStatus.IN_PROGRESS
            and requested is JobStatus.REVIEW
            and qa_verdict is not None
            and not qa_verdict.passed
        ):
            raise QaRejected(
                f"Deliverables for job {job_id} failed QA (score {qa_verdict.score:.2f})",
            )

        return self.jobs.apply_transition(
            job_id,
            expected=job.status,
            requested=requested,
            effects=decision.effects,
            worker_id=worker_id,
            actor_id=actor_id,
        )

    def assign(self, job_id: str, worker_id: str, *, actor_id: str) -> TransitionResult:
        """Admin assignment of a pending job to a worker."""

        return self.transition(
            job_id,
            JobStatus.ASSIGNED,
            actor_id=actor_id,
            role=Role.ADMIN,
            worker_id=worker_id,
        )

    def add_progress(
        self,
        job_id: str,
        *,
        worker_id: str,
        message: str,
        percent: int | None = None,
    ) -> TransitionResult:
        """Worker posts a progress update; the first one on an assigned job starts it.

        Raises:
            ValidationError: Empty message, percent outside 0..100, or a job
                that is neither assigned nor in progress.
            Forbidden: The job is not assigned to ``worker_id``.
            ConcurrentModification: Job changed while the update was in flight.
        """

        if not message.strip():
            raise ValidationError("A progress message is required")
        if percent is not None and not 0 <= percent <= 100:
            raise ValidationError("Progress percent must be between 0 and 100")
        self.accounts.require_user(worker_id, role=Role.WORKER)
        job = self.jobs.require_job(job_id)
        if job.worker_id != worker_id:
            raise Forbidden(f"Job {job_id} is not assigned to {worker_id}")
        if job.status not in FLAGGABLE_JOB_STATUSES:
            raise ValidationError(
                f"Progress can only be posted on assigned or in-progress jobs (job is {job.status.value})",
            )

        start_effects = None
        if job.status is JobStatus.ASSIGNED:
            start_effects = ensure_allowed(job.status, JobStatus.IN_PROGRESS, Role.WORKER).effects
        return self.jobs.record_progress(
            job_id,
            expected=job.status,
            worker_id=worker_id,
            message=message.strip(),
            percent=percent,
            start_effects=start_effects,
        )

    def flag(self, job_id: str, *, worker_id: str, reason: str) -> tuple[JobView, str | None]:
        """Worker raises a confidence flag on a job they hold; the admin is notified."""

        if not reason.strip():
            raise ValidationError("A reason is required to flag a job")
        self.accounts.require_user(worker_id, role=Role.WORKER)
        job = self.jobs.require_job(job_id)
        if job.worker_id != worker_id:
            raise Forbidden(f"Job {job_id} is not assigned to {worker_id}")
        if job.status not in FLAGGABLE_JOB_STATUSES:
            raise ValidationError(
                f"Only assigned or in-progress jobs can be flagged (job is {job.status.value})",
            )
        flagged, task_id = self.jobs.set_flag(job_id, reason=reason.strip(), worker_id=worker_id)
        logger.info("Job %s flagged by %s", job_id, worker_id)
        return flagged, task_id

    def resolve_flag(self, job_id: str, *, admin_id: str) -> JobView:
        self.accounts.require_user(admin_id, role=Role.ADMIN)
        job = self.jobs.require_job(job_id)
        if not job.flagged:
            raise ValidationError(f"Job {job_id} is not flagged")
        return self.jobs.resolve_flag(job_id, admin_id=admin_id)

    def _check_actor(self, job: JobView, *, actor_id: str, role: Role) -> None:
        if role is Role.ADMIN:
            if actor_id != SYSTEM_ACTOR_ID:
                self.accounts.require_user(actor_id, role=Role.ADMIN)
            return
        self.accounts.require_user(actor_id, role=role)
        if role is Role.CLIENT and job.client_id != actor_id:
            raise Forbidden(f"Job {job.job_id} does not belong to {actor_id}")
        if role is Role.WORKER and job.worker_id != actor_id:
            raise Forbidden(f"Job {job.job_id} is not assigned to {actor_id}")

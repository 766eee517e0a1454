from __future__ import annotations

import allure
import pytest

from jobflow.errors import Forbidden, InvalidTransition
from jobflow.lifecycle.models import JobStatus, Role
from jobflow.lifecycle.transitions import (
    NO_EFFECTS,
    TRANSITION_PERMISSIONS,
    VALID_TRANSITIONS,
    decide,
    ensure_allowed,
    is_valid_transition,
    side_effects,
)

pytestmark = [
    allure.epic("Job Lifecycle"),
    allure.feature("Status Transition Authority"),
]


def test_every_edge_has_explicit_permissions() -> None:
    edges = {
        (current, requested)
        for current, next_statuses in VALID_TRANSITIONS.items()
        for requested in next_statuses
    }
    assert edges == set(TRANSITION_PERMISSIONS)


@pytest.mark.parametrize("status", list(JobStatus))
def test_same_status_is_an_allowed_noop(status: JobStatus) -> None:
    decision = decide(status, status, Role.CLIENT)

    assert decision.allowed
    assert decision.effects == NO_EFFECTS


@pytest.mark.parametrize("terminal", [JobStatus.COMPLETED, JobStatus.CANCELLED])
def test_terminal_statuses_cannot_change(terminal: JobStatus) -> None:
    decision = is_valid_transition(terminal, JobStatus.IN_PROGRESS)

    assert not decision.allowed
    assert not decision.edge_exists
    assert decision.reason == f"{terminal.value} is a terminal status and cannot be changed"


def test_unknown_edge_lists_valid_targets() -> None:
    decision = decide(JobStatus.PENDING, JobStatus.COMPLETED, Role.ADMIN)

    assert not decision.allowed
    assert decision.reason == (
        "Cannot transition from pending to completed. Valid transitions: assigned, cancelled"
    )


def test_client_accepts_work_and_worker_may_not() -> None:
    assert decide(JobStatus.REVIEW, JobStatus.COMPLETED, Role.CLIENT).allowed

    refused = decide(JobStatus.REVIEW, JobStatus.COMPLETED, Role.WORKER)
    assert not refused.allowed
    assert refused.edge_exists
    assert refused.reason == "worker is not allowed to transition from review to completed"


def test_admin_cannot_accept_on_behalf_of_client() -> None:
    assert not decide(JobStatus.REVIEW, JobStatus.COMPLETED, Role.ADMIN).allowed
    assert not decide(JobStatus.REVIEW, JobStatus.REVISION, Role.ADMIN).allowed


def test_only_admin_assigns_pending_jobs() -> None:
    assert decide(JobStatus.PENDING, JobStatus.ASSIGNED, Role.ADMIN).allowed
    assert not decide(JobStatus.PENDING, JobStatus.ASSIGNED, Role.CLIENT).allowed
    assert not decide(JobStatus.PENDING, JobStatus.ASSIGNED, Role.WORKER).allowed


def test_client_may_cancel_only_before_work_starts() -> None:
    assert decide(JobStatus.PENDING, JobStatus.CANCELLED, Role.CLIENT).allowed
    assert decide(JobStatus.ASSIGNED, JobStatus.CANCELLED, Role.CLIENT).allowed
    assert not decide(JobStatus.IN_PROGRESS, JobStatus.CANCELLED, Role.CLIENT).allowed
    assert decide(JobStatus.IN_PROGRESS, JobStatus.CANCELLED, Role.ADMIN).allowed


def test_completion_effects_stamp_notify_worker_and_pay() -> None:
    effects = decide(JobStatus.REVIEW, JobStatus.COMPLETED, Role.CLIENT).effects

    assert effects.stamp == "completed_at"
    assert effects.notify == frozenset({Role.WORKER})
    assert effects.event_type == "job_completed"
    assert effects.compute_earnings


def test_cancelling_active_work_notifies_both_parties() -> None:
    effects = side_effects(JobStatus.IN_PROGRESS, JobStatus.CANCELLED)

    assert effects.notify == frozenset({Role.WORKER, Role.CLIENT})
    assert effects.event_type == "job_cancelled"
    assert side_effects(JobStatus.PENDING, JobStatus.CANCELLED) == NO_EFFECTS


def test_resuming_revision_notifies_client_as_started() -> None:
    effects = side_effects(JobStatus.REVISION, JobStatus.IN_PROGRESS)

    assert effects.event_type == "job_started"
    assert effects.notify == frozenset({Role.CLIENT})
    assert effects.stamp is None


def test_ensure_allowed_distinguishes_missing_edge_from_missing_permission() -> None:
    with pytest.raises(InvalidTransition, match="terminal status"):
        ensure_allowed(JobStatus.COMPLETED, JobStatus.REVISION, Role.ADMIN)
    with pytest.raises(Forbidden, match="client is not allowed"):
        ensure_allowed(JobStatus.IN_PROGRESS, JobStatus.REVIEW, Role.CLIENT)

"""Status transition authority: legal edges, role permissions, and side effects.

Pure functions over typed ``(JobStatus, JobStatus)`` keys. Nothing here touches
storage; callers apply the returned effects atomically with the status write.
"""

from __future__ import annotations

from dataclasses import dataclass

from jobflow.errors import Forbidden, InvalidTransition
from jobflow.lifecycle.models import JobStatus, Role

Edge = tuple[JobStatus, JobStatus]

VALID_TRANSITIONS: dict[JobStatus, tuple[JobStatus, ...]] = {
    JobStatus.PENDING: (JobStatus.ASSIGNED, JobStatus.CANCELLED),
    JobStatus.ASSIGNED: (JobStatus.IN_PROGRESS, JobStatus.CANCELLED),
    JobStatus.IN_PROGRESS: (JobStatus.REVIEW, JobStatus.CANCELLED),
    JobStatus.REVIEW: (JobStatus.COMPLETED, JobStatus.REVISION),
    JobStatus.REVISION: (JobStatus.IN_PROGRESS, JobStatus.CANCELLED),
    JobStatus.COMPLETED: (),
    JobStatus.CANCELLED: (),
}

# Edges missing from this table are admin-only.
TRANSITION_PERMISSIONS: dict[Edge, frozenset[Role]] = {
    (JobStatus.REVIEW, JobStatus.COMPLETED): frozenset({Role.CLIENT}),
    (JobStatus.REVIEW, JobStatus.REVISION): frozenset({Role.CLIENT}),
    (JobStatus.ASSIGNED, JobStatus.IN_PROGRESS): frozenset({Role.WORKER, Role.ADMIN}),
    (JobStatus.IN_PROGRESS, JobStatus.REVIEW): frozenset({Role.WORKER, Role.ADMIN}),
    (JobStatus.REVISION, JobStatus.IN_PROGRESS): frozenset({Role.WORKER, Role.ADMIN}),
    (JobStatus.PENDING, JobStatus.ASSIGNED): frozenset({Role.ADMIN}),
    (JobStatus.PENDING, JobStatus.CANCELLED): frozenset({Role.CLIENT, Role.ADMIN}),
    (JobStatus.ASSIGNED, JobStatus.CANCELLED): frozenset({Role.CLIENT, Role.ADMIN}),
    (JobStatus.IN_PROGRESS, JobStatus.CANCELLED): frozenset({Role.ADMIN}),
    (JobStatus.REVISION, JobStatus.CANCELLED): frozenset({Role.ADMIN}),
}


@dataclass(frozen=True, slots=True)
class TransitionEffects:
    """Side effects owed by a status change.

    ``stamp`` names the job timestamp column set on entry; ``notify`` lists the
    parties that receive an ``event_type`` notification.
    """

    stamp: str | None = None
    notify: frozenset[Role] = frozenset()
    event_type: str | None = None
    compute_earnings: bool = False


NO_EFFECTS = TransitionEffects()

TRANSITION_EFFECTS: dict[Edge, TransitionEffects] = {
    (JobStatus.PENDING, JobStatus.ASSIGNED): TransitionEffects(
        stamp="assigned_at",
        notify=frozenset({Role.WORKER}),
        event_type="job_assigned",
    ),
    (JobStatus.ASSIGNED, JobStatus.IN_PROGRESS): TransitionEffects(
        stamp="started_at",
        notify=frozenset({Role.CLIENT}),
        event_type="job_started",
    ),
    (JobStatus.IN_PROGRESS, JobStatus.REVIEW): TransitionEffects(
        notify=frozenset({Role.CLIENT}),
        event_type="job_submitted",
    ),
    (JobStatus.REVIEW, JobStatus.COMPLETED): TransitionEffects(
        stamp="completed_at",
        notify=frozenset({Role.WORKER}),
        event_type="job_completed",
        compute_earnings=True,
    ),
    (JobStatus.REVIEW, JobStatus.REVISION): TransitionEffects(
        notify=frozenset({Role.WORKER}),
        event_type="job_revision",
    ),
    (JobStatus.REVISION, JobStatus.IN_PROGRESS): TransitionEffects(
        notify=frozenset({Role.CLIENT}),
        event_type="job_started",
    ),
    (JobStatus.PENDING, JobStatus.CANCELLED): NO_EFFECTS,
    (JobStatus.ASSIGNED, JobStatus.CANCELLED): TransitionEffects(
        notify=frozenset({Role.WORKER}),
        event_type="job_cancelled",
    ),
    (JobStatus.IN_PROGRESS, JobStatus.CANCELLED): TransitionEffects(
        notify=frozenset({Role.WORKER, Role.CLIENT}),
        event_type="job_cancelled",
    ),
    (JobStatus.REVISION, JobStatus.CANCELLED): TransitionEffects(
        notify=frozenset({Role.WORKER}),
        event_type="job_cancelled",
    ),
}


@dataclass(frozen=True, slots=True)
class TransitionDecision:
    """Verdict for one requested status change."""

    allowed: bool
    reason: str | None = None
    effects: TransitionEffects = NO_EFFECTS
    edge_exists: bool = True


def is_valid_transition(current: JobStatus, requested: JobStatus) -> TransitionDecision:
    """Check the edge alone, without role permissions."""

    if current is requested:
        return TransitionDecision(allowed=True)

    next_statuses = VALID_TRANSITIONS[current]
    if not next_statuses:
        return TransitionDecision(
            allowed=False,
            reason=f"{current.value} is a terminal status and cannot be changed",
            edge_exists=False,
        )
    if requested not in next_statuses:
        valid = ", ".join(status.value for status in next_statuses)
        return TransitionDecision(
            allowed=False,
            reason=(
                f"Cannot transition from {current.value} to {requested.value}. "
                f"Valid transitions: {valid}"
            ),
            edge_exists=False,
        )
    return TransitionDecision(
        allowed=True,
        effects=TRANSITION_EFFECTS.get((current, requested), NO_EFFECTS),
    )


def decide(current: JobStatus, requested: JobStatus, role: Role) -> TransitionDecision:
    """Whether ``role`` may move a job from ``current`` to ``requested``, and what follows."""

    validity = is_valid_transition(current, requested)
    if not validity.allowed or current is requested:
        return validity

    allowed_roles = TRANSITION_PERMISSIONS.get((current, requested))
    if allowed_roles is None:
        if role is Role.ADMIN:
            return validity
        return TransitionDecision(
            allowed=False,
            reason="Only admins can perform this transition",
        )
    if role not in allowed_roles:
        return TransitionDecision(
            allowed=False,
            reason=(
                f"{role.value} is not allowed to transition from "
                f"{current.value} to {requested.value}"
            ),
        )
    return validity


def ensure_allowed(current: JobStatus, requested: JobStatus, role: Role) -> TransitionDecision:
    """Like :func:`decide` but raise on refusal."""

    decision = decide(current, requested, role)
    if decision.allowed:
        return decision
    reason = decision.reason or "Transition not allowed"
    if not decision.edge_exists:
        raise InvalidTransition(reason)
    raise Forbidden(reason)


def side_effects(current: JobStatus, requested: JobStatus) -> TransitionEffects:
    if current is requested:
        return NO_EFFECTS
    return TRANSITION_EFFECTS.get((current, requested), NO_EFFECTS)

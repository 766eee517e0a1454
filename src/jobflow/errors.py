"""Error taxonomy shared by the request path and queue processors."""

from __future__ import annotations


class JobflowError(Exception):
    """Base class for all domain errors."""


class ValidationError(JobflowError):
    """Bad request or malformed data; never retried."""


class InvalidTransition(ValidationError):
    """Requested status is not reachable from the current status."""


class Forbidden(ValidationError):
    """Edge exists but the actor role may not traverse it."""


class JobNotFound(ValidationError):
    """Referenced job does not exist."""


class UserNotFound(ValidationError):
    """Referenced user does not exist or has the wrong role."""


class MalformedPayload(ValidationError):
    """Task payload does not match the closed payload shape of its queue."""


class TemplateRenderError(ValidationError):
    """Notification template cannot be rendered from the supplied data."""


class QaRejected(ValidationError):
    """Deliverable QA verdict blocks the requested transition."""


class UnknownQueue(ValidationError):
    """Queue name is not one of the configured queues."""


class InsufficientCredits(JobflowError):
    """Client balance does not cover the job cost."""

    def __init__(self, *, required: int, available: int) -> None:
        self.required = required
        self.available = available
        self.shortfall = max(0, required - available)
        super().__init__(
            f"Not enough credits. Required: {required}, Available: {available}, "
            f"Shortfall: {self.shortfall}",
        )


class ConcurrentModification(JobflowError):
    """Row changed between read and conditional write; caller should reload."""


class DeliveryError(JobflowError):
    """Notification delivery collaborator failed; retryable."""


class NoEligibleWorker(JobflowError):
    """Auto-assignment found no worker to take the job; retryable."""

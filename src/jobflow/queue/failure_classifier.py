"""Deterministic processor failure classification for queue retry policy."""

from __future__ import annotations

from dataclasses import dataclass

from jobflow.errors import DeliveryError, NoEligibleWorker, ValidationError
from jobflow.queue.models import FailureClass

TASK_FAILURE_CLASSIFIER_VERSION = 1


@dataclass(slots=True)
class TaskFailureClassification:
    """Normalized failure classification result."""

    failure_class: FailureClass
    reason_code: str
    error_type: str

    def to_event_details(self) -> dict[str, object]:
        return {
            "classifier_version": TASK_FAILURE_CLASSIFIER_VERSION,
            "reason_code": self.reason_code,
            "error_type": self.error_type,
        }


def classify_processor_failure(error: BaseException) -> TaskFailureClassification:
    """Map a processor exception onto the retry class that governs its task.

    Validation errors can never succeed on redelivery, so they skip the
    remaining attempts. Everything else is presumed transient.
    """

    error_type = type(error).__name__
    if isinstance(error, ValidationError):
        return TaskFailureClassification(
            failure_class=FailureClass.NON_RETRYABLE,
            reason_code="validation_error",
            error_type=error_type,
        )
    if isinstance(error, DeliveryError):
        reason_code = "delivery_failed"
    elif isinstance(error, NoEligibleWorker):
        reason_code = "no_eligible_worker"
    else:
        reason_code = "processor_error"
    return TaskFailureClassification(
        failure_class=FailureClass.TRANSIENT,
        reason_code=reason_code,
        error_type=error_type,
    )


def describe_failure(error: BaseException) -> str:
    """Short human-readable failure reason stored on the task."""

    message = str(error).strip()
    if not message:
        return type(error).__name__
    return f"{type(error).__name__}: {message}"[:2000]

from __future__ import annotations

import allure
import pytest

from jobflow.errors import (
    DeliveryError,
    InvalidTransition,
    MalformedPayload,
    NoEligibleWorker,
    TemplateRenderError,
)
from jobflow.queue.failure_classifier import (
    TASK_FAILURE_CLASSIFIER_VERSION,
    classify_processor_failure,
    describe_failure,
)
from jobflow.queue.models import FailureClass

pytestmark = [
    allure.epic("Task Queue"),
    allure.feature("Failure Classification"),
]


@pytest.mark.parametrize(
    "error",
    [
        MalformedPayload("bad"),
        TemplateRenderError("missing field"),
        InvalidTransition("nope"),
    ],
)
def test_validation_errors_are_non_retryable(error: Exception) -> None:
    result = classify_processor_failure(error)

    assert result.failure_class is FailureClass.NON_RETRYABLE
    assert result.reason_code == "validation_error"
    assert result.error_type == type(error).__name__


@pytest.mark.parametrize(
    ("error", "reason_code"),
    [
        (DeliveryError("HTTP 503"), "delivery_failed"),
        (NoEligibleWorker("nobody"), "no_eligible_worker"),
        (TimeoutError("slow"), "processor_error"),
    ],
)
def test_other_errors_are_transient(error: Exception, reason_code: str) -> None:
    result = classify_processor_failure(error)

    assert result.failure_class is FailureClass.TRANSIENT
    assert result.reason_code == reason_code
    assert result.to_event_details() == {
        "classifier_version": TASK_FAILURE_CLASSIFIER_VERSION,
        "reason_code": reason_code,
        "error_type": type(error).__name__,
    }


def test_describe_failure_prefixes_type_and_truncates() -> None:
    assert describe_failure(RuntimeError("  smtp down ")) == "RuntimeError: smtp down"
    assert describe_failure(RuntimeError()) == "RuntimeError"
    assert len(describe_failure(ValueError("x" * 5000))) == 2000

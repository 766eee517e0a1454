from __future__ import annotations

import json

import allure
import pytest

from jobflow.errors import MalformedPayload
from jobflow.queue.models import QueueName
from jobflow.queue.payloads import (
    AutoAssignPayload,
    NotificationPayload,
    WebhookPayload,
    decode_payload,
    encode_payload,
    payload_queue,
)

pytestmark = [
    allure.epic("Task Queue"),
    allure.feature("Payloads"),
]


def test_encoded_payload_carries_queue_tag() -> None:
    raw = encode_payload(
        NotificationPayload(
            user_id="u-1",
            address="u@example.com",
            event_type="worker_welcome",
            data={"recipient_name": "Ünal"},
        ),
    )

    data = json.loads(raw)
    assert data["kind"] == "notifications"
    assert "Ünal" in raw
    decoded = decode_payload(QueueName.NOTIFICATIONS, raw)
    assert decoded.data == {"recipient_name": "Ünal"}


def test_missing_dict_field_defaults_to_empty() -> None:
    raw = json.dumps(
        {"kind": "webhook-events", "event_id": "evt-1", "event_type": "x", "source": "cli"},
    )

    assert decode_payload(QueueName.WEBHOOK_EVENTS, raw) == WebhookPayload(
        event_id="evt-1",
        event_type="x",
        source="cli",
    )


def test_payload_queue_rejects_foreign_objects() -> None:
    payload = AutoAssignPayload(job_id="j", title="t", description="d", category="c")

    assert payload_queue(payload) is QueueName.AUTO_ASSIGN
    with pytest.raises(MalformedPayload, match="Unsupported payload type"):
        payload_queue({"job_id": "j"})


@pytest.mark.parametrize(
    ("raw", "message"),
    [
        ("{not json", "not valid JSON"),
        ("[]", "must be a JSON object"),
        (json.dumps({"kind": "notifications", "job_id": "j"}), "tagged 'notifications'"),
        (
            json.dumps(
                {"kind": "auto-assign", "job_id": "j", "title": "t", "description": "d"},
            ),
            "Missing field 'category'",
        ),
        (
            json.dumps(
                {
                    "kind": "auto-assign",
                    "job_id": "j",
                    "title": "t",
                    "description": "d",
                    "category": "c",
                    "budget": 10,
                },
            ),
            "Unexpected fields for auto-assign: budget",
        ),
        (
            json.dumps(
                {"kind": "auto-assign", "job_id": " ", "title": "t", "description": "d", "category": "c"},
            ),
            "'job_id' for auto-assign must be a non-empty string",
        ),
        (
            json.dumps(
                {"kind": "auto-assign", "job_id": 7, "title": "t", "description": "d", "category": "c"},
            ),
            "must be a non-empty string",
        ),
    ],
)
def test_decode_rejects_malformed_payloads(raw: str, message: str) -> None:
    with pytest.raises(MalformedPayload, match=message):
        decode_payload(QueueName.AUTO_ASSIGN, raw)


def test_decode_rejects_non_object_body() -> None:
    raw = json.dumps(
        {"kind": "webhook-events", "event_id": "e", "event_type": "x", "source": "s", "body": []},
    )

    with pytest.raises(MalformedPayload, match="'body' for webhook-events must be an object"):
        decode_payload(QueueName.WEBHOOK_EVENTS, raw)

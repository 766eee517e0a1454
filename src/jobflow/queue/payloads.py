"""Closed, per-queue task payload variants and their JSON codec."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field, fields
from typing import Any, ClassVar

from jobflow.errors import MalformedPayload
from jobflow.queue.models import QueueName


@dataclass(frozen=True, slots=True)
class JobAnalysisPayload:
    """Input for the job-analysis processor."""

    queue: ClassVar[QueueName] = QueueName.JOB_ANALYSIS

    job_id: str
    title: str
    description: str
    category: str
    client_id: str


@dataclass(frozen=True, slots=True)
class AutoAssignPayload:
    """Input for the auto-assign processor."""

    queue: ClassVar[QueueName] = QueueName.AUTO_ASSIGN

    job_id: str
    title: str
    description: str
    category: str


@dataclass(frozen=True, slots=True)
class NotificationPayload:
    """Input for the notification processor."""

    queue: ClassVar[QueueName] = QueueName.NOTIFICATIONS

    user_id: str
    address: str
    event_type: str
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class WebhookPayload:
    """Input for the webhook-events processor."""

    queue: ClassVar[QueueName] = QueueName.WEBHOOK_EVENTS

    event_id: str
    event_type: str
    source: str
    body: dict[str, Any] = field(default_factory=dict)


TaskPayload = JobAnalysisPayload | AutoAssignPayload | NotificationPayload | WebhookPayload

_PAYLOAD_TYPES: dict[QueueName, type[Any]] = {
    QueueName.JOB_ANALYSIS: JobAnalysisPayload,
    QueueName.AUTO_ASSIGN: AutoAssignPayload,
    QueueName.NOTIFICATIONS: NotificationPayload,
    QueueName.WEBHOOK_EVENTS: WebhookPayload,
}

_KIND_KEY = "kind"


def payload_queue(payload: object) -> QueueName:
    """Return the queue a payload variant belongs to."""

    for queue_name, payload_type in _PAYLOAD_TYPES.items():
        if isinstance(payload, payload_type):
            return queue_name
    raise MalformedPayload(f"Unsupported payload type: {type(payload).__name__}")


def encode_payload(payload: object) -> str:
    """Serialize a payload variant with its queue tag."""

    queue_name = payload_queue(payload)
    data = asdict(payload)  # type: ignore[call-overload]
    data[_KIND_KEY] = queue_name.value
    return json.dumps(data, ensure_ascii=False, sort_keys=True)


def decode_payload(queue_name: QueueName, raw: str) -> Any:
    """Parse and validate a stored payload against its queue's variant."""

    payload_type = _PAYLOAD_TYPES[queue_name]
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as error:
        raise MalformedPayload(f"Payload for {queue_name.value} is not valid JSON: {error}") from error
    if not isinstance(data, dict):
        raise MalformedPayload(f"Payload for {queue_name.value} must be a JSON object.")

    kind = data.pop(_KIND_KEY, None)
    if kind != queue_name.value:
        raise MalformedPayload(
            f"Payload tagged {kind!r} cannot be processed by queue {queue_name.value}.",
        )

    expected = {item.name: item for item in fields(payload_type)}
    unknown = sorted(set(data) - set(expected))
    if unknown:
        raise MalformedPayload(
            f"Unexpected fields for {queue_name.value}: {', '.join(unknown)}",
        )

    kwargs: dict[str, Any] = {}
    for name, item in expected.items():
        if name not in data:
            if item.type.startswith("dict"):
                kwargs[name] = {}
                continue
            raise MalformedPayload(f"Missing field {name!r} for {queue_name.value}.")
        value = data[name]
        if item.type == "str" and (not isinstance(value, str) or not value.strip()):
            raise MalformedPayload(
                f"Field {name!r} for {queue_name.value} must be a non-empty string.",
            )
        if item.type.startswith("dict") and not isinstance(value, dict):
            raise MalformedPayload(f"Field {name!r} for {queue_name.value} must be an object.")
        kwargs[name] = value
    return payload_type(**kwargs)

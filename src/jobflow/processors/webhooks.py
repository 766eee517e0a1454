"""Webhook-events processor: apply payment events to client balances exactly once."""

from __future__ import annotations

import logging
from typing import Any

from jobflow.accounts.repository import AccountRepository
from jobflow.errors import MalformedPayload
from jobflow.queue.models import TaskView
from jobflow.queue.payloads import WebhookPayload

logger = logging.getLogger(__name__)

CREDITS_PURCHASED = "credits_purchased"


class WebhookProcessor:
    def __init__(self, *, accounts: AccountRepository) -> None:
        self.accounts = accounts

    def __call__(self, task: TaskView, payload: WebhookPayload) -> dict[str, object]:
        if payload.event_type != CREDITS_PURCHASED:
            recorded = self.accounts.mark_webhook_processed(
                event_id=payload.event_id,
                event_type=payload.event_type,
            )
            logger.info(
                "Ignoring %s webhook %s from %s",
                payload.event_type,
                payload.event_id,
                payload.source,
            )
            return {"event_id": payload.event_id, "applied": False, "recorded": recorded}

        client_id = _required_str(payload.body, "client_id")
        standard = _non_negative_int(payload.body, "credits")
        rollover = _non_negative_int(payload.body, "rollover", default=0)
        if standard + rollover == 0:
            raise MalformedPayload("credits_purchased must add at least one credit")

        balance = self.accounts.apply_credit_purchase(
            event_id=payload.event_id,
            event_type=payload.event_type,
            client_id=client_id,
            standard=standard,
            rollover=rollover,
        )
        if balance is None:
            return {"event_id": payload.event_id, "applied": False, "duplicate": True}
        return {
            "event_id": payload.event_id,
            "applied": True,
            "client_id": client_id,
            "available": balance.available,
        }


def _required_str(body: dict[str, Any], key: str) -> str:
    value = body.get(key)
    if not isinstance(value, str) or not value.strip():
        raise MalformedPayload(f"Webhook body field {key!r} must be a non-empty string")
    return value.strip()


def _non_negative_int(body: dict[str, Any], key: str, *, default: int | None = None) -> int:
    value = body.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise MalformedPayload(f"Webhook body field {key!r} must be a non-negative integer")
    return value

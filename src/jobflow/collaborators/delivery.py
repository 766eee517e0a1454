"""Notification delivery channels."""

from __future__ import annotations

import logging

import httpx

from jobflow.collaborators.base import OutgoingMessage
from jobflow.config import DeliverySettings
from jobflow.errors import DeliveryError

logger = logging.getLogger(__name__)


class LoggingDelivery:
    """Write messages to the log instead of sending them."""

    def send(self, message: OutgoingMessage) -> None:
        logger.info(
            "Notification %s to %s <%s>: %s",
            message.event_type,
            message.user_id,
            message.address,
            message.subject,
        )


class HttpDelivery:
    """POST messages as JSON to a delivery endpoint (mail relay, webhook bridge)."""

    def __init__(
        self,
        *,
        url: str,
        timeout_seconds: float = 10.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.url = url
        self._client = client or httpx.Client(timeout=httpx.Timeout(timeout_seconds, connect=5.0))

    def send(self, message: OutgoingMessage) -> None:
        try:
            response = self._client.post(
                self.url,
                json={
                    "user_id": message.user_id,
                    "to": message.address,
                    "event_type": message.event_type,
                    "subject": message.subject,
                    "body": message.body,
                },
            )
        except httpx.HTTPError as exc:
            logger.warning("Delivery to %s failed: %s", self.url, exc)
            raise DeliveryError(f"Delivery transport error: {exc}") from exc
        if not response.is_success:
            raise DeliveryError(f"Delivery endpoint returned HTTP {response.status_code}")

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> HttpDelivery:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


def build_delivery(settings: DeliverySettings) -> LoggingDelivery | HttpDelivery:
    if settings.mode == "http":
        if not settings.url:
            raise ValueError("Delivery URL is required for http delivery mode")
        return HttpDelivery(url=settings.url, timeout_seconds=settings.timeout_seconds)
    return LoggingDelivery()

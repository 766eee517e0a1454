"""Runtime configuration for queues, worker pools, and storage."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

from jobflow.queue.models import QueueName


@dataclass(slots=True)
class QueueSettings:
    """Enqueue defaults and pool limits for one named queue."""

    attempts: int = 3
    backoff_base_seconds: float = 1.0
    completed_retention: int = 1_000
    failed_retention: int = 5_000
    default_priority: int = 5
    concurrency: int = 1
    rate_max: int = 10
    rate_period_seconds: float = 1.0


def default_queue_settings() -> dict[QueueName, QueueSettings]:
    """Per-queue defaults: priority hints on enqueue, concurrency and rate per pool."""

    return {
        QueueName.JOB_ANALYSIS: QueueSettings(default_priority=10, concurrency=5, rate_max=10),
        QueueName.AUTO_ASSIGN: QueueSettings(default_priority=8, concurrency=3, rate_max=5),
        QueueName.NOTIFICATIONS: QueueSettings(default_priority=5, concurrency=10, rate_max=20),
        QueueName.WEBHOOK_EVENTS: QueueSettings(default_priority=7, concurrency=2, rate_max=10),
    }


@dataclass(slots=True)
class WorkerSettings:
    """Worker pool runtime settings shared by all queues."""

    stall_interval_seconds: int = 30
    max_stalled_count: int = 1
    poll_interval_seconds: float = 1.0


@dataclass(slots=True)
class DeliverySettings:
    """Notification delivery collaborator settings."""

    mode: str = "log"
    url: str | None = None
    timeout_seconds: float = 10.0
    notification_ttl_days: int = 30


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".jobflow.db")
    busy_timeout_ms: int = 5_000
    worker: WorkerSettings = field(default_factory=WorkerSettings)
    delivery: DeliverySettings = field(default_factory=DeliverySettings)
    queues: dict[QueueName, QueueSettings] = field(default_factory=default_queue_settings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        attempts = int(os.getenv("JOBFLOW_QUEUE_ATTEMPTS", "3"))
        backoff = float(os.getenv("JOBFLOW_QUEUE_BACKOFF_SECONDS", "1.0"))
        queues = default_queue_settings()
        for queue_name, queue_settings in queues.items():
            prefix = _queue_env_prefix(queue_name)
            queue_settings.attempts = attempts
            queue_settings.backoff_base_seconds = backoff
            queue_settings.concurrency = int(
                os.getenv(f"{prefix}_CONCURRENCY", str(queue_settings.concurrency)),
            )
            queue_settings.rate_max = int(
                os.getenv(f"{prefix}_RATE_MAX", str(queue_settings.rate_max)),
            )

        return cls(
            db_path=db_path or Path(os.getenv("JOBFLOW_DB_PATH", ".jobflow.db")),
            busy_timeout_ms=int(os.getenv("JOBFLOW_BUSY_TIMEOUT_MS", "5000")),
            worker=WorkerSettings(
                stall_interval_seconds=int(os.getenv("JOBFLOW_STALL_INTERVAL_SECONDS", "30")),
                max_stalled_count=int(os.getenv("JOBFLOW_MAX_STALLED_COUNT", "1")),
                poll_interval_seconds=float(os.getenv("JOBFLOW_POLL_INTERVAL_SECONDS", "1.0")),
            ),
            delivery=DeliverySettings(
                mode=os.getenv("JOBFLOW_DELIVERY_MODE", "log").strip().lower(),
                url=os.getenv("JOBFLOW_DELIVERY_URL") or None,
                timeout_seconds=float(os.getenv("JOBFLOW_DELIVERY_TIMEOUT_SECONDS", "10.0")),
                notification_ttl_days=int(os.getenv("JOBFLOW_NOTIFICATION_TTL_DAYS", "30")),
            ),
            queues=queues,
        )

    def queue(self, queue_name: QueueName) -> QueueSettings:
        return self.queues[queue_name]

    def validate(self) -> None:
        """Raise configuration error on values the runtime cannot honour."""

        if self.busy_timeout_ms <= 0:
            raise ValueError("JOBFLOW_BUSY_TIMEOUT_MS must be > 0.")
        if self.worker.stall_interval_seconds <= 0:
            raise ValueError("JOBFLOW_STALL_INTERVAL_SECONDS must be > 0.")
        if self.worker.max_stalled_count < 0:
            raise ValueError("JOBFLOW_MAX_STALLED_COUNT must be >= 0.")
        if self.worker.poll_interval_seconds < 0:
            raise ValueError("JOBFLOW_POLL_INTERVAL_SECONDS must be >= 0.")
        if self.delivery.notification_ttl_days <= 0:
            raise ValueError("JOBFLOW_NOTIFICATION_TTL_DAYS must be > 0.")
        if self.delivery.mode not in {"log", "http"}:
            raise ValueError(
                f"Invalid JOBFLOW_DELIVERY_MODE: {self.delivery.mode!r}. Expected 'log' or 'http'.",
            )
        if self.delivery.mode == "http":
            _validate_delivery_url(self.delivery.url)

        for queue_name, queue_settings in self.queues.items():
            prefix = _queue_env_prefix(queue_name)
            if queue_settings.attempts <= 0:
                raise ValueError("JOBFLOW_QUEUE_ATTEMPTS must be > 0.")
            if queue_settings.backoff_base_seconds < 0:
                raise ValueError("JOBFLOW_QUEUE_BACKOFF_SECONDS must be >= 0.")
            if queue_settings.concurrency <= 0:
                raise ValueError(f"{prefix}_CONCURRENCY must be > 0.")
            if queue_settings.rate_max <= 0:
                raise ValueError(f"{prefix}_RATE_MAX must be > 0.")


def _queue_env_prefix(queue_name: QueueName) -> str:
    return "JOBFLOW_" + queue_name.value.replace("-", "_").upper()


def _validate_delivery_url(value: str | None) -> None:
    if not value:
        raise ValueError("JOBFLOW_DELIVERY_URL is required when JOBFLOW_DELIVERY_MODE=http.")
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(
            "Invalid JOBFLOW_DELIVERY_URL: "
            f"{value!r}. Expected an absolute URL with http:// or https:// scheme.",
        )

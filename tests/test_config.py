from __future__ import annotations

from pathlib import Path

import allure
import pytest

from jobflow.config import Settings
from jobflow.queue.models import QueueName

pytestmark = [
    allure.epic("Configuration"),
    allure.feature("Settings"),
]


def test_defaults_match_queue_profiles() -> None:
    settings = Settings()

    assert settings.queue(QueueName.JOB_ANALYSIS).default_priority == 10
    assert settings.queue(QueueName.JOB_ANALYSIS).concurrency == 5
    assert settings.queue(QueueName.AUTO_ASSIGN).default_priority == 8
    assert settings.queue(QueueName.AUTO_ASSIGN).rate_max == 5
    assert settings.queue(QueueName.NOTIFICATIONS).concurrency == 10
    assert settings.queue(QueueName.NOTIFICATIONS).rate_max == 20
    assert settings.queue(QueueName.WEBHOOK_EVENTS).concurrency == 2
    assert settings.worker.stall_interval_seconds == 30
    assert settings.worker.max_stalled_count == 1
    settings.validate()


def test_from_env_reads_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("JOBFLOW_DB_PATH", str(tmp_path / "env.db"))
    monkeypatch.setenv("JOBFLOW_QUEUE_ATTEMPTS", "5")
    monkeypatch.setenv("JOBFLOW_QUEUE_BACKOFF_SECONDS", "2.5")
    monkeypatch.setenv("JOBFLOW_NOTIFICATIONS_CONCURRENCY", "4")
    monkeypatch.setenv("JOBFLOW_AUTO_ASSIGN_RATE_MAX", "2")
    monkeypatch.setenv("JOBFLOW_DELIVERY_MODE", " HTTP ")
    monkeypatch.setenv("JOBFLOW_DELIVERY_URL", "https://relay.example.com/send")

    settings = Settings.from_env()

    assert settings.db_path == tmp_path / "env.db"
    assert all(queue.attempts == 5 for queue in settings.queues.values())
    assert all(queue.backoff_base_seconds == 2.5 for queue in settings.queues.values())
    assert settings.queue(QueueName.NOTIFICATIONS).concurrency == 4
    assert settings.queue(QueueName.AUTO_ASSIGN).rate_max == 2
    assert settings.delivery.mode == "http"
    settings.validate()


def test_explicit_db_path_wins_over_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("JOBFLOW_DB_PATH", str(tmp_path / "env.db"))

    assert Settings.from_env(db_path=tmp_path / "cli.db").db_path == tmp_path / "cli.db"


@pytest.mark.parametrize(
    ("variable", "value", "message"),
    [
        ("JOBFLOW_BUSY_TIMEOUT_MS", "0", "JOBFLOW_BUSY_TIMEOUT_MS"),
        ("JOBFLOW_STALL_INTERVAL_SECONDS", "0", "JOBFLOW_STALL_INTERVAL_SECONDS"),
        ("JOBFLOW_MAX_STALLED_COUNT", "-1", "JOBFLOW_MAX_STALLED_COUNT"),
        ("JOBFLOW_NOTIFICATION_TTL_DAYS", "0", "JOBFLOW_NOTIFICATION_TTL_DAYS"),
        ("JOBFLOW_DELIVERY_MODE", "carrier-pigeon", "Invalid JOBFLOW_DELIVERY_MODE"),
        ("JOBFLOW_QUEUE_ATTEMPTS", "0", "JOBFLOW_QUEUE_ATTEMPTS"),
        ("JOBFLOW_WEBHOOK_EVENTS_CONCURRENCY", "0", "JOBFLOW_WEBHOOK_EVENTS_CONCURRENCY"),
    ],
)
def test_validate_rejects_bad_values(
    monkeypatch: pytest.MonkeyPatch,
    variable: str,
    value: str,
    message: str,
) -> None:
    monkeypatch.setenv(variable, value)

    with pytest.raises(ValueError, match=message):
        Settings.from_env().validate()


def test_http_delivery_requires_absolute_url(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("JOBFLOW_DELIVERY_MODE", "http")
    with pytest.raises(ValueError, match="JOBFLOW_DELIVERY_URL is required"):
        Settings.from_env().validate()

    monkeypatch.setenv("JOBFLOW_DELIVERY_URL", "relay.example.com/send")
    with pytest.raises(ValueError, match="Invalid JOBFLOW_DELIVERY_URL"):
        Settings.from_env().validate()

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import allure
import pytest

from jobflow.errors import TemplateRenderError, ValidationError
from jobflow.notifications.store import NotificationStore
from jobflow.notifications.templates import (
    NOTIFICATION_TEMPLATES,
    SIGN_OFF,
    render_notification,
    required_fields,
)
from jobflow.processors.registry import Repositories

pytestmark = [
    allure.epic("Notifications"),
    allure.feature("Templates and Store"),
]


def _record(store: NotificationStore, user_id: str, *, now: datetime, subject: str = "Hi"):
    return store.record(
        user_id=user_id,
        event_type="worker_welcome",
        subject=subject,
        body="Hello",
        now=now,
    )


def test_job_completed_formats_earnings_as_money() -> None:
    rendered = render_notification(
        "job_completed",
        {
            "recipient_name": "Wes",
            "client_name": "Cleo",
            "job_title": "Poster design",
            "earnings": 14.0,
        },
    )

    assert rendered.subject == "Job completed: Poster design"
    assert "Earnings of $14.00 were added" in rendered.body
    assert rendered.body.startswith("Hello Wes,")
    assert rendered.body.endswith(SIGN_OFF)


def test_every_template_renders_with_its_fields() -> None:
    data = {
        "recipient_name": "Ada",
        "job_id": "job-1",
        "job_title": "Poster",
        "category": "design",
        "priority": "standard",
        "status": "review",
        "previous_status": "in_progress",
        "client_name": "Cleo",
        "worker_name": "Wes",
        "earnings": 7.5,
        "flag_reason": "Brief unclear",
        "credits": 5,
        "available": 27,
        "progress_percent": 40,
        "progress_message": "Sketches done",
    }

    for event_type in NOTIFICATION_TEMPLATES:
        rendered = render_notification(event_type, data)
        assert "$" not in rendered.subject
        assert rendered.body.endswith(SIGN_OFF)


def test_render_rejects_unknown_event_and_missing_fields() -> None:
    with pytest.raises(TemplateRenderError, match="No notification template"):
        render_notification("job_exploded", {})
    with pytest.raises(TemplateRenderError, match="'flag_reason'"):
        render_notification(
            "job_flagged",
            {
                "recipient_name": "Ada",
                "job_title": "Poster",
                "job_id": "job-1",
                "worker_name": "Wes",
            },
        )


def test_render_does_not_evaluate_data_as_template_code() -> None:
    rendered = render_notification(
        "worker_welcome",
        {"recipient_name": "{{ 7 * 7 }}"},
    )

    assert rendered.body.startswith("Hello {{ 7 * 7 }},")


def test_missing_fields_are_listed_by_name() -> None:
    with pytest.raises(TemplateRenderError, match="'job_title', 'recipient_name'"):
        render_notification("job_started", {"worker_name": "Wes"})
    assert required_fields("job_started") == {"recipient_name", "worker_name", "job_title"}


def test_store_hides_expired_and_lists_newest_first(marketplace: Repositories) -> None:
    store = marketplace.notifications
    start = datetime(2026, 1, 1, tzinfo=UTC)
    old = _record(store, "client-1", now=start, subject="old")
    recent = _record(store, "client-1", now=start + timedelta(days=20), subject="recent")

    assert old.expires_at == start + timedelta(days=30)
    listed = store.list_for_user("client-1", now=start + timedelta(days=25))
    assert [item.subject for item in listed] == ["recent", "old"]
    later = store.list_for_user("client-1", now=start + timedelta(days=31))
    assert [item.notification_id for item in later] == [recent.notification_id]
    assert store.list_for_user("worker-1", now=start) == []


def test_mark_read_is_scoped_to_owner(marketplace: Repositories) -> None:
    store = marketplace.notifications
    now = datetime.now(UTC)
    first = _record(store, "client-1", now=now)
    _record(store, "client-1", now=now)

    assert store.mark_read("worker-1", first.notification_id) is False
    assert store.mark_read("client-1", first.notification_id) is True
    assert store.unread_count("client-1") == 1
    assert store.mark_all_read("client-1") == 1
    assert store.unread_count("client-1") == 0
    assert store.list_for_user("client-1", unread_only=True) == []


def test_record_with_same_id_is_stored_once(marketplace: Repositories) -> None:
    store = marketplace.notifications
    now = datetime.now(UTC)

    first = store.record(
        user_id="client-1",
        event_type="payment_received",
        subject="Payment",
        body="Thanks",
        data={"credits": 5},
        notification_id="task-1",
        now=now,
    )
    again = store.record(
        user_id="client-1",
        event_type="payment_received",
        subject="Payment (again)",
        body="Thanks",
        notification_id="task-1",
        now=now,
    )

    assert again.subject == first.subject == "Payment"
    assert again.data == {"credits": 5}
    assert len(store.list_for_user("client-1")) == 1


def test_purge_expired_deletes_only_expired_rows(marketplace: Repositories) -> None:
    store = marketplace.notifications
    start = datetime(2026, 1, 1, tzinfo=UTC)
    _record(store, "client-1", now=start)
    kept = _record(store, "client-1", now=start + timedelta(days=10))

    assert store.purge_expired(now=start + timedelta(days=30)) == 1
    assert store.purge_expired(now=start + timedelta(days=30)) == 0
    remaining = store.list_for_user("client-1", now=start + timedelta(days=31))
    assert [item.notification_id for item in remaining] == [kept.notification_id]


def test_list_for_user_rejects_non_positive_limit(marketplace: Repositories) -> None:
    with pytest.raises(ValidationError, match="limit must be > 0"):
        marketplace.notifications.list_for_user("client-1", limit=0)

"""Notification templates keyed by event type, rendered in a sandboxed Jinja2 environment."""

from __future__ import annotations

from dataclasses import dataclass
from functools import cache
from typing import Any

from jinja2 import StrictUndefined, TemplateSyntaxError, UndefinedError, meta
from jinja2.sandbox import SandboxedEnvironment

from jobflow.errors import TemplateRenderError


@dataclass(frozen=True, slots=True)
class NotificationTemplate:
    subject: str
    body: str


@dataclass(frozen=True, slots=True)
class RenderedNotification:
    subject: str
    body: str


SIGN_OFF = "\n\nBest regards,\nThe Jobflow Team"

NOTIFICATION_TEMPLATES: dict[str, NotificationTemplate] = {
    "job_assigned": NotificationTemplate(
        subject="New job assigned: {{ job_title }}",
        body=(
            "Hello {{ recipient_name }},\n\n"
            "You have been assigned a new {{ category }} job from {{ client_name }}: "
            "{{ job_title }}.\n"
            "Open your dashboard to review the brief and start working."
        ),
    ),
    "job_started": NotificationTemplate(
        subject="Work started: {{ job_title }}",
        body="Hello {{ recipient_name }},\n\n{{ worker_name }} has started working on {{ job_title }}.",
    ),
    "job_submitted": NotificationTemplate(
        subject="Ready for review: {{ job_title }}",
        body=(
            "Hello {{ recipient_name }},\n\n"
            "{{ worker_name }} has submitted {{ job_title }} for your review.\n"
            "Approve the work or request a revision from your dashboard."
        ),
    ),
    "job_completed": NotificationTemplate(
        subject="Job completed: {{ job_title }}",
        body=(
            "Hello {{ recipient_name }},\n\n"
            "{{ client_name }} approved {{ job_title }}. Earnings of ${{ earnings | money }} "
            "were added to your pending balance."
        ),
    ),
    "job_revision": NotificationTemplate(
        subject="Revision requested: {{ job_title }}",
        body=(
            "Hello {{ recipient_name }},\n\n"
            "{{ client_name }} requested a revision for {{ job_title }}.\n"
            "Review the feedback and resubmit when ready."
        ),
    ),
    "job_cancelled": NotificationTemplate(
        subject="Job cancelled: {{ job_title }}",
        body=(
            "Hello {{ recipient_name }},\n\n"
            "{{ job_title }} was cancelled (previous status: {{ previous_status }})."
        ),
    ),
    "job_status_change": NotificationTemplate(
        subject="Progress on {{ job_title }}: {{ progress_percent }}%",
        body=(
            "Hello {{ recipient_name }},\n\n"
            "{{ worker_name }} posted an update on {{ job_title }} "
            "(status: {{ status }}, {{ progress_percent }}% done):\n"
            "{{ progress_message }}"
        ),
    ),
    "job_flagged": NotificationTemplate(
        subject="Job flagged for attention: {{ job_title }}",
        body=(
            "Hello {{ recipient_name }},\n\n"
            "{{ worker_name }} flagged {{ job_title }} ({{ job_id }}) as needing attention.\n"
            "Reason: {{ flag_reason }}"
        ),
    ),
    "worker_welcome": NotificationTemplate(
        subject="Welcome to Jobflow!",
        body=(
            "Hello {{ recipient_name }},\n\n"
            "Welcome to the team. Keep your skills and availability up to date;\n"
            "you will be notified when jobs are assigned to you."
        ),
    ),
    "payment_received": NotificationTemplate(
        subject="Payment received: {{ credits }} credits added",
        body=(
            "Hello {{ recipient_name }},\n\n"
            "{{ credits }} credits were added to your balance. "
            "Your available balance is now {{ available }} credits."
        ),
    ),
}


def _money(value: Any) -> str:
    return f"{float(value):.2f}"


@cache
def _environment() -> SandboxedEnvironment:
    # Plain-text channels only, so nothing is escaped.
    env = SandboxedEnvironment(
        autoescape=False,
        undefined=StrictUndefined,
        keep_trailing_newline=True,
    )
    env.filters["money"] = _money
    return env


@cache
def required_fields(event_type: str) -> frozenset[str]:
    """Placeholders the subject and body of ``event_type`` reference."""

    template = NOTIFICATION_TEMPLATES[event_type]
    env = _environment()
    names: set[str] = set()
    for source in (template.subject, template.body):
        names |= meta.find_undeclared_variables(env.parse(source))
    return frozenset(names)


def render_notification(event_type: str, data: dict[str, Any]) -> RenderedNotification:
    """Render the template for ``event_type`` with ``data``.

    Raises:
        TemplateRenderError: Unknown event type, a placeholder missing from
            ``data``, or a template that does not compile.
    """

    template = NOTIFICATION_TEMPLATES.get(event_type)
    if template is None:
        raise TemplateRenderError(f"No notification template for event type: {event_type}")

    try:
        missing = sorted(required_fields(event_type) - data.keys())
        if missing:
            fields = ", ".join(repr(name) for name in missing)
            raise TemplateRenderError(f"Template {event_type} requires missing field(s): {fields}")
        env = _environment()
        subject = env.from_string(template.subject).render(data)
        body = env.from_string(template.body).render(data) + SIGN_OFF
    except UndefinedError as error:
        raise TemplateRenderError(f"Template {event_type} references an undefined value: {error}") from error
    except TemplateSyntaxError as error:
        raise TemplateRenderError(f"Template {event_type} is malformed: {error}") from error
    return RenderedNotification(subject=subject, body=body)

"""Audit log vocabulary and read models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class AuditAction(str, Enum):
    JOB_CREATED = "job.created"
    JOB_STATUS_CHANGED = "job.status_changed"
    JOB_PROGRESS = "job.progress"
    CREDITS_ADDED = "payment.credits_added"
    CREDITS_PURCHASED = "payment.credits_purchased"


class AuditSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class AuditTarget(str, Enum):
    JOB = "job"
    PAYMENT = "payment"
    USER = "user"


@dataclass(slots=True)
class AuditEntryView:
    entry_id: int
    action: AuditAction
    severity: AuditSeverity
    actor_id: str | None
    target_type: AuditTarget
    target_id: str | None
    description: str
    created_at: datetime
    metadata: dict[str, Any] = field(default_factory=dict)

"""Audit rows are staged inside the transaction whose change they describe."""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any

from sqlmodel import Session, col, select

from jobflow.audit.models import AuditAction, AuditEntryView, AuditSeverity, AuditTarget
from jobflow.config import Settings
from jobflow.storage.common import (
    build_sqlite_engine,
    page_limit,
    to_db_datetime,
    to_utc_aware,
    utc_now,
)
from jobflow.storage.sqlmodel_models import AuditEntry


def add_audit_entry(  # noqa: PLR0913
    session: Session,
    *,
    action: AuditAction,
    target_type: AuditTarget,
    target_id: str | None,
    description: str,
    actor_id: str | None = None,
    metadata: dict[str, Any] | None = None,
    severity: AuditSeverity = AuditSeverity.INFO,
    now: datetime | None = None,
) -> None:
    """Stage an audit row; it commits or rolls back with the caller's change."""

    session.add(
        AuditEntry(
            action=action.value,
            severity=severity.value,
            actor_id=actor_id,
            target_type=target_type.value,
            target_id=target_id,
            description=description,
            metadata_json=json.dumps(metadata, ensure_ascii=False, sort_keys=True)
            if metadata
            else None,
            created_at=to_db_datetime(now or utc_now()),
        ),
    )


class AuditRepository:
    """Read side of the audit log."""

    def __init__(self, db_path: Path, *, settings: Settings | None = None) -> None:
        self.db_path = db_path
        self.settings = settings or Settings(db_path=db_path)
        self.engine = build_sqlite_engine(
            db_path=db_path,
            busy_timeout_ms=self.settings.busy_timeout_ms,
        )

    def close(self) -> None:
        self.engine.dispose()

    def list_entries(  # noqa: PLR0913
        self,
        *,
        target_type: AuditTarget | None = None,
        target_id: str | None = None,
        actor_id: str | None = None,
        action: AuditAction | None = None,
        limit: int = 50,
    ) -> list[AuditEntryView]:
        """Entries newest first, optionally narrowed to one target, actor, or action."""

        with Session(self.engine) as session:
            statement = select(AuditEntry)
            if target_type is not None:
                statement = statement.where(AuditEntry.target_type == target_type.value)
            if target_id is not None:
                statement = statement.where(AuditEntry.target_id == target_id)
            if actor_id is not None:
                statement = statement.where(AuditEntry.actor_id == actor_id)
            if action is not None:
                statement = statement.where(AuditEntry.action == action.value)
            rows = session.exec(
                statement.order_by(col(AuditEntry.id).desc()).limit(page_limit(limit)),
            ).all()
            return [_to_view(row) for row in rows]


def _to_view(row: AuditEntry) -> AuditEntryView:
    return AuditEntryView(
        entry_id=row.id or 0,
        action=AuditAction(row.action),
        severity=AuditSeverity(row.severity),
        actor_id=row.actor_id,
        target_type=AuditTarget(row.target_type),
        target_id=row.target_id,
        description=row.description,
        created_at=to_utc_aware(row.created_at),
        metadata=json.loads(row.metadata_json) if row.metadata_json else {},
    )

"""In-app notification store with per-record expiry."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any
from uuid import uuid4

from sqlalchemy import func
from sqlalchemy import update as sa_update
from sqlmodel import Session, col, delete, select

from jobflow.config import Settings
from jobflow.storage.common import (
    build_sqlite_engine,
    page_limit,
    to_db_datetime,
    to_utc_aware,
    utc_now,
)
from jobflow.storage.sqlmodel_models import Notification

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class NotificationView:
    notification_id: str
    user_id: str
    event_type: str
    subject: str
    body: str
    read: bool
    created_at: datetime
    expires_at: datetime
    data: dict[str, Any] = field(default_factory=dict)


class NotificationStore:
    """Notifications shown to users in-app; expired rows are hidden and purged."""

    def __init__(self, db_path: Path, *, settings: Settings | None = None) -> None:
        self.db_path = db_path
        self.settings = settings or Settings(db_path=db_path)
        self.ttl = timedelta(days=self.settings.delivery.notification_ttl_days)
        self.engine = build_sqlite_engine(
            db_path=db_path,
            busy_timeout_ms=self.settings.busy_timeout_ms,
        )

    def close(self) -> None:
        self.engine.dispose()

    def record(  # noqa: PLR0913
        self,
        *,
        user_id: str,
        event_type: str,
        subject: str,
        body: str,
        data: dict[str, Any] | None = None,
        notification_id: str | None = None,
        now: datetime | None = None,
    ) -> NotificationView:
        """Store a notification; recording the same ``notification_id`` twice is a no-op."""

        created_at = now or utc_now()
        if notification_id is not None:
            with Session(self.engine) as session:
                existing = session.get(Notification, notification_id)
                if existing is not None:
                    return _to_view(existing)
        row = Notification(
            notification_id=notification_id or str(uuid4()),
            user_id=user_id,
            event_type=event_type,
            subject=subject,
            body=body,
            data_json=json.dumps(data, ensure_ascii=False, sort_keys=True) if data else None,
            read=False,
            created_at=to_db_datetime(created_at),
            expires_at=to_db_datetime(created_at + self.ttl),
        )
        with Session(self.engine) as session:
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_view(row)

    def list_for_user(
        self,
        user_id: str,
        *,
        unread_only: bool = False,
        limit: int = 50,
        now: datetime | None = None,
    ) -> list[NotificationView]:
        """Unexpired notifications, newest first."""

        with Session(self.engine) as session:
            statement = select(Notification).where(
                Notification.user_id == user_id,
                col(Notification.expires_at) > to_db_datetime(now or utc_now()),
            )
            if unread_only:
                statement = statement.where(col(Notification.read).is_(False))
            rows = session.exec(
                statement.order_by(
                    col(Notification.created_at).desc(),
                    col(Notification.notification_id).asc(),
                ).limit(page_limit(limit)),
            ).all()
            return [_to_view(row) for row in rows]

    def unread_count(self, user_id: str, *, now: datetime | None = None) -> int:
        with Session(self.engine) as session:
            return int(
                session.exec(
                    select(func.count())
                    .select_from(Notification)
                    .where(
                        col(Notification.user_id) == user_id,
                        col(Notification.read).is_(False),
                        col(Notification.expires_at) > to_db_datetime(now or utc_now()),
                    ),
                ).one(),
            )

    def mark_read(self, user_id: str, notification_id: str) -> bool:
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(Notification)
                .where(
                    col(Notification.notification_id) == notification_id,
                    col(Notification.user_id) == user_id,
                )
                .values(read=True),
            )
            session.commit()
            return result.rowcount == 1

    def mark_all_read(self, user_id: str) -> int:
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(Notification)
                .where(
                    col(Notification.user_id) == user_id,
                    col(Notification.read).is_(False),
                )
                .values(read=True),
            )
            session.commit()
            return int(result.rowcount)

    def purge_expired(self, *, now: datetime | None = None) -> int:
        cutoff = to_db_datetime(now or utc_now())
        with Session(self.engine) as session:
            expired_ids = list(
                session.exec(
                    select(Notification.notification_id).where(
                        col(Notification.expires_at) <= cutoff,
                    ),
                ).all(),
            )
            if not expired_ids:
                return 0
            session.exec(
                delete(Notification).where(col(Notification.notification_id).in_(expired_ids)),
            )
            session.commit()
        logger.info("Purged %d expired notifications", len(expired_ids))
        return len(expired_ids)


def _to_view(row: Notification) -> NotificationView:
    return NotificationView(
        notification_id=row.notification_id,
        user_id=row.user_id,
        event_type=row.event_type,
        subject=row.subject,
        body=row.body,
        read=row.read,
        created_at=to_utc_aware(row.created_at),
        expires_at=to_utc_aware(row.expires_at),
        data=json.loads(row.data_json) if row.data_json else {},
    )

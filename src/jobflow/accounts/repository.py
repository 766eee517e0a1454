"""SQLModel-backed storage for users, balances, and worker profiles."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from sqlalchemy import update as sa_update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from jobflow.accounts.models import BalanceView, UserCreate, UserView, WorkerView
from jobflow.audit.models import AuditAction, AuditTarget
from jobflow.audit.repository import add_audit_entry
from jobflow.config import Settings
from jobflow.errors import UserNotFound, ValidationError
from jobflow.lifecycle.models import Role
from jobflow.notifications.fanout import stage_notification
from jobflow.storage.common import build_sqlite_engine, to_db_datetime, to_utc_aware, utc_now
from jobflow.storage.sqlmodel_models import AppUser, CreditBalance, ProcessedWebhook, WorkerProfile

logger = logging.getLogger(__name__)


def credit_balance(
    session: Session,
    *,
    client_id: str,
    standard: int = 0,
    rollover: int = 0,
) -> None:
    """Stage an atomic balance increment in the caller's transaction."""

    if standard < 0 or rollover < 0:
        raise ValidationError("Credit top-ups must be non-negative")
    result = session.exec(
        sa_update(CreditBalance)
        .where(col(CreditBalance.client_id) == client_id)
        .values(
            standard_credits=CreditBalance.standard_credits + standard,
            rollover_credits=CreditBalance.rollover_credits + rollover,
            updated_at=to_db_datetime(utc_now()),
        ),
    )
    if result.rowcount != 1:
        raise UserNotFound(f"No credit balance for client: {client_id}")


def first_active_admin_id(session: Session) -> str | None:
    """Earliest-registered active admin; receives admin-addressed notifications."""

    return session.exec(
        select(AppUser.user_id)
        .where(AppUser.role == Role.ADMIN.value, col(AppUser.is_active).is_(True))
        .order_by(col(AppUser.created_at).asc(), col(AppUser.user_id).asc())
        .limit(1),
    ).one_or_none()


class AccountRepository:
    """Account persistence facade backed by SQLModel + SQLite."""

    def __init__(self, db_path: Path, *, settings: Settings | None = None) -> None:
        self.db_path = db_path
        self.settings = settings or Settings(db_path=db_path)
        self.engine = build_sqlite_engine(
            db_path=db_path,
            busy_timeout_ms=self.settings.busy_timeout_ms,
        )

    def close(self) -> None:
        self.engine.dispose()

    def add_user(self, payload: UserCreate) -> UserView:
        """Register a user together with the role-specific record it needs.

        Clients get an empty credit balance, workers get a profile.
        """

        user_id = payload.user_id.strip()
        if not user_id:
            raise ValidationError("user_id must not be empty")
        now = utc_now()
        row = AppUser(
            user_id=user_id,
            display_name=payload.display_name.strip() or user_id,
            email=payload.email.strip(),
            role=payload.role.value,
            is_active=True,
            created_at=to_db_datetime(now),
        )
        with Session(self.engine) as session:
            session.add(row)
            try:
                session.flush()
            except IntegrityError as error:
                session.rollback()
                raise ValidationError(f"User already exists: {user_id}") from error
            if payload.role is Role.CLIENT:
                session.add(CreditBalance(client_id=user_id, updated_at=to_db_datetime(now)))
            elif payload.role is Role.WORKER:
                session.add(
                    WorkerProfile(
                        user_id=user_id,
                        skills_json=json.dumps(_normalize_skills(payload.skills)),
                        is_available=payload.is_available,
                        created_at=to_db_datetime(now),
                    ),
                )
            session.commit()
            session.refresh(row)
            logger.info("Registered %s %s", payload.role.value, user_id)
            return _to_user_view(row)

    def get_user(self, user_id: str) -> UserView | None:
        with Session(self.engine) as session:
            row = session.get(AppUser, user_id)
            return _to_user_view(row) if row is not None else None

    def require_user(self, user_id: str, *, role: Role | None = None) -> UserView:
        """Return an active user, optionally of a given role, or raise UserNotFound."""

        user = self.get_user(user_id)
        if user is None or not user.is_active:
            raise UserNotFound(f"User not found: {user_id}")
        if role is not None and user.role is not role:
            raise UserNotFound(f"User {user_id} is not a {role.value}")
        return user

    def deactivate_user(self, user_id: str) -> None:
        with Session(self.engine) as session:
            row = session.get(AppUser, user_id)
            if row is None:
                raise UserNotFound(f"User not found: {user_id}")
            row.is_active = False
            session.add(row)
            session.commit()

    def get_balance(self, client_id: str) -> BalanceView:
        with Session(self.engine) as session:
            row = session.get(CreditBalance, client_id)
            if row is None:
                raise UserNotFound(f"No credit balance for client: {client_id}")
            return _to_balance_view(row)

    def credit(
        self,
        client_id: str,
        *,
        standard: int = 0,
        rollover: int = 0,
        actor_id: str | None = None,
    ) -> BalanceView:
        """Top up a client balance."""

        with Session(self.engine) as session:
            credit_balance(session, client_id=client_id, standard=standard, rollover=rollover)
            add_audit_entry(
                session,
                action=AuditAction.CREDITS_ADDED,
                target_type=AuditTarget.PAYMENT,
                target_id=client_id,
                actor_id=actor_id,
                description=f"Top-up of {standard + rollover} credits",
                metadata={"standard": standard, "rollover": rollover},
            )
            session.commit()
        logger.info(
            "Credited client %s: standard=%d rollover=%d",
            client_id,
            standard,
            rollover,
        )
        return self.get_balance(client_id)

    def apply_credit_purchase(  # noqa: PLR0913
        self,
        *,
        event_id: str,
        event_type: str,
        client_id: str,
        standard: int,
        rollover: int = 0,
    ) -> BalanceView | None:
        """Credit a purchase exactly once per webhook event.

        The ledger row, the balance increment, and the client's
        ``payment_received`` notification commit together. Returns None when
        the event was already processed.
        """

        now = utc_now()
        with Session(self.engine) as session:
            if session.get(ProcessedWebhook, event_id) is not None:
                logger.info("Webhook event %s already processed", event_id)
                return None
            session.add(
                ProcessedWebhook(
                    event_id=event_id,
                    event_type=event_type,
                    processed_at=to_db_datetime(now),
                ),
            )
            try:
                session.flush()
            except IntegrityError:
                session.rollback()
                logger.info("Webhook event %s processed concurrently", event_id)
                return None
            credit_balance(session, client_id=client_id, standard=standard, rollover=rollover)
            balance = session.exec(
                select(CreditBalance)
                .where(CreditBalance.client_id == client_id)
                .execution_options(populate_existing=True),
            ).one()
            view = _to_balance_view(balance)
            stage_notification(
                session,
                user_id=client_id,
                event_type="payment_received",
                data={"credits": standard + rollover, "available": view.available},
                settings=self.settings,
                now=now,
            )
            add_audit_entry(
                session,
                action=AuditAction.CREDITS_PURCHASED,
                target_type=AuditTarget.PAYMENT,
                target_id=client_id,
                description=f"Purchase of {standard + rollover} credits",
                metadata={
                    "event_id": event_id,
                    "standard": standard,
                    "rollover": rollover,
                    "available": view.available,
                },
                now=now,
            )
            session.commit()
        logger.info(
            "Webhook %s credited %s: standard=%d rollover=%d",
            event_id,
            client_id,
            standard,
            rollover,
        )
        return view

    def mark_webhook_processed(self, *, event_id: str, event_type: str) -> bool:
        """Record an event with no effect; False when it was already recorded."""

        with Session(self.engine) as session:
            if session.get(ProcessedWebhook, event_id) is not None:
                return False
            session.add(
                ProcessedWebhook(
                    event_id=event_id,
                    event_type=event_type,
                    processed_at=to_db_datetime(utc_now()),
                ),
            )
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                return False
            return True

    def get_worker(self, user_id: str) -> WorkerView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(AppUser, WorkerProfile).where(
                    AppUser.user_id == user_id,
                    WorkerProfile.user_id == AppUser.user_id,
                ),
            ).one_or_none()
            if row is None:
                return None
            user, profile = row
            return _to_worker_view(user, profile)

    def list_workers(self, *, eligible_only: bool = False) -> list[WorkerView]:
        """Workers ordered by profile creation; ``eligible_only`` keeps active, available ones."""

        with Session(self.engine) as session:
            statement = select(AppUser, WorkerProfile).where(
                WorkerProfile.user_id == AppUser.user_id,
            )
            if eligible_only:
                statement = statement.where(
                    col(AppUser.is_active).is_(True),
                    col(WorkerProfile.is_available).is_(True),
                )
            rows = session.exec(
                statement.order_by(
                    col(WorkerProfile.created_at).asc(),
                    col(AppUser.user_id).asc(),
                ),
            ).all()
            return [_to_worker_view(user, profile) for user, profile in rows]

    def set_worker_availability(self, user_id: str, *, is_available: bool) -> None:
        with Session(self.engine) as session:
            profile = session.get(WorkerProfile, user_id)
            if profile is None:
                raise UserNotFound(f"No worker profile for: {user_id}")
            profile.is_available = is_available
            session.add(profile)
            session.commit()

    def enqueue_welcome(self, user_id: str) -> str:
        """Queue the ``worker_welcome`` notification for a registered worker."""

        with Session(self.engine) as session:
            profile = session.get(WorkerProfile, user_id)
            if profile is None:
                raise UserNotFound(f"No worker profile for: {user_id}")
            task_id = stage_notification(
                session,
                user_id=user_id,
                event_type="worker_welcome",
                data={},
                settings=self.settings,
                now=utc_now(),
            )
            if task_id is None:
                raise UserNotFound(f"Worker is not active: {user_id}")
            session.commit()
        return task_id


def _normalize_skills(skills: list[str]) -> list[str]:
    normalized: list[str] = []
    for skill in skills:
        value = skill.strip().lower()
        if value and value not in normalized:
            normalized.append(value)
    return normalized


def _to_user_view(row: AppUser) -> UserView:
    return UserView(
        user_id=row.user_id,
        display_name=row.display_name,
        email=row.email,
        role=Role(row.role),
        is_active=row.is_active,
        created_at=to_utc_aware(row.created_at),
    )


def _to_balance_view(row: CreditBalance) -> BalanceView:
    return BalanceView(
        client_id=row.client_id,
        standard_credits=row.standard_credits,
        rollover_credits=row.rollover_credits,
        total_jobs=row.total_jobs,
        total_spent=row.total_spent,
        updated_at=to_utc_aware(row.updated_at),
    )


def _to_worker_view(user: AppUser, profile: WorkerProfile) -> WorkerView:
    return WorkerView(
        user_id=user.user_id,
        display_name=user.display_name,
        email=user.email,
        is_active=user.is_active,
        skills=list(json.loads(profile.skills_json or "[]")),
        is_available=profile.is_available,
        pending_earnings=profile.pending_earnings,
        created_at=to_utc_aware(profile.created_at),
    )

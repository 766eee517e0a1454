"""SQLite engine policy and UTC datetime helpers shared by every repository."""

from __future__ import annotations

import sqlite3
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.pool import NullPool
from sqlmodel import create_engine

from jobflow.errors import ValidationError

SQLITE_PRAGMAS = (
    "PRAGMA journal_mode = WAL",
    "PRAGMA synchronous = NORMAL",
    "PRAGMA foreign_keys = ON",
)


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def to_db_datetime(value: datetime) -> datetime:
    """Normalize to naive UTC, the form SQLite columns are compared in."""

    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def to_utc_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def to_utc_aware_or_none(value: datetime | None) -> datetime | None:
    return to_utc_aware(value) if value is not None else None


def page_limit(limit: int) -> int:
    if limit <= 0:
        raise ValidationError("limit must be > 0")
    return limit


def build_sqlite_engine(*, db_path: Path, busy_timeout_ms: int) -> Engine:
    """Engine with one connection per checkout so every worker thread gets its own.

    Each new connection runs in WAL mode with foreign keys enforced and waits
    up to ``busy_timeout_ms`` for a competing writer.
    """

    db_path.parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={
            "check_same_thread": False,
            "timeout": max(1.0, busy_timeout_ms / 1000.0),
        },
        poolclass=NullPool,
    )

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection: sqlite3.Connection, _: Any) -> None:
        configure_connection(dbapi_connection, busy_timeout_ms=busy_timeout_ms)

    return engine


def configure_connection(connection: sqlite3.Connection, *, busy_timeout_ms: int) -> None:
    cursor = connection.cursor()
    try:
        for pragma in SQLITE_PRAGMAS:
            cursor.execute(pragma)
        cursor.execute(f"PRAGMA busy_timeout = {max(1, busy_timeout_ms)}")
    finally:
        cursor.close()

"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from jobflow.accounts.models import UserCreate
from jobflow.config import Settings
from jobflow.lifecycle.models import Role
from jobflow.lifecycle.service import JobService
from jobflow.processors.registry import Repositories
from jobflow.storage.alembic_runner import upgrade_head


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    path = tmp_path / "jobflow.db"
    upgrade_head(path)
    return path


@pytest.fixture()
def settings(db_path: Path) -> Settings:
    return Settings(db_path=db_path)


@pytest.fixture()
def repositories(settings: Settings) -> Iterator[Repositories]:
    opened = Repositories.open(settings)
    try:
        yield opened
    finally:
        opened.close()


@pytest.fixture()
def service(repositories: Repositories) -> JobService:
    return JobService(jobs=repositories.jobs, accounts=repositories.accounts)


@pytest.fixture()
def marketplace(repositories: Repositories) -> Repositories:
    """One admin, one client holding 20 standard credits, a designer and a video editor."""

    accounts = repositories.accounts
    accounts.add_user(
        UserCreate(user_id="admin-1", display_name="Ada", email="ada@example.com", role=Role.ADMIN),
    )
    accounts.add_user(
        UserCreate(
            user_id="client-1",
            display_name="Cleo",
            email="cleo@example.com",
            role=Role.CLIENT,
        ),
    )
    accounts.credit("client-1", standard=20)
    accounts.add_user(
        UserCreate(
            user_id="worker-1",
            display_name="Wes",
            email="wes@example.com",
            role=Role.WORKER,
            skills=["Graphic Design", "branding"],
        ),
    )
    accounts.add_user(
        UserCreate(
            user_id="worker-2",
            display_name="Vi",
            email="vi@example.com",
            role=Role.WORKER,
            skills=["video editing"],
        ),
    )
    return repositories

"""Domain models for marketplace accounts."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from jobflow.lifecycle.models import Role


@dataclass(slots=True)
class UserCreate:
    user_id: str
    display_name: str
    email: str
    role: Role
    skills: list[str] = field(default_factory=list)
    is_available: bool = True


@dataclass(slots=True)
class UserView:
    user_id: str
    display_name: str
    email: str
    role: Role
    is_active: bool
    created_at: datetime


@dataclass(slots=True)
class BalanceView:
    """Client credit balance."""

    client_id: str
    standard_credits: int
    rollover_credits: int
    total_jobs: int
    total_spent: int
    updated_at: datetime

    @property
    def available(self) -> int:
        return self.standard_credits + self.rollover_credits


@dataclass(slots=True)
class WorkerView:
    """Worker account joined with its profile."""

    user_id: str
    display_name: str
    email: str
    is_active: bool
    skills: list[str]
    is_available: bool
    pending_earnings: float
    created_at: datetime

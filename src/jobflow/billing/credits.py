"""Credit pricing, balance checks, debit planning, and worker earnings."""

from __future__ import annotations

import math
from dataclasses import dataclass

from jobflow.errors import InsufficientCredits

CATEGORY_CREDITS: dict[str, int] = {
    "video": 3,
    "design": 2,
    "web": 2,
    "social": 1,
    "admin": 1,
    "other": 2,
}

PRIORITY_MULTIPLIERS: dict[str, float] = {
    "standard": 1.0,
    "priority": 1.5,
    "rush": 2.0,
}

# Added to a queue's default priority for tasks a job causes.
QUEUE_PRIORITY_BOOST: dict[str, int] = {
    "standard": 0,
    "priority": 1,
    "rush": 2,
}

CREDIT_TO_USD = 10
WORKER_PAYOUT_PERCENTAGE = 0.70


@dataclass(frozen=True, slots=True)
class CreditQuote:
    """Cost of one job in credits."""

    base: int
    multiplier: float
    total: int
    breakdown: str


@dataclass(frozen=True, slots=True)
class CreditCheck:
    has_enough: bool
    available: int
    required: int
    shortfall: int


@dataclass(frozen=True, slots=True)
class DebitPlan:
    """How a cost is split between rollover and standard credits."""

    rollover_debit: int
    standard_debit: int

    @property
    def total(self) -> int:
        return self.rollover_debit + self.standard_debit


def quote(category: str, priority: str) -> CreditQuote:
    """Price a job; unknown categories cost like ``other``, unknown priorities like ``standard``."""

    base = CATEGORY_CREDITS.get(category, CATEGORY_CREDITS["other"])
    multiplier = PRIORITY_MULTIPLIERS.get(priority, PRIORITY_MULTIPLIERS["standard"])
    total = math.ceil(base * multiplier)
    return CreditQuote(
        base=base,
        multiplier=multiplier,
        total=total,
        breakdown=f"{base} credits ({category}) x {multiplier} ({priority}) = {total} credits",
    )


def task_priority(priority: str, default: int) -> int:
    return default + QUEUE_PRIORITY_BOOST.get(priority, 0)


def check(available: int, required: int) -> CreditCheck:
    return CreditCheck(
        has_enough=available >= required,
        available=available,
        required=required,
        shortfall=max(0, required - available),
    )


def plan_debit(*, rollover: int, standard: int, total: int) -> DebitPlan:
    """Split a debit, consuming rollover credits before standard ones.

    Raises:
        InsufficientCredits: When both balances together do not cover ``total``.
    """

    available = rollover + standard
    if available < total:
        raise InsufficientCredits(required=total, available=available)
    rollover_debit = min(rollover, total)
    return DebitPlan(rollover_debit=rollover_debit, standard_debit=total - rollover_debit)


def worker_earnings(credits_charged: int) -> float:
    """USD owed to the worker for a completed job."""

    return round(credits_charged * CREDIT_TO_USD * WORKER_PAYOUT_PERCENTAGE, 2)

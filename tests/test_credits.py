from __future__ import annotations

import allure
import pytest

from jobflow.billing.credits import check, plan_debit, quote, task_priority, worker_earnings
from jobflow.errors import InsufficientCredits

pytestmark = [
    allure.epic("Credit Ledger"),
    allure.feature("Pricing & Debits"),
]


def test_quote_rounds_multiplied_cost_up() -> None:
    result = quote("design", "priority")

    assert result.base == 2
    assert result.multiplier == 1.5
    assert result.total == 3
    assert result.breakdown == "2 credits (design) x 1.5 (priority) = 3 credits"


def test_quote_falls_back_for_unknown_category_and_priority() -> None:
    result = quote("pottery", "whenever")

    assert result.base == 2
    assert result.multiplier == 1.0
    assert result.total == 2


def test_rush_video_costs_six_credits() -> None:
    assert quote("video", "rush").total == 6


def test_check_reports_shortfall() -> None:
    result = check(available=3, required=5)

    assert not result.has_enough
    assert result.shortfall == 2
    assert check(available=5, required=5).has_enough


def test_plan_debit_consumes_rollover_first() -> None:
    plan = plan_debit(rollover=1, standard=5, total=2)

    assert plan.rollover_debit == 1
    assert plan.standard_debit == 1
    assert plan.total == 2


def test_plan_debit_raises_with_shortfall() -> None:
    with pytest.raises(InsufficientCredits) as raised:
        plan_debit(rollover=1, standard=1, total=3)

    assert raised.value.required == 3
    assert raised.value.available == 2
    assert raised.value.shortfall == 1
    assert "Shortfall: 1" in str(raised.value)


def test_worker_earnings_pay_seventy_percent_of_usd_value() -> None:
    assert worker_earnings(2) == 14.0
    assert worker_earnings(3) == 21.0


def test_task_priority_boosts_queue_default_by_job_priority() -> None:
    assert task_priority("standard", 8) == 8
    assert task_priority("priority", 8) == 9
    assert task_priority("rush", 10) == 12
    assert task_priority("unknown", 10) == 10

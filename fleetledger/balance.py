# fleetledger/balance.py
"""Journey balances and period totals, derived from the expense log.

Nothing here touches the database: callers pass a journey and its expense
rows (anything with ``type`` and ``amount``) and get integer figures back.
Balances are never stored, so every read goes through ``compute_balance``
on the full log.

    workingBalance = pouch + topUps - regular
    finalBalance   = workingBalance + (deposit + hydInward once completed)
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Protocol, Tuple

from fleetledger.categories import ExpenseCategory, classify


class _Entry(Protocol):
    type: str
    amount: int


class _JourneyLike(Protocol):
    pouch: int
    security_deposit: int
    status: str


@dataclass(frozen=True)
class JourneyBalance:
    total_regular: int
    total_top_up: int
    total_hyd_inward: int
    working_balance: int
    security_adjustment: int
    final_balance: int


@dataclass(frozen=True)
class PeriodSummary:
    revenue: int
    expenses: int
    security_deposits: int
    hyd_inward: int
    payroll_expenses: int
    profit: int
    active_journeys: int
    completed_journeys: int


def money(value) -> int:
    """Reject anything that is not a plain integer amount (floats, bools, strings)."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"money amounts must be integers in minor units, got {value!r}")
    return value


def _partition(expenses: Iterable[_Entry]) -> Tuple[int, int, int]:
    regular = top_up = hyd_inward = 0
    for expense in expenses:
        category = classify(expense.type)
        amount = money(expense.amount)
        if category is ExpenseCategory.REGULAR or category is ExpenseCategory.SYSTEM:
            regular += amount
        elif category is ExpenseCategory.TOP_UP:
            top_up += amount
        elif category is ExpenseCategory.HYD_INWARD:
            hyd_inward += amount
        elif category is ExpenseCategory.SALARY or category is ExpenseCategory.SALARY_REFUND:
            # payroll bookkeeping belongs to the period, not to a driver's pouch
            continue
        else:
            raise ValueError(f"unhandled expense category: {category!r}")
    return regular, top_up, hyd_inward


def compute_balance(journey: _JourneyLike, expenses: Iterable[_Entry]) -> JourneyBalance:
    regular, top_up, hyd_inward = _partition(expenses)
    completed = journey.status == "completed"

    working = money(journey.pouch) + top_up - regular
    security_adjustment = money(journey.security_deposit or 0) if completed else 0
    final = working + security_adjustment + (hyd_inward if completed else 0)

    return JourneyBalance(
        total_regular=regular,
        total_top_up=top_up,
        total_hyd_inward=hyd_inward,
        working_balance=working,
        security_adjustment=security_adjustment,
        final_balance=final,
    )


def summarize_period(
    journeys: Iterable[Tuple[_JourneyLike, Iterable[_Entry]]],
    bookkeeping: Iterable[_Entry] = (),
) -> PeriodSummary:
    """Company-wide totals for the current (unarchived) period.

    Revenue is pouch plus top-ups plus HYD inward of completed journeys;
    expenses are regular journey spending plus salary payouts minus
    deduction refunds; deposits count once a journey is completed.
    """
    revenue = spent = deposits = hyd_total = 0
    active = completed = 0

    for journey, expenses in journeys:
        regular, top_up, hyd_inward = _partition(expenses)
        is_completed = journey.status == "completed"
        revenue += money(journey.pouch) + top_up
        spent += regular
        if is_completed:
            completed += 1
            revenue += hyd_inward
            hyd_total += hyd_inward
            deposits += money(journey.security_deposit or 0)
        else:
            active += 1

    payroll = 0
    for entry in bookkeeping:
        category = classify(entry.type)
        if category is ExpenseCategory.SALARY:
            payroll += money(entry.amount)
        elif category is ExpenseCategory.SALARY_REFUND:
            payroll -= money(entry.amount)

    spent += payroll
    return PeriodSummary(
        revenue=revenue,
        expenses=spent,
        security_deposits=deposits,
        hyd_inward=hyd_total,
        payroll_expenses=payroll,
        profit=revenue - spent + deposits,
        active_journeys=active,
        completed_journeys=completed,
    )

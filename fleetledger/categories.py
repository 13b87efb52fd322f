# fleetledger/categories.py
"""Expense ``type`` tags and the category each one belongs to.

Stored rows keep the free-form tag a driver picked ("fuel", "toll", ...);
everything that does arithmetic works on ``ExpenseCategory`` instead, so
each consumer handles every category explicitly.
"""
from __future__ import annotations

from enum import Enum
from typing import FrozenSet


class ExpenseCategory(str, Enum):
    REGULAR = "regular"
    TOP_UP = "topUp"
    HYD_INWARD = "hydInward"
    SYSTEM = "system"
    SALARY = "salary"
    SALARY_REFUND = "salary_refund"


_RESERVED = {
    ExpenseCategory.TOP_UP.value: ExpenseCategory.TOP_UP,
    ExpenseCategory.HYD_INWARD.value: ExpenseCategory.HYD_INWARD,
    ExpenseCategory.SYSTEM.value: ExpenseCategory.SYSTEM,
    ExpenseCategory.SALARY.value: ExpenseCategory.SALARY,
    ExpenseCategory.SALARY_REFUND.value: ExpenseCategory.SALARY_REFUND,
}

PAYROLL_CATEGORIES: FrozenSet[ExpenseCategory] = frozenset(
    {ExpenseCategory.SALARY, ExpenseCategory.SALARY_REFUND}
)
CASH_CATEGORIES: FrozenSet[ExpenseCategory] = frozenset(
    {ExpenseCategory.REGULAR, ExpenseCategory.TOP_UP, ExpenseCategory.HYD_INWARD}
)


def normalize_tag(tag: str) -> str:
    return (tag or "").strip()


def classify(tag: str) -> ExpenseCategory:
    """Map a stored ``type`` tag to its category. Unknown tags are regular."""
    return _RESERVED.get(normalize_tag(tag), ExpenseCategory.REGULAR)

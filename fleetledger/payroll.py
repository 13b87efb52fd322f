# fleetledger/payroll.py
"""Driver payroll: journey deficits and admin salary edits.

Functions that take part in a larger unit of work (``apply_journey_deficit``)
only flush; the caller owns the commit. ``update_salary`` is its own unit and
commits or rolls back as a whole.

Every change to ``Salary.paid_amount`` writes one ``SalaryHistory`` row.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from fleetledger import models
from fleetledger.categories import ExpenseCategory
from fleetledger.crud import require_user
from fleetledger.errors import Conflict, Forbidden, InvalidInput
from fleetledger.logging_utils import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class SalaryEntry:
    amount: int
    description: Optional[str] = None


@dataclass
class SalaryUpdate:
    salary: models.Salary
    history: List[models.SalaryHistory] = field(default_factory=list)
    bookkeeping: List[models.Expense] = field(default_factory=list)


def _history_type(amount: int) -> str:
    if amount < 0:
        return models.SalaryHistoryType.DEDUCTION.value
    return models.SalaryHistoryType.PAYMENT.value


def _require_int(value, name: str, minimum: Optional[int] = None) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidInput(f"{name} must be an integer in minor units")
    if minimum is not None and value < minimum:
        raise InvalidInput(f"{name} must be >= {minimum}")
    return value


def get_or_create_salary(db: Session, user_id: int, lock: bool = False) -> models.Salary:
    """Load the driver's Salary row, creating an empty one on first touch.

    With ``lock`` the row is read ``FOR UPDATE`` so concurrent edits queue up
    behind this transaction.
    """
    q = db.query(models.Salary).filter(models.Salary.user_id == user_id)
    if lock:
        q = q.with_for_update()
    salary = q.first()
    if salary:
        return salary

    salary = models.Salary(user_id=user_id, salary_amount=0, paid_amount=0, last_updated=models.utcnow())
    db.add(salary)
    try:
        db.flush()
    except IntegrityError as exc:
        # Another transaction created it first; the whole unit has to be retried
        raise Conflict(f"salary record for user {user_id} was created concurrently; retry") from exc
    return salary


def apply_journey_deficit(
    db: Session, journey: models.Journey, deficit: int
) -> Tuple[models.Salary, models.SalaryHistory]:
    """Charge a journey shortfall to the driver: ``paid_amount += deficit``.

    The increment is a single SQL expression, so a concurrent admin edit or
    another journey's deficit cannot be lost between read and write.
    """
    if deficit <= 0:
        raise ValueError("deficit must be positive")

    salary = get_or_create_salary(db, journey.driver_id)
    db.query(models.Salary).filter(models.Salary.id == salary.id).update(
        {
            models.Salary.paid_amount: models.Salary.paid_amount + deficit,
            models.Salary.last_updated: models.utcnow(),
        },
        synchronize_session=False,
    )
    entry = models.SalaryHistory(
        user_id=journey.driver_id,
        journey_id=journey.id,
        amount=deficit,
        type=models.SalaryHistoryType.JOURNEY_ADJUSTMENT.value,
        description=f"Journey #{journey.id} closed {deficit} short of its pouch",
    )
    db.add(entry)
    db.flush()
    db.refresh(salary)
    logger.info("Journey %s deficit %s charged to user %s", journey.id, deficit, journey.driver_id)
    return salary, entry


def _replace_deduction_refund(db: Session, user: models.User, amount: int) -> models.Expense:
    """Keep exactly one current-period refund row per driver, for the latest deduction."""
    stale = (
        db.query(models.Expense)
        .filter(
            models.Expense.journey_id.is_(None),
            models.Expense.user_id == user.id,
            models.Expense.type == ExpenseCategory.SALARY_REFUND.value,
            models.Expense.archived.is_(False),
        )
        .all()
    )
    for row in stale:
        db.delete(row)
    refund = models.Expense(
        journey_id=None,
        user_id=user.id,
        type=ExpenseCategory.SALARY_REFUND.value,
        amount=amount,
        notes=f"Salary deduction refund for {user.name}",
    )
    db.add(refund)
    return refund


def update_salary(
    db: Session,
    user_id: int,
    actor: models.User,
    salary_amount: Optional[int] = None,
    paid_amount: Optional[int] = None,
    entries: Iterable[SalaryEntry] = (),
    is_payout: bool = False,
) -> SalaryUpdate:
    """Apply an admin salary edit as one transaction.

    ``entries`` are signed amounts added to the paid total (negative ones
    are deductions). ``paid_amount`` alone sets the total directly; sent
    together with entries it is the total the admin expects to end up with,
    and a mismatch means someone else changed the row first.
    ``is_payout`` books the current paid total as a salary expense and
    resets it to zero.
    """
    if not actor.is_admin:
        raise Forbidden("admin access required")
    user = require_user(db, user_id)

    entries = list(entries)
    for entry in entries:
        _require_int(entry.amount, "entry amount")
        if entry.amount == 0:
            raise InvalidInput("entry amount cannot be zero")
    if salary_amount is not None:
        _require_int(salary_amount, "salaryAmount", minimum=0)
    if paid_amount is not None:
        _require_int(paid_amount, "paidAmount")
    if is_payout and (entries or paid_amount is not None):
        raise InvalidInput("a payout cannot be combined with entries or paidAmount")

    try:
        salary = get_or_create_salary(db, user.id, lock=True)
        result = SalaryUpdate(salary=salary)

        if entries and paid_amount is not None:
            expected = salary.paid_amount + sum(e.amount for e in entries)
            if expected != paid_amount:
                raise Conflict("salary changed since it was loaded; reload and retry")

        if salary_amount is not None:
            salary.salary_amount = salary_amount

        if not entries and paid_amount is not None and paid_amount != salary.paid_amount:
            entries = [SalaryEntry(paid_amount - salary.paid_amount, "Paid amount adjusted by admin")]

        last_deduction = None
        for entry in entries:
            salary.paid_amount += entry.amount
            kind = _history_type(entry.amount)
            default = f"Deduction from {user.name}'s salary" if entry.amount < 0 else f"Payment to {user.name}"
            result.history.append(models.SalaryHistory(
                user_id=user.id, amount=entry.amount, type=kind,
                description=entry.description or default,
            ))
            if entry.amount < 0:
                last_deduction = entry.amount

        if last_deduction is not None:
            result.bookkeeping.append(_replace_deduction_refund(db, user, -last_deduction))

        if is_payout and salary.paid_amount != 0:
            previous = salary.paid_amount
            if previous > 0:
                result.bookkeeping.append(models.Expense(
                    journey_id=None, user_id=user.id, type=ExpenseCategory.SALARY.value,
                    amount=previous, notes=f"Full salary payment to {user.name}",
                ))
            result.history.append(models.SalaryHistory(
                user_id=user.id, amount=previous, type=_history_type(previous),
                description=f"Full salary payout to {user.name}; paid amount reset",
            ))
            salary.paid_amount = 0

        salary.last_updated = models.utcnow()
        db.add_all(result.history)
        db.add_all(result.bookkeeping)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(salary)
    logger.info(
        "Salary for user %s updated by %s: %s entr(ies), payout=%s, paid=%s",
        user.id, actor.id, len(result.history), is_payout, salary.paid_amount,
    )
    return result


def list_salaries(db: Session) -> List[Tuple[models.User, Optional[models.Salary]]]:
    users = db.query(models.User).order_by(models.User.name.asc()).all()
    salaries = {s.user_id: s for s in db.query(models.Salary).all()}
    return [(u, salaries.get(u.id)) for u in users]

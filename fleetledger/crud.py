# fleetledger/crud.py
from __future__ import annotations

from typing import List, Optional

import bcrypt
from sqlalchemy.orm import Session

from fleetledger import models
from fleetledger.balance import PeriodSummary, summarize_period
from fleetledger.categories import CASH_CATEGORIES, ExpenseCategory, PAYROLL_CATEGORIES, classify, normalize_tag
from fleetledger.config import settings
from fleetledger.errors import Forbidden, InvalidInput, InvalidState, NotFound
from fleetledger.logging_utils import get_logger

logger = get_logger(__name__)


# ---------- PASSWORDS ----------
def _sanitize_hash(h: Optional[str]) -> str:
    return (h or "").strip().replace("`", "")


def bcrypt_verify(plain: str, hashed: Optional[str]) -> bool:
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), _sanitize_hash(hashed).encode("utf-8"))
    except ValueError:
        # malformed stored hash
        return False


def bcrypt_hash(plain: str) -> str:
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=settings.bcrypt_rounds)).decode("utf-8")


# ---------- USER ----------
def require_user(db: Session, user_id: int) -> models.User:
    user = db.get(models.User, user_id)
    if not user:
        raise NotFound(f"user {user_id} not found")
    return user


def get_user_by_username(db: Session, username: str):
    return db.query(models.User).filter(models.User.username == username).first()


def list_users(db: Session) -> List[models.User]:
    return db.query(models.User).order_by(models.User.name.asc()).all()


def count_users(db: Session) -> int:
    return db.query(models.User).count()


def create_user(db: Session, username: str, password: str, name: str, is_admin: bool = False):
    username = username.strip()
    if not username or not password:
        raise InvalidInput("username and password are required")
    if get_user_by_username(db, username):
        raise InvalidInput(f"username {username!r} is taken")
    obj = models.User(
        username=username,
        password_hash=bcrypt_hash(password),
        name=(name or "").strip() or username,
        is_admin=is_admin,
    )
    db.add(obj); db.commit(); db.refresh(obj)
    logger.info("Created %s %s (id=%s)", "admin" if is_admin else "driver", obj.username, obj.id)
    return obj


def verify_user(db: Session, username: str, password: str):
    u = get_user_by_username(db, username.strip())
    if not u or not u.is_active:
        return None
    if bcrypt_verify(password, u.password_hash):
        return u
    return None


def deactivate_user(db: Session, user_id: int, actor: models.User) -> models.User:
    """Retire a driver without touching the identity their journeys point at."""
    user = require_user(db, user_id)
    if user.id == actor.id:
        raise Forbidden("admins cannot deactivate their own account")
    if not user.is_active:
        return user

    user.status = models.UserStatus.DEACTIVATED.value
    journeys = (
        db.query(models.Journey)
        .filter(models.Journey.driver_id == user.id, models.Journey.archived.is_(False))
        .all()
    )
    for journey in journeys:
        db.add(models.Expense(
            journey_id=journey.id,
            type=ExpenseCategory.SYSTEM.value,
            amount=0,
            notes=f"driver record deactivated ({user.name})",
        ))
    db.commit(); db.refresh(user)
    logger.info("Deactivated user %s; annotated %s journey(s)", user.id, len(journeys))
    return user


# ---------- VEHICLE ----------
def create_vehicle(db: Session, license_plate: str, model: Optional[str] = None):
    plate = (license_plate or "").strip().upper()
    if len(plate) < 3:
        raise InvalidInput("license plate is required")
    if db.query(models.Vehicle).filter(models.Vehicle.license_plate == plate).first():
        raise InvalidInput(f"vehicle {plate} already registered")
    obj = models.Vehicle(license_plate=plate, model=(model or "").strip() or None)
    db.add(obj); db.commit(); db.refresh(obj)
    return obj


def get_vehicle(db: Session, vehicle_id: int):
    return db.get(models.Vehicle, vehicle_id)


def list_vehicles(db: Session) -> List[models.Vehicle]:
    return db.query(models.Vehicle).order_by(models.Vehicle.license_plate.asc()).all()


# ---------- JOURNEY ----------
def require_journey(db: Session, journey_id: int) -> models.Journey:
    journey = db.get(models.Journey, journey_id)
    if not journey:
        raise NotFound(f"journey {journey_id} not found")
    return journey


def lock_journey(db: Session, journey_id: int) -> models.Journey:
    """Reload the journey ``FOR UPDATE`` so writers queue behind each other."""
    journey = (
        db.query(models.Journey)
        .filter(models.Journey.id == journey_id)
        .populate_existing()
        .with_for_update()
        .first()
    )
    if not journey:
        raise NotFound(f"journey {journey_id} not found")
    return journey


def authorize_journey(journey: models.Journey, actor: models.User) -> None:
    if not actor.is_active:
        raise Forbidden("account is deactivated")
    if not (actor.is_admin or journey.driver_id == actor.id):
        raise Forbidden(f"not authorized for journey {journey.id}")


def active_journey_for_vehicle(db: Session, vehicle_id: int):
    return (
        db.query(models.Journey)
        .filter(models.Journey.active_vehicle_id == vehicle_id)
        .first()
    )


def list_journeys(
    db: Session,
    scope: str = "all",
    driver_id: Optional[int] = None,
    include_archived: bool = False,
) -> List[models.Journey]:
    q = db.query(models.Journey)
    if scope == "active":
        q = q.filter(models.Journey.status == models.JourneyStatus.ACTIVE.value)
    elif scope != "all":
        raise InvalidInput(f"unknown scope {scope!r}")
    if not include_archived:
        q = q.filter(models.Journey.archived.is_(False))
    if driver_id is not None:
        q = q.filter(models.Journey.driver_id == driver_id)
    return q.order_by(models.Journey.start_time.desc(), models.Journey.id.desc()).all()


# ---------- EXPENSE ----------
def _validate_expense(expense_type: str, amount) -> str:
    tag = normalize_tag(expense_type)
    if not tag:
        raise InvalidInput("expense type is required")
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidInput(f"amount must be an integer in minor units, got {amount!r}")

    category = classify(tag)
    if category in PAYROLL_CATEGORIES:
        raise InvalidInput(f"{tag!r} entries are created by payroll only")
    if category is ExpenseCategory.SYSTEM and amount != 0:
        raise InvalidInput("system annotations carry no amount")
    if category in CASH_CATEGORIES and amount == 0:
        raise InvalidInput("amount must be non-zero")
    return tag


def append_expense(
    db: Session,
    journey_id: int,
    actor: models.User,
    expense_type: str,
    amount,
    note: Optional[str] = None,
) -> models.Expense:
    journey = lock_journey(db, journey_id)
    try:
        authorize_journey(journey, actor)
        tag = _validate_expense(expense_type, amount)
        if not journey.is_active:
            raise InvalidState(f"journey {journey.id} is {journey.status}; its ledger is settled")

        obj = models.Expense(journey_id=journey.id, type=tag, amount=amount, notes=(note or "").strip() or None)
        db.add(obj)
        db.flush()
        # SQLite has no row locks: re-check inside the write transaction, after End may have committed
        status = db.query(models.Journey.status).filter(models.Journey.id == journey.id).scalar()
        if status != models.JourneyStatus.ACTIVE.value:
            logger.warning("Journey %s ended while a %s entry was being appended", journey.id, tag)
            raise InvalidState(f"journey {journey.id} is {status}; its ledger is settled")
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(obj)
    logger.info("Journey %s: %s %s by user %s", journey.id, tag, amount, actor.id)
    return obj


def list_expenses(db: Session, journey_id: int, ascending: bool = False) -> List[models.Expense]:
    ts, eid = models.Expense.timestamp, models.Expense.id
    order = (ts.asc(), eid.asc()) if ascending else (ts.desc(), eid.desc())
    return (
        db.query(models.Expense)
        .filter(models.Expense.journey_id == journey_id)
        .order_by(*order)
        .all()
    )


def list_bookkeeping_expenses(db: Session, include_archived: bool = False) -> List[models.Expense]:
    q = db.query(models.Expense).filter(models.Expense.journey_id.is_(None))
    if not include_archived:
        q = q.filter(models.Expense.archived.is_(False))
    return q.order_by(models.Expense.timestamp.asc(), models.Expense.id.asc()).all()


# ---------- LOCATION ----------
def record_location(
    db: Session,
    journey_id: int,
    actor: models.User,
    latitude: float,
    longitude: float,
    speed: Optional[float] = None,
) -> models.LocationPing:
    journey = require_journey(db, journey_id)
    authorize_journey(journey, actor)
    if not (-90.0 <= latitude <= 90.0 and -180.0 <= longitude <= 180.0):
        raise InvalidInput("coordinates out of range")
    if not journey.is_active:
        raise InvalidState(f"journey {journey.id} is {journey.status}")

    ping = models.LocationPing(journey_id=journey.id, latitude=latitude, longitude=longitude, speed=speed)
    journey.current_latitude = latitude
    journey.current_longitude = longitude
    journey.current_speed = speed
    db.add(ping); db.commit(); db.refresh(ping)
    return ping


# ---------- REPORTING ----------
def period_summary(db: Session) -> PeriodSummary:
    journeys = list_journeys(db, scope="all", include_archived=False)
    pairs = [(j, list_expenses(db, j.id, ascending=True)) for j in journeys]
    return summarize_period(pairs, list_bookkeeping_expenses(db))


# ---------- SALARY (reads) ----------
def get_salary(db: Session, user_id: int):
    return db.query(models.Salary).filter(models.Salary.user_id == user_id).first()


def list_salary_history(db: Session, user_id: int) -> List[models.SalaryHistory]:
    return (
        db.query(models.SalaryHistory)
        .filter(models.SalaryHistory.user_id == user_id)
        .order_by(models.SalaryHistory.timestamp.desc(), models.SalaryHistory.id.desc())
        .all()
    )

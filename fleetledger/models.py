# fleetledger/models.py
from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    BigInteger, Boolean, Column, DateTime, Float, ForeignKey, Integer, String, Text, event,
)
from sqlalchemy.orm import Session, relationship, validates

from fleetledger.categories import ExpenseCategory, classify
from fleetledger.db import Base
from fleetledger.errors import InvalidState


def utcnow() -> datetime:
    # Naive UTC, matching what DateTime columns hand back on every backend
    return datetime.now(timezone.utc).replace(tzinfo=None)


class UserStatus(str, enum.Enum):
    ACTIVE = "active"
    DEACTIVATED = "deactivated"


class JourneyStatus(str, enum.Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


class SalaryHistoryType(str, enum.Enum):
    PAYMENT = "payment"
    DEDUCTION = "deduction"
    JOURNEY_ADJUSTMENT = "journey_adjustment"


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(100), unique=True, nullable=False)
    name = Column(String(200), nullable=False)
    password_hash = Column(String(255), nullable=False)
    is_admin = Column(Boolean, nullable=False, default=False)
    # Deactivated drivers keep their identity so historical journeys stay valid
    status = Column(String(16), nullable=False, default=UserStatus.ACTIVE.value)
    created_at = Column(DateTime, default=utcnow)

    journeys = relationship("Journey", back_populates="driver")
    salary = relationship("Salary", back_populates="user", uselist=False)

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE.value


class Vehicle(Base):
    __tablename__ = "vehicles"
    id = Column(Integer, primary_key=True, index=True)
    license_plate = Column(String(32), unique=True, nullable=False)
    model = Column(String(100))
    created_at = Column(DateTime, default=utcnow)

    journeys = relationship("Journey", back_populates="vehicle", foreign_keys="Journey.vehicle_id")


class Journey(Base):
    __tablename__ = "journeys"
    id = Column(Integer, primary_key=True, index=True)
    driver_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"), nullable=False, index=True)
    # Mirrors vehicle_id while active, NULL afterwards; UNIQUE => one active journey per vehicle
    active_vehicle_id = Column(Integer, ForeignKey("vehicles.id"), unique=True, nullable=True)

    origin = Column(String(200))
    destination = Column(String(200), nullable=False)

    pouch = Column(BigInteger, nullable=False)
    security_deposit = Column(BigInteger, nullable=False, default=0)

    status = Column(String(16), nullable=False, default=JourneyStatus.ACTIVE.value, index=True)
    archived = Column(Boolean, nullable=False, default=False, index=True)
    start_time = Column(DateTime, nullable=False, default=utcnow)
    end_time = Column(DateTime, nullable=True)

    current_latitude = Column(Float)
    current_longitude = Column(Float)
    current_speed = Column(Float)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    driver = relationship("User", back_populates="journeys")
    vehicle = relationship("Vehicle", back_populates="journeys", foreign_keys=[vehicle_id])
    expenses = relationship("Expense", back_populates="journey", order_by="Expense.timestamp.desc()")
    locations = relationship("LocationPing", back_populates="journey")

    @validates("pouch", "security_deposit")
    def _seed_is_write_once(self, key, value):
        current = getattr(self, key)
        if current is not None and value != current:
            raise InvalidState(f"journey {key} cannot change after creation")
        return value

    @property
    def is_active(self) -> bool:
        return self.status == JourneyStatus.ACTIVE.value

    @property
    def is_completed(self) -> bool:
        return self.status == JourneyStatus.COMPLETED.value


class Expense(Base):
    __tablename__ = "expenses"
    id = Column(Integer, primary_key=True, index=True)
    # NULL only for salary / salary_refund bookkeeping rows
    journey_id = Column(Integer, ForeignKey("journeys.id"), nullable=True, index=True)
    # Driver a bookkeeping row refers to
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    type = Column(String(50), nullable=False)
    amount = Column(BigInteger, nullable=False)
    notes = Column(Text, nullable=True)
    timestamp = Column(DateTime, nullable=False, default=utcnow, index=True)
    # Period flag for bookkeeping rows; journey rows follow their journey
    archived = Column(Boolean, nullable=False, default=False)

    journey = relationship("Journey", back_populates="expenses")

    @property
    def category(self) -> ExpenseCategory:
        return classify(self.type)

    @property
    def is_bookkeeping(self) -> bool:
        return self.journey_id is None and self.category in (
            ExpenseCategory.SALARY, ExpenseCategory.SALARY_REFUND
        )


class LocationPing(Base):
    __tablename__ = "location_pings"
    id = Column(Integer, primary_key=True, index=True)
    journey_id = Column(Integer, ForeignKey("journeys.id"), nullable=False, index=True)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    speed = Column(Float, nullable=True)
    timestamp = Column(DateTime, nullable=False, default=utcnow)

    journey = relationship("Journey", back_populates="locations")


class Salary(Base):
    __tablename__ = "salaries"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    salary_amount = Column(BigInteger, nullable=False, default=0)
    paid_amount = Column(BigInteger, nullable=False, default=0)
    last_updated = Column(DateTime, default=utcnow)

    user = relationship("User", back_populates="salary")

    @property
    def balance(self) -> int:
        return (self.salary_amount or 0) - (self.paid_amount or 0)


class SalaryHistory(Base):
    __tablename__ = "salary_history"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    journey_id = Column(Integer, ForeignKey("journeys.id"), nullable=True)
    amount = Column(BigInteger, nullable=False)
    type = Column(String(32), nullable=False)
    description = Column(String(500))
    timestamp = Column(DateTime, nullable=False, default=utcnow)


@event.listens_for(Session, "before_flush")
def _expenses_are_append_only(session, flush_context, instances):
    for obj in session.dirty:
        if isinstance(obj, Expense) and session.is_modified(obj, include_collections=False):
            raise InvalidState(f"expense {obj.id} is append-only")
    for obj in session.deleted:
        if isinstance(obj, Expense) and not (
            obj.is_bookkeeping and obj.category is ExpenseCategory.SALARY_REFUND
        ):
            raise InvalidState(f"expense {obj.id} cannot be deleted")

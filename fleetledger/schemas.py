# fleetledger/schemas.py
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictInt
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    # camelCase on the wire, snake_case in Python
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# ---------- Auth ----------
class LoginRequest(CamelModel):
    username: str
    password: str


class SetupRequest(CamelModel):
    username: str
    password: str
    name: str = ""


# ---------- User ----------
class UserCreate(CamelModel):
    username: str
    password: str
    name: str = ""
    is_admin: bool = False


class User(CamelModel):
    id: int
    username: str
    name: str
    is_admin: bool
    status: str
    created_at: Optional[datetime] = None


# ---------- Vehicle ----------
class VehicleCreate(CamelModel):
    license_plate: str
    model: Optional[str] = None


class Vehicle(CamelModel):
    id: int
    license_plate: str
    model: Optional[str] = None


# ---------- Journey ----------
class JourneyStart(CamelModel):
    driver_id: Optional[int] = None
    vehicle_id: int
    pouch: StrictInt
    security_deposit: StrictInt = 0
    destination: str
    origin: Optional[str] = None


class Journey(CamelModel):
    id: int
    driver_id: int
    vehicle_id: int
    origin: Optional[str] = None
    destination: str
    pouch: int
    security_deposit: int
    status: str
    archived: bool
    start_time: datetime
    end_time: Optional[datetime] = None
    current_latitude: Optional[float] = None
    current_longitude: Optional[float] = None
    current_speed: Optional[float] = None


class Balance(CamelModel):
    total_regular: int
    total_top_up: int
    total_hyd_inward: int
    working_balance: int
    security_adjustment: int
    final_balance: int


class JourneyWithBalance(Journey, Balance):
    pass


# ---------- Expense ----------
class ExpenseCreate(CamelModel):
    type: str
    amount: StrictInt
    note: Optional[str] = None


class Expense(CamelModel):
    id: int
    journey_id: Optional[int] = None
    user_id: Optional[int] = None
    type: str
    amount: int
    notes: Optional[str] = None
    timestamp: datetime


class JourneyDetail(JourneyWithBalance):
    expenses: List[Expense] = Field(default_factory=list)


# ---------- Location ----------
class LocationCreate(CamelModel):
    latitude: float
    longitude: float
    speed: Optional[float] = None


class LocationPing(CamelModel):
    id: int
    journey_id: int
    latitude: float
    longitude: float
    speed: Optional[float] = None
    timestamp: datetime


# ---------- Salary ----------
class SalaryEntryIn(CamelModel):
    amount: StrictInt
    description: Optional[str] = None


class SalaryUpdateRequest(CamelModel):
    salary_amount: Optional[StrictInt] = None
    paid_amount: Optional[StrictInt] = None
    entries: List[SalaryEntryIn] = Field(default_factory=list)
    is_payout: bool = False


class Salary(CamelModel):
    user_id: int
    salary_amount: int
    paid_amount: int
    balance: int
    last_updated: Optional[datetime] = None


class SalaryOverview(CamelModel):
    user_id: int
    username: str
    name: str
    status: str
    salary_amount: int = 0
    paid_amount: int = 0
    balance: int = 0


class SalaryHistory(CamelModel):
    id: int
    user_id: int
    journey_id: Optional[int] = None
    amount: int
    type: str
    description: Optional[str] = None
    timestamp: datetime


class SalaryUpdateResult(CamelModel):
    salary: Salary
    history: List[SalaryHistory] = Field(default_factory=list)
    bookkeeping: List[Expense] = Field(default_factory=list)


# ---------- Lifecycle results ----------
class JourneyEndResult(JourneyWithBalance):
    payroll_adjustment: Optional[SalaryHistory] = None
    salary: Optional[Salary] = None


class ArchiveResult(CamelModel):
    archived_count: int
    archived_payroll_entries: int
    failed_ids: List[int] = Field(default_factory=list)


class FinancialSummary(CamelModel):
    revenue: int
    expenses: int
    security_deposits: int
    hyd_inward: int
    payroll_expenses: int
    profit: int
    active_journeys: int
    completed_journeys: int

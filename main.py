# main.py (project root)

from __future__ import annotations

from dataclasses import asdict
from typing import Dict, List

from fastapi import Depends, FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.middleware.sessions import SessionMiddleware

from fleetledger import crud, lifecycle, models, payroll, schemas
from fleetledger.balance import compute_balance
from fleetledger.config import settings
from fleetledger.db import Base, engine, get_db
from fleetledger.errors import Forbidden, InvalidState, LedgerError, NotAuthenticated
from fleetledger.logging_utils import configure_root_logger, get_logger

# ---------------- App ----------------

configure_root_logger()
logger = get_logger("fleetledger.api")

Base.metadata.create_all(bind=engine)

app = FastAPI(title="Fleet Journey Ledger", version="1.0.0")
app.add_middleware(SessionMiddleware, secret_key=settings.session_key)


@app.exception_handler(LedgerError)
def ledger_error_handler(request: Request, exc: LedgerError):
    logger.info("%s %s rejected: %s (%s)", request.method, request.url.path, exc.code, exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.code, "detail": exc.detail})


@app.exception_handler(RequestValidationError)
def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content={"error": "invalid_input", "detail": jsonable_encoder(exc.errors())},
    )


# ---------------- Helpers ----------------

def current_user(request: Request, db: Session = Depends(get_db)) -> models.User:
    uid = request.session.get("user_id")
    user = db.get(models.User, uid) if uid else None
    if not user or not user.is_active:
        raise NotAuthenticated("login required")
    return user


def require_admin(user: models.User = Depends(current_user)) -> models.User:
    if not user.is_admin:
        raise Forbidden("admin access required")
    return user


def _with_balance(journey: models.Journey, expenses) -> Dict:
    balance = compute_balance(journey, expenses)
    return {**schemas.Journey.model_validate(journey).model_dump(), **asdict(balance)}


def _salary_overview(user: models.User, salary) -> schemas.SalaryOverview:
    return schemas.SalaryOverview(
        user_id=user.id,
        username=user.username,
        name=user.name,
        status=user.status,
        salary_amount=salary.salary_amount if salary else 0,
        paid_amount=salary.paid_amount if salary else 0,
        balance=salary.balance if salary else 0,
    )


# ---------------- Health ----------------

@app.get("/health")
def health() -> Dict[str, bool]:
    return {"ok": True}


# ---------------- First-time Setup & Auth ----------------

@app.post("/setup", response_model=schemas.User, status_code=201)
def setup_do(body: schemas.SetupRequest, request: Request, db: Session = Depends(get_db)):
    if crud.count_users(db):
        raise InvalidState("setup has already been completed")
    user = crud.create_user(db, body.username, body.password, body.name, is_admin=True)
    request.session["user_id"] = user.id
    return user


@app.post("/login", response_model=schemas.User)
def login_do(body: schemas.LoginRequest, request: Request, db: Session = Depends(get_db)):
    user = crud.verify_user(db, body.username, body.password)
    if not user:
        logger.warning("Failed login for %r", body.username)
        raise NotAuthenticated("invalid credentials")
    request.session["user_id"] = user.id
    return user


@app.post("/logout")
def logout(request: Request) -> Dict[str, bool]:
    request.session.pop("user_id", None)
    return {"ok": True}


@app.get("/me", response_model=schemas.User)
def me(user: models.User = Depends(current_user)):
    return user


# ---------------- Admin: users & vehicles ----------------

@app.post("/admin/users", response_model=schemas.User, status_code=201)
def users_create(
    body: schemas.UserCreate,
    db: Session = Depends(get_db),
    admin: models.User = Depends(require_admin),
):
    return crud.create_user(db, body.username, body.password, body.name, is_admin=body.is_admin)


@app.get("/admin/users", response_model=List[schemas.User])
def users_list(db: Session = Depends(get_db), admin: models.User = Depends(require_admin)):
    return crud.list_users(db)


@app.post("/admin/users/{user_id}/deactivate", response_model=schemas.User)
def users_deactivate(
    user_id: int,
    db: Session = Depends(get_db),
    admin: models.User = Depends(require_admin),
):
    return crud.deactivate_user(db, user_id, admin)


@app.post("/admin/vehicles", response_model=schemas.Vehicle, status_code=201)
def vehicles_create(
    body: schemas.VehicleCreate,
    db: Session = Depends(get_db),
    admin: models.User = Depends(require_admin),
):
    return crud.create_vehicle(db, body.license_plate, body.model)


@app.get("/admin/vehicles", response_model=List[schemas.Vehicle])
def vehicles_list(db: Session = Depends(get_db), admin: models.User = Depends(require_admin)):
    return crud.list_vehicles(db)


# ---------------- Journeys ----------------

@app.post("/journey/start", response_model=schemas.Journey, status_code=201)
def journey_start(
    body: schemas.JourneyStart,
    db: Session = Depends(get_db),
    user: models.User = Depends(current_user),
):
    return lifecycle.start_journey(
        db,
        user,
        vehicle_id=body.vehicle_id,
        pouch=body.pouch,
        security_deposit=body.security_deposit,
        destination=body.destination,
        origin=body.origin,
        driver_id=body.driver_id,
    )


@app.post("/journey/{journey_id}/expense", response_model=schemas.Expense, status_code=201)
def journey_expense(
    journey_id: int,
    body: schemas.ExpenseCreate,
    db: Session = Depends(get_db),
    user: models.User = Depends(current_user),
):
    return crud.append_expense(db, journey_id, user, body.type, body.amount, body.note)


@app.post("/journey/{journey_id}/location", response_model=schemas.LocationPing, status_code=201)
def journey_location(
    journey_id: int,
    body: schemas.LocationCreate,
    db: Session = Depends(get_db),
    user: models.User = Depends(current_user),
):
    return crud.record_location(db, journey_id, user, body.latitude, body.longitude, body.speed)


@app.post("/journey/{journey_id}/end", response_model=schemas.JourneyEndResult)
def journey_end(
    journey_id: int,
    db: Session = Depends(get_db),
    user: models.User = Depends(current_user),
):
    result = lifecycle.end_journey_and_reconcile(db, journey_id, user)
    return schemas.JourneyEndResult(
        **schemas.Journey.model_validate(result.journey).model_dump(),
        **asdict(result.balance),
        payroll_adjustment=schemas.SalaryHistory.model_validate(result.adjustment) if result.adjustment else None,
        salary=schemas.Salary.model_validate(result.salary) if result.salary else None,
    )


@app.get("/journey/{journey_id}", response_model=schemas.JourneyDetail)
def journey_detail(
    journey_id: int,
    db: Session = Depends(get_db),
    user: models.User = Depends(current_user),
):
    journey = crud.require_journey(db, journey_id)
    crud.authorize_journey(journey, user)
    expenses = crud.list_expenses(db, journey.id)
    return schemas.JourneyDetail(
        **_with_balance(journey, expenses),
        expenses=[schemas.Expense.model_validate(e) for e in expenses],
    )


@app.get("/journeys", response_model=List[schemas.JourneyWithBalance])
def journeys_list(
    scope: str = Query("all"),
    include_archived: bool = Query(False, alias="includeArchived"),
    db: Session = Depends(get_db),
    user: models.User = Depends(current_user),
):
    driver_id = None if user.is_admin else user.id
    journeys = crud.list_journeys(db, scope=scope, driver_id=driver_id, include_archived=include_archived)
    return [_with_balance(j, crud.list_expenses(db, j.id)) for j in journeys]


# ---------------- Admin: payroll & reporting ----------------

@app.post("/admin/salary/{user_id}", response_model=schemas.SalaryUpdateResult)
def salary_update(
    user_id: int,
    body: schemas.SalaryUpdateRequest,
    db: Session = Depends(get_db),
    admin: models.User = Depends(require_admin),
):
    result = payroll.update_salary(
        db,
        user_id,
        admin,
        salary_amount=body.salary_amount,
        paid_amount=body.paid_amount,
        entries=[payroll.SalaryEntry(e.amount, e.description) for e in body.entries],
        is_payout=body.is_payout,
    )
    return schemas.SalaryUpdateResult(
        salary=schemas.Salary.model_validate(result.salary),
        history=[schemas.SalaryHistory.model_validate(h) for h in result.history],
        bookkeeping=[schemas.Expense.model_validate(e) for e in result.bookkeeping],
    )


@app.get("/admin/salaries", response_model=List[schemas.SalaryOverview])
def salaries_list(db: Session = Depends(get_db), admin: models.User = Depends(require_admin)):
    return [_salary_overview(u, s) for u, s in payroll.list_salaries(db)]


@app.get("/admin/salary/{user_id}/history", response_model=List[schemas.SalaryHistory])
def salary_history(
    user_id: int,
    db: Session = Depends(get_db),
    admin: models.User = Depends(require_admin),
):
    crud.require_user(db, user_id)
    return crud.list_salary_history(db, user_id)


@app.post("/admin/reset-financial-data", response_model=schemas.ArchiveResult)
def reset_financial_data(db: Session = Depends(get_db), admin: models.User = Depends(require_admin)):
    logger.info("Financial reset requested by user %s", admin.id)
    return lifecycle.archive_completed_journeys(db)


@app.get("/admin/financial-summary", response_model=schemas.FinancialSummary)
def financial_summary(db: Session = Depends(get_db), admin: models.User = Depends(require_admin)):
    return crud.period_summary(db)


# uvicorn main:api also works
api = app

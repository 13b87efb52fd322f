# fleetledger/lifecycle.py
"""Journey lifecycle: active -> completed, plus the archive flag.

Start relies on the UNIQUE ``journeys.active_vehicle_id`` column for vehicle
exclusivity; the pre-check only gives a nicer error on the common path.
End is a single command that flips the status and charges any deficit to
payroll in the same transaction. There is no way back to ``active``.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from fleetledger import crud, models
from fleetledger.balance import JourneyBalance, compute_balance
from fleetledger.errors import Forbidden, InvalidInput, InvalidState, NotFound, VehicleBusy
from fleetledger.logging_utils import get_logger
from fleetledger.payroll import apply_journey_deficit

logger = get_logger(__name__)

ACTIVE = models.JourneyStatus.ACTIVE.value
COMPLETED = models.JourneyStatus.COMPLETED.value


@dataclass(frozen=True)
class EndResult:
    journey: models.Journey
    balance: JourneyBalance
    salary: Optional[models.Salary] = None
    adjustment: Optional[models.SalaryHistory] = None


@dataclass
class ArchiveReport:
    archived_count: int = 0
    archived_payroll_entries: int = 0
    failed_ids: List[int] = field(default_factory=list)


def start_journey(
    db: Session,
    actor: models.User,
    vehicle_id: int,
    pouch,
    security_deposit,
    destination: str,
    origin: Optional[str] = None,
    driver_id: Optional[int] = None,
) -> models.Journey:
    if not actor.is_active:
        raise Forbidden("account is deactivated")
    driver_id = actor.id if driver_id is None else driver_id
    if driver_id != actor.id and not actor.is_admin:
        raise Forbidden("drivers can only start their own journeys")

    if isinstance(pouch, bool) or not isinstance(pouch, int) or pouch <= 0:
        raise InvalidInput("pouch must be a positive integer amount")
    if isinstance(security_deposit, bool) or not isinstance(security_deposit, int) or security_deposit < 0:
        raise InvalidInput("securityDeposit must be a non-negative integer amount")
    destination = (destination or "").strip()
    if len(destination) < 3:
        raise InvalidInput("destination is required")

    driver = crud.require_user(db, driver_id)
    if not driver.is_active:
        raise InvalidState(f"driver {driver.id} is deactivated")
    vehicle = crud.get_vehicle(db, vehicle_id)
    if not vehicle:
        raise NotFound(f"vehicle {vehicle_id} not found")
    if crud.active_journey_for_vehicle(db, vehicle.id):
        raise VehicleBusy(f"vehicle {vehicle.license_plate} is already in use")

    journey = models.Journey(
        driver_id=driver.id,
        vehicle_id=vehicle.id,
        active_vehicle_id=vehicle.id,
        origin=(origin or "").strip() or None,
        destination=destination,
        pouch=pouch,
        security_deposit=security_deposit,
        status=ACTIVE,
        archived=False,
        start_time=models.utcnow(),
    )
    db.add(journey)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        logger.warning("Start rejected: vehicle %s claimed concurrently", vehicle.id)
        raise VehicleBusy(f"vehicle {vehicle.license_plate} is already in use") from exc
    db.refresh(journey)
    logger.info(
        "Journey %s started: driver=%s vehicle=%s pouch=%s deposit=%s",
        journey.id, driver.id, vehicle.id, pouch, security_deposit,
    )
    return journey


class EndJourneyAndReconcile:
    """End an active journey and settle its deficit against payroll.

    Either both the status flip and the payroll write commit, or neither
    does. The conditional UPDATE on ``status`` makes a second End on the
    same journey fail with ``InvalidState`` instead of charging twice.
    """

    def __init__(self, db: Session, journey_id: int, actor: models.User):
        self.db = db
        self.journey_id = journey_id
        self.actor = actor

    def execute(self) -> EndResult:
        db = self.db
        journey = crud.lock_journey(db, self.journey_id)
        crud.authorize_journey(journey, self.actor)
        if not journey.is_active:
            raise InvalidState(f"journey {journey.id} is already {journey.status}")

        salary = adjustment = None
        try:
            flipped = (
                db.query(models.Journey)
                .filter(models.Journey.id == journey.id, models.Journey.status == ACTIVE)
                .update(
                    {
                        models.Journey.status: COMPLETED,
                        models.Journey.end_time: models.utcnow(),
                        models.Journey.active_vehicle_id: None,
                    },
                    synchronize_session=False,
                )
            )
            if flipped != 1:
                raise InvalidState(f"journey {journey.id} was ended concurrently")

            # read after the flip: appends committed before it are included, later ones see "completed"
            expenses = crud.list_expenses(db, journey.id, ascending=True)
            working = compute_balance(journey, expenses).working_balance

            if working < 0:
                salary, adjustment = apply_journey_deficit(db, journey, -working)
            db.commit()
        except Exception:
            db.rollback()
            raise

        db.refresh(journey)
        balance = compute_balance(journey, expenses)
        logger.info(
            "Journey %s completed by user %s: working=%s final=%s",
            journey.id, self.actor.id, balance.working_balance, balance.final_balance,
        )
        return EndResult(journey=journey, balance=balance, salary=salary, adjustment=adjustment)


def end_journey_and_reconcile(db: Session, journey_id: int, actor: models.User) -> EndResult:
    return EndJourneyAndReconcile(db, journey_id, actor).execute()


def archive_completed_journeys(db: Session) -> ArchiveReport:
    """Move every completed, unarchived journey out of the current period.

    Each journey is archived in its own transaction; one failure is logged
    and skipped. Running it again archives nothing new.
    """
    report = ArchiveReport()
    ids = [
        row.id
        for row in db.query(models.Journey.id)
        .filter(models.Journey.status == COMPLETED, models.Journey.archived.is_(False))
        .order_by(models.Journey.id.asc())
        .all()
    ]
    logger.info("Archiving %s completed journey(s)", len(ids))

    for journey_id in ids:
        try:
            report.archived_count += (
                db.query(models.Journey)
                .filter(
                    models.Journey.id == journey_id,
                    models.Journey.status == COMPLETED,
                    models.Journey.archived.is_(False),
                )
                .update({models.Journey.archived: True}, synchronize_session=False)
            )
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Failed to archive journey %s", journey_id)
            report.failed_ids.append(journey_id)

    try:
        report.archived_payroll_entries = (
            db.query(models.Expense)
            .filter(models.Expense.journey_id.is_(None), models.Expense.archived.is_(False))
            .update({models.Expense.archived: True}, synchronize_session=False)
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to archive payroll bookkeeping entries")

    logger.info(
        "Archive finished: %s journey(s), %s payroll entr(ies), %s failure(s)",
        report.archived_count, report.archived_payroll_entries, len(report.failed_ids),
    )
    return report

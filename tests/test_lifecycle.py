import pytest

from fleetledger import crud, lifecycle, models
from fleetledger.errors import Forbidden, InvalidInput, InvalidState, NotFound, VehicleBusy


def test_start_claims_the_vehicle(db, driver, vehicle, journey):
    assert journey.status == "active"
    assert journey.driver_id == driver.id
    assert journey.active_vehicle_id == vehicle.id
    assert journey.archived is False
    assert crud.active_journey_for_vehicle(db, vehicle.id).id == journey.id


def test_admin_starts_on_behalf_of_driver(db, admin, driver, vehicle):
    j = lifecycle.start_journey(db, admin, vehicle.id, 8000, 0, "Vijayawada", driver_id=driver.id)
    assert j.driver_id == driver.id


def test_driver_cannot_start_for_someone_else(db, driver, other_driver, vehicle):
    with pytest.raises(Forbidden):
        lifecycle.start_journey(db, driver, vehicle.id, 8000, 0, "Vijayawada", driver_id=other_driver.id)


@pytest.mark.parametrize(
    "pouch, deposit, destination",
    [(0, 0, "Nagpur"), (-5, 0, "Nagpur"), (99.5, 0, "Nagpur"), (1000, -1, "Nagpur"), (1000, 0, "")],
)
def test_start_validation(db, driver, vehicle, pouch, deposit, destination):
    with pytest.raises(InvalidInput):
        lifecycle.start_journey(db, driver, vehicle.id, pouch, deposit, destination)
    assert crud.active_journey_for_vehicle(db, vehicle.id) is None


def test_start_unknown_vehicle(db, driver):
    with pytest.raises(NotFound):
        lifecycle.start_journey(db, driver, 404, 1000, 0, "Nagpur")


def test_deactivated_driver_cannot_start(db, admin, driver, vehicle):
    crud.deactivate_user(db, driver.id, admin)
    with pytest.raises(InvalidState):
        lifecycle.start_journey(db, admin, vehicle.id, 1000, 0, "Nagpur", driver_id=driver.id)
    with pytest.raises(Forbidden):
        lifecycle.start_journey(db, driver, vehicle.id, 1000, 0, "Nagpur")


def test_busy_vehicle_is_rejected(db, other_driver, vehicle, journey):
    with pytest.raises(VehicleBusy):
        lifecycle.start_journey(db, other_driver, vehicle.id, 5000, 0, "Pune")


def test_vehicle_is_free_again_after_end(db, driver, other_driver, vehicle, journey):
    lifecycle.end_journey_and_reconcile(db, journey.id, driver)
    j2 = lifecycle.start_journey(db, other_driver, vehicle.id, 5000, 0, "Pune")
    assert j2.active_vehicle_id == vehicle.id


def test_vehicle_claimed_concurrently_is_rejected(file_session_factory, monkeypatch):
    seed = file_session_factory()
    first_driver = crud.create_user(seed, "anil", "pw", "Anil")
    second_driver = crud.create_user(seed, "bala", "pw", "Bala")
    truck = crud.create_vehicle(seed, "AP16TX0001")
    seed.close()

    # both requests find the vehicle free before either commits
    monkeypatch.setattr(crud, "active_journey_for_vehicle", lambda db, vehicle_id: None)

    first, second = file_session_factory(), file_session_factory()
    try:
        lifecycle.start_journey(first, first_driver, truck.id, 5000, 0, "Vizag")
        with pytest.raises(VehicleBusy):
            lifecycle.start_journey(second, second_driver, truck.id, 5000, 0, "Vizag")
    finally:
        first.close()
        second.close()

    check = file_session_factory()
    try:
        active = check.query(models.Journey).filter(models.Journey.active_vehicle_id == truck.id).all()
        assert [j.driver_id for j in active] == [first_driver.id]
    finally:
        check.close()


def test_end_settles_balance(db, driver, journey):
    crud.append_expense(db, journey.id, driver, "topUp", 2000)
    crud.append_expense(db, journey.id, driver, "fuel", 1500)
    crud.append_expense(db, journey.id, driver, "toll", 500)
    crud.append_expense(db, journey.id, driver, "hydInward", 3000)

    result = lifecycle.end_journey_and_reconcile(db, journey.id, driver)

    assert result.journey.status == "completed"
    assert result.journey.end_time is not None
    assert result.journey.active_vehicle_id is None
    assert result.balance.working_balance == 10000
    assert result.balance.final_balance == 14000
    assert result.salary is None and result.adjustment is None
    assert (result.journey.pouch, result.journey.security_deposit) == (10000, 1000)


def test_end_twice_is_invalid_state(db, driver, journey):
    lifecycle.end_journey_and_reconcile(db, journey.id, driver)
    with pytest.raises(InvalidState):
        lifecycle.end_journey_and_reconcile(db, journey.id, driver)


def test_end_requires_owner_or_admin(db, admin, other_driver, journey):
    with pytest.raises(Forbidden):
        lifecycle.end_journey_and_reconcile(db, journey.id, other_driver)
    assert lifecycle.end_journey_and_reconcile(db, journey.id, admin).journey.is_completed


def test_end_unknown_journey(db, driver):
    with pytest.raises(NotFound):
        lifecycle.end_journey_and_reconcile(db, 999, driver)


def test_failed_payroll_write_keeps_journey_active(db, driver, vehicle, journey, monkeypatch):
    crud.append_expense(db, journey.id, driver, "fuel", 12000)

    def unavailable(*args, **kwargs):
        raise RuntimeError("payroll unavailable")

    monkeypatch.setattr(lifecycle, "apply_journey_deficit", unavailable)
    with pytest.raises(RuntimeError):
        lifecycle.end_journey_and_reconcile(db, journey.id, driver)

    db.refresh(journey)
    assert journey.status == "active"
    assert journey.end_time is None
    assert journey.active_vehicle_id == vehicle.id
    assert db.query(models.SalaryHistory).count() == 0


def test_expense_arriving_after_end_is_rejected(file_session_factory, monkeypatch):
    seed = file_session_factory()
    owner = crud.create_user(seed, "anil", "pw", "Anil")
    truck = crud.create_vehicle(seed, "AP16TX0002")
    j = lifecycle.start_journey(seed, owner, truck.id, 1000, 0, "Vizag")
    seed.close()

    ender = file_session_factory()
    validate = crud._validate_expense

    # End commits from another session after the append has loaded the journey as active
    def end_meanwhile(expense_type, amount):
        lifecycle.end_journey_and_reconcile(ender, j.id, owner)
        return validate(expense_type, amount)

    monkeypatch.setattr(crud, "_validate_expense", end_meanwhile)

    appender = file_session_factory()
    try:
        with pytest.raises(InvalidState):
            crud.append_expense(appender, j.id, owner, "fuel", 1750)
    finally:
        appender.close()
        ender.close()

    check = file_session_factory()
    try:
        assert check.get(models.Journey, j.id).status == "completed"
        assert crud.list_expenses(check, j.id) == []
        assert check.query(models.SalaryHistory).count() == 0
    finally:
        check.close()


def test_expense_committed_before_end_is_reconciled(file_session_factory):
    seed = file_session_factory()
    owner = crud.create_user(seed, "anil", "pw", "Anil")
    truck = crud.create_vehicle(seed, "AP16TX0003")
    j = lifecycle.start_journey(seed, owner, truck.id, 1000, 0, "Vizag")
    seed.close()

    appender, ender = file_session_factory(), file_session_factory()
    try:
        crud.append_expense(appender, j.id, owner, "fuel", 1750)
        result = lifecycle.end_journey_and_reconcile(ender, j.id, owner)
    finally:
        appender.close()
        ender.close()

    assert result.balance.working_balance == -750
    assert result.adjustment.amount == 750

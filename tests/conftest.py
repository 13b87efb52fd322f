import os

# Must be set before anything imports fleetledger.config
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["SECRET_KEY"] = "test-secret"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from fleetledger import crud, lifecycle
from fleetledger.db import Base, get_db
from main import app


def _session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return _session_factory(engine)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def file_session_factory(tmp_path):
    """Two sessions from this factory hold independent SQLite connections."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'ledger.db'}",
        connect_args={"check_same_thread": False},
        future=True,
    )
    Base.metadata.create_all(bind=engine)
    yield _session_factory(engine)
    engine.dispose()


@pytest.fixture()
def admin(db):
    return crud.create_user(db, "admin", "admin-pass", "Fleet Admin", is_admin=True)


@pytest.fixture()
def driver(db):
    return crud.create_user(db, "ravi", "driver-pass", "Ravi Kumar")


@pytest.fixture()
def other_driver(db):
    return crud.create_user(db, "sunil", "driver-pass", "Sunil Das")


@pytest.fixture()
def vehicle(db):
    return crud.create_vehicle(db, "ts09ab1234", "Tata 1109")


@pytest.fixture()
def make_client(session_factory):
    """Build logged-in TestClients that share one in-memory database."""

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    clients = []

    def _make(username=None, password=None):
        client = TestClient(app)
        clients.append(client)
        if username:
            resp = client.post("/login", json={"username": username, "password": password})
            assert resp.status_code == 200, resp.text
        return client

    yield _make
    for client in clients:
        client.close()
    app.dependency_overrides.clear()


@pytest.fixture()
def admin_client(make_client, admin):
    return make_client("admin", "admin-pass")


@pytest.fixture()
def driver_client(make_client, driver):
    return make_client("ravi", "driver-pass")


@pytest.fixture()
def journey(db, driver, vehicle):
    return lifecycle.start_journey(
        db, driver, vehicle.id, pouch=10000, security_deposit=1000,
        destination="Hyderabad", origin="Chennai",
    )

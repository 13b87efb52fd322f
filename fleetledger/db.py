# fleetledger/db.py
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from fleetledger.config import settings


def _connect_args(url: str) -> dict:
    # SQLite connections are shared across the request threadpool
    return {"check_same_thread": False} if url.startswith("sqlite") else {}


# Create engine
engine = create_engine(
    settings.sqlalchemy_url,
    connect_args=_connect_args(settings.sqlalchemy_url),
    pool_pre_ping=True,
    future=True
)

# Session factory
SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
    expire_on_commit=False
)

# Base for models
Base = declarative_base()


# Dependency for FastAPI routes
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

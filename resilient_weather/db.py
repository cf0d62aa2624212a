"""
Database configuration for SQLAlchemy.

PostgreSQL is used in deployment; SQLite is the zero-setup default
for local runs.
"""

from sqlalchemy import create_engine, text
from sqlalchemy.orm import Session, sessionmaker, DeclarativeBase
from .settings import settings

DATABASE_URL = settings.database_url

# SQLite needs check_same_thread=False for FastAPI because FastAPI uses threads.
connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(
    DATABASE_URL,
    connect_args=connect_args,
    pool_pre_ping=True,
)

# Session factory used by dependency injection
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    """Base class for ORM models."""
    pass


def get_db():
    """
    FastAPI dependency that yields a DB session per request,
    then closes it cleanly afterwards.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def ping_database(db: Session) -> bool:
    """Cheap liveness probe used by the health endpoint."""
    db.execute(text("SELECT 1"))
    return True

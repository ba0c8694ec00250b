"""
Database engine and sessions for the auth server: registered clients, resource owners, audit log.
SQLite by default; any SQLAlchemy URL works via AUTH_DATABASE_URL.
"""
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from auth_server.config import DATABASE_URL
from auth_server.models import Base


def _make_engine(url: str) -> Engine:
    if url.startswith("sqlite:///:memory:"):
        # one shared connection, otherwise every session sees an empty database
        return create_engine(url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    if url.startswith("sqlite"):
        # FastAPI runs sync endpoints in a thread pool
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(url, pool_pre_ping=True)


engine = _make_engine(DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db() -> None:
    """Create missing tables. Idempotent."""
    Base.metadata.create_all(bind=engine)


@contextmanager
def session_scope() -> Iterator[Session]:
    """Session for work outside a request (startup seeding)."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_db() -> Iterator[Session]:
    """Dependency: yield a DB session."""
    with session_scope() as db:
        yield db

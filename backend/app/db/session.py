"""Database session management."""

import logging
from collections.abc import Generator, Iterator
from contextlib import contextmanager
from typing import Annotated

from fastapi import Depends
from sqlalchemy import create_engine, event
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from app.core.config import settings
from app.core.errors import LockTimeout

logger = logging.getLogger(__name__)

# Create engine - handle SQLite specially for check_same_thread
connect_args = {}
pool_config = {}

if settings.database_url.startswith("sqlite"):
    connect_args = {"check_same_thread": False}
    pool_config = {
        "pool_pre_ping": True,
        "pool_recycle": 1800,
    }
else:
    # PostgreSQL/MySQL connection pooling configuration
    pool_config = {
        "pool_size": 10,
        "max_overflow": 20,
        "pool_pre_ping": True,
        "pool_recycle": 3600,
    }

engine = create_engine(
    settings.database_url,
    connect_args=connect_args,
    echo=settings.debug and settings.log_level == "DEBUG",
    **pool_config,
)


def enable_sqlite_foreign_keys(target_engine) -> None:
    """Turn on FK enforcement for every new SQLite connection."""

    @event.listens_for(target_engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


if settings.database_url.startswith("sqlite"):
    enable_sqlite_foreign_keys(engine)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """Get database session dependency."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# Type alias for dependency injection
DbSession = Annotated[Session, Depends(get_db)]


# MySQL: 1205 lock wait timeout, 1213 deadlock. PostgreSQL: 55P03 lock_not_available, 40P01 deadlock.
_LOCK_ERROR_CODES = {1205, 1213}
_LOCK_PGCODES = {"55P03", "40P01"}
_LOCK_MESSAGES = ("lock wait timeout", "lock timeout", "deadlock", "database is locked")


def is_lock_timeout(exc: OperationalError) -> bool:
    """Whether a driver error means a lock could not be acquired."""
    orig = getattr(exc, "orig", None)
    if getattr(orig, "pgcode", None) in _LOCK_PGCODES:
        return True
    args = getattr(orig, "args", ()) or ()
    if args and args[0] in _LOCK_ERROR_CODES:
        return True
    message = str(orig or exc).lower()
    return any(m in message for m in _LOCK_MESSAGES)


@contextmanager
def atomic(db: Session) -> Iterator[Session]:
    """Run a block as one transaction: commit on success, roll back on any error.

    Lock-wait failures are re-raised as ``LockTimeout`` so callers can retry.
    """
    try:
        yield db
        db.commit()
    except OperationalError as exc:
        db.rollback()
        if is_lock_timeout(exc):
            logger.warning(f"Lock wait failed, transaction rolled back: {exc.orig}")
            raise LockTimeout("The record is busy, please retry") from exc
        raise
    except Exception:
        db.rollback()
        raise

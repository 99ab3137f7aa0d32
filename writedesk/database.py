"""
Database engine, session factory and transaction helper.
"""
from contextlib import contextmanager, nullcontext
from typing import ContextManager, Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.exc import DisconnectionError, IntegrityError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .config import get_settings
from .errors import Conflict, TransientStoreFailure
from .logging_config import db_logger

settings = get_settings()

# Store failures the caller may retry
STORE_UNAVAILABLE_ERRORS = (OperationalError, DisconnectionError, PoolTimeoutError)


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False, "timeout": settings.db_timeout_seconds}}
    return {"pool_pre_ping": True, "pool_timeout": settings.db_timeout_seconds}


engine = create_engine(settings.database_url, **_engine_kwargs(settings.database_url))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


@event.listens_for(engine, "connect")
def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    if settings.database_url.startswith("sqlite"):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def get_db() -> Iterator[Session]:
    """FastAPI dependency yielding a session per request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def store_errors() -> Iterator[None]:
    """Re-raise store timeouts and dropped connections as ``TransientStoreFailure``.

    Works as a ``with`` block or as a decorator, so reads that happen outside
    ``transaction`` report the same typed failure as writes.
    """
    try:
        yield
    except STORE_UNAVAILABLE_ERRORS as e:
        db_logger.error("Store unavailable", error=e)
        raise TransientStoreFailure("The data store is temporarily unavailable, retry the operation") from e


@contextmanager
def transaction(db: Session, commit_lock: Optional[ContextManager] = None) -> Iterator[Session]:
    """Commit everything done inside the block as one unit.

    Any failure rolls the session back. Store-level failures are re-raised as
    typed workflow errors: unique violations become ``Conflict`` and timeouts
    or dropped connections become ``TransientStoreFailure``.

    ``commit_lock`` is held only around the commit itself, so that hooks
    firing on commit observe commits in the order they happened.
    """
    try:
        with store_errors():
            yield db
            with commit_lock or nullcontext():
                db.commit()
    except IntegrityError as e:
        db.rollback()
        db_logger.warning("Integrity violation, transaction rolled back", error_message=str(e.orig))
        raise Conflict("Resource already exists") from e
    except BaseException:
        db.rollback()
        raise

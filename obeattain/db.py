from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .config import DATABASE_URL, SQL_ECHO
from .models import Base

logger = logging.getLogger(__name__)

engine = create_engine(DATABASE_URL, echo=SQL_ECHO)


@event.listens_for(Engine, "connect")
def _set_sqlite_pragma(dbapi_connection, connection_record) -> None:  # noqa: ANN001
    # Ensure SQLite enforces foreign keys.
    if isinstance(dbapi_connection, sqlite3.Connection):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
    expire_on_commit=False,
)


def init_db(bind: Engine | None = None) -> None:
    """Create tables if they don't exist.

    Notes:
    - `create_all()` does not apply migrations. Databases created before the
      natural-key constraints existed may hold duplicate attainment rows, so a
      cleanup step runs before the unique indexes are (re)asserted.
    """
    target = bind if bind is not None else engine
    Base.metadata.create_all(target)

    from .maintenance import cleanup_duplicates, ensure_sqlite_unique_indexes

    with session_scope(bind=target) as session:
        cleanup_duplicates(session)
        ensure_sqlite_unique_indexes(session)


@contextmanager
def session_scope(bind: Engine | None = None) -> Iterator[Session]:
    """Provide a transactional scope around a series of operations.

    A recalculation run writes all of its rows inside one scope, so a failure
    part way through leaves nothing committed.
    """
    session: Session = SessionLocal(bind=bind) if bind is not None else SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        logger.warning("Rolling back uncommitted changes")
        session.rollback()
        raise
    finally:
        session.close()

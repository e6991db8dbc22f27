# utilitrack/db/engine.py

import logging
from typing import Optional

from fastapi import Request
from sqlalchemy import Table, create_engine
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import DBAPIError, IntegrityError

from utilitrack.config import settings
from utilitrack.errors import ConflictError

logger = logging.getLogger(__name__)

# Substrings drivers use when a write loses a lock or serialization race.
_LOCK_CONFLICT_MARKERS = (
    "database is locked",
    "deadlock",
    "could not serialize",
    "lock request time out",
)


def build_engine(url: Optional[str] = None, echo: Optional[bool] = None) -> Engine:
    url = url or settings.DATABASE_URL
    echo = settings.DB_ECHO if echo is None else echo

    connect_args = {}
    if url.startswith("sqlite"):
        # Handlers run in FastAPI's thread pool; wait on locks instead of failing fast.
        connect_args = {"check_same_thread": False, "timeout": 30}

    return create_engine(url, echo=echo, future=True, connect_args=connect_args)


def get_engine(request: Request) -> Engine:
    """
    FastAPI dependency returning the engine owned by the running app.
    """
    return request.app.state.engine


def is_lock_conflict(exc: DBAPIError) -> bool:
    text = str(exc.orig).lower() if exc.orig is not None else str(exc).lower()
    return any(marker in text for marker in _LOCK_CONFLICT_MARKERS)


def run_in_transaction(engine: Engine, work, what: str):
    """
    Run `work(conn)` in a single transaction and return its result.

    Constraint violations and lock losses surface as ConflictError; errors
    raised by `work` itself propagate unchanged after the rollback.
    """
    try:
        with engine.begin() as conn:
            return work(conn)
    except IntegrityError as exc:
        logger.warning("Integrity error while %s: %s", what, exc.orig)
        raise ConflictError() from exc
    except DBAPIError as exc:
        if is_lock_conflict(exc):
            logger.warning("Lock conflict while %s", what)
            raise ConflictError() from exc
        raise


def lock_row(conn: Connection, table: Table, row_id: int) -> bool:
    """
    Take the write lock on one row and report whether it exists.

    Run it as the first statement of a transaction that reads state before
    writing: the no-op update makes concurrent writers of the same row wait
    until this transaction ends.
    """
    result = conn.execute(table.update().where(table.c.id == row_id).values(id=table.c.id))
    return result.rowcount == 1

# Overview: Locking, write-transaction and retry helpers shared by the stock-mutating services.

from __future__ import annotations

import time

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


RETRYABLE_ERRORS = (OperationalError, StaleDataError)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    begin_write() covers SQLite.
    """
    return query.with_for_update()


def begin_write() -> None:
    """
    Open the write transaction before the first read of a unit of work.

    SQLite: BEGIN IMMEDIATE takes the database write lock up front, so two
    checkouts cannot both read the same stock level. Other dialects rely on
    the row locks taken by lock_for_update().
    """
    if db.engine.dialect.name == "sqlite":
        db.session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(
    func,
    *,
    attempts: int = 3,
    backoff_base: float = 0.1,
    retry_on: tuple = RETRYABLE_ERRORS,
):
    """
    Execute a DB unit of work with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, lock timeouts) and StaleDataError
    (optimistic version conflicts) by default; callers add IntegrityError when
    a unique-number collision is worth another attempt.

    Any failure rolls the session back before the exception leaves here,
    so partial writes never survive and the next BEGIN starts clean.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except retry_on as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
    if last_exc:
        raise last_exc


def retry_on_collision() -> tuple:
    """Retryable errors plus unique-constraint collisions."""
    return RETRYABLE_ERRORS + (IntegrityError,)

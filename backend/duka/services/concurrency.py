# Overview: Service-layer operations for concurrency; transaction boundaries, row locks and retry.

from __future__ import annotations

import time

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations and refresh the rows.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there begin_write() takes the
    database write lock instead. populate_existing() makes sure a status or
    stock value already in the identity map is re-read under the lock.
    """
    return query.with_for_update().populate_existing()


def begin_write() -> None:
    """
    Start the write transaction before the first read on SQLite.

    pysqlite defers BEGIN until the first DML statement, which lets two
    writers read the same stale row. BEGIN IMMEDIATE takes the reserved lock
    up front so the read-check-write sequence is serialized.
    """
    if db.engine.dialect.name != "sqlite":
        return
    dbapi_conn = db.session.connection().connection.dbapi_connection
    if not dbapi_conn.in_transaction:
        db.session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts).
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


def run_atomic(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Run `func` as one committed unit of work.

    Commits when func returns, rolls back on any exception (domain errors
    included) so a failed operation never leaves partial writes behind.
    Concurrency failures are retried from a clean transaction; domain errors
    are not.
    """
    def _op():
        begin_write()
        try:
            result = func()
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return result

    return run_with_retry(_op, attempts=attempts, backoff_base=backoff_base)

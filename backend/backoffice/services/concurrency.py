# Overview: Locking and retry helpers shared by the order, payment and catalog services.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for read-modify-write of orders, installments,
    products and customers.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    The version_id columns still catch lost updates there.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a unit of work, retrying on lock contention (OperationalError)
    and optimistic-version conflicts (StaleDataError).

    func must be safe to re-run from scratch: it re-reads everything it
    touches. Domain errors raised by func propagate immediately.
    """
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            current_app.logger.warning(
                "Concurrent update conflict (attempt %s/%s): %s", attempt + 1, attempts, exc
            )
            time.sleep(backoff_base * (2 ** attempt))


def run_in_transaction(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    run_with_retry, rolling the session back when func raises anything.

    Use for operations that write several rows before they can fail
    (stock reservation, schedule rebuilds) so no partial state lingers in
    the session.
    """
    try:
        return run_with_retry(func, attempts=attempts, backoff_base=backoff_base)
    except Exception:
        db.session.rollback()
        raise

# Overview: Retry helper for contended database work.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.05, on_exhausted=None):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, "database is locked") and
    StaleDataError (optimistic locking conflicts). The session is rolled
    back before every retry so the next attempt starts clean.

    If `on_exhausted` is given it is called with the last exception once the
    budget is spent and whatever it raises replaces the original error.
    """
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                current_app.logger.warning(
                    "Database contention persisted after %s attempts: %s", attempts, exc
                )
                if on_exhausted is not None:
                    raise on_exhausted(exc) from exc
                raise
            time.sleep(backoff_base * (2 ** attempt))

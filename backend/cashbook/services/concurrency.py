# Overview: Row locking and bounded retry for per-entity read-modify-write units.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import CashbookError, Contention
from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there the version_id
    columns on sessions and items turn the write into a compare-and-swap
    that fails with StaleDataError instead.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute one atomic unit, retrying on concurrency-related failures.

    Retries on OperationalError (lock waits, deadlocks) and StaleDataError
    (lost compare-and-swap). Each retry starts from a rolled-back session so
    the unit re-reads fresh state. When attempts run out the failure is
    raised as Contention. Domain errors roll back and propagate unchanged.
    """
    if attempts is None:
        attempts = current_app.config.get("LOCK_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("LOCK_RETRY_BACKOFF_SECONDS", 0.05)

    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                current_app.logger.warning(
                    "Giving up after %d attempts: %s", attempts, exc.__class__.__name__
                )
                raise Contention("Record is busy, please retry") from exc
            time.sleep(backoff_base * (2 ** attempt))
        except CashbookError:
            db.session.rollback()
            raise
    raise Contention("Record is busy, please retry")


def run_unit(inner, commit: bool = True):
    """
    Run ``inner`` as its own committed unit with retry, or, with
    ``commit=False``, inside the caller's open transaction.
    """
    if not commit:
        return inner()

    def _op():
        result = inner()
        db.session.commit()
        return result

    return run_with_retry(_op)

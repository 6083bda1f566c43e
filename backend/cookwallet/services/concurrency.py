# Overview: Locking and retry helpers shared by every balance-changing service.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for balance-changing reads.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there the version_id column on
    wallets and deductions is what turns a lost update into StaleDataError.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). func must re-read everything it mutates,
    since the session is rolled back between attempts.
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
            current_app.logger.info(
                "Concurrent update detected (attempt %s/%s), retrying: %s",
                attempt + 1, attempts, exc.__class__.__name__,
            )
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            # Discard partial flushes before propagating
            db.session.rollback()
            raise
    if last_exc:
        raise last_exc


def run_isolated(func, *, label: str):
    """
    Run one item of a batch job in its own transaction.

    Any failure is rolled back and logged; the caller gets None and moves on
    to the next item.
    """
    try:
        return run_with_retry(func)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Batch item failed: %s", label)
        return None

# Overview: Transaction boundary and conditional-write helpers for the reconciliation services.

from __future__ import annotations

from contextlib import contextmanager

from flask import current_app
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from .errors import TransientStoreError


def lock_for_update(query):
    """
    Apply row-level locking for critical operations and bypass stale identity-map state.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    The optimistic version_id columns cover SQLite.
    """
    return query.with_for_update().populate_existing()


@contextmanager
def atomic():
    """
    Run a block as one database transaction.

    Commits when the block completes. Any exception rolls everything back.
    Store contention (locks, deadlocks, optimistic-lock conflicts, concurrent
    inserts of the same key) surfaces as TransientStoreError; there is no
    retry here, callers retry the whole operation.
    """
    try:
        yield db.session
        db.session.commit()
    except (OperationalError, StaleDataError, IntegrityError) as exc:
        db.session.rollback()
        current_app.logger.warning("Transaction rolled back on store contention: %s", exc)
        raise TransientStoreError("Store contention, nothing was applied; retry the operation") from exc
    except Exception:
        db.session.rollback()
        raise


def conditional_update(query, values: dict) -> bool:
    """
    Issue one UPDATE guarded by the query's WHERE clause.

    Returns True when exactly one row matched. This is the compare-and-set
    used for every lifecycle transition: the losing side of a race sees
    False instead of overwriting the winner.
    """
    matched = query.update(values, synchronize_session=False)
    return matched == 1

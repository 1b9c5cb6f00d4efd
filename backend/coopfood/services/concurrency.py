# Overview: Retry and conditional-write helpers shared by order and import services.

from __future__ import annotations

import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..errors import NotFoundError, StateError


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Domain errors propagate immediately.
    """
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError):
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))


def conditional_transition(model, row_id: int, *, expected_status: str, values: dict) -> None:
    """
    UPDATE <model> SET ... WHERE id = row_id AND status = expected_status.

    Exactly one of several concurrent callers sees rowcount == 1. A zero
    rowcount is resolved into NotFoundError (no such row) or StateError
    (row exists in another status). The optimistic version is bumped so
    ORM-held copies of the row go stale.
    """
    payload = dict(values)
    payload["version_id"] = model.version_id + 1
    result = (
        db.session.query(model)
        .filter(model.id == row_id, model.status == expected_status)
        .update(payload, synchronize_session=False)
    )
    if result == 1:
        return

    current = db.session.query(model.status).filter(model.id == row_id).scalar()
    if current is None:
        raise NotFoundError(f"{model.__name__} {row_id} not found", {"id": row_id})
    raise StateError(
        f"{model.__name__} {row_id} is {current}, expected {expected_status}",
        {"id": row_id, "status": current, "expected": expected_status},
    )

"""Concurrent-write conflicts on campaigns, reported as HTTP 409.

Two kinds are handled: MySQL lock failures (timeouts, deadlocks, NOWAIT)
and stale `expectedUpdatedAt` values sent by an editor that loaded an
older copy of the row.
"""

from __future__ import annotations

from datetime import datetime
from typing import NoReturn, Optional

from fastapi import HTTPException, status
from loguru import logger
from sqlalchemy.exc import OperationalError

# MySQL error codes
LOCK_WAIT_TIMEOUT = 1205
DEADLOCK = 1213
LOCK_NOWAIT = 3572

_LOCK_CODES = {LOCK_WAIT_TIMEOUT, DEADLOCK, LOCK_NOWAIT}


def _mysql_error_code(exc: OperationalError) -> Optional[int]:
    args = getattr(exc.orig, "args", None)
    if not args:
        return None
    try:
        return int(args[0])
    except (TypeError, ValueError):
        return None


def is_lock_conflict(exc: OperationalError) -> bool:
    if _mysql_error_code(exc) in _LOCK_CODES:
        return True
    message = str(exc.orig if exc.orig is not None else exc).lower()
    return "could not obtain lock" in message or "could not acquire" in message


def raise_on_lock_conflict(exc: OperationalError, entity: str = "Record") -> NoReturn:
    """Raise 409 for a lock conflict; re-raise anything else unchanged."""

    if is_lock_conflict(exc):
        logger.bind(entity=entity, code=_mysql_error_code(exc)).warning("lock_conflict")
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"{entity} is locked by another request. Please retry shortly.",
        ) from exc
    raise exc


def reject_stale_write(
    current: Optional[datetime], expected: Optional[datetime], entity: str = "Record"
) -> None:
    """Raise 409 when ``expected`` is given and differs from the stored ``updated_at``."""

    if expected is None or expected == current:
        return
    logger.bind(entity=entity, expected=str(expected), current=str(current)).info("stale_write")
    raise HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail=f"{entity} was changed by someone else. Reload it and try again.",
    )

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TypeVar

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

T = TypeVar('T')


def lock_for_update(query):
    """
    Apply row-level locking for read-then-write sequences.

    SQLite ignores SELECT ... FOR UPDATE; PostgreSQL honours it.
    """
    return query.with_for_update()


def run_with_retry(db: Session, func: Callable[[], T], *, attempts: int = 3, backoff_base: float = 0.05) -> T:
    """
    Run a unit of work and commit it, retrying on lock conflicts and on
    unique-constraint races between concurrent inserts.
    """
    for attempt in range(attempts):
        try:
            result = func()
            db.commit()
            return result
        except (IntegrityError, OperationalError):
            db.rollback()
            if attempt >= attempts - 1:
                raise
            logger.info('Retrying after concurrent write conflict (attempt %s)', attempt + 1)
            time.sleep(backoff_base * (2 ** attempt))
    raise RuntimeError('unreachable')

"""
Optimistic locking for order writes.

Orders carry a `version_id` column mapped as SQLAlchemy's `version_id_col`, so
every UPDATE is issued as `... WHERE id = :id AND version_id = :seen`. When a
concurrent writer (UI, gateway callback, scheduler) committed first, the
UPDATE matches no row and SQLAlchemy raises StaleDataError. The wrapped
operation is then rolled back and re-run from a fresh read.
"""
import asyncio
import functools
import logging
import random
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.core.config import settings
from app.core.errors import DomainError, DomainStateError, PersistenceError
from app.core.metrics import optimistic_conflicts

logger = logging.getLogger(__name__)


async def commit_or_raise(db: AsyncSession, operation: str, conflict_message: Optional[str] = None) -> None:
    """Commit the unit of work; on failure roll back so the prior state stays intact."""
    try:
        await db.commit()
    except StaleDataError:
        await db.rollback()
        raise
    except IntegrityError as e:
        await db.rollback()
        if conflict_message:
            raise DomainStateError(conflict_message) from e
        logger.error(f"Integrity error during {operation}: {e}")
        raise PersistenceError(f"Could not save changes ({operation})") from e
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"Database error during {operation}: {e}")
        raise PersistenceError(f"Could not save changes ({operation})") from e


async def flush_or_raise(db: AsyncSession, operation: str, conflict_message: str) -> None:
    """Flush pending inserts so a unique-key clash is attributed to the statement that caused it."""
    try:
        await db.flush()
    except IntegrityError as e:
        await db.rollback()
        logger.warning(f"Conflict during {operation}: {e.orig}")
        raise DomainStateError(conflict_message) from e


def with_optimistic_retry(operation: str, max_retries: Optional[int] = None):
    """
    Decorator for async service functions taking the session as first argument.
    On StaleDataError, retries with exponential backoff + jitter.
    """
    _max = max_retries or settings.OPT_LOCK_MAX_RETRIES

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(db: AsyncSession, *args, **kwargs):
            for attempt in range(1, _max + 1):
                try:
                    return await func(db, *args, **kwargs)
                except DomainError:
                    await db.rollback()
                    raise
                except StaleDataError:
                    await db.rollback()
                    optimistic_conflicts.labels(operation=operation).inc()
                    if attempt == _max:
                        logger.error(
                            f"Concurrent update conflict unresolved after {_max} attempts for {operation}"
                        )
                        raise PersistenceError(
                            f"Order was modified concurrently, please retry ({operation})"
                        )
                    base_delay = settings.OPT_LOCK_BASE_DELAY_MS / 1000.0
                    jitter = random.uniform(0, settings.OPT_LOCK_JITTER_MS / 1000.0)
                    delay = base_delay * (2 ** (attempt - 1)) + jitter
                    logger.warning(
                        f"Concurrent update on {operation}, attempt {attempt}/{_max}; retrying in {delay:.3f}s"
                    )
                    await asyncio.sleep(delay)
        return wrapper
    return decorator

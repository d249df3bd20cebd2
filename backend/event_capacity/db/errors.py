"""
Translation of driver errors into the capacity error taxonomy.

PostgreSQL reports SQLSTATE codes (asyncpg and psycopg both expose them on
the wrapped exception); SQLite only offers messages.
"""

from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError

from event_capacity.core.exceptions import DuplicateBooking, LockTimeout, StoreUnavailable

UNIQUE_VIOLATION = "23505"
LOCK_NOT_AVAILABLE = "55P03"
QUERY_CANCELED = "57014"  # statement_timeout while waiting on a lock


def sqlstate(exc: DBAPIError) -> Optional[str]:
    orig = exc.orig
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def is_unique_violation(exc: DBAPIError) -> bool:
    if sqlstate(exc) == UNIQUE_VIOLATION:
        return True
    return "unique constraint failed" in str(exc.orig).lower()


def is_lock_timeout(exc: DBAPIError) -> bool:
    if sqlstate(exc) in (LOCK_NOT_AVAILABLE, QUERY_CANCELED):
        return True
    return "database is locked" in str(exc.orig).lower()


def is_connectivity_error(exc: DBAPIError) -> bool:
    return exc.connection_invalidated or isinstance(exc, (OperationalError, InterfaceError))


@contextmanager
def translate_db_errors(
    event_id: Optional[int] = None,
    duplicate_of: Optional[tuple[int, int]] = None,
) -> Iterator[None]:
    """
    Map driver errors raised inside the block to capacity errors.

    `duplicate_of` is the (event_id, user_id) pair to report when a unique
    violation fires; without it unique violations propagate unchanged.
    Anything that is not recognised propagates unchanged as well.
    """
    try:
        yield
    except IntegrityError as exc:
        if duplicate_of is not None and is_unique_violation(exc):
            raise DuplicateBooking(*duplicate_of) from exc
        raise
    except DBAPIError as exc:
        if is_lock_timeout(exc):
            raise LockTimeout(event_id) from exc
        if is_connectivity_error(exc):
            raise StoreUnavailable() from exc
        raise
    except (ConnectionError, TimeoutError) as exc:
        raise StoreUnavailable(str(exc) or "Database unavailable") from exc

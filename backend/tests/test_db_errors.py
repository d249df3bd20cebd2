"""
Tests for mapping driver errors onto the capacity error taxonomy, including
the unique-slug race on event creation.
"""

import sqlite3
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError, ProgrammingError

from event_capacity.core.exceptions import DuplicateBooking, LockTimeout, SlugTaken, StoreUnavailable
from event_capacity.db.errors import translate_db_errors
from event_capacity.schemas.event import EventCreate
from event_capacity.services import event_service
from event_capacity.services.event_service import create_event


class PgError(Exception):
    """Stands in for an asyncpg/psycopg error carrying a SQLSTATE."""

    def __init__(self, sqlstate: str, message: str = "pg error"):
        super().__init__(message)
        self.sqlstate = sqlstate


def test_postgres_unique_violation_becomes_duplicate_booking():
    with pytest.raises(DuplicateBooking) as exc_info:
        with translate_db_errors(duplicate_of=(3, 9)):
            raise IntegrityError("INSERT", {}, PgError("23505"))

    assert exc_info.value.event_id == 3
    assert exc_info.value.user_id == 9


def test_sqlite_unique_violation_becomes_duplicate_booking():
    orig = sqlite3.IntegrityError("UNIQUE constraint failed: bookings.user_id, bookings.event_id")
    with pytest.raises(DuplicateBooking):
        with translate_db_errors(duplicate_of=(1, 1)):
            raise IntegrityError("INSERT", {}, orig)


def test_unique_violation_without_context_propagates():
    with pytest.raises(IntegrityError):
        with translate_db_errors():
            raise IntegrityError("INSERT", {}, PgError("23505"))


def test_check_violation_propagates():
    with pytest.raises(IntegrityError):
        with translate_db_errors(duplicate_of=(1, 1)):
            raise IntegrityError("UPDATE", {}, PgError("23514"))


@pytest.mark.parametrize("code", ["55P03", "57014"])
def test_postgres_lock_errors_become_lock_timeout(code):
    with pytest.raises(LockTimeout) as exc_info:
        with translate_db_errors(event_id=42):
            raise OperationalError("SELECT", {}, PgError(code))
    assert exc_info.value.event_id == 42


def test_sqlite_busy_becomes_lock_timeout():
    with pytest.raises(LockTimeout):
        with translate_db_errors(event_id=1):
            raise OperationalError("BEGIN IMMEDIATE", {}, sqlite3.OperationalError("database is locked"))


def test_connection_failure_becomes_store_unavailable():
    with pytest.raises(StoreUnavailable):
        with translate_db_errors():
            raise OperationalError("SELECT", {}, PgError("08006", "connection refused"))


def test_os_level_connection_error_becomes_store_unavailable():
    with pytest.raises(StoreUnavailable):
        with translate_db_errors():
            raise ConnectionRefusedError("connect call failed")


def test_unrecognised_errors_propagate():
    with pytest.raises(ProgrammingError):
        with translate_db_errors():
            raise ProgrammingError("SELECT", {}, PgError("42601"))


class RacingSession:
    """
    Session whose slug pre-check sees a free slug but whose INSERT loses the
    race on the unique index, as a concurrent create on PostgreSQL would.
    """

    def __init__(self, error: Exception):
        self.error = error
        self.added = []

    async def execute(self, statement):
        return self

    def first(self):
        return None

    def add(self, obj):
        self.added.append(obj)

    async def flush(self):
        raise self.error


def new_event(**overrides) -> EventCreate:
    fields = {
        "title": "Race Night",
        "slug": "race-night",
        "event_date": datetime.now(timezone.utc) + timedelta(days=10),
        "capacity": 10,
    }
    fields.update(overrides)
    return EventCreate(**fields)


@pytest.mark.asyncio
async def test_slug_race_on_postgres_becomes_slug_taken():
    db = RacingSession(IntegrityError("INSERT", {}, PgError("23505")))

    with pytest.raises(SlugTaken) as exc_info:
        await create_event(db, new_event())

    assert exc_info.value.slug == "race-night"
    assert isinstance(exc_info.value.__cause__, IntegrityError)


@pytest.mark.asyncio
async def test_other_integrity_errors_on_create_propagate():
    db = RacingSession(IntegrityError("INSERT", {}, PgError("23514")))

    with pytest.raises(IntegrityError):
        await create_event(db, new_event())


@pytest.mark.asyncio
async def test_slug_race_on_sqlite_becomes_slug_taken(monkeypatch, session_factory, make_event):
    """The unique index still answers 409 when the pre-check misses a concurrent insert."""
    await make_event(slug="race-night")

    async def slug_looks_free(db, slug, exclude_id=None):
        return False

    monkeypatch.setattr(event_service, "_slug_in_use", slug_looks_free)

    async with session_factory() as db:
        with pytest.raises(SlugTaken):
            await create_event(db, new_event())
        await db.rollback()

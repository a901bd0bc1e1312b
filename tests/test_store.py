import pytest
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from booking_service import models
from booking_service.errors import ConflictError, NotFoundError, StoreUnavailableError, ValidationError
from booking_service.store import Store


def add_event(db, topic="chat_commands"):
    db.add(models.OutboxEvent(topic=topic, payload="{}", status="PENDING"))


def test_run_transaction_commits_body_writes(store, db_session):
    result = store.run_transaction(lambda db: add_event(db) or "done")

    assert result == "done"
    assert db_session.query(models.OutboxEvent).count() == 1


def test_conflicts_are_retried_until_the_body_succeeds(store, db_session):
    attempts = []

    def body(db):
        attempts.append(1)
        add_event(db)
        if len(attempts) == 1:
            raise StaleDataError("row version changed")
        return len(attempts)

    assert store.run_transaction(body) == 2
    # The losing attempt left nothing behind
    assert db_session.query(models.OutboxEvent).count() == 1


def test_unique_key_races_are_retried(store):
    attempts = []

    def body(db):
        attempts.append(1)
        if len(attempts) < 3:
            raise IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed"))
        return "third time lucky"

    assert store.run_transaction(body) == "third time lucky"
    assert len(attempts) == 3


def test_other_integrity_failures_are_not_retried(store, db_session):
    attempts = []

    def body(db):
        attempts.append(1)
        add_event(db)
        raise IntegrityError("INSERT", {}, Exception("NOT NULL constraint failed: bookings.client_id"))

    with pytest.raises(ValidationError):
        store.run_transaction(body)
    assert len(attempts) == 1
    assert db_session.query(models.OutboxEvent).count() == 0


def test_postgres_unique_violations_are_retried(store):
    class UniqueViolation(Exception):
        pgcode = "23505"

    attempts = []

    def body(db):
        attempts.append(1)
        if len(attempts) == 1:
            raise IntegrityError("INSERT", {}, UniqueViolation("key (booking_hash) already taken"))
        return "retried"

    assert store.run_transaction(body) == "retried"
    assert len(attempts) == 2


def test_exhausted_retries_surface_as_conflict(session_factory):
    store = Store(session_factory, max_attempts=2)
    attempts = []

    def body(db):
        attempts.append(1)
        raise StaleDataError("row version changed")

    with pytest.raises(ConflictError):
        store.run_transaction(body)
    assert len(attempts) == 2


def test_business_errors_abort_without_retry_or_partial_write(store, db_session):
    attempts = []

    def body(db):
        attempts.append(1)
        add_event(db)
        raise NotFoundError("Booking", "missing")

    with pytest.raises(NotFoundError):
        store.run_transaction(body)
    assert len(attempts) == 1
    assert db_session.query(models.OutboxEvent).count() == 0


def test_store_timeouts_are_not_retried(store):
    attempts = []

    def body(db):
        attempts.append(1)
        raise OperationalError("UPDATE bookings", {}, Exception("database is locked"))

    with pytest.raises(StoreUnavailableError):
        store.run_transaction(body)
    assert len(attempts) == 1

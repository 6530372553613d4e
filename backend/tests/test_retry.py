import sqlite3

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from utils.errors import InsufficientStock, TransientConflict, UniquenessConflict
from utils.retry import is_retryable_error, is_uniqueness_conflict, retry_with_backoff


class Flaky:
    """Fails with the given errors in order, then returns 'ok'."""

    def __init__(self, *errors):
        self.errors = list(errors)
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return "ok"


def locked_error():
    return OperationalError("UPDATE inventories", {}, sqlite3.OperationalError("database is locked"))


def unique_error():
    return IntegrityError("INSERT INTO products", {}, sqlite3.IntegrityError("UNIQUE constraint failed: products.code"))


def test_retries_transient_errors_until_success():
    sleeps = []
    op = Flaky(TransientConflict("version mismatch"), locked_error())

    assert retry_with_backoff(op, sleep=sleeps.append) == "ok"
    assert op.calls == 3
    assert len(sleeps) == 2


def test_backoff_grows_and_is_capped():
    sleeps = []
    op = Flaky(*[TransientConflict("conflict") for _ in range(4)])

    retry_with_backoff(op, max_retries=4, initial_delay=0.05, max_delay=0.15,
                       multiplier=2, jitter=False, sleep=sleeps.append)

    assert sleeps == pytest.approx([0.05, 0.1, 0.15, 0.15])


def test_jitter_stays_within_ten_percent():
    sleeps = []
    op = Flaky(*[TransientConflict("conflict") for _ in range(3)])

    retry_with_backoff(op, max_retries=3, initial_delay=1.0, max_delay=10,
                       multiplier=1, jitter=True, sleep=sleeps.append)

    assert all(0.9 <= delay <= 1.1 for delay in sleeps)


def test_exhaustion_reraises_last_error_unmodified():
    last = TransientConflict("third")
    op = Flaky(TransientConflict("first"), TransientConflict("second"), last)

    with pytest.raises(TransientConflict) as excinfo:
        retry_with_backoff(op, max_retries=2, sleep=lambda s: None)

    assert excinfo.value is last
    assert op.calls == 3


def test_uniqueness_conflict_is_never_retried():
    op = Flaky(UniquenessConflict("duplicate"))

    with pytest.raises(UniquenessConflict):
        retry_with_backoff(op, should_retry=lambda error: True, sleep=lambda s: pytest.fail("slept"))

    assert op.calls == 1


def test_database_unique_violation_is_never_retried():
    op = Flaky(unique_error())

    with pytest.raises(IntegrityError):
        retry_with_backoff(op, should_retry=lambda error: True, sleep=lambda s: pytest.fail("slept"))

    assert op.calls == 1


def test_business_errors_propagate_immediately():
    op = Flaky(InsufficientStock(available=1, requested=5))

    with pytest.raises(InsufficientStock):
        retry_with_backoff(op, sleep=lambda s: pytest.fail("slept"))

    assert op.calls == 1


def test_custom_predicate_decides_for_other_errors():
    op = Flaky(ValueError("try again"))

    assert retry_with_backoff(op, should_retry=lambda e: isinstance(e, ValueError),
                              sleep=lambda s: None) == "ok"
    assert op.calls == 2


def test_error_classification():
    assert is_retryable_error(locked_error())
    assert is_retryable_error(TransientConflict("x"))
    assert is_retryable_error(ConnectionError())
    assert not is_retryable_error(unique_error())
    assert not is_retryable_error(ValueError())
    assert not is_retryable_error(None)

    assert is_uniqueness_conflict(unique_error())
    assert is_uniqueness_conflict(UniquenessConflict("x"))
    assert not is_uniqueness_conflict(locked_error())

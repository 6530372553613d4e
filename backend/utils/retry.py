# backend/utils/retry.py
"""
Retry with exponential backoff for write conflicts and transient transaction errors.

Classification is a fixed decision table:
- uniqueness violations are permanent and are re-raised on first sight,
  before any custom predicate is consulted;
- serialization failures, deadlocks, "database is locked", invalidated
  connections and optimistic version mismatches are retryable;
- everything else (business rule violations, not found, programming errors)
  propagates immediately.
"""
import logging
import random
import time
from typing import Callable, Optional, TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError
from tenacity import Retrying, retry_if_exception, stop_after_attempt
from tenacity.wait import wait_base

from config import settings
from utils.errors import TransientConflict, UniquenessConflict

logger = logging.getLogger(__name__)

T = TypeVar("T")

# serialization_failure, deadlock_detected
RETRYABLE_SQLSTATES = {"40001", "40P01"}
# unique_violation
UNIQUE_VIOLATION_SQLSTATE = "23505"

TRANSIENT_MESSAGE_MARKERS = (
    "database is locked",
    "database table is locked",
    "deadlock detected",
    "could not serialize access",
    "please retry your operation",
    "write conflict",
)


def _sqlstate(error: BaseException) -> Optional[str]:
    orig = getattr(error, "orig", None)
    # psycopg2 exposes pgcode, psycopg 3 exposes sqlstate
    return getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)


def is_uniqueness_conflict(error: Optional[BaseException]) -> bool:
    if error is None:
        return False
    if isinstance(error, UniquenessConflict):
        return True
    if isinstance(error, IntegrityError):
        if _sqlstate(error) == UNIQUE_VIOLATION_SQLSTATE:
            return True
        return "unique" in str(error.orig).lower()
    return False


def is_retryable_error(error: Optional[BaseException]) -> bool:
    if error is None:
        return False
    if isinstance(error, (TransientConflict, StaleDataError)):
        return True
    if isinstance(error, DBAPIError):
        if error.connection_invalidated:
            return True
        if _sqlstate(error) in RETRYABLE_SQLSTATES:
            return True
        if isinstance(error, OperationalError):
            message = str(error.orig).lower()
            return any(marker in message for marker in TRANSIENT_MESSAGE_MARKERS)
        return False
    # Network blips surfaced outside the DBAPI layer
    return isinstance(error, (ConnectionError, TimeoutError))


class wait_backoff(wait_base):
    """initial_delay * multiplier ** n, capped at max_delay, optionally jittered by +/-10%."""

    def __init__(self, initial_delay: float, max_delay: float, multiplier: float, jitter: bool):
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.multiplier = multiplier
        self.jitter = jitter

    def __call__(self, retry_state) -> float:
        exponent = retry_state.attempt_number - 1
        delay = min(self.initial_delay * (self.multiplier ** exponent), self.max_delay)
        if self.jitter:
            delay += (random.random() * 2 - 1) * delay * 0.1
        return max(0.0, delay)


def _log_retry(retry_state) -> None:
    error = retry_state.outcome.exception()
    logger.warning(
        "[Retry] Attempt %d failed, retrying in %.3fs: %s: %s",
        retry_state.attempt_number,
        retry_state.next_action.sleep if retry_state.next_action else 0.0,
        type(error).__name__,
        str(error)[:100],
    )


def _log_exhausted(retry_state):
    error = retry_state.outcome.exception()
    logger.error(
        "[Retry] All %d attempts exhausted: %s: %s",
        retry_state.attempt_number,
        type(error).__name__,
        str(error)[:100],
    )
    # Re-raises the last error unmodified
    return retry_state.outcome.result()


def retry_with_backoff(
    operation: Callable[[], T],
    *,
    max_retries: Optional[int] = None,
    initial_delay: Optional[float] = None,
    max_delay: Optional[float] = None,
    multiplier: Optional[float] = None,
    jitter: Optional[bool] = None,
    should_retry: Callable[[BaseException], bool] = is_retryable_error,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call operation(), retrying up to max_retries extra times on retryable errors.

    Unset options fall back to the RETRY_* settings.
    """
    max_retries = settings.RETRY_MAX_RETRIES if max_retries is None else max_retries
    initial_delay = settings.RETRY_INITIAL_DELAY if initial_delay is None else initial_delay
    max_delay = settings.RETRY_MAX_DELAY if max_delay is None else max_delay
    multiplier = settings.RETRY_MULTIPLIER if multiplier is None else multiplier
    jitter = settings.RETRY_JITTER if jitter is None else jitter

    def _should_retry(error: BaseException) -> bool:
        if is_uniqueness_conflict(error):
            return False
        return should_retry(error)

    retrying = Retrying(
        stop=stop_after_attempt(max_retries + 1),
        wait=wait_backoff(initial_delay, max_delay, multiplier, jitter),
        retry=retry_if_exception(_should_retry),
        before_sleep=_log_retry,
        retry_error_callback=_log_exhausted,
        sleep=sleep,
        reraise=True,
    )
    return retrying(operation)

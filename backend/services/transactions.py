# backend/services/transactions.py
"""
Rollback executor for multi-step stock operations.

Each step commits on its own through run_in_transaction (retried on
transient conflicts). When a later step fails, the completed steps are undone
in reverse order through the typed compensation each one returned. A
compensation that itself fails is recorded as a dead-letter event and the
executor moves on; the caller still gets TransactionFailed.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, List, Optional, Tuple, Union

from fastapi.encoders import jsonable_encoder
from sqlalchemy.orm import Session

from database import run_in_transaction
from models.users import User
from services.reservations import release_reservation, restore_reservation
from services.stock_ledger import reverse_movement
from utils.audit import write_log
from utils.errors import InventoryError, TransactionFailed

logger = logging.getLogger(__name__)


@dataclass
class ReverseMovement:
    """Undo a recorded movement with a compensating ledger entry."""
    movement_id: int
    reason: str = "Rollback of failed operation"

    def apply(self, db: Session, user: User):
        return reverse_movement(db, self.movement_id, user, self.reason)


@dataclass
class ReleaseReservation:
    product_id: int
    reservation_id: str

    def apply(self, db: Session, user: User):
        return release_reservation(db, self.product_id, self.reservation_id)


@dataclass
class RestoreReservation:
    """Put back a reservation that a completed step consumed."""
    product_id: int
    reservation_id: str
    quantity: float
    expires_at: datetime
    reserved_by_id: Optional[int] = None
    reference_type: str = "cart"
    reference_id: Optional[str] = None

    def apply(self, db: Session, user: User):
        return restore_reservation(
            db, self.product_id, self.reservation_id, self.quantity, self.expires_at,
            reserved_by_id=self.reserved_by_id,
            reference_type=self.reference_type,
            reference_id=self.reference_id,
        )


Compensation = Union[ReverseMovement, ReleaseReservation, RestoreReservation]


@dataclass
class Step:
    """One unit of a rollback-capable sequence.

    run(db) does the work without committing. undo(result) builds the
    compensation for a successful run: one compensation, a list applied in
    order, or None when nothing needs undoing.
    """
    name: str
    run: Callable[[Session], Any]
    undo: Optional[Callable[[Any], Union[Compensation, List[Compensation], None]]] = None


@dataclass
class _Completed:
    step: Step
    compensations: List[Compensation] = field(default_factory=list)


def _as_list(undo_result) -> List[Compensation]:
    if undo_result is None:
        return []
    if isinstance(undo_result, (list, tuple)):
        return list(undo_result)
    return [undo_result]


class TransactionManager:
    def __init__(self, db: Session, user: Optional[User] = None, *, retry_options: Optional[dict] = None):
        self.db = db
        self.user = user
        self.retry_options = retry_options or {}
        self.last_attempts = 0

    def execute_with_retry(self, operation: Callable[[Session], Any]):
        """Run operation(db) as one committed unit, retried on transient conflicts."""
        self.last_attempts = 0

        def counted(db: Session):
            self.last_attempts += 1
            return operation(db)

        return run_in_transaction(self.db, counted, **self.retry_options)

    def execute_with_rollback(self, steps: List[Step], operation_name: str = "operation") -> List[Any]:
        """Run steps in order; on failure compensate completed ones in reverse and raise TransactionFailed."""
        completed: List[_Completed] = []
        results: List[Any] = []

        for step in steps:
            try:
                result = self.execute_with_retry(step.run)
            except Exception as exc:
                logger.error("%s failed at step '%s' after %s attempt(s): %s",
                             operation_name, step.name, self.last_attempts, exc)
                self._compensate(completed, operation_name)
                raise self._failure(operation_name, step, exc) from exc

            results.append(result)
            completed.append(_Completed(step, _as_list(step.undo(result) if step.undo else None)))

        return results

    def _failure(self, operation_name: str, step: Step, cause: Exception) -> TransactionFailed:
        detail = cause.message if isinstance(cause, InventoryError) else str(cause)
        failure = TransactionFailed(
            f"{operation_name} failed at step '{step.name}': {detail}",
            attempts=self.last_attempts,
            operation=operation_name,
        )
        # Business rule failures keep their own status and code for the client
        if isinstance(cause, InventoryError):
            failure.status_code = cause.status_code
            failure.code = cause.code
        return failure

    def _compensate(self, completed: List[_Completed], operation_name: str) -> Tuple[int, int]:
        undone = failed = 0
        for entry in reversed(completed):
            for compensation in entry.compensations:
                try:
                    compensation.apply(self.db, self.user)
                    undone += 1
                except Exception as exc:
                    failed += 1
                    self._dead_letter(operation_name, entry.step, compensation, exc)
        if undone or failed:
            logger.info("%s rolled back: %s compensation(s) applied, %s dead-lettered",
                        operation_name, undone, failed)
        return undone, failed

    def _dead_letter(self, operation_name: str, step: Step, compensation: Compensation, error: Exception):
        logger.error("DEAD LETTER: compensation for %s step '%s' failed: %s (%r)",
                     operation_name, step.name, error, compensation)
        self.db.rollback()
        try:
            write_log(
                self.db,
                user_id=self.user.id if self.user else None,
                action="DEAD_LETTER",
                resource=operation_name,
                status="FAIL",
                meta={
                    "step": step.name,
                    "compensation": type(compensation).__name__,
                    "target": jsonable_encoder(vars(compensation)),
                    "error": str(error),
                },
            )
        except Exception:
            self.db.rollback()
            logger.exception("Could not persist dead-letter record for %s", operation_name)

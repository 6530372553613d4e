# backend/utils/atomic.py
"""
Atomic update primitives.

Each primitive is one SQL statement (conditional UPDATE with RETURNING, a
single INSERT or a single DELETE), never read-then-write in Python.

commit=True  -> the statement runs as its own transaction, retried with backoff.
commit=False -> the statement joins the caller's transaction; the caller's
                run_in_transaction() is then the retry unit.
"""
import logging
from typing import Any, Dict, Iterable, Optional

from sqlalchemy import case, delete, exists, insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from database import run_in_transaction, utcnow
from utils.errors import InsufficientStock, NotFoundError, UniquenessConflict, ValidationFailed
from utils.retry import is_uniqueness_conflict

logger = logging.getLogger(__name__)


def _execute(db: Session, work, commit: bool, retry_options: Optional[dict]):
    if not commit:
        return work(db)
    return run_in_transaction(db, work, **(retry_options or {}))


def _column(model, field: str):
    column = model.__table__.columns.get(field)
    if column is None:
        raise ValidationFailed(f"{model.__name__} has no column '{field}'", field=field)
    return getattr(model, field)


def _check_number(value, name: str):
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationFailed(f"{name} must be a number", **{name: value})


def _not_found(model, filters) -> NotFoundError:
    return NotFoundError(f"{model.__name__} not found", filters=[str(f) for f in filters])


def _with_timestamp(model, values: Dict[str, Any]) -> Dict[str, Any]:
    if "last_updated" in model.__table__.columns and "last_updated" not in values:
        values["last_updated"] = utcnow()
    return values


def _primary_key(model):
    return list(model.__table__.primary_key.columns)[0]


def _load(db: Session, model, pk_value):
    if pk_value is None:
        return None
    # Refresh any copy already held in the identity map
    return db.get(model, pk_value, populate_existing=True)


def _update_returning(db: Session, model, filters, values):
    # Core statement against the table: no ORM session synchronisation involved
    stmt = update(model.__table__).where(*filters).values(**values).returning(_primary_key(model))
    return _load(db, model, db.execute(stmt).scalars().first())


def atomic_update(db: Session, model, filters: Iterable, values: Dict[str, Any], *,
                  commit: bool = True, retry_options: Optional[dict] = None):
    """Single UPDATE ... RETURNING of the matched row. Raises NotFoundError when nothing matched."""
    filters = list(filters)
    for field in values:
        _column(model, field)

    def work(db: Session):
        row = _update_returning(db, model, filters, _with_timestamp(model, dict(values)))
        if row is None:
            raise _not_found(model, filters)
        return row

    return _execute(db, work, commit, retry_options)


def atomic_increment(db: Session, model, filters: Iterable, field: str, amount: float, *,
                     additional_values: Optional[Dict[str, Any]] = None,
                     commit: bool = True, retry_options: Optional[dict] = None):
    """field = field + amount (amount may be negative)."""
    _check_number(amount, "amount")
    column = _column(model, field)
    values = {field: column + amount}
    values.update(additional_values or {})
    return atomic_update(db, model, filters, values, commit=commit, retry_options=retry_options)


def atomic_stock_update(db: Session, model, filters: Iterable, delta: float, *,
                        allow_negative: bool = False, min_stock: float = 0,
                        reject_shortfall: bool = False, stock_field: str = "current_stock",
                        commit: bool = True, retry_options: Optional[dict] = None):
    """Apply a stock delta in one conditional write.

    allow_negative=False clamps the result to max(current + delta, min_stock)
    inside the same UPDATE. reject_shortfall=True instead makes the UPDATE
    conditional on current + delta >= min_stock and raises InsufficientStock
    when it does not hold, leaving the row untouched.

    When current_stock moves on a model that carries reserved_stock,
    available_stock is recomputed in the same statement. A version column
    is bumped.
    """
    _check_number(delta, "delta")
    _check_number(min_stock, "min_stock")
    if min_stock < 0 and not allow_negative:
        raise ValidationFailed("min_stock cannot be negative", min_stock=min_stock)

    filters = list(filters)
    column = _column(model, stock_field)
    raw = column + delta
    conditions = list(filters)

    if allow_negative:
        new_value = raw
    elif reject_shortfall:
        new_value = raw
        conditions.append(raw >= min_stock)
    else:
        new_value = case((raw < min_stock, min_stock), else_=raw)

    columns = model.__table__.columns
    values: Dict[str, Any] = {stock_field: new_value}
    if stock_field == "current_stock" and "available_stock" in columns and "reserved_stock" in columns:
        available = new_value - model.reserved_stock
        values["available_stock"] = case((available < 0, 0), else_=available)
    if "version" in columns:
        values["version"] = model.version + 1

    def work(db: Session):
        row = _update_returning(db, model, conditions, _with_timestamp(model, dict(values)))
        if row is not None:
            return row
        if reject_shortfall and db.execute(select(exists().where(*filters))).scalar():
            current = db.execute(select(column).where(*filters)).scalar()
            logger.info("Rejected %s update on %s: current %s, delta %s, floor %s",
                        stock_field, model.__name__, current, delta, min_stock)
            raise InsufficientStock(available=current, requested=abs(delta))
        raise _not_found(model, filters)

    return _execute(db, work, commit, retry_options)


def atomic_balance_update(db: Session, model, filters: Iterable, amount: float,
                          balance_field: str = "current_balance", *,
                          commit: bool = True, retry_options: Optional[dict] = None):
    """Increment/decrement a running balance (valuation, account balance)."""
    return atomic_increment(db, model, filters, balance_field, amount,
                            commit=commit, retry_options=retry_options)


def atomic_multi_update(db: Session, model, filters: Iterable, *,
                        set_fields: Optional[Dict[str, Any]] = None,
                        inc_fields: Optional[Dict[str, float]] = None,
                        commit: bool = True, retry_options: Optional[dict] = None):
    """Set and increment several columns of the matched row in one UPDATE."""
    values: Dict[str, Any] = {}
    for field, value in (set_fields or {}).items():
        _column(model, field)
        values[field] = value
    for field, amount in (inc_fields or {}).items():
        _check_number(amount, field)
        values[field] = _column(model, field) + amount
    if not values:
        raise ValidationFailed("Nothing to update")
    return atomic_update(db, model, filters, values, commit=commit, retry_options=retry_options)


def atomic_array_add(db: Session, model, item: Dict[str, Any], *,
                     commit: bool = True, retry_options: Optional[dict] = None):
    """Insert one child row. A unique constraint hit is a permanent UniquenessConflict."""
    for field in item:
        _column(model, field)

    def work(db: Session):
        try:
            stmt = insert(model.__table__).values(**item).returning(_primary_key(model))
            pk_value = db.execute(stmt).scalars().first()
        except IntegrityError as exc:
            if is_uniqueness_conflict(exc):
                raise UniquenessConflict(f"Duplicate {model.__name__}", item=str(item)) from exc
            raise
        return _load(db, model, pk_value)

    return _execute(db, work, commit, retry_options)


def atomic_array_remove(db: Session, model, filters: Iterable, *,
                        commit: bool = True, retry_options: Optional[dict] = None) -> int:
    """Delete matching child rows; returns how many were removed."""
    filters = list(filters)

    def work(db: Session):
        result = db.execute(delete(model.__table__).where(*filters))
        return result.rowcount or 0

    return _execute(db, work, commit, retry_options)

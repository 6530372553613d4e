# backend/services/stock_ledger.py
"""
Stock movement ledger.

Every inventory change is written as one immutable StockMovement row. The
matching stock delta is applied to the Inventory record in the same
transaction through a conditional atomic update, so a decreasing movement
that would take stock below zero fails before anything is persisted.
Reversals never edit history: they append a compensating row and apply the
inverse delta.
"""
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import and_, case, func, or_
from sqlalchemy.orm import Session

from database import run_in_transaction, utcnow
from models.inventory import Inventory
from models.product import Product
from models.stock import (
    MovementStatus, MovementType, StockMovement, STOCK_IN_TYPES, STOCK_OUT_TYPES, stock_direction
)
from models.users import User
from schemas.stock import MovementCreate
from utils.atomic import atomic_balance_update, atomic_multi_update, atomic_stock_update
from utils.errors import (
    AlreadyReversed, InvalidState, MovementNotFound, NotFoundError, ProductNotFound, ValidationFailed
)

logger = logging.getLogger(__name__)


def _execute(db: Session, work, commit: bool):
    return run_in_transaction(db, work) if commit else work(db)


def _snap(value: float) -> float:
    # Keeps float noise out of the non-negative snapshot columns
    return round(value, 6)


def _inventory_filter(product_id: int):
    return [Inventory.product_id == product_id]


def get_inventory(db: Session, product_id: int) -> Optional[Inventory]:
    return (
        db.query(Inventory)
        .filter(Inventory.product_id == product_id)
        .populate_existing()
        .first()
    )


def ensure_inventory(db: Session, product: Product) -> Inventory:
    """Return the product's inventory record, creating an empty one on first use."""
    inventory = get_inventory(db, product.id)
    if inventory is None:
        inventory = Inventory(
            product_id=product.id,
            current_stock=0,
            reserved_stock=0,
            available_stock=0,
            stock_value=0,
            version=0,
            last_updated=utcnow(),
        )
        db.add(inventory)
        db.flush()
    return inventory


def record_movement(db: Session, payload: MovementCreate, user: User, *, commit: bool = True) -> StockMovement:
    """Write one ledger row and, unless skipped, apply its stock delta atomically.

    previous_stock/new_stock are taken from the row produced by the atomic
    update. With skip_inventory_update the caller has already moved stock;
    the snapshot then comes from the caller or is derived from current stock.
    """
    def work(db: Session) -> StockMovement:
        product = db.get(Product, payload.product_id)
        if product is None:
            raise ProductNotFound(payload.product_id)

        inventory = ensure_inventory(db, product)
        direction = stock_direction(payload.movement_type)
        quantity = payload.quantity
        unit_cost = payload.unit_cost if payload.unit_cost is not None else (product.buy_price or 0)
        total_value = quantity * unit_cost

        if payload.skip_inventory_update:
            current = inventory.current_stock
            new_stock = payload.new_stock if payload.new_stock is not None else current
            if payload.previous_stock is not None:
                previous_stock = payload.previous_stock
            elif direction > 0:
                previous_stock = max(new_stock - quantity, 0)
            else:
                previous_stock = new_stock + quantity
        else:
            updated = atomic_stock_update(
                db, Inventory, _inventory_filter(product.id), direction * quantity,
                reject_shortfall=True, commit=False,
            )
            new_stock = updated.current_stock
            previous_stock = new_stock - direction * quantity

        if total_value:
            atomic_balance_update(
                db, Inventory, _inventory_filter(product.id), direction * total_value,
                "stock_value", commit=False,
            )

        movement = StockMovement(
            created_at=utcnow(),
            product_id=product.id,
            product_name=product.name,
            product_sku=product.code,
            movement_type=payload.movement_type,
            quantity=quantity,
            unit_cost=unit_cost,
            total_value=total_value,
            previous_stock=_snap(previous_stock),
            new_stock=_snap(new_stock),
            inventory_applied=not payload.skip_inventory_update,
            reference_type=payload.reference_type.value,
            reference_id=payload.reference_id,
            reference_number=payload.reference_number,
            location=payload.location,
            from_location=payload.from_location,
            to_location=payload.to_location,
            user_id=user.id,
            user_name=user.display_name,
            reason=payload.reason,
            notes=payload.notes,
            batch_number=payload.batch_number,
            expiry_date=payload.expiry_date,
            supplier=payload.supplier,
            customer=payload.customer,
            status=MovementStatus.COMPLETED,
            system_generated=True,
        )
        db.add(movement)
        db.flush()
        return movement

    movement = _execute(db, work, commit)
    logger.info(
        "Stock movement %s recorded: %s %s x%s (%s -> %s)",
        movement.id, movement.movement_type.value, movement.product_sku,
        movement.quantity, movement.previous_stock, movement.new_stock,
    )
    return movement


def reverse_movement(db: Session, movement_id: int, user: User, reason: Optional[str] = None,
                     *, commit: bool = True) -> StockMovement:
    """Append a compensating movement and apply the inverse stock delta.

    The reversal row carries the original's snapshot pair swapped. The
    original is claimed with a write conditional on status 'completed', so of
    two concurrent reversals only one can succeed.
    """
    def work(db: Session) -> StockMovement:
        original = db.get(StockMovement, movement_id, populate_existing=True)
        if original is None:
            raise MovementNotFound(movement_id)
        if original.is_reversal:
            raise AlreadyReversed("Cannot reverse a reversal movement", movement_id=movement_id)
        if original.status != MovementStatus.COMPLETED:
            raise InvalidState(
                "Can only reverse completed movements",
                movement_id=movement_id, status=original.status.value,
            )

        now = utcnow()
        reversal = StockMovement(
            created_at=now,
            product_id=original.product_id,
            product_name=original.product_name,
            product_sku=original.product_sku,
            movement_type=original.movement_type,
            quantity=original.quantity,
            unit_cost=original.unit_cost,
            total_value=original.total_value,
            previous_stock=original.new_stock,
            new_stock=original.previous_stock,
            inventory_applied=True,
            reference_type=original.reference_type,
            reference_id=original.reference_id,
            reference_number=original.reference_number,
            location=original.location,
            from_location=original.to_location,
            to_location=original.from_location,
            user_id=user.id,
            user_name=user.display_name,
            reason=reason or "Reversal of movement",
            notes=f"Reversal of movement {original.id}",
            batch_number=original.batch_number,
            expiry_date=original.expiry_date,
            supplier=original.supplier,
            customer=original.customer,
            status=MovementStatus.COMPLETED,
            is_reversal=True,
            original_movement_id=original.id,
            reversed_by_id=user.id,
            reversed_at=now,
            system_generated=True,
        )
        db.add(reversal)
        db.flush()

        try:
            atomic_multi_update(
                db, StockMovement,
                [StockMovement.id == original.id, StockMovement.status == MovementStatus.COMPLETED],
                set_fields={
                    "status": MovementStatus.REVERSED,
                    "reversal_movement_id": reversal.id,
                    "reversed_by_id": user.id,
                    "reversed_at": now,
                },
                commit=False,
            )
        except NotFoundError:
            raise InvalidState("Movement was reversed concurrently", movement_id=movement_id)

        delta = original.previous_stock - original.new_stock
        if delta:
            atomic_stock_update(
                db, Inventory, _inventory_filter(original.product_id), delta,
                reject_shortfall=True, commit=False,
            )
        value_delta = -stock_direction(original.movement_type) * original.total_value
        if value_delta:
            atomic_balance_update(
                db, Inventory, _inventory_filter(original.product_id), value_delta,
                "stock_value", commit=False,
            )
        return reversal

    reversal = _execute(db, work, commit)
    logger.info("Stock movement %s reversed by movement %s", movement_id, reversal.id)
    return reversal


def _direction_buckets():
    in_types = sorted(STOCK_IN_TYPES, key=lambda t: t.value)
    out_types = sorted(STOCK_OUT_TYPES, key=lambda t: t.value)
    # A reversal row counts against the direction of the movement it undoes
    is_in = or_(
        and_(StockMovement.movement_type.in_(in_types), StockMovement.is_reversal.is_(False)),
        and_(StockMovement.movement_type.in_(out_types), StockMovement.is_reversal.is_(True)),
    )
    is_out = or_(
        and_(StockMovement.movement_type.in_(out_types), StockMovement.is_reversal.is_(False)),
        and_(StockMovement.movement_type.in_(in_types), StockMovement.is_reversal.is_(True)),
    )
    return is_in, is_out


def get_product_summary(db: Session, product_id: int, as_of: Optional[datetime] = None) -> dict:
    """Total in/out quantity and value for a product up to as_of. Read only."""
    if db.get(Product, product_id) is None:
        raise ProductNotFound(product_id)
    as_of = as_of or utcnow()
    is_in, is_out = _direction_buckets()

    total_in, total_out, value_in, value_out = (
        db.query(
            func.coalesce(func.sum(case((is_in, StockMovement.quantity), else_=0)), 0),
            func.coalesce(func.sum(case((is_out, StockMovement.quantity), else_=0)), 0),
            func.coalesce(func.sum(case((is_in, StockMovement.total_value), else_=0)), 0),
            func.coalesce(func.sum(case((is_out, StockMovement.total_value), else_=0)), 0),
        )
        .filter(
            StockMovement.product_id == product_id,
            StockMovement.created_at <= as_of,
            StockMovement.status.in_([MovementStatus.COMPLETED, MovementStatus.REVERSED]),
        )
        .one()
    )
    return {
        "product_id": product_id,
        "as_of": as_of,
        "total_in": float(total_in),
        "total_out": float(total_out),
        "total_value_in": float(value_in),
        "total_value_out": float(value_out),
        "net_quantity": float(total_in) - float(total_out),
    }


def get_product_movements(db: Session, product_id: int, *,
                          date_from: Optional[datetime] = None,
                          date_to: Optional[datetime] = None,
                          movement_type: Optional[MovementType] = None,
                          location: Optional[str] = None) -> List[StockMovement]:
    if date_from and date_to and date_from > date_to:
        raise ValidationFailed("date_from must not be after date_to")
    query = db.query(StockMovement).filter(StockMovement.product_id == product_id)
    if date_from:
        query = query.filter(StockMovement.created_at >= date_from)
    if date_to:
        query = query.filter(StockMovement.created_at <= date_to)
    if movement_type:
        query = query.filter(StockMovement.movement_type == movement_type)
    if location:
        query = query.filter(StockMovement.location == location)
    return query.order_by(StockMovement.created_at.desc(), StockMovement.id.desc()).all()

# backend/services/stock_tracking.py
"""
Business operations that move stock: purchase receipts, sales, returns,
adjustments, transfers, write-offs and product transformations.

Each one books its ledger entries through record_movement with its own
provenance. Multi-item and multi-step operations go through the rollback
executor so a failure part way reverses the steps already committed.
"""
import logging
from datetime import datetime
from typing import List, NamedTuple, Optional

from sqlalchemy.orm import Session

from database import utcnow
from models.inventory import Inventory, StockReservation
from models.product import Product
from models.stock import MovementType, ReferenceType, StockMovement
from models.users import User
from schemas.operations import (
    PurchaseReceiptCreate, ReturnCreate, SaleCreate, SaleItem, TransferCreate,
    TransformationCreate, WriteOffCreate
)
from schemas.stock import AdjustmentCreate, MovementCreate
from services.reservations import live_reserved_quantity, lock_inventory, sync_reservation_totals
from services.stock_ledger import record_movement
from services.transactions import Compensation, RestoreReservation, ReverseMovement, Step, TransactionManager
from utils.atomic import atomic_array_remove, atomic_stock_update
from utils.errors import InventoryNotFound, ProductNotFound, ReservationNotFound

logger = logging.getLogger(__name__)


def _reverse(movement: StockMovement) -> ReverseMovement:
    return ReverseMovement(movement.id)


def _movement_step(name: str, payload: MovementCreate, user: User) -> Step:
    return Step(
        name=name,
        run=lambda db: record_movement(db, payload, user, commit=False),
        undo=_reverse,
    )


def _require_product(db: Session, product_id: int) -> Product:
    product = db.get(Product, product_id)
    if product is None:
        raise ProductNotFound(product_id)
    return product


def track_purchase_order(db: Session, receipt: PurchaseReceiptCreate, user: User) -> List[StockMovement]:
    steps = [
        _movement_step(f"purchase:{item.product_id}", MovementCreate(
            product_id=item.product_id,
            movement_type=MovementType.PURCHASE,
            quantity=item.quantity,
            unit_cost=item.unit_cost,
            reference_type=ReferenceType.PURCHASE_ORDER,
            reference_id=receipt.reference_id,
            reference_number=receipt.po_number,
            location=receipt.location,
            reason="Purchase order received",
            notes=f"PO: {receipt.po_number}" if receipt.po_number else None,
            supplier=receipt.supplier,
            batch_number=receipt.batch_number,
            expiry_date=receipt.expiry_date,
        ), user)
        for item in receipt.items
    ]
    return TransactionManager(db, user).execute_with_rollback(steps, "purchase_receipt")


class _SoldLine(NamedTuple):
    movement: StockMovement
    consumed: Optional[RestoreReservation] = None


def _undo_sale(line: _SoldLine) -> List[Compensation]:
    # Stock goes back before the hold is re-created on top of it
    compensations: List[Compensation] = [ReverseMovement(line.movement.id)]
    if line.consumed is not None:
        compensations.append(line.consumed)
    return compensations


def _sell_item(db: Session, sale: SaleCreate, item: SaleItem, user: User,
               now: Optional[datetime]) -> _SoldLine:
    """Decrement stock for one sale line and book the movement as an audit row.

    Stock held by other reservations cannot be sold; the caller's own
    reservation, when given, is consumed by the sale and handed back so a
    rollback can restore it.
    """
    current = now or utcnow()
    inventory = lock_inventory(db, Inventory.product_id == item.product_id)
    if inventory is None:
        _require_product(db, item.product_id)
        raise InventoryNotFound(item.product_id)

    consumed = None
    if item.reservation_id:
        own = (
            db.query(StockReservation)
            .filter(StockReservation.inventory_id == inventory.id,
                    StockReservation.reservation_id == item.reservation_id)
            .populate_existing()
            .first()
        )
        if own is None:
            raise ReservationNotFound(item.reservation_id)
        consumed = RestoreReservation(
            product_id=item.product_id,
            reservation_id=own.reservation_id,
            quantity=own.quantity,
            expires_at=own.expires_at,
            reserved_by_id=own.reserved_by_id,
            reference_type=own.reference_type,
            reference_id=own.reference_id,
        )

    held_by_others = live_reserved_quantity(db, inventory.id, current,
                                            exclude_reservation_id=item.reservation_id)
    updated = atomic_stock_update(
        db, Inventory, [Inventory.id == inventory.id], -item.quantity,
        reject_shortfall=True, min_stock=held_by_others, commit=False,
    )
    new_stock = updated.current_stock

    if item.reservation_id:
        atomic_array_remove(db, StockReservation, [
            StockReservation.inventory_id == inventory.id,
            StockReservation.reservation_id == item.reservation_id,
        ], commit=False)
    sync_reservation_totals(db, updated, current)

    movement = record_movement(db, MovementCreate(
        product_id=item.product_id,
        movement_type=MovementType.SALE,
        quantity=item.quantity,
        unit_cost=item.unit_cost,
        reference_type=ReferenceType.SALES_ORDER,
        reference_id=sale.reference_id,
        reference_number=sale.order_number,
        location=sale.location,
        reason="Sales order fulfilled",
        notes=f"SO: {sale.order_number}" if sale.order_number else None,
        customer=sale.customer,
        skip_inventory_update=True,
        previous_stock=new_stock + item.quantity,
        new_stock=new_stock,
    ), user, commit=False)
    return _SoldLine(movement, consumed)


def track_sales_order(db: Session, sale: SaleCreate, user: User, *,
                      now: Optional[datetime] = None) -> List[StockMovement]:
    steps = [
        Step(
            name=f"sale:{item.product_id}",
            run=lambda db, item=item: _sell_item(db, sale, item, user, now),
            undo=_undo_sale,
        )
        for item in sale.items
    ]
    lines = TransactionManager(db, user).execute_with_rollback(steps, "sale")
    return [line.movement for line in lines]


def track_return(db: Session, data: ReturnCreate, user: User) -> List[StockMovement]:
    customer_return = data.return_type == "customer_return"
    movement_type = MovementType.RETURN_IN if customer_return else MovementType.RETURN_OUT
    default_reason = "Customer return" if customer_return else "Return to supplier"
    steps = [
        _movement_step(f"{movement_type.value}:{item.product_id}", MovementCreate(
            product_id=item.product_id,
            movement_type=movement_type,
            quantity=item.quantity,
            unit_cost=item.unit_cost,
            reference_type=ReferenceType.RETURN,
            reference_id=data.reference_id,
            reference_number=data.return_number,
            location=data.location,
            reason=data.reason or default_reason,
            notes=f"Return: {data.return_number}" if data.return_number else None,
            customer=data.customer,
            supplier=data.supplier,
        ), user)
        for item in data.items
    ]
    return TransactionManager(db, user).execute_with_rollback(steps, "return")


def track_adjustment(db: Session, data: AdjustmentCreate, user: User) -> StockMovement:
    return record_movement(db, MovementCreate(
        product_id=data.product_id,
        movement_type=MovementType(data.movement_type),
        quantity=data.quantity,
        unit_cost=data.unit_cost,
        reference_type=ReferenceType.ADJUSTMENT,
        reference_id=str(data.product_id),
        reference_number=data.reference_number,
        location=data.location,
        reason=data.reason,
        notes=data.notes,
    ), user)


def track_transfer(db: Session, data: TransferCreate, user: User) -> List[StockMovement]:
    """Book a location transfer as transfer_out followed by transfer_in."""
    _require_product(db, data.product_id)
    common = dict(
        product_id=data.product_id,
        quantity=data.quantity,
        unit_cost=data.unit_cost,
        reference_type=ReferenceType.TRANSFER,
        reference_id=data.reference_id,
        reference_number=data.transfer_number,
        from_location=data.from_location,
        to_location=data.to_location,
        notes=f"Transfer: {data.transfer_number}" if data.transfer_number else None,
    )
    steps = [
        _movement_step("transfer_out", MovementCreate(
            movement_type=MovementType.TRANSFER_OUT, location=data.from_location,
            reason="Stock transfer out", **common), user),
        _movement_step("transfer_in", MovementCreate(
            movement_type=MovementType.TRANSFER_IN, location=data.to_location,
            reason="Stock transfer in", **common), user),
    ]
    return TransactionManager(db, user).execute_with_rollback(steps, "transfer")


def track_write_off(db: Session, data: WriteOffCreate, user: User) -> StockMovement:
    return record_movement(db, MovementCreate(
        product_id=data.product_id,
        movement_type=MovementType(data.write_off_type),
        quantity=data.quantity,
        unit_cost=data.unit_cost,
        reference_type=ReferenceType.WRITE_OFF,
        reference_number=data.reference_number,
        location=data.location,
        reason=data.reason,
        notes=data.notes,
    ), user)


def transform_product(db: Session, data: TransformationCreate, user: User) -> List[StockMovement]:
    """Consume base product stock and produce the same quantity of the target product.

    The target is booked at the base product's cost plus the per-unit
    transformation cost.
    """
    base = _require_product(db, data.base_product_id)
    target = _require_product(db, data.target_product_id)
    base_cost = base.buy_price or 0
    target_cost = base_cost + data.unit_transformation_cost
    notes = data.notes or f"Transformed {base.code} into {target.code}"

    steps = [
        _movement_step("consume_base", MovementCreate(
            product_id=base.id,
            movement_type=MovementType.CONSUMPTION,
            quantity=data.quantity,
            unit_cost=base_cost,
            reference_type=ReferenceType.PRODUCTION,
            reference_number=data.reference_number,
            reason=f"Transformed into {target.name}",
            notes=notes,
        ), user),
        _movement_step("produce_target", MovementCreate(
            product_id=target.id,
            movement_type=MovementType.PRODUCTION,
            quantity=data.quantity,
            unit_cost=target_cost,
            reference_type=ReferenceType.PRODUCTION,
            reference_number=data.reference_number,
            reason=f"Transformed from {base.name}",
            notes=notes,
        ), user),
    ]
    movements = TransactionManager(db, user).execute_with_rollback(steps, "transformation")
    logger.info("Transformed %s x %s into %s at unit cost %s",
                data.quantity, base.code, target.code, target_cost)
    return movements

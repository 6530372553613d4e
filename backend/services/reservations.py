# backend/services/reservations.py
"""
Stock reservations (cart / checkout holds).

reserved_stock and available_stock on the inventory row are always
recomputed from the live reservation set, never incremented. Each call runs
in its own retried transaction; the inventory row is locked for the
duration where the dialect supports it and the totals write is conditional
on the version the call started from.
"""
import logging
import time
import uuid
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from config import settings
from database import run_in_transaction, utcnow
from models.inventory import Inventory, StockReservation
from models.users import User
from utils.atomic import atomic_array_add, atomic_array_remove, atomic_multi_update, atomic_update
from utils.errors import (
    InsufficientAvailableStock, InventoryNotFound, NotFoundError, ReservationExpired, ReservationNotFound,
    TransientConflict, ValidationFailed
)

logger = logging.getLogger(__name__)


def generate_reservation_id() -> str:
    return f"RES-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9].upper()}"


def lock_inventory(db: Session, *filters) -> Optional[Inventory]:
    return (
        db.query(Inventory)
        .filter(*filters)
        .with_for_update()
        .populate_existing()
        .first()
    )


def live_reserved_quantity(db: Session, inventory_id: int, now: datetime,
                           exclude_reservation_id: Optional[str] = None) -> float:
    """Sum of quantities of reservations that have not expired at `now`."""
    query = db.query(func.coalesce(func.sum(StockReservation.quantity), 0)).filter(
        StockReservation.inventory_id == inventory_id,
        StockReservation.expires_at > now,
    )
    if exclude_reservation_id:
        query = query.filter(StockReservation.reservation_id != exclude_reservation_id)
    return float(query.scalar())


def sync_reservation_totals(db: Session, inventory: Inventory, now: datetime) -> Inventory:
    """Rewrite reserved/available from the live set, conditional on the version seen."""
    reserved = live_reserved_quantity(db, inventory.id, now)
    available = Inventory.current_stock - reserved
    try:
        return atomic_multi_update(
            db, Inventory,
            [Inventory.id == inventory.id, Inventory.version == inventory.version],
            set_fields={
                "reserved_stock": reserved,
                "available_stock": case((available < 0, 0), else_=available),
            },
            inc_fields={"version": 1},
            commit=False,
        )
    except NotFoundError:
        raise TransientConflict("Inventory changed while updating reservations",
                                inventory_id=inventory.id)


def _hold(db: Session, product_id: int, quantity: float, fields: dict, current: datetime) -> StockReservation:
    """Insert a reservation if it fits in the live available stock, then resync totals."""
    inventory = lock_inventory(db, Inventory.product_id == product_id)
    if inventory is None:
        raise InventoryNotFound(product_id)

    available = max(inventory.current_stock - live_reserved_quantity(db, inventory.id, current), 0)
    if quantity > available:
        raise InsufficientAvailableStock(available=available, requested=quantity)

    reservation = atomic_array_add(db, StockReservation, {
        "inventory_id": inventory.id,
        "quantity": quantity,
        "created_at": current,
        **fields,
    }, commit=False)
    sync_reservation_totals(db, inventory, current)
    return reservation


def reserve_stock(db: Session, product_id: int, quantity: float, *,
                  user: Optional[User] = None,
                  expires_in_minutes: Optional[int] = None,
                  reference_type: str = "cart",
                  reference_id: Optional[str] = None,
                  reservation_id: Optional[str] = None,
                  now: Optional[datetime] = None) -> StockReservation:
    """Hold `quantity` of a product's available stock until the reservation expires."""
    if quantity is None or quantity <= 0:
        raise ValidationFailed("Reservation quantity must be greater than 0", quantity=quantity)
    minutes = expires_in_minutes if expires_in_minutes is not None else settings.RESERVATION_DEFAULT_MINUTES
    if minutes <= 0:
        raise ValidationFailed("Reservation expiry must be positive", expires_in_minutes=minutes)

    def work(db: Session) -> StockReservation:
        current = now or utcnow()
        return _hold(db, product_id, quantity, {
            "reservation_id": reservation_id or generate_reservation_id(),
            "expires_at": current + timedelta(minutes=minutes),
            "reserved_by_id": user.id if user else None,
            "reference_type": reference_type or "cart",
            "reference_id": reference_id,
        }, current)

    reservation = run_in_transaction(db, work)
    logger.info("Reserved %s of product %s (%s, expires %s)",
                quantity, product_id, reservation.reservation_id, reservation.expires_at)
    return reservation


def restore_reservation(db: Session, product_id: int, reservation_id: str, quantity: float,
                        expires_at: datetime, *,
                        reserved_by_id: Optional[int] = None,
                        reference_type: str = "cart",
                        reference_id: Optional[str] = None,
                        now: Optional[datetime] = None) -> Optional[StockReservation]:
    """Re-create a consumed reservation with its original expiry.

    Returns None when the reservation would already have expired.
    """
    current = now or utcnow()
    if expires_at <= current:
        logger.info("Not restoring reservation %s, it expired at %s", reservation_id, expires_at)
        return None

    reservation = run_in_transaction(db, lambda db: _hold(db, product_id, quantity, {
        "reservation_id": reservation_id,
        "expires_at": expires_at,
        "reserved_by_id": reserved_by_id,
        "reference_type": reference_type,
        "reference_id": reference_id,
    }, current))
    logger.info("Restored reservation %s of product %s (%s until %s)",
                reservation_id, product_id, quantity, expires_at)
    return reservation

    reservation = run_in_transaction(db, work)
    logger.info("Reserved %s of product %s (%s, expires %s)",
                quantity, product_id, reservation.reservation_id, reservation.expires_at)
    return reservation


def release_reservation(db: Session, product_id: int, reservation_id: str, *,
                        now: Optional[datetime] = None) -> Inventory:
    """Remove one reservation and recompute the inventory totals."""
    def work(db: Session) -> Inventory:
        current = now or utcnow()
        inventory = lock_inventory(db, Inventory.product_id == product_id)
        if inventory is None:
            raise InventoryNotFound(product_id)
        removed = atomic_array_remove(db, StockReservation, [
            StockReservation.inventory_id == inventory.id,
            StockReservation.reservation_id == reservation_id,
        ], commit=False)
        if not removed:
            raise ReservationNotFound(reservation_id)
        return sync_reservation_totals(db, inventory, current)

    inventory = run_in_transaction(db, work)
    logger.info("Released reservation %s of product %s", reservation_id, product_id)
    return inventory


def extend_reservation(db: Session, product_id: int, reservation_id: str, additional_minutes: int, *,
                       now: Optional[datetime] = None) -> StockReservation:
    """Push a live reservation's expiry forward. Expired reservations cannot be extended."""
    if additional_minutes is None or additional_minutes <= 0:
        raise ValidationFailed("additional_minutes must be positive", additional_minutes=additional_minutes)

    def work(db: Session) -> StockReservation:
        current = now or utcnow()
        reservation = (
            db.query(StockReservation)
            .join(Inventory, Inventory.id == StockReservation.inventory_id)
            .filter(
                Inventory.product_id == product_id,
                StockReservation.reservation_id == reservation_id,
            )
            .populate_existing()
            .first()
        )
        if reservation is None:
            raise ReservationNotFound(reservation_id)
        if reservation.expires_at <= current:
            raise ReservationExpired(reservation_id, reservation.expires_at)
        seen_expiry = reservation.expires_at
        try:
            return atomic_update(
                db, StockReservation,
                [StockReservation.id == reservation.id, StockReservation.expires_at == seen_expiry],
                {"expires_at": seen_expiry + timedelta(minutes=additional_minutes)},
                commit=False,
            )
        except NotFoundError:
            raise TransientConflict("Reservation changed while extending", reservation_id=reservation_id)

    reservation = run_in_transaction(db, work)
    logger.info("Extended reservation %s until %s", reservation_id, reservation.expires_at)
    return reservation


def release_expired_reservations(db: Session, *, now: Optional[datetime] = None) -> dict:
    """Strip expired reservations from every inventory that has some.

    Each inventory is handled in its own transaction. Running it twice with
    nothing new expiring in between is a no-op the second time.
    """
    current = now or utcnow()
    inventory_ids = [
        row[0] for row in
        db.query(StockReservation.inventory_id)
        .filter(StockReservation.expires_at <= current)
        .distinct()
        .all()
    ]
    db.rollback()

    results = {"inventories_processed": 0, "reservations_released": 0, "total_quantity_released": 0.0}
    for inventory_id in inventory_ids:
        def work(db: Session, inventory_id=inventory_id):
            inventory = lock_inventory(db, Inventory.id == inventory_id)
            if inventory is None:
                return 0, 0.0
            expired = [
                StockReservation.inventory_id == inventory_id,
                StockReservation.expires_at <= current,
            ]
            quantity = float(
                db.query(func.coalesce(func.sum(StockReservation.quantity), 0)).filter(*expired).scalar()
            )
            removed = atomic_array_remove(db, StockReservation, expired, commit=False)
            if removed:
                sync_reservation_totals(db, inventory, current)
            return removed, quantity

        removed, quantity = run_in_transaction(db, work)
        if removed:
            results["inventories_processed"] += 1
            results["reservations_released"] += removed
            results["total_quantity_released"] += quantity

    if results["reservations_released"]:
        logger.info("Released %s expired reservations across %s inventories",
                    results["reservations_released"], results["inventories_processed"])
    return results


def get_active_reservations(db: Session, product_id: int, *, now: Optional[datetime] = None) -> List[StockReservation]:
    """Live reservations for a product; empty when it has no inventory record."""
    current = now or utcnow()
    inventory = db.query(Inventory).filter(Inventory.product_id == product_id).first()
    if inventory is None:
        return []
    return (
        db.query(StockReservation)
        .filter(StockReservation.inventory_id == inventory.id, StockReservation.expires_at > current)
        .order_by(StockReservation.created_at, StockReservation.id)
        .all()
    )

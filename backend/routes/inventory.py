# backend/routes/inventory.py
from fastapi import APIRouter, Depends, HTTPException, Request, Query
from sqlalchemy.orm import Session
from typing import List

from database import get_db
from models.inventory import Inventory
from models.users import User
from services import reservations
from services.stock_ledger import get_inventory
from utils.tokenJWT import get_current_user, can_manage_stock
from utils.audit import write_log, client_ip
from utils.errors import InventoryNotFound
import schemas.inventory as inventory_schemas

router = APIRouter(prefix="/inventory", tags=["Inventory"])


def _check_role(user: User):
    if not can_manage_stock(user):
        raise HTTPException(status_code=403, detail="Not authorized")


@router.get("/low-stock", response_model=List[inventory_schemas.InventoryOut])
def low_stock(
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    _check_role(current_user)
    return (
        db.query(Inventory)
        .filter(Inventory.current_stock <= Inventory.reorder_point)
        .order_by(Inventory.current_stock.asc())
        .limit(limit)
        .all()
    )


@router.post("/reservations/release-expired", response_model=inventory_schemas.ExpiredReleaseResult)
def release_expired(
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    _check_role(current_user)
    result = reservations.release_expired_reservations(db)
    write_log(db, user_id=current_user.id, action="RESERVATIONS_EXPIRE", resource="inventory",
              status="SUCCESS", ip=client_ip(request), meta=result)
    return result


@router.get("/{product_id}", response_model=inventory_schemas.InventoryOut)
def inventory_detail(
    product_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    _check_role(current_user)
    inventory = get_inventory(db, product_id)
    if inventory is None:
        raise InventoryNotFound(product_id)
    return inventory


@router.get("/{product_id}/reservations", response_model=List[inventory_schemas.ReservationOut])
def list_reservations(
    product_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    _check_role(current_user)
    return reservations.get_active_reservations(db, product_id)


@router.post("/{product_id}/reservations", response_model=inventory_schemas.ReservationOut, status_code=201)
def reserve(
    product_id: int,
    payload: inventory_schemas.ReservationCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    _check_role(current_user)
    reservation = reservations.reserve_stock(
        db, product_id, payload.quantity,
        user=current_user,
        expires_in_minutes=payload.expires_in_minutes,
        reference_type=payload.reference_type,
        reference_id=payload.reference_id,
        reservation_id=payload.reservation_id,
    )
    write_log(db, user_id=current_user.id, action="STOCK_RESERVE", resource="inventory",
              status="SUCCESS", ip=client_ip(request),
              meta={"product_id": product_id, "reservation_id": reservation.reservation_id,
                    "quantity": payload.quantity})
    return reservation


@router.delete("/{product_id}/reservations/{reservation_id}", response_model=inventory_schemas.InventoryOut)
def release(
    product_id: int,
    reservation_id: str,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    _check_role(current_user)
    inventory = reservations.release_reservation(db, product_id, reservation_id)
    write_log(db, user_id=current_user.id, action="STOCK_RELEASE", resource="inventory",
              status="SUCCESS", ip=client_ip(request),
              meta={"product_id": product_id, "reservation_id": reservation_id})
    return inventory


@router.post("/{product_id}/reservations/{reservation_id}/extend", response_model=inventory_schemas.ReservationOut)
def extend(
    product_id: int,
    reservation_id: str,
    payload: inventory_schemas.ReservationExtend,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    _check_role(current_user)
    return reservations.extend_reservation(db, product_id, reservation_id, payload.additional_minutes)

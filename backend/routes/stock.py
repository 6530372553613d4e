# backend/routes/stock.py
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy import or_
from sqlalchemy.orm import Session
from typing import Optional, List
from datetime import datetime

from database import get_db
from models.stock import StockMovement, MovementType, MovementStatus
from models.users import User
from services import stock_ledger, stock_tracking
from utils.tokenJWT import get_current_user, can_manage_stock
from utils.audit import write_log, client_ip
from utils.errors import MovementNotFound
import schemas.stock as stock_schemas

router = APIRouter(prefix="/stock-movements", tags=["Stock"])


def _check_role(user: User):
    if not can_manage_stock(user):
        raise HTTPException(status_code=403, detail="Not authorized")


@router.get("", response_model=stock_schemas.StockMovementPage)
def list_movements(
    q: Optional[str] = Query(None, description="Product name, SKU or reference number"),
    product_id: Optional[int] = Query(None),
    movement_type: Optional[MovementType] = Query(None),
    status: Optional[MovementStatus] = Query(None),
    location: Optional[str] = Query(None),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    order: str = Query("desc", pattern="^(asc|desc)$"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    _check_role(current_user)

    query = db.query(StockMovement)

    # Filter by product name, SKU or document number
    if q:
        like = f"%{q}%"
        query = query.filter(or_(
            StockMovement.product_name.ilike(like),
            StockMovement.product_sku.ilike(like),
            StockMovement.reference_number.ilike(like),
        ))
    if product_id is not None:
        query = query.filter(StockMovement.product_id == product_id)
    if movement_type:
        query = query.filter(StockMovement.movement_type == movement_type)
    if status:
        query = query.filter(StockMovement.status == status)
    if location:
        query = query.filter(StockMovement.location == location)
    if date_from:
        query = query.filter(StockMovement.created_at >= date_from)
    if date_to:
        query = query.filter(StockMovement.created_at <= date_to)

    if order == "desc":
        query = query.order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
    else:
        query = query.order_by(StockMovement.created_at.asc(), StockMovement.id.asc())

    total = query.count()
    items = query.offset((page - 1) * page_size).limit(page_size).all()
    return {"items": items, "total": total, "page": page, "page_size": page_size}


@router.get("/product/{product_id}", response_model=List[stock_schemas.StockMovementResponse])
def product_movements(
    product_id: int,
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    movement_type: Optional[MovementType] = Query(None),
    location: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    _check_role(current_user)
    return stock_ledger.get_product_movements(
        db, product_id, date_from=date_from, date_to=date_to,
        movement_type=movement_type, location=location,
    )


@router.get("/product/{product_id}/summary", response_model=stock_schemas.ProductStockSummary)
def product_summary(
    product_id: int,
    date: Optional[datetime] = Query(None, description="Summarise movements up to this moment"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    _check_role(current_user)
    return stock_ledger.get_product_summary(db, product_id, as_of=date)


@router.get("/{movement_id}", response_model=stock_schemas.StockMovementResponse)
def get_movement(
    movement_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    _check_role(current_user)
    movement = db.get(StockMovement, movement_id)
    if movement is None:
        raise MovementNotFound(movement_id)
    return movement


@router.post("/adjustment", response_model=stock_schemas.StockMovementResponse, status_code=201)
def create_adjustment(
    payload: stock_schemas.AdjustmentCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    _check_role(current_user)
    movement = stock_tracking.track_adjustment(db, payload, current_user)
    write_log(db, user_id=current_user.id, action="STOCK_ADJUSTMENT", resource="stock",
              status="SUCCESS", ip=client_ip(request),
              meta={"movement_id": movement.id, "product_id": payload.product_id,
                    "type": payload.movement_type, "quantity": payload.quantity})
    return movement


@router.post("/{movement_id}/reverse", response_model=stock_schemas.StockMovementResponse, status_code=201)
def reverse_movement(
    movement_id: int,
    request: Request,
    payload: Optional[stock_schemas.ReverseRequest] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    _check_role(current_user)
    reason = payload.reason if payload else None
    reversal = stock_ledger.reverse_movement(db, movement_id, current_user, reason)
    write_log(db, user_id=current_user.id, action="MOVEMENT_REVERSE", resource="stock",
              status="SUCCESS", ip=client_ip(request),
              meta={"movement_id": movement_id, "reversal_id": reversal.id})
    return reversal

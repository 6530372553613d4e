# backend/routes/operations.py
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from database import get_db
from models.users import User
from services import stock_tracking
from utils.tokenJWT import get_current_user, can_manage_stock
from utils.audit import write_log, client_ip
import schemas.operations as op_schemas

router = APIRouter(prefix="/operations", tags=["Operations"])


def _check_role(user: User):
    if not can_manage_stock(user):
        raise HTTPException(status_code=403, detail="Not authorized")


def _done(db: Session, request: Request, user: User, operation: str, movements, meta: dict):
    write_log(db, user_id=user.id, action=operation.upper(), resource="operations",
              status="SUCCESS", ip=client_ip(request),
              meta={**meta, "movement_ids": [m.id for m in movements]})
    return {"operation": operation, "movements": movements}


@router.post("/purchase-receipts", response_model=op_schemas.OperationResult, status_code=201)
def purchase_receipt(
    payload: op_schemas.PurchaseReceiptCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    _check_role(current_user)
    movements = stock_tracking.track_purchase_order(db, payload, current_user)
    return _done(db, request, current_user, "purchase_receipt", movements,
                 {"po_number": payload.po_number, "items": len(payload.items)})


@router.post("/sales", response_model=op_schemas.OperationResult, status_code=201)
def sale(
    payload: op_schemas.SaleCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    _check_role(current_user)
    movements = stock_tracking.track_sales_order(db, payload, current_user)
    return _done(db, request, current_user, "sale", movements,
                 {"order_number": payload.order_number, "items": len(payload.items)})


@router.post("/returns", response_model=op_schemas.OperationResult, status_code=201)
def stock_return(
    payload: op_schemas.ReturnCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    _check_role(current_user)
    movements = stock_tracking.track_return(db, payload, current_user)
    return _done(db, request, current_user, "return", movements,
                 {"return_type": payload.return_type, "return_number": payload.return_number})


@router.post("/transfers", response_model=op_schemas.OperationResult, status_code=201)
def transfer(
    payload: op_schemas.TransferCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    _check_role(current_user)
    movements = stock_tracking.track_transfer(db, payload, current_user)
    return _done(db, request, current_user, "transfer", movements,
                 {"product_id": payload.product_id, "from": payload.from_location, "to": payload.to_location})


@router.post("/write-offs", response_model=op_schemas.OperationResult, status_code=201)
def write_off(
    payload: op_schemas.WriteOffCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    _check_role(current_user)
    movement = stock_tracking.track_write_off(db, payload, current_user)
    return _done(db, request, current_user, "write_off", [movement],
                 {"product_id": payload.product_id, "type": payload.write_off_type})


@router.post("/transformations", response_model=op_schemas.OperationResult, status_code=201)
def transformation(
    payload: op_schemas.TransformationCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    _check_role(current_user)
    movements = stock_tracking.transform_product(db, payload, current_user)
    return _done(db, request, current_user, "transformation", movements,
                 {"base_product_id": payload.base_product_id, "target_product_id": payload.target_product_id})

# backend/routes/products.py
from typing import Optional, List
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from database import get_db
from utils.tokenJWT import get_current_user, can_manage_stock
from utils.audit import write_log, client_ip
from utils.errors import ProductNotFound
from models.users import User
from models.product import Product
from models.inventory import Inventory
from services.catalog import create_product
import schemas.product as product_schemas

router = APIRouter(tags=["Products"])


# =========================
# PRODUCT LIST
# =========================
@router.get("/products", response_model=product_schemas.ProductListPage)
def list_products(
    name: Optional[str] = Query(None),
    code: Optional[str] = Query(None),
    supplier: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    location: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=1000),
    sort_by: str = Query("id"),
    order: str = Query("asc", pattern="^(asc|desc)$"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    if not can_manage_stock(current_user):
        raise HTTPException(status_code=403, detail="Not authorized to view products")

    query = db.query(Product).outerjoin(Inventory, Inventory.product_id == Product.id)

    if name: query = query.filter(Product.name.ilike(f"%{name}%"))
    if code: query = query.filter(Product.code.ilike(f"%{code}%"))
    if supplier: query = query.filter(Product.supplier.ilike(f"%{supplier}%"))
    if category: query = query.filter(Product.category.ilike(f"%{category}%"))
    if location: query = query.filter(Product.location.ilike(f"%{location}%"))

    allowed = {
        "id": Product.id, "code": Product.code, "name": Product.name,
        "sell_price_net": Product.sell_price_net, "current_stock": Inventory.current_stock,
    }
    sort_col = allowed.get(sort_by.lower(), Product.id)
    query = query.order_by(sort_col.asc() if order == "asc" else sort_col.desc())

    total = query.count()
    items: List[Product] = query.offset((page - 1) * page_size).limit(page_size).all()

    return {"items": items, "total": total, "page": page, "page_size": page_size}


# =========================
# SINGLE PRODUCT
# =========================
@router.get("/products/{product_id}", response_model=product_schemas.ProductOut)
def get_product(
    product_id: int,
    db: Session = Depends(get_db), current_user: User = Depends(get_current_user),
):
    if not can_manage_stock(current_user):
        raise HTTPException(status_code=403, detail="Not authorized")

    product = db.get(Product, product_id)
    if not product:
        raise ProductNotFound(product_id)
    return product


# =========================
# ADD PRODUCT
# =========================
@router.post("/products", response_model=product_schemas.ProductOut, status_code=201)
def add_product(
    payload: product_schemas.ProductCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    if not can_manage_stock(current_user):
        raise HTTPException(status_code=403, detail="Not authorized to add products")

    new_product = create_product(db, payload, current_user)

    write_log(
        db, user_id=current_user.id, action="PRODUCT_CREATE", resource="products",
        status="SUCCESS", ip=client_ip(request),
        meta={"id": new_product.id, "code": new_product.code, "initial_stock": payload.initial_stock}
    )
    return new_product

# backend/services/catalog.py
import logging

from sqlalchemy.orm import Session

from database import run_in_transaction, utcnow
from models.inventory import Inventory
from models.product import Product
from models.stock import MovementType, ReferenceType
from models.users import User
from schemas.product import ProductCreate
from schemas.stock import MovementCreate
from services.stock_ledger import record_movement
from utils.errors import UniquenessConflict

logger = logging.getLogger(__name__)


def norm_code(code: str) -> str:
    return code.strip().upper()


def create_product(db: Session, payload: ProductCreate, user: User) -> Product:
    """Create a product with its inventory record and book the opening quantity."""
    code = norm_code(payload.code)

    def work(db: Session) -> Product:
        if db.query(Product.id).filter(Product.code == code).first():
            raise UniquenessConflict("Product code already exists", code=code)

        product = Product(
            name=payload.name,
            code=code,
            description=payload.description,
            category=payload.category,
            supplier=payload.supplier,
            buy_price=payload.buy_price,
            sell_price_net=payload.sell_price_net,
            location=payload.location,
        )
        db.add(product)
        db.flush()
        db.add(Inventory(
            product_id=product.id,
            current_stock=0,
            reserved_stock=0,
            available_stock=0,
            reorder_point=payload.reorder_point,
            reorder_quantity=payload.reorder_quantity,
            stock_value=0,
            version=0,
            last_updated=utcnow(),
        ))
        db.flush()

        if payload.initial_stock > 0:
            record_movement(db, MovementCreate(
                product_id=product.id,
                movement_type=MovementType.INITIAL_STOCK,
                quantity=payload.initial_stock,
                reference_type=ReferenceType.SYSTEM_GENERATED,
                reason="Opening stock",
                location=payload.location or "main_warehouse",
            ), user, commit=False)
        return product

    product = run_in_transaction(db, work)
    logger.info("Product %s created with opening stock %s", product.code, payload.initial_stock)
    return product

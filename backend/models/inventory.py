# backend/models/inventory.py
from sqlalchemy import (
    Column, Integer, String, Float, ForeignKey, DateTime, CheckConstraint, func
)
from sqlalchemy.orm import relationship
from database import Base, utcnow

# Per-product inventory record, the single owner of "current stock".
# reserved_stock / available_stock are projections recomputed from the live
# reservation set and rewritten together with current_stock.
class Inventory(Base):
    __tablename__ = "inventories"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), unique=True, nullable=False, index=True)

    current_stock = Column(Float, CheckConstraint("current_stock >= 0"), nullable=False, default=0)
    reserved_stock = Column(Float, CheckConstraint("reserved_stock >= 0"), nullable=False, default=0)
    available_stock = Column(Float, CheckConstraint("available_stock >= 0"), nullable=False, default=0)

    reorder_point = Column(Float, CheckConstraint("reorder_point >= 0"), nullable=False, default=10)
    reorder_quantity = Column(Float, CheckConstraint("reorder_quantity >= 1"), nullable=False, default=50)

    # Valuation balance: sum of in-movement values minus out-movement values
    stock_value = Column(Float, nullable=False, default=0)

    # Bumped by every write; reservation writes are conditional on it
    version = Column(Integer, nullable=False, default=0)

    last_updated = Column(DateTime, nullable=False, default=utcnow)
    created_at = Column(DateTime, server_default=func.now())

    product = relationship("Product", back_populates="inventory")
    reservations = relationship(
        "StockReservation",
        back_populates="inventory",
        cascade="all, delete-orphan",
        order_by="StockReservation.created_at",
    )
    # Movement history straight from the ledger (no embedded copy)
    movements = relationship(
        "StockMovement",
        primaryjoin="Inventory.product_id == foreign(StockMovement.product_id)",
        order_by="StockMovement.id.desc()",
        viewonly=True,
    )

    @property
    def status(self) -> str:
        return "out_of_stock" if (self.current_stock or 0) <= 0 else "active"

    @property
    def is_low_stock(self) -> bool:
        return (self.current_stock or 0) <= (self.reorder_point or 0)


# Time-boxed hold against available stock (cart / checkout flows)
class StockReservation(Base):
    __tablename__ = "stock_reservations"

    id = Column(Integer, primary_key=True, index=True)
    inventory_id = Column(Integer, ForeignKey("inventories.id"), nullable=False, index=True)
    reservation_id = Column(String(64), unique=True, nullable=False, index=True)

    quantity = Column(Float, CheckConstraint("quantity > 0"), nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)

    reserved_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    # cart, sales_order, manual, system
    reference_type = Column(String(32), nullable=False, default="cart")
    reference_id = Column(String(64), nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)

    inventory = relationship("Inventory", back_populates="reservations")

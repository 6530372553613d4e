# backend/models/stock.py
import enum
from sqlalchemy import (
    Column, Integer, String, Float, Boolean, ForeignKey, DateTime, Enum, CheckConstraint, Index
)
from sqlalchemy.orm import relationship
from database import Base, utcnow


# Closed set of movement classifications
class MovementType(str, enum.Enum):
    PURCHASE = "purchase"
    SALE = "sale"
    RETURN_IN = "return_in"
    RETURN_OUT = "return_out"
    ADJUSTMENT_IN = "adjustment_in"
    ADJUSTMENT_OUT = "adjustment_out"
    TRANSFER_IN = "transfer_in"
    TRANSFER_OUT = "transfer_out"
    DAMAGE = "damage"
    EXPIRY = "expiry"
    THEFT = "theft"
    PRODUCTION = "production"
    CONSUMPTION = "consumption"
    INITIAL_STOCK = "initial_stock"


# The one in/out partition. Every place that needs a stock direction uses it.
STOCK_IN_TYPES = frozenset({
    MovementType.PURCHASE,
    MovementType.RETURN_IN,
    MovementType.ADJUSTMENT_IN,
    MovementType.TRANSFER_IN,
    MovementType.PRODUCTION,
    MovementType.INITIAL_STOCK,
})
STOCK_OUT_TYPES = frozenset({
    MovementType.SALE,
    MovementType.RETURN_OUT,
    MovementType.ADJUSTMENT_OUT,
    MovementType.TRANSFER_OUT,
    MovementType.DAMAGE,
    MovementType.EXPIRY,
    MovementType.THEFT,
    MovementType.CONSUMPTION,
})


def stock_direction(movement_type) -> int:
    """+1 for stock-increasing types, -1 for stock-decreasing ones."""
    movement_type = MovementType(movement_type)
    return 1 if movement_type in STOCK_IN_TYPES else -1


class MovementStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REVERSED = "reversed"


class ReferenceType(str, enum.Enum):
    PURCHASE_ORDER = "purchase_order"
    SALES_ORDER = "sales_order"
    RETURN = "return"
    ADJUSTMENT = "adjustment"
    TRANSFER = "transfer"
    WRITE_OFF = "write_off"
    PRODUCTION = "production"
    MANUAL_ENTRY = "manual_entry"
    SYSTEM_GENERATED = "system_generated"


MOVEMENT_LABELS = {
    MovementType.PURCHASE: "Purchase",
    MovementType.SALE: "Sale",
    MovementType.RETURN_IN: "Customer Return",
    MovementType.RETURN_OUT: "Supplier Return",
    MovementType.ADJUSTMENT_IN: "Stock Adjustment (+)",
    MovementType.ADJUSTMENT_OUT: "Stock Adjustment (-)",
    MovementType.TRANSFER_IN: "Transfer In",
    MovementType.TRANSFER_OUT: "Transfer Out",
    MovementType.DAMAGE: "Damage Write-off",
    MovementType.EXPIRY: "Expiry Write-off",
    MovementType.THEFT: "Theft/Loss",
    MovementType.PRODUCTION: "Production",
    MovementType.CONSUMPTION: "Consumption",
    MovementType.INITIAL_STOCK: "Initial Stock",
}


# Immutable ledger entry. Only the reversal bookkeeping columns of an
# original entry are ever written after insert.
class StockMovement(Base):
    __tablename__ = "stock_movements"

    id = Column(Integer, primary_key=True, index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    # Product snapshot at write time
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    product_name = Column(String, nullable=False)
    product_sku = Column(String, nullable=True)

    movement_type = Column(Enum(MovementType, values_callable=lambda e: [m.value for m in e],
                                native_enum=False, length=32), nullable=False, index=True)

    quantity = Column(Float, CheckConstraint("quantity >= 0"), nullable=False)
    unit_cost = Column(Float, CheckConstraint("unit_cost >= 0"), nullable=False, default=0)
    total_value = Column(Float, CheckConstraint("total_value >= 0"), nullable=False, default=0)

    previous_stock = Column(Float, CheckConstraint("previous_stock >= 0"), nullable=False)
    new_stock = Column(Float, CheckConstraint("new_stock >= 0"), nullable=False)
    # False when the caller adjusted stock itself and only wanted an audit row
    inventory_applied = Column(Boolean, nullable=False, default=True)

    # Provenance
    reference_type = Column(String(32), nullable=False)
    reference_id = Column(String(64), nullable=True, index=True)
    reference_number = Column(String(64), nullable=True, index=True)

    location = Column(String, nullable=False, default="main_warehouse")
    from_location = Column(String, nullable=True)
    to_location = Column(String, nullable=True)

    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    user_name = Column(String, nullable=False)

    reason = Column(String(500), nullable=True)
    notes = Column(String(1000), nullable=True)
    batch_number = Column(String, nullable=True)
    expiry_date = Column(DateTime, nullable=True)
    supplier = Column(String, nullable=True)
    customer = Column(String, nullable=True)

    status = Column(Enum(MovementStatus, values_callable=lambda e: [m.value for m in e],
                         native_enum=False, length=16),
                    nullable=False, default=MovementStatus.COMPLETED, index=True)

    # Reversal linkage
    is_reversal = Column(Boolean, nullable=False, default=False)
    original_movement_id = Column(Integer, ForeignKey("stock_movements.id"), nullable=True)
    reversal_movement_id = Column(Integer, ForeignKey("stock_movements.id"), nullable=True)
    reversed_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    reversed_at = Column(DateTime, nullable=True)

    system_generated = Column(Boolean, nullable=False, default=True)

    product = relationship("Product")
    user = relationship("User", foreign_keys=[user_id])

    __table_args__ = (
        Index("ix_stock_movements_product_created", "product_id", "created_at"),
        Index("ix_stock_movements_reference", "reference_type", "reference_id"),
    )

    @property
    def is_stock_in(self) -> bool:
        return stock_direction(self.movement_type) > 0

    @property
    def is_stock_out(self) -> bool:
        return stock_direction(self.movement_type) < 0

    @property
    def formatted_movement_type(self) -> str:
        return MOVEMENT_LABELS.get(MovementType(self.movement_type), str(self.movement_type))

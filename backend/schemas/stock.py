# backend/schemas/stock.py
from pydantic import BaseModel, Field, ConfigDict
from datetime import datetime
from typing import List, Optional, Literal

from models.stock import MovementType, MovementStatus, ReferenceType

# Input for one ledger entry
class MovementCreate(BaseModel):
    product_id: int
    movement_type: MovementType
    quantity: float = Field(ge=0)
    # Defaults to the product's cost basis
    unit_cost: Optional[float] = Field(default=None, ge=0)

    reference_type: ReferenceType = ReferenceType.MANUAL_ENTRY
    reference_id: Optional[str] = None
    reference_number: Optional[str] = None

    location: str = "main_warehouse"
    from_location: Optional[str] = None
    to_location: Optional[str] = None
    reason: Optional[str] = Field(default=None, max_length=500)
    notes: Optional[str] = Field(default=None, max_length=1000)
    batch_number: Optional[str] = None
    expiry_date: Optional[datetime] = None
    supplier: Optional[str] = None
    customer: Optional[str] = None

    # Audit-only entry: stock was already adjusted by the caller
    skip_inventory_update: bool = False
    previous_stock: Optional[float] = Field(default=None, ge=0)
    new_stock: Optional[float] = Field(default=None, ge=0)


# Manual adjustment request (POST /stock-movements/adjustment)
class AdjustmentCreate(BaseModel):
    product_id: int
    movement_type: Literal["adjustment_in", "adjustment_out"]
    quantity: float = Field(gt=0)
    unit_cost: Optional[float] = Field(default=None, ge=0)
    reason: Optional[str] = Field(default=None, max_length=500)
    notes: Optional[str] = Field(default=None, max_length=1000)
    location: str = "main_warehouse"
    reference_number: Optional[str] = None


class ReverseRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class StockMovementResponse(BaseModel):
    id: int
    created_at: datetime
    product_id: int
    product_name: str
    product_sku: Optional[str] = None
    movement_type: MovementType
    formatted_movement_type: str
    quantity: float
    unit_cost: float
    total_value: float
    previous_stock: float
    new_stock: float
    inventory_applied: bool
    reference_type: str
    reference_id: Optional[str] = None
    reference_number: Optional[str] = None
    location: str
    from_location: Optional[str] = None
    to_location: Optional[str] = None
    user_id: int
    user_name: str
    reason: Optional[str] = None
    notes: Optional[str] = None
    supplier: Optional[str] = None
    customer: Optional[str] = None
    status: MovementStatus
    is_reversal: bool
    original_movement_id: Optional[int] = None
    reversal_movement_id: Optional[int] = None
    reversed_by_id: Optional[int] = None
    reversed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# Paginated response for stock movement history
class StockMovementPage(BaseModel):
    items: List[StockMovementResponse]
    total: int
    page: int
    page_size: int


class ProductStockSummary(BaseModel):
    product_id: int
    as_of: datetime
    total_in: float
    total_out: float
    total_value_in: float
    total_value_out: float
    net_quantity: float

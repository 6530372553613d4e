# backend/schemas/inventory.py
from pydantic import BaseModel, Field, ConfigDict
from datetime import datetime
from typing import List, Optional


class ReservationCreate(BaseModel):
    quantity: float = Field(gt=0)
    expires_in_minutes: Optional[int] = Field(default=None, gt=0)
    reference_type: str = "cart"
    reference_id: Optional[str] = None
    # Caller supplied id; generated when omitted
    reservation_id: Optional[str] = Field(default=None, max_length=64)


class ReservationExtend(BaseModel):
    additional_minutes: int = Field(gt=0)


class ReservationOut(BaseModel):
    reservation_id: str
    quantity: float
    expires_at: datetime
    reserved_by_id: Optional[int] = None
    reference_type: str
    reference_id: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class InventoryOut(BaseModel):
    product_id: int
    current_stock: float
    reserved_stock: float
    available_stock: float
    reorder_point: float
    reorder_quantity: float
    stock_value: float
    status: str
    is_low_stock: bool
    last_updated: datetime

    model_config = ConfigDict(from_attributes=True)


class ExpiredReleaseResult(BaseModel):
    inventories_processed: int
    reservations_released: int
    total_quantity_released: float

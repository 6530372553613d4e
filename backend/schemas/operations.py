# backend/schemas/operations.py
from pydantic import BaseModel, Field, model_validator
from datetime import datetime
from typing import List, Literal, Optional

from schemas.stock import StockMovementResponse


# One line of a multi-item business document
class OperationItem(BaseModel):
    product_id: int
    quantity: float = Field(gt=0)
    unit_cost: Optional[float] = Field(default=None, ge=0)


class SaleItem(OperationItem):
    # Reservation held by this checkout, consumed by the sale
    reservation_id: Optional[str] = None


class PurchaseReceiptCreate(BaseModel):
    items: List[OperationItem] = Field(min_length=1)
    reference_id: Optional[str] = None
    po_number: Optional[str] = None
    supplier: Optional[str] = None
    location: str = "main_warehouse"
    batch_number: Optional[str] = None
    expiry_date: Optional[datetime] = None


class SaleCreate(BaseModel):
    items: List[SaleItem] = Field(min_length=1)
    reference_id: Optional[str] = None
    order_number: Optional[str] = None
    customer: Optional[str] = None
    location: str = "main_warehouse"


class ReturnCreate(BaseModel):
    return_type: Literal["customer_return", "supplier_return"]
    items: List[OperationItem] = Field(min_length=1)
    reference_id: Optional[str] = None
    return_number: Optional[str] = None
    reason: Optional[str] = Field(default=None, max_length=500)
    customer: Optional[str] = None
    supplier: Optional[str] = None
    location: str = "main_warehouse"


class TransferCreate(BaseModel):
    product_id: int
    quantity: float = Field(gt=0)
    unit_cost: Optional[float] = Field(default=None, ge=0)
    from_location: str
    to_location: str
    reference_id: Optional[str] = None
    transfer_number: Optional[str] = None

    @model_validator(mode="after")
    def _distinct_locations(self):
        if self.from_location == self.to_location:
            raise ValueError("from_location and to_location must differ")
        return self


class WriteOffCreate(BaseModel):
    product_id: int
    write_off_type: Literal["damage", "expiry", "theft"]
    quantity: float = Field(gt=0)
    unit_cost: Optional[float] = Field(default=None, ge=0)
    reason: Optional[str] = Field(default=None, max_length=500)
    notes: Optional[str] = Field(default=None, max_length=1000)
    reference_number: Optional[str] = None
    location: str = "main_warehouse"


class TransformationCreate(BaseModel):
    base_product_id: int
    target_product_id: int
    quantity: float = Field(gt=0)
    # Added on top of the base product's cost for each transformed unit
    unit_transformation_cost: float = Field(default=0, ge=0)
    reference_number: Optional[str] = None
    notes: Optional[str] = Field(default=None, max_length=1000)

    @model_validator(mode="after")
    def _distinct_products(self):
        if self.base_product_id == self.target_product_id:
            raise ValueError("base and target product must differ")
        return self


class OperationResult(BaseModel):
    operation: str
    movements: List[StockMovementResponse]

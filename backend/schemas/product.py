# backend/schemas/product.py
from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List


# Base configuration for ORM compatibility
class ORMBase(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# Shared base attributes for product entities
class ProductBase(ORMBase):
    name: str = Field(min_length=1)
    code: str = Field(min_length=1)
    description: Optional[str] = None
    category: Optional[str] = None
    supplier: Optional[str] = None
    buy_price: float = Field(default=0, ge=0)
    sell_price_net: float = Field(default=0, ge=0)
    location: Optional[str] = None


# Schema for creating a new product
class ProductCreate(ProductBase):
    # Opening quantity, booked as an initial_stock movement
    initial_stock: float = Field(default=0, ge=0)
    reorder_point: float = Field(default=10, ge=0)
    reorder_quantity: float = Field(default=50, ge=1)


# Full product representation; current_stock reads through the inventory record
class ProductOut(ProductBase):
    id: int
    current_stock: float = 0


# Paginated response for product listings
class ProductListPage(ORMBase):
    items: List[ProductOut]
    total: int
    page: int
    page_size: int

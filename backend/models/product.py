# backend/models/product.py
from sqlalchemy import Column, Integer, String, Float, CheckConstraint
from sqlalchemy.orm import relationship
from database import Base

# Model Product
# Catalog entry. Supplies the name/SKU and cost basis snapshotted into
# stock movements. Stock levels are owned by the Inventory record; the
# product only reads through it.
class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False, index=True)
    # SKU
    code = Column(String, unique=True, nullable=False, index=True)

    description = Column(String)
    category = Column(String)
    supplier = Column(String)

    # Cost basis used when a movement does not carry its own unit cost
    buy_price = Column(Float, CheckConstraint("buy_price >= 0"), nullable=False, default=0)
    sell_price_net = Column(Float, CheckConstraint("sell_price_net >= 0"), nullable=False, default=0)

    location = Column(String)

    inventory = relationship("Inventory", back_populates="product", uselist=False)

    @property
    def current_stock(self) -> float:
        # Read-through projection of Inventory.current_stock
        return self.inventory.current_stock if self.inventory is not None else 0

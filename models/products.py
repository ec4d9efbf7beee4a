from core.database import Base
from sqlalchemy import (Column, Integer, String, Boolean)
from sqlalchemy.orm import relationship
from .mixins import CreatedAtMixin, UpdatedAtMixin

class Product(Base, CreatedAtMixin, UpdatedAtMixin):
    __tablename__ = "products"

    #pk
    id = Column(Integer, primary_key=True, index=True)

    #relationships
    order_items = relationship("OrderItem", back_populates="product")
    inventory_changes = relationship("InventoryChange", back_populates="product")

    name = Column(String, nullable=False)
    unit = Column(String)
    price = Column(Integer, nullable=False)  # paise
    stock = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)

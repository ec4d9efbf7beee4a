from core.database import Base
from sqlalchemy import (Column, Integer, ForeignKey, Enum)
from sqlalchemy.orm import relationship
from .mixins import CreatedAtMixin

class InventoryChange(Base, CreatedAtMixin):
    __tablename__ = "inventory_changes"

    #pk
    id = Column(Integer, primary_key=True, index=True)

    #fk
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=True)

    #relationships
    product = relationship("Product", back_populates="inventory_changes")

    change_amount = Column(Integer, nullable=False)
    reason = Column(Enum("increment", "decrement", name="reason"), nullable=False)

from core.database import Base
from sqlalchemy.orm import relationship
from sqlalchemy import (Column, Integer, String, ForeignKey, Enum, DateTime)
from core.order_state import ORDER_STATUSES, PAYMENT_STATUSES, PAYMENT_METHODS, PENDING, PAYMENT_PENDING
from .mixins import CreatedAtMixin, UpdatedAtMixin

class Order(Base, CreatedAtMixin, UpdatedAtMixin):
    __tablename__ = "orders"

    #pk
    id = Column(Integer, primary_key=True, index=True)

    #fk
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    delivery_partner_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)

    #relationships
    user = relationship("User", back_populates="orders", foreign_keys=[user_id])
    delivery_partner = relationship("User", foreign_keys=[delivery_partner_id])
    items = relationship("OrderItem", back_populates="order", order_by="OrderItem.id")

    status = Column(Enum(*ORDER_STATUSES, name="order_status"), default=PENDING, nullable=False, index=True)
    payment_status = Column(Enum(*PAYMENT_STATUSES, name="payment_status"), default=PAYMENT_PENDING, nullable=False)
    payment_method = Column(Enum(*PAYMENT_METHODS, name="payment_method"), nullable=False)

    # Money in paise
    subtotal = Column(Integer, nullable=False)
    delivery_fee = Column(Integer, nullable=False, default=0)
    total = Column(Integer, nullable=False)

    # Snapshot taken at checkout, never re-read from the user's profile
    address = Column(String, nullable=False)

    estimated_delivery_time = Column(Integer, nullable=True)  # minutes
    delivered_at = Column(DateTime, nullable=True)
    version = Column(Integer, nullable=False, default=1)

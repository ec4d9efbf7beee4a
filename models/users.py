from core.database import Base
from sqlalchemy import (Column, Integer, String, Boolean)
from sqlalchemy.orm import relationship
from .mixins import CreatedAtMixin

ROLE_CUSTOMER = "customer"
ROLE_ADMIN = "admin"
ROLE_DELIVERY = "delivery"

ROLES = (ROLE_CUSTOMER, ROLE_ADMIN, ROLE_DELIVERY)


class User(Base, CreatedAtMixin):
    __tablename__ = "users"

    #pk
    id = Column(Integer, primary_key=True, index=True)

    #relationships
    orders = relationship("Order", back_populates="user", foreign_keys="Order.user_id")
    delivery_profile = relationship("DeliveryPartner", back_populates="user", uselist=False)

    phone = Column(String, unique=True, nullable=False)
    name = Column(String)
    email = Column(String, nullable=True)
    address = Column(String, nullable=True)
    role = Column(String, default=ROLE_CUSTOMER, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

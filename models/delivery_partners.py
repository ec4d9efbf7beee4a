from core.database import Base
from sqlalchemy import (Column, Integer, String, Boolean, ForeignKey)
from sqlalchemy.orm import relationship
from .mixins import CreatedAtMixin, UpdatedAtMixin

class DeliveryPartner(Base, CreatedAtMixin, UpdatedAtMixin):
    """
    Courier profile. Keyed by the courier's user id, so a "partner id" and
    the user id of a delivery-role user are the same number.
    """
    __tablename__ = "delivery_partners"

    #pk / fk
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)

    #relationships
    user = relationship("User", back_populates="delivery_profile")

    vehicle_number = Column(String, nullable=True)
    is_available = Column(Boolean, default=True, nullable=False)
    rating = Column(Integer, default=5, nullable=False)
    total_deliveries = Column(Integer, default=0, nullable=False)

    @property
    def name(self):
        return self.user.name if self.user else None

from sqlalchemy import select
from sqlalchemy.orm import Session

from core.exceptions import InvalidState, NotFound, ValidationError
from models.delivery_partners import DeliveryPartner
from models.users import User, ROLE_DELIVERY
from utils.logger import get_logger

logger = get_logger(__name__)


class UserDirectory:
    """
    Identity lookups used by the order lifecycle: who is this user, what
    role do they have, and which couriers exist.
    """

    @staticmethod
    def get_active_user_by_id(db: Session, user_id: int) -> User | None:
        model = db.query(User).filter(User.id == user_id, User.is_active == True).one_or_none()

        return model

    @staticmethod
    def get_delivery_partner(db: Session, partner_id: int) -> DeliveryPartner | None:
        """
        Active delivery-role user with a courier profile, or None.
        """
        return db.execute(
            select(DeliveryPartner)
            .join(User, User.id == DeliveryPartner.user_id)
            .where(
                DeliveryPartner.user_id == partner_id,
                User.role == ROLE_DELIVERY,
                User.is_active == True
            )
        ).scalar_one_or_none()

    @staticmethod
    def require_delivery_partner(db: Session, partner_id: int) -> DeliveryPartner:
        partner = UserDirectory.get_delivery_partner(db, partner_id)
        if partner is None:
            raise NotFound("Delivery partner not found")
        return partner

    @staticmethod
    def list_delivery_partners(db: Session, available_only: bool = False) -> list[DeliveryPartner]:
        query = (
            select(DeliveryPartner)
            .join(User, User.id == DeliveryPartner.user_id)
            .where(User.role == ROLE_DELIVERY, User.is_active == True)
            .order_by(DeliveryPartner.user_id)
        )
        if available_only:
            query = query.where(DeliveryPartner.is_available == True)
        return list(db.scalars(query).all())

    @staticmethod
    def register_delivery_partner(db: Session, name: str, phone: str,
                                  vehicle_number: str | None = None,
                                  email: str | None = None) -> DeliveryPartner:
        """
        Creates a delivery-role user together with its courier profile.

        Phone numbers are unique across all users; the caller passes them
        already normalized to E.164.
        """
        existing = db.query(User).filter(User.phone == phone).first()
        if existing:
            logger.warning(
                "Delivery partner registration with existing phone",
                extra={"phone": phone[-4:]}
            )
            raise ValidationError("Phone number already registered")

        user = User(name=name, phone=phone, email=email, role=ROLE_DELIVERY, is_active=True)
        partner = DeliveryPartner(user=user, vehicle_number=vehicle_number, is_available=True)

        db.add(user)
        db.add(partner)
        db.commit()
        db.refresh(partner)

        logger.info(
            "Delivery partner registered",
            extra={"delivery_partner_id": partner.user_id}
        )
        return partner

    @staticmethod
    def set_availability(db: Session, partner: DeliveryPartner, is_available: bool,
                         has_active_delivery: bool) -> DeliveryPartner:
        if not is_available and has_active_delivery:
            raise InvalidState(
                "Cannot go offline with active deliveries. Please complete your deliveries first."
            )

        partner.is_available = is_available
        db.commit()
        db.refresh(partner)
        return partner

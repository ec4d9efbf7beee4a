from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel
import phonenumbers


OrderStatus = Literal["pending", "preparing", "packed", "out_for_delivery", "delivered", "cancelled"]
PaymentStatus = Literal["pending", "paid", "failed"]
PaymentMethod = Literal["cash", "upi", "card", "wallet"]


class CamelModel(BaseModel):
    """Wire format is camelCase, Python attributes stay snake_case."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# -------------------- requests --------------------

class OrderLineRequest(CamelModel):
    product_id: int
    quantity: int = Field(gt=0)
    # Accepted for compatibility with older clients; the catalog price is what gets charged
    price: Optional[int] = None


class CreateOrderRequest(CamelModel):
    user_id: int
    items: list[OrderLineRequest]
    address: Optional[str] = None
    payment_method: PaymentMethod

    @field_validator('items')
    @classmethod
    def validate_items(cls, value):
        if not value:
            raise ValueError('Order must contain at least one item')
        return value


class UpdateStatusRequest(CamelModel):
    status: OrderStatus


class AssignPartnerRequest(CamelModel):
    delivery_partner_id: int


class UpdatePaymentRequest(CamelModel):
    payment_status: PaymentStatus


class LocationRequest(CamelModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
    order_id: Optional[int] = None


class AvailabilityRequest(CamelModel):
    is_available: bool


class RegisterPartnerRequest(CamelModel):
    name: str
    phone: str
    vehicle_number: Optional[str] = None
    email: Optional[EmailStr] = None

    @field_validator('name')
    @classmethod
    def validate_name(cls, value):
        if not value or not value.strip():
            raise ValueError('Name cannot be empty')
        return value.strip()

    @field_validator('phone')
    @classmethod
    def validate_phone(cls, value):
        """
        Validates phone number format using Google's phonenumbers library.
        Accepts international format: +919812345678
        """
        try:
            parsed = phonenumbers.parse(value, None)
            if not phonenumbers.is_valid_number(parsed):
                raise ValueError('Invalid phone number')

            return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164)

        except phonenumbers.NumberParseException:
            raise ValueError('Phone number must include country code (e.g.: +91xxxxxxxxxx)')


# -------------------- responses --------------------

class OrderItemResponse(CamelModel):
    id: int
    order_id: int
    product_id: int
    quantity: int
    price: int
    subtotal: int


class OrderResponse(CamelModel):
    id: int
    user_id: int
    delivery_partner_id: Optional[int] = None
    status: str
    payment_status: str
    payment_method: str
    subtotal: int
    delivery_fee: int
    total: int
    address: str
    estimated_delivery_time: Optional[int] = None
    version: int
    created_at: datetime
    updated_at: datetime
    delivered_at: Optional[datetime] = None


class OrderWithItemsResponse(CamelModel):
    order: OrderResponse
    items: list[OrderItemResponse]


class OrderListResponse(CamelModel):
    orders: list[OrderResponse]
    total: int
    page: int
    limit: int


class DeliveryPartnerResponse(CamelModel):
    user_id: int = Field(serialization_alias="id")
    name: Optional[str] = None
    vehicle_number: Optional[str] = None
    is_available: bool
    rating: int
    total_deliveries: int


class LocationResponse(CamelModel):
    delivery_partner_id: int
    lat: float
    lng: float
    captured_at: datetime

from typing import Optional

from fastapi import APIRouter, Request, status

from middleware.rate_limiter import limiter
from schemas.order_schemas import (
    AvailabilityRequest,
    DeliveryPartnerResponse,
    LocationRequest,
    LocationResponse,
    OrderResponse,
    OrderStatus,
    RegisterPartnerRequest,
)
from utils.deps import actor_dependency, order_service_dependency
from utils.logger import get_logger

logger = get_logger(__name__)


router = APIRouter(
    prefix="/delivery-partners",
    tags=["delivery-partners"]
)


@router.get("", response_model=list[DeliveryPartnerResponse], response_model_by_alias=True)
async def list_partners(request: Request, actor: actor_dependency, service: order_service_dependency,
                        available: bool = False):
    return service.list_partners(actor, available_only=available)


@router.post("", status_code=status.HTTP_201_CREATED, response_model=DeliveryPartnerResponse,
             response_model_by_alias=True)
@limiter.limit("10/minute")
async def register_partner(request: Request, body: RegisterPartnerRequest, actor: actor_dependency,
                           service: order_service_dependency):
    """
    Register a courier: creates the delivery-role user and its profile.
    """
    return service.register_partner(
        actor,
        name=body.name,
        phone=body.phone,
        vehicle_number=body.vehicle_number,
        email=body.email,
    )


@router.get("/{partner_id}", response_model=DeliveryPartnerResponse, response_model_by_alias=True)
async def get_partner(request: Request, partner_id: int, actor: actor_dependency,
                      service: order_service_dependency):
    return service.get_partner(actor, partner_id)


@router.put("/{partner_id}/location", response_model=LocationResponse, response_model_by_alias=True)
@limiter.limit("120/minute")
async def report_location(request: Request, partner_id: int, body: LocationRequest,
                          actor: actor_dependency, service: order_service_dependency):
    """
    HTTP fallback for couriers without an open socket. Fans out exactly
    like a LOCATION_UPDATE frame.
    """
    location = service.report_location(actor, partner_id, body.lat, body.lng, order_id=body.order_id)
    return LocationResponse(
        delivery_partner_id=location.delivery_partner_id,
        lat=location.lat,
        lng=location.lng,
        captured_at=location.captured_at,
    )


@router.patch("/{partner_id}/availability", response_model=DeliveryPartnerResponse,
              response_model_by_alias=True)
async def set_availability(request: Request, partner_id: int, body: AvailabilityRequest,
                           actor: actor_dependency, service: order_service_dependency):
    return service.set_availability(actor, partner_id, body.is_available)


@router.get("/{partner_id}/orders", response_model=list[OrderResponse], response_model_by_alias=True)
async def partner_orders(request: Request, partner_id: int, actor: actor_dependency,
                         service: order_service_dependency, status: Optional[OrderStatus] = None):
    return service.partner_orders(actor, partner_id, status=status)


@router.get("/{partner_id}/earnings")
async def partner_earnings(request: Request, partner_id: int, actor: actor_dependency,
                           service: order_service_dependency):
    """Courier's cut of delivery fees, in paise."""
    return service.partner_earnings(actor, partner_id)

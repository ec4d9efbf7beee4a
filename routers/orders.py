from typing import Optional

from fastapi import APIRouter, Query, Request, status

from middleware.rate_limiter import limiter
from schemas.order_schemas import (
    AssignPartnerRequest,
    CreateOrderRequest,
    OrderListResponse,
    OrderResponse,
    OrderStatus,
    OrderWithItemsResponse,
    UpdatePaymentRequest,
    UpdateStatusRequest,
)
from services.order_service import LineRequest
from utils.deps import actor_dependency, order_service_dependency
from utils.logger import get_logger

logger = get_logger(__name__)


router = APIRouter(
    prefix="/orders",
    tags=["orders"]
)


def _with_items(order) -> OrderWithItemsResponse:
    return OrderWithItemsResponse.model_validate({"order": order, "items": order.items})


@router.post("", status_code=status.HTTP_201_CREATED, response_model=OrderWithItemsResponse,
             response_model_by_alias=True)
@limiter.limit("30/minute")
async def create_order(request: Request, body: CreateOrderRequest, actor: actor_dependency,
                       service: order_service_dependency):
    """
    Place an order. Prices come from the catalog, stock is reserved in the
    same transaction as the order rows.
    """
    order = service.create_order(
        actor,
        user_id=body.user_id,
        items=[LineRequest(line.product_id, line.quantity) for line in body.items],
        address=body.address,
        payment_method=body.payment_method,
    )
    return _with_items(order)


@router.get("", response_model=OrderListResponse, response_model_by_alias=True)
async def list_orders(request: Request, actor: actor_dependency, service: order_service_dependency,
                      status: Optional[OrderStatus] = None,
                      user_id: Optional[int] = Query(default=None, alias="userId"),
                      delivery_partner_id: Optional[int] = Query(default=None, alias="deliveryPartnerId"),
                      limit: int = Query(default=20, ge=1, le=100),
                      page: int = Query(default=1, ge=1)):
    orders, total = service.list_orders(
        actor,
        status=status,
        user_id=user_id,
        delivery_partner_id=delivery_partner_id,
        limit=limit,
        page=page,
    )
    return OrderListResponse(
        orders=[OrderResponse.model_validate(order) for order in orders],
        total=total,
        page=page,
        limit=limit,
    )


@router.get("/dashboard")
async def dashboard(request: Request, actor: actor_dependency, service: order_service_dependency):
    """Admin overview: order counts per status, revenue, couriers online, live connections."""
    return service.dashboard(actor)


@router.get("/{order_id}", response_model=OrderWithItemsResponse, response_model_by_alias=True)
async def get_order(request: Request, order_id: int, actor: actor_dependency,
                    service: order_service_dependency):
    return _with_items(service.get_order(order_id, actor))


@router.patch("/{order_id}/status", response_model=OrderResponse, response_model_by_alias=True)
@limiter.limit("60/minute")
async def update_status(request: Request, order_id: int, body: UpdateStatusRequest,
                        actor: actor_dependency, service: order_service_dependency):
    return service.request_transition(order_id, actor, body.status)


@router.patch("/{order_id}/assign", response_model=OrderResponse, response_model_by_alias=True)
async def assign_partner(request: Request, order_id: int, body: AssignPartnerRequest,
                         actor: actor_dependency, service: order_service_dependency):
    return service.assign_delivery_partner(order_id, body.delivery_partner_id, actor)


@router.post("/{order_id}/accept", response_model=OrderResponse, response_model_by_alias=True)
async def accept_order(request: Request, order_id: int, actor: actor_dependency,
                       service: order_service_dependency):
    """A delivery partner claims an unassigned order."""
    return service.accept_order(order_id, actor)


@router.patch("/{order_id}/payment", response_model=OrderResponse, response_model_by_alias=True)
async def update_payment(request: Request, order_id: int, body: UpdatePaymentRequest,
                         actor: actor_dependency, service: order_service_dependency):
    return service.update_payment_status(order_id, actor, body.payment_status)

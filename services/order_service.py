"""
Order lifecycle engine.

Owns every change to an order after checkout: status transitions, courier
assignment, payment status. Each change is validated and applied inside
the store's per-order critical section and the resulting state is handed
to the broadcast dispatcher before the lock is released, so subscribers
see updates for one order in commit order.

Business-rule failures are raised as core.exceptions errors; the API layer
maps them to status codes and the gateway decides what to tell the socket.
"""
from dataclasses import dataclass
from datetime import timedelta
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from core.config import settings
from core.exceptions import (
    Forbidden,
    InsufficientStock,
    InvalidState,
    InvalidTransition,
    NotFound,
    OrderServiceError,
    ProductUnavailable,
    ValidationError,
)
from core.metrics import (
    location_reports_total,
    order_transitions_rejected_total,
    order_transitions_total,
    orders_created_total,
)
from core.order_state import (
    ASSIGNABLE_STATUSES,
    CANCELLED,
    DELIVERED,
    ORDER_STATUSES,
    OUT_FOR_DELIVERY,
    PAYMENT_METHODS,
    PAYMENT_PENDING,
    PAYMENT_STATUSES,
    PENDING,
    PREPARING,
    VALID_PAYMENT_TRANSITIONS,
    is_valid_transition,
)
from models.mixins import utcnow
from models.order_items import OrderItem
from models.orders import Order
from models.users import ROLE_ADMIN, ROLE_CUSTOMER, ROLE_DELIVERY
from services import authorization as guard
from services.authorization import Actor
from services.catalog_service import CatalogService
from services.dispatcher import BroadcastDispatcher, new_order_message
from services.locations import Location, LocationStore
from services.order_store import OrderStore, SqlOrderStore
from services.user_directory import UserDirectory
from utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class LineRequest:
    product_id: int
    quantity: int


class OrderService:

    def __init__(self, db: Session, dispatcher: BroadcastDispatcher, locations: LocationStore,
                 store: Optional[OrderStore] = None):
        self.db = db
        self.dispatcher = dispatcher
        self.locations = locations
        self.store = store or SqlOrderStore(db)

    # -------------------- checkout --------------------

    def create_order(self, actor: Actor, user_id: int, items: Iterable[LineRequest],
                     address: Optional[str], payment_method: str) -> Order:
        """
        Places an order for user_id.

        Flow:
        1. Check the actor may order for this user
        2. Validate every line against the catalog (exists, active, in stock)
        3. Snapshot unit prices, compute totals in paise
        4. Insert order + items and reserve stock in one transaction
        5. Tell admin channels about the new order
        """
        if not actor.is_authenticated:
            raise Forbidden("Not authenticated")
        if actor.user_id != user_id and not actor.is_admin:
            raise Forbidden("Cannot place orders for another user")

        user = UserDirectory.get_active_user_by_id(self.db, user_id)
        if user is None:
            raise NotFound("User not found")

        if payment_method not in PAYMENT_METHODS:
            raise ValidationError(f"Unsupported payment method '{payment_method}'")

        lines = self._merge_lines(items)

        delivery_address = (address or "").strip() or (user.address or "").strip()
        if not delivery_address:
            raise ValidationError("Delivery address is required")

        priced: list[tuple[int, str, int, int]] = []
        for line in lines:
            product = CatalogService.get_product(self.db, line.product_id)
            if product is None or not product.is_active:
                raise ProductUnavailable(f"Product {line.product_id} is currently unavailable")
            if product.stock < line.quantity:
                raise InsufficientStock(f"Insufficient stock for {product.name}")
            priced.append((product.id, product.name, product.price, line.quantity))

        subtotal = sum(price * quantity for _, _, price, quantity in priced)
        delivery_fee = settings.DELIVERY_FEE
        if settings.FREE_DELIVERY_THRESHOLD and subtotal >= settings.FREE_DELIVERY_THRESHOLD:
            delivery_fee = 0

        with self.store.atomic():
            order = Order(
                user_id=user_id,
                status=PENDING,
                payment_status=PAYMENT_PENDING,
                payment_method=payment_method,
                subtotal=subtotal,
                delivery_fee=delivery_fee,
                total=subtotal + delivery_fee,
                address=delivery_address,
                version=1,
            )
            order_items = [
                OrderItem(product_id=product_id, price=price, quantity=quantity, subtotal=price * quantity)
                for product_id, _, price, quantity in priced
            ]
            self.store.add(order, order_items)

            for product_id, name, _, quantity in priced:
                if not CatalogService.reserve_stock(self.db, product_id, quantity, order.id):
                    # Someone else took the last units after validation
                    raise InsufficientStock(f"Insufficient stock for {name}")

        self.db.refresh(order)
        orders_created_total.inc()

        logger.info(
            "Order created",
            extra={
                "order_id": order.id,
                "user_id": user_id,
                "total": order.total,
                "item_count": len(order_items),
            }
        )

        self.dispatcher.broadcast_to_role(ROLE_ADMIN, new_order_message(order))
        return order

    @staticmethod
    def _merge_lines(items: Iterable[LineRequest]) -> list[LineRequest]:
        merged: dict[int, int] = {}
        for line in items:
            if line.quantity <= 0:
                raise ValidationError("Quantity must be a positive integer")
            merged[line.product_id] = merged.get(line.product_id, 0) + line.quantity

        if not merged:
            raise ValidationError("Order must contain at least one item")

        return [LineRequest(product_id, quantity) for product_id, quantity in merged.items()]

    # -------------------- lifecycle --------------------

    def request_transition(self, order_id: int, actor: Actor, target_status: str) -> Order:
        if target_status not in ORDER_STATUSES:
            raise ValidationError(f"Unknown order status '{target_status}'")

        transition = {}

        def mutate(order: Order) -> None:
            if not guard.can_view(actor.role, actor.user_id, order):
                raise Forbidden("Not allowed to access this order")

            current = order.status
            if not is_valid_transition(current, target_status):
                raise InvalidTransition(current, target_status)

            if not guard.can_transition(actor.role, actor.user_id, order, target_status):
                raise Forbidden(f"Role '{actor.role}' may not move an order from '{current}' to '{target_status}'")

            transition["from"] = current
            order.status = target_status
            self._apply_side_effects(order, target_status)

        def after_commit(order: Order) -> None:
            self.dispatcher.broadcast_order_update(order, location=self._partner_location(order))

        try:
            order = self.store.update(order_id, mutate, after_commit)
        except OrderServiceError as exc:
            order_transitions_rejected_total.labels(reason=exc.code).inc()
            logger.warning(
                f"Transition rejected: {exc.detail}",
                extra={
                    "order_id": order_id,
                    "actor_id": actor.user_id,
                    "actor_role": actor.role,
                    "target_status": target_status,
                    "reason": exc.code,
                }
            )
            raise

        order_transitions_total.labels(from_status=transition["from"], to_status=target_status).inc()
        logger.info(
            "Order status changed",
            extra={
                "order_id": order.id,
                "from_status": transition["from"],
                "to_status": target_status,
                "actor_id": actor.user_id,
                "actor_role": actor.role,
                "version": order.version,
            }
        )
        return order

    def _apply_side_effects(self, order: Order, target_status: str) -> None:
        if target_status == PREPARING and order.estimated_delivery_time is None:
            order.estimated_delivery_time = settings.DEFAULT_ETA_MINUTES

        elif target_status == DELIVERED:
            order.delivered_at = utcnow()
            if order.delivery_partner_id is not None:
                profile = UserDirectory.get_delivery_partner(self.db, order.delivery_partner_id)
                if profile is not None:
                    profile.total_deliveries += 1

        elif target_status == CANCELLED:
            for item in order.items:
                CatalogService.restock(self.db, item.product_id, item.quantity, order.id)

    def assign_delivery_partner(self, order_id: int, partner_id: int, actor: Actor) -> Order:
        if not guard.can_assign(actor.role):
            raise Forbidden("Only admins can assign delivery partners")

        partner = UserDirectory.require_delivery_partner(self.db, partner_id)
        previous = {}

        def mutate(order: Order) -> None:
            if order.status not in ASSIGNABLE_STATUSES:
                raise InvalidState(f"Cannot assign a delivery partner to a '{order.status}' order")
            if not partner.is_available:
                raise InvalidState("Delivery partner is offline")
            previous["partner_id"] = order.delivery_partner_id
            order.delivery_partner_id = partner_id

        def after_commit(order: Order) -> None:
            replaced = previous.get("partner_id")
            self.dispatcher.broadcast_order_update(
                order,
                previous_partner_id=replaced if replaced != partner_id else None,
                location=self._partner_location(order),
            )

        order = self.store.update(order_id, mutate, after_commit)

        logger.info(
            "Delivery partner assigned",
            extra={
                "order_id": order.id,
                "delivery_partner_id": partner_id,
                "previous_partner_id": previous.get("partner_id"),
            }
        )
        return order

    def accept_order(self, order_id: int, actor: Actor) -> Order:
        """A courier claims an unassigned order that is being prepared or packed."""
        if actor.role != ROLE_DELIVERY or actor.user_id is None:
            raise Forbidden("Only delivery partners can accept orders")

        partner = UserDirectory.require_delivery_partner(self.db, actor.user_id)

        def mutate(order: Order) -> None:
            if not guard.can_accept(actor.role, actor.user_id, order):
                if order.status not in ASSIGNABLE_STATUSES:
                    raise InvalidState(f"Cannot accept a '{order.status}' order")
                raise InvalidState("Order already assigned to another delivery partner")
            if not partner.is_available:
                raise InvalidState("Delivery partner is offline")
            order.delivery_partner_id = actor.user_id

        def after_commit(order: Order) -> None:
            self.dispatcher.broadcast_order_update(order, location=self._partner_location(order))

        order = self.store.update(order_id, mutate, after_commit)

        logger.info(
            "Order accepted by delivery partner",
            extra={"order_id": order.id, "delivery_partner_id": actor.user_id}
        )
        return order

    def update_payment_status(self, order_id: int, actor: Actor, payment_status: str) -> Order:
        if not guard.can_update_payment(actor.role):
            raise Forbidden("Only admins can update payment status")
        if payment_status not in PAYMENT_STATUSES:
            raise ValidationError(f"Unknown payment status '{payment_status}'")

        def mutate(order: Order) -> None:
            if payment_status not in VALID_PAYMENT_TRANSITIONS[order.payment_status]:
                raise InvalidState(
                    f"Cannot change payment status from '{order.payment_status}' to '{payment_status}'"
                )
            order.payment_status = payment_status

        def after_commit(order: Order) -> None:
            self.dispatcher.broadcast_order_update(order, location=self._partner_location(order))

        order = self.store.update(order_id, mutate, after_commit)

        logger.info(
            "Payment status changed",
            extra={"order_id": order.id, "payment_status": payment_status}
        )
        return order

    # -------------------- reads --------------------

    def get_order(self, order_id: int, actor: Actor) -> Order:
        order = self.store.get(order_id)
        if order is None:
            raise NotFound("Order not found")
        if not guard.can_view(actor.role, actor.user_id, order):
            raise Forbidden("Not allowed to access this order")
        return order

    def list_orders(self, actor: Actor, status: Optional[str] = None, user_id: Optional[int] = None,
                    delivery_partner_id: Optional[int] = None, limit: int = 20,
                    page: int = 1) -> tuple[list[Order], int]:
        """
        Admins see everything; everyone else only sees their own orders
        (customers) or the orders assigned to them (couriers), whatever
        filters they pass.
        """
        if not actor.is_authenticated:
            raise Forbidden("Not authenticated")
        if status is not None and status not in ORDER_STATUSES:
            raise ValidationError(f"Unknown order status '{status}'")

        if actor.role == ROLE_CUSTOMER:
            user_id = actor.user_id
        elif actor.role == ROLE_DELIVERY:
            delivery_partner_id = actor.user_id
        elif not actor.is_admin:
            raise Forbidden("Not allowed to list orders")

        return self.store.list_orders(
            status=status,
            user_id=user_id,
            delivery_partner_id=delivery_partner_id,
            limit=limit,
            offset=(page - 1) * limit,
        )

    def assigned_partner_ids(self, customer_id: int) -> set[int]:
        """Couriers currently carrying or about to carry the customer's orders."""
        orders, _ = self.store.list_orders(user_id=customer_id, limit=None)
        return {
            o.delivery_partner_id for o in orders
            if o.delivery_partner_id is not None and o.status not in (DELIVERED, CANCELLED)
        }

    def dashboard(self, actor: Actor) -> dict:
        if not actor.is_admin:
            raise Forbidden("Only admins can view the dashboard")

        counts = self.store.count_by_status()
        by_status = {status: counts.get(status, 0) for status in ORDER_STATUSES}

        return {
            "totalOrders": sum(by_status.values()),
            "ordersByStatus": by_status,
            "deliveredRevenue": self.store.sum_delivered_revenue(),
            "availablePartners": len(UserDirectory.list_delivery_partners(self.db, available_only=True)),
            "realtime": self.dispatcher.registry.stats(),
        }

    # -------------------- couriers --------------------

    def report_location(self, actor: Actor, partner_id: int, lat: float, lng: float,
                        order_id: Optional[int] = None) -> Location:
        """
        Records the courier's latest position and fans it out.

        Goes to channels tracking the courier, and to the subscribers of
        order_id when the courier carries it, otherwise of every order the
        courier is currently out delivering.
        """
        if not guard.can_report_location(actor.role, actor.user_id, partner_id):
            raise Forbidden("Only the delivery partner can report their location")
        if not (-90 <= lat <= 90) or not (-180 <= lng <= 180):
            raise ValidationError("Invalid location data")

        location = self.locations.update(partner_id, lat, lng)
        location_reports_total.inc()

        if order_id is not None:
            order = self.store.get(order_id)
            order_ids = [order_id] if order is not None and order.delivery_partner_id == partner_id else []
        else:
            active, _ = self.store.list_orders(status=OUT_FOR_DELIVERY, delivery_partner_id=partner_id, limit=None)
            order_ids = [o.id for o in active]

        self.dispatcher.broadcast_location_update(partner_id, location, order_ids)

        logger.debug(
            "Location reported",
            extra={"delivery_partner_id": partner_id, "order_ids": order_ids}
        )
        return location

    def list_partners(self, actor: Actor, available_only: bool = False):
        if not actor.is_admin:
            raise Forbidden("Only admins can list delivery partners")
        return UserDirectory.list_delivery_partners(self.db, available_only=available_only)

    def register_partner(self, actor: Actor, name: str, phone: str,
                         vehicle_number: Optional[str] = None, email: Optional[str] = None):
        if not actor.is_admin:
            raise Forbidden("Only admins can register delivery partners")
        return UserDirectory.register_delivery_partner(
            self.db, name=name, phone=phone, vehicle_number=vehicle_number, email=email
        )

    def set_availability(self, actor: Actor, partner_id: int, is_available: bool):
        if not guard.can_manage_partner(actor.role, actor.user_id, partner_id):
            raise Forbidden("Not allowed to manage this delivery partner")

        partner = UserDirectory.require_delivery_partner(self.db, partner_id)
        _, active = self.store.list_orders(status=OUT_FOR_DELIVERY, delivery_partner_id=partner_id, limit=1)
        partner = UserDirectory.set_availability(self.db, partner, is_available, has_active_delivery=active > 0)

        logger.info(
            "Delivery partner availability changed",
            extra={"delivery_partner_id": partner_id, "is_available": is_available}
        )
        return partner

    def get_partner(self, actor: Actor, partner_id: int):
        if not guard.can_manage_partner(actor.role, actor.user_id, partner_id):
            raise Forbidden("Not allowed to view this delivery partner")
        return UserDirectory.require_delivery_partner(self.db, partner_id)

    def partner_orders(self, actor: Actor, partner_id: int, status: Optional[str] = None) -> list[Order]:
        if not guard.can_manage_partner(actor.role, actor.user_id, partner_id):
            raise Forbidden("Not allowed to view this delivery partner")
        UserDirectory.require_delivery_partner(self.db, partner_id)

        orders, _ = self.store.list_orders(status=status, delivery_partner_id=partner_id, limit=None)
        return orders

    def partner_earnings(self, actor: Actor, partner_id: int) -> dict:
        """
        The courier's cut of the delivery fee on delivered orders, in paise.
        """
        if not guard.can_manage_partner(actor.role, actor.user_id, partner_id):
            raise Forbidden("Not allowed to view this delivery partner")
        partner = UserDirectory.require_delivery_partner(self.db, partner_id)

        delivered, _ = self.store.list_orders(status=DELIVERED, delivery_partner_id=partner_id, limit=None)

        now = utcnow()
        today_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        week_start = now - timedelta(days=7)

        def cut(order: Order) -> int:
            return order.delivery_fee * settings.PARTNER_EARNING_PERCENT // 100

        def delivered_since(order: Order, start) -> bool:
            return order.delivered_at is not None and order.delivered_at >= start

        return {
            "deliveryPartnerId": partner_id,
            "totalEarnings": sum(cut(o) for o in delivered),
            "todayEarnings": sum(cut(o) for o in delivered if delivered_since(o, today_start)),
            "lastWeekEarnings": sum(cut(o) for o in delivered if delivered_since(o, week_start)),
            "deliveriesCompleted": len(delivered),
            "totalDeliveries": partner.total_deliveries,
            "rating": partner.rating,
        }

    def _partner_location(self, order: Order) -> Optional[Location]:
        if order.delivery_partner_id is None:
            return None
        return self.locations.get(order.delivery_partner_id)

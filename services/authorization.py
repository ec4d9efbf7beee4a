"""
Authorization guard for the order lifecycle.

Pure functions only: no lookups, no side effects. Callers load the order
(and whatever else is needed) and ask a yes/no question. The transition
permissions are derived from the transition table in core.order_state, so
a role can never be granted an edge that does not exist.
"""
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Protocol

from core.order_state import (
    ASSIGNABLE_STATUSES,
    CANCELLED,
    DELIVERED,
    OUT_FOR_DELIVERY,
    all_edges,
    is_valid_transition,
)
from models.users import ROLE_ADMIN, ROLE_CUSTOMER, ROLE_DELIVERY


@dataclass(frozen=True)
class Actor:
    """Whoever is asking: an authenticated user id and role, or nobody."""
    user_id: Optional[int]
    role: Optional[str]

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None and self.role is not None

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


ANONYMOUS = Actor(user_id=None, role=None)


class OrderLike(Protocol):
    user_id: int
    delivery_partner_id: Optional[int]
    status: str


Edge = tuple[str, str]

# role -> edges of the transition graph that role may traverse
TRANSITION_PERMISSIONS: dict[str, frozenset[Edge]] = {
    ROLE_ADMIN: frozenset(all_edges()),
    ROLE_DELIVERY: frozenset({(OUT_FOR_DELIVERY, DELIVERED)}),
    ROLE_CUSTOMER: frozenset(edge for edge in all_edges() if edge[1] == CANCELLED),
}

# role -> relationship the actor must have with the order
RELATIONSHIP_RULES: dict[str, Callable[[int, OrderLike], bool]] = {
    ROLE_ADMIN: lambda user_id, order: True,
    ROLE_DELIVERY: lambda user_id, order: order.delivery_partner_id == user_id,
    ROLE_CUSTOMER: lambda user_id, order: order.user_id == user_id,
}


def _related(role: Optional[str], user_id: Optional[int], order: OrderLike) -> bool:
    if user_id is None or role is None:
        return False
    rule = RELATIONSHIP_RULES.get(role)
    return rule is not None and rule(user_id, order)


def can_transition(role: Optional[str], user_id: Optional[int], order: OrderLike, target_status: str) -> bool:
    edge = (order.status, target_status)
    if not is_valid_transition(*edge):
        return False
    if edge not in TRANSITION_PERMISSIONS.get(role, frozenset()):
        return False
    return _related(role, user_id, order)


def can_view(role: Optional[str], user_id: Optional[int], order: OrderLike) -> bool:
    return _related(role, user_id, order)


def can_assign(role: Optional[str]) -> bool:
    return role == ROLE_ADMIN


def can_update_payment(role: Optional[str]) -> bool:
    return role == ROLE_ADMIN


def can_accept(role: Optional[str], user_id: Optional[int], order: OrderLike) -> bool:
    """A courier may claim an order that is being prepared and not taken by someone else."""
    if role != ROLE_DELIVERY or user_id is None:
        return False
    if order.status not in ASSIGNABLE_STATUSES:
        return False
    return order.delivery_partner_id in (None, user_id)


def can_report_location(role: Optional[str], user_id: Optional[int], partner_id: int) -> bool:
    return role == ROLE_DELIVERY and user_id is not None and user_id == partner_id


def can_manage_partner(role: Optional[str], user_id: Optional[int], partner_id: int) -> bool:
    if role == ROLE_ADMIN:
        return True
    return role == ROLE_DELIVERY and user_id is not None and user_id == partner_id


def can_track_partner(role: Optional[str], user_id: Optional[int], partner_id: int,
                      assigned_partner_ids: Iterable[int] = ()) -> bool:
    """
    Admins track anyone, couriers track themselves, customers track the
    couriers assigned to their own open orders (assigned_partner_ids).
    """
    if can_manage_partner(role, user_id, partner_id):
        return True
    return role == ROLE_CUSTOMER and user_id is not None and partner_id in set(assigned_partner_ids)

from dataclasses import dataclass
from typing import Optional

import pytest

from core.order_state import (
    CANCELLED,
    DELIVERED,
    ORDER_STATUSES,
    OUT_FOR_DELIVERY,
    PACKED,
    PENDING,
    PREPARING,
    is_valid_transition,
)
from models.users import ROLE_ADMIN, ROLE_CUSTOMER, ROLE_DELIVERY
from services.authorization import (
    ANONYMOUS,
    Actor,
    can_accept,
    can_assign,
    can_manage_partner,
    can_report_location,
    can_track_partner,
    can_transition,
    can_update_payment,
    can_view,
)

CUSTOMER_ID = 1
OTHER_CUSTOMER_ID = 2
PARTNER_ID = 10
OTHER_PARTNER_ID = 11
ADMIN_ID = 99


@dataclass
class FakeOrder:
    status: str
    user_id: int = CUSTOMER_ID
    delivery_partner_id: Optional[int] = PARTNER_ID


def test_admin_may_take_every_valid_edge():
    for current in ORDER_STATUSES:
        for target in ORDER_STATUSES:
            order = FakeOrder(status=current)
            assert can_transition(ROLE_ADMIN, ADMIN_ID, order, target) == is_valid_transition(current, target)


def test_assigned_partner_may_only_deliver():
    for current in ORDER_STATUSES:
        for target in ORDER_STATUSES:
            allowed = can_transition(ROLE_DELIVERY, PARTNER_ID, FakeOrder(status=current), target)
            assert allowed == ((current, target) == (OUT_FOR_DELIVERY, DELIVERED))


def test_unassigned_partner_may_not_deliver():
    order = FakeOrder(status=OUT_FOR_DELIVERY)
    assert not can_transition(ROLE_DELIVERY, OTHER_PARTNER_ID, order, DELIVERED)


@pytest.mark.parametrize("status", [PENDING, PREPARING, PACKED])
def test_owner_may_cancel_before_dispatch(status):
    assert can_transition(ROLE_CUSTOMER, CUSTOMER_ID, FakeOrder(status=status), CANCELLED)


def test_owner_may_not_cancel_out_for_delivery():
    assert not can_transition(ROLE_CUSTOMER, CUSTOMER_ID, FakeOrder(status=OUT_FOR_DELIVERY), CANCELLED)


def test_customer_may_only_cancel():
    for current in ORDER_STATUSES:
        for target in ORDER_STATUSES:
            if target == CANCELLED:
                continue
            assert not can_transition(ROLE_CUSTOMER, CUSTOMER_ID, FakeOrder(status=current), target)


def test_other_customer_may_not_cancel():
    assert not can_transition(ROLE_CUSTOMER, OTHER_CUSTOMER_ID, FakeOrder(status=PENDING), CANCELLED)


def test_anonymous_and_unknown_roles_get_nothing():
    order = FakeOrder(status=PENDING)
    assert not can_transition(None, None, order, CANCELLED)
    assert not can_transition("support", 5, order, CANCELLED)
    assert not can_view(None, None, order)
    assert not can_view("support", 5, order)
    assert not ANONYMOUS.is_authenticated


def test_view_matrix():
    order = FakeOrder(status=PACKED)
    assert can_view(ROLE_ADMIN, ADMIN_ID, order)
    assert can_view(ROLE_CUSTOMER, CUSTOMER_ID, order)
    assert can_view(ROLE_DELIVERY, PARTNER_ID, order)
    assert not can_view(ROLE_CUSTOMER, OTHER_CUSTOMER_ID, order)
    assert not can_view(ROLE_DELIVERY, OTHER_PARTNER_ID, order)


def test_unassigned_order_not_visible_to_partners():
    order = FakeOrder(status=PREPARING, delivery_partner_id=None)
    assert not can_view(ROLE_DELIVERY, PARTNER_ID, order)


def test_assignment_and_payment_are_admin_only():
    assert can_assign(ROLE_ADMIN)
    assert can_update_payment(ROLE_ADMIN)
    for role in (ROLE_CUSTOMER, ROLE_DELIVERY, None):
        assert not can_assign(role)
        assert not can_update_payment(role)


def test_accept_rules():
    open_order = FakeOrder(status=PACKED, delivery_partner_id=None)
    assert can_accept(ROLE_DELIVERY, PARTNER_ID, open_order)
    assert not can_accept(ROLE_ADMIN, ADMIN_ID, open_order)

    taken = FakeOrder(status=PACKED, delivery_partner_id=OTHER_PARTNER_ID)
    assert not can_accept(ROLE_DELIVERY, PARTNER_ID, taken)

    too_early = FakeOrder(status=PENDING, delivery_partner_id=None)
    assert not can_accept(ROLE_DELIVERY, PARTNER_ID, too_early)


def test_only_the_partner_reports_own_location():
    assert can_report_location(ROLE_DELIVERY, PARTNER_ID, PARTNER_ID)
    assert not can_report_location(ROLE_DELIVERY, PARTNER_ID, OTHER_PARTNER_ID)
    assert not can_report_location(ROLE_ADMIN, ADMIN_ID, PARTNER_ID)
    assert not can_report_location(ROLE_CUSTOMER, CUSTOMER_ID, PARTNER_ID)


def test_partner_management():
    assert can_manage_partner(ROLE_ADMIN, ADMIN_ID, PARTNER_ID)
    assert can_manage_partner(ROLE_DELIVERY, PARTNER_ID, PARTNER_ID)
    assert not can_manage_partner(ROLE_DELIVERY, OTHER_PARTNER_ID, PARTNER_ID)
    assert not can_manage_partner(ROLE_CUSTOMER, CUSTOMER_ID, PARTNER_ID)


def test_customer_tracks_only_assigned_partners():
    assert can_track_partner(ROLE_CUSTOMER, CUSTOMER_ID, PARTNER_ID, {PARTNER_ID})
    assert not can_track_partner(ROLE_CUSTOMER, CUSTOMER_ID, PARTNER_ID, set())
    assert can_track_partner(ROLE_ADMIN, ADMIN_ID, PARTNER_ID)


def test_actor_properties():
    actor = Actor(user_id=ADMIN_ID, role=ROLE_ADMIN)
    assert actor.is_authenticated
    assert actor.is_admin
    assert not Actor(user_id=CUSTOMER_ID, role=ROLE_CUSTOMER).is_admin

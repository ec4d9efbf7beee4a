"""
Order lifecycle state machine. Valid transitions enforce business rules.
"""

PENDING = "pending"
PREPARING = "preparing"
PACKED = "packed"
OUT_FOR_DELIVERY = "out_for_delivery"
DELIVERED = "delivered"
CANCELLED = "cancelled"

ORDER_STATUSES: tuple[str, ...] = (
    PENDING,
    PREPARING,
    PACKED,
    OUT_FOR_DELIVERY,
    DELIVERED,
    CANCELLED,
)

# Current status -> allowed next statuses
VALID_TRANSITIONS: dict[str, frozenset[str]] = {
    PENDING: frozenset({PREPARING, CANCELLED}),
    PREPARING: frozenset({PACKED, CANCELLED}),
    PACKED: frozenset({OUT_FOR_DELIVERY, CANCELLED}),
    OUT_FOR_DELIVERY: frozenset({DELIVERED}),
    DELIVERED: frozenset(),  # terminal
    CANCELLED: frozenset(),  # terminal
}

TERMINAL_STATUSES: frozenset[str] = frozenset(
    s for s, nxt in VALID_TRANSITIONS.items() if not nxt
)

# A delivery partner may be (re)assigned only while the order is in the store
ASSIGNABLE_STATUSES: frozenset[str] = frozenset({PREPARING, PACKED})

# Payment axis, independent of the fulfilment status
PAYMENT_PENDING = "pending"
PAYMENT_PAID = "paid"
PAYMENT_FAILED = "failed"

PAYMENT_STATUSES: tuple[str, ...] = (PAYMENT_PENDING, PAYMENT_PAID, PAYMENT_FAILED)

VALID_PAYMENT_TRANSITIONS: dict[str, frozenset[str]] = {
    PAYMENT_PENDING: frozenset({PAYMENT_PAID, PAYMENT_FAILED}),
    PAYMENT_FAILED: frozenset({PAYMENT_PAID}),
    PAYMENT_PAID: frozenset(),
}

PAYMENT_METHODS: tuple[str, ...] = ("cash", "upi", "card", "wallet")


def is_valid_transition(current: str, target: str) -> bool:
    """True if target is reachable from current in one step."""
    return target in VALID_TRANSITIONS.get(current, frozenset())


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def all_edges() -> list[tuple[str, str]]:
    return [(src, dst) for src, targets in VALID_TRANSITIONS.items() for dst in sorted(targets)]

# marketplace/domain/order_states.py
from marketplace.domain.errors import ConflictError, ErrorCode

PENDING = "pending"
CONFIRMED = "confirmed"
PREPARING = "preparing"
READY = "ready"
OUT_FOR_DELIVERY = "out_for_delivery"
DELIVERED = "delivered"
CANCELLED = "cancelled"

STATUSES = (PENDING, CONFIRMED, PREPARING, READY, OUT_FOR_DELIVERY, DELIVERED, CANCELLED)

TRANSITIONS: dict[str, frozenset[str]] = {
    PENDING: frozenset({CONFIRMED, CANCELLED}),
    CONFIRMED: frozenset({PREPARING, CANCELLED}),
    PREPARING: frozenset({READY, CANCELLED}),
    READY: frozenset({OUT_FOR_DELIVERY, DELIVERED}),
    OUT_FOR_DELIVERY: frozenset({DELIVERED}),
    DELIVERED: frozenset(),
    CANCELLED: frozenset(),
}

TERMINAL = frozenset({DELIVERED, CANCELLED})

# customers (and the payment side) may only cancel before cooking starts
CANCELLABLE = frozenset({PENDING, CONFIRMED})

# column stamped when an order enters the status
TIMESTAMP_FIELDS = {
    CONFIRMED: "confirmed_at",
    PREPARING: "preparing_at",
    READY: "ready_at",
    DELIVERED: "delivered_at",
    CANCELLED: "cancelled_at",
}


class PaymentStatus:
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def assert_transition(current: str, target: str) -> None:
    if not can_transition(current, target):
        raise ConflictError(
            f"Cannot transition order from {current} to {target}",
            code=ErrorCode.INVALID_STATUS_TRANSITION,
            details={"current": current, "target": target},
        )

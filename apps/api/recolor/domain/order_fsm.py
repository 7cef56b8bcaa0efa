"""Order payment lifecycle transition rules."""

from recolor.schemas.order import OrderStatus

_TERMINAL_STATES: set[OrderStatus] = {
    OrderStatus.PAID,
    OrderStatus.REFUNDED,
}

# FAILED and CANCELLED stay open to PAID: a gateway that reports captured money
# after a failure or user drop wins over the earlier verdict.
_ALLOWED_TRANSITIONS: dict[OrderStatus, set[OrderStatus]] = {
    OrderStatus.PENDING: {OrderStatus.PAID, OrderStatus.FAILED, OrderStatus.CANCELLED},
    OrderStatus.FAILED: {OrderStatus.PAID},
    OrderStatus.CANCELLED: {OrderStatus.PAID},
    OrderStatus.PAID: set(),
    OrderStatus.REFUNDED: set(),
}


def is_terminal(status: OrderStatus) -> bool:
    return status in _TERMINAL_STATES


def can_transition(old_status: OrderStatus, new_status: OrderStatus) -> bool:
    """Whether a stored order in ``old_status`` may be moved to ``new_status``.

    Self transitions are never transitions; callers treat them as no-ops.
    """
    if old_status in _TERMINAL_STATES:
        return False
    return new_status in _ALLOWED_TRANSITIONS.get(old_status, set())

"""Canonical payment outcomes and the gateway vocabularies mapped onto them.

PhonePe reports order states (COMPLETED/FAILED/PENDING) and checkout events,
while the legacy Cashfree webhooks report SUCCESS/FAILED/USER_DROPPED. Every
path into the reconciliation service first translates into ``PaymentOutcome``
so there is exactly one state machine deciding order status.
"""

from enum import Enum

from recolor.schemas.order import OrderStatus


class PaymentOutcome(str, Enum):
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    PENDING = "PENDING"
    CANCELLED = "CANCELLED"


class GatewayOrderState(str, Enum):
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    PENDING = "PENDING"


_GATEWAY_STATE_OUTCOMES: dict[str, PaymentOutcome] = {
    GatewayOrderState.COMPLETED.value: PaymentOutcome.SUCCESS,
    GatewayOrderState.FAILED.value: PaymentOutcome.FAILURE,
    GatewayOrderState.PENDING.value: PaymentOutcome.PENDING,
}

_PHONEPE_EVENT_OUTCOMES: dict[str, PaymentOutcome] = {
    "CHECKOUT_ORDER_COMPLETED": PaymentOutcome.SUCCESS,
    "CHECKOUT_ORDER_FAILED": PaymentOutcome.FAILURE,
}

_CASHFREE_EVENT_OUTCOMES: dict[str, PaymentOutcome] = {
    "PAYMENT_SUCCESS_WEBHOOK": PaymentOutcome.SUCCESS,
    "PAYMENT_FAILED_WEBHOOK": PaymentOutcome.FAILURE,
    "PAYMENT_USER_DROPPED_WEBHOOK": PaymentOutcome.CANCELLED,
}

_CASHFREE_PAYMENT_STATUS_OUTCOMES: dict[str, PaymentOutcome] = {
    "SUCCESS": PaymentOutcome.SUCCESS,
    "FAILED": PaymentOutcome.FAILURE,
    "USER_DROPPED": PaymentOutcome.CANCELLED,
    "CANCELLED": PaymentOutcome.CANCELLED,
    "PENDING": PaymentOutcome.PENDING,
}

_OUTCOME_ORDER_STATUS: dict[PaymentOutcome, OrderStatus] = {
    PaymentOutcome.SUCCESS: OrderStatus.PAID,
    PaymentOutcome.FAILURE: OrderStatus.FAILED,
    PaymentOutcome.CANCELLED: OrderStatus.CANCELLED,
}


def _normalize(value: str | None) -> str:
    return str(value or "").strip().upper().replace(".", "_")


def outcome_for_gateway_state(state: str | None) -> PaymentOutcome | None:
    return _GATEWAY_STATE_OUTCOMES.get(_normalize(state))


def outcome_for_phonepe_event(event_type: str | None, state: str | None) -> PaymentOutcome | None:
    """Map a PhonePe webhook to an outcome.

    Both the SDK event names (``CHECKOUT_ORDER_COMPLETED``) and the dotted
    webhook names (``checkout.order.completed``) are accepted; anything else
    falls back to the payload ``state``.
    """
    outcome = _PHONEPE_EVENT_OUTCOMES.get(_normalize(event_type))
    if outcome is not None:
        return outcome
    return outcome_for_gateway_state(state)


def outcome_for_cashfree_event(event_type: str | None, payment_status: str | None) -> PaymentOutcome | None:
    outcome = _CASHFREE_EVENT_OUTCOMES.get(_normalize(event_type))
    if outcome is not None:
        return outcome
    return _CASHFREE_PAYMENT_STATUS_OUTCOMES.get(_normalize(payment_status))


def target_order_status(outcome: PaymentOutcome) -> OrderStatus | None:
    """Order status an outcome settles to; ``None`` means leave the order as is."""
    return _OUTCOME_ORDER_STATUS.get(outcome)

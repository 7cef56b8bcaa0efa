"""Mock payment gateway for local development and tests."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

from recolor.adapters.gateway.base import (
    GatewayOrder,
    GatewayOrderStatus,
    GatewayPaymentDetail,
    GatewayQueryError,
    PaymentGateway,
    validate_expire_after,
)
from recolor.domain.payment_states import GatewayOrderState


class MockPaymentGateway(PaymentGateway):
    """Keeps gateway-side order states in memory.

    Tests drive outcomes with ``set_state``; ``create_failure_message`` and
    ``status_failure_message`` make the matching calls raise ``GatewayQueryError``
    until cleared.
    """

    def __init__(self) -> None:
        self.orders: dict[str, GatewayOrder] = {}
        self.states: dict[str, str] = {}
        self.transaction_ids: dict[str, str] = {}
        self.create_requests: list[dict[str, Any]] = []
        self.status_queries: list[str] = []
        self.create_failure_message: str | None = None
        self.status_failure_message: str | None = None

    def create_order(
        self,
        *,
        order_id: str,
        amount: int,
        return_url: str,
        notify_url: str,
        expire_after: int,
        note: str | None = None,
        customer_id: str | None = None,
    ) -> GatewayOrder:
        self.create_requests.append(
            {
                "order_id": order_id,
                "amount": amount,
                "return_url": return_url,
                "notify_url": notify_url,
                "expire_after": expire_after,
                "note": note,
                "customer_id": customer_id,
            }
        )
        if self.create_failure_message is not None:
            raise GatewayQueryError(self.create_failure_message)

        expire_at = datetime.now(UTC) + timedelta(seconds=validate_expire_after(expire_after))
        order = GatewayOrder(
            gateway_order_id=f"MOCK{order_id}",
            redirect_url=f"https://mock-gateway.local/checkout/{order_id}",
            state=GatewayOrderState.PENDING.value,
            expire_at=expire_at.isoformat(),
        )
        self.orders[order_id] = order
        self.states.setdefault(order_id, GatewayOrderState.PENDING.value)
        return order

    def set_state(self, merchant_order_id: str, state: GatewayOrderState | str, *, transaction_id: str | None = None) -> None:
        self.states[merchant_order_id] = state.value if isinstance(state, GatewayOrderState) else state
        if transaction_id is not None:
            self.transaction_ids[merchant_order_id] = transaction_id

    def get_order_status(self, merchant_order_id: str) -> GatewayOrderStatus:
        self.status_queries.append(merchant_order_id)
        if self.status_failure_message is not None:
            raise GatewayQueryError(self.status_failure_message)

        state = self.states.get(merchant_order_id)
        if state is None:
            raise GatewayQueryError(f"Unknown merchant order {merchant_order_id}")

        transaction_id = self.transaction_ids.get(merchant_order_id)
        details = (GatewayPaymentDetail(transaction_id=transaction_id, state=state),) if transaction_id else ()
        return GatewayOrderStatus(merchant_order_id=merchant_order_id, state=state, payment_details=details)


__all__ = ["MockPaymentGateway"]

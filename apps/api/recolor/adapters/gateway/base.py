"""Payment gateway interfaces."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass

from recolor.domain.payment_states import PaymentOutcome

MIN_ORDER_EXPIRY_SECONDS = 300
MAX_ORDER_EXPIRY_SECONDS = 3600


class GatewayQueryError(Exception):
    """Raised when the gateway cannot be reached or answers with an error."""


class WebhookVerificationError(Exception):
    """Raised when an inbound webhook fails authentication."""


class WebhookPayloadError(Exception):
    """Raised when an authenticated webhook body cannot be parsed."""


@dataclass(frozen=True, slots=True)
class GatewayOrder:
    gateway_order_id: str
    redirect_url: str
    state: str
    expire_at: str | None = None


@dataclass(frozen=True, slots=True)
class GatewayPaymentDetail:
    transaction_id: str | None
    state: str | None = None
    payment_mode: str | None = None


@dataclass(frozen=True, slots=True)
class GatewayOrderStatus:
    merchant_order_id: str
    state: str
    amount: int | None = None
    payment_details: tuple[GatewayPaymentDetail, ...] = ()

    @property
    def transaction_id(self) -> str | None:
        for detail in self.payment_details:
            if detail.transaction_id:
                return detail.transaction_id
        return None


@dataclass(frozen=True, slots=True)
class WebhookEvent:
    gateway: str
    event_type: str
    outcome: PaymentOutcome | None
    merchant_order_id: str | None
    payment_id: str | None = None
    state: str | None = None


def validate_expire_after(expire_after: int) -> int:
    if expire_after < MIN_ORDER_EXPIRY_SECONDS or expire_after > MAX_ORDER_EXPIRY_SECONDS:
        raise ValueError(
            f"expire_after must be between {MIN_ORDER_EXPIRY_SECONDS} and {MAX_ORDER_EXPIRY_SECONDS} seconds"
        )
    return expire_after


class PaymentGateway(ABC):
    """Order creation and status lookup against a hosted checkout."""

    @abstractmethod
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
        """Create a checkout for ``amount`` minor units under our ``order_id``."""

    @abstractmethod
    def get_order_status(self, merchant_order_id: str) -> GatewayOrderStatus:
        """Fetch the gateway's current view of an order."""

    def close(self) -> None:
        """Release pooled connections."""


class WebhookVerifier(ABC):
    """Authenticates and decodes one gateway's webhook deliveries."""

    gateway_name: str = "unknown"

    @abstractmethod
    def verify(self, *, headers: Mapping[str, str], raw_body: bytes) -> WebhookEvent:
        """Check the delivery signature, then decode it into a ``WebhookEvent``.

        ``headers`` lookups use lower-case names.
        """


__all__ = [
    "GatewayOrder",
    "GatewayOrderStatus",
    "GatewayPaymentDetail",
    "GatewayQueryError",
    "PaymentGateway",
    "WebhookEvent",
    "WebhookPayloadError",
    "WebhookVerificationError",
    "WebhookVerifier",
    "validate_expire_after",
]

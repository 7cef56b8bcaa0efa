"""Payment gateway adapters."""

from .base import (
    GatewayOrder,
    GatewayOrderStatus,
    GatewayPaymentDetail,
    GatewayQueryError,
    PaymentGateway,
    WebhookEvent,
    WebhookPayloadError,
    WebhookVerificationError,
    WebhookVerifier,
)
from .cashfree import CashfreeWebhookVerifier
from .mock import MockPaymentGateway
from .phonepe import PhonePeGateway, PhonePeWebhookVerifier

__all__ = [
    "CashfreeWebhookVerifier",
    "GatewayOrder",
    "GatewayOrderStatus",
    "GatewayPaymentDetail",
    "GatewayQueryError",
    "MockPaymentGateway",
    "PaymentGateway",
    "PhonePeGateway",
    "PhonePeWebhookVerifier",
    "WebhookEvent",
    "WebhookPayloadError",
    "WebhookVerificationError",
    "WebhookVerifier",
]

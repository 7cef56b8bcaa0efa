"""Legacy Cashfree webhook adapter.

Only inbound webhooks are still handled for Cashfree; new orders go through
PhonePe. Deliveries carry ``x-webhook-timestamp`` and ``x-webhook-signature``
where the signature is ``base64(hmac_sha256(secret, timestamp + raw_body))``.
"""

from __future__ import annotations

import base64
from collections.abc import Mapping
import hashlib
import hmac
import json

from recolor.adapters.gateway.base import (
    WebhookEvent,
    WebhookPayloadError,
    WebhookVerificationError,
    WebhookVerifier,
)
from recolor.domain.payment_states import outcome_for_cashfree_event


def cashfree_signature(*, secret: str, timestamp: str, raw_body: bytes) -> str:
    digest = hmac.new(secret.encode("utf-8"), timestamp.encode("utf-8") + raw_body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


class CashfreeWebhookVerifier(WebhookVerifier):
    gateway_name = "cashfree"

    def __init__(self, *, secret_key: str) -> None:
        self._secret_key = secret_key

    def verify(self, *, headers: Mapping[str, str], raw_body: bytes) -> WebhookEvent:
        signature = (headers.get("x-webhook-signature") or "").strip()
        timestamp = (headers.get("x-webhook-timestamp") or "").strip()
        if not signature or not timestamp:
            raise WebhookVerificationError("Missing webhook signature headers")

        expected = cashfree_signature(secret=self._secret_key, timestamp=timestamp, raw_body=raw_body)
        if not hmac.compare_digest(signature.encode("utf-8"), expected.encode("utf-8")):
            raise WebhookVerificationError("Invalid webhook signature")

        try:
            body = json.loads(raw_body)
        except ValueError as exc:
            raise WebhookPayloadError("Webhook body is not valid JSON") from exc
        if not isinstance(body, dict):
            raise WebhookPayloadError("Webhook body is not an object")

        data = body.get("data") if isinstance(body.get("data"), dict) else {}
        order = data.get("order") if isinstance(data.get("order"), dict) else {}
        payment = data.get("payment") if isinstance(data.get("payment"), dict) else {}
        event_type = str(body.get("type") or "")
        payment_status = payment.get("payment_status")
        order_id = order.get("order_id")
        payment_id = payment.get("cf_payment_id")

        return WebhookEvent(
            gateway=self.gateway_name,
            event_type=event_type,
            outcome=outcome_for_cashfree_event(event_type, payment_status),
            merchant_order_id=str(order_id) if order_id else None,
            payment_id=str(payment_id) if payment_id else None,
            state=str(payment_status) if payment_status else None,
        )


__all__ = ["CashfreeWebhookVerifier", "cashfree_signature"]

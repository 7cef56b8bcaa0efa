"""PhonePe Standard Checkout adapter.

Talks to the v2 checkout REST API with an httpx client. Access tokens come from
the client-credentials OAuth endpoint and are reused until shortly before they
expire.
"""

from __future__ import annotations

from collections.abc import Mapping
import hashlib
import json
import logging
from secrets import compare_digest
import threading
import time
from typing import Any
from urllib.parse import quote

import httpx

from recolor.adapters.gateway.base import (
    GatewayOrder,
    GatewayOrderStatus,
    GatewayPaymentDetail,
    GatewayQueryError,
    PaymentGateway,
    WebhookEvent,
    WebhookPayloadError,
    WebhookVerificationError,
    WebhookVerifier,
    validate_expire_after,
)
from recolor.domain.payment_states import outcome_for_phonepe_event

logger = logging.getLogger(__name__)

_API_BASE_URLS = {
    "production": "https://api.phonepe.com/apis/pg",
    "sandbox": "https://api-preprod.phonepe.com/apis/pg-sandbox",
}
_TOKEN_URLS = {
    "production": "https://api.phonepe.com/apis/identity-manager/v1/oauth/token",
    "sandbox": "https://api-preprod.phonepe.com/apis/pg-sandbox/v1/oauth/token",
}
_TOKEN_REFRESH_MARGIN_SECONDS = 60


class PhonePeGateway(PaymentGateway):
    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str,
        client_version: str,
        environment: str,
        timeout_seconds: float,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._client_version = client_version
        self._api_base_url = _API_BASE_URLS[environment]
        self._token_url = _TOKEN_URLS[environment]
        self._client = httpx.Client(timeout=timeout_seconds, transport=transport)
        self._token_lock = threading.Lock()
        self._access_token: str | None = None
        self._token_expires_at = 0.0

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
        # PhonePe has no per-order notify URL; webhooks are configured on the merchant dashboard.
        body: dict[str, Any] = {
            "merchantOrderId": order_id,
            "amount": amount,
            "expireAfter": validate_expire_after(expire_after),
            "paymentFlow": {
                "type": "PG_CHECKOUT",
                "merchantUrls": {"redirectUrl": return_url},
            },
        }
        meta_info = {}
        if customer_id:
            meta_info["udf1"] = customer_id
        if note:
            meta_info["udf2"] = note
        if meta_info:
            body["metaInfo"] = meta_info

        data = self._request("POST", f"{self._api_base_url}/checkout/v2/pay", json=body)
        redirect_url = data.get("redirectUrl")
        if not redirect_url:
            raise GatewayQueryError("No redirect URL received from PhonePe")

        expire_at = data.get("expireAt")
        return GatewayOrder(
            gateway_order_id=str(data.get("orderId") or ""),
            redirect_url=str(redirect_url),
            state=str(data.get("state") or "PENDING"),
            expire_at=str(expire_at) if expire_at is not None else None,
        )

    def get_order_status(self, merchant_order_id: str) -> GatewayOrderStatus:
        data = self._request(
            "GET",
            f"{self._api_base_url}/checkout/v2/order/{quote(merchant_order_id, safe='')}/status",
            params={"details": "false"},
        )
        state = data.get("state")
        if not state:
            raise GatewayQueryError("PhonePe order status response has no state")

        return GatewayOrderStatus(
            merchant_order_id=merchant_order_id,
            state=str(state),
            amount=data.get("amount"),
            payment_details=_parse_payment_details(data.get("paymentDetails")),
        )

    def close(self) -> None:
        self._client.close()

    def _authorization_header(self) -> dict[str, str]:
        with self._token_lock:
            if self._access_token is None or time.time() >= self._token_expires_at - _TOKEN_REFRESH_MARGIN_SECONDS:
                self._refresh_token()
            return {"Authorization": f"O-Bearer {self._access_token}"}

    def _refresh_token(self) -> None:
        try:
            response = self._client.post(
                self._token_url,
                data={
                    "client_id": self._client_id,
                    "client_version": self._client_version,
                    "client_secret": self._client_secret,
                    "grant_type": "client_credentials",
                },
            )
        except httpx.TimeoutException as exc:
            raise GatewayQueryError("PhonePe token request timed out") from exc
        except httpx.HTTPError as exc:
            raise GatewayQueryError(f"PhonePe token request failed: {type(exc).__name__}") from exc

        if response.status_code >= 400:
            raise GatewayQueryError(f"PhonePe token request failed with status {response.status_code}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise GatewayQueryError("PhonePe token response is not JSON") from exc

        access_token = payload.get("access_token")
        if not access_token:
            raise GatewayQueryError("PhonePe token response has no access_token")
        self._access_token = str(access_token)
        self._token_expires_at = float(payload.get("expires_at") or time.time() + 300)
        logger.info("gateway.token_refreshed gateway=phonepe expires_at=%s", int(self._token_expires_at))

    def _request(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        headers = {"Content-Type": "application/json", **self._authorization_header()}
        try:
            response = self._client.request(method, url, headers=headers, **kwargs)
        except httpx.TimeoutException as exc:
            raise GatewayQueryError("PhonePe request timed out") from exc
        except httpx.HTTPError as exc:
            raise GatewayQueryError(f"PhonePe request failed: {type(exc).__name__}") from exc

        if response.status_code == 401:
            # Revoked tokens are refreshed on the next call.
            with self._token_lock:
                self._access_token = None
        if response.status_code >= 400:
            raise GatewayQueryError(f"PhonePe request failed with status {response.status_code}")
        try:
            data = response.json()
        except ValueError as exc:
            raise GatewayQueryError("PhonePe response is not JSON") from exc
        if not isinstance(data, dict):
            raise GatewayQueryError("PhonePe response is not an object")
        return data


class PhonePeWebhookVerifier(WebhookVerifier):
    """PhonePe signs webhooks with ``Authorization: sha256_hex("<username>:<password>")``."""

    gateway_name = "phonepe"

    def __init__(self, *, username: str, password: str) -> None:
        self._expected_authorization = hashlib.sha256(f"{username}:{password}".encode("utf-8")).hexdigest()

    def verify(self, *, headers: Mapping[str, str], raw_body: bytes) -> WebhookEvent:
        authorization = (headers.get("authorization") or "").strip()
        if authorization.lower().startswith("sha256 "):
            authorization = authorization[len("sha256 "):].strip()
        if not authorization or not compare_digest(
            authorization.lower().encode("utf-8"), self._expected_authorization.encode("utf-8")
        ):
            raise WebhookVerificationError("Invalid webhook authorization")

        try:
            body = json.loads(raw_body)
        except ValueError as exc:
            raise WebhookPayloadError("Webhook body is not valid JSON") from exc
        if not isinstance(body, dict):
            raise WebhookPayloadError("Webhook body is not an object")

        payload = body.get("payload")
        if not isinstance(payload, dict):
            payload = {}
        event_type = str(body.get("event") or body.get("type") or "")
        state = payload.get("state")
        merchant_order_id = payload.get("originalMerchantOrderId") or payload.get("merchantOrderId")
        details = _parse_payment_details(payload.get("paymentDetails"))

        return WebhookEvent(
            gateway=self.gateway_name,
            event_type=event_type,
            outcome=outcome_for_phonepe_event(event_type, state),
            merchant_order_id=str(merchant_order_id) if merchant_order_id else None,
            payment_id=next((detail.transaction_id for detail in details if detail.transaction_id), None),
            state=str(state) if state else None,
        )


def _parse_payment_details(raw: Any) -> tuple[GatewayPaymentDetail, ...]:
    if not isinstance(raw, list):
        return ()
    details = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        transaction_id = item.get("transactionId")
        details.append(
            GatewayPaymentDetail(
                transaction_id=str(transaction_id) if transaction_id else None,
                state=item.get("state"),
                payment_mode=item.get("paymentMode"),
            )
        )
    return tuple(details)


__all__ = ["PhonePeGateway", "PhonePeWebhookVerifier"]

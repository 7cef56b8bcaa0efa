"""Order creation and client-facing payment status."""

import logging
from typing import Any
from urllib.parse import urlencode

from recolor.adapters.gateway import GatewayQueryError, PaymentGateway
from recolor.core.config import Settings
from recolor.core.logging_safety import safe_log_identifier, tracking_field_names
from recolor.errors import ApiError, not_found
from recolor.repositories.memory import InMemoryStore
from recolor.schemas.auth import AuthPrincipal
from recolor.schemas.order import CreateOrderResponse, OrderStatus, PaymentStatusResponse
from recolor.services.reconciliation import ReconciliationService

logger = logging.getLogger(__name__)


class OrderService:
    def __init__(self, store: InMemoryStore, gateway: PaymentGateway, settings: Settings) -> None:
        self._store = store
        self._gateway = gateway
        self._settings = settings

    def create_order(
        self,
        *,
        job_id: str,
        principal: AuthPrincipal | None,
        tracking: dict[str, Any],
    ) -> CreateOrderResponse:
        job = self._store.get_job(job_id)
        if job is None:
            raise not_found()
        if job.is_paid:
            raise ApiError(status_code=409, code="JOB_ALREADY_PAID", message="This image has already been paid for")

        user_id = principal.user_id if principal is not None else None
        order = self._store.create_order(
            amount=self._settings.single_image_price_paise,
            currency=self._settings.currency,
            job_id=job.id,
            user_id=user_id,
            metadata={"tracking": tracking},
        )

        base_url = self._settings.app_base_url.rstrip("/")
        return_url = f"{base_url}/payment/success?{urlencode({'order_id': order.id, 'job_id': job.id})}"
        try:
            gateway_order = self._gateway.create_order(
                order_id=order.id,
                amount=order.amount,
                return_url=return_url,
                notify_url=f"{base_url}/api/v1/payments/webhook",
                expire_after=self._settings.order_expiry_seconds,
                note=f"Colorize image {job.id}",
                customer_id=user_id,
            )
        except (GatewayQueryError, ValueError) as exc:
            logger.warning(
                "order.gateway_failed order_id=%s job_id=%s code=GATEWAY_ORDER_FAILED reason=%s",
                order.id,
                job.id,
                exc,
            )
            raise ApiError(
                status_code=502,
                code="GATEWAY_ORDER_FAILED",
                message="Failed to create payment order",
            ) from exc

        if not gateway_order.gateway_order_id:
            logger.warning(
                "order.gateway_failed order_id=%s job_id=%s code=GATEWAY_ORDER_FAILED reason=missing_gateway_order_id",
                order.id,
                job.id,
            )
            raise ApiError(
                status_code=502,
                code="GATEWAY_ORDER_FAILED",
                message="Failed to create payment order",
            )

        self._store.attach_gateway_order(order_id=order.id, gateway_order_id=gateway_order.gateway_order_id)
        logger.info(
            "order.created order_id=%s job_id=%s user_id=%s amount=%s tracking=%s",
            order.id,
            job.id,
            safe_log_identifier(user_id, prefix="uid"),
            order.amount,
            tracking_field_names(order.metadata),
        )
        return CreateOrderResponse(
            order_id=order.id,
            redirect_url=gateway_order.redirect_url,
            amount=order.amount,
            currency=order.currency,
            state=gateway_order.state,
            expire_at=gateway_order.expire_at,
        )

    def get_payment_status(self, *, order_id: str, principal: AuthPrincipal | None) -> PaymentStatusResponse:
        """Reconcile on read and report the resulting local status."""
        order = self._store.get_order(order_id)
        # Owned orders are invisible to everyone else, including anonymous callers.
        if order is None or (order.user_id is not None and (principal is None or principal.user_id != order.user_id)):
            raise not_found()

        result = ReconciliationService(self._store, self._gateway).reconcile(order.id)
        status = result.order.status
        paid = status is OrderStatus.PAID
        return PaymentStatusResponse(
            success=paid,
            order_id=result.order.id,
            amount=result.order.amount if paid else 0,
            status=status,
            job_id=result.job_id,
            message="Payment successful" if paid else f"Payment {status.value.lower()}",
        )

"""Payment routes.

Handlers that may call the gateway are plain ``def`` so FastAPI runs their
blocking HTTP calls in its threadpool.
"""

import time
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query, Request, status

from recolor.adapters.gateway import WebhookVerifier
from recolor.routes.dependencies import (
    get_cashfree_webhook_verifier,
    get_job_payment_service,
    get_optional_principal,
    get_order_service,
    get_phonepe_webhook_verifier,
    get_reconciliation_service,
    get_request_correlation_id,
)
from recolor.schemas.auth import AuthPrincipal
from recolor.schemas.error import (
    ErrorResponse,
    GatewayOrderError,
    JobAlreadyPaidError,
    NoLeakNotFoundError,
    PaymentNotCompletedError,
    ValidationErrorResponse,
)
from recolor.schemas.order import (
    CreateOrderRequest,
    CreateOrderResponse,
    PaymentStatusResponse,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
    WebhookAckResponse,
)
from recolor.services.job_payments import JobPaymentService
from recolor.services.orders import OrderService
from recolor.services.reconciliation import ReconciliationService

router = APIRouter(prefix="/payments", tags=["Payments"])

_WEBHOOK_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: {"model": ValidationErrorResponse},
    401: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


def _tracking_data(request: Request) -> dict[str, Any]:
    """Attribution fields captured on the order for ad conversion reporting."""
    headers = request.headers
    forwarded_for = headers.get("x-forwarded-for")
    client_ip = (
        (forwarded_for.split(",")[0].strip() if forwarded_for else None)
        or headers.get("x-real-ip")
        or headers.get("cf-connecting-ip")
    )
    return {
        "clientIp": client_ip,
        "userAgent": headers.get("user-agent"),
        "referer": headers.get("referer"),
        "fbc": request.cookies.get("_fbc"),
        "fbp": request.cookies.get("_fbp"),
        "timestamp": int(time.time() * 1000),
    }


@router.post(
    "/orders",
    response_model=CreateOrderResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        401: {"model": ErrorResponse},
        404: {"model": NoLeakNotFoundError},
        409: {"model": JobAlreadyPaidError},
        502: {"model": GatewayOrderError},
    },
)
def create_order(
    request: Request,
    payload: CreateOrderRequest,
    principal: Annotated[AuthPrincipal | None, Depends(get_optional_principal)],
    service: Annotated[OrderService, Depends(get_order_service)],
) -> CreateOrderResponse:
    return service.create_order(job_id=payload.job_id, principal=principal, tracking=_tracking_data(request))


@router.get(
    "/status",
    response_model=PaymentStatusResponse,
    responses={401: {"model": ErrorResponse}, 404: {"model": NoLeakNotFoundError}},
)
def get_payment_status(
    order_id: Annotated[str, Query(min_length=1)],
    principal: Annotated[AuthPrincipal | None, Depends(get_optional_principal)],
    service: Annotated[OrderService, Depends(get_order_service)],
) -> PaymentStatusResponse:
    return service.get_payment_status(order_id=order_id, principal=principal)


@router.post("/webhook", response_model=WebhookAckResponse, responses=_WEBHOOK_RESPONSES)
async def phonepe_webhook(
    request: Request,
    correlation_id: Annotated[str, Depends(get_request_correlation_id)],
    verifier: Annotated[WebhookVerifier | None, Depends(get_phonepe_webhook_verifier)],
    service: Annotated[ReconciliationService, Depends(get_reconciliation_service)],
) -> WebhookAckResponse:
    service.handle_webhook(
        verifier=verifier,
        headers=request.headers,
        raw_body=await request.body(),
        correlation_id=correlation_id,
    )
    return WebhookAckResponse()


@router.post("/webhook/cashfree", response_model=WebhookAckResponse, responses=_WEBHOOK_RESPONSES)
async def cashfree_webhook(
    request: Request,
    correlation_id: Annotated[str, Depends(get_request_correlation_id)],
    verifier: Annotated[WebhookVerifier | None, Depends(get_cashfree_webhook_verifier)],
    service: Annotated[ReconciliationService, Depends(get_reconciliation_service)],
) -> WebhookAckResponse:
    service.handle_webhook(
        verifier=verifier,
        headers=request.headers,
        raw_body=await request.body(),
        correlation_id=correlation_id,
    )
    return WebhookAckResponse()


@router.post(
    "/verify",
    response_model=VerifyPaymentResponse,
    responses={
        400: {"model": ValidationErrorResponse},
        402: {"model": PaymentNotCompletedError},
        404: {"model": NoLeakNotFoundError},
    },
)
async def verify_payment(
    payload: VerifyPaymentRequest,
    service: Annotated[JobPaymentService, Depends(get_job_payment_service)],
) -> VerifyPaymentResponse:
    return service.confirm_job_paid(order_id=payload.order_id, job_id=payload.job_id)

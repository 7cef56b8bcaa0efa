"""Admin repair and search routes."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request, Security

from recolor.core.config import Settings
from recolor.errors import ApiError
from recolor.routes.dependencies import (
    admin_key_scheme,
    ensure_admin_key,
    get_admin_repair_service,
    get_settings,
    require_admin_key,
)
from recolor.schemas.admin import (
    FixPaymentError,
    FixPaymentRequest,
    FixPaymentResponse,
    SearchOrdersResponse,
)
from recolor.schemas.error import ErrorResponse, ValidationErrorResponse
from recolor.services.admin_repair import AdminRepairService

router = APIRouter(prefix="/admin", tags=["Admin"])


@router.post(
    "/fix-payment",
    response_model=FixPaymentResponse,
    responses={401: {"model": ErrorResponse}},
)
async def fix_payment(
    request: Request,
    settings: Annotated[Settings, Depends(get_settings)],
    service: Annotated[AdminRepairService, Depends(get_admin_repair_service)],
    header_key: Annotated[str | None, Security(admin_key_scheme)],
    payload: FixPaymentRequest | None = None,
) -> FixPaymentResponse:
    body = payload or FixPaymentRequest()
    # Older tooling sends the key in the body instead of X-Admin-Key.
    ensure_admin_key(request, settings, header_key or body.admin_key)

    report = service.repair(body.order_id)
    return FixPaymentResponse(
        success=True,
        message=f"Fixed {report.fixed_count} order(s)",
        fixed_count=report.fixed_count,
        fixed_orders=report.fixed_orders,
        errors=[
            FixPaymentError(
                order_id=failure.order_id,
                reason=failure.reason.value,
                error=failure.error or failure.reason.value,
            )
            for failure in report.failures
            if failure.reason is not None
        ],
    )


@router.get(
    "/search-orders",
    response_model=SearchOrdersResponse,
    responses={400: {"model": ValidationErrorResponse}, 401: {"model": ErrorResponse}},
)
async def search_orders(
    _: Annotated[None, Depends(require_admin_key)],
    service: Annotated[AdminRepairService, Depends(get_admin_repair_service)],
    order_id: Annotated[str | None, Query(alias="orderId")] = None,
    gateway_order_id: Annotated[str | None, Query(alias="gatewayOrderId")] = None,
) -> SearchOrdersResponse:
    if not order_id and not gateway_order_id:
        raise ApiError(
            status_code=400,
            code="VALIDATION_ERROR",
            message="Either orderId or gatewayOrderId is required",
        )

    results = service.search_orders(order_id=order_id, gateway_order_id=gateway_order_id)
    return SearchOrdersResponse(success=True, count=len(results), results=results)

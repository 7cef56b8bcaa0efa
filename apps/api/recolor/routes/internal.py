"""Internal scheduler routes."""

from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, Depends

from recolor.core.config import Settings
from recolor.routes.dependencies import get_reconciliation_service, get_settings, require_cron_secret
from recolor.schemas.admin import ReconcileSweepResponse, ReconcileSweepSummary
from recolor.schemas.error import ErrorResponse
from recolor.services.reconciliation import ReconciliationService

router = APIRouter(prefix="/internal", tags=["Internal"])


@router.api_route(
    "/reconcile-payments",
    methods=["GET", "POST"],
    response_model=ReconcileSweepResponse,
    responses={401: {"model": ErrorResponse}},
)
def reconcile_payments(
    __: Annotated[None, Depends(require_cron_secret)],
    settings: Annotated[Settings, Depends(get_settings)],
    service: Annotated[ReconciliationService, Depends(get_reconciliation_service)],
) -> ReconcileSweepResponse:
    summary = service.reconcile_pending_orders(
        min_age_seconds=settings.reconcile_min_age_seconds,
        limit=settings.reconcile_sweep_limit,
    )
    return ReconcileSweepResponse(
        success=True,
        summary=ReconcileSweepSummary(
            checked=summary.checked,
            successful=summary.successful,
            failed=summary.failed,
            still_pending=summary.still_pending,
            errors=summary.errors,
            error_details=summary.error_details,
        ),
        timestamp=datetime.now(UTC),
    )

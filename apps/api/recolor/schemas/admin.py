"""Admin repair, search and sweep schemas."""

from datetime import datetime

from recolor.schemas.base import CamelModel
from recolor.schemas.job import JobStatus
from recolor.schemas.order import OrderStatus


class FixPaymentRequest(CamelModel):
    order_id: str | None = None
    admin_key: str | None = None


class FixPaymentError(CamelModel):
    order_id: str
    reason: str
    error: str


class FixPaymentResponse(CamelModel):
    success: bool
    message: str
    fixed_count: int
    fixed_orders: list[str]
    errors: list[FixPaymentError]


class OrderSearchResult(CamelModel):
    order_id: str
    gateway_order_id: str | None = None
    order_status: OrderStatus
    colored_image_url: str | None = None
    original_url: str
    job_status: JobStatus
    job_created_at: datetime
    is_paid: bool


class SearchOrdersResponse(CamelModel):
    success: bool
    count: int
    results: list[OrderSearchResult]


class ReconcileSweepSummary(CamelModel):
    checked: int
    successful: int
    failed: int
    still_pending: int
    errors: int
    error_details: list[str]


class ReconcileSweepResponse(CamelModel):
    success: bool
    summary: ReconcileSweepSummary
    timestamp: datetime

"""Order, transaction and payment API schemas."""

from enum import Enum
from typing import Literal

from pydantic import Field

from recolor.schemas.base import CamelModel


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class TransactionStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class TransactionType(str, Enum):
    IMAGE_PURCHASE = "IMAGE_PURCHASE"


class CreateOrderRequest(CamelModel):
    job_id: str = Field(min_length=1)


class CreateOrderResponse(CamelModel):
    order_id: str
    redirect_url: str
    amount: int
    currency: str
    state: str
    expire_at: str | None = None


class PaymentStatusResponse(CamelModel):
    success: bool
    order_id: str
    amount: int
    status: OrderStatus
    job_id: str | None = None
    message: str


class VerifyPaymentRequest(CamelModel):
    order_id: str = Field(min_length=1)
    job_id: str = Field(min_length=1)


class VerifyPaymentResponse(CamelModel):
    success: bool
    job_id: str
    is_paid: bool
    message: str


class WebhookAckResponse(CamelModel):
    status: Literal["success"] = "success"

"""API error response schemas."""

from typing import Any
from typing import Literal

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    code: str
    message: str
    details: dict[str, Any] | None = None


class NoLeakNotFoundError(BaseModel):
    code: Literal["RESOURCE_NOT_FOUND"]
    message: str


class ValidationErrorResponse(BaseModel):
    code: Literal["VALIDATION_ERROR"]
    message: str
    details: dict[str, Any] | None = None


class PaymentNotCompletedError(BaseModel):
    code: Literal["PAYMENT_NOT_COMPLETED"]
    message: str
    details: dict[str, Any] | None = None


class JobAlreadyPaidError(BaseModel):
    code: Literal["JOB_ALREADY_PAID"]
    message: str


class GatewayOrderError(BaseModel):
    code: Literal["GATEWAY_ORDER_FAILED"]
    message: str

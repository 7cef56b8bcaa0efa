"""Dependency wiring for routes."""

from __future__ import annotations

import logging
from secrets import compare_digest
from typing import Annotated
from uuid import uuid4

from fastapi import Depends, Request, Security
from fastapi.security import APIKeyHeader, HTTPAuthorizationCredentials, HTTPBearer

from recolor.adapters.auth import (
    AuthVerificationError,
    FirebaseTokenVerifier,
    MockTokenVerifier,
    TokenVerifier,
)
from recolor.adapters.gateway import (
    CashfreeWebhookVerifier,
    MockPaymentGateway,
    PaymentGateway,
    PhonePeGateway,
    PhonePeWebhookVerifier,
    WebhookVerifier,
)
from recolor.core.config import Settings
from recolor.core.logging_safety import safe_log_identifier
from recolor.errors import ApiError
from recolor.repositories.memory import InMemoryStore
from recolor.schemas.auth import AuthPrincipal
from recolor.services.admin_repair import AdminRepairService
from recolor.services.job_payments import JobPaymentService
from recolor.services.orders import OrderService
from recolor.services.reconciliation import ReconciliationService

bearer_scheme = HTTPBearer(auto_error=False, scheme_name="bearerAuth")
cron_bearer_scheme = HTTPBearer(auto_error=False, scheme_name="cronSecret")
admin_key_scheme = APIKeyHeader(
    name="X-Admin-Key",
    auto_error=False,
    scheme_name="adminRepairKey",
)
logger = logging.getLogger(__name__)


def _auth_error(message: str) -> ApiError:
    return ApiError(status_code=401, code="UNAUTHORIZED", message=message)


def _request_correlation_id(request: Request) -> str:
    existing = getattr(request.state, "correlation_id", None)
    if isinstance(existing, str) and existing:
        return existing

    correlation_id = request.headers.get("X-Correlation-Id")
    if correlation_id:
        request.state.correlation_id = correlation_id
        return correlation_id

    generated = f"req-{uuid4()}"
    request.state.correlation_id = generated
    return generated


def get_request_correlation_id(request: Request) -> str:
    return _request_correlation_id(request)


def build_payment_gateway(settings: Settings) -> PaymentGateway:
    if settings.payment_gateway == "mock":
        return MockPaymentGateway()
    return PhonePeGateway(
        client_id=settings.phonepe_client_id or "",
        client_secret=settings.phonepe_client_secret or "",
        client_version=settings.phonepe_client_version,
        environment=settings.phonepe_environment,
        timeout_seconds=settings.gateway_timeout_seconds,
    )


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request) -> InMemoryStore:
    return request.app.state.store


def get_gateway(request: Request) -> PaymentGateway:
    return request.app.state.gateway


def get_token_verifier(settings: Annotated[Settings, Depends(get_settings)]) -> TokenVerifier:
    """Resolve provider adapter from configuration."""
    if settings.auth_provider == "firebase":
        return FirebaseTokenVerifier(
            project_id=settings.firebase_project_id,
            audience=settings.firebase_audience,
        )
    return MockTokenVerifier()


async def get_optional_principal(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Security(bearer_scheme)],
    verifier: Annotated[TokenVerifier, Depends(get_token_verifier)],
) -> AuthPrincipal | None:
    """Resolve the buyer when a bearer token is sent; purchases may be anonymous."""
    if credentials is None:
        return None

    correlation_id = _request_correlation_id(request)
    safe_correlation_id = safe_log_identifier(correlation_id, prefix="cid")
    if credentials.scheme.lower() != "bearer" or not credentials.credentials:
        logger.warning(
            "auth.rejected correlation_id=%s method=%s path=%s reason=invalid_bearer",
            safe_correlation_id,
            request.method,
            request.url.path,
        )
        raise _auth_error("Invalid bearer token")

    try:
        principal = verifier.verify_token(credentials.credentials)
    except AuthVerificationError as exc:
        logger.warning(
            "auth.rejected correlation_id=%s method=%s path=%s reason=token_verification_failed",
            safe_correlation_id,
            request.method,
            request.url.path,
        )
        raise _auth_error(str(exc) or "Invalid bearer token") from exc

    logger.info(
        "auth.accepted correlation_id=%s method=%s path=%s principal_id=%s role=%s",
        safe_correlation_id,
        request.method,
        request.url.path,
        safe_log_identifier(principal.user_id, prefix="pid"),
        principal.role,
    )
    request.state.auth_principal = principal
    return principal


def ensure_admin_key(request: Request, settings: Settings, admin_key: str | None) -> None:
    """Constant-time admin key check; an unset key rejects every caller."""
    expected = settings.admin_repair_key
    if not expected or admin_key is None or not compare_digest(admin_key.encode("utf-8"), expected.encode("utf-8")):
        logger.warning(
            "admin.auth_rejected correlation_id=%s method=%s path=%s reason=invalid_admin_key",
            safe_log_identifier(_request_correlation_id(request), prefix="cid"),
            request.method,
            request.url.path,
        )
        raise _auth_error("Invalid admin key")


async def require_admin_key(
    request: Request,
    admin_key: Annotated[str | None, Security(admin_key_scheme)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> None:
    ensure_admin_key(request, settings, admin_key)


async def require_cron_secret(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Security(cron_bearer_scheme)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> None:
    """Validate the scheduler's bearer secret for internal endpoints."""
    expected = settings.cron_secret
    provided = credentials.credentials if credentials is not None else None
    if not expected or not provided or not compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        logger.warning(
            "cron.auth_rejected correlation_id=%s method=%s path=%s reason=invalid_cron_secret",
            safe_log_identifier(_request_correlation_id(request), prefix="cid"),
            request.method,
            request.url.path,
        )
        raise _auth_error("Invalid cron authentication")


def get_phonepe_webhook_verifier(settings: Annotated[Settings, Depends(get_settings)]) -> WebhookVerifier | None:
    if not settings.phonepe_webhook_username or not settings.phonepe_webhook_password:
        return None
    return PhonePeWebhookVerifier(
        username=settings.phonepe_webhook_username,
        password=settings.phonepe_webhook_password,
    )


def get_cashfree_webhook_verifier(settings: Annotated[Settings, Depends(get_settings)]) -> WebhookVerifier | None:
    if not settings.cashfree_webhook_secret:
        return None
    return CashfreeWebhookVerifier(secret_key=settings.cashfree_webhook_secret)


def get_reconciliation_service(
    store: Annotated[InMemoryStore, Depends(get_store)],
    gateway: Annotated[PaymentGateway, Depends(get_gateway)],
) -> ReconciliationService:
    return ReconciliationService(store, gateway)


def get_order_service(
    store: Annotated[InMemoryStore, Depends(get_store)],
    gateway: Annotated[PaymentGateway, Depends(get_gateway)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> OrderService:
    return OrderService(store, gateway, settings)


def get_job_payment_service(store: Annotated[InMemoryStore, Depends(get_store)]) -> JobPaymentService:
    return JobPaymentService(store)


def get_admin_repair_service(
    store: Annotated[InMemoryStore, Depends(get_store)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> AdminRepairService:
    return AdminRepairService(
        store,
        batch_limit=settings.admin_repair_batch_limit,
        search_limit=settings.admin_search_limit,
    )

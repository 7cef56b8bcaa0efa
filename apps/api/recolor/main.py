"""FastAPI application entrypoint.

Serve with ``uvicorn --factory recolor.main:create_app``.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from recolor.adapters.gateway import PaymentGateway
from recolor.core.config import Settings
from recolor.errors import ApiError
from recolor.repositories.memory import InMemoryStore
from recolor.routes import admin_router, internal_router, payments_router
from recolor.routes.dependencies import build_payment_gateway
from recolor.schemas.error import ErrorResponse

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    *,
    store: InMemoryStore | None = None,
    gateway: PaymentGateway | None = None,
) -> FastAPI:
    settings = settings or Settings()
    owns_gateway = gateway is None
    gateway = gateway or build_payment_gateway(settings)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        logger.info(
            "app.started payment_gateway=%s auth_provider=%s",
            settings.payment_gateway,
            settings.auth_provider,
        )
        yield
        if owns_gateway:
            gateway.close()

    app = FastAPI(title="Recolor Payments API", version="1.0.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.store = store or InMemoryStore()
    app.state.gateway = gateway

    @app.exception_handler(ApiError)
    async def handle_api_error(_, exc: ApiError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.payload.model_dump(mode="json", exclude_none=True),
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        fields = [".".join(str(part) for part in error.get("loc", ())) for error in exc.errors()]
        logger.info(
            "request.validation_failed method=%s path=%s fields=%s",
            request.method,
            request.url.path,
            ",".join(fields),
        )
        payload = ErrorResponse(
            code="VALIDATION_ERROR",
            message="Invalid request payload",
            details={"fields": fields},
        )
        return JSONResponse(status_code=400, content=payload.model_dump(mode="json"))

    api_prefix = "/api/v1"
    app.include_router(payments_router, prefix=api_prefix)
    app.include_router(admin_router, prefix=api_prefix)
    app.include_router(internal_router, prefix=api_prefix)

    return app

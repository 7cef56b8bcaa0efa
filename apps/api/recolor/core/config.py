"""Application configuration."""

from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables.

    Built once by ``create_app()`` and shared through ``app.state``; instances
    are immutable.
    """

    auth_provider: Literal["mock", "firebase"] = "firebase"
    firebase_project_id: str | None = None
    firebase_audience: str | None = None

    app_base_url: str = "http://localhost:3000"
    currency: str = "INR"
    single_image_price_paise: int = Field(default=4900, gt=0)
    order_expiry_seconds: int = Field(default=3600, ge=300, le=3600)

    payment_gateway: Literal["phonepe", "mock"] = "phonepe"
    phonepe_client_id: str | None = None
    phonepe_client_secret: str | None = None
    phonepe_client_version: str = "1"
    phonepe_environment: Literal["sandbox", "production"] = "sandbox"
    phonepe_webhook_username: str | None = None
    phonepe_webhook_password: str | None = None
    cashfree_webhook_secret: str | None = None
    gateway_timeout_seconds: float = Field(default=5.0, gt=0)

    admin_repair_key: str | None = None
    admin_repair_batch_limit: int = Field(default=100, ge=1, le=500)
    admin_search_limit: int = Field(default=100, ge=1, le=500)
    cron_secret: str | None = None
    reconcile_sweep_limit: int = Field(default=50, ge=1, le=500)
    reconcile_min_age_seconds: int = Field(default=120, ge=0)

    model_config = SettingsConfigDict(env_prefix="RECOLOR_", extra="ignore", frozen=True)

    @model_validator(mode="after")
    def _require_gateway_credentials(self) -> "Settings":
        if self.payment_gateway == "phonepe" and not (self.phonepe_client_id and self.phonepe_client_secret):
            raise ValueError("PhonePe gateway requires RECOLOR_PHONEPE_CLIENT_ID and RECOLOR_PHONEPE_CLIENT_SECRET")
        return self

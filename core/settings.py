"""
Payment-related settings using pydantic-settings v2 with nested env keys.

Every provider block is read from ``PAYMENT__<PROVIDER>__<FIELD>`` style keys,
e.g. ``PAYMENT__TABBY__SECRET_KEY`` or ``PAYMENT__WEBHOOK__ALLOW_UNSIGNED``.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field


class PaymentTimeouts(BaseModel):
    connect: float = 3.0
    read: float = 10.0
    write: float = 10.0
    total: float = 15.0


class PaymentRetry(BaseModel):
    # Only status queries retry, and only when the connection was never made
    max: int = 0
    base_backoff: float = 0.2


class WebhookSettings(BaseModel):
    # Accept webhooks for providers with no secret configured
    allow_unsigned: bool = False
    ip_allowlist: list[str] | None = None  # Optional IPs/CIDRs allowed to post webhooks
    # 仅在部署于可信反向代理之后时开启，否则 X-Forwarded-For 可被伪造
    trust_forwarded_for: bool = False


class HyperPaySettings(BaseModel):
    enabled: bool = True
    entity_id: str = ""
    access_token: str = ""
    base_url: str = "https://eu-test.oppwa.com"
    webhook_secret: Optional[str] = None
    supported_brands: list[str] = Field(
        default_factory=lambda: ["VISA", "MASTER", "MADA", "APPLEPAY", "STC_PAY"]
    )
    enable_3d_secure: bool = True


class TabbySettings(BaseModel):
    enabled: bool = True
    secret_key: str = ""
    public_key: str = ""
    merchant_code: str = ""
    base_url: str = "https://api.tabby.ai/api/v2"
    webhook_secret: Optional[str] = None
    min_amount: Decimal = Decimal("100")
    max_amount: Decimal = Decimal("5000")


class TamaraSettings(BaseModel):
    enabled: bool = True
    api_token: str = ""
    notification_token: Optional[str] = None
    base_url: str = "https://api-sandbox.tamara.co"
    country_code: str = "SA"
    payment_types: list[str] = Field(default_factory=lambda: ["PAY_BY_INSTALMENTS", "PAY_BY_LATER"])
    min_amount: Decimal = Decimal("100")
    max_amount: Decimal = Decimal("5000")


class PaymentSettings(BaseSettings):
    default_currency: str = "SAR"
    test_mode: bool = True
    timeout_minutes: int = 30
    # Public base URL used to build return, cancel and webhook URLs
    callback_base_url: str = "http://localhost:8000"

    timeouts: PaymentTimeouts = Field(default_factory=PaymentTimeouts)
    retry: PaymentRetry = Field(default_factory=PaymentRetry)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)

    hyperpay: HyperPaySettings = Field(default_factory=HyperPaySettings)
    tabby: TabbySettings = Field(default_factory=TabbySettings)
    tamara: TamaraSettings = Field(default_factory=TamaraSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PAYMENT__",
        case_sensitive=False,
        extra="ignore",
        env_nested_delimiter="__",
    )


payment_settings = PaymentSettings()

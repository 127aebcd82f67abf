"""
Payment-related settings using pydantic-settings v2 with nested env keys.

Each provider group is a frozen model: credentials and the sandbox flag are
read once at startup and never change for the lifetime of the process.
Examples: STRIPE__SECRET_KEY, MERCADOPAGO__ACCESS_TOKEN, PIX__PIX_KEY.
"""
from __future__ import annotations

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class PaymentTimeouts(BaseModel):
    connect: float = 1.0
    read: float = 5.0
    write: float = 5.0
    total: float = 10.0


class PaymentRetry(BaseModel):
    max: int = 2
    base_backoff: float = 0.2


class WebhookSettings(BaseModel):
    tolerance_seconds: int = 300


class GatewayConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    sandbox: bool = True


class StripeSettings(GatewayConfig):
    secret_key: Optional[str] = None
    publishable_key: Optional[str] = None
    webhook_secret: Optional[str] = None
    statement_descriptor: Optional[str] = None
    # Unconfirmed intents (client confirmation, 3-D Secure) stop blocking the order after this
    intent_expiry_minutes: int = 60


class MercadoPagoSettings(GatewayConfig):
    access_token: Optional[str] = None
    public_key: Optional[str] = None
    webhook_secret: Optional[str] = None
    api_base: str = "https://api.mercadopago.com"
    preference_expiry_minutes: int = 60


class PixSettings(GatewayConfig):
    pix_key: Optional[str] = None
    merchant_name: Optional[str] = None
    merchant_city: str = "SAO PAULO"
    webhook_secret: Optional[str] = None
    expiry_minutes: int = 30


class CashSettings(GatewayConfig):
    enabled: bool = True


class PaymentSettings(BaseSettings):
    currency: str = Field(default="BRL", validation_alias=AliasChoices("PAYMENT__CURRENCY", "currency"))
    # Global switch for simulate/test paths; each gateway also carries its own flag.
    sandbox: bool = Field(default=True, validation_alias=AliasChoices("PAYMENT__SANDBOX", "sandbox"))
    app_url: str = Field(default="http://localhost:3000", validation_alias=AliasChoices("PAYMENT__APP_URL", "app_url"))
    api_url: str = Field(default="http://localhost:8000", validation_alias=AliasChoices("PAYMENT__API_URL", "api_url"))
    expire_batch_size: int = Field(
        default=100, validation_alias=AliasChoices("PAYMENT__EXPIRE_BATCH_SIZE", "expire_batch_size")
    )

    timeouts: PaymentTimeouts = Field(default_factory=PaymentTimeouts)
    retry: PaymentRetry = Field(default_factory=PaymentRetry)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)

    stripe: StripeSettings = Field(default_factory=StripeSettings)
    mercadopago: MercadoPagoSettings = Field(default_factory=MercadoPagoSettings)
    pix: PixSettings = Field(default_factory=PixSettings)
    cash: CashSettings = Field(default_factory=CashSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        env_nested_delimiter="__",
    )


payment_settings = PaymentSettings()

"""
Payment DTOs (Pydantic v2) used at application boundaries.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.types import condecimal

from domain.payment.entity import OrderStatus, PaymentMethod, PaymentStatus

CARD_METHODS = frozenset({PaymentMethod.CREDIT_CARD, PaymentMethod.DEBIT_CARD})


# ---- Order domain (external, read-only views) ----

class CustomerView(BaseModel):
    user_id: str
    email: Optional[str] = None
    name: Optional[str] = None
    phone: Optional[str] = None


class RestaurantView(BaseModel):
    id: str
    name: str
    city: Optional[str] = None


class OrderView(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    total: Decimal
    status: OrderStatus
    customer: CustomerView
    restaurant: RestaurantView


class UserData(BaseModel):
    id: str
    email: Optional[str] = None
    name: Optional[str] = None
    phone: Optional[str] = None


# ---- Requests ----

class ProcessPayment(BaseModel):
    order_id: str
    method: PaymentMethod
    provider: Optional[str] = None
    # Client-side echo of the total; must match the order when present.
    amount: Optional[condecimal(gt=0, decimal_places=2)] = None  # type: ignore[valid-type]
    card_token: Optional[str] = None
    saved_card_id: Optional[str] = None
    security_code: Optional[str] = Field(default=None, repr=False)
    installments: int = Field(default=1, ge=1, le=12)
    # Card only: create the intent and let the client confirm it.
    client_confirmation: bool = False

    @field_validator("provider")
    @classmethod
    def _lower_provider(cls, v: Optional[str]) -> Optional[str]:
        return v.strip().lower() if v else v

    @model_validator(mode="after")
    def _card_source(self):
        if self.method in CARD_METHODS:
            if self.card_token and self.saved_card_id:
                raise ValueError("provide either card_token or saved_card_id, not both")
            if not (self.card_token or self.saved_card_id or self.client_confirmation):
                raise ValueError("card payments require card_token or saved_card_id")
        elif self.card_token or self.saved_card_id:
            raise ValueError(f"card data is not accepted for method '{self.method.value}'")
        return self


class PaymentData(BaseModel):
    """What an adapter receives besides the order and amount."""

    reference: str  # local payment id, echoed back by providers
    method: PaymentMethod
    card_token: Optional[str] = None
    saved_card_id: Optional[str] = None
    security_code: Optional[str] = Field(default=None, repr=False)
    installments: int = 1
    client_confirmation: bool = False
    description: Optional[str] = None


class RefundRequest(BaseModel):
    amount: Optional[condecimal(gt=0, decimal_places=2)] = None  # type: ignore[valid-type]
    reason: Optional[str] = None


class SaveCardRequest(BaseModel):
    card_token: str
    provider: Optional[str] = None
    set_as_default: bool = False


class CardIntentRequest(BaseModel):
    """Client-confirmed card payment: the client completes it with the returned secret."""

    order_id: str
    method: PaymentMethod = PaymentMethod.CREDIT_CARD


class WalletPreferenceRequest(BaseModel):
    order_id: str


# ---- Adapter results ----

class PaymentResult(BaseModel):
    """Normalized outcome of an adapter call.

    `success` is False only for a rejected payment; a timeout is PROCESSING.
    """

    success: bool
    status: PaymentStatus
    external_id: Optional[str] = None
    provider_status: Optional[str] = None
    redirect_url: Optional[str] = None
    client_secret: Optional[str] = None
    qr_payload: Optional[str] = None
    expires_at: Optional[datetime] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class WebhookResult(BaseModel):
    """A verified, normalized webhook event. Never persisted."""

    provider: str
    event_id: Optional[str] = None
    event_type: Optional[str] = None
    external_id: Optional[str] = None
    reference: Optional[str] = None
    status: Optional[PaymentStatus] = None
    provider_status: Optional[str] = None
    # settled amount, when the provider reports one
    amount: Optional[Decimal] = None
    # a rejection the buyer can still retry on the same intent or preference
    retryable: bool = False


class RefundResult(BaseModel):
    success: bool
    refund_id: Optional[str] = None
    amount: Optional[Decimal] = None
    provider_status: Optional[str] = None
    error: Optional[str] = None


# ---- Responses ----

class PaymentOutcome(BaseModel):
    payment_id: str
    order_id: str
    provider: str
    method: PaymentMethod
    status: PaymentStatus
    success: bool
    amount: Decimal
    external_id: Optional[str] = None
    redirect_url: Optional[str] = None
    client_secret: Optional[str] = None
    qr_payload: Optional[str] = None
    expires_at: Optional[datetime] = None
    error: Optional[str] = None
    error_code: Optional[str] = None


class PaymentView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    order_id: str
    method: PaymentMethod
    provider: str
    status: PaymentStatus
    amount: Decimal
    currency: str
    external_id: Optional[str] = None
    redirect_url: Optional[str] = None
    qr_payload: Optional[str] = None
    expires_at: Optional[datetime] = None
    error: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class WebhookOutcome(BaseModel):
    provider: str
    action: str
    payment_id: Optional[str] = None
    status: Optional[PaymentStatus] = None
    # one outcome per event when a notification carries several
    entries: list[WebhookOutcome] = Field(default_factory=list)


class SavedCardView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    provider: str
    brand: Optional[str] = None
    last_four_digits: str
    expiration_month: int
    expiration_year: int
    cardholder_name: Optional[str] = None
    is_default: bool = False


class GatewayStatus(BaseModel):
    name: str
    display_name: str
    configured: bool
    enabled: bool
    sandbox: bool
    features: list[str]


class AvailableMethod(BaseModel):
    method: PaymentMethod
    providers: list[str]

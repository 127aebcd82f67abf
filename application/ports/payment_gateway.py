"""
Payment gateway port (application/ports) exposing a replaceable protocol.

Application depends on these Protocols; infrastructure implements adapters.
The card vault is a separate capability: callers check
`isinstance(adapter, CardVault)` instead of relying on inheritance.
"""
from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Mapping, Optional, Protocol, runtime_checkable

from application.dtos.payments import (
    AvailableMethod,
    GatewayStatus,
    OrderView,
    PaymentData,
    PaymentResult,
    RefundResult,
    UserData,
    WebhookResult,
)
from domain.payment.entity import Payment, PaymentMethod, PaymentStatus, SavedCard


class ProviderName(str, Enum):
    STRIPE = "stripe"
    MERCADOPAGO = "mercadopago"
    PIX = "pix"
    CASH = "cash"


class PaymentFeature(str, Enum):
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"
    WALLET = "wallet"
    PIX = "pix"
    CASH = "cash"
    SAVED_CARDS = "saved_cards"
    REFUNDS = "refunds"
    INSTALLMENTS = "installments"
    MANUAL_CONFIRMATION = "manual_confirmation"
    WEBHOOKS = "webhooks"


@runtime_checkable
class PaymentGateway(Protocol):
    """Gateway protocol for third-party payment providers."""

    name: str
    display_name: str
    supported_methods: frozenset[PaymentMethod]

    @property
    def sandbox(self) -> bool: ...

    def is_configured(self) -> bool: ...

    async def is_enabled(self) -> bool: ...

    async def create_payment(self, order: OrderView, amount: Decimal, data: PaymentData) -> PaymentResult: ...

    async def process_webhook(self, payload: bytes, headers: Mapping[str, str]) -> list[WebhookResult]: ...

    async def refund(
        self, payment: Payment, amount: Optional[Decimal] = None, reason: Optional[str] = None
    ) -> RefundResult: ...

    def map_status(self, provider_status: Optional[str]) -> PaymentStatus: ...

    def translate_error(self, error: object) -> str: ...

    def supports_feature(self, feature: PaymentFeature) -> bool: ...

    def get_supported_features(self) -> list[PaymentFeature]: ...

    async def aclose(self) -> None: ...


@runtime_checkable
class CardVault(Protocol):
    """Optional saved-card capability."""

    async def get_or_create_customer(self, user: UserData) -> str: ...

    async def save_card(self, user: UserData, card_token: str, set_as_default: bool = False) -> SavedCard: ...

    async def delete_card(self, user: UserData, card_id: str) -> None: ...

    async def list_cards(self, user: UserData) -> list[SavedCard]: ...

    async def set_default_card(self, user: UserData, card_id: str) -> None: ...

    async def charge_with_saved_card(
        self, order: OrderView, amount: Decimal, card: SavedCard, data: PaymentData
    ) -> PaymentResult: ...

    def requires_cvv_for_saved_card(self) -> bool: ...


@runtime_checkable
class GatewayDirectory(Protocol):
    """What services need from the gateway registry."""

    def get(self, name: str) -> Optional[PaymentGateway]: ...

    async def select(self, method: PaymentMethod, preference: Optional[str] = None) -> Optional[PaymentGateway]: ...

    async def default_card_gateway(self) -> Optional[PaymentGateway]: ...

    def card_vault(self, name: str) -> Optional[CardVault]: ...

    async def available_methods(self) -> list[AvailableMethod]: ...

    async def status(self) -> list[GatewayStatus]: ...

"""
Cash on delivery: no provider behind it, confirmed manually by staff.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any

from application.dtos.payments import OrderView, PaymentData, PaymentResult
from application.ports.payment_gateway import PaymentFeature, ProviderName
from core.settings import CashSettings
from domain.payment.entity import PaymentMethod, PaymentStatus
from infrastructure.external.payments.base import BasePaymentClient


class CashClient(BasePaymentClient):
    name = ProviderName.CASH.value
    display_name = "Cash"
    supported_methods = frozenset({PaymentMethod.CASH})
    features = frozenset({PaymentFeature.CASH, PaymentFeature.MANUAL_CONFIRMATION})

    def __init__(self, config: CashSettings, **kwargs: Any) -> None:
        super().__init__(config, **kwargs)

    def is_configured(self) -> bool:
        return bool(self._config.enabled)

    async def _create_payment(self, order: OrderView, amount: Decimal, data: PaymentData) -> PaymentResult:
        return PaymentResult(success=True, status=PaymentStatus.PENDING, provider_status="pending")

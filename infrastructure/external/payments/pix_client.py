"""
Pix (Brazilian instant bank transfer) adapter.

The payload is generated locally by the BR Code codec, so creating a charge
needs no network call. Confirmation arrives either from the PSP webhook
(Bacen Pix API shape) or from a manual/admin confirmation.

Webhook authenticity: `x-webhook-signature: sha256=<hex>` is HMAC-SHA256
of the raw request body, keyed with the configured webhook secret.
"""
from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Optional

from application.dtos.payments import OrderView, PaymentData, PaymentResult, WebhookResult
from application.ports.payment_gateway import PaymentFeature, ProviderName
from core.logging_config import get_logger
from core.settings import PixSettings
from domain.payment.entity import PaymentMethod, PaymentStatus
from infrastructure.external.payments.base import BasePaymentClient
from infrastructure.external.payments.exceptions import PaymentSignatureError
from infrastructure.external.payments.pix_payload import build_payload, txid_from_reference


logger = get_logger(__name__)

SIGNATURE_HEADER = "x-webhook-signature"


class PixClient(BasePaymentClient):
    name = ProviderName.PIX.value
    display_name = "Pix"
    supported_methods = frozenset({PaymentMethod.PIX})
    features = frozenset({PaymentFeature.PIX, PaymentFeature.MANUAL_CONFIRMATION, PaymentFeature.WEBHOOKS})
    error_messages = {
        "expired": "The Pix code has expired. Please generate a new one.",
    }

    def __init__(self, config: PixSettings, **kwargs: Any) -> None:
        super().__init__(config, **kwargs)

    def is_configured(self) -> bool:
        return bool(self._config.pix_key)

    async def _create_payment(self, order: OrderView, amount: Decimal, data: PaymentData) -> PaymentResult:
        txid = txid_from_reference(data.reference)
        payload = build_payload(
            pix_key=self._config.pix_key,
            merchant_name=self._config.merchant_name or order.restaurant.name,
            merchant_city=order.restaurant.city or self._config.merchant_city,
            amount=amount,
            txid=txid,
        )
        expires_at = datetime.now(timezone.utc) + timedelta(minutes=self._config.expiry_minutes)
        return PaymentResult(
            success=True,
            status=PaymentStatus.PENDING,
            external_id=txid,
            provider_status="ATIVA",
            qr_payload=payload,
            expires_at=expires_at,
        )

    async def process_webhook(self, payload: bytes, headers: Mapping[str, str]) -> list[WebhookResult]:
        secret = self._require_secret(self._config.webhook_secret)
        signature = self._header(headers, SIGNATURE_HEADER) or ""
        if signature.lower().startswith("sha256="):
            signature = signature[len("sha256="):]
        self._verify_hmac(secret, payload, signature)

        try:
            body = json.loads(payload or b"{}")
        except ValueError as exc:
            raise PaymentSignatureError("Webhook body is not JSON", provider=self.name) from exc

        entries = body.get("pix") or []
        if len(entries) > 1:
            logger.info("pix_webhook_batch", count=len(entries))
        return [self._entry_result(entry) for entry in entries]

    def _entry_result(self, entry: Mapping[str, Any]) -> WebhookResult:
        # A Pix notification only exists for a settled transfer.
        provider_status = entry.get("status") or "CONCLUIDA"
        return WebhookResult(
            provider=self.name,
            event_id=entry.get("endToEndId"),
            event_type="pix",
            external_id=entry.get("txid"),
            status=self.map_status(provider_status),
            provider_status=provider_status,
            amount=self._parse_amount(entry.get("valor")),
        )

    def _parse_amount(self, value: Any) -> Optional[Decimal]:
        if value in (None, ""):
            return None
        try:
            return Decimal(str(value))
        except InvalidOperation as exc:
            raise PaymentSignatureError("Webhook entry has an invalid valor", provider=self.name) from exc

"""
Mercado Pago Checkout Pro adapter (wallet / redirect) over the REST API.

`create_payment` creates a checkout preference and returns its init point.
The buyer pays on Mercado Pago, so the final status only arrives by webhook.

Webhook authenticity:
- `x-signature: ts=<unix>,v1=<hex>` is HMAC-SHA256 over the manifest
  `id:<data.id>;request-id:<x-request-id>;ts:<ts>;` keyed with the webhook secret.
- The notification body carries no status. The payment is fetched from
  `/v1/payments/{id}`, an idempotent read that is retried.
"""
from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Mapping, Optional

import httpx

from application.dtos.payments import (
    OrderView,
    PaymentData,
    PaymentResult,
    RefundResult,
    WebhookResult,
)
from application.ports.payment_gateway import PaymentFeature, ProviderName
from core.logging_config import get_logger
from core.settings import MercadoPagoSettings
from domain.payment.entity import Payment, PaymentMethod, PaymentStatus
from infrastructure.external.payments.base import BasePaymentClient
from infrastructure.external.payments.exceptions import (
    PaymentProviderError,
    PaymentSignatureError,
)


logger = get_logger(__name__)


class MercadoPagoClient(BasePaymentClient):
    name = ProviderName.MERCADOPAGO.value
    display_name = "Mercado Pago"
    supported_methods = frozenset({PaymentMethod.WALLET})
    features = frozenset({PaymentFeature.WALLET, PaymentFeature.REFUNDS, PaymentFeature.WEBHOOKS})
    # status_detail -> friendly message
    error_messages = {
        "cc_rejected_insufficient_amount": "Insufficient funds. Please use another payment method.",
        "cc_rejected_bad_filled_security_code": "The security code is incorrect.",
        "cc_rejected_bad_filled_date": "The card expiration date is incorrect.",
        "cc_rejected_bad_filled_card_number": "The card number is incorrect.",
        "cc_rejected_call_for_authorize": "Your bank must authorize this payment. Please contact them.",
        "cc_rejected_card_disabled": "Your card is disabled. Please contact your bank.",
        "cc_rejected_duplicated_payment": "This payment was already made.",
        "cc_rejected_high_risk": "Your payment was declined. Please use another payment method.",
        "cc_rejected_max_attempts": "Too many attempts. Please use another card.",
        "cc_rejected_other_reason": "Your payment was declined. Please use another payment method.",
    }

    def __init__(
        self,
        config: MercadoPagoSettings,
        *,
        app_url: str = "http://localhost:3000",
        notification_url: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(config, **kwargs)
        self._app_url = app_url.rstrip("/")
        self._notification_url = notification_url

    def is_configured(self) -> bool:
        return bool(self._config.access_token)

    def _headers(self, idempotency_key: Optional[str] = None) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self._config.access_token}",
            "Content-Type": "application/json",
        }
        if idempotency_key:
            headers["X-Idempotency-Key"] = idempotency_key
        return headers

    def _url(self, path: str) -> str:
        return f"{self._config.api_base.rstrip('/')}{path}"

    async def _send(self, method: str, path: str, *, idempotency_key: Optional[str] = None, **kwargs: Any) -> dict:
        async with self.client() as http:
            response = await http.request(method, self._url(path), headers=self._headers(idempotency_key), **kwargs)
        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = {}
            raise PaymentProviderError(
                str(body.get("message") or f"Mercado Pago HTTP {response.status_code}"),
                provider=self.name,
                provider_code=str(body.get("error") or response.status_code),
                details={"status_code": response.status_code},
            )
        return response.json()

    async def _create_payment(self, order: OrderView, amount: Decimal, data: PaymentData) -> PaymentResult:
        back_url = f"{self._app_url}/orders/{order.id}"
        expires_at = datetime.now(timezone.utc) + timedelta(minutes=self._config.preference_expiry_minutes)
        body: dict[str, Any] = {
            "items": [
                {
                    "id": order.id,
                    "title": data.description or f"Order {order.id[:8]} - {order.restaurant.name}",
                    "quantity": 1,
                    "currency_id": self.currency,
                    "unit_price": float(amount),
                }
            ],
            "payer": {"email": order.customer.email, "name": order.customer.name},
            "external_reference": data.reference,
            "metadata": {"payment_id": data.reference, "order_id": order.id},
            "back_urls": {
                "success": f"{back_url}?status=success",
                "failure": f"{back_url}?status=failure",
                "pending": f"{back_url}?status=pending",
            },
            "auto_return": "approved",
            # Mercado Pago refuses payment after this, so local expiry cannot race a late approval
            "expires": True,
            "expiration_date_to": expires_at.isoformat(timespec="milliseconds"),
        }
        if self._notification_url:
            body["notification_url"] = self._notification_url

        preference = await self._send(
            "POST",
            "/checkout/preferences",
            idempotency_key=f"preference-{data.reference}",
            json=body,
        )
        redirect = preference.get("sandbox_init_point") if self.sandbox else preference.get("init_point")
        return PaymentResult(
            success=True,
            status=PaymentStatus.PENDING,
            redirect_url=redirect or preference.get("init_point"),
            expires_at=expires_at,
            metadata={"preference_id": preference.get("id")},
        )

    def _verify_signature(self, data_id: str, headers: Mapping[str, str]) -> None:
        secret = self._require_secret(self._config.webhook_secret)
        raw = self._header(headers, "x-signature")
        request_id = self._header(headers, "x-request-id") or ""
        if not raw:
            raise PaymentSignatureError("Missing x-signature header", provider=self.name)
        parts = dict(
            item.split("=", 1) for item in (p.strip() for p in raw.split(",")) if "=" in item
        )
        ts, v1 = parts.get("ts"), parts.get("v1")
        if not ts or not v1:
            raise PaymentSignatureError("Malformed x-signature header", provider=self.name)
        # Mercado Pago lowercases alphanumeric ids in the manifest
        manifest = f"id:{data_id.lower()};request-id:{request_id};ts:{ts};"
        self._verify_hmac(secret, manifest.encode("utf-8"), v1)

    async def process_webhook(self, payload: bytes, headers: Mapping[str, str]) -> list[WebhookResult]:
        try:
            body = json.loads(payload or b"{}")
        except ValueError as exc:
            raise PaymentSignatureError("Webhook body is not JSON", provider=self.name) from exc
        data_id = str((body.get("data") or {}).get("id") or "")
        if not data_id:
            raise PaymentSignatureError("Webhook body has no data.id", provider=self.name)
        self._verify_signature(data_id, headers)

        event_type = body.get("type") or body.get("topic")
        if event_type != "payment":
            return [WebhookResult(provider=self.name, event_id=str(body.get("id") or ""), event_type=event_type)]

        try:
            payment = await self._retry(lambda: self._send("GET", f"/v1/payments/{data_id}"))
        except httpx.HTTPError as exc:
            # surfaces as 502 so Mercado Pago redelivers
            raise PaymentProviderError(
                f"Could not fetch payment {data_id}", provider=self.name, provider_code="provider_unavailable"
            ) from exc
        provider_status = payment.get("status")
        return [
            WebhookResult(
                provider=self.name,
                event_id=str(body.get("id") or ""),
                event_type=event_type,
                external_id=str(payment.get("id") or data_id),
                reference=payment.get("external_reference"),
                status=self.map_status(provider_status),
                provider_status=provider_status,
                # the buyer may try another card on the same preference
                retryable=provider_status == "rejected",
            )
        ]

    async def refund(
        self, payment: Payment, amount: Optional[Decimal] = None, reason: Optional[str] = None
    ) -> RefundResult:
        if not payment.external_id:
            return RefundResult(success=False, error="Payment has not been completed on Mercado Pago")
        body = {"amount": float(amount)} if amount is not None else {}
        try:
            refund = await self._send(
                "POST",
                f"/v1/payments/{payment.external_id}/refunds",
                idempotency_key=f"refund-{payment.id}-{amount or 'full'}",
                json=body,
            )
        except (PaymentProviderError, httpx.HTTPError) as exc:
            logger.warning("mercadopago_refund_failed", payment_id=payment.id, error=str(exc))
            return RefundResult(success=False, error=self.translate_error(exc))
        return RefundResult(
            success=refund.get("status") in {"approved", "in_process"},
            refund_id=str(refund.get("id")),
            amount=Decimal(str(refund["amount"])) if refund.get("amount") is not None else amount,
            provider_status=refund.get("status"),
        )

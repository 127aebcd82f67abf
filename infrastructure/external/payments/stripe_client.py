"""
Stripe PaymentIntents adapter using the official stripe-python SDK.

Notes on SDK usage:
- Every call passes `api_key` explicitly, so no module-level key is set and
  several configurations can coexist in one process. Idempotency keys are
  supplied with the `idempotency_key` kwarg.
- The SDK is synchronous; calls run in a worker thread under the adapter
  timeout.
- Webhook verification uses `stripe.Webhook.construct_event` with the
  `Stripe-Signature` header.
- Also implements the saved-card vault (Customers + attached PaymentMethods).
"""
from __future__ import annotations

import asyncio
import json
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Mapping, Optional

import stripe

from application.dtos.payments import (
    OrderView,
    PaymentData,
    PaymentResult,
    RefundResult,
    UserData,
    WebhookResult,
)
from application.ports.payment_gateway import PaymentFeature, ProviderName
from core.logging_config import get_logger
from core.settings import StripeSettings
from domain.payment.entity import Payment, PaymentMethod, PaymentStatus, SavedCard
from domain.payment.exceptions import FeatureNotSupportedError, SavedCardNotFoundError
from domain.payment.repository import SavedCardRepository
from infrastructure.external.payments.base import BasePaymentClient
from infrastructure.external.payments.exceptions import (
    PaymentProviderError,
    PaymentSignatureError,
    PaymentTimeoutError,
)


logger = get_logger(__name__)

# event type -> unified status; anything else is acknowledged and ignored
WEBHOOK_EVENT_STATUS = {
    "payment_intent.succeeded": PaymentStatus.APPROVED,
    "payment_intent.payment_failed": PaymentStatus.REJECTED,
    "payment_intent.processing": PaymentStatus.PROCESSING,
    "payment_intent.canceled": PaymentStatus.REJECTED,
    "charge.refunded": PaymentStatus.REFUNDED,
}


class StripeClient(BasePaymentClient):
    name = ProviderName.STRIPE.value
    display_name = "Stripe"
    supported_methods = frozenset({PaymentMethod.CREDIT_CARD, PaymentMethod.DEBIT_CARD})
    error_messages = {
        "card_declined": "Your card was declined. Please use another card.",
        "generic_decline": "Your card was declined. Please use another card.",
        "insufficient_funds": "Insufficient funds. Please use another card.",
        "expired_card": "Your card has expired.",
        "incorrect_cvc": "The security code is incorrect.",
        "invalid_cvc": "The security code is invalid.",
        "incorrect_number": "The card number is incorrect.",
        "invalid_expiry_year": "The card expiration date is invalid.",
        "lost_card": "Your card was declined. Please contact your bank.",
        "stolen_card": "Your card was declined. Please contact your bank.",
        "processing_error": "An error occurred while processing your card. Please try again.",
        "authentication_required": "Your bank requires authentication. Please pay with the card details.",
        "rate_limit": "Too many attempts. Please wait a moment and try again.",
    }

    def __init__(
        self,
        config: StripeSettings,
        *,
        cards: Optional[SavedCardRepository] = None,
        app_url: str = "http://localhost:3000",
        webhook_tolerance: int = 300,
        **kwargs: Any,
    ) -> None:
        super().__init__(config, **kwargs)
        self._cards = cards
        self._app_url = app_url.rstrip("/")
        self._webhook_tolerance = webhook_tolerance
        features = {
            PaymentFeature.CREDIT_CARD,
            PaymentFeature.DEBIT_CARD,
            PaymentFeature.REFUNDS,
            PaymentFeature.WEBHOOKS,
        }
        if cards is not None:
            features.add(PaymentFeature.SAVED_CARDS)
        self.features = frozenset(features)

    def is_configured(self) -> bool:
        return bool(self._config.secret_key)

    async def _call(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run a sync SDK call off the event loop and normalize its errors."""
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(fn, *args, api_key=self._config.secret_key, **kwargs),
                timeout=self._timeouts_cfg["total"],
            )
        except asyncio.TimeoutError as exc:
            raise PaymentTimeoutError("Stripe did not respond in time", provider=self.name) from exc
        except stripe.APIConnectionError as exc:
            # The request may have reached Stripe; idempotency keys make a replay safe.
            raise PaymentTimeoutError(str(exc), provider=self.name) from exc
        except stripe.CardError:
            raise
        except stripe.StripeError as exc:
            raise PaymentProviderError(
                str(exc.user_message or exc),
                provider=self.name,
                provider_code=getattr(exc, "code", None),
            ) from exc

    async def _create_payment(self, order: OrderView, amount: Decimal, data: PaymentData) -> PaymentResult:
        if data.saved_card_id:
            card = await self._owned_card(order.customer.user_id, data.saved_card_id)
            return await self.charge_with_saved_card(order, amount, card, data)

        params: dict[str, Any] = {
            "amount": self._to_minor(amount, self.currency),
            "currency": self.currency.lower(),
            "metadata": {"payment_id": data.reference, "order_id": order.id},
            "description": data.description or f"Order {order.id}",
            "idempotency_key": f"payment-{data.reference}",
        }
        if self._config.statement_descriptor:
            params["statement_descriptor_suffix"] = self._config.statement_descriptor[:22]
        if data.client_confirmation:
            params["automatic_payment_methods"] = {"enabled": True}
        else:
            params.update(
                payment_method=data.card_token,
                confirm=True,
                payment_method_types=["card"],
                return_url=f"{self._app_url}/orders/{order.id}/payment",
            )
        return await self._confirm_intent(params, client_confirmation=data.client_confirmation)

    async def _confirm_intent(self, params: dict[str, Any], *, client_confirmation: bool = False) -> PaymentResult:
        try:
            pi = await self._call(stripe.PaymentIntent.create, **params)
        except stripe.CardError as exc:
            return self._declined(exc)

        provider_status = str(pi["status"])
        status = PaymentStatus.PENDING if client_confirmation else self.map_status(provider_status)
        next_action = pi.get("next_action") or {}
        redirect = (next_action.get("redirect_to_url") or {}).get("url")
        expires_at = None
        if status == PaymentStatus.PENDING:
            expires_at = datetime.now(timezone.utc) + timedelta(minutes=self._config.intent_expiry_minutes)
        return PaymentResult(
            success=status != PaymentStatus.REJECTED,
            status=status,
            external_id=str(pi["id"]),
            provider_status=provider_status,
            client_secret=pi.get("client_secret"),
            redirect_url=redirect,
            expires_at=expires_at,
            metadata={"latest_charge": pi.get("latest_charge")} if pi.get("latest_charge") else {},
        )

    def _declined(self, exc: "stripe.CardError") -> PaymentResult:
        code = getattr(exc, "decline_code", None) or getattr(exc, "code", None) or "card_declined"
        body = getattr(exc, "json_body", None) or {}
        intent = (body.get("error") or {}).get("payment_intent") or {}
        logger.info("stripe_card_declined", code=code, intent_id=intent.get("id"))
        return PaymentResult(
            success=False,
            status=PaymentStatus.REJECTED,
            external_id=intent.get("id"),
            provider_status=intent.get("status"),
            error=self.translate_error(code),
            error_code=code,
        )

    async def process_webhook(self, payload: bytes, headers: Mapping[str, str]) -> list[WebhookResult]:
        secret = self._require_secret(self._config.webhook_secret)
        sig = self._header(headers, "Stripe-Signature")
        if not sig:
            raise PaymentSignatureError("Missing Stripe-Signature header", provider=self.name)
        try:
            stripe.Webhook.construct_event(
                payload=payload,
                sig_header=sig,
                secret=secret,
                tolerance=self._webhook_tolerance,
            )
        except (stripe.SignatureVerificationError, ValueError) as exc:
            logger.warning("webhook_signature_invalid", provider=self.name, error=str(exc))
            raise PaymentSignatureError("Invalid Stripe signature", provider=self.name) from exc

        # verified above; read the plain body rather than SDK objects
        event = json.loads(payload)
        event_type = str(event["type"])
        obj = event["data"]["object"]
        status = WEBHOOK_EVENT_STATUS.get(event_type)
        if event_type == "charge.refunded":
            external_id = obj.get("payment_intent")
            provider_status = "refunded"
            if not obj.get("refunded"):
                # partial refund: the payment stays approved
                status = None
        else:
            external_id = obj.get("id")
            provider_status = obj.get("status")
        metadata = obj.get("metadata") or {}
        return [
            WebhookResult(
                provider=self.name,
                event_id=str(event["id"]),
                event_type=event_type,
                external_id=str(external_id) if external_id else None,
                reference=metadata.get("payment_id"),
                status=status,
                provider_status=provider_status,
                # a failed intent returns to requires_payment_method and can be confirmed again
                retryable=event_type == "payment_intent.payment_failed",
            )
        ]

    async def refund(
        self, payment: Payment, amount: Optional[Decimal] = None, reason: Optional[str] = None
    ) -> RefundResult:
        if not payment.external_id:
            return RefundResult(success=False, error="Payment has no Stripe reference")
        params: dict[str, Any] = {
            "payment_intent": payment.external_id,
            "metadata": {"payment_id": payment.id, "reason": reason or ""},
            "idempotency_key": f"refund-{payment.id}-{amount or 'full'}",
        }
        if amount is not None:
            params["amount"] = self._to_minor(amount, payment.currency)
        try:
            refund = await self._call(stripe.Refund.create, **params)
        except PaymentProviderError as exc:
            return RefundResult(success=False, error=self.translate_error(exc))
        return RefundResult(
            success=refund.get("status") in {"succeeded", "pending"},
            refund_id=str(refund["id"]),
            amount=Decimal(refund["amount"]) / 100 if refund.get("amount") is not None else amount,
            provider_status=refund.get("status"),
        )

    # ---- card vault ----

    def _store(self) -> SavedCardRepository:
        if self._cards is None:
            raise FeatureNotSupportedError(self.name, PaymentFeature.SAVED_CARDS.value)
        return self._cards

    async def _owned_card(self, user_id: str, card_id: str) -> SavedCard:
        card = await self._store().get(card_id)
        if card is None or card.user_id != user_id or card.provider != self.name:
            raise SavedCardNotFoundError(card_id)
        return card

    async def get_or_create_customer(self, user: UserData) -> str:
        store = self._store()
        customer_id = await store.get_customer_id(user.id, self.name)
        if customer_id:
            return customer_id
        customer = await self._call(
            stripe.Customer.create,
            email=user.email,
            name=user.name,
            phone=user.phone,
            metadata={"user_id": user.id},
            idempotency_key=f"customer-{user.id}",
        )
        customer_id = str(customer["id"])
        await store.save_customer_id(user.id, self.name, customer_id)
        self._log("stripe_customer_created", user_id=user.id, customer_id=customer_id)
        return customer_id

    async def save_card(self, user: UserData, card_token: str, set_as_default: bool = False) -> SavedCard:
        store = self._store()
        customer_id = await self.get_or_create_customer(user)
        pm = await self._call(stripe.PaymentMethod.attach, card_token, customer=customer_id)
        card_info = pm.get("card") or {}
        billing = pm.get("billing_details") or {}
        existing = await store.list_for_user(user.id, self.name)
        card = SavedCard(
            id=str(uuid.uuid4()),
            user_id=user.id,
            provider=self.name,
            gateway_customer_id=customer_id,
            gateway_card_id=str(pm["id"]),
            last_four_digits=str(card_info.get("last4", "")),
            expiration_month=int(card_info.get("exp_month") or 0),
            expiration_year=int(card_info.get("exp_year") or 0),
            brand=card_info.get("brand"),
            cardholder_name=billing.get("name"),
            is_default=False,
            created_at=datetime.now(timezone.utc),
        )
        card = await store.add(card)
        if set_as_default or not existing:
            await self._make_default(user, card)
            card.is_default = True
        self._log("card_saved", user_id=user.id, card_id=card.id, brand=card.brand)
        return card

    async def delete_card(self, user: UserData, card_id: str) -> None:
        store = self._store()
        card = await self._owned_card(user.id, card_id)
        await self._call(stripe.PaymentMethod.detach, card.gateway_card_id)
        await store.delete(card.id)
        if card.is_default:
            remaining = await store.list_for_user(user.id, self.name)
            if remaining:
                await self._make_default(user, remaining[0])
        self._log("card_deleted", user_id=user.id, card_id=card_id)

    async def list_cards(self, user: UserData) -> list[SavedCard]:
        return await self._store().list_for_user(user.id, self.name)

    async def set_default_card(self, user: UserData, card_id: str) -> None:
        card = await self._owned_card(user.id, card_id)
        await self._make_default(user, card)

    async def _make_default(self, user: UserData, card: SavedCard) -> None:
        await self._store().set_default(user.id, self.name, card.id)
        await self._call(
            stripe.Customer.modify,
            card.gateway_customer_id,
            invoice_settings={"default_payment_method": card.gateway_card_id},
        )

    async def charge_with_saved_card(
        self, order: OrderView, amount: Decimal, card: SavedCard, data: PaymentData
    ) -> PaymentResult:
        return await self._confirm_intent(
            {
                "amount": self._to_minor(amount, self.currency),
                "currency": self.currency.lower(),
                "customer": card.gateway_customer_id,
                "payment_method": card.gateway_card_id,
                "off_session": True,
                "confirm": True,
                "metadata": {"payment_id": data.reference, "order_id": order.id, "saved_card_id": card.id},
                "description": data.description or f"Order {order.id}",
                "idempotency_key": f"payment-{data.reference}",
            }
        )

    def requires_cvv_for_saved_card(self) -> bool:
        return False

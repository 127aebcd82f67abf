"""
Webhook reconciliation.

Adapters verify authenticity and normalize the event; this service locates the
local payment and applies the same transition rule as the orchestrator.
Redelivered and out-of-order events resolve to no-ops, so providers can retry
freely.
"""
from __future__ import annotations

from typing import Mapping, Optional

from application.dtos.payments import WebhookOutcome, WebhookResult
from application.ports.payment_gateway import GatewayDirectory, ProviderName
from application.services.payment_service import PaymentService
from core.logging_config import get_logger
from domain.payment.entity import Payment, PaymentStatus
from domain.payment.exceptions import InvariantViolationError, UnsupportedMethodError
from domain.payment.repository import PaymentRepository


logger = get_logger(__name__)


class WebhookService:
    def __init__(
        self,
        *,
        payments: PaymentRepository,
        gateways: GatewayDirectory,
        orchestrator: PaymentService,
    ) -> None:
        self.payments = payments
        self.gateways = gateways
        self.orchestrator = orchestrator

    async def handle_webhook(self, provider: str, payload: bytes, headers: Mapping[str, str]) -> WebhookOutcome:
        gateway = self.gateways.get(provider)
        if gateway is None:
            raise UnsupportedMethodError("webhook", provider=provider)

        # signature and configuration errors propagate untouched
        events = await gateway.process_webhook(payload, headers)
        if not events:
            return WebhookOutcome(provider=gateway.name, action="ignored")

        outcomes: list[WebhookOutcome] = []
        violation: Optional[InvariantViolationError] = None
        for event in events:
            try:
                outcomes.append(await self._reconcile(gateway.name, event))
            except InvariantViolationError as exc:
                # the rest of the batch is still applied; redelivery is idempotent per event
                violation = violation or exc
        if violation is not None:
            raise violation

        if len(outcomes) == 1:
            return outcomes[0]
        return WebhookOutcome(provider=gateway.name, action="batch", entries=outcomes)

    async def _reconcile(self, provider: str, event: WebhookResult) -> WebhookOutcome:
        logger.info(
            "webhook_received",
            provider=provider,
            event_id=event.event_id,
            event_type=event.event_type,
            status=event.status.value if event.status else None,
        )
        if event.status is None:
            return WebhookOutcome(provider=provider, action="ignored")

        payment = await self._locate(provider, event)
        if payment is None:
            logger.warning(
                "webhook_unknown_payment",
                provider=provider,
                event_id=event.event_id,
                external_id=event.external_id,
                reference=event.reference,
            )
            return WebhookOutcome(provider=provider, action="unknown_payment", status=event.status)

        if (
            event.status == PaymentStatus.APPROVED
            and event.amount is not None
            and event.amount != payment.amount
        ):
            logger.error(
                "webhook_amount_mismatch",
                provider=provider,
                event_id=event.event_id,
                payment_id=payment.id,
                expected=str(payment.amount),
                received=str(event.amount),
            )
            return WebhookOutcome(
                provider=provider, action="amount_mismatch", payment_id=payment.id, status=payment.status
            )

        target = event.status
        changes = {}
        if self._attempt_can_be_retried(payment, event):
            # the buyer still holds the checkout; only the attempt failed
            logger.info(
                "webhook_attempt_failed",
                provider=provider,
                event_id=event.event_id,
                payment_id=payment.id,
                provider_status=event.provider_status,
            )
            target = payment.status
            if event.provider_status and event.provider_status != payment.provider_status:
                changes["provider_status"] = event.provider_status
        else:
            if event.external_id and not payment.external_id:
                changes["external_id"] = event.external_id
            if event.status != payment.status and event.provider_status:
                changes["provider_status"] = event.provider_status

        try:
            outcome = await self.orchestrator.apply_transition(payment, target, **changes)
        except InvariantViolationError:
            logger.error(
                "webhook_invariant_violation",
                provider=provider,
                event_id=event.event_id,
                payment_id=payment.id,
                current=payment.status.value,
                target=target.value,
            )
            raise

        if (
            outcome.action == "noop"
            and event.status == PaymentStatus.APPROVED
            and outcome.payment.is_terminal
        ):
            # money moved for a payment we already closed; needs a human
            logger.error(
                "webhook_approval_for_terminal_payment",
                provider=provider,
                event_id=event.event_id,
                payment_id=payment.id,
                status=outcome.payment.status.value,
            )

        return WebhookOutcome(
            provider=provider,
            action=outcome.action,
            payment_id=outcome.payment.id,
            status=outcome.payment.status,
        )

    @staticmethod
    def _attempt_can_be_retried(payment: Payment, event: WebhookResult) -> bool:
        """A rejected attempt leaves a PENDING payment open until its own expiry."""
        return (
            event.retryable
            and event.status == PaymentStatus.REJECTED
            and payment.status == PaymentStatus.PENDING
            and not payment.is_expired()
        )
    async def _locate(self, provider: str, event: WebhookResult) -> Optional[Payment]:
        if event.external_id:
            payment = await self.payments.get_by_external_id(provider, event.external_id)
            if payment is not None:
                return payment
        if event.reference:
            payment = await self.payments.get_by_id(event.reference)
            if payment is not None and payment.provider == provider:
                return payment
        return None

    async def handle_stripe_webhook(self, payload: bytes, signature: Optional[str]) -> WebhookOutcome:
        headers = {"Stripe-Signature": signature} if signature else {}
        return await self.handle_webhook(ProviderName.STRIPE.value, payload, headers)

    async def handle_wallet_webhook(self, payload: bytes, headers: Mapping[str, str]) -> WebhookOutcome:
        return await self.handle_webhook(ProviderName.MERCADOPAGO.value, payload, headers)

    async def handle_pix_webhook(self, payload: bytes, signature: Optional[str]) -> WebhookOutcome:
        headers = {"x-webhook-signature": signature} if signature else {}
        return await self.handle_webhook(ProviderName.PIX.value, payload, headers)

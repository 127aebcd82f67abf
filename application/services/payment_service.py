"""
Application service orchestrating payment use-cases.

This class depends only on the application ports (PaymentGateway registry,
OrderPort) and the domain repository. Adapters are built by infrastructure and
injected from the composition root (API/tasks), keeping dependencies one-way.

The Payment row is persisted as PENDING before any provider call, so a crash
mid-call leaves an auditable record that the webhook can still resolve.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from application.dtos.payments import (
    CARD_METHODS,
    AvailableMethod,
    CardIntentRequest,
    GatewayStatus,
    OrderView,
    PaymentData,
    PaymentOutcome,
    PaymentResult,
    PaymentView,
    ProcessPayment,
    RefundRequest,
    SaveCardRequest,
    SavedCardView,
    UserData,
    WalletPreferenceRequest,
)
from application.ports.orders import OrderPort
from application.ports.payment_gateway import (
    CardVault,
    GatewayDirectory,
    PaymentFeature,
    PaymentGateway,
    ProviderName,
)
from core.logging_config import get_logger
from domain.common.exceptions import BusinessException
from domain.payment.entity import OrderStatus, Payment, PaymentMethod, PaymentStatus
from domain.payment.exceptions import (
    FeatureNotSupportedError,
    InvariantViolationError,
    OrderNotFoundError,
    PaymentInProgressError,
    PaymentNotFoundError,
    PaymentValidationError,
    RefundFailedError,
    SandboxOnlyError,
    SavedCardNotFoundError,
    UnsupportedMethodError,
)
from domain.payment.repository import PaymentRepository
from domain.payment.service import PaymentDomainService, TransitionOutcome


logger = get_logger(__name__)

INTERNAL_ERROR_CODE = "internal_error"


def _result_changes(result: PaymentResult, payment: Payment) -> dict:
    """Fields from an adapter result worth persisting; None never overwrites."""
    changes = {
        key: value
        for key, value in {
            "external_id": result.external_id,
            "provider_status": result.provider_status,
            "redirect_url": result.redirect_url,
            "qr_payload": result.qr_payload,
            "expires_at": result.expires_at,
            "error": result.error,
            "error_code": result.error_code,
        }.items()
        if value is not None
    }
    if result.metadata:
        changes["metadata"] = {**payment.metadata, **result.metadata}
    return changes


class PaymentService:
    def __init__(
        self,
        *,
        payments: PaymentRepository,
        orders: OrderPort,
        gateways: GatewayDirectory,
        currency: str = "BRL",
        sandbox: bool = True,
    ) -> None:
        self.payments = payments
        self.orders = orders
        self.gateways = gateways
        self.currency = currency
        self.sandbox = sandbox
        self._domain = PaymentDomainService(payments)

    # ---- process ----

    async def process_payment(self, request: ProcessPayment, user_id: str) -> PaymentOutcome:
        order = await self._owned_order(request.order_id, user_id)
        if order.status != OrderStatus.PENDING_PAYMENT:
            raise PaymentValidationError(
                f"Order is not awaiting payment (status: {order.status.value})",
                field="order_id",
                details={"order_status": order.status.value},
            )
        if request.amount is not None and Decimal(request.amount) != order.total:
            raise PaymentValidationError(
                "Amount does not match the order total",
                field="amount",
                details={"expected": str(order.total), "received": str(request.amount)},
            )

        gateway = await self.gateways.select(request.method, request.provider)
        if gateway is None:
            raise UnsupportedMethodError(request.method.value, provider=request.provider)

        if request.saved_card_id:
            await self._check_saved_card(gateway, user_id, request)

        payment = await self._open_payment(order, gateway, request.method)
        logger.info(
            "payment_created",
            payment_id=payment.id,
            order_id=order.id,
            provider=gateway.name,
            method=request.method.value,
            amount=str(payment.amount),
        )

        data = PaymentData(
            reference=payment.id,
            method=request.method,
            card_token=request.card_token,
            saved_card_id=request.saved_card_id,
            security_code=request.security_code,
            installments=request.installments,
            client_confirmation=request.client_confirmation,
        )
        try:
            result = await gateway.create_payment(order, order.total, data)
        except Exception as exc:
            # contract violation (bad config, validation); nothing reached the provider
            await self._domain.transition(
                payment,
                PaymentStatus.REJECTED,
                error=exc.message if isinstance(exc, PaymentValidationError) else "Payment could not be processed",
                error_code=exc.error_type if isinstance(exc, BusinessException) else INTERNAL_ERROR_CODE,
            )
            logger.error(
                "payment_adapter_failed",
                payment_id=payment.id,
                provider=gateway.name,
                error_type=type(exc).__name__,
                exc_info=not isinstance(exc, BusinessException),
            )
            raise

        outcome = await self.apply_transition(payment, result.status, **_result_changes(result, payment))
        logger.info(
            "payment_result",
            payment_id=payment.id,
            provider=gateway.name,
            status=outcome.payment.status.value,
            action=outcome.action,
            error_code=result.error_code,
        )
        return self._to_outcome(outcome.payment, client_secret=result.client_secret)

    async def create_card_intent(self, request: CardIntentRequest, user_id: str) -> PaymentOutcome:
        if request.method not in CARD_METHODS:
            raise PaymentValidationError("Card intents require a card method", field="method")
        return await self.process_payment(
            ProcessPayment(
                order_id=request.order_id,
                method=request.method,
                provider=ProviderName.STRIPE.value,
                client_confirmation=True,
            ),
            user_id,
        )

    async def create_wallet_preference(self, request: WalletPreferenceRequest, user_id: str) -> PaymentOutcome:
        return await self.process_payment(
            ProcessPayment(
                order_id=request.order_id,
                method=PaymentMethod.WALLET,
                provider=ProviderName.MERCADOPAGO.value,
            ),
            user_id,
        )

    async def _owned_order(self, order_id: str, user_id: str) -> OrderView:
        order = await self.orders.get_order_with_relations(order_id)
        # someone else's order reads as missing
        if order is None or order.customer.user_id != user_id:
            raise OrderNotFoundError(order_id)
        return order

    async def _check_saved_card(self, gateway: PaymentGateway, user_id: str, request: ProcessPayment) -> None:
        vault = self.gateways.card_vault(gateway.name)
        if vault is None:
            raise UnsupportedMethodError(request.method.value, provider=gateway.name)
        cards = await vault.list_cards(UserData(id=user_id))
        if not any(card.id == request.saved_card_id for card in cards):
            raise SavedCardNotFoundError(request.saved_card_id)
        if vault.requires_cvv_for_saved_card() and not request.security_code:
            raise PaymentValidationError("Security code is required for this card", field="security_code")

    async def _open_payment(self, order: OrderView, gateway: PaymentGateway, method: PaymentMethod) -> Payment:
        active = await self.payments.get_active_by_order(order.id)
        if active is not None:
            if not active.is_expired():
                raise PaymentInProgressError(order.id)
            outcome = await self.apply_transition(active, PaymentStatus.EXPIRED)
            if outcome.payment.is_active:
                raise PaymentInProgressError(order.id)

        now = datetime.now(timezone.utc)
        payment = Payment(
            id=str(uuid.uuid4()),
            order_id=order.id,
            method=method,
            provider=gateway.name,
            amount=order.total,
            currency=self.currency,
            created_at=now,
            updated_at=now,
        )
        # the repository's unique active-payment index settles concurrent requests
        return await self.payments.create(payment)

    # ---- shared transition + order side effects ----

    async def apply_transition(self, payment: Payment, target: PaymentStatus, **changes) -> TransitionOutcome:
        outcome = await self._domain.transition(payment, target, **changes)
        if outcome.applied:
            logger.info(
                "payment_status_changed",
                payment_id=payment.id,
                order_id=payment.order_id,
                previous=outcome.previous.value,
                status=outcome.payment.status.value,
            )
            await self._sync_order(outcome.payment)
        elif outcome.action in ("stale", "lost_race"):
            logger.info(
                "payment_transition_skipped",
                payment_id=payment.id,
                action=outcome.action,
                current=outcome.payment.status.value,
                target=target.value,
            )
        return outcome

    async def _sync_order(self, payment: Payment) -> None:
        if payment.status != PaymentStatus.APPROVED:
            return
        order = await self.orders.get_order_with_relations(payment.order_id)
        if order is None:
            logger.warning("order_missing_for_payment", payment_id=payment.id, order_id=payment.order_id)
            return
        if order.status != OrderStatus.PENDING_PAYMENT:
            logger.warning(
                "order_not_pending_on_approval",
                payment_id=payment.id,
                order_id=order.id,
                order_status=order.status.value,
            )
            return
        await self.orders.set_order_status(order.id, OrderStatus.CONFIRMED)
        logger.info("order_confirmed", order_id=order.id, payment_id=payment.id)

    # ---- manual / sandbox confirmation ----

    async def confirm_payment(self, payment_id: str) -> PaymentOutcome:
        """Staff confirmation for providers without automatic notification (pix, cash)."""
        payment = await self._get(payment_id)
        gateway = self.gateways.get(payment.provider)
        if gateway is None or not gateway.supports_feature(PaymentFeature.MANUAL_CONFIRMATION):
            raise FeatureNotSupportedError(payment.provider, PaymentFeature.MANUAL_CONFIRMATION.value)
        if payment.status == PaymentStatus.APPROVED:
            return self._to_outcome(payment)
        if payment.is_terminal:
            raise InvariantViolationError(payment.id, payment.status.value, PaymentStatus.APPROVED.value)

        outcome = await self.apply_transition(payment, PaymentStatus.APPROVED, provider_status="manual")
        logger.info("payment_confirmed_manually", payment_id=payment.id, provider=payment.provider)
        return self._to_outcome(outcome.payment)

    async def simulate_payment_confirmation(self, order_id: str) -> PaymentOutcome:
        if not self.sandbox:
            raise SandboxOnlyError()
        payment = await self.payments.get_active_by_order(order_id)
        if payment is None:
            raise PaymentNotFoundError()
        gateway = self.gateways.get(payment.provider)
        if gateway is None or not gateway.sandbox:
            raise SandboxOnlyError(payment.provider)

        outcome = await self.apply_transition(payment, PaymentStatus.APPROVED, provider_status="simulated")
        logger.info("payment_simulated", payment_id=payment.id, order_id=order_id, provider=payment.provider)
        return self._to_outcome(outcome.payment)

    # ---- refunds ----

    async def refund_payment(self, payment_id: str, request: Optional[RefundRequest] = None) -> PaymentOutcome:
        request = request or RefundRequest()
        payment = await self._get(payment_id)
        if payment.status == PaymentStatus.REFUNDED:
            return self._to_outcome(payment)
        if payment.status != PaymentStatus.APPROVED:
            raise InvariantViolationError(payment.id, payment.status.value, PaymentStatus.REFUNDED.value)

        gateway = self.gateways.get(payment.provider)
        if gateway is None or not gateway.supports_feature(PaymentFeature.REFUNDS):
            raise FeatureNotSupportedError(payment.provider, PaymentFeature.REFUNDS.value)

        amount = Decimal(request.amount) if request.amount is not None else None
        if amount is not None and amount > payment.amount:
            raise PaymentValidationError(
                "Refund amount exceeds the payment amount",
                field="amount",
                details={"payment_amount": str(payment.amount)},
            )

        result = await gateway.refund(payment, amount, request.reason)
        if not result.success:
            logger.warning("payment_refund_failed", payment_id=payment.id, provider=payment.provider, error=result.error)
            raise RefundFailedError(payment.id, result.error)

        refunds = list(payment.metadata.get("refunds", []))
        refunds.append({
            "refund_id": result.refund_id,
            "amount": str(result.amount if result.amount is not None else amount or payment.amount),
            "reason": request.reason,
        })
        metadata = {**payment.metadata, "refunds": refunds}

        if amount is None or amount == payment.amount:
            outcome = await self.apply_transition(
                payment, PaymentStatus.REFUNDED, provider_status=result.provider_status, metadata=metadata
            )
        else:
            # partial refund: still approved, only recorded
            outcome = await self._domain.transition(payment, PaymentStatus.APPROVED, metadata=metadata)
        logger.info(
            "payment_refunded",
            payment_id=payment.id,
            provider=payment.provider,
            refund_id=result.refund_id,
            partial=amount is not None and amount != payment.amount,
        )
        return self._to_outcome(outcome.payment)

    # ---- expiry ----

    async def expire_stale_payments(self, now: Optional[datetime] = None, limit: int = 100) -> int:
        now = now or datetime.now(timezone.utc)
        expired = 0
        for payment in await self.payments.list_expired_active(now, limit=limit):
            outcome = await self.apply_transition(payment, PaymentStatus.EXPIRED, provider_status="expired")
            if outcome.applied:
                expired += 1
        if expired:
            logger.info("payments_expired", count=expired)
        return expired

    # ---- queries ----

    async def get_payment(self, payment_id: str, user_id: str) -> PaymentView:
        payment = await self._get(payment_id)
        order = await self.orders.get_order_with_relations(payment.order_id)
        if order is None or order.customer.user_id != user_id:
            raise PaymentNotFoundError(payment_id)
        return PaymentView.model_validate(payment)

    async def get_available_payment_methods(self) -> list[AvailableMethod]:
        return await self.gateways.available_methods()

    async def get_gateway_status(self) -> list[GatewayStatus]:
        return await self.gateways.status()

    async def _get(self, payment_id: str) -> Payment:
        payment = await self.payments.get_by_id(payment_id)
        if payment is None:
            raise PaymentNotFoundError(payment_id)
        return payment

    # ---- saved cards ----

    async def _vault(self, provider: Optional[str]) -> CardVault:
        if provider:
            name = provider.lower()
        else:
            gateway = await self.gateways.default_card_gateway()
            if gateway is None:
                raise UnsupportedMethodError(PaymentMethod.CREDIT_CARD.value)
            name = gateway.name
        vault = self.gateways.card_vault(name)
        if vault is None:
            raise FeatureNotSupportedError(name, PaymentFeature.SAVED_CARDS.value)
        return vault

    async def list_saved_cards(self, user_id: str, provider: Optional[str] = None) -> list[SavedCardView]:
        vault = await self._vault(provider)
        cards = await vault.list_cards(UserData(id=user_id))
        return [SavedCardView.model_validate(card) for card in cards]

    async def save_card(self, user_id: str, request: SaveCardRequest) -> SavedCardView:
        vault = await self._vault(request.provider)
        card = await vault.save_card(UserData(id=user_id), request.card_token, request.set_as_default)
        return SavedCardView.model_validate(card)

    async def delete_saved_card(self, user_id: str, card_id: str, provider: Optional[str] = None) -> None:
        vault = await self._vault(provider)
        await vault.delete_card(UserData(id=user_id), card_id)

    async def set_default_card(self, user_id: str, card_id: str, provider: Optional[str] = None) -> None:
        vault = await self._vault(provider)
        await vault.set_default_card(UserData(id=user_id), card_id)

    @staticmethod
    def _to_outcome(payment: Payment, *, client_secret: Optional[str] = None) -> PaymentOutcome:
        return PaymentOutcome(
            payment_id=payment.id,
            order_id=payment.order_id,
            provider=payment.provider,
            method=payment.method,
            status=payment.status,
            success=payment.status != PaymentStatus.REJECTED,
            amount=payment.amount,
            external_id=payment.external_id,
            redirect_url=payment.redirect_url,
            client_secret=client_secret,
            qr_payload=payment.qr_payload,
            expires_at=payment.expires_at,
            error=payment.error,
            error_code=payment.error_code,
        )

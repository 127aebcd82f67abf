import hashlib
import hmac
import json
import time
from decimal import Decimal

import pytest

stripe = pytest.importorskip("stripe")

from application.dtos.payments import CustomerView, OrderView, PaymentData, RestaurantView
from core.settings import StripeSettings
from domain.payment.entity import OrderStatus, PaymentMethod, PaymentStatus
from infrastructure.external.payments.exceptions import PaymentSignatureError
from infrastructure.external.payments.stripe_client import StripeClient


WEBHOOK_SECRET = "whsec_test"


def _client(**kwargs):
    return StripeClient(StripeSettings(secret_key="sk_test_123", webhook_secret=WEBHOOK_SECRET), **kwargs)


def _sign(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp=None) -> str:
    ts = int(timestamp or time.time())
    mac = hmac.new(secret.encode(), f"{ts}.{payload.decode()}".encode(), hashlib.sha256).hexdigest()
    return f"t={ts},v1={mac}"


def _event(event_type: str, obj: dict) -> bytes:
    return json.dumps({"id": "evt_1", "type": event_type, "data": {"object": obj}}).encode()


def _order(total="49.90"):
    return OrderView(
        id="o-1",
        total=Decimal(total),
        status=OrderStatus.PENDING_PAYMENT,
        customer=CustomerView(user_id="user-1"),
        restaurant=RestaurantView(id="r-1", name="Cantina Boa"),
    )


@pytest.mark.asyncio
async def test_signed_succeeded_event():
    payload = _event(
        "payment_intent.succeeded",
        {"id": "pi_1", "status": "succeeded", "metadata": {"payment_id": "pay-1"}},
    )

    [event] = await _client().process_webhook(payload, {"Stripe-Signature": _sign(payload)})

    assert event.provider == "stripe"
    assert event.event_id == "evt_1"
    assert event.external_id == "pi_1"
    assert event.reference == "pay-1"
    assert event.status == PaymentStatus.APPROVED
    assert event.retryable is False


@pytest.mark.asyncio
async def test_failed_intent_is_a_retryable_rejection():
    payload = _event(
        "payment_intent.payment_failed",
        {"id": "pi_1", "status": "requires_payment_method", "metadata": {"payment_id": "pay-1"}},
    )

    [event] = await _client().process_webhook(payload, {"Stripe-Signature": _sign(payload)})

    assert event.status == PaymentStatus.REJECTED
    assert event.provider_status == "requires_payment_method"
    assert event.retryable is True


@pytest.mark.asyncio
async def test_partial_refund_event_carries_no_status():
    payload = _event("charge.refunded", {"id": "ch_1", "payment_intent": "pi_1", "refunded": False})
    [event] = await _client().process_webhook(payload, {"stripe-signature": _sign(payload)})
    assert event.external_id == "pi_1"
    assert event.status is None


@pytest.mark.asyncio
async def test_unhandled_event_type_is_ignored():
    payload = _event("customer.created", {"id": "cus_1"})
    [event] = await _client().process_webhook(payload, {"Stripe-Signature": _sign(payload)})
    assert event.status is None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "header",
    [
        None,
        "t=1,v1=abc",
        "wrong-secret",
        "too-old",
    ],
)
async def test_bad_signatures_are_refused(header):
    payload = _event("payment_intent.succeeded", {"id": "pi_1", "status": "succeeded"})
    if header == "wrong-secret":
        header = _sign(payload, secret="whsec_other")
    elif header == "too-old":
        header = _sign(payload, timestamp=time.time() - 3600)
    headers = {"Stripe-Signature": header} if header else {}

    with pytest.raises(PaymentSignatureError):
        await _client().process_webhook(payload, headers)


@pytest.mark.asyncio
async def test_create_confirms_intent_with_idempotency_key(monkeypatch):
    seen = {}

    def fake_create(**params):
        seen.update(params)
        return {"id": "pi_1", "status": "succeeded", "client_secret": "pi_1_secret", "latest_charge": "ch_1"}

    monkeypatch.setattr(stripe.PaymentIntent, "create", fake_create)

    result = await _client().create_payment(
        _order(), Decimal("49.90"), PaymentData(reference="pay-1", method=PaymentMethod.CREDIT_CARD, card_token="pm_x")
    )

    assert result.status == PaymentStatus.APPROVED
    assert result.external_id == "pi_1"
    assert result.expires_at is None
    assert seen["amount"] == 4990
    assert seen["currency"] == "brl"
    assert seen["idempotency_key"] == "payment-pay-1"
    assert seen["api_key"] == "sk_test_123"
    assert seen["confirm"] is True


@pytest.mark.asyncio
async def test_client_confirmation_leaves_intent_pending(monkeypatch):
    monkeypatch.setattr(
        stripe.PaymentIntent,
        "create",
        lambda **params: {"id": "pi_2", "status": "requires_payment_method", "client_secret": "pi_2_secret"},
    )

    result = await _client().create_payment(
        _order(),
        Decimal("49.90"),
        PaymentData(reference="pay-2", method=PaymentMethod.CREDIT_CARD, client_confirmation=True),
    )

    assert result.status == PaymentStatus.PENDING
    assert result.client_secret == "pi_2_secret"
    assert result.expires_at is not None


@pytest.mark.asyncio
async def test_card_decline_is_rejected(monkeypatch):
    def declined(**params):
        raise stripe.CardError("Your card was declined.", None, "card_declined")

    monkeypatch.setattr(stripe.PaymentIntent, "create", declined)

    result = await _client().create_payment(
        _order(), Decimal("49.90"), PaymentData(reference="pay-3", method=PaymentMethod.CREDIT_CARD, card_token="pm_x")
    )

    assert not result.success
    assert result.status == PaymentStatus.REJECTED
    assert result.error_code == "card_declined"
    assert result.error == "Your card was declined. Please use another card."


@pytest.mark.asyncio
async def test_connection_error_is_reported_as_processing(monkeypatch):
    def unreachable(**params):
        raise stripe.APIConnectionError("network down")

    monkeypatch.setattr(stripe.PaymentIntent, "create", unreachable)

    result = await _client().create_payment(
        _order(), Decimal("49.90"), PaymentData(reference="pay-4", method=PaymentMethod.CREDIT_CARD, card_token="pm_x")
    )

    assert result.status == PaymentStatus.PROCESSING
    assert result.error_code == "provider_timeout"

import json
from datetime import datetime, timedelta, timezone

import pytest

from application.dtos.payments import PaymentResult, ProcessPayment, WebhookResult
from domain.payment.entity import OrderStatus, PaymentMethod, PaymentStatus
from domain.payment.exceptions import FeatureNotSupportedError, InvariantViolationError, UnsupportedMethodError
from infrastructure.external.payments.exceptions import PaymentConfigurationError, PaymentSignatureError


USER = "user-1"


async def _pix_payment(service, orders, order_id="o-1", total="30.00"):
    orders.add(order_id, total)
    return await service.process_payment(ProcessPayment(order_id=order_id, method=PaymentMethod.PIX), USER)


async def _card_payment(service, orders, card_gateway, status, order_id="o-c", external_id="pi_1", **result):
    orders.add(order_id, "49.90")
    card_gateway.result = PaymentResult(
        success=status != PaymentStatus.REJECTED,
        status=status,
        external_id=external_id,
        provider_status="stub",
        **result,
    )
    return await service.process_payment(
        ProcessPayment(order_id=order_id, method=PaymentMethod.CREDIT_CARD, card_token="pm_card_visa"), USER
    )


@pytest.mark.asyncio
async def test_pix_webhook_approves_and_confirms_order(service, webhooks, orders, payments, sign_pix, pix_body):
    created = await _pix_payment(service, orders)
    body = pix_body(created.external_id)

    outcome = await webhooks.handle_pix_webhook(body, sign_pix(body))

    assert outcome.action == "applied"
    assert outcome.payment_id == created.payment_id
    assert outcome.status == PaymentStatus.APPROVED
    assert orders.orders["o-1"].status == OrderStatus.CONFIRMED
    stored = await payments.get_by_id(created.payment_id)
    assert stored.provider_status == "CONCLUIDA"


@pytest.mark.asyncio
async def test_redelivery_is_a_noop(service, webhooks, orders, payments, sign_pix, pix_body):
    created = await _pix_payment(service, orders)
    body = pix_body(created.external_id)
    await webhooks.handle_pix_webhook(body, sign_pix(body))
    first = await payments.get_by_id(created.payment_id)

    again = await webhooks.handle_pix_webhook(body, sign_pix(body))

    assert again.action == "noop"
    second = await payments.get_by_id(created.payment_id)
    assert second.updated_at == first.updated_at
    assert orders.status_calls.count(("o-1", OrderStatus.CONFIRMED)) == 1


@pytest.mark.asyncio
async def test_tampered_body_is_refused(service, webhooks, orders, payments, sign_pix, pix_body):
    created = await _pix_payment(service, orders)
    signature = sign_pix(pix_body(created.external_id))
    tampered = pix_body(created.external_id, value="0.01")

    with pytest.raises(PaymentSignatureError):
        await webhooks.handle_pix_webhook(tampered, signature)
    with pytest.raises(PaymentSignatureError):
        await webhooks.handle_pix_webhook(tampered, None)

    assert (await payments.get_by_id(created.payment_id)).status == PaymentStatus.PENDING


@pytest.mark.asyncio
async def test_unknown_txid_is_acknowledged(webhooks, sign_pix, pix_body):
    body = pix_body("doesnotexist000000000000000")

    outcome = await webhooks.handle_pix_webhook(body, sign_pix(body))

    assert outcome.action == "unknown_payment"
    assert outcome.payment_id is None


@pytest.mark.asyncio
async def test_empty_notification_is_ignored(webhooks, sign_pix):
    body = b'{"pix": []}'
    outcome = await webhooks.handle_pix_webhook(body, sign_pix(body))
    assert outcome.action == "ignored"


@pytest.mark.asyncio
async def test_unknown_provider(webhooks):
    with pytest.raises(UnsupportedMethodError):
        await webhooks.handle_webhook("paypal", b"{}", {})


@pytest.mark.asyncio
async def test_missing_secret_is_a_configuration_error(service, webhooks, orders, registry, pix_body):
    pix = registry.get("pix")
    pix._config = pix._config.model_copy(update={"webhook_secret": None})
    with pytest.raises(PaymentConfigurationError):
        await webhooks.handle_pix_webhook(pix_body("abc"), "sha256=00")


@pytest.mark.asyncio
async def test_out_of_order_event_is_stale(service, webhooks, orders, card_gateway, payments):
    created = await _card_payment(service, orders, card_gateway, PaymentStatus.PROCESSING)
    card_gateway.event = WebhookResult(
        provider="stripe", event_id="evt_1", external_id="pi_1", status=PaymentStatus.PENDING
    )

    outcome = await webhooks.handle_webhook("stripe", b"{}", {})

    assert outcome.action == "stale"
    assert (await payments.get_by_id(created.payment_id)).status == PaymentStatus.PROCESSING


@pytest.mark.asyncio
async def test_processing_then_approved(service, webhooks, orders, card_gateway):
    await _card_payment(service, orders, card_gateway, PaymentStatus.PROCESSING)
    card_gateway.event = WebhookResult(
        provider="stripe", event_id="evt_2", external_id="pi_1", status=PaymentStatus.APPROVED,
        provider_status="succeeded",
    )

    outcome = await webhooks.handle_webhook("stripe", b"{}", {})

    assert outcome.action == "applied"
    assert orders.orders["o-c"].status == OrderStatus.CONFIRMED


@pytest.mark.asyncio
async def test_illegal_transition_raises_without_change(service, webhooks, orders, card_gateway, payments):
    created = await _card_payment(service, orders, card_gateway, PaymentStatus.APPROVED)
    card_gateway.event = WebhookResult(
        provider="stripe", event_id="evt_3", external_id="pi_1", status=PaymentStatus.EXPIRED
    )

    with pytest.raises(InvariantViolationError):
        await webhooks.handle_webhook("stripe", b"{}", {})
    assert (await payments.get_by_id(created.payment_id)).status == PaymentStatus.APPROVED


@pytest.mark.asyncio
async def test_approval_after_rejection_is_a_noop(service, webhooks, orders, card_gateway, payments):
    created = await _card_payment(service, orders, card_gateway, PaymentStatus.REJECTED)
    card_gateway.event = WebhookResult(
        provider="stripe", event_id="evt_4", external_id="pi_1", status=PaymentStatus.APPROVED
    )

    outcome = await webhooks.handle_webhook("stripe", b"{}", {})

    assert outcome.action == "noop"
    assert (await payments.get_by_id(created.payment_id)).status == PaymentStatus.REJECTED
    assert orders.orders["o-c"].status == OrderStatus.PENDING_PAYMENT


@pytest.mark.asyncio
async def test_refund_event(service, webhooks, orders, card_gateway):
    await _card_payment(service, orders, card_gateway, PaymentStatus.APPROVED)
    card_gateway.event = WebhookResult(
        provider="stripe", event_id="evt_5", external_id="pi_1", status=PaymentStatus.REFUNDED,
        provider_status="refunded",
    )

    outcome = await webhooks.handle_webhook("stripe", b"{}", {})

    assert outcome.action == "applied"
    assert outcome.status == PaymentStatus.REFUNDED
    assert orders.orders["o-c"].status == OrderStatus.CONFIRMED


@pytest.mark.asyncio
async def test_lookup_by_reference_records_external_id(service, webhooks, orders, card_gateway, payments):
    created = await _card_payment(service, orders, card_gateway, PaymentStatus.PROCESSING, external_id=None)
    card_gateway.event = WebhookResult(
        provider="stripe", event_id="evt_6", external_id="pi_late", reference=created.payment_id,
        status=PaymentStatus.APPROVED,
    )

    outcome = await webhooks.handle_webhook("stripe", b"{}", {})

    assert outcome.action == "applied"
    assert (await payments.get_by_id(created.payment_id)).external_id == "pi_late"


@pytest.mark.asyncio
async def test_reference_of_another_provider_is_not_matched(service, webhooks, orders, card_gateway):
    created = await _pix_payment(service, orders, order_id="o-p")
    card_gateway.event = WebhookResult(
        provider="stripe", event_id="evt_7", reference=created.payment_id, status=PaymentStatus.APPROVED
    )

    outcome = await webhooks.handle_webhook("stripe", b"{}", {})

    assert outcome.action == "unknown_payment"
    assert orders.orders["o-p"].status == OrderStatus.PENDING_PAYMENT


@pytest.mark.asyncio
async def test_cash_has_no_webhooks(webhooks):
    with pytest.raises(FeatureNotSupportedError):
        await webhooks.handle_webhook("cash", b"{}", {})


@pytest.mark.asyncio
async def test_batched_pix_notification_settles_every_transfer(service, webhooks, orders, payments, sign_pix):
    first = await _pix_payment(service, orders, order_id="o-a", total="30.00")
    second = await _pix_payment(service, orders, order_id="o-b", total="12.00")
    body = json.dumps(
        {
            "pix": [
                {"txid": first.external_id, "endToEndId": "E1", "valor": "30.00"},
                {"txid": second.external_id, "endToEndId": "E2", "valor": "12.00"},
            ]
        }
    ).encode()

    outcome = await webhooks.handle_pix_webhook(body, sign_pix(body))

    assert outcome.action == "batch"
    assert [e.action for e in outcome.entries] == ["applied", "applied"]
    assert (await payments.get_by_id(second.payment_id)).status == PaymentStatus.APPROVED
    assert orders.orders["o-a"].status == OrderStatus.CONFIRMED
    assert orders.orders["o-b"].status == OrderStatus.CONFIRMED

    again = await webhooks.handle_pix_webhook(body, sign_pix(body))
    assert [e.action for e in again.entries] == ["noop", "noop"]


@pytest.mark.asyncio
async def test_batch_keeps_applying_after_an_illegal_entry(service, webhooks, orders, payments, sign_pix):
    expired = await _pix_payment(service, orders, order_id="o-a")
    await payments.update_if_status(expired.payment_id, {PaymentStatus.PENDING}, status=PaymentStatus.APPROVED)
    live = await _pix_payment(service, orders, order_id="o-b")
    body = json.dumps(
        {
            "pix": [
                {"txid": expired.external_id, "status": "EXPIRADA"},
                {"txid": live.external_id, "valor": "30.00"},
            ]
        }
    ).encode()

    with pytest.raises(InvariantViolationError):
        await webhooks.handle_pix_webhook(body, sign_pix(body))

    assert (await payments.get_by_id(live.payment_id)).status == PaymentStatus.APPROVED


@pytest.mark.asyncio
async def test_pix_amount_mismatch_is_not_approved(service, webhooks, orders, payments, sign_pix, pix_body):
    created = await _pix_payment(service, orders)
    body = pix_body(created.external_id, value="3.00")

    outcome = await webhooks.handle_pix_webhook(body, sign_pix(body))

    assert outcome.action == "amount_mismatch"
    assert (await payments.get_by_id(created.payment_id)).status == PaymentStatus.PENDING
    assert orders.orders["o-1"].status == OrderStatus.PENDING_PAYMENT


@pytest.mark.asyncio
async def test_failed_attempt_keeps_open_checkout_pending(service, webhooks, orders, card_gateway, payments):
    created = await _card_payment(
        service, orders, card_gateway, PaymentStatus.PENDING,
        expires_at=datetime.now(timezone.utc) + timedelta(minutes=30),
    )
    card_gateway.event = WebhookResult(
        provider="stripe", event_id="evt_8", external_id="pi_1", status=PaymentStatus.REJECTED,
        provider_status="requires_payment_method", retryable=True,
    )

    failed = await webhooks.handle_webhook("stripe", b"{}", {})

    assert failed.action == "updated"
    assert failed.status == PaymentStatus.PENDING

    card_gateway.event = WebhookResult(
        provider="stripe", event_id="evt_9", external_id="pi_1", status=PaymentStatus.APPROVED,
        provider_status="succeeded",
    )
    approved = await webhooks.handle_webhook("stripe", b"{}", {})

    assert approved.action == "applied"
    assert (await payments.get_by_id(created.payment_id)).status == PaymentStatus.APPROVED
    assert orders.orders["o-c"].status == OrderStatus.CONFIRMED


@pytest.mark.asyncio
async def test_failed_attempt_does_not_pin_the_provider_reference(service, webhooks, orders, card_gateway, payments):
    created = await _card_payment(service, orders, card_gateway, PaymentStatus.PENDING, external_id=None)
    card_gateway.event = WebhookResult(
        provider="stripe", event_id="evt_10", external_id="attempt-1", reference=created.payment_id,
        status=PaymentStatus.REJECTED, provider_status="rejected", retryable=True,
    )
    await webhooks.handle_webhook("stripe", b"{}", {})
    assert (await payments.get_by_id(created.payment_id)).external_id is None

    card_gateway.event = WebhookResult(
        provider="stripe", event_id="evt_11", external_id="attempt-2", reference=created.payment_id,
        status=PaymentStatus.APPROVED, provider_status="approved",
    )
    await webhooks.handle_webhook("stripe", b"{}", {})

    stored = await payments.get_by_id(created.payment_id)
    assert stored.status == PaymentStatus.APPROVED
    assert stored.external_id == "attempt-2"


@pytest.mark.asyncio
async def test_failed_attempt_after_expiry_closes_the_payment(service, webhooks, orders, card_gateway, payments):
    created = await _card_payment(service, orders, card_gateway, PaymentStatus.PENDING)
    payments.rows[created.payment_id].expires_at = datetime.now(timezone.utc) - timedelta(minutes=1)
    card_gateway.event = WebhookResult(
        provider="stripe", event_id="evt_12", external_id="pi_1", status=PaymentStatus.REJECTED,
        provider_status="requires_payment_method", retryable=True,
    )

    outcome = await webhooks.handle_webhook("stripe", b"{}", {})

    assert outcome.action == "applied"
    assert outcome.status == PaymentStatus.REJECTED


@pytest.mark.asyncio
async def test_failed_attempt_closes_a_server_side_payment(service, webhooks, orders, card_gateway):
    await _card_payment(service, orders, card_gateway, PaymentStatus.PROCESSING)
    card_gateway.event = WebhookResult(
        provider="stripe", event_id="evt_13", external_id="pi_1", status=PaymentStatus.REJECTED,
        provider_status="requires_payment_method", retryable=True,
    )

    outcome = await webhooks.handle_webhook("stripe", b"{}", {})

    assert outcome.status == PaymentStatus.REJECTED

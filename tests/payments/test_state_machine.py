from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from domain.common.exceptions import DomainValidationException
from domain.payment.entity import (
    ALLOWED_TRANSITIONS,
    Payment,
    PaymentMethod,
    PaymentStatus,
    sources_for,
)
from domain.payment.exceptions import InvariantViolationError
from domain.payment.service import PaymentDomainService


def _payment(status=PaymentStatus.PENDING, **kwargs):
    return Payment(
        id="p-1",
        order_id="o-1",
        method=PaymentMethod.PIX,
        provider="pix",
        amount=Decimal("30.00"),
        status=status,
        **kwargs,
    )


def test_terminal_states_have_no_exits():
    for status in (PaymentStatus.REJECTED, PaymentStatus.EXPIRED, PaymentStatus.REFUNDED):
        assert ALLOWED_TRANSITIONS[status] == frozenset()
        assert _payment(status).is_terminal


def test_sources_for_refund_is_only_approved():
    assert sources_for(PaymentStatus.REFUNDED) == {PaymentStatus.APPROVED}
    assert sources_for(PaymentStatus.APPROVED) == {PaymentStatus.PENDING, PaymentStatus.PROCESSING}


def test_amount_must_be_positive():
    with pytest.raises(DomainValidationException):
        Payment(id="p", order_id="o", method=PaymentMethod.CASH, provider="cash", amount=Decimal("0"))


def test_naive_timestamps_become_utc():
    payment = _payment(expires_at=datetime(2026, 1, 1, 12, 0))
    assert payment.expires_at.tzinfo == timezone.utc


def test_is_expired_only_for_active_payments():
    past = datetime.now(timezone.utc) - timedelta(minutes=1)
    assert _payment(expires_at=past).is_expired()
    assert not _payment(PaymentStatus.APPROVED, expires_at=past).is_expired()
    assert not _payment().is_expired()


@pytest.mark.asyncio
async def test_transition_actions(payments):
    domain = PaymentDomainService(payments)
    payment = await payments.create(_payment())

    outcome = await domain.transition(payment, PaymentStatus.PROCESSING)
    assert outcome.action == "applied"
    assert outcome.previous == PaymentStatus.PENDING

    stale = await domain.transition(outcome.payment, PaymentStatus.PENDING)
    assert stale.action == "stale"

    same = await domain.transition(outcome.payment, PaymentStatus.PROCESSING)
    assert same.action == "noop"

    updated = await domain.transition(outcome.payment, PaymentStatus.PROCESSING, provider_status="in_process")
    assert updated.action == "updated"
    assert updated.payment.provider_status == "in_process"

    approved = await domain.transition(updated.payment, PaymentStatus.APPROVED)
    assert approved.applied
    assert approved.payment.status == PaymentStatus.APPROVED


@pytest.mark.asyncio
async def test_conflicting_transition_raises_without_mutation(payments):
    domain = PaymentDomainService(payments)
    payment = await payments.create(_payment(PaymentStatus.APPROVED))

    with pytest.raises(InvariantViolationError):
        await domain.transition(payment, PaymentStatus.REJECTED)
    assert (await payments.get_by_id("p-1")).status == PaymentStatus.APPROVED


@pytest.mark.asyncio
async def test_terminal_payment_ignores_everything(payments):
    domain = PaymentDomainService(payments)
    payment = await payments.create(_payment(PaymentStatus.REJECTED))

    outcome = await domain.transition(payment, PaymentStatus.APPROVED)
    assert outcome.action == "noop"
    assert outcome.payment.status == PaymentStatus.REJECTED


@pytest.mark.asyncio
async def test_losing_writer_reloads(payments):
    domain = PaymentDomainService(payments)
    payment = await payments.create(_payment())
    snapshot = await payments.get_by_id(payment.id)

    first = await domain.transition(payment, PaymentStatus.APPROVED)
    second = await domain.transition(snapshot, PaymentStatus.EXPIRED)

    assert first.applied
    assert second.action == "lost_race"
    assert second.payment.status == PaymentStatus.APPROVED

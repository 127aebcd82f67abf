"""
Payments API routes.

Thin layer over PaymentService / WebhookService: parse, delegate, wrap in the
unified response. No provider SDK details here.

Webhook endpoints read the raw body; signatures are computed over the exact
bytes the provider sent.
"""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request

from api.dependencies import (
    get_current_admin_id,
    get_current_user_id,
    get_payment_service,
    get_webhook_service,
)
from application.dtos.payments import (
    CardIntentRequest,
    ProcessPayment,
    RefundRequest,
    SaveCardRequest,
    WalletPreferenceRequest,
)
from application.services.payment_service import PaymentService
from application.services.webhook_service import WebhookService
from core.response import success_response


router = APIRouter(prefix="/payments", tags=["Payments"])


def _dump(model) -> dict:
    return model.model_dump(mode="json")


@router.post("", summary="Process a payment for an order")
async def process_payment(
    payload: ProcessPayment,
    user_id: str = Depends(get_current_user_id),
    service: PaymentService = Depends(get_payment_service),
):
    outcome = await service.process_payment(payload, user_id)
    return success_response(data=_dump(outcome), message="Payment processed")


@router.post("/stripe/intent", summary="Create a card payment intent")
async def create_card_intent(
    payload: CardIntentRequest,
    user_id: str = Depends(get_current_user_id),
    service: PaymentService = Depends(get_payment_service),
):
    outcome = await service.create_card_intent(payload, user_id)
    return success_response(data=_dump(outcome), message="Payment intent created")


@router.post("/mercadopago/preference", summary="Create a wallet checkout preference")
async def create_wallet_preference(
    payload: WalletPreferenceRequest,
    user_id: str = Depends(get_current_user_id),
    service: PaymentService = Depends(get_payment_service),
):
    outcome = await service.create_wallet_preference(payload, user_id)
    return success_response(data=_dump(outcome), message="Checkout preference created")


# ---- webhooks: authenticated by signature, never by user header ----

@router.post("/webhooks/stripe", summary="Stripe webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(default=None, alias="Stripe-Signature"),
    service: WebhookService = Depends(get_webhook_service),
):
    outcome = await service.handle_stripe_webhook(await request.body(), stripe_signature)
    return success_response(data=_dump(outcome), message="Webhook processed")


@router.post("/webhooks/mercadopago", summary="Mercado Pago webhook")
async def mercadopago_webhook(
    request: Request,
    service: WebhookService = Depends(get_webhook_service),
):
    outcome = await service.handle_wallet_webhook(await request.body(), dict(request.headers))
    return success_response(data=_dump(outcome), message="Webhook processed")


@router.post("/webhooks/pix", summary="Pix webhook")
async def pix_webhook(
    request: Request,
    signature: Optional[str] = Header(default=None, alias="x-webhook-signature"),
    service: WebhookService = Depends(get_webhook_service),
):
    outcome = await service.handle_pix_webhook(await request.body(), signature)
    return success_response(data=_dump(outcome), message="Webhook processed")


# ---- catalogue ----

@router.get("/methods", summary="Payment methods currently available")
async def available_methods(service: PaymentService = Depends(get_payment_service)):
    methods = await service.get_available_payment_methods()
    return success_response(data=[_dump(m) for m in methods])


@router.get("/gateways", summary="Gateway configuration status")
async def gateway_status(service: PaymentService = Depends(get_payment_service)):
    gateways = await service.get_gateway_status()
    return success_response(data=[_dump(g) for g in gateways])


# ---- saved cards ----

@router.get("/cards", summary="List saved cards")
async def list_cards(
    provider: Optional[str] = Query(default=None),
    user_id: str = Depends(get_current_user_id),
    service: PaymentService = Depends(get_payment_service),
):
    cards = await service.list_saved_cards(user_id, provider)
    return success_response(data=[_dump(c) for c in cards])


@router.post("/cards", summary="Save a card")
async def save_card(
    payload: SaveCardRequest,
    user_id: str = Depends(get_current_user_id),
    service: PaymentService = Depends(get_payment_service),
):
    card = await service.save_card(user_id, payload)
    return success_response(data=_dump(card), message="Card saved")


@router.delete("/cards/{card_id}", summary="Delete a saved card")
async def delete_card(
    card_id: str,
    provider: Optional[str] = Query(default=None),
    user_id: str = Depends(get_current_user_id),
    service: PaymentService = Depends(get_payment_service),
):
    await service.delete_saved_card(user_id, card_id, provider)
    return success_response(data={"card_id": card_id}, message="Card deleted")


@router.post("/cards/{card_id}/default", summary="Make a saved card the default")
async def set_default_card(
    card_id: str,
    provider: Optional[str] = Query(default=None),
    user_id: str = Depends(get_current_user_id),
    service: PaymentService = Depends(get_payment_service),
):
    await service.set_default_card(user_id, card_id, provider)
    return success_response(data={"card_id": card_id}, message="Default card updated")


# ---- back office / sandbox: admin role only ----

@router.post("/simulate/{order_id}", summary="Approve the active payment (sandbox only)")
async def simulate_confirmation(
    order_id: str,
    admin_id: str = Depends(get_current_admin_id),
    service: PaymentService = Depends(get_payment_service),
):
    outcome = await service.simulate_payment_confirmation(order_id)
    return success_response(data=_dump(outcome), message="Payment approved (simulated)")


@router.post("/{payment_id}/confirm", summary="Confirm a pix or cash payment manually")
async def confirm_payment(
    payment_id: str,
    admin_id: str = Depends(get_current_admin_id),
    service: PaymentService = Depends(get_payment_service),
):
    outcome = await service.confirm_payment(payment_id)
    return success_response(data=_dump(outcome), message="Payment confirmed")


@router.post("/{payment_id}/refund", summary="Refund an approved payment")
async def refund_payment(
    payment_id: str,
    payload: Optional[RefundRequest] = None,
    admin_id: str = Depends(get_current_admin_id),
    service: PaymentService = Depends(get_payment_service),
):
    outcome = await service.refund_payment(payment_id, payload)
    return success_response(data=_dump(outcome), message="Payment refunded")


@router.get("/{payment_id}", summary="Read a payment")
async def get_payment(
    payment_id: str,
    user_id: str = Depends(get_current_user_id),
    service: PaymentService = Depends(get_payment_service),
):
    payment = await service.get_payment(payment_id, user_id)
    return success_response(data=_dump(payment))

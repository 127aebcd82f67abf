"""
Factory for payment gateway clients.

Builds every adapter once from `payment_settings`; the resulting registry is
passed to services by reference.
"""
from __future__ import annotations

from typing import Optional

import httpx

from application.ports.orders import SettingsPort
from core.settings import PaymentSettings, payment_settings
from domain.payment.repository import SavedCardRepository
from .cash_client import CashClient
from .mercadopago_client import MercadoPagoClient
from .pix_client import PixClient
from .registry import GatewayRegistry
from .stripe_client import StripeClient


def build_gateway_registry(
    *,
    settings: Optional[SettingsPort] = None,
    cards: Optional[SavedCardRepository] = None,
    config: Optional[PaymentSettings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> GatewayRegistry:
    cfg = config or payment_settings
    common = {
        "settings": settings,
        "currency": cfg.currency,
        "timeouts": cfg.timeouts.model_dump(),
        "retry": {"max": cfg.retry.max, "base": cfg.retry.base_backoff},
        "transport": transport,
    }
    api_url = cfg.api_url.rstrip("/")
    return GatewayRegistry(
        [
            StripeClient(
                cfg.stripe,
                cards=cards,
                app_url=cfg.app_url,
                webhook_tolerance=cfg.webhook.tolerance_seconds,
                **common,
            ),
            MercadoPagoClient(
                cfg.mercadopago,
                app_url=cfg.app_url,
                notification_url=f"{api_url}/api/v1/payments/webhooks/mercadopago",
                **common,
            ),
            PixClient(cfg.pix, **common),
            CashClient(cfg.cash, **common),
        ],
        settings=settings,
    )


__all__ = ["GatewayRegistry", "build_gateway_registry"]

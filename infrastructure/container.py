"""
Composition root: wires repositories, ports, gateway adapters and services.

Called once by the API lifespan and by background tasks; nothing here is a
module-level singleton.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from application.services.payment_service import PaymentService
from application.services.webhook_service import WebhookService
from core.settings import PaymentSettings, payment_settings
from infrastructure.adapters.order_port import SQLAlchemyOrderPort, SQLAlchemySettingsPort
from infrastructure.external.payments import GatewayRegistry, build_gateway_registry
from infrastructure.repositories.payment_repository import SQLAlchemyPaymentRepository
from infrastructure.repositories.saved_card_repository import SQLAlchemySavedCardRepository


@dataclass
class PaymentServices:
    payments: PaymentService
    webhooks: WebhookService
    registry: GatewayRegistry

    async def aclose(self) -> None:
        await self.registry.aclose()


def build_payment_services(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    config: Optional[PaymentSettings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> PaymentServices:
    cfg = config or payment_settings
    payments = SQLAlchemyPaymentRepository(session_factory)
    orders = SQLAlchemyOrderPort(session_factory)
    registry = build_gateway_registry(
        settings=SQLAlchemySettingsPort(session_factory),
        cards=SQLAlchemySavedCardRepository(session_factory),
        config=cfg,
        transport=transport,
    )
    orchestrator = PaymentService(
        payments=payments,
        orders=orders,
        gateways=registry,
        currency=cfg.currency,
        sandbox=cfg.sandbox,
    )
    return PaymentServices(
        payments=orchestrator,
        webhooks=WebhookService(payments=payments, gateways=registry, orchestrator=orchestrator),
        registry=registry,
    )

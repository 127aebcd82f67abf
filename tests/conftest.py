"""Pytest bootstrap configuration.

Environment variables are set before test collection and any module import
that reads application settings. In-memory ports and a scripted card gateway
live here so service tests run without a database or network.
"""
import os

os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DEBUG", "false")

import copy
import hashlib
import hmac
import json
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, List, Optional

import pytest

from application.dtos.payments import (
    CustomerView,
    OrderView,
    PaymentResult,
    RefundResult,
    RestaurantView,
    WebhookResult,
)
from application.ports.payment_gateway import PaymentFeature
from application.services.payment_service import PaymentService
from application.services.webhook_service import WebhookService
from core.settings import CashSettings, GatewayConfig, PixSettings
from domain.payment.entity import ACTIVE_STATUSES, OrderStatus, Payment, PaymentMethod, PaymentStatus
from domain.payment.exceptions import PaymentInProgressError
from domain.payment.repository import PaymentRepository
from infrastructure.external.payments.base import BasePaymentClient
from infrastructure.external.payments.cash_client import CashClient
from infrastructure.external.payments.pix_client import PixClient
from infrastructure.external.payments.registry import GatewayRegistry


PIX_WEBHOOK_SECRET = "pix-webhook-secret"
USER_ID = "user-1"


class InMemoryPaymentRepository(PaymentRepository):
    def __init__(self):
        self.rows: dict[str, Payment] = {}

    async def create(self, payment: Payment) -> Payment:
        for row in self.rows.values():
            if row.order_id == payment.order_id and row.status in ACTIVE_STATUSES:
                raise PaymentInProgressError(payment.order_id)
        self.rows[payment.id] = copy.deepcopy(payment)
        return copy.deepcopy(payment)

    async def get_by_id(self, payment_id: str) -> Optional[Payment]:
        row = self.rows.get(payment_id)
        return copy.deepcopy(row) if row else None

    async def get_by_external_id(self, provider: str, external_id: str) -> Optional[Payment]:
        for row in self.rows.values():
            if row.provider == provider and row.external_id == external_id:
                return copy.deepcopy(row)
        return None

    async def get_active_by_order(self, order_id: str) -> Optional[Payment]:
        for row in self.rows.values():
            if row.order_id == order_id and row.status in ACTIVE_STATUSES:
                return copy.deepcopy(row)
        return None

    async def list_by_order(self, order_id: str) -> List[Payment]:
        return [copy.deepcopy(r) for r in self.rows.values() if r.order_id == order_id]

    async def list_expired_active(self, now: datetime, limit: int = 100) -> List[Payment]:
        return [
            copy.deepcopy(r) for r in self.rows.values()
            if r.status in ACTIVE_STATUSES and r.expires_at is not None and r.expires_at <= now
        ][:limit]

    async def update_if_status(self, payment_id: str, expected: Iterable[PaymentStatus], **changes) -> Optional[Payment]:
        row = self.rows.get(payment_id)
        if row is None or row.status not in set(expected):
            return None
        for key, value in changes.items():
            setattr(row, key, value)
        row.updated_at = datetime.now(timezone.utc)
        return copy.deepcopy(row)


class InMemoryOrders:
    def __init__(self):
        self.orders: dict[str, OrderView] = {}
        self.status_calls: list[tuple[str, OrderStatus]] = []

    def add(self, order_id: str, total: str, user_id: str = USER_ID, city: Optional[str] = "Sao Paulo") -> OrderView:
        order = OrderView(
            id=order_id,
            total=Decimal(total),
            status=OrderStatus.PENDING_PAYMENT,
            customer=CustomerView(user_id=user_id, email=f"{user_id}@example.com", name="Ana"),
            restaurant=RestaurantView(id="r-1", name="Cantina Boa", city=city),
        )
        self.orders[order_id] = order
        return order

    async def get_order_with_relations(self, order_id: str) -> Optional[OrderView]:
        return self.orders.get(order_id)

    async def set_order_status(self, order_id: str, status: OrderStatus) -> None:
        self.status_calls.append((order_id, status))
        self.orders[order_id] = self.orders[order_id].model_copy(update={"status": status})


class InMemorySettings:
    def __init__(self, values: Optional[dict] = None):
        self.values = dict(values or {})

    async def get_setting(self, key: str):
        return self.values.get(key)


class ScriptedCardGateway(BasePaymentClient):
    """Card gateway whose provider responses are set by the test."""

    name = "stripe"
    display_name = "Scripted card"
    supported_methods = frozenset({PaymentMethod.CREDIT_CARD, PaymentMethod.DEBIT_CARD})
    features = frozenset({
        PaymentFeature.CREDIT_CARD,
        PaymentFeature.DEBIT_CARD,
        PaymentFeature.REFUNDS,
        PaymentFeature.WEBHOOKS,
    })

    def __init__(self, *, sandbox: bool = True, **kwargs):
        super().__init__(GatewayConfig(sandbox=sandbox), **kwargs)
        self.result = PaymentResult(
            success=True,
            status=PaymentStatus.APPROVED,
            external_id="ch_123",
            provider_status="succeeded",
        )
        self.error: Optional[Exception] = None
        self.event: Optional[WebhookResult] = None
        self.calls = []
        self.refunds = []

    def is_configured(self) -> bool:
        return True

    async def _create_payment(self, order, amount, data):
        self.calls.append(data)
        if self.error is not None:
            raise self.error
        return self.result

    async def process_webhook(self, payload, headers):
        return [self.event] if self.event is not None else []

    async def refund(self, payment, amount=None, reason=None):
        self.refunds.append((payment.id, amount, reason))
        return RefundResult(
            success=True,
            refund_id=f"re_{len(self.refunds)}",
            amount=amount or payment.amount,
            provider_status="succeeded",
        )


def _sign_pix(body: bytes, secret: str = PIX_WEBHOOK_SECRET) -> str:
    return "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def _pix_body(txid: str, value: str = "30.00") -> bytes:
    return json.dumps({"pix": [{"txid": txid, "endToEndId": "E1234567820261017", "valor": value}]}).encode()


@pytest.fixture
def sign_pix():
    return _sign_pix


@pytest.fixture
def pix_body():
    return _pix_body


@pytest.fixture
def payments():
    return InMemoryPaymentRepository()


@pytest.fixture
def orders():
    return InMemoryOrders()


@pytest.fixture
def settings_port():
    return InMemorySettings()


@pytest.fixture
def card_gateway(settings_port):
    return ScriptedCardGateway(settings=settings_port)


@pytest.fixture
def pix_gateway(settings_port):
    return PixClient(
        PixSettings(pix_key="pagamentos@cantinaboa.com.br", merchant_name="Cantina Boa", webhook_secret=PIX_WEBHOOK_SECRET),
        settings=settings_port,
    )


@pytest.fixture
def registry(card_gateway, pix_gateway, settings_port):
    return GatewayRegistry([card_gateway, pix_gateway, CashClient(CashSettings(), settings=settings_port)], settings=settings_port)


@pytest.fixture
def service(payments, orders, registry):
    return PaymentService(payments=payments, orders=orders, gateways=registry, sandbox=True)


@pytest.fixture
def webhooks(payments, registry, service):
    return WebhookService(payments=payments, gateways=registry, orchestrator=service)

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from application.dtos.payments import ProcessPayment
from core.settings import PaymentSettings, PixSettings
from domain.payment.entity import OrderStatus, Payment, PaymentMethod, PaymentStatus
from domain.payment.exceptions import OrderNotFoundError, PaymentInProgressError
from infrastructure.adapters.order_port import SQLAlchemyOrderPort, SQLAlchemySettingsPort
from infrastructure.container import build_payment_services
from infrastructure.models import Base, OrderModel, SettingModel
from infrastructure.repositories.payment_repository import SQLAlchemyPaymentRepository


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(bind=engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def repo(session_factory):
    return SQLAlchemyPaymentRepository(session_factory)


def _payment(order_id="o-1", **kwargs) -> Payment:
    now = datetime.now(timezone.utc)
    return Payment(
        id=str(uuid.uuid4()),
        order_id=order_id,
        method=kwargs.pop("method", PaymentMethod.PIX),
        provider=kwargs.pop("provider", "pix"),
        amount=Decimal("30.00"),
        created_at=now,
        updated_at=now,
        **kwargs,
    )


async def _add_order(session_factory, order_id="o-1", total="30.00", user_id="user-1"):
    async with session_factory() as session:
        session.add(
            OrderModel(
                id=order_id,
                total=Decimal(total),
                status=OrderStatus.PENDING_PAYMENT.value,
                customer_id=user_id,
                restaurant_id="r-1",
                restaurant_name="Cantina Boa",
                restaurant_city="Sao Paulo",
            )
        )
        await session.commit()


@pytest.mark.asyncio
async def test_create_and_read_back(repo):
    created = await repo.create(_payment(metadata={"source": "test"}))

    loaded = await repo.get_by_id(created.id)

    assert loaded.amount == Decimal("30.00")
    assert loaded.status == PaymentStatus.PENDING
    assert loaded.metadata == {"source": "test"}
    assert loaded.created_at.tzinfo is not None
    assert await repo.get_active_by_order("o-1") is not None
    assert await repo.get_by_id("missing") is None


@pytest.mark.asyncio
async def test_second_active_payment_for_order_is_refused(repo):
    await repo.create(_payment())
    with pytest.raises(PaymentInProgressError):
        await repo.create(_payment())


@pytest.mark.asyncio
async def test_terminal_payments_do_not_block_new_attempts(repo):
    first = await repo.create(_payment())
    await repo.update_if_status(first.id, {PaymentStatus.PENDING}, status=PaymentStatus.REJECTED)

    second = await repo.create(_payment())

    assert {p.id for p in await repo.list_by_order("o-1")} == {first.id, second.id}
    assert (await repo.get_active_by_order("o-1")).id == second.id


@pytest.mark.asyncio
async def test_conditional_update_has_one_winner(repo):
    payment = await repo.create(_payment())

    won = await repo.update_if_status(
        payment.id, {PaymentStatus.PENDING}, status=PaymentStatus.APPROVED, provider_status="CONCLUIDA"
    )
    lost = await repo.update_if_status(payment.id, {PaymentStatus.PENDING}, status=PaymentStatus.EXPIRED)

    assert won.status == PaymentStatus.APPROVED
    assert won.provider_status == "CONCLUIDA"
    assert lost is None
    assert (await repo.get_by_id(payment.id)).status == PaymentStatus.APPROVED


@pytest.mark.asyncio
async def test_lookup_by_external_id_is_scoped_to_provider(repo):
    payment = await repo.create(_payment(external_id="tx1"))
    assert (await repo.get_by_external_id("pix", "tx1")).id == payment.id
    assert await repo.get_by_external_id("stripe", "tx1") is None


@pytest.mark.asyncio
async def test_list_expired_active(repo):
    now = datetime.now(timezone.utc)
    overdue = await repo.create(_payment("o-1", expires_at=now - timedelta(minutes=5)))
    await repo.create(_payment("o-2", expires_at=now + timedelta(minutes=5)))
    await repo.create(_payment("o-3"))
    closed = await repo.create(_payment("o-4", expires_at=now - timedelta(minutes=5)))
    await repo.update_if_status(closed.id, {PaymentStatus.PENDING}, status=PaymentStatus.APPROVED)

    expired = await repo.list_expired_active(now)

    assert [p.id for p in expired] == [overdue.id]


@pytest.mark.asyncio
async def test_order_port(session_factory):
    await _add_order(session_factory)
    orders = SQLAlchemyOrderPort(session_factory)

    order = await orders.get_order_with_relations("o-1")
    assert order.total == Decimal("30.00")
    assert order.customer.user_id == "user-1"
    assert order.restaurant.city == "Sao Paulo"

    await orders.set_order_status("o-1", OrderStatus.CONFIRMED)
    assert (await orders.get_order_with_relations("o-1")).status == OrderStatus.CONFIRMED
    with pytest.raises(OrderNotFoundError):
        await orders.set_order_status("missing", OrderStatus.CONFIRMED)


@pytest.mark.asyncio
async def test_settings_port(session_factory):
    async with session_factory() as session:
        session.add(SettingModel(key="pix_enabled", value=False))
        await session.commit()
    port = SQLAlchemySettingsPort(session_factory)
    assert await port.get_setting("pix_enabled") is False
    assert await port.get_setting("card_gateway") is None


@pytest.mark.asyncio
async def test_wired_services_pay_and_expire(session_factory):
    await _add_order(session_factory)
    config = PaymentSettings(_env_file=None, pix=PixSettings(pix_key="pagamentos@cantinaboa.com.br"))
    services = build_payment_services(session_factory, config=config)

    outcome = await services.payments.process_payment(
        ProcessPayment(order_id="o-1", method=PaymentMethod.PIX), "user-1"
    )
    assert outcome.status == PaymentStatus.PENDING
    assert outcome.qr_payload.startswith("000201")

    expired = await services.payments.expire_stale_payments(now=outcome.expires_at + timedelta(seconds=1))
    assert expired == 1
    again = await services.payments.process_payment(
        ProcessPayment(order_id="o-1", method=PaymentMethod.PIX), "user-1"
    )
    assert again.payment_id != outcome.payment_id
    await services.aclose()

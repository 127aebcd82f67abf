"""Infrastructure adapters implementing the application OrderPort and
SettingsPort over the minimal `orders` and `settings` tables.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from application.dtos.payments import CustomerView, OrderView, RestaurantView
from application.ports.orders import OrderPort, SettingsPort
from domain.payment.entity import OrderStatus
from domain.payment.exceptions import OrderNotFoundError
from infrastructure.models.order import OrderModel, SettingModel


class SQLAlchemyOrderPort(OrderPort):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @staticmethod
    def _to_view(model: OrderModel) -> OrderView:
        return OrderView(
            id=model.id,
            total=Decimal(str(model.total)),
            status=OrderStatus(model.status),
            customer=CustomerView(
                user_id=model.customer_id,
                email=model.customer_email,
                name=model.customer_name,
                phone=model.customer_phone,
            ),
            restaurant=RestaurantView(
                id=model.restaurant_id,
                name=model.restaurant_name,
                city=model.restaurant_city,
            ),
        )

    async def get_order_with_relations(self, order_id: str) -> Optional[OrderView]:
        async with self._session_factory() as session:
            model = await session.get(OrderModel, order_id)
            return self._to_view(model) if model else None

    async def set_order_status(self, order_id: str, status: OrderStatus) -> None:
        async with self._session_factory() as session:
            result = await session.execute(
                update(OrderModel)
                .where(OrderModel.id == order_id)
                .values(status=status.value)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                await session.rollback()
                raise OrderNotFoundError(order_id)
            await session.commit()


class SQLAlchemySettingsPort(SettingsPort):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get_setting(self, key: str) -> Optional[Any]:
        async with self._session_factory() as session:
            model = await session.get(SettingModel, key)
            return model.value if model else None

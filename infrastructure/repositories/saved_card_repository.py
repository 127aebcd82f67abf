"""
卡库仓储实现 - 渠道客户映射与已保存的卡
"""
from typing import List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.logging_config import get_logger
from domain.payment.entity import SavedCard
from domain.payment.repository import SavedCardRepository
from infrastructure.models.saved_card import GatewayCustomerModel, SavedCardModel


logger = get_logger(__name__)


class SQLAlchemySavedCardRepository(SavedCardRepository):
    """卡库仓储的SQLAlchemy实现"""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    def _to_entity(self, model: SavedCardModel) -> SavedCard:
        return SavedCard(
            id=model.id,
            user_id=model.user_id,
            provider=model.provider,
            gateway_customer_id=model.gateway_customer_id,
            gateway_card_id=model.gateway_card_id,
            last_four_digits=model.last_four_digits,
            expiration_month=model.expiration_month,
            expiration_year=model.expiration_year,
            brand=model.brand,
            cardholder_name=model.cardholder_name,
            is_default=bool(model.is_default),
            created_at=model.created_at,
        )

    async def get_customer_id(self, user_id: str, provider: str) -> Optional[str]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(GatewayCustomerModel.customer_id).where(
                    GatewayCustomerModel.user_id == user_id,
                    GatewayCustomerModel.provider == provider,
                )
            )
            return result.scalar_one_or_none()

    async def save_customer_id(self, user_id: str, provider: str, customer_id: str) -> None:
        async with self._session_factory() as session:
            session.add(GatewayCustomerModel(user_id=user_id, provider=provider, customer_id=customer_id))
            try:
                await session.commit()
            except IntegrityError:
                # 并发创建：保留先写入的映射
                await session.rollback()
                logger.info("gateway_customer_exists", user_id=user_id, provider=provider)

    async def add(self, card: SavedCard) -> SavedCard:
        async with self._session_factory() as session:
            model = SavedCardModel(
                id=card.id,
                user_id=card.user_id,
                provider=card.provider,
                gateway_customer_id=card.gateway_customer_id,
                gateway_card_id=card.gateway_card_id,
                brand=card.brand,
                last_four_digits=card.last_four_digits,
                expiration_month=card.expiration_month,
                expiration_year=card.expiration_year,
                cardholder_name=card.cardholder_name,
                is_default=card.is_default,
                created_at=card.created_at,
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            return self._to_entity(model)

    async def get(self, card_id: str) -> Optional[SavedCard]:
        async with self._session_factory() as session:
            model = await session.get(SavedCardModel, card_id)
            return self._to_entity(model) if model else None

    async def list_for_user(self, user_id: str, provider: Optional[str] = None) -> List[SavedCard]:
        query = select(SavedCardModel).where(SavedCardModel.user_id == user_id)
        if provider:
            query = query.where(SavedCardModel.provider == provider)
        query = query.order_by(SavedCardModel.is_default.desc(), SavedCardModel.created_at.desc())
        async with self._session_factory() as session:
            result = await session.execute(query)
            return [self._to_entity(m) for m in result.scalars().all()]

    async def delete(self, card_id: str) -> None:
        async with self._session_factory() as session:
            await session.execute(delete(SavedCardModel).where(SavedCardModel.id == card_id))
            await session.commit()

    async def set_default(self, user_id: str, provider: str, card_id: str) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(SavedCardModel)
                .where(SavedCardModel.user_id == user_id, SavedCardModel.provider == provider)
                .values(is_default=SavedCardModel.id == card_id)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

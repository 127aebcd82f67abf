"""
支付仓储实现 - 使用SQLAlchemy实现数据访问

每个方法使用独立的会话并自行提交：PENDING 记录在调用渠道之前就已落库，
状态更新是 UPDATE ... WHERE status IN (...) 的条件更新，由受影响行数决定唯一赢家。
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.logging_config import get_logger
from domain.payment.entity import ACTIVE_STATUSES, Payment, PaymentMethod, PaymentStatus
from domain.payment.exceptions import PaymentInProgressError
from domain.payment.repository import PaymentRepository
from infrastructure.models.payment import PaymentModel


logger = get_logger(__name__)

# 实体字段 -> 模型属性（其余同名）
_FIELD_TO_COLUMN = {"metadata": "extra_metadata"}


class SQLAlchemyPaymentRepository(PaymentRepository):
    """支付仓储的SQLAlchemy实现"""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    def _to_entity(self, model: PaymentModel) -> Payment:
        """将数据库模型转换为领域实体"""
        return Payment(
            id=model.id,
            order_id=model.order_id,
            method=PaymentMethod(model.method),
            provider=model.provider,
            amount=Decimal(str(model.amount)),
            currency=model.currency,
            status=PaymentStatus(model.status),
            external_id=model.external_id,
            provider_status=model.provider_status,
            redirect_url=model.redirect_url,
            qr_payload=model.qr_payload,
            expires_at=model.expires_at,
            error=model.error,
            error_code=model.error_code,
            metadata=dict(model.extra_metadata or {}),
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    def _to_model(self, entity: Payment) -> PaymentModel:
        """将领域实体转换为数据库模型"""
        return PaymentModel(
            id=entity.id,
            order_id=entity.order_id,
            method=entity.method.value,
            provider=entity.provider,
            external_id=entity.external_id,
            provider_status=entity.provider_status,
            amount=entity.amount,
            currency=entity.currency,
            status=entity.status.value,
            redirect_url=entity.redirect_url,
            qr_payload=entity.qr_payload,
            expires_at=entity.expires_at,
            error=entity.error,
            error_code=entity.error_code,
            extra_metadata=entity.metadata,
            created_at=entity.created_at,
            updated_at=entity.updated_at,
        )

    @staticmethod
    def _to_values(changes: dict) -> dict:
        values = {}
        for field, value in changes.items():
            if isinstance(value, (PaymentStatus, PaymentMethod)):
                value = value.value
            values[_FIELD_TO_COLUMN.get(field, field)] = value
        return values

    async def create(self, payment: Payment) -> Payment:
        """创建支付记录"""
        async with self._session_factory() as session:
            db_payment = self._to_model(payment)
            session.add(db_payment)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                msg = str(e.orig).lower()
                # 部分唯一索引冲突：订单已有未终结的支付
                if "uq_payments_order_active" in msg or "payments.order_id" in msg:
                    logger.warning("payment_create_conflict", order_id=payment.order_id)
                    raise PaymentInProgressError(payment.order_id) from e
                raise
            await session.refresh(db_payment)
            return self._to_entity(db_payment)

    async def _one(self, session: AsyncSession, *criteria) -> Optional[Payment]:
        result = await session.execute(select(PaymentModel).where(*criteria))
        db_payment = result.scalar_one_or_none()
        return self._to_entity(db_payment) if db_payment else None

    async def get_by_id(self, payment_id: str) -> Optional[Payment]:
        """根据ID获取支付"""
        async with self._session_factory() as session:
            return await self._one(session, PaymentModel.id == payment_id)

    async def get_by_external_id(self, provider: str, external_id: str) -> Optional[Payment]:
        """根据渠道侧支付ID获取支付"""
        async with self._session_factory() as session:
            return await self._one(
                session,
                PaymentModel.provider == provider,
                PaymentModel.external_id == external_id,
            )

    async def get_active_by_order(self, order_id: str) -> Optional[Payment]:
        """获取订单当前未终结的支付"""
        async with self._session_factory() as session:
            return await self._one(
                session,
                PaymentModel.order_id == order_id,
                PaymentModel.status.in_([s.value for s in ACTIVE_STATUSES]),
            )

    async def list_by_order(self, order_id: str) -> List[Payment]:
        """获取订单的全部支付尝试"""
        async with self._session_factory() as session:
            result = await session.execute(
                select(PaymentModel)
                .where(PaymentModel.order_id == order_id)
                .order_by(PaymentModel.created_at.desc())
            )
            return [self._to_entity(p) for p in result.scalars().all()]

    async def list_expired_active(self, now: datetime, limit: int = 100) -> List[Payment]:
        """获取已过期但仍未终结的支付"""
        async with self._session_factory() as session:
            result = await session.execute(
                select(PaymentModel)
                .where(
                    PaymentModel.status.in_([s.value for s in ACTIVE_STATUSES]),
                    PaymentModel.expires_at.is_not(None),
                    PaymentModel.expires_at <= now,
                )
                .order_by(PaymentModel.expires_at)
                .limit(limit)
            )
            return [self._to_entity(p) for p in result.scalars().all()]

    async def update_if_status(
        self,
        payment_id: str,
        expected: Iterable[PaymentStatus],
        **changes,
    ) -> Optional[Payment]:
        """条件更新：只有当前状态属于 expected 时才写入"""
        values = self._to_values(changes)
        values["updated_at"] = datetime.now(timezone.utc)
        stmt = (
            update(PaymentModel)
            .where(
                PaymentModel.id == payment_id,
                PaymentModel.status.in_([s.value for s in expected]),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            if result.rowcount != 1:
                await session.rollback()
                return None
            await session.commit()
            updated = await self._one(session, PaymentModel.id == payment_id)

        logger.info(
            "payment_updated",
            payment_id=payment_id,
            status=updated.status.value if updated else None,
            fields=sorted(changes),
        )
        return updated

"""
支付数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from sqlalchemy import (
    Column, String, Numeric, DateTime, Text, JSON,
    Index, UniqueConstraint, text
)
from datetime import datetime, timezone

from .base import Base


# 未终结状态；与 domain.payment.entity.ACTIVE_STATUSES 保持一致
ACTIVE_STATUS_CLAUSE = "status IN ('pending', 'processing')"


class PaymentModel(Base):
    """
    支付数据库模型

    这是数据库表的映射，不包含业务逻辑
    所有业务规则都在 domain.payment.entity.Payment 中
    """
    __tablename__ = "payments"

    # 主键（本地生成的 uuid4，调用渠道前就已确定）
    id = Column(String(36), primary_key=True, comment="支付ID")

    # 订单信息（订单属于外部领域，只保存引用）
    order_id = Column(String(64), index=True, nullable=False, comment="订单ID")

    # 支付渠道信息
    method = Column(String(20), nullable=False, comment="支付方式: credit_card/debit_card/wallet/pix/cash")
    provider = Column(String(50), nullable=False, index=True, comment="支付渠道: stripe/mercadopago/pix/cash")
    external_id = Column(String(200), nullable=True, comment="渠道侧支付ID")
    provider_status = Column(String(64), nullable=True, comment="渠道最近一次返回的原始状态")

    # 金额信息（使用 Numeric 存储精确金额）
    amount = Column(Numeric(precision=15, scale=2), nullable=False, comment="支付金额")
    currency = Column(String(3), nullable=False, default="BRL", comment="货币代码 ISO-4217")

    # 状态
    status = Column(
        String(20),
        nullable=False,
        default="pending",
        index=True,
        comment="支付状态: pending/processing/approved/rejected/expired/refunded"
    )

    # 前端展示所需
    redirect_url = Column(String(1024), nullable=True, comment="跳转收银台/3DS 地址")
    qr_payload = Column(Text, nullable=True, comment="Pix 复制粘贴码")
    expires_at = Column(DateTime(timezone=True), nullable=True, index=True, comment="过期时间")

    # 失败原因
    error = Column(Text, nullable=True, comment="面向用户的失败原因")
    error_code = Column(String(100), nullable=True, comment="渠道错误码")

    # 元数据（JSON格式，使用 extra_metadata 避免与 SQLAlchemy 的 metadata 冲突）
    extra_metadata = Column("metadata", JSON, nullable=True, comment="扩展元数据")

    # 时间戳
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
        comment="创建时间"
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="更新时间"
    )

    # 索引
    __table_args__ = (
        # 同一订单最多一笔未终结支付（部分唯一索引）
        Index(
            "uq_payments_order_active",
            "order_id",
            unique=True,
            sqlite_where=text(ACTIVE_STATUS_CLAUSE),
            postgresql_where=text(ACTIVE_STATUS_CLAUSE),
        ),
        UniqueConstraint("provider", "external_id", name="uq_payments_provider_external_id"),
        Index("ix_payments_status_expires", "status", "expires_at"),
    )

    def __repr__(self):
        return (
            f"<PaymentModel(id='{self.id}', order_id='{self.order_id}', "
            f"provider='{self.provider}', amount={self.amount}, status='{self.status}')>"
        )

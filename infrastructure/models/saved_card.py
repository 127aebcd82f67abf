"""
卡库数据库模型 - 渠道客户映射与已保存的卡
只保存渠道侧引用和展示字段，不保存卡号/CVV
"""
from sqlalchemy import (
    Boolean, Column, DateTime, Integer, String, UniqueConstraint, Index, text
)
from datetime import datetime, timezone

from .base import Base


class GatewayCustomerModel(Base):
    """用户在某个渠道上的客户ID"""
    __tablename__ = "gateway_customers"

    id = Column(Integer, primary_key=True, autoincrement=True, comment="主键ID")
    user_id = Column(String(64), nullable=False, comment="用户ID")
    provider = Column(String(50), nullable=False, comment="支付渠道")
    customer_id = Column(String(200), nullable=False, comment="渠道侧客户ID")
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="创建时间"
    )

    __table_args__ = (
        UniqueConstraint("user_id", "provider", name="uq_gateway_customers_user_provider"),
    )

    def __repr__(self):
        return f"<GatewayCustomerModel(user_id='{self.user_id}', provider='{self.provider}')>"


class SavedCardModel(Base):
    """已保存的卡"""
    __tablename__ = "saved_cards"

    id = Column(String(36), primary_key=True, comment="卡ID")
    user_id = Column(String(64), nullable=False, comment="用户ID")
    provider = Column(String(50), nullable=False, comment="支付渠道")
    gateway_customer_id = Column(String(200), nullable=False, comment="渠道侧客户ID")
    gateway_card_id = Column(String(200), nullable=False, comment="渠道侧卡/支付方式ID")
    brand = Column(String(32), nullable=True, comment="卡组织")
    last_four_digits = Column(String(4), nullable=False, comment="卡号后四位")
    expiration_month = Column(Integer, nullable=False, comment="有效期月")
    expiration_year = Column(Integer, nullable=False, comment="有效期年")
    cardholder_name = Column(String(200), nullable=True, comment="持卡人")
    is_default = Column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
        comment="是否默认卡"
    )
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="创建时间"
    )

    __table_args__ = (
        Index("ix_saved_cards_user_provider", "user_id", "provider"),
        UniqueConstraint("provider", "gateway_card_id", name="uq_saved_cards_provider_card"),
    )

    def __repr__(self):
        return (
            f"<SavedCardModel(id='{self.id}', user_id='{self.user_id}', "
            f"brand='{self.brand}', last4='{self.last_four_digits}')>"
        )

"""
订单与运行时配置的最小映射

订单属于外部领域，这里只保留支付对账需要的列；
settings 表是渠道/支付方式开关的键值存储。
"""
from sqlalchemy import Column, DateTime, JSON, Numeric, String
from sqlalchemy.sql import func
from datetime import datetime, timezone

from .base import Base


class OrderModel(Base):
    __tablename__ = "orders"

    id = Column(String(64), primary_key=True, comment="订单ID")
    total = Column(Numeric(precision=15, scale=2), nullable=False, comment="订单总额")
    status = Column(String(32), nullable=False, default="PENDING_PAYMENT", index=True, comment="订单状态")

    # 下单用户（快照）
    customer_id = Column(String(64), nullable=False, index=True, comment="下单用户ID")
    customer_email = Column(String(255), nullable=True, comment="用户邮箱")
    customer_name = Column(String(200), nullable=True, comment="用户姓名")
    customer_phone = Column(String(32), nullable=True, comment="用户手机号")

    # 商户（快照）
    restaurant_id = Column(String(64), nullable=False, comment="商户ID")
    restaurant_name = Column(String(200), nullable=False, comment="商户名称")
    restaurant_city = Column(String(100), nullable=True, comment="商户所在城市")

    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        server_default=func.now(),
        nullable=False,
        comment="创建时间"
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="更新时间"
    )

    def __repr__(self):
        return f"<OrderModel(id='{self.id}', total={self.total}, status='{self.status}')>"


class SettingModel(Base):
    __tablename__ = "settings"

    key = Column(String(100), primary_key=True, comment="配置键")
    value = Column(JSON, nullable=True, comment="配置值")
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="更新时间"
    )

    def __repr__(self):
        return f"<SettingModel(key='{self.key}')>"

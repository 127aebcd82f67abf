"""
支付领域实体 - 支付聚合根与统一状态机
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from enum import Enum

from domain.common.exceptions import DomainValidationException


class PaymentStatus(str, Enum):
    """统一支付状态枚举（所有渠道状态都映射到这里）"""
    PENDING = "pending"           # 待支付
    PROCESSING = "processing"     # 处理中（含渠道超时待确认）
    APPROVED = "approved"         # 支付成功
    REJECTED = "rejected"         # 支付失败/拒绝
    EXPIRED = "expired"           # 已过期（二维码未支付）
    REFUNDED = "refunded"         # 已退款


class PaymentMethod(str, Enum):
    """支付方式"""
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"
    WALLET = "wallet"             # 跳转收银台
    PIX = "pix"                   # 银行转账二维码
    CASH = "cash"

    @property
    def group(self) -> str:
        """方式分组，用于 `{group}_enabled` 配置开关"""
        if self in (PaymentMethod.CREDIT_CARD, PaymentMethod.DEBIT_CARD):
            return "card"
        return self.value


class OrderStatus(str, Enum):
    """订单状态（外部领域，只关心支付相关的几个）"""
    PENDING_PAYMENT = "PENDING_PAYMENT"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"


ACTIVE_STATUSES = frozenset({PaymentStatus.PENDING, PaymentStatus.PROCESSING})
TERMINAL_STATUSES = frozenset({PaymentStatus.REJECTED, PaymentStatus.EXPIRED, PaymentStatus.REFUNDED})

# 状态机：唯一允许的转换
ALLOWED_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({
        PaymentStatus.PROCESSING,
        PaymentStatus.APPROVED,
        PaymentStatus.REJECTED,
        PaymentStatus.EXPIRED,
    }),
    PaymentStatus.PROCESSING: frozenset({
        PaymentStatus.APPROVED,
        PaymentStatus.REJECTED,
        PaymentStatus.EXPIRED,
    }),
    PaymentStatus.APPROVED: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.REJECTED: frozenset(),
    PaymentStatus.EXPIRED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
}

# 用于识别乱序到达的旧事件
STATUS_RANK: dict[PaymentStatus, int] = {
    PaymentStatus.PENDING: 0,
    PaymentStatus.PROCESSING: 1,
    PaymentStatus.APPROVED: 2,
    PaymentStatus.REJECTED: 2,
    PaymentStatus.EXPIRED: 2,
    PaymentStatus.REFUNDED: 3,
}


def sources_for(target: PaymentStatus) -> frozenset[PaymentStatus]:
    """能够转换到 target 的所有源状态"""
    return frozenset(s for s, targets in ALLOWED_TRANSITIONS.items() if target in targets)


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """确保时间为 UTC 时区"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass
class Payment:
    """
    支付聚合根 - 一次支付尝试的审计记录

    业务规则：
    1. 同一订单最多只有一笔未终结（pending/processing）的支付
    2. 金额必须大于0
    3. 状态转换必须遵循 ALLOWED_TRANSITIONS
    4. 支付记录永不删除
    """

    id: str
    order_id: str
    method: PaymentMethod
    provider: str
    amount: Decimal
    currency: str = "BRL"
    status: PaymentStatus = PaymentStatus.PENDING
    external_id: Optional[str] = None  # 渠道侧支付ID

    provider_status: Optional[str] = None
    redirect_url: Optional[str] = None
    qr_payload: Optional[str] = None
    expires_at: Optional[datetime] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    metadata: dict = field(default_factory=dict)

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if self.amount <= 0:
            raise DomainValidationException(
                f"Payment amount must be positive: {self.amount}",
                field="amount",
            )
        if not self.currency or len(self.currency) != 3 or not self.currency.isalpha():
            raise DomainValidationException(
                f"Invalid currency code: {self.currency}",
                field="currency",
            )
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)
        self.expires_at = _ensure_utc(self.expires_at)
        if self.metadata is None:
            self.metadata = {}

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def can_transition_to(self, target: PaymentStatus) -> bool:
        return target in ALLOWED_TRANSITIONS[self.status]

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """未确认且已超过过期时间"""
        if not self.is_active or self.expires_at is None:
            return False
        return self.expires_at <= (now or datetime.now(timezone.utc))


@dataclass
class SavedCard:
    """已保存的银行卡（卡库扩展），只保存渠道侧引用，不保存卡号"""

    id: str
    user_id: str
    provider: str
    gateway_customer_id: str
    gateway_card_id: str
    last_four_digits: str
    expiration_month: int
    expiration_year: int
    brand: Optional[str] = None
    cardholder_name: Optional[str] = None
    is_default: bool = False
    created_at: Optional[datetime] = None

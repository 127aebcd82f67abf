"""
支付仓储接口 - 定义支付数据访问的抽象接口
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Iterable, List, Optional

from .entity import Payment, PaymentStatus, SavedCard


class PaymentRepository(ABC):
    """支付仓储抽象接口 - 只定义能做什么，不管怎么做

    每个方法都是独立事务；状态更新必须是条件更新（compare-and-set）。
    """

    @abstractmethod
    async def create(self, payment: Payment) -> Payment:
        """创建支付记录；订单已有未终结支付时抛出 PaymentInProgressError"""
        pass

    @abstractmethod
    async def get_by_id(self, payment_id: str) -> Optional[Payment]:
        """根据ID获取支付"""
        pass

    @abstractmethod
    async def get_by_external_id(self, provider: str, external_id: str) -> Optional[Payment]:
        """根据渠道侧支付ID获取支付"""
        pass

    @abstractmethod
    async def get_active_by_order(self, order_id: str) -> Optional[Payment]:
        """获取订单当前未终结（pending/processing）的支付"""
        pass

    @abstractmethod
    async def list_by_order(self, order_id: str) -> List[Payment]:
        """获取订单的全部支付尝试（按创建时间倒序）"""
        pass

    @abstractmethod
    async def list_expired_active(self, now: datetime, limit: int = 100) -> List[Payment]:
        """获取已过期但仍未终结的支付"""
        pass

    @abstractmethod
    async def update_if_status(
        self,
        payment_id: str,
        expected: Iterable[PaymentStatus],
        **changes,
    ) -> Optional[Payment]:
        """仅当当前状态属于 expected 时更新；未命中返回 None"""
        pass


class SavedCardRepository(ABC):
    """卡库存储：渠道客户ID映射 + 已保存的卡"""

    @abstractmethod
    async def get_customer_id(self, user_id: str, provider: str) -> Optional[str]:
        pass

    @abstractmethod
    async def save_customer_id(self, user_id: str, provider: str, customer_id: str) -> None:
        pass

    @abstractmethod
    async def add(self, card: SavedCard) -> SavedCard:
        pass

    @abstractmethod
    async def get(self, card_id: str) -> Optional[SavedCard]:
        pass

    @abstractmethod
    async def list_for_user(self, user_id: str, provider: Optional[str] = None) -> List[SavedCard]:
        pass

    @abstractmethod
    async def delete(self, card_id: str) -> None:
        pass

    @abstractmethod
    async def set_default(self, user_id: str, provider: str, card_id: str) -> None:
        """把 card_id 设为默认，同一用户同一渠道的其它卡取消默认"""
        pass

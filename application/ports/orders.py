"""
Narrow ports onto collaborators owned by other domains: orders and settings.
"""
from __future__ import annotations

from typing import Any, Optional, Protocol, runtime_checkable

from application.dtos.payments import OrderView
from domain.payment.entity import OrderStatus


@runtime_checkable
class OrderPort(Protocol):
    async def get_order_with_relations(self, order_id: str) -> Optional[OrderView]: ...

    async def set_order_status(self, order_id: str, status: OrderStatus) -> None: ...


@runtime_checkable
class SettingsPort(Protocol):
    """Runtime key/value configuration (provider and method toggles)."""

    async def get_setting(self, key: str) -> Optional[Any]: ...

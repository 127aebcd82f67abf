"""
支付领域服务 - 唯一的状态转换规则

下单编排（PaymentService）与 webhook 对账（WebhookService）共用这里的逻辑，
不在应用层重复实现状态机。
"""
from __future__ import annotations

from dataclasses import dataclass

from .entity import Payment, PaymentStatus, STATUS_RANK, sources_for
from .exceptions import InvariantViolationError
from .repository import PaymentRepository


@dataclass(frozen=True)
class TransitionOutcome:
    """一次转换尝试的结果

    action:
    - applied: 状态已变更
    - updated: 状态未变，只记录了渠道返回的附加字段
    - noop: 重复投递或已终结，什么都没做
    - stale: 乱序到达的旧状态，被忽略
    - lost_race: 并发写入中落败，payment 为最新读取的记录
    """

    payment: Payment
    previous: PaymentStatus
    action: str

    @property
    def applied(self) -> bool:
        return self.action == "applied"


class PaymentDomainService:
    """
    支付领域服务

    职责：
    1. 校验状态转换是否合法，非法转换抛出 InvariantViolationError 且不做修改
    2. 幂等：相同状态、已终结状态直接返回 noop
    3. 通过仓储的条件更新保证并发下只有一个写入者成功
    """

    def __init__(self, payment_repository: PaymentRepository):
        self.payment_repository = payment_repository

    async def transition(self, payment: Payment, target: PaymentStatus, **changes) -> TransitionOutcome:
        current = payment.status

        if target == current:
            if not changes:
                return TransitionOutcome(payment, current, "noop")
            updated = await self.payment_repository.update_if_status(payment.id, {current}, **changes)
            if updated is None:
                return await self._reload(payment)
            return TransitionOutcome(updated, current, "updated")

        if payment.is_terminal:
            return TransitionOutcome(payment, current, "noop")

        # 乱序到达：目标状态比当前状态更早
        if STATUS_RANK[target] < STATUS_RANK[current]:
            return TransitionOutcome(payment, current, "stale")

        if not payment.can_transition_to(target):
            raise InvariantViolationError(payment.id, current.value, target.value)

        updated = await self.payment_repository.update_if_status(
            payment.id, sources_for(target), status=target, **changes
        )
        if updated is None:
            return await self._reload(payment)
        return TransitionOutcome(updated, current, "applied")

    async def _reload(self, payment: Payment) -> TransitionOutcome:
        latest = await self.payment_repository.get_by_id(payment.id) or payment
        return TransitionOutcome(latest, payment.status, "lost_race")

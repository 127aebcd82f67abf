"""
支付领域异常 - 与 BusinessException 统一，由 core.exceptions 映射为 HTTP 响应
"""
from __future__ import annotations

from typing import Optional

from domain.common.exceptions import BusinessException, NotFoundException
from shared.codes import BusinessCode
from shared.codes.payment_codes import PaymentCode


class PaymentValidationError(BusinessException):
    """请求校验失败（金额/方式不合法），在调用任何渠道之前抛出"""
    def __init__(self, message: str, *, field: Optional[str] = None, details: Optional[dict] = None):
        super().__init__(
            code=PaymentCode.VALIDATION_ERROR,
            message=message,
            error_type="PaymentValidationError",
            details=details,
            field=field,
        )


class UnsupportedMethodError(BusinessException):
    def __init__(self, method: str, *, provider: Optional[str] = None):
        details = {"method": method}
        if provider:
            details["provider"] = provider
        super().__init__(
            code=PaymentCode.UNSUPPORTED_METHOD,
            message=f"Payment method '{method}' is not available",
            error_type="UnsupportedMethod",
            details=details,
            field="method",
        )


class PaymentInProgressError(BusinessException):
    """订单已有未终结的支付"""
    def __init__(self, order_id: str):
        super().__init__(
            code=PaymentCode.PAYMENT_IN_PROGRESS,
            message="A payment for this order is already in progress",
            error_type="PaymentInProgress",
            details={"order_id": order_id},
        )


class InvariantViolationError(BusinessException):
    """非法状态转换：记录日志，不做任何修改"""
    def __init__(self, payment_id: str, current: str, target: str):
        super().__init__(
            code=PaymentCode.INVARIANT_VIOLATION,
            message=f"Illegal payment transition {current} -> {target}",
            error_type="InvariantViolation",
            details={"payment_id": payment_id, "current": current, "target": target},
        )


class FeatureNotSupportedError(BusinessException):
    def __init__(self, provider: str, feature: str):
        super().__init__(
            code=PaymentCode.FEATURE_NOT_SUPPORTED,
            message=f"Provider '{provider}' does not support '{feature}'",
            error_type="FeatureNotSupported",
            details={"provider": provider, "feature": feature},
        )


class SandboxOnlyError(BusinessException):
    def __init__(self, provider: Optional[str] = None):
        super().__init__(
            code=BusinessCode.FORBIDDEN,
            message="Payment simulation is only available in sandbox mode",
            error_type="SandboxOnly",
            details={"provider": provider} if provider else None,
        )


class PaymentNotFoundError(NotFoundException):
    def __init__(self, payment_id: Optional[str] = None):
        super().__init__("payment", payment_id)


class OrderNotFoundError(NotFoundException):
    def __init__(self, order_id: Optional[str] = None):
        super().__init__("order", order_id)


class SavedCardNotFoundError(NotFoundException):
    def __init__(self, card_id: Optional[str] = None):
        super().__init__("card", card_id)


class RefundFailedError(BusinessException):
    def __init__(self, payment_id: str, reason: Optional[str] = None):
        super().__init__(
            code=PaymentCode.PROVIDER_ERROR,
            message=reason or "Refund could not be processed",
            error_type="RefundFailed",
            details={"payment_id": payment_id},
        )

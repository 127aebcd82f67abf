"""
Base payment client implementing shared concerns: http, retry, logging, mapping.

Concrete providers subclass and implement `_create_payment` and
`process_webhook`. `create_payment` is a template method: it validates the
request, bounds the provider call with a timeout and turns provider failures
into a rejected `PaymentResult` instead of raising.
"""
from __future__ import annotations

import asyncio
import hashlib
import hmac
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Any, Callable, Mapping, Optional

import httpx
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential, retry_if_exception_type

from core.logging_config import get_logger
from core.settings import GatewayConfig
from application.dtos.payments import (
    OrderView,
    PaymentData,
    PaymentResult,
    RefundResult,
    WebhookResult,
)
from application.ports.orders import SettingsPort
from application.ports.payment_gateway import PaymentFeature
from domain.payment.entity import Payment, PaymentMethod, PaymentStatus
from domain.payment.exceptions import FeatureNotSupportedError, PaymentValidationError
from infrastructure.external.payments.exceptions import (
    PaymentConfigurationError,
    PaymentProviderError,
    PaymentSignatureError,
    PaymentTimeoutError,
)
from shared.codes.payment_codes import PROVIDER_STATUS_TO_INTERNAL


logger = get_logger(__name__)

TIMEOUT_ERROR_CODE = "provider_timeout"
DEFAULT_ERROR_MESSAGE = "We could not process your payment. Please try again or choose another method."


def as_bool(value: Any, default: bool = True) -> bool:
    """Settings rows arrive as strings, bools or ints."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


class BasePaymentClient:
    name: str = "base"
    display_name: str = "Base"
    supported_methods: frozenset[PaymentMethod] = frozenset()
    features: frozenset[PaymentFeature] = frozenset()
    # provider error/status-detail code -> friendly message
    error_messages: dict[str, str] = {}

    def __init__(
        self,
        config: GatewayConfig,
        *,
        settings: Optional[SettingsPort] = None,
        currency: str = "BRL",
        timeouts: Optional[dict[str, float]] = None,
        retry: Optional[dict[str, Any]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._config = config
        self._settings = settings
        self.currency = currency.upper()
        self._timeouts_cfg = timeouts or {"connect": 1.0, "read": 5.0, "write": 5.0, "total": 10.0}
        self._retry_cfg = retry or {"max": 2, "base": 0.2}
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def sandbox(self) -> bool:
        return bool(self._config.sandbox)

    def is_configured(self) -> bool:
        return False

    async def is_enabled(self) -> bool:
        """Configured and not switched off at runtime via `{name}_enabled`."""
        if not self.is_configured():
            return False
        if self._settings is None:
            return True
        return as_bool(await self._settings.get_setting(f"{self.name}_enabled"), default=True)

    @property
    def timeouts(self) -> httpx.Timeout:
        return httpx.Timeout(
            connect=self._timeouts_cfg["connect"],
            read=self._timeouts_cfg["read"],
            write=self._timeouts_cfg["write"],
            timeout=self._timeouts_cfg["total"],
        )

    @asynccontextmanager
    async def client(self):
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeouts, transport=self._transport)
        try:
            yield self._client
        finally:
            # Keep open for reuse; explicit aclose() will close.
            ...

    async def aclose(self) -> None:
        """Close underlying HTTP client if created."""
        if self._client is not None:
            try:
                await self._client.aclose()
            finally:
                self._client = None

    async def _retry(self, fn: Callable[[], Any]):
        """Retry idempotent reads only; creates are never retried here."""
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(int(self._retry_cfg["max"]) + 1),
            wait=wait_exponential(multiplier=self._retry_cfg["base"], min=0.1, max=2.0),
            retry=retry_if_exception_type((httpx.TimeoutException, httpx.TransportError)),
            reraise=True,
        ):
            with attempt:
                return await fn()

    async def create_payment(self, order: OrderView, amount: Decimal, data: PaymentData) -> PaymentResult:
        self._validate(order, amount, data)
        self._log(
            "payment_create_request",
            reference=data.reference,
            order_id=order.id,
            method=data.method.value,
            amount=str(amount),
        )
        try:
            result = await asyncio.wait_for(
                self._create_payment(order, Decimal(amount), data),
                timeout=self._timeouts_cfg["total"],
            )
        except (asyncio.TimeoutError, httpx.TimeoutException, PaymentTimeoutError):
            # The provider may still have charged: leave it to the webhook.
            logger.warning("payment_provider_timeout", provider=self.name, reference=data.reference)
            return PaymentResult(
                success=True,
                status=PaymentStatus.PROCESSING,
                error_code=TIMEOUT_ERROR_CODE,
            )
        except httpx.TransportError as exc:
            logger.warning("payment_provider_unreachable", provider=self.name, reference=data.reference, error=str(exc))
            return self._rejected(PaymentProviderError(str(exc), provider=self.name, provider_code="provider_unavailable"))
        except PaymentProviderError as exc:
            logger.warning(
                "payment_provider_error",
                provider=self.name,
                reference=data.reference,
                provider_code=exc.provider_code,
                error=exc.message,
            )
            return self._rejected(exc)

        self._log(
            "payment_create_response",
            reference=data.reference,
            status=result.status.value,
            external_id=result.external_id,
        )
        return result

    async def _create_payment(self, order: OrderView, amount: Decimal, data: PaymentData) -> PaymentResult:
        raise NotImplementedError

    async def process_webhook(self, payload: bytes, headers: Mapping[str, str]) -> list[WebhookResult]:
        raise FeatureNotSupportedError(self.name, PaymentFeature.WEBHOOKS.value)

    async def refund(
        self, payment: Payment, amount: Optional[Decimal] = None, reason: Optional[str] = None
    ) -> RefundResult:
        raise FeatureNotSupportedError(self.name, PaymentFeature.REFUNDS.value)

    def map_status(self, provider_status: Optional[str]) -> PaymentStatus:
        mapping = PROVIDER_STATUS_TO_INTERNAL.get(self.name, {})
        return PaymentStatus(mapping.get(provider_status or "", PaymentStatus.PENDING.value))

    def translate_error(self, error: object) -> str:
        if isinstance(error, str):
            code = error
        else:
            code = getattr(error, "provider_code", None) or getattr(error, "code", None)
        if code and str(code) in self.error_messages:
            return self.error_messages[str(code)]
        return DEFAULT_ERROR_MESSAGE

    def supports_feature(self, feature: PaymentFeature) -> bool:
        return feature in self.features

    def get_supported_features(self) -> list[PaymentFeature]:
        return sorted(self.features, key=lambda f: f.value)

    # Helpers
    def _validate(self, order: OrderView, amount: Decimal, data: PaymentData) -> None:
        if data.method not in self.supported_methods:
            raise PaymentValidationError(
                f"{self.display_name} does not accept '{data.method.value}'",
                field="method",
            )
        if Decimal(amount) != order.total:
            raise PaymentValidationError(
                "Amount does not match the order total",
                field="amount",
                details={"expected": str(order.total), "received": str(amount)},
            )

    def _rejected(self, exc: PaymentProviderError) -> PaymentResult:
        return PaymentResult(
            success=False,
            status=PaymentStatus.REJECTED,
            error=self.translate_error(exc),
            error_code=exc.provider_code or "provider_error",
        )

    def _require_secret(self, secret: Optional[str]) -> str:
        if not secret:
            raise PaymentConfigurationError(f"{self.name} webhook secret not configured", provider=self.name)
        return secret

    def _verify_hmac(self, secret: str, message: bytes, signature: Optional[str]) -> None:
        expected = hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()
        if not signature or not hmac.compare_digest(expected, signature.strip().lower()):
            logger.warning("webhook_signature_invalid", provider=self.name)
            raise PaymentSignatureError("Invalid webhook signature", provider=self.name)

    @staticmethod
    def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
        lowered = name.lower()
        for key, value in headers.items():
            if key.lower() == lowered:
                return value
        return None

    @staticmethod
    def _to_minor(amount: Decimal, currency: str) -> int:
        # Amounts in the smallest currency unit; zero-decimal currencies are the exception.
        exponent = 0 if currency.upper() in {"JPY", "KRW", "CLP", "PYG"} else 2
        return int((amount * (Decimal(10) ** exponent)).to_integral_value())

    def _log(self, event: str, **kwargs) -> None:
        logger.info(
            event,
            provider=self.name,
            **kwargs,
        )

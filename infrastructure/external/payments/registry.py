"""
Gateway registry: picks the adapter for a payment method at call time.

Adapters are injected once at startup. The registry never constructs SDK
clients itself.

Runtime toggles, read through the settings port:
- `{provider}_enabled` switches a single provider off;
- `card_enabled`, `wallet_enabled`, `pix_enabled` and `cash_enabled` switch a method group off;
- `card_gateway` names the preferred card provider.
"""
from __future__ import annotations

from typing import Iterable, Optional

from application.dtos.payments import AvailableMethod, GatewayStatus
from application.ports.orders import SettingsPort
from application.ports.payment_gateway import CardVault, PaymentFeature, PaymentGateway
from core.logging_config import get_logger
from domain.payment.entity import PaymentMethod
from infrastructure.external.payments.base import as_bool


logger = get_logger(__name__)

CARD_GATEWAY_SETTING = "card_gateway"


class GatewayRegistry:
    def __init__(self, gateways: Iterable[PaymentGateway], settings: Optional[SettingsPort] = None) -> None:
        self._gateways: dict[str, PaymentGateway] = {}
        self._settings = settings
        for gateway in gateways:
            self.register(gateway)

    def register(self, gateway: PaymentGateway) -> None:
        if gateway.name in self._gateways:
            raise ValueError(f"Gateway already registered: {gateway.name}")
        self._gateways[gateway.name] = gateway

    def get(self, name: str) -> Optional[PaymentGateway]:
        return self._gateways.get((name or "").lower())

    def all(self) -> list[PaymentGateway]:
        return list(self._gateways.values())

    def configured(self) -> list[PaymentGateway]:
        return [g for g in self._gateways.values() if g.is_configured()]

    async def enabled(self) -> list[PaymentGateway]:
        return [g for g in self._gateways.values() if await g.is_enabled()]

    async def _setting(self, key: str):
        if self._settings is None:
            return None
        return await self._settings.get_setting(key)

    async def is_method_enabled(self, method: PaymentMethod) -> bool:
        return as_bool(await self._setting(f"{method.group}_enabled"), default=True)

    async def select(self, method: PaymentMethod, preference: Optional[str] = None) -> Optional[PaymentGateway]:
        """Adapter for `method`, honouring an explicit provider preference.

        Returns None when the method is switched off or nothing enabled supports it.
        """
        if not await self.is_method_enabled(method):
            return None
        candidates = [g for g in await self.enabled() if method in g.supported_methods]
        if not candidates:
            return None
        if preference:
            chosen = next((g for g in candidates if g.name == preference.lower()), None)
            if chosen is None:
                logger.info("gateway_preference_unavailable", method=method.value, preference=preference)
            return chosen
        if method.group == "card":
            default = await self._setting(CARD_GATEWAY_SETTING)
            for gateway in candidates:
                if default and gateway.name == str(default).lower():
                    return gateway
        return candidates[0]

    async def default_card_gateway(self) -> Optional[PaymentGateway]:
        return await self.select(PaymentMethod.CREDIT_CARD)

    def card_vault(self, name: str) -> Optional[CardVault]:
        """Capability query: the named adapter if it also acts as a card vault."""
        gateway = self.get(name)
        if gateway is None or not isinstance(gateway, CardVault):
            return None
        if not gateway.supports_feature(PaymentFeature.SAVED_CARDS):
            return None
        return gateway

    async def available_methods(self) -> list[AvailableMethod]:
        enabled = await self.enabled()
        methods = []
        for method in PaymentMethod:
            if not await self.is_method_enabled(method):
                continue
            providers = [g.name for g in enabled if method in g.supported_methods]
            if providers:
                methods.append(AvailableMethod(method=method, providers=providers))
        return methods

    async def status(self) -> list[GatewayStatus]:
        return [
            GatewayStatus(
                name=g.name,
                display_name=g.display_name,
                configured=g.is_configured(),
                enabled=await g.is_enabled(),
                sandbox=g.sandbox,
                features=[f.value for f in g.get_supported_features()],
            )
            for g in self._gateways.values()
        ]

    async def aclose(self) -> None:
        for gateway in self._gateways.values():
            await gateway.aclose()

"""Infrastructure models package exports."""
from .base import Base, metadata
from .order import OrderModel, SettingModel
from .payment import PaymentModel
from .saved_card import GatewayCustomerModel, SavedCardModel

__all__ = [
    "Base",
    "metadata",
    "OrderModel",
    "SettingModel",
    "PaymentModel",
    "GatewayCustomerModel",
    "SavedCardModel",
]

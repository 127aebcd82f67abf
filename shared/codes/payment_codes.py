"""
Payment specific codes and provider status mapping.
"""
from __future__ import annotations

from enum import IntEnum


class PaymentCode(IntEnum):
    # Generic success
    SUCCESS = 0

    # Request/flow errors (6xxxx)
    VALIDATION_ERROR = 61000
    UNSUPPORTED_METHOD = 61001
    PAYMENT_IN_PROGRESS = 61002
    INVARIANT_VIOLATION = 61003
    FEATURE_NOT_SUPPORTED = 61004

    # Provider/Network errors (6xxxx)
    PROVIDER_ERROR = 60000
    PROVIDER_RECOVERABLE = 60001
    SIGNATURE_ERROR = 60002
    TIMEOUT = 60003
    RATE_LIMITED = 60004
    CONFIGURATION_ERROR = 60005


# Provider vocabulary -> unified PaymentStatus value. Anything missing maps to "pending".
PROVIDER_STATUS_TO_INTERNAL = {
    "stripe": {
        # PaymentIntent.status
        "requires_payment_method": "pending",
        "requires_confirmation": "pending",
        "requires_action": "pending",
        "processing": "processing",
        "requires_capture": "processing",
        "succeeded": "approved",
        "canceled": "rejected",
    },
    "mercadopago": {
        # payment.status
        "pending": "pending",
        "in_process": "processing",
        "in_mediation": "processing",
        "authorized": "processing",
        "approved": "approved",
        "rejected": "rejected",
        "cancelled": "rejected",
        "refunded": "refunded",
        "charged_back": "refunded",
    },
    "pix": {
        # Bacen cob.status
        "ATIVA": "pending",
        "CONCLUIDA": "approved",
        "REMOVIDA_PELO_USUARIO_RECEBEDOR": "rejected",
        "REMOVIDA_PELO_PSP": "rejected",
        "EXPIRADA": "expired",
    },
    "cash": {
        "pending": "pending",
        "received": "approved",
    },
}

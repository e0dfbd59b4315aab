"""
M-Pesa payment provider
"""
from insureme.domain.services.mpesa.base_provider import (
    PaymentProvider,
    PushResult,
    PaymentSucceeded,
    PaymentFailed,
    PaymentOutcome,
    QueryStatus,
    StatusQueryResult,
)
from insureme.domain.services.mpesa.provider_factory import get_payment_provider, reset_providers

__all__ = [
    "PaymentProvider",
    "PushResult",
    "PaymentSucceeded",
    "PaymentFailed",
    "PaymentOutcome",
    "QueryStatus",
    "StatusQueryResult",
    "get_payment_provider",
    "reset_providers",
]
